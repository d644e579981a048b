"""End-to-end tests for the command line, with HTTP answered by a MockTransport."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Awaitable, Callable

import httpx
import pytest

from fitness_connect.auth.store import FileCredentialStore
from fitness_connect.base import Credential, SyncMarker
from fitness_connect.cli import main
from fitness_connect.config import Settings
from fitness_connect.sync.markers import FileMarkerStore
from fitness_connect.tests.conftest import json_response, make_measurement


def _fresh_credential(provider_id: str, **extra) -> Credential:
    return Credential(
        provider_id=provider_id,
        access_token=f"{provider_id}-access",
        refresh_token=f"{provider_id}-refresh",
        expires_at=datetime.now(timezone.utc) + timedelta(hours=6),
        extra=dict(extra),
    )


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        credentials_dir=tmp_path,
        withings_client_id="w-id",
        withings_client_secret="w-secret",
        strava_client_id="s-id",
        strava_client_secret="s-secret",
    )


@pytest.fixture
def both_registered(settings: Settings) -> FileCredentialStore:
    store = FileCredentialStore(settings.credentials_dir)
    store.save(_fresh_credential("withings"))
    store.save(_fresh_credential("strava", athlete_id=134815))
    return store


def _router(
    withings: Callable[[httpx.Request], httpx.Response] | None = None,
    strava: Callable[[httpx.Request], httpx.Response | Awaitable[httpx.Response]] | None = None,
    log: list[httpx.Request] | None = None,
) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        if log is not None:
            log.append(request)
        if request.url.host == "wbsapi.withings.net" and withings is not None:
            return withings(request)
        if request.url.host == "www.strava.com" and strava is not None:
            return strava(request)
        raise AssertionError(f"unexpected request {request.method} {request.url}")

    return httpx.MockTransport(handler)


class TestSyncCommand:
    def test_sync_success(
        self, settings, both_registered, withings_getmeas_body, capsys
    ) -> None:
        transport = _router(
            withings=lambda r: json_response(withings_getmeas_body),
            strava=lambda r: json_response({"id": 134815, "weight": 72.4}),
        )
        assert main(["sync"], settings=settings, transport=transport) == 0
        assert "Synced weight 72.40 kg" in capsys.readouterr().out

        markers = json.loads(settings.resolved_marker_file().read_text())
        assert markers["weight"]["last_synced_value"] == 72.4

        # Nothing new: the second run must not push.
        pushes: list[httpx.Request] = []
        transport = _router(
            withings=lambda r: json_response(withings_getmeas_body),
            log=pushes,
        )
        assert main(["sync"], settings=settings, transport=transport) == 0
        assert all(r.method != "PUT" for r in pushes)
        assert "Already up to date" in capsys.readouterr().out

    def test_dry_run_does_not_contact_target_data_api(
        self, settings, both_registered, withings_getmeas_body, capsys
    ) -> None:
        transport = _router(withings=lambda r: json_response(withings_getmeas_body))
        assert main(["sync", "--dry-run"], settings=settings, transport=transport) == 0
        assert "would push" in capsys.readouterr().out
        assert not settings.resolved_marker_file().exists()

    def test_missing_target_registration_exits_3(self, settings, capsys) -> None:
        FileCredentialStore(settings.credentials_dir).save(_fresh_credential("withings"))
        log: list[httpx.Request] = []
        assert main(["sync"], settings=settings, transport=_router(log=log)) == 3
        assert log == []
        assert "register strava" in capsys.readouterr().err

    def test_source_failure_exits_4(self, settings, both_registered, capsys) -> None:
        # 293: unknown action, a permanent envelope error
        transport = _router(withings=lambda r: json_response({"status": 293, "error": "Invalid action"}))
        assert main(["sync"], settings=settings, transport=transport) == 4
        assert "Could not fetch from withings" in capsys.readouterr().err

    def test_rejected_push_exits_5(
        self, settings, both_registered, withings_getmeas_body, capsys
    ) -> None:
        transport = _router(
            withings=lambda r: json_response(withings_getmeas_body),
            strava=lambda r: json_response({"message": "Bad Request", "errors": []}, 400),
        )
        assert main(["sync"], settings=settings, transport=transport) == 5
        assert not settings.resolved_marker_file().exists()
        assert "Push to strava failed" in capsys.readouterr().err

    def test_timeout_during_push_exits_6_and_keeps_marker(
        self, settings, both_registered, withings_getmeas_body, capsys
    ) -> None:
        marker_file = settings.resolved_marker_file()
        FileMarkerStore(marker_file).save(
            SyncMarker.for_measurement(
                make_measurement(73.0, observed_at=datetime(2026, 2, 20, 7, 0, tzinfo=timezone.utc))
            )
        )
        before = marker_file.read_bytes()
        pushes: list[httpx.Request] = []

        async def hang(request: httpx.Request) -> httpx.Response:
            pushes.append(request)
            await asyncio.Event().wait()
            raise AssertionError("push should have been cancelled")

        transport = _router(withings=lambda r: json_response(withings_getmeas_body), strava=hang)
        assert main(["sync", "--timeout", "0.2"], settings=settings, transport=transport) == 6

        assert [r.method for r in pushes] == ["PUT"]
        assert marker_file.read_bytes() == before
        assert "timed out after 0.2s" in capsys.readouterr().err

    @pytest.mark.parametrize("days", ["0", "-2", "two"])
    def test_days_must_be_a_positive_integer(self, settings, days: str, capsys) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main(["sync", "--days", days], settings=settings, transport=_router())
        assert exc_info.value.code == 2
        assert "--days" in capsys.readouterr().err


class TestDisplayCommands:
    def test_weight(self, settings, both_registered, withings_getmeas_body, capsys) -> None:
        transport = _router(withings=lambda r: json_response(withings_getmeas_body))
        assert main(["weight", "--days", "3"], settings=settings, transport=transport) == 0
        assert "Latest weight from withings: 72.40 kg" in capsys.readouterr().out

    def test_athlete(
        self, settings, both_registered, strava_athlete_body, strava_stats_body, capsys
    ) -> None:
        def strava(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/stats"):
                return json_response(strava_stats_body)
            return json_response(strava_athlete_body)

        assert main(["athlete"], settings=settings, transport=_router(strava=strava)) == 0
        out = capsys.readouterr().out
        assert "Athlete: Marianne Teutenberg (id 134815)" in out
        assert "ytd ride" in out

    def test_weight_without_registration_exits_3(self, settings, capsys) -> None:
        assert main(["weight"], settings=settings, transport=_router()) == 3
        assert "register withings" in capsys.readouterr().err


class TestRegisterCommand:
    def test_missing_client_config_exits_1(self, tmp_path: Path, capsys) -> None:
        settings = Settings(
            _env_file=None,
            credentials_dir=tmp_path,
            withings_client_id=None,
            withings_client_secret=None,
        )
        assert main(["register", "withings"], settings=settings, transport=_router()) == 1
        assert "WITHINGS_CLIENT_ID" in capsys.readouterr().err

    def test_help_names_providers(self, settings, capsys) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main(["register", "--help"], settings=settings, transport=_router())
        assert exc_info.value.code == 0
        out = capsys.readouterr().out
        assert "strava (Strava)" in out
        assert "withings (Withings)" in out
