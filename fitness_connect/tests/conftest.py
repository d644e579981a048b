"""Shared fixtures, fakes and canned API payloads for fitness-connect tests."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable

import httpx
import pytest

from fitness_connect.auth.oauth import ClientCredentials, OAuth2Authenticator, OAuth2Provider
from fitness_connect.auth.store import FileCredentialStore
from fitness_connect.base import Ack, Credential, Measurement, MetricKind, SyncMarker
from fitness_connect.config_loader import ProviderCatalog, RetryPolicy, SyncPolicy, load_provider_catalog
from fitness_connect.errors import PermanentError
from fitness_connect.providers.base import Capability, ProviderGateway
from fitness_connect.sync.markers import MarkerStore

# Canonical "now" for deterministic token expiry checks
NOW = datetime(2026, 2, 23, 8, 0, 0, tzinfo=timezone.utc)


def make_credential(
    provider_id: str = "strava",
    expires_in: timedelta = timedelta(hours=6),
    access_token: str = "access-1",
    refresh_token: str = "refresh-1",
    **extra,
) -> Credential:
    return Credential(
        provider_id=provider_id,
        access_token=access_token,
        refresh_token=refresh_token,
        expires_at=NOW + expires_in,
        scope=["read"],
        extra=dict(extra),
    )


def make_measurement(
    value: float = 72.4,
    observed_at: datetime = datetime(2026, 2, 23, 7, 15, tzinfo=timezone.utc),
    unit: str = "kg",
) -> Measurement:
    return Measurement(
        provider_id="withings",
        metric_kind=MetricKind.WEIGHT,
        value=value,
        unit=unit,
        observed_at=observed_at,
        source_id="123",
    )


def mock_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    """httpx.AsyncClient whose requests are answered by ``handler``."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def form(request: httpx.Request) -> dict[str, str]:
    """Decode a url-encoded request body into a flat dict."""
    return dict(httpx.QueryParams(request.content.decode()))


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def catalog() -> ProviderCatalog:
    """The bundled providers.yaml."""
    return load_provider_catalog()


@pytest.fixture
def withings_spec(catalog: ProviderCatalog):
    return catalog.provider("withings")


@pytest.fixture
def strava_spec(catalog: ProviderCatalog):
    return catalog.provider("strava")


@pytest.fixture
def fast_policy() -> SyncPolicy:
    """Default sync policy with the standard 3-attempt retry."""
    return SyncPolicy(retry=RetryPolicy(max_attempts=3, base_delay_seconds=1.0, max_delay_seconds=30.0))


@pytest.fixture
def store(tmp_path: Path) -> FileCredentialStore:
    return FileCredentialStore(tmp_path / "credentials")


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeOAuthProvider(OAuth2Provider):
    """Token endpoint fake that counts calls and hands out numbered tokens."""

    def __init__(self, provider_id: str, lifetime: timedelta = timedelta(hours=6)) -> None:
        self.PROVIDER_ID = provider_id
        self.lifetime = lifetime
        self.refresh_calls = 0
        self.exchanged_codes: list[str] = []
        self.refresh_error: Exception | None = None

    def authorization_url(self, client: ClientCredentials, state: str) -> str:
        return f"https://auth.example/{self.PROVIDER_ID}?client_id={client.client_id}&state={state}"

    async def exchange_code(self, client: ClientCredentials, code: str) -> Credential:
        self.exchanged_codes.append(code)
        return make_credential(self.PROVIDER_ID, expires_in=self.lifetime, access_token=f"code-{code}")

    async def refresh(self, client: ClientCredentials, credential: Credential) -> Credential:
        self.refresh_calls += 1
        # Yield so concurrent callers get a chance to race.
        await asyncio.sleep(0)
        if self.refresh_error is not None:
            raise self.refresh_error
        return credential.rotated(
            access_token=f"access-{self.refresh_calls + 1}",
            refresh_token=f"refresh-{self.refresh_calls + 1}",
            expires_at=NOW + self.lifetime,
        )


class InMemoryMarkerStore(MarkerStore):
    def __init__(self, marker: SyncMarker | None = None) -> None:
        self.markers: dict[MetricKind, SyncMarker] = {}
        self.saves = 0
        if marker is not None:
            self.markers[marker.metric_kind] = marker

    def load(self, metric_kind: MetricKind) -> SyncMarker | None:
        return self.markers.get(metric_kind)

    def save(self, marker: SyncMarker) -> None:
        self.saves += 1
        self.markers[marker.metric_kind] = marker


class FakeSource(ProviderGateway):
    """Source gateway returning queued measurements (or raising queued errors)."""

    PROVIDER_ID = "withings"
    DISPLAY_NAME = "Fake Withings"
    CAPABILITIES = frozenset({Capability.LATEST_MEASUREMENT})

    def __init__(self, spec, results: list | None = None) -> None:
        super().__init__(spec)
        self.results = list(results or [])
        self.calls = 0

    async def get_latest_measurement(self, metric_kind, credential, since=None):
        self.calls += 1
        self._check_credential(credential)
        result = self.results.pop(0) if len(self.results) > 1 else (self.results or [None])[0]
        if isinstance(result, Exception):
            raise result
        return result


class FakeTarget(ProviderGateway):
    """Target gateway recording pushes; queued errors are raised first."""

    PROVIDER_ID = "strava"
    DISPLAY_NAME = "Fake Strava"
    CAPABILITIES = frozenset({Capability.PUSH_MEASUREMENT})

    def __init__(self, spec, errors: list[Exception] | None = None) -> None:
        super().__init__(spec)
        self.errors = list(errors or [])
        self.pushed: list[Measurement] = []
        self.attempts = 0

    async def push_measurement(self, measurement, credential):
        self.attempts += 1
        self._check_credential(credential)
        if self.errors:
            raise self.errors.pop(0)
        if measurement.unit != "kg":
            raise PermanentError("kg only", provider_id=self.PROVIDER_ID)
        self.pushed.append(measurement)
        return Ack(provider_id=self.PROVIDER_ID, status=200, detail="ok")


class RecordingSleep:
    """Stand-in for asyncio.sleep that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def fake_providers() -> dict[str, FakeOAuthProvider]:
    return {"withings": FakeOAuthProvider("withings"), "strava": FakeOAuthProvider("strava")}


@pytest.fixture
def clients() -> dict[str, ClientCredentials]:
    return {
        "withings": ClientCredentials("w-id", "w-secret", "http://localhost:8080/callback"),
        "strava": ClientCredentials("s-id", "s-secret", "http://localhost"),
    }


@pytest.fixture
def authenticator(
    store: FileCredentialStore,
    fake_providers: dict[str, FakeOAuthProvider],
    clients: dict[str, ClientCredentials],
) -> OAuth2Authenticator:
    return OAuth2Authenticator(
        store=store,
        providers=fake_providers,
        clients=clients,
        clock=lambda: NOW,
        announce=lambda _msg: None,
    )


# ---------------------------------------------------------------------------
# Canned provider payloads
# ---------------------------------------------------------------------------


@pytest.fixture
def withings_getmeas_body() -> dict:
    """Two weighings, one ambiguous reading and a fat-ratio-only group."""
    return {
        "status": 0,
        "body": {
            "updatetime": 1771833600,
            "timezone": "Europe/Paris",
            "measuregrps": [
                {
                    "grpid": 111,
                    "attrib": 0,
                    "date": 1771747200,  # 2026-02-22 08:00 UTC
                    "category": 1,
                    "measures": [{"value": 72600, "type": 1, "unit": -3}],
                },
                {
                    "grpid": 222,
                    "attrib": 0,
                    "date": 1771830900,  # 2026-02-23 07:15 UTC
                    "category": 1,
                    "measures": [
                        {"value": 7240, "type": 1, "unit": -2},
                        {"value": 182, "type": 6, "unit": -1},
                    ],
                },
                {
                    "grpid": 333,
                    "attrib": 1,
                    "date": 1771832000,
                    "category": 1,
                    "measures": [{"value": 9100, "type": 1, "unit": -2}],
                },
                {
                    "grpid": 444,
                    "attrib": 0,
                    "date": 1771833000,
                    "category": 1,
                    "measures": [{"value": 190, "type": 6, "unit": -1}],
                },
            ],
            "more": 0,
            "offset": 0,
        },
    }


@pytest.fixture
def strava_token_body() -> dict:
    return {
        "token_type": "Bearer",
        "expires_at": 1771851600,  # 2026-02-23 13:00 UTC
        "expires_in": 21600,
        "refresh_token": "strava-refresh-2",
        "access_token": "strava-access-2",
        "athlete": {"id": 134815, "username": "marianne_t", "firstname": "Marianne"},
    }


@pytest.fixture
def strava_athlete_body() -> dict:
    return {
        "id": 134815,
        "username": "marianne_t",
        "resource_state": 3,
        "firstname": "Marianne",
        "lastname": "Teutenberg",
        "city": "San Francisco",
        "state": "CA",
        "country": "US",
        "sex": "F",
        "premium": True,
        "summit": True,
        "created_at": "2017-11-14T02:30:05Z",
        "updated_at": "2026-02-23T07:20:11Z",
        "follower_count": 5,
        "friend_count": 5,
        "measurement_preference": "meters",
        "ftp": 220,
        "weight": 72.4,
        "clubs": [],
        "bikes": [],
        "shoes": [],
    }


@pytest.fixture
def strava_stats_body() -> dict:
    totals = {
        "count": 12,
        "distance": 402310.5,
        "moving_time": 54000,
        "elapsed_time": 57600,
        "elevation_gain": 3120.0,
        "achievement_count": 4,
    }
    empty = {"count": 0, "distance": 0, "moving_time": 0, "elapsed_time": 0, "elevation_gain": 0}
    return {
        "biggest_ride_distance": 152340.2,
        "biggest_climb_elevation_gain": 812.4,
        "recent_ride_totals": totals,
        "recent_run_totals": empty,
        "recent_swim_totals": empty,
        "ytd_ride_totals": totals,
        "ytd_run_totals": {**empty, "count": 3, "distance": 21000.0},
        "ytd_swim_totals": empty,
        "all_ride_totals": {**totals, "count": 240},
        "all_run_totals": empty,
        "all_swim_totals": empty,
    }


def json_response(payload: object, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, json=payload)
