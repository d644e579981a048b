"""One-way "last value" sync from a source provider to a target provider.

Each ``SyncOrchestrator.run()`` walks a fixed sequence and stops at the first
terminal outcome:

1. Acquire valid credentials for the source, then the target
2. Fetch the latest measurement from the source
3. Compare it with the stored SyncMarker
4. Push it to the target (transient failures retried with backoff)
5. Commit the new marker, only after the target acknowledged the push

Every fetch and push attempt re-checks its credential, so a token that expires
while the run is in progress is refreshed before it is sent.

Because the marker is written last, a crash or cancellation at any point
leaves it describing the last confirmed push, and the next run resumes from
there.  Running twice with no new source data pushes nothing the second time.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Awaitable, Callable, TypeVar

from fitness_connect.auth.oauth import OAuth2Authenticator
from fitness_connect.base import Ack, Credential, Measurement, SyncMarker, utc_now
from fitness_connect.config_loader import SyncPolicy
from fitness_connect.errors import FitnessConnectError, ProviderError
from fitness_connect.models.athlete import AthleteProfile, AthleteStats
from fitness_connect.providers.base import ProviderGateway
from fitness_connect.sync.markers import MarkerStore
from fitness_connect.sync.retry import retry_transient

logger = logging.getLogger("fitness_connect.sync.orchestrator")

T = TypeVar("T")


class SyncStatus(str, Enum):
    """Terminal outcome of a sync run."""

    SYNCED = "synced"
    UP_TO_DATE = "up_to_date"
    NOTHING_TO_SYNC = "nothing_to_sync"
    DRY_RUN = "dry_run"
    SOURCE_UNAVAILABLE = "source_unavailable"
    AUTH_FAILURE = "auth_failure"
    PUSH_FAILED = "push_failed"


class SyncStep(str, Enum):
    AUTH = "auth"
    FETCH = "fetch"
    PUSH = "push"


_EXIT_CODES: dict[SyncStatus, int] = {
    SyncStatus.SYNCED: 0,
    SyncStatus.UP_TO_DATE: 0,
    SyncStatus.NOTHING_TO_SYNC: 0,
    SyncStatus.DRY_RUN: 0,
    SyncStatus.AUTH_FAILURE: 3,
    SyncStatus.SOURCE_UNAVAILABLE: 4,
    SyncStatus.PUSH_FAILED: 5,
}


@dataclass(frozen=True)
class SyncOutcome:
    """What a sync run did, and why it stopped.

    Attributes:
        status:      Terminal status.
        measurement: The measurement that was fetched, if any.
        provider_id: Provider at fault for failures, else the provider acted on.
        step:        Step that failed, for failure statuses.
        error:       The error that ended the run, for failure statuses.
        attempts:    Push attempts made (0 if no push was tried).
        ack:         Target acknowledgement for SYNCED.
    """

    status: SyncStatus
    measurement: Measurement | None = None
    provider_id: str | None = None
    step: SyncStep | None = None
    error: FitnessConnectError | None = None
    attempts: int = 0
    ack: Ack | None = None

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def exit_code(self) -> int:
        return _EXIT_CODES[self.status]

    @property
    def message(self) -> str:
        m = self.measurement
        reading = (
            f"{m.metric_kind.value} {m.value:.2f} {m.unit} observed {m.observed_at.isoformat()}"
            if m is not None
            else ""
        )
        reason = self.error.message if self.error is not None else "unknown error"

        if self.status is SyncStatus.SYNCED:
            return f"Synced {reading} to {self.provider_id}"
        if self.status is SyncStatus.UP_TO_DATE:
            return f"Already up to date: {reading}"
        if self.status is SyncStatus.NOTHING_TO_SYNC:
            return f"No recent measurement available from {self.provider_id}"
        if self.status is SyncStatus.DRY_RUN:
            return f"Dry run: would push {reading} to {self.provider_id}"
        if self.status is SyncStatus.AUTH_FAILURE:
            hint = (self.error.help if self.error is not None else None) or (
                f"Re-run `fitness-connect register {self.provider_id}` to authorize again"
            )
            return f"Authorization failed for {self.provider_id}: {reason}. {hint}"
        if self.status is SyncStatus.SOURCE_UNAVAILABLE:
            return f"Could not fetch from {self.provider_id}: {reason}"
        return (
            f"Push to {self.provider_id} failed after {self.attempts} attempt(s): {reason}"
        )


class SyncOrchestrator:
    """Pull the latest value from ``source`` and push it to ``target``.

    Usage::

        orchestrator = SyncOrchestrator(
            authenticator=authenticator,
            source=WithingsGateway(catalog.provider("withings"), http_client=client),
            target=StravaGateway(catalog.provider("strava"), http_client=client),
            marker_store=FileMarkerStore(settings.resolved_marker_file()),
            policy=catalog.sync,
        )
        outcome = await orchestrator.run()
    """

    def __init__(
        self,
        authenticator: OAuth2Authenticator,
        source: ProviderGateway,
        target: ProviderGateway,
        marker_store: MarkerStore,
        policy: SyncPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            authenticator: Supplies valid credentials for both providers.
            source:        Gateway the measurement is read from.
            target:        Gateway the measurement is pushed to.
            marker_store:  Where the last confirmed push is recorded.
            policy:        Metric, lookback and retry settings.
            sleep:         Awaitable used between retries (injected in tests).
            clock:         Returns the current aware UTC time.
        """
        self._authenticator = authenticator
        self._source = source
        self._target = target
        self._markers = marker_store
        self._policy = policy or SyncPolicy()
        self._sleep = sleep
        self._clock = clock

    @property
    def source_id(self) -> str:
        return self._source.PROVIDER_ID

    @property
    def target_id(self) -> str:
        return self._target.PROVIDER_ID

    def _since(self, days: int | None) -> datetime:
        if days is None:
            days = self._policy.lookback_days
        return self._clock() - timedelta(days=days)

    async def _with_credential(
        self, provider_id: str, call: Callable[[Credential], Awaitable[T]]
    ) -> T:
        # Checked on every attempt; a slow fetch or a retry can outlast the token.
        credential = await self._authenticator.ensure_valid(provider_id)
        return await call(credential)

    async def _fetch(self, since: datetime) -> Measurement | None:
        measurement, _ = await retry_transient(
            lambda: self._with_credential(
                self.source_id,
                lambda credential: self._source.get_latest_measurement(
                    self._policy.metric_kind, credential, since=since
                ),
            ),
            self._policy.retry,
            sleep=self._sleep,
            label=f"{self.source_id} fetch",
        )
        return measurement

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    async def run(self, dry_run: bool = False, days: int | None = None) -> SyncOutcome:
        """Run one sync pass.

        Args:
            dry_run: Stop before pushing and report what would be pushed.
            days:    Look this many days back for a measurement (policy default).

        Returns:
            A SyncOutcome; provider failures are reported, not raised.
        """
        metric = self._policy.metric_kind
        logger.info("Sync %s: %s → %s", metric.value, self.source_id, self.target_id)

        # 1. Credentials for both sides before any data call.
        for provider_id in (self.source_id, self.target_id):
            try:
                await self._authenticator.ensure_valid(provider_id)
            except FitnessConnectError as exc:
                logger.error("Credential check failed for %s: %s", provider_id, exc)
                return SyncOutcome(
                    status=SyncStatus.AUTH_FAILURE,
                    provider_id=provider_id,
                    step=SyncStep.AUTH,
                    error=exc,
                )

        # 2. Fetch.
        try:
            measurement = await self._fetch(self._since(days))
        except ProviderError as exc:
            logger.error("Fetch from %s failed: %s", self.source_id, exc)
            return SyncOutcome(
                status=SyncStatus.SOURCE_UNAVAILABLE,
                provider_id=self.source_id,
                step=SyncStep.FETCH,
                error=exc,
            )
        except FitnessConnectError as exc:
            return SyncOutcome(
                status=SyncStatus.AUTH_FAILURE,
                provider_id=self.source_id,
                step=SyncStep.FETCH,
                error=exc,
            )

        if measurement is None:
            return SyncOutcome(status=SyncStatus.NOTHING_TO_SYNC, provider_id=self.source_id)

        # 3. Marker check.
        marker = self._markers.load(metric)
        if marker is not None and marker.covers(measurement):
            logger.info(
                "Latest %s (%.2f at %s) already synced",
                metric.value,
                measurement.value,
                measurement.observed_at.isoformat(),
            )
            return SyncOutcome(
                status=SyncStatus.UP_TO_DATE,
                measurement=measurement,
                provider_id=self.target_id,
            )

        if dry_run:
            return SyncOutcome(
                status=SyncStatus.DRY_RUN, measurement=measurement, provider_id=self.target_id
            )

        # 4. Push.
        try:
            ack, attempts = await retry_transient(
                lambda: self._with_credential(
                    self.target_id,
                    lambda credential: self._target.push_measurement(measurement, credential),
                ),
                self._policy.retry,
                sleep=self._sleep,
                label=f"{self.target_id} push",
            )
        except ProviderError as exc:
            logger.error("Push to %s failed: %s", self.target_id, exc)
            return SyncOutcome(
                status=SyncStatus.PUSH_FAILED,
                measurement=measurement,
                provider_id=self.target_id,
                step=SyncStep.PUSH,
                error=exc,
                attempts=exc.attempts,
            )
        except FitnessConnectError as exc:
            return SyncOutcome(
                status=SyncStatus.AUTH_FAILURE,
                measurement=measurement,
                provider_id=self.target_id,
                step=SyncStep.PUSH,
                error=exc,
                attempts=1,
            )

        # 5. Commit, only after the Ack.
        self._markers.save(SyncMarker.for_measurement(measurement))
        return SyncOutcome(
            status=SyncStatus.SYNCED,
            measurement=measurement,
            provider_id=self.target_id,
            attempts=attempts,
            ack=ack,
        )

    # ------------------------------------------------------------------
    # Read-only helpers
    # ------------------------------------------------------------------

    async def fetch_latest(self, days: int | None = None) -> Measurement | None:
        """Return the source's latest measurement without touching the target."""
        return await self._fetch(self._since(days))

    async def athlete_profile(self) -> AthleteProfile:
        profile, _ = await retry_transient(
            lambda: self._with_credential(self.target_id, self._target.get_athlete_profile),
            self._policy.retry,
            sleep=self._sleep,
            label=f"{self.target_id} profile",
        )
        return profile

    async def athlete_stats(self) -> AthleteStats:
        stats, _ = await retry_transient(
            lambda: self._with_credential(self.target_id, self._target.get_athlete_stats),
            self._policy.retry,
            sleep=self._sleep,
            label=f"{self.target_id} stats",
        )
        return stats

    async def athlete_overview(self) -> tuple[AthleteProfile, AthleteStats]:
        """Fetch profile and stats concurrently.

        Both fetches go through ``ensure_valid``; the per-provider lock makes
        sure an expiring token is refreshed once, not twice.
        """
        profile, stats = await asyncio.gather(self.athlete_profile(), self.athlete_stats())
        return profile, stats
