"""Core data model for fitness-connect.

These types flow between the credential store, the authenticator, the provider
gateways and the sync orchestrator.  All timestamps are timezone-aware UTC.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

logger = logging.getLogger("fitness_connect")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_iso_datetime(value: str | None) -> datetime | None:
    """Parse an ISO-8601 string to an aware UTC datetime.

    Naive strings are assumed to be UTC.  Returns None if the value is None or
    unparseable.
    """
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (ValueError, AttributeError):
        logger.warning("Could not parse datetime string: %r", value)
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def from_epoch(seconds: int | float) -> datetime:
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


class MetricKind(str, Enum):
    """Kinds of measurement that can be synced."""

    WEIGHT = "weight"


# ---------------------------------------------------------------------------
# OAuth credential
# ---------------------------------------------------------------------------


@dataclass
class Credential:
    """OAuth2 token material for one provider.

    Attributes:
        provider_id:   Provider slug ('withings', 'strava').
        access_token:  Bearer token for API calls.
        refresh_token: Long-lived token used to obtain a new access_token.
        expires_at:    UTC datetime when the access_token expires.
        scope:         Granted OAuth scopes.
        token_type:    Token type, typically "Bearer".
        extra:         Provider-specific fields (e.g. Withings userid, Strava athlete_id).
    """

    provider_id: str
    access_token: str
    refresh_token: str
    expires_at: datetime
    scope: list[str] = field(default_factory=list)
    token_type: str = "Bearer"
    extra: dict[str, Any] = field(default_factory=dict)

    def expires_within(self, skew: timedelta, now: datetime | None = None) -> bool:
        """Return True if the access token is expired or expires within ``skew``."""
        now = now or utc_now()
        return now >= self.expires_at - skew

    def rotated(
        self,
        access_token: str,
        expires_at: datetime,
        refresh_token: str | None = None,
        **extra: Any,
    ) -> Credential:
        """Return a copy carrying a refreshed access token.

        The refresh token is kept when the provider does not rotate it.
        """
        return replace(
            self,
            access_token=access_token,
            refresh_token=refresh_token or self.refresh_token,
            expires_at=expires_at,
            extra={**self.extra, **extra},
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider_id": self.provider_id,
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at.isoformat(),
            "scope": list(self.scope),
            "token_type": self.token_type,
            "extra": dict(self.extra),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Credential:
        expires_at = parse_iso_datetime(data.get("expires_at"))
        if expires_at is None:
            raise ValueError("Credential is missing a valid 'expires_at'")
        scope = data.get("scope") or []
        if isinstance(scope, str):
            scope = [s for s in scope.replace(" ", ",").split(",") if s]
        return cls(
            provider_id=data["provider_id"],
            access_token=data["access_token"],
            refresh_token=data["refresh_token"],
            expires_at=expires_at,
            scope=list(scope),
            token_type=data.get("token_type", "Bearer"),
            extra=dict(data.get("extra") or {}),
        )

    def __repr__(self) -> str:
        # Keep tokens out of logs and tracebacks.
        return (
            f"Credential(provider_id={self.provider_id!r}, "
            f"expires_at={self.expires_at.isoformat()!r}, scope={self.scope!r})"
        )


# ---------------------------------------------------------------------------
# Measurements and sync state
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Measurement:
    """A single timestamped metric reading fetched from a provider.

    Attributes:
        provider_id: Provider the reading came from.
        metric_kind: What was measured.
        value:       Numeric value in ``unit``.
        unit:        Unit string ('kg').
        observed_at: UTC timestamp of the reading.
        source_id:   Provider-side record id, when the provider exposes one.
    """

    provider_id: str
    metric_kind: MetricKind
    value: float
    unit: str
    observed_at: datetime
    source_id: str | None = None


@dataclass(frozen=True)
class SyncMarker:
    """Record of the last measurement successfully pushed for a metric.

    Attributes:
        metric_kind:       Metric this marker tracks.
        last_synced_at:    ``observed_at`` of the last pushed measurement.
        last_synced_value: Value of the last pushed measurement.
        committed_at:      When the marker was written.
    """

    metric_kind: MetricKind
    last_synced_at: datetime
    last_synced_value: float
    committed_at: datetime = field(default_factory=utc_now)

    def covers(self, measurement: Measurement) -> bool:
        """Return True if ``measurement`` has already been synced.

        A measurement is covered when it is older than the marker, or carries
        the same timestamp and the same value.  Same timestamp with a different
        value (an edited reading) is not covered.
        """
        if measurement.observed_at < self.last_synced_at:
            return True
        return (
            measurement.observed_at == self.last_synced_at
            and measurement.value == self.last_synced_value
        )

    @classmethod
    def for_measurement(cls, measurement: Measurement) -> SyncMarker:
        return cls(
            metric_kind=measurement.metric_kind,
            last_synced_at=measurement.observed_at,
            last_synced_value=measurement.value,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "metric_kind": self.metric_kind.value,
            "last_synced_at": self.last_synced_at.isoformat(),
            "last_synced_value": self.last_synced_value,
            "committed_at": self.committed_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncMarker:
        last_synced_at = parse_iso_datetime(data.get("last_synced_at"))
        if last_synced_at is None:
            raise ValueError("SyncMarker is missing a valid 'last_synced_at'")
        return cls(
            metric_kind=MetricKind(data["metric_kind"]),
            last_synced_at=last_synced_at,
            last_synced_value=float(data["last_synced_value"]),
            committed_at=parse_iso_datetime(data.get("committed_at")) or utc_now(),
        )


@dataclass(frozen=True)
class Ack:
    """Confirmation that a target provider accepted a pushed measurement.

    Attributes:
        provider_id: Provider that accepted the push.
        status:      HTTP status code of the accepting response.
        detail:      Short human-readable summary.
    """

    provider_id: str
    status: int
    detail: str = ""
