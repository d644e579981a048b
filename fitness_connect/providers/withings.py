"""Withings Health API adapter (body-metrics source).

Environment variables:
    WITHINGS_CLIENT_ID      — OAuth2 client ID
    WITHINGS_CLIENT_SECRET  — OAuth2 client secret
    WITHINGS_REDIRECT_URI   — Redirect URI registered with the application

API base: https://wbsapi.withings.net

Endpoints used:
    /v2/oauth2  action=requesttoken  — Authorization-code and refresh exchange
    /measure    action=getmeas       — Body measurements (meastype 1 = weight)

Withings answers HTTP 200 for almost everything and reports failures in a
``{"status": <int>, "body": {...}, "error": "..."}`` envelope; ``status`` 0
means success.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any
from urllib.parse import urlencode

from fitness_connect.auth.oauth import ClientCredentials, OAuth2Provider
from fitness_connect.base import (
    Credential,
    Measurement,
    MetricKind,
    from_epoch,
    utc_now,
)
from fitness_connect.errors import AuthExpired, PermanentError, TransientError
from fitness_connect.providers.base import Capability, ProviderClient, ProviderGateway

logger = logging.getLogger("fitness_connect.providers.withings")

_PROVIDER_ID = "withings"

# Envelope statuses meaning the token (or the authorization code) is no good.
_AUTH_STATUSES = frozenset({100, 101, 102, 200, 401})
# Rate limiting and Withings-side internal errors.
_TRANSIENT_STATUSES = frozenset({601, 2554, 2555})
# "Invalid params": on a refresh grant this is how a dead refresh token shows up.
_INVALID_PARAMS_STATUS = 503

_MEASTYPE_WEIGHT = 1
_CATEGORY_REAL = 1
# Device readings Withings could not attribute to the user with confidence.
_AMBIGUOUS_ATTRIBS = frozenset({1, 4})
_MAX_PAGES = 10

_METRIC_MEASTYPES: dict[MetricKind, int] = {
    MetricKind.WEIGHT: _MEASTYPE_WEIGHT,
}


def _unwrap(payload: Any, refreshing: bool = False) -> dict:
    """Return the ``body`` of a Withings envelope or raise a classified error."""
    if not isinstance(payload, dict) or "status" not in payload:
        raise PermanentError("Unexpected response shape", provider_id=_PROVIDER_ID)

    status = payload["status"]
    if status == 0:
        return payload.get("body") or {}

    message = f"Withings status {status}: {payload.get('error') or 'request failed'}"
    if status in _AUTH_STATUSES or (refreshing and status == _INVALID_PARAMS_STATUS):
        raise AuthExpired(_PROVIDER_ID, message)
    if status in _TRANSIENT_STATUSES:
        raise TransientError(message, provider_id=_PROVIDER_ID, status_code=status)
    raise PermanentError(message, provider_id=_PROVIDER_ID, status_code=status)


def _scaled(value: int, unit: int) -> float:
    """Withings reports ``value * 10**unit``; return it as a float, rounded."""
    if unit >= 0:
        return round(float(value * 10**unit), 3)
    return round(value / 10 ** (-unit), 3)


class WithingsOAuth(ProviderClient, OAuth2Provider):
    """Withings OAuth2 token endpoint.  Withings rotates refresh tokens."""

    PROVIDER_ID = _PROVIDER_ID

    @property
    def default_redirect_uri(self) -> str:
        return self._spec.redirect_uri

    def authorization_url(self, client: ClientCredentials, state: str) -> str:
        query = urlencode(
            {
                "response_type": "code",
                "client_id": client.client_id,
                "scope": ",".join(self._spec.scopes),
                "redirect_uri": client.redirect_uri,
                "state": state,
            },
            safe=",:/",
        )
        return f"{self._spec.auth_url}?{query}"

    async def exchange_code(self, client: ClientCredentials, code: str) -> Credential:
        logger.info("Withings: exchanging authorization code")
        body = await self._request_token(
            client,
            {"grant_type": "authorization_code", "code": code, "redirect_uri": client.redirect_uri},
            refreshing=False,
        )
        return self._credential_from(body)

    async def refresh(self, client: ClientCredentials, credential: Credential) -> Credential:
        logger.info("Withings: refreshing access token")
        body = await self._request_token(
            client,
            {"grant_type": "refresh_token", "refresh_token": credential.refresh_token},
            refreshing=True,
        )
        fresh = self._credential_from(body, fallback_scope=credential.scope)
        return credential.rotated(
            access_token=fresh.access_token,
            refresh_token=fresh.refresh_token,
            expires_at=fresh.expires_at,
            **fresh.extra,
        )

    async def _request_token(
        self, client: ClientCredentials, data: dict[str, str], refreshing: bool
    ) -> dict:
        response = await self._request(
            "POST",
            self._spec.token_url,
            data={
                "action": "requesttoken",
                "client_id": client.client_id,
                "client_secret": client.client_secret,
                **data,
            },
        )
        return _unwrap(self._json(response), refreshing=refreshing)

    def _credential_from(self, body: dict, fallback_scope: list[str] | None = None) -> Credential:
        try:
            access_token = body["access_token"]
            refresh_token = body["refresh_token"]
        except KeyError as exc:
            raise PermanentError(
                f"Token response missing {exc.args[0]!r}", provider_id=_PROVIDER_ID
            ) from exc

        expires_in = int(body.get("expires_in", 10800))
        scope_raw = body.get("scope")
        scope = [s for s in scope_raw.split(",") if s] if scope_raw else list(fallback_scope or self._spec.scopes)
        extra = {"userid": str(body["userid"])} if body.get("userid") is not None else {}

        return Credential(
            provider_id=_PROVIDER_ID,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=utc_now().replace(microsecond=0) + timedelta(seconds=expires_in),
            scope=scope,
            token_type=body.get("token_type", "Bearer"),
            extra=extra,
        )


class WithingsGateway(ProviderGateway):
    """Withings measurement reader.

    Only reads: Withings is the source side of the sync and exposes no
    athlete profile or push operation here.
    """

    PROVIDER_ID = _PROVIDER_ID
    DISPLAY_NAME = "Withings"
    CAPABILITIES = frozenset({Capability.LATEST_MEASUREMENT})

    async def get_latest_measurement(
        self,
        metric_kind: MetricKind,
        credential: Credential,
        since: datetime | None = None,
    ) -> Measurement | None:
        """Fetch the most recent reading of ``metric_kind``.

        Args:
            metric_kind: Metric to fetch (only weight is supported).
            credential:  Valid Withings credential.
            since:       Only groups updated after this time (``lastupdate``).

        Returns:
            The newest Measurement in kilograms, or None when there is none.
        """
        self._check_credential(credential)
        meastype = _METRIC_MEASTYPES.get(metric_kind)
        if meastype is None:
            raise PermanentError(
                f"Withings does not provide '{metric_kind.value}'", provider_id=_PROVIDER_ID
            )

        params: dict[str, Any] = {
            "action": "getmeas",
            "meastype": meastype,
            "category": _CATEGORY_REAL,
        }
        if since is not None:
            params["lastupdate"] = int(since.timestamp())

        groups: list[dict] = []
        for _ in range(_MAX_PAGES):
            response = await self._request(
                "POST",
                f"{self._spec.api_base}/measure",
                access_token=credential.access_token,
                data=params,
            )
            body = _unwrap(self._json(response))
            groups.extend(body.get("measuregrps") or [])
            if not body.get("more"):
                break
            params["offset"] = body.get("offset", 0)
        else:
            logger.warning("Withings: stopped paging after %d pages", _MAX_PAGES)

        measurement = self._latest(groups, metric_kind, meastype)
        if measurement is None:
            logger.info("Withings: no %s measurement available", metric_kind.value)
        else:
            logger.info(
                "Withings: latest %s %.2f %s at %s",
                metric_kind.value,
                measurement.value,
                measurement.unit,
                measurement.observed_at.isoformat(),
            )
        return measurement

    def _latest(
        self, groups: list[dict], metric_kind: MetricKind, meastype: int
    ) -> Measurement | None:
        """Pick the newest group holding a ``meastype`` measure.

        Pure function over the ``measuregrps`` list — no I/O.
        """
        best: Measurement | None = None
        for group in groups:
            if group.get("category", _CATEGORY_REAL) != _CATEGORY_REAL:
                continue
            if group.get("attrib") in _AMBIGUOUS_ATTRIBS:
                continue
            if group.get("date") is None:
                continue

            measure = next(
                (m for m in group.get("measures") or [] if m.get("type") == meastype),
                None,
            )
            if measure is None or measure.get("value") is None:
                continue

            candidate = Measurement(
                provider_id=_PROVIDER_ID,
                metric_kind=metric_kind,
                value=_scaled(int(measure["value"]), int(measure.get("unit", 0))),
                unit="kg",
                observed_at=from_epoch(group["date"]),
                source_id=str(group["grpid"]) if group.get("grpid") is not None else None,
            )
            if best is None or candidate.observed_at > best.observed_at:
                best = candidate
        return best
