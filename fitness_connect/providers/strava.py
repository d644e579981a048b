"""Strava API v3 adapter (activity-tracking target).

Environment variables:
    STRAVA_CLIENT_ID      — OAuth2 client ID
    STRAVA_CLIENT_SECRET  — OAuth2 client secret
    STRAVA_REDIRECT_URI   — Redirect URI (its host must match the app's callback domain)

API base: https://www.strava.com/api/v3

Endpoints used:
    /oauth/token            — Authorization-code and refresh exchange
    /athlete          GET   — Authenticated athlete profile
    /athlete          PUT   — Update athlete weight (needs profile:write)
    /athletes/{id}/stats    — Ride / run / swim totals
"""

from __future__ import annotations

import logging
from urllib.parse import urlencode

import httpx
from pydantic import ValidationError

from fitness_connect.auth.oauth import ClientCredentials, OAuth2Provider
from fitness_connect.base import Ack, Credential, Measurement, MetricKind, from_epoch
from fitness_connect.errors import (
    AuthExpired,
    ConfigurationError,
    PermanentError,
    TransientError,
)
from fitness_connect.models.athlete import AthleteProfile, AthleteStats
from fitness_connect.providers.base import (
    Capability,
    ProviderClient,
    ProviderGateway,
    _error_message,
)

logger = logging.getLogger("fitness_connect.providers.strava")

_PROVIDER_ID = "strava"

# Unit → multiplier to kilograms
_TO_KG: dict[str, float] = {
    "kg": 1.0,
    "g": 0.001,
    "lb": 0.45359237,
    "lbs": 0.45359237,
}


class StravaOAuth(ProviderClient, OAuth2Provider):
    """Strava OAuth2 token endpoint.  Strava may rotate the refresh token."""

    PROVIDER_ID = _PROVIDER_ID

    @property
    def default_redirect_uri(self) -> str:
        return self._spec.redirect_uri

    def authorization_url(self, client: ClientCredentials, state: str) -> str:
        query = urlencode(
            {
                "client_id": client.client_id,
                "redirect_uri": client.redirect_uri,
                "response_type": "code",
                "approval_prompt": "auto",
                "scope": ",".join(self._spec.scopes),
                "state": state,
            },
            safe=",:/",
        )
        return f"{self._spec.auth_url}?{query}"

    async def exchange_code(self, client: ClientCredentials, code: str) -> Credential:
        logger.info("Strava: exchanging authorization code")
        data = await self._request_token(
            client, {"grant_type": "authorization_code", "code": code}, refreshing=False
        )
        credential = self._credential_from(data, scope=list(self._spec.scopes))
        logger.info("Strava: authorized athlete %s", credential.extra.get("athlete_id"))
        return credential

    async def refresh(self, client: ClientCredentials, credential: Credential) -> Credential:
        logger.info("Strava: refreshing access token")
        data = await self._request_token(
            client,
            {"grant_type": "refresh_token", "refresh_token": credential.refresh_token},
            refreshing=True,
        )
        fresh = self._credential_from(data, scope=credential.scope)
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
            check=False,
            data={"client_id": client.client_id, "client_secret": client.client_secret, **data},
        )
        if response.is_success:
            return self._json(response)

        message = _error_message(response)
        if response.status_code == 429 or response.status_code >= 500:
            raise TransientError(message, provider_id=_PROVIDER_ID, status_code=response.status_code)
        if self._rejects_application(response):
            raise ConfigurationError(
                f"Strava rejected the OAuth application: {message}",
                provider_id=_PROVIDER_ID,
                help="Check the STRAVA_CLIENT_ID and STRAVA_CLIENT_SECRET environment variables",
            )
        if refreshing and response.status_code in (400, 401):
            raise AuthExpired(_PROVIDER_ID, f"Refresh token rejected: {message}")
        raise PermanentError(
            f"Token exchange failed: {message}",
            provider_id=_PROVIDER_ID,
            status_code=response.status_code,
        )

    @staticmethod
    def _rejects_application(response: httpx.Response) -> bool:
        """True when Strava's fault list blames the client id/secret."""
        try:
            errors = response.json().get("errors") or []
        except (ValueError, AttributeError):
            return False
        return any(e.get("resource") == "Application" for e in errors if isinstance(e, dict))

    def _credential_from(self, data: dict, scope: list[str]) -> Credential:
        try:
            access_token = data["access_token"]
            refresh_token = data["refresh_token"]
            expires_at = from_epoch(int(data["expires_at"]))
        except (KeyError, TypeError, ValueError) as exc:
            raise PermanentError(
                f"Malformed token response: {exc}", provider_id=_PROVIDER_ID
            ) from exc

        extra = {}
        athlete = data.get("athlete") or {}
        if athlete.get("id") is not None:
            extra["athlete_id"] = int(athlete["id"])
        if athlete.get("username"):
            extra["athlete_username"] = athlete["username"]

        return Credential(
            provider_id=_PROVIDER_ID,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
            scope=list(scope),
            token_type=data.get("token_type", "Bearer"),
            extra=extra,
        )


class StravaGateway(ProviderGateway):
    """Strava athlete profile, stats and weight updates."""

    PROVIDER_ID = _PROVIDER_ID
    DISPLAY_NAME = "Strava"
    CAPABILITIES = frozenset(
        {
            Capability.PUSH_MEASUREMENT,
            Capability.ATHLETE_PROFILE,
            Capability.ATHLETE_STATS,
        }
    )

    async def push_measurement(self, measurement: Measurement, credential: Credential) -> Ack:
        """Set the athlete's weight to ``measurement``.

        Args:
            measurement: A weight measurement in kg, g or lb.
            credential:  Valid Strava credential with ``profile:write`` scope.

        Returns:
            Ack from the accepting response.
        """
        self._check_credential(credential)
        if measurement.metric_kind is not MetricKind.WEIGHT:
            raise PermanentError(
                f"Strava only accepts weight, not '{measurement.metric_kind.value}'",
                provider_id=_PROVIDER_ID,
            )
        weight_kg = self._to_kg(measurement)

        response = await self._request(
            "PUT",
            f"{self._spec.api_base}/athlete",
            access_token=credential.access_token,
            data={"weight": f"{weight_kg:.2f}"},
        )
        logger.info("Strava: athlete weight set to %.2f kg", weight_kg)
        return Ack(
            provider_id=_PROVIDER_ID,
            status=response.status_code,
            detail=f"Weight updated in Strava to {weight_kg:.2f} kg",
        )

    async def get_athlete_profile(self, credential: Credential) -> AthleteProfile:
        self._check_credential(credential)
        response = await self._request(
            "GET", f"{self._spec.api_base}/athlete", access_token=credential.access_token
        )
        return self._parse(AthleteProfile, self._json(response))

    async def get_athlete_stats(self, credential: Credential) -> AthleteStats:
        """Fetch totals for the authenticated athlete.

        The athlete id comes from the credential when registration recorded it;
        otherwise the profile is fetched first to learn it.
        """
        self._check_credential(credential)
        athlete_id = credential.extra.get("athlete_id")
        if athlete_id is None:
            athlete_id = (await self.get_athlete_profile(credential)).id

        response = await self._request(
            "GET",
            f"{self._spec.api_base}/athletes/{athlete_id}/stats",
            access_token=credential.access_token,
        )
        return self._parse(AthleteStats, self._json(response))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _to_kg(measurement: Measurement) -> float:
        factor = _TO_KG.get(measurement.unit.lower())
        if factor is None:
            raise PermanentError(
                f"Cannot convert weight unit '{measurement.unit}' to kg",
                provider_id=_PROVIDER_ID,
            )
        weight = measurement.value * factor
        if weight <= 0:
            raise PermanentError(
                f"Refusing to push non-positive weight {weight}", provider_id=_PROVIDER_ID
            )
        return weight

    @staticmethod
    def _parse(model: type, payload: object):
        try:
            return model.model_validate(payload)
        except ValidationError as exc:
            raise PermanentError(
                f"Unexpected {model.__name__} payload: {exc.error_count()} error(s)",
                provider_id=_PROVIDER_ID,
            ) from exc
