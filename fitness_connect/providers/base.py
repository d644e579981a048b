"""Provider gateway interface and the HTTP plumbing shared by provider clients.

Every provider client subclasses ProviderGateway and declares the subset of
operations it supports in ``CAPABILITIES``.  Operations it does not override
raise UnsupportedOperation, which callers treat like any other permanent
error.

Gateways never manage token lifecycle: every operation receives a Credential
that the caller has already validated through the authenticator.

HTTP failures are classified the same way for every provider:

    network error / timeout      → TransientError
    429, 5xx                     → TransientError
    401                          → AuthExpired
    any other 4xx                → PermanentError
"""

from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from typing import Any

import httpx

from fitness_connect.base import Ack, Credential, Measurement, MetricKind
from fitness_connect.config_loader import ProviderSpec
from fitness_connect.errors import (
    AuthExpired,
    FitnessConnectError,
    PermanentError,
    TransientError,
    UnsupportedOperation,
)
from fitness_connect.models.athlete import AthleteProfile, AthleteStats

logger = logging.getLogger("fitness_connect.providers")

DEFAULT_TIMEOUT_SECONDS = 20.0


class Capability(str, Enum):
    """Operations a provider gateway may support."""

    LATEST_MEASUREMENT = "latest_measurement"
    PUSH_MEASUREMENT = "push_measurement"
    ATHLETE_PROFILE = "athlete_profile"
    ATHLETE_STATS = "athlete_stats"


def classify_status(
    provider_id: str, status_code: int, message: str
) -> FitnessConnectError:
    """Map an HTTP status code to the error taxonomy."""
    if status_code == 401:
        return AuthExpired(provider_id, f"Access token rejected: {message}")
    if status_code == 429 or status_code >= 500:
        return TransientError(message, provider_id=provider_id, status_code=status_code)
    return PermanentError(message, provider_id=provider_id, status_code=status_code)


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        for key in ("message", "error_description", "error"):
            if body.get(key):
                return f"HTTP {response.status_code}: {body[key]}"
    return f"HTTP {response.status_code}: {response.reason_phrase}"


class ProviderClient:
    """Base for anything that talks HTTP to a provider.

    Attributes:
        PROVIDER_ID: Provider slug, used in errors and logs.
    """

    PROVIDER_ID: str = "unknown"

    def __init__(
        self,
        spec: ProviderSpec,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        """Initialize the client.

        Args:
            spec:        Endpoints and scopes from the provider catalog.
            http_client: Optional pre-configured httpx client (for testing).
            timeout:     Per-request timeout when no client is injected.
        """
        self._spec = spec
        self._http_client = http_client
        self._timeout = timeout

    @property
    def spec(self) -> ProviderSpec:
        return self._spec

    def _build_headers(self, access_token: str | None) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        return headers

    async def _request(
        self,
        method: str,
        url: str,
        access_token: str | None = None,
        check: bool = True,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request and classify transport and HTTP failures.

        Args:
            method:       HTTP method.
            url:          Full endpoint URL.
            access_token: Bearer token, if the call is authenticated.
            check:        Raise on non-2xx responses.
            **kwargs:     Passed through to ``httpx.AsyncClient.request``.

        Raises:
            TransientError, AuthExpired, PermanentError.
        """
        headers = {**self._build_headers(access_token), **kwargs.pop("headers", {})}
        try:
            if self._http_client is not None:
                response = await self._http_client.request(method, url, headers=headers, **kwargs)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.request(method, url, headers=headers, **kwargs)
        except httpx.TimeoutException as exc:
            raise TransientError(
                f"{method} {url} timed out", provider_id=self.PROVIDER_ID
            ) from exc
        except httpx.TransportError as exc:
            raise TransientError(
                f"{method} {url} failed: {exc}", provider_id=self.PROVIDER_ID
            ) from exc

        logger.debug("%s %s → %d", method, url, response.status_code)
        if check and response.is_error:
            raise classify_status(self.PROVIDER_ID, response.status_code, _error_message(response))
        return response

    def _json(self, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise PermanentError(
                f"Non-JSON response (HTTP {response.status_code})",
                provider_id=self.PROVIDER_ID,
                status_code=response.status_code,
            ) from exc


class ProviderGateway(ProviderClient):
    """Uniform data-access surface over a provider's API.

    Subclasses override the operations listed in ``CAPABILITIES``:
        - get_latest_measurement()
        - push_measurement()
        - get_athlete_profile()
        - get_athlete_stats()
    """

    #: Human-readable name for logging and messages.
    DISPLAY_NAME: str = "Unknown Provider"

    #: Operations this gateway implements.
    CAPABILITIES: frozenset[Capability] = frozenset()

    def supports(self, capability: Capability) -> bool:
        return capability in self.CAPABILITIES

    def _unsupported(self, capability: Capability) -> UnsupportedOperation:
        return UnsupportedOperation(
            f"{self.DISPLAY_NAME} does not support '{capability.value}'",
            provider_id=self.PROVIDER_ID,
        )

    def _check_credential(self, credential: Credential) -> None:
        if credential.provider_id != self.PROVIDER_ID:
            raise PermanentError(
                f"Credential for '{credential.provider_id}' passed to {self.DISPLAY_NAME}",
                provider_id=self.PROVIDER_ID,
            )

    # ------------------------------------------------------------------
    # Optional capabilities
    # ------------------------------------------------------------------

    async def get_latest_measurement(
        self,
        metric_kind: MetricKind,
        credential: Credential,
        since: datetime | None = None,
    ) -> Measurement | None:
        """Return the most recent reading of ``metric_kind``, or None if there is none.

        Args:
            metric_kind: What to fetch.
            credential:  Valid credential for this provider.
            since:       Only consider readings updated after this UTC datetime.
        """
        raise self._unsupported(Capability.LATEST_MEASUREMENT)

    async def push_measurement(self, measurement: Measurement, credential: Credential) -> Ack:
        """Write ``measurement`` to the provider and return an Ack."""
        raise self._unsupported(Capability.PUSH_MEASUREMENT)

    async def get_athlete_profile(self, credential: Credential) -> AthleteProfile:
        raise self._unsupported(Capability.ATHLETE_PROFILE)

    async def get_athlete_stats(self, credential: Credential) -> AthleteStats:
        raise self._unsupported(Capability.ATHLETE_STATS)
