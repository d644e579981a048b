"""OAuth2 authorization-code registration and transparent token refresh.

Two entry points:

* ``OAuth2Authenticator.register`` runs the one-time, human-in-the-loop
  authorization-code flow and stores the resulting credential.
* ``OAuth2Authenticator.ensure_valid`` returns a usable credential, refreshing
  it first when it expires within the configured skew.

Provider-specific token endpoints sit behind ``OAuth2Provider``; the
authenticator itself only deals with timing, locking and persistence.

Usage::

    authenticator = OAuth2Authenticator(
        store=FileCredentialStore(settings.credentials_dir),
        providers={"strava": StravaOAuth(spec)},
        clients={"strava": ClientCredentials("123", "secret", "http://localhost")},
    )
    credential = await authenticator.ensure_valid("strava")
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable
from urllib.parse import parse_qs, urlsplit

from fitness_connect.auth.store import CredentialStore
from fitness_connect.base import Credential, utc_now
from fitness_connect.errors import ConfigurationError, PermanentError

logger = logging.getLogger("fitness_connect.auth.oauth")

DEFAULT_SKEW = timedelta(seconds=60)


@dataclass(frozen=True)
class ClientCredentials:
    """OAuth application credentials registered with a provider."""

    client_id: str
    client_secret: str
    redirect_uri: str

    def __repr__(self) -> str:
        return f"ClientCredentials(client_id={self.client_id!r}, redirect_uri={self.redirect_uri!r})"


class OAuth2Provider(ABC):
    """Token-endpoint operations for one provider.

    Implementations must raise:
        AuthExpired:    when the refresh token is rejected.
        TransientError: on network errors, timeouts, 5xx and rate limiting.
        PermanentError: on any other rejection.
    """

    #: Provider slug, matching the credential store key.
    PROVIDER_ID: str = "unknown"

    #: Redirect URI used when none is configured.
    default_redirect_uri: str = "http://localhost"

    @abstractmethod
    def authorization_url(self, client: ClientCredentials, state: str) -> str:
        """Build the URL the user opens to grant access."""

    @abstractmethod
    async def exchange_code(self, client: ClientCredentials, code: str) -> Credential:
        """Exchange an authorization code for an access + refresh token pair."""

    @abstractmethod
    async def refresh(self, client: ClientCredentials, credential: Credential) -> Credential:
        """Exchange the credential's refresh token for a new access token."""


def extract_authorization_code(
    reply: str, provider_id: str, expected_state: str | None = None
) -> str:
    """Pull the authorization code out of what the user pasted.

    Accepts either the bare code or the full redirect URL.  When a URL is
    pasted, an ``error`` parameter is rejected, and so is a missing or
    mismatching ``state`` when ``expected_state`` is given.

    Raises:
        PermanentError: If no usable code is present.
    """
    reply = reply.strip()
    if not reply:
        raise PermanentError("No authorization code entered", provider_id=provider_id)

    if "code=" not in reply and "error=" not in reply:
        return reply

    query = urlsplit(reply).query or reply.split("?", 1)[-1]
    params = parse_qs(query)
    if "error" in params:
        raise PermanentError(
            f"Authorization denied: {params['error'][0]}",
            provider_id=provider_id,
            help="Approve the requested access in the browser and try again",
        )
    if expected_state is not None and params.get("state", [None])[0] != expected_state:
        raise PermanentError(
            "Authorization state mismatch",
            provider_id=provider_id,
            help="Use the URL printed by this registration attempt",
        )
    codes = params.get("code")
    if not codes or not codes[0]:
        raise PermanentError(
            "Redirect URL does not contain a code", provider_id=provider_id
        )
    return codes[0]


class OAuth2Authenticator:
    """Drive registration and refresh for any number of providers."""

    def __init__(
        self,
        store: CredentialStore,
        providers: dict[str, OAuth2Provider],
        clients: dict[str, ClientCredentials] | None = None,
        skew: timedelta = DEFAULT_SKEW,
        clock: Callable[[], datetime] = utc_now,
        prompt: Callable[[str], str] = input,
        announce: Callable[[str], None] = print,
    ) -> None:
        """Initialize the authenticator.

        Args:
            store:     Credential persistence.
            providers: provider_id → token-endpoint implementation.
            clients:   provider_id → OAuth application credentials used for refresh.
            skew:      Refresh this long before the access token actually expires.
            clock:     Returns the current aware UTC time.
            prompt:    Blocking callable that asks the user for the authorization code.
            announce:  Callable that shows the authorization URL to the user.
        """
        self._store = store
        self._providers = dict(providers)
        self._clients = dict(clients or {})
        self._skew = skew
        self._clock = clock
        self._prompt = prompt
        self._announce = announce
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def store(self) -> CredentialStore:
        return self._store

    def _lock_for(self, provider_id: str) -> asyncio.Lock:
        return self._locks.setdefault(provider_id, asyncio.Lock())

    def _provider(self, provider_id: str) -> OAuth2Provider:
        try:
            return self._providers[provider_id]
        except KeyError:
            raise ConfigurationError(
                f"Unknown provider '{provider_id}'",
                provider_id=provider_id,
                help=f"Available providers: {', '.join(sorted(self._providers))}",
            ) from None

    def _client(self, provider_id: str) -> ClientCredentials:
        client = self._clients.get(provider_id)
        if client is None or not client.client_id or not client.client_secret:
            env = provider_id.upper()
            raise ConfigurationError(
                "Missing OAuth client id or secret",
                provider_id=provider_id,
                help=f"Set the {env}_CLIENT_ID and {env}_CLIENT_SECRET environment variables",
            )
        return client

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def register(
        self,
        provider_id: str,
        client_id: str,
        client_secret: str,
        redirect_uri: str | None = None,
    ) -> Credential:
        """Run the interactive authorization-code flow and store the result.

        Blocks until the user pastes the code; there is no timeout here, the
        caller may wrap this in one.

        Args:
            provider_id:   Provider to register.
            client_id:     OAuth client id of the registered application.
            client_secret: OAuth client secret.
            redirect_uri:  Redirect URI registered with the provider.

        Returns:
            The newly stored Credential.
        """
        provider = self._provider(provider_id)
        if not client_id or not client_secret:
            env = provider_id.upper()
            raise ConfigurationError(
                "Missing OAuth client id or secret",
                provider_id=provider_id,
                help=f"Set the {env}_CLIENT_ID and {env}_CLIENT_SECRET environment variables",
            )

        known = self._clients.get(provider_id)
        client = ClientCredentials(
            client_id=client_id,
            client_secret=client_secret,
            redirect_uri=redirect_uri
            or (known.redirect_uri if known else provider.default_redirect_uri),
        )

        state = secrets.token_urlsafe(16)
        url = provider.authorization_url(client, state)
        self._announce(
            f"Open this URL in a browser and authorize access:\n\n    {url}\n"
        )
        logger.info("Waiting for %s authorization code", provider_id)
        reply = await asyncio.to_thread(
            self._prompt, "Paste the authorization code (or the full redirect URL): "
        )
        code = extract_authorization_code(reply, provider_id, expected_state=state)

        async with self._lock_for(provider_id):
            credential = await provider.exchange_code(client, code)
            self._store.save(credential)

        self._clients[provider_id] = client
        logger.info("Registered %s", provider_id)
        return credential

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def ensure_valid(self, provider_id: str) -> Credential:
        """Return a credential whose access token is usable right now.

        Refreshes and persists when ``now >= expires_at - skew``.  Calls for the
        same provider are serialized, and the credential is re-read under the
        lock, so concurrent callers trigger a single refresh.

        Raises:
            CredentialNotFound: If the provider was never registered.
            AuthExpired:        If the refresh token was rejected.
            ConfigurationError: If refresh is needed but no client is configured.
        """
        provider = self._provider(provider_id)
        async with self._lock_for(provider_id):
            credential = self._store.load(provider_id)
            if not credential.expires_within(self._skew, self._clock()):
                logger.debug(
                    "%s token valid until %s",
                    provider_id,
                    credential.expires_at.isoformat(),
                )
                return credential

            client = self._client(provider_id)
            logger.info(
                "Refreshing %s token (expired or expiring at %s)",
                provider_id,
                credential.expires_at.isoformat(),
            )
            refreshed = await provider.refresh(client, credential)
            self._store.save(refreshed)
            return refreshed
