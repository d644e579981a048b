"""Exception hierarchy for fitness-connect.

Every error names the provider it concerns (when there is one) and may carry a
``help`` hint telling the user how to fix it.  The CLI is the only layer that
turns these into messages and exit codes.

    FitnessConnectError
    ├── ConfigurationError      missing client id/secret, unknown provider id
    ├── CredentialNotFound      no registration has happened yet
    ├── LocalStateError         a local state file is unreadable or unwritable
    │   ├── CredentialStoreError
    │   └── MarkerStoreError
    ├── AuthExpired             refresh token rejected, re-register
    └── ProviderError
        ├── TransientError      network / 5xx / rate limit, safe to retry
        └── PermanentError      any other 4xx, never retried
            └── UnsupportedOperation
"""

from __future__ import annotations


class FitnessConnectError(Exception):
    """Base class for all fitness-connect errors."""

    def __init__(
        self,
        message: str,
        provider_id: str | None = None,
        help: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.provider_id = provider_id
        self.help = help

    def __str__(self) -> str:
        if self.provider_id:
            return f"[{self.provider_id}] {self.message}"
        return self.message


class ConfigurationError(FitnessConnectError):
    """Required configuration (e.g. an OAuth client id) is missing or invalid."""


class CredentialNotFound(FitnessConnectError):
    """No credential has been stored for the provider."""

    def __init__(self, provider_id: str) -> None:
        super().__init__(
            "No stored credential",
            provider_id=provider_id,
            help=f"Run `fitness-connect register {provider_id}` first",
        )


class LocalStateError(FitnessConnectError):
    """A file under the local state directory cannot be read or written."""


class CredentialStoreError(LocalStateError):
    """A stored credential exists but cannot be read or written."""


class MarkerStoreError(LocalStateError):
    """The sync marker file is corrupt or cannot be written."""


class AuthExpired(FitnessConnectError):
    """The provider rejected the refresh token (or a revoked access token)."""

    def __init__(self, provider_id: str, message: str = "Authorization expired") -> None:
        super().__init__(
            message,
            provider_id=provider_id,
            help=f"Re-run `fitness-connect register {provider_id}` to authorize again",
        )


class ProviderError(FitnessConnectError):
    """A remote provider call failed.

    Attributes:
        status_code: HTTP (or provider envelope) status, when known.
        attempts:    How many times the failing call was tried.
    """

    def __init__(
        self,
        message: str,
        provider_id: str | None = None,
        status_code: int | None = None,
        help: str | None = None,
    ) -> None:
        super().__init__(message, provider_id=provider_id, help=help)
        self.status_code = status_code
        self.attempts = 1


class TransientError(ProviderError):
    """Retryable failure: network error, timeout, 5xx or rate limiting."""


class PermanentError(ProviderError):
    """Non-retryable failure: the request itself is wrong or rejected."""


class UnsupportedOperation(PermanentError):
    """The provider does not implement the requested capability."""
