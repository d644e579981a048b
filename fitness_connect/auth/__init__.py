"""OAuth2 credential lifecycle: persistence, registration and refresh."""

from fitness_connect.auth.oauth import (
    DEFAULT_SKEW,
    ClientCredentials,
    OAuth2Authenticator,
    OAuth2Provider,
    extract_authorization_code,
)
from fitness_connect.auth.store import CredentialStore, FileCredentialStore

__all__ = [
    "DEFAULT_SKEW",
    "ClientCredentials",
    "CredentialStore",
    "FileCredentialStore",
    "OAuth2Authenticator",
    "OAuth2Provider",
    "extract_authorization_code",
]
