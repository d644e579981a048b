"""fitness-connect: sync body measurements from Withings to Strava.

Subpackages:
    auth/      — Credential store and OAuth2 registration/refresh
    providers/ — Withings (source) and Strava (target) API clients
    sync/      — Sync markers, retry policy and the sync orchestrator
    models/    — Read models for athlete profile and stats

Core modules:
    base           — Credential, Measurement, SyncMarker and Ack
    errors         — Exception hierarchy
    config         — Environment settings (pydantic-settings)
    config_loader  — Load/validate providers.yaml
    cli            — ``fitness-connect`` command line
"""

from fitness_connect.base import Ack, Credential, Measurement, MetricKind, SyncMarker
from fitness_connect.errors import (
    AuthExpired,
    ConfigurationError,
    CredentialNotFound,
    CredentialStoreError,
    FitnessConnectError,
    LocalStateError,
    MarkerStoreError,
    PermanentError,
    ProviderError,
    TransientError,
    UnsupportedOperation,
)

__version__ = "0.1.0"

__all__ = [
    "Ack",
    "AuthExpired",
    "ConfigurationError",
    "Credential",
    "CredentialNotFound",
    "CredentialStoreError",
    "FitnessConnectError",
    "LocalStateError",
    "MarkerStoreError",
    "Measurement",
    "MetricKind",
    "PermanentError",
    "ProviderError",
    "SyncMarker",
    "TransientError",
    "UnsupportedOperation",
]
