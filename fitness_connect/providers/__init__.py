"""Provider clients for fitness-connect.

Each provider module supplies two pieces:
- an ``OAuth2Provider`` for its token endpoint (used by the authenticator)
- a ``ProviderGateway`` for its data API (used by the orchestrator)

Available providers:
    withings — Withings Health API (source: weight)
    strava   — Strava API v3 (target: weight, athlete profile and stats)
"""

from fitness_connect.errors import ConfigurationError
from fitness_connect.providers.base import Capability, ProviderGateway
from fitness_connect.providers.strava import StravaGateway, StravaOAuth
from fitness_connect.providers.withings import WithingsGateway, WithingsOAuth

__all__ = [
    "Capability",
    "ProviderGateway",
    "StravaGateway",
    "StravaOAuth",
    "WithingsGateway",
    "WithingsOAuth",
    "get_gateway",
    "get_oauth_provider",
]

# Registry: provider_id → (gateway class, OAuth provider class)
PROVIDER_REGISTRY: dict[str, tuple[type, type]] = {
    "withings": (WithingsGateway, WithingsOAuth),
    "strava": (StravaGateway, StravaOAuth),
}


def _lookup(provider_id: str) -> tuple[type, type]:
    if provider_id not in PROVIDER_REGISTRY:
        raise ConfigurationError(
            f"No provider registered for '{provider_id}'",
            provider_id=provider_id,
            help=f"Available providers: {', '.join(PROVIDER_REGISTRY)}",
        )
    return PROVIDER_REGISTRY[provider_id]


def get_gateway(provider_id: str) -> type:
    """Return the gateway class for a provider slug.

    Raises:
        ConfigurationError: If the provider_id is not registered.
    """
    return _lookup(provider_id)[0]


def get_oauth_provider(provider_id: str) -> type:
    """Return the OAuth2Provider class for a provider slug.

    Raises:
        ConfigurationError: If the provider_id is not registered.
    """
    return _lookup(provider_id)[1]
