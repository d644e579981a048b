"""Load and validate the provider catalog.

The catalog lives in ``providers.yaml`` alongside this module.  It is loaded
once and cached; ``reload_provider_catalog()`` re-reads it from disk.

Usage::

    from fitness_connect.config_loader import get_provider_catalog

    catalog = get_provider_catalog()
    strava = catalog.provider("strava")          # ProviderSpec
    catalog.sync.retry.max_attempts              # 3
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any

import yaml

from fitness_connect.base import MetricKind
from fitness_connect.errors import ConfigurationError

logger = logging.getLogger("fitness_connect.config")

_CATALOG_PATH = Path(__file__).parent / "providers.yaml"

_ROLES = {"source", "target"}


# ---------------------------------------------------------------------------
# Typed catalog sections
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProviderSpec:
    """Static description of one provider's OAuth and API endpoints."""

    provider_id: str
    display_name: str
    role: str
    auth_url: str
    token_url: str
    api_base: str
    scopes: list[str]
    redirect_uri: str


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff for transient provider errors."""

    max_attempts: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 30.0

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
        return min(self.base_delay_seconds * (2 ** (attempt - 1)), self.max_delay_seconds)


@dataclass(frozen=True)
class SyncPolicy:
    """How the orchestrator runs a sync."""

    source: str = "withings"
    target: str = "strava"
    metric_kind: MetricKind = MetricKind.WEIGHT
    token_skew_seconds: int = 60
    lookback_days: int = 1
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    @property
    def token_skew(self) -> timedelta:
        return timedelta(seconds=self.token_skew_seconds)


@dataclass
class ProviderCatalog:
    """Complete, validated provider catalog.

    Attributes:
        version:   Catalog schema version string.
        providers: provider_id → ProviderSpec.
        sync:      Sync policy.
    """

    version: str
    providers: dict[str, ProviderSpec]
    sync: SyncPolicy

    def provider(self, provider_id: str) -> ProviderSpec:
        """Return the spec for ``provider_id``.

        Raises:
            ConfigurationError: If the provider is not in the catalog.
        """
        if provider_id not in self.providers:
            raise ConfigurationError(
                f"Provider '{provider_id}' is not in the catalog",
                provider_id=provider_id,
                help=f"Available providers: {', '.join(sorted(self.providers))}",
            )
        return self.providers[provider_id]


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ProviderConfigError(ValueError):
    """Raised when providers.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError:   If the file does not exist.
        ProviderConfigError: If the YAML is malformed.
    """
    if not path.exists():
        raise FileNotFoundError(f"Provider catalog not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ProviderConfigError(f"YAML parse error in {path}: {exc}") from exc


def _validate_and_build(raw: dict) -> ProviderCatalog:
    """Validate the raw YAML dict and construct a ProviderCatalog.

    All problems are collected and reported together.

    Raises:
        ProviderConfigError: If required fields are missing or invalid.
    """
    errors: list[str] = []

    def _require(d: dict, key: str, section: str) -> Any:
        value = d.get(key)
        if value in (None, ""):
            errors.append(f"Missing required key '{key}' in section '{section}'")
        return value

    version = str(raw.get("version", "1.0"))

    # ── Providers ──
    providers_raw = raw.get("providers") or {}
    if not providers_raw:
        errors.append("'providers' section is missing or empty")

    providers: dict[str, ProviderSpec] = {}
    for provider_id, cfg in providers_raw.items():
        section = f"providers.{provider_id}"
        if not isinstance(cfg, dict):
            errors.append(f"{section} must be a mapping")
            continue

        role = cfg.get("role")
        if role not in _ROLES:
            errors.append(f"{section}.role must be one of {sorted(_ROLES)}, got {role!r}")

        scopes = cfg.get("scopes", [])
        if isinstance(scopes, str):
            scopes = [s for s in scopes.split(",") if s]
        if not isinstance(scopes, list):
            errors.append(f"{section}.scopes must be a list")
            scopes = []

        urls = {}
        for key in ("auth_url", "token_url", "api_base"):
            value = _require(cfg, key, section)
            if value and not str(value).startswith(("https://", "http://")):
                errors.append(f"{section}.{key} must be an http(s) URL, got {value!r}")
            urls[key] = str(value or "").rstrip("/")

        providers[provider_id] = ProviderSpec(
            provider_id=provider_id,
            display_name=cfg.get("display_name", provider_id.title()),
            role=role or "",
            auth_url=urls["auth_url"],
            token_url=urls["token_url"],
            api_base=urls["api_base"],
            scopes=[str(s) for s in scopes],
            redirect_uri=cfg.get("redirect_uri", "http://localhost"),
        )

    # ── Sync policy ──
    sync_raw = raw.get("sync") or {}
    retry_raw = sync_raw.get("retry") or {}

    def _number(d: dict, key: str, default: float, section: str, minimum: float) -> float:
        value = d.get(key, default)
        try:
            number = float(value)
        except (TypeError, ValueError):
            errors.append(f"{section}.{key} must be a number, got {value!r}")
            return default
        if number < minimum:
            errors.append(f"{section}.{key} = {number} must be >= {minimum}")
        return number

    retry = RetryPolicy(
        max_attempts=int(_number(retry_raw, "max_attempts", 3, "sync.retry", 1)),
        base_delay_seconds=_number(retry_raw, "base_delay_seconds", 1.0, "sync.retry", 0),
        max_delay_seconds=_number(retry_raw, "max_delay_seconds", 30.0, "sync.retry", 0),
    )

    metric_raw = sync_raw.get("metric", MetricKind.WEIGHT.value)
    try:
        metric_kind = MetricKind(metric_raw)
    except ValueError:
        errors.append(
            f"sync.metric must be one of {[m.value for m in MetricKind]}, got {metric_raw!r}"
        )
        metric_kind = MetricKind.WEIGHT

    source = sync_raw.get("source", "withings")
    target = sync_raw.get("target", "strava")
    for key, provider_id, role in (("source", source, "source"), ("target", target, "target")):
        spec = providers.get(provider_id)
        if spec is None:
            errors.append(f"sync.{key} refers to unknown provider {provider_id!r}")
        elif spec.role != role:
            errors.append(f"sync.{key} provider {provider_id!r} has role {spec.role!r}")

    sync = SyncPolicy(
        source=source,
        target=target,
        metric_kind=metric_kind,
        token_skew_seconds=int(_number(sync_raw, "token_skew_seconds", 60, "sync", 0)),
        lookback_days=int(_number(sync_raw, "lookback_days", 1, "sync", 1)),
        retry=retry,
    )

    if errors:
        raise ProviderConfigError(
            f"providers.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return ProviderCatalog(version=version, providers=providers, sync=sync)


def load_provider_catalog(path: Path | None = None) -> ProviderCatalog:
    """Load and validate the provider catalog from disk.

    Args:
        path: Override path to YAML. Uses the bundled providers.yaml by default.
    """
    target = path or _CATALOG_PATH
    raw = _load_yaml(target)
    catalog = _validate_and_build(raw)
    logger.debug("Loaded provider catalog v%s from %s", catalog.version, target)
    return catalog


# ---------------------------------------------------------------------------
# Global singleton
# ---------------------------------------------------------------------------

_catalog: ProviderCatalog | None = None
_catalog_lock = threading.Lock()


def get_provider_catalog() -> ProviderCatalog:
    """Return the global ProviderCatalog, loading it on first call. Thread-safe."""
    global _catalog
    if _catalog is None:
        with _catalog_lock:
            if _catalog is None:  # double-checked locking
                _catalog = load_provider_catalog()
    return _catalog


def reload_provider_catalog(path: Path | None = None) -> ProviderCatalog:
    """Reload the catalog from disk and replace the global singleton.

    If validation fails the old catalog is retained and the error re-raised.
    """
    global _catalog
    new_catalog = load_provider_catalog(path)  # validate before acquiring lock
    with _catalog_lock:
        old_version = _catalog.version if _catalog else "none"
        _catalog = new_catalog
    logger.info("Reloaded provider catalog: %s → %s", old_version, new_catalog.version)
    return new_catalog
