"""Persistent storage for OAuth2 credentials, one per provider."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path

from fitness_connect.base import Credential
from fitness_connect.errors import CredentialNotFound, CredentialStoreError
from fitness_connect.persistence import atomic_write_json, read_json

logger = logging.getLogger("fitness_connect.auth.store")


class CredentialStore(ABC):
    """Load and save the single Credential held for each provider."""

    @abstractmethod
    def load(self, provider_id: str) -> Credential:
        """Return the stored credential.

        Raises:
            CredentialNotFound: If the provider was never registered.
            CredentialStoreError: If the stored credential is unreadable.
        """

    @abstractmethod
    def save(self, credential: Credential) -> None:
        """Replace the stored credential for ``credential.provider_id``.

        Implementations must replace atomically: an interrupted save leaves
        the previous credential intact.
        """

    def exists(self, provider_id: str) -> bool:
        try:
            self.load(provider_id)
        except CredentialNotFound:
            return False
        return True


class FileCredentialStore(CredentialStore):
    """Keeps each credential as ``<directory>/<provider_id>.json``.

    Usage::

        store = FileCredentialStore(Path("~/.config/fitness-connect").expanduser())
        store.save(credential)
        store.load("strava")
    """

    def __init__(
        self,
        directory: Path,
        overrides: dict[str, Path] | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            directory: Directory holding one JSON file per provider.
            overrides: Explicit file paths for specific providers.
        """
        self._directory = Path(directory)
        self._overrides = {k: Path(v) for k, v in (overrides or {}).items()}

    def path_for(self, provider_id: str) -> Path:
        return self._overrides.get(provider_id) or self._directory / f"{provider_id}.json"

    def load(self, provider_id: str) -> Credential:
        path = self.path_for(provider_id)
        try:
            raw = read_json(path)
        except FileNotFoundError:
            raise CredentialNotFound(provider_id) from None
        except (OSError, json.JSONDecodeError) as exc:
            raise CredentialStoreError(
                f"Cannot read credential file {path}: {exc}",
                provider_id=provider_id,
                help=f"Delete {path} and run `fitness-connect register {provider_id}`",
            ) from exc

        try:
            credential = Credential.from_dict(raw)
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise CredentialStoreError(
                f"Credential file {path} is malformed: {exc}",
                provider_id=provider_id,
                help=f"Run `fitness-connect register {provider_id}` to replace it",
            ) from exc

        if credential.provider_id != provider_id:
            raise CredentialStoreError(
                f"Credential file {path} belongs to '{credential.provider_id}'",
                provider_id=provider_id,
            )
        return credential

    def save(self, credential: Credential) -> None:
        path = self.path_for(credential.provider_id)
        try:
            atomic_write_json(path, credential.to_dict())
        except OSError as exc:
            raise CredentialStoreError(
                f"Cannot write credential file {path}: {exc}",
                provider_id=credential.provider_id,
            ) from exc
        logger.info(
            "Saved %s credential (expires %s)",
            credential.provider_id,
            credential.expires_at.isoformat(),
        )
