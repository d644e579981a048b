"""Durable record of what has already been pushed to the target.

A SyncMarker per metric kind is the only deduplication mechanism: the
orchestrator reads it before pushing and writes it only after the target
acknowledged the push.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path

from fitness_connect.base import MetricKind, SyncMarker
from fitness_connect.errors import MarkerStoreError
from fitness_connect.persistence import atomic_write_json, read_json

logger = logging.getLogger("fitness_connect.sync.markers")


class MarkerStore(ABC):
    @abstractmethod
    def load(self, metric_kind: MetricKind) -> SyncMarker | None:
        """Return the marker for ``metric_kind``, or None if nothing was synced yet."""

    @abstractmethod
    def save(self, marker: SyncMarker) -> None:
        """Durably replace the marker for ``marker.metric_kind``."""


class FileMarkerStore(MarkerStore):
    """All markers in one JSON file, keyed by metric kind.

    File layout::

        {"weight": {"metric_kind": "weight", "last_synced_at": "...", ...}}
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def _read_all(self) -> dict:
        try:
            raw = read_json(self._path)
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as exc:
            raise MarkerStoreError(
                f"Cannot read sync marker file {self._path}: {exc}",
                help=f"Delete {self._path}; the next sync will push the latest value again",
            ) from exc
        if not isinstance(raw, dict):
            raise MarkerStoreError(
                f"Sync marker file {self._path} is not a JSON object",
                help=f"Delete {self._path}; the next sync will push the latest value again",
            )
        return raw

    def load(self, metric_kind: MetricKind) -> SyncMarker | None:
        entry = self._read_all().get(metric_kind.value)
        if entry is None:
            return None
        try:
            return SyncMarker.from_dict(entry)
        except (KeyError, TypeError, ValueError) as exc:
            raise MarkerStoreError(
                f"Sync marker for '{metric_kind.value}' is malformed: {exc}",
                help=f"Delete {self._path}; the next sync will push the latest value again",
            ) from exc

    def save(self, marker: SyncMarker) -> None:
        markers = self._read_all()
        markers[marker.metric_kind.value] = marker.to_dict()
        try:
            atomic_write_json(self._path, markers)
        except OSError as exc:
            raise MarkerStoreError(
                f"Cannot write sync marker file {self._path}: {exc}"
            ) from exc
        logger.info(
            "Committed %s marker: %.2f at %s",
            marker.metric_kind.value,
            marker.last_synced_value,
            marker.last_synced_at.isoformat(),
        )
