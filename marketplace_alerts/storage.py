"""
Storage module for Marketplace Alerts.

Persists two JSON documents:
- state.json: schema-versioned lifecycle state, read in full at run start
  and written in full at run end
- history.json: append-only list of run summaries, read by the reporting UI

Any failure to read or write either document is fatal to the run.
"""

import os
import json
import logging
import tempfile
from pathlib import Path
from typing import Optional

from .config import get_app_config
from .models import RunSummary, StateDocument

logger = logging.getLogger(__name__)

# Version 2 moved to snake_case keys and added missed_runs and sold_at to lifecycle entries
STATE_VERSION = 2

# Version 1 key -> version 2 key
V1_DOCUMENT_KEYS = {"updatedAt": "updated_at"}
V1_ENTRY_KEYS = {
    "firstSeenAt": "first_seen_at",
    "lastSeenAt": "last_seen_at",
    "lastEffectivePrice": "last_effective_price",
}


class PersistenceError(Exception):
    """State or history document could not be read or written."""


def _read_json(path: Path, default):
    if not path.exists():
        return default
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise PersistenceError(f"Could not read {path}: {e}") from e


def _write_json(path: Path, data) -> None:
    """Write via a temp file in the same directory so a crash never leaves half a document."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    except OSError as e:
        raise PersistenceError(f"Could not write {path}: {e}") from e

    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.write("\n")
        os.replace(tmp_path, path)
    except (OSError, TypeError, ValueError) as e:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise PersistenceError(f"Could not write {path}: {e}") from e


# =============================================================================
# STATE
# =============================================================================

def _rename_keys(data: dict, renames: dict) -> None:
    """Rename keys in place; an already-present new key wins."""
    for old, new in renames.items():
        if old in data:
            value = data.pop(old)
            data.setdefault(new, value)


def migrate_state(data: dict) -> dict:
    """
    Bring a raw state document up to STATE_VERSION.

    Raises:
        PersistenceError: If the document is from a newer, unknown version
    """
    if not isinstance(data, dict):
        raise PersistenceError("State document must be a JSON object")

    version = int(data.get("version") or 1)
    if version > STATE_VERSION:
        raise PersistenceError(
            f"State document version {version} is newer than supported version {STATE_VERSION}"
        )

    if version < 2:
        _rename_keys(data, V1_DOCUMENT_KEYS)
        # v1 entries only knew first/last seen and the last price
        for products in (data.get("seen") or {}).values():
            for entries in (products or {}).values():
                for entry in (entries or {}).values():
                    _rename_keys(entry, V1_ENTRY_KEYS)
                    entry.setdefault("missed_runs", 0)
                    entry.setdefault("sold_at", None)
        logger.info(f"Migrated state document from version {version} to {STATE_VERSION}")

    data["version"] = STATE_VERSION
    data.setdefault("seen", {})
    return data


class StateStore:
    """
    Reads and writes the lifecycle state document.

    A missing file is a first run and yields an empty document.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> StateDocument:
        data = _read_json(self.path, default=None)
        if data is None:
            logger.info(f"No state at {self.path}, starting fresh")
            return StateDocument(version=STATE_VERSION)

        try:
            return StateDocument.from_dict(migrate_state(data))
        except (KeyError, TypeError, ValueError) as e:
            raise PersistenceError(f"Malformed state document {self.path}: {e}") from e

    def save(self, state: StateDocument) -> None:
        state.version = STATE_VERSION
        _write_json(self.path, state.to_dict())
        logger.debug(f"Wrote state to {self.path}")


# =============================================================================
# HISTORY
# =============================================================================

class HistoryStore:
    """Append-only run history."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def _load(self) -> list:
        records = _read_json(self.path, default=[])
        if not isinstance(records, list):
            raise PersistenceError(f"History document {self.path} must be a JSON array")
        return records

    def append(self, summary: RunSummary) -> None:
        records = self._load()
        records.append(summary.to_dict())
        _write_json(self.path, records)
        logger.debug(f"Appended run summary to {self.path} ({len(records)} records)")

    def recent(self, limit: int = 20) -> list[dict]:
        """Most recent run summaries, newest last."""
        if limit <= 0:
            return []
        return self._load()[-limit:]


# Global store instances (lazy loaded)
_state_store: Optional[StateStore] = None
_history_store: Optional[HistoryStore] = None


def get_state_store() -> StateStore:
    """Get the state store for the configured path (singleton)."""
    global _state_store
    if _state_store is None:
        _state_store = StateStore(get_app_config().state_path)
    return _state_store


def get_history_store() -> HistoryStore:
    """Get the history store for the configured path (singleton)."""
    global _history_store
    if _history_store is None:
        _history_store = HistoryStore(get_app_config().history_path)
    return _history_store
