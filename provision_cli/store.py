"""
Session-scoped persistence for tracked tasks.

State survives a restart of the consumer within the same terminal session,
but is neither shared between sessions nor kept across reboots.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import platformdirs

from .state import PollerState

logger = logging.getLogger(__name__)


class MemoryStorage:
    """Key-value storage living as long as the process."""

    def __init__(self):
        self._items: Dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)


class SessionFileStorage:
    """Key-value storage backed by one JSON document per session.

    Documents live under the per-user runtime directory, which the OS clears
    on logout or reboot.
    """

    def __init__(self, session: Optional[str] = None, base_dir: Optional[Path] = None):
        self.session = session or self.default_session()
        root = base_dir or Path(platformdirs.user_runtime_dir("provision-cli"))
        self.path = root / f"session-{self.session}.json"

    @staticmethod
    def default_session() -> str:
        return os.getenv("PROVISION_SESSION") or str(os.getppid())

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        with self.path.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
        if not isinstance(data, dict):
            raise ValueError(f"Unexpected session document in {self.path}")
        return data

    def _write(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".tmp")
        with tmp_path.open("w", encoding="utf-8") as fh:
            json.dump(data, fh)
        os.replace(tmp_path, self.path)

    def get_item(self, key: str) -> Optional[str]:
        return self._read().get(key)

    def set_item(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def remove_item(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            if data:
                self._write(data)
            else:
                self.path.unlink()


class TaskStore:
    """Persists poller snapshots under ``<namespace>:<resource_id>`` keys.

    Storage failures are logged and otherwise ignored; a failed read means
    "nothing persisted".
    """

    def __init__(self, storage: Any, namespace: str):
        self.storage = storage
        self.namespace = namespace

    def key(self, resource_id: str) -> str:
        return f"{self.namespace}:{resource_id}"

    def load(self, resource_id: str) -> Optional[Dict[str, Any]]:
        try:
            raw = self.storage.get_item(self.key(resource_id))
            if not raw:
                return None
            data = json.loads(raw)
        except Exception as e:
            logger.error("Failed to load task state for %s: %s", resource_id, e)
            return None
        if not isinstance(data, dict):
            logger.error("Ignoring malformed task state for %s", resource_id)
            return None
        return data

    def save(self, resource_id: str, state: PollerState) -> None:
        try:
            self.storage.set_item(self.key(resource_id), json.dumps(state.to_snapshot()))
        except Exception as e:
            logger.error("Failed to save task state for %s: %s", resource_id, e)

    def clear(self, resource_id: str) -> None:
        try:
            self.storage.remove_item(self.key(resource_id))
        except Exception as e:
            logger.error("Failed to clear task state for %s: %s", resource_id, e)
