"""
Crash-resilient snapshots of runtime state.

Provides:
- Atomic JSON writes (temp file + rename)
- Rotating backups
- Recovery from the newest readable backup
"""
from __future__ import annotations

import json
import logging
import shutil
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import PersistenceFailure
from .util import now_ms

logger = logging.getLogger(__name__)


class SnapshotStore:
    """
    Named JSON snapshots in one directory.

    Example:
        >>> store = SnapshotStore("./npc_state")
        >>> store.save("runtime", engine.export_state())
        >>> engine.load_state(store.load("runtime"))
    """

    BACKUP_COUNT = 3

    def __init__(self, base_path: str):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _safe_name(self, name: str) -> str:
        return "".join(c if c.isalnum() else "_" for c in name)

    def _get_path(self, name: str) -> Path:
        return self.base_path / f"{self._safe_name(name)}.json"

    def _get_backup_path(self, name: str, n: int) -> Path:
        return self.base_path / f"{self._safe_name(name)}.backup{n}.json"

    def save(self, name: str, data: Dict[str, Any]) -> Path:
        """
        Atomically write a snapshot, rotating the previous one into backups.

        Raises:
            PersistenceFailure: The snapshot could not be written.
        """
        payload = {"name": name, "saved_at": now_ms(), "data": data}
        path = self._get_path(name)
        temp_path = path.with_suffix(".tmp")

        with self._lock:
            try:
                with open(temp_path, "w", encoding="utf-8") as f:
                    json.dump(payload, f, indent=2, default=str)
                if path.exists():
                    self._rotate_backups(name)
                shutil.move(str(temp_path), str(path))
            except (OSError, TypeError, ValueError) as e:
                if temp_path.exists():
                    temp_path.unlink()
                raise PersistenceFailure(f"Failed to save snapshot {name}: {e}") from e

        logger.debug(f"Saved snapshot {name} to {path}")
        return path

    def _rotate_backups(self, name: str) -> None:
        oldest = self._get_backup_path(name, self.BACKUP_COUNT)
        if oldest.exists():
            oldest.unlink()

        for i in range(self.BACKUP_COUNT - 1, 0, -1):
            src = self._get_backup_path(name, i)
            if src.exists():
                shutil.move(str(src), str(self._get_backup_path(name, i + 1)))

        shutil.copy2(str(self._get_path(name)), str(self._get_backup_path(name, 1)))

    def load(self, name: str) -> Optional[Dict[str, Any]]:
        """Load a snapshot's data, falling back to backups; None when nothing is readable."""
        path = self._get_path(name)
        if not path.exists():
            return self._try_recover_from_backup(name)

        try:
            with open(path, "r", encoding="utf-8") as f:
                payload = json.load(f)
            logger.info(f"Loaded snapshot {name} (saved: {payload.get('saved_at', 'unknown')})")
            return payload["data"]
        except (OSError, ValueError, KeyError) as e:
            logger.error(f"Failed to load snapshot {name}: {e}")
            return self._try_recover_from_backup(name)

    def _try_recover_from_backup(self, name: str) -> Optional[Dict[str, Any]]:
        for i in range(1, self.BACKUP_COUNT + 1):
            backup_path = self._get_backup_path(name, i)
            if not backup_path.exists():
                continue
            try:
                with open(backup_path, "r", encoding="utf-8") as f:
                    payload = json.load(f)
                logger.warning(f"Recovered snapshot {name} from backup{i}")
                return payload["data"]
            except (OSError, ValueError, KeyError):
                continue
        return None

    def list_snapshots(self) -> List[str]:
        return sorted(
            p.stem for p in self.base_path.glob("*.json")
            if ".backup" not in p.name
        )

    def delete(self, name: str) -> None:
        with self._lock:
            for path in [self._get_path(name)] + [
                self._get_backup_path(name, i) for i in range(1, self.BACKUP_COUNT + 1)
            ]:
                if path.exists():
                    path.unlink()
