"""JSON-file key/value storage that survives process restarts."""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


class LocalStorage:
    """Persist JSON-serializable blobs, one file per key, under a directory."""

    def __init__(self, directory: Path):
        self.base_path = Path(directory)

    def _file_path(self, key: str) -> Path:
        """Get the file holding ``key``."""
        safe = _UNSAFE_KEY_CHARS.sub("_", key)
        return self.base_path / f"{safe}.json"

    def get(self, key: str, default: Any = None) -> Any:
        """Load the value stored under ``key``; unreadable files count as absent."""
        path = self._file_path(key)
        if not path.exists():
            return default
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except Exception as e:
            logger.warning(f"Failed to load {path}: {e}")
            return default

    def set(self, key: str, value: Any) -> None:
        """Write ``value`` atomically (temp file + rename)."""
        self.base_path.mkdir(parents=True, exist_ok=True)
        path = self._file_path(key)
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(json.dumps(value, indent=2), encoding="utf-8")
        tmp_path.replace(path)
        logger.debug(f"Saved {path}")

    def remove(self, key: str) -> None:
        self._file_path(key).unlink(missing_ok=True)

    def clear(self) -> None:
        """Remove every stored key (used on sign-out)."""
        if not self.base_path.exists():
            return
        for path in self.base_path.glob("*.json"):
            path.unlink(missing_ok=True)


__all__ = ["LocalStorage"]
