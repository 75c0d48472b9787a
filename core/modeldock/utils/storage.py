"""
Durable key-value storage for user settings and model lists.
Each key lives in its own JSON file under the storage directory.
"""

import json
from pathlib import Path
from typing import Any, Optional, TypeVar

from modeldock.config import STORAGE_DIR
from modeldock.utils.logging import logger

T = TypeVar("T")


class Storage:
    """
    JSON-backed key-value store.

    Missing or unreadable keys fall back to the caller's default.
    Writes replace the whole value for a key.
    """

    def __init__(self, data_dir: Optional[Path] = None):
        self.data_dir = data_dir or STORAGE_DIR

    def _path_for(self, key: str) -> Path:
        return self.data_dir / f"{key}.json"

    def load(self, key: str, default: T) -> T:
        """Load a value, returning default when absent or corrupt."""
        path = self._path_for(key)
        if not path.exists():
            return default

        try:
            return json.loads(path.read_text())
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load '{key}' from storage: {e}")
            return default

    def save(self, key: str, value: Any) -> None:
        """Save a JSON-serializable value under key."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        path = self._path_for(key)
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(json.dumps(value, indent=2))
        tmp_path.replace(path)
        logger.debug(f"Saved '{key}' to storage")
