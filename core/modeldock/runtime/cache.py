"""
On-disk cache of downloaded model files.

Each entry is a file named "<hash>_<filename>" plus a "<name>.meta.json"
sidecar recording the source URL and the size announced by the server.
Shards of one model share the hash prefix so llama.cpp can find them.
"""

import hashlib
import json
import posixpath
from pathlib import Path
from typing import Callable, Optional
from urllib.parse import urlparse

from modeldock.config import CACHE_DIR
from modeldock.runtime.base import CacheEntry, CacheManager, CacheMetadata
from modeldock.utils.logging import logger

META_SUFFIX = ".meta.json"
PARTIAL_SUFFIX = ".part"


class FileCacheManager(CacheManager):
    """Cache manager backed by a local directory."""

    def __init__(self, cache_dir: Optional[Path] = None):
        self.cache_dir = cache_dir or CACHE_DIR
        self.cache_dir.mkdir(parents=True, exist_ok=True)

    def get_name_from_url(self, url: str) -> str:
        parsed = urlparse(url)
        directory, filename = posixpath.split(parsed.path)
        source_dir = parsed._replace(path=directory, query="", fragment="").geturl()
        digest = hashlib.sha1(source_dir.encode("utf-8")).hexdigest()
        return f"{digest}_{filename}"

    def path_for(self, url: str) -> Path:
        """Destination path of the cached file for url."""
        return self.cache_dir / self.get_name_from_url(url)

    def partial_path_for(self, url: str) -> Path:
        """Temporary path used while url is being downloaded."""
        return self.cache_dir / (self.get_name_from_url(url) + PARTIAL_SUFFIX)

    def _meta_path(self, name: str) -> Path:
        return self.cache_dir / (name + META_SUFFIX)

    def write_metadata(self, url: str, original_size: int, etag: str = "") -> None:
        """Record where a cached file came from."""
        meta = CacheMetadata(original_url=url, original_size=original_size, etag=etag)
        name = self.get_name_from_url(url)
        self._meta_path(name).write_text(json.dumps(meta.model_dump(), indent=2))

    def read_metadata(self, name: str) -> Optional[CacheMetadata]:
        meta_path = self._meta_path(name)
        if not meta_path.exists():
            return None
        try:
            return CacheMetadata(**json.loads(meta_path.read_text()))
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable cache metadata {meta_path.name}: {e}")
            return None

    async def list(self) -> list[CacheEntry]:
        entries = []
        for path in sorted(self.cache_dir.iterdir()):
            if not path.is_file():
                continue
            if path.name.endswith(META_SUFFIX) or path.name.endswith(PARTIAL_SUFFIX):
                continue

            metadata = self.read_metadata(path.name)
            if metadata is None:
                logger.debug(f"Cache file without metadata: {path.name}")
                continue

            entries.append(
                CacheEntry(name=path.name, size=path.stat().st_size, metadata=metadata)
            )
        return entries

    async def get_size(self, url: str) -> int:
        path = self.path_for(url)
        if not path.exists():
            return -1
        return path.stat().st_size

    async def delete(self, name: str) -> None:
        (self.cache_dir / name).unlink(missing_ok=True)
        self._meta_path(name).unlink(missing_ok=True)
        logger.info(f"Deleted cache entry {name}")

    async def delete_many(self, predicate: Callable[[CacheEntry], bool]) -> None:
        for entry in await self.list():
            if predicate(entry):
                await self.delete(entry.name)
