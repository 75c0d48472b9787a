"""
Contract of the model runtime the orchestrator delegates to.
The runtime owns downloading, on-disk caching and inference.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Optional, Sequence

from pydantic import BaseModel

from modeldock.models.types import InferenceParams

ProgressCallback = Callable[[int, int], None]  # (loaded_bytes, total_bytes)
AbortFn = Callable[[], None]
TokenCallback = Callable[[int, str, str, AbortFn], None]  # (token, piece, current_text, abort)


class CacheMetadata(BaseModel):
    """What the cache remembers about where an entry came from."""

    original_url: str
    original_size: int
    etag: str = ""


class CacheEntry(BaseModel):
    """A file stored in the runtime cache."""

    name: str
    size: int
    metadata: CacheMetadata


class CacheManager(ABC):
    """Downloaded-model cache owned by the runtime."""

    @abstractmethod
    async def list(self) -> list[CacheEntry]:
        """List all cache entries."""

    @abstractmethod
    async def get_size(self, url: str) -> int:
        """Size in bytes of the cached file for url, or -1 if absent."""

    @abstractmethod
    def get_name_from_url(self, url: str) -> str:
        """Cache key for url."""

    @abstractmethod
    async def delete(self, name: str) -> None:
        """Delete one entry by cache key."""

    @abstractmethod
    async def delete_many(self, predicate: Callable[[CacheEntry], bool]) -> None:
        """Delete every entry matching predicate."""


class ModelRuntime(ABC):
    """
    A single inference runtime holding at most one model.

    Instances are not reused after exit(); the orchestrator creates a
    fresh one through its factory.
    """

    cache: CacheManager

    @abstractmethod
    async def download_model(
        self, url: str, progress_callback: Optional[ProgressCallback] = None
    ) -> None:
        """Download url (and its sibling shards) into the cache."""

    @abstractmethod
    async def load_model_from_url(self, url: str, params: InferenceParams) -> None:
        """Load a cached model."""

    @abstractmethod
    async def load_model(self, files: Sequence[Path], params: InferenceParams) -> None:
        """Load local files directly, without going through the cache."""

    @abstractmethod
    async def exit(self) -> None:
        """Release the loaded model."""

    @abstractmethod
    def is_multithread(self) -> bool:
        """Whether inference uses more than one thread."""

    @abstractmethod
    def get_chat_template(self) -> Optional[str]:
        """Chat template embedded in the loaded model, if any."""

    @abstractmethod
    async def create_completion(
        self,
        prompt: str,
        n_predict: int,
        temperature: float,
        on_new_token: Optional[TokenCallback] = None,
    ) -> str:
        """Generate text for prompt, reporting each new piece."""
