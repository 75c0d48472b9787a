"""Runtime module - Downloading, caching and inference."""

from modeldock.runtime.base import CacheEntry, CacheManager, CacheMetadata, ModelRuntime
from modeldock.runtime.cache import FileCacheManager
from modeldock.runtime.llama_runtime import LlamaRuntime

__all__ = [
    "CacheEntry",
    "CacheManager",
    "CacheMetadata",
    "ModelRuntime",
    "FileCacheManager",
    "LlamaRuntime",
]
