"""
Builds the unified model catalog.

The catalog is a pure projection of the built-in list, the persisted
custom and local lists, and a snapshot of the runtime cache.
"""

import re
from typing import Iterable, Sequence
from urllib.parse import urlparse

from modeldock.models.types import ManageModel, Model, ModelState
from modeldock.runtime.base import CacheEntry
from modeldock.utils.logging import logger

UNKNOWN_NAME = "(unknown)"

_SHARD_PATTERN = re.compile(r"-\d{5}-of-\d{5}")


def model_display_name(url: str) -> str:
    """Derive a short display name from a model URL or file name."""
    if not url:
        return UNKNOWN_NAME

    try:
        path = urlparse(url).path if "://" in url else url
    except ValueError:
        return UNKNOWN_NAME
    segment = path.rstrip("/").split("/")[-1]
    name = _SHARD_PATTERN.sub("", segment, count=1).replace(".gguf", "", 1)
    return name or UNKNOWN_NAME


def cached_urls(entries: Iterable[CacheEntry]) -> set[str]:
    """URLs of cache entries that were fully downloaded."""
    return {
        e.metadata.original_url
        for e in entries
        if e.size == e.metadata.original_size
    }


def build_catalog(
    builtin: Sequence[Model],
    custom: Sequence[Model],
    local: Sequence[Model],
    cache_entries: Iterable[CacheEntry],
) -> list[ManageModel]:
    """
    Merge model lists into catalog entries with their initial state.

    Args:
        builtin: Read-only built-in models
        custom: Persisted user-added remote models
        local: Persisted user-added local models
        cache_entries: Current runtime cache listing

    Returns:
        Catalog in built-in, custom, local order, unique by URL
    """
    downloaded = cached_urls(cache_entries)

    catalog: list[ManageModel] = []
    seen: set[str] = set()
    for model in [*builtin, *custom, *local]:
        if model.url in seen:
            logger.warning(f"Skipping duplicate catalog entry: {model.url}")
            continue
        seen.add(model.url)

        if model.user_added_local or model.url in downloaded:
            state = ModelState.READY
        else:
            state = ModelState.NOT_DOWNLOADED

        catalog.append(
            ManageModel(
                **model.model_dump(),
                name=model_display_name(model.url),
                state=state,
                download_percent=0.0,
            )
        )

    return catalog
