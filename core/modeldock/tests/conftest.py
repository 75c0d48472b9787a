"""
Shared fixtures: an in-memory runtime and an orchestrator wired to it.

The fakes yield to the event loop at the points where the real runtime
awaits, so concurrent calls interleave the way they do in production.
"""

import asyncio
from pathlib import Path
from typing import Callable, Optional, Sequence

import pytest

from modeldock.engine.orchestrator import ModelOrchestrator
from modeldock.models.types import InferenceParams, Model
from modeldock.runtime.base import CacheEntry, CacheManager, CacheMetadata, ModelRuntime
from modeldock.utils.storage import Storage

TINY_URL = "https://huggingface.co/org/tiny-GGUF/resolve/main/tiny-q4_k_m.gguf"
SPLIT_URL = "https://huggingface.co/org/big-GGUF/resolve/main/big-q8_0-00001-of-00002.gguf"

BUILTIN_MODELS = [
    Model(url=TINY_URL, size=1000),
    Model(url=SPLIT_URL, size=2000),
]


class FakeCache(CacheManager):
    """Cache kept in a dict, keyed by URL."""

    def __init__(self):
        self.entries: dict[str, CacheEntry] = {}
        self.fail_delete = False
        self.deleted: list[str] = []

    def add(self, url: str, size: int, original_size: Optional[int] = None):
        self.entries[url] = CacheEntry(
            name=self.get_name_from_url(url),
            size=size,
            metadata=CacheMetadata(
                original_url=url,
                original_size=size if original_size is None else original_size,
            ),
        )

    async def list(self) -> list[CacheEntry]:
        return list(self.entries.values())

    async def get_size(self, url: str) -> int:
        entry = self.entries.get(url)
        return entry.size if entry else -1

    def get_name_from_url(self, url: str) -> str:
        return "cached_" + url.rsplit("/", 1)[-1]

    async def delete(self, name: str) -> None:
        if self.fail_delete:
            raise OSError("disk is read-only")
        self.deleted.append(name)
        self.entries = {u: e for u, e in self.entries.items() if e.name != name}

    async def delete_many(self, predicate: Callable[[CacheEntry], bool]) -> None:
        for entry in list(self.entries.values()):
            if predicate(entry):
                await self.delete(entry.name)


class GatedCache(FakeCache):
    """Cache whose size lookups wait until the gate is opened."""

    def __init__(self):
        super().__init__()
        self.gate = asyncio.Event()
        self.waiting = asyncio.Event()

    async def get_size(self, url: str) -> int:
        self.waiting.set()
        await self.gate.wait()
        return await super().get_size(url)


class FakeRuntime(ModelRuntime):
    """Runtime that records calls and fails on request."""

    def __init__(self, cache: FakeCache):
        self.cache = cache
        self.download_error: Optional[Exception] = None
        self.load_error: Optional[Exception] = None
        self.progress_steps: list[tuple[int, int]] = [(0, 100), (50, 100), (100, 100)]
        self.pieces: list[str] = ["Hello", ",", " world"]
        self.loaded = None
        self.exited = False
        self.downloads: list[str] = []
        self.load_params: Optional[InferenceParams] = None
        self.after_progress: Optional[Callable[[], None]] = None

    async def download_model(self, url, progress_callback=None):
        self.downloads.append(url)
        for loaded, total in self.progress_steps:
            if progress_callback:
                progress_callback(loaded, total)
            if self.after_progress:
                self.after_progress()
            await asyncio.sleep(0)
        if self.download_error:
            raise self.download_error
        self.cache.add(url, 1000)

    async def load_model_from_url(self, url: str, params: InferenceParams):
        await asyncio.sleep(0)
        if self.load_error:
            raise self.load_error
        self.loaded = url
        self.load_params = params

    async def load_model(self, files: Sequence[Path], params: InferenceParams):
        await asyncio.sleep(0)
        if self.load_error:
            raise self.load_error
        self.loaded = list(files)
        self.load_params = params

    async def exit(self):
        self.exited = True
        self.loaded = None

    def is_multithread(self) -> bool:
        return True

    def get_chat_template(self) -> Optional[str]:
        return "{% for m in messages %}{{ m.content }}{% endfor %}"

    async def create_completion(self, prompt, n_predict, temperature, on_new_token=None):
        text = ""
        aborted = False

        def abort():
            nonlocal aborted
            aborted = True

        for i, piece in enumerate(self.pieces):
            text += piece
            if on_new_token:
                on_new_token(i, piece, text, abort)
            if aborted:
                break
            await asyncio.sleep(0)
        return text


def write_gguf(path: Path, size: int = 64) -> Path:
    """Write a file that starts with the GGUF magic."""
    path.write_bytes(b"GGUF" + b"\x00" * (size - 4))
    return path


@pytest.fixture
def cache():
    return FakeCache()


@pytest.fixture
def runtimes():
    """Every runtime the orchestrator has created, oldest first."""
    return []


@pytest.fixture
def runtime_factory(cache, runtimes):
    def factory():
        runtime = FakeRuntime(cache)
        runtimes.append(runtime)
        return runtime

    return factory


@pytest.fixture
def storage(tmp_path):
    return Storage(tmp_path / "storage")


@pytest.fixture
def verified_urls():
    return []


@pytest.fixture
def orchestrator(storage, runtime_factory, verified_urls):
    async def verifier(url: str) -> Model:
        verified_urls.append(url)
        return Model(url=url, size=123, user_added=True)

    return ModelOrchestrator(
        storage=storage,
        runtime_factory=runtime_factory,
        builtin_models=BUILTIN_MODELS,
        custom_verifier=verifier,
    )
