"""
Model runtime backed by llama-cpp-python.
Downloads go to the on-disk cache over httpx; inference runs in a
worker thread and streams pieces back to the event loop.
"""

import asyncio
import queue
import re
import threading
from pathlib import Path
from typing import Optional, Sequence

import httpx

from modeldock.models.types import InferenceParams
from modeldock.runtime.base import ModelRuntime, ProgressCallback, TokenCallback
from modeldock.runtime.cache import FileCacheManager
from modeldock.utils.logging import logger

_SHARD_URL_PATTERN = re.compile(r"-(\d{5})-of-(\d{5})\.gguf$")

CHUNK_SIZE = 1024 * 1024


def expand_shard_urls(url: str) -> list[str]:
    """
    List every shard URL of a split model given any one shard.

    Non-split URLs are returned as a single-item list.
    """
    match = _SHARD_URL_PATTERN.search(url)
    if not match:
        return [url]

    total = int(match.group(2))
    prefix = url[: match.start()]
    return [f"{prefix}-{i:05d}-of-{total:05d}.gguf" for i in range(1, total + 1)]


class LlamaRuntime(ModelRuntime):
    """
    One llama.cpp model in memory at a time.
    Supports Metal/CUDA offload through n_gpu_layers.
    """

    def __init__(
        self,
        cache: Optional[FileCacheManager] = None,
        n_gpu_layers: int = -1,  # -1 = all layers on GPU
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.cache = cache or FileCacheManager()
        self.n_gpu_layers = n_gpu_layers
        self.transport = transport
        self._llm = None

    # ─────────────────────────────────────────────────────────
    # DOWNLOAD
    # ─────────────────────────────────────────────────────────

    async def download_model(
        self, url: str, progress_callback: Optional[ProgressCallback] = None
    ) -> None:
        """
        Download a model into the cache.

        Shards whose cached copy matches the server's size and ETag are
        skipped. Progress is reported across all shards on the event loop.
        """
        loop = asyncio.get_event_loop()
        urls = expand_shard_urls(url)

        def report(downloaded: int, total: int):
            if progress_callback:
                loop.call_soon_threadsafe(progress_callback, downloaded, total)

        def do_download():
            with httpx.Client(
                follow_redirects=True, timeout=None, transport=self.transport
            ) as client:
                heads = []
                for shard_url in urls:
                    response = client.head(shard_url)
                    response.raise_for_status()
                    heads.append(
                        (
                            shard_url,
                            int(response.headers.get("content-length", 0)),
                            response.headers.get("etag", ""),
                        )
                    )

                total = sum(size for _, size, _ in heads)
                downloaded = 0
                report(0, total)

                for shard_url, size, etag in heads:
                    if self._is_fresh(shard_url, size, etag):
                        logger.info(f"Cache hit for {shard_url}")
                        downloaded += size
                        report(downloaded, total)
                        continue
                    downloaded = self._fetch(client, shard_url, etag, downloaded, total, report)

        logger.info(f"Downloading {url} ({len(urls)} file(s))...")
        try:
            await loop.run_in_executor(None, do_download)
        except Exception as e:
            logger.error(f"Download failed: {e}")
            for shard_url in urls:
                self.cache.partial_path_for(shard_url).unlink(missing_ok=True)
            raise
        logger.info(f"Downloaded {url}")

    def _is_fresh(self, url: str, size: int, etag: str) -> bool:
        path = self.cache.path_for(url)
        if not path.exists() or path.stat().st_size != size:
            return False
        metadata = self.cache.read_metadata(path.name)
        return metadata is not None and metadata.etag == etag

    def _fetch(
        self,
        client: httpx.Client,
        url: str,
        etag: str,
        downloaded: int,
        total: int,
        report,
    ) -> int:
        """Stream one file into the cache, returning the running byte count."""
        partial_path = self.cache.partial_path_for(url)
        written = 0

        with client.stream("GET", url) as response:
            response.raise_for_status()
            original_size = int(response.headers.get("content-length", 0))

            with open(partial_path, "wb") as f:
                for chunk in response.iter_bytes(chunk_size=CHUNK_SIZE):
                    if chunk:
                        f.write(chunk)
                        written += len(chunk)
                        report(downloaded + written, total)

        partial_path.replace(self.cache.path_for(url))
        self.cache.write_metadata(url, original_size or written, etag)
        return downloaded + written

    # ─────────────────────────────────────────────────────────
    # LIFECYCLE
    # ─────────────────────────────────────────────────────────

    async def load_model_from_url(self, url: str, params: InferenceParams) -> None:
        path = self.cache.path_for(url)
        if not path.exists():
            raise FileNotFoundError(f"Model not in cache: {url}")
        await self._load(path, params)

    async def load_model(self, files: Sequence[Path], params: InferenceParams) -> None:
        # llama.cpp locates sibling shards next to the first one
        await self._load(Path(files[0]), params)

    async def _load(self, model_path: Path, params: InferenceParams) -> None:
        """Load model in thread pool."""
        from llama_cpp import Llama

        if self._llm is not None:
            raise RuntimeError("A model is already loaded in this runtime")

        loop = asyncio.get_event_loop()
        logger.info(f"Loading {model_path.name}...")

        def do_load():
            try:
                return Llama(
                    model_path=str(model_path),
                    n_ctx=params.n_context,
                    n_batch=params.n_batch,
                    n_threads=params.n_threads if params.n_threads > 0 else None,
                    n_gpu_layers=self.n_gpu_layers,
                    verbose=False,
                )
            except Exception as e:
                logger.error(f"Failed to load model {model_path}: {e}")
                raise RuntimeError(f"Model loading failed: {e}") from e

        self._llm = await loop.run_in_executor(None, do_load)
        logger.info(f"Model {model_path.name} loaded successfully")

    async def exit(self) -> None:
        if self._llm is None:
            return
        # Catch any destructor errors from llama-cpp-python
        try:
            del self._llm
        except Exception as e:
            logger.warning(f"Error during model cleanup: {e}")
        self._llm = None

    def is_multithread(self) -> bool:
        return self._llm is not None and self._llm.n_threads > 1

    def get_chat_template(self) -> Optional[str]:
        if self._llm is None:
            return None
        return self._llm.metadata.get("tokenizer.chat_template")

    # ─────────────────────────────────────────────────────────
    # INFERENCE
    # ─────────────────────────────────────────────────────────

    async def create_completion(
        self,
        prompt: str,
        n_predict: int,
        temperature: float,
        on_new_token: Optional[TokenCallback] = None,
    ) -> str:
        """
        Text completion with streaming.

        The callback runs on the event loop; calling its abort argument
        stops generation before the next piece is produced.
        """
        if self._llm is None:
            raise RuntimeError("No model loaded")

        llm = self._llm
        loop = asyncio.get_event_loop()
        q: queue.Queue = queue.Queue()
        abort_event = threading.Event()

        def generate():
            try:
                for chunk in llm.create_completion(
                    prompt,
                    max_tokens=n_predict,
                    temperature=temperature,
                    stream=True,
                ):
                    if abort_event.is_set():
                        break
                    q.put(chunk["choices"][0]["text"])
                q.put(None)  # Signal completion
            except Exception as e:
                q.put(e)

        thread = threading.Thread(target=generate, daemon=True)
        thread.start()

        text = ""
        count = 0
        try:
            while True:
                try:
                    item = await loop.run_in_executor(None, lambda: q.get(timeout=0.1))
                except queue.Empty:
                    continue
                if item is None:
                    break
                if isinstance(item, Exception):
                    raise item

                text += item
                count += 1
                if on_new_token:
                    on_new_token(count, item, text, abort_event.set)
        finally:
            # Worker must be gone before another completion touches the model
            abort_event.set()
            await loop.run_in_executor(None, thread.join)

        return text
