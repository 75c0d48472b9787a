"""
Lifecycle orchestrator for the model catalog.

Owns the in-memory catalog and the single runtime handle, and enforces
the download/load/unload state machine:

    NOT_DOWNLOADED -> DOWNLOADING -> READY -> LOADING -> LOADED -> READY

Only one of download, load or a loaded model may exist at a time. A call
that finds another operation in progress returns without doing anything.
"""

from contextlib import contextmanager
from pathlib import Path
from typing import Awaitable, Callable, Optional, Sequence

from pydantic import ValidationError

from modeldock.config import DEFAULT_INFERENCE_PARAMS, LIST_MODELS
from modeldock.engine.completion import CompletionSession
from modeldock.models.catalog import build_catalog
from modeldock.models.custom import verify_custom_model
from modeldock.models.exceptions import DuplicateModelError, ModelNotCachedError
from modeldock.models.types import (
    InferenceParams,
    ManageModel,
    Model,
    ModelState,
    RuntimeInfo,
)
from modeldock.models.verifier import verify_local_model
from modeldock.runtime.base import ModelRuntime
from modeldock.runtime.llama_runtime import LlamaRuntime
from modeldock.utils.logging import logger
from modeldock.utils.storage import Storage

CUSTOM_MODELS_KEY = "custom_models"
LOCAL_MODELS_KEY = "local_models"
PARAMS_KEY = "params"
WELCOME_KEY = "welcome"

TRANSIENT_STATES = (ModelState.DOWNLOADING, ModelState.LOADING, ModelState.LOADED)

RuntimeFactory = Callable[[], ModelRuntime]
CustomVerifier = Callable[[str], Awaitable[Model]]


class ModelOrchestrator:
    """
    Tracks built-in, custom and local models and drives their lifecycle.

    The runtime handle is replaced with a fresh one from runtime_factory
    after every unload or failed load.
    """

    def __init__(
        self,
        storage: Optional[Storage] = None,
        runtime_factory: RuntimeFactory = LlamaRuntime,
        builtin_models: Optional[Sequence[Model]] = None,
        custom_verifier: CustomVerifier = verify_custom_model,
    ):
        self.storage = storage or Storage()
        self._runtime_factory = runtime_factory
        self.runtime: ModelRuntime = runtime_factory()
        self.builtin_models = (
            [Model(**m) for m in LIST_MODELS]
            if builtin_models is None
            else list(builtin_models)
        )
        self._verify_custom = custom_verifier

        self.models: list[ManageModel] = []
        self.runtime_info: Optional[RuntimeInfo] = None
        self.last_error: Optional[str] = None
        self.params = self._load_params()
        self.completion = CompletionSession(self)
        self._in_flight = 0
        self._local_cleanups: dict[str, Callable[[], None]] = {}

    async def initialize(self):
        """Build the catalog for the first time."""
        await self.reload_models()
        logger.info(f"ModelOrchestrator initialized with {len(self.models)} models")

    # ─────────────────────────────────────────────────────────
    # STATE
    # ─────────────────────────────────────────────────────────

    @property
    def is_downloading(self) -> bool:
        return any(m.state == ModelState.DOWNLOADING for m in self.models)

    @property
    def is_loading_model(self) -> bool:
        return self._in_flight > 0 or any(
            m.state == ModelState.LOADING for m in self.models
        )

    @property
    def current_model(self) -> Optional[ManageModel]:
        """The loaded model, if any."""
        return next((m for m in self.models if m.state == ModelState.LOADED), None)

    def _is_busy(self) -> bool:
        return self.is_downloading or self.is_loading_model

    def _is_blocked(self) -> bool:
        return self._is_busy() or self.current_model is not None

    @contextmanager
    def _operation(self):
        """Mark an operation in flight until the block exits."""
        self._in_flight += 1
        try:
            yield
        finally:
            self._in_flight -= 1

    def get_model(self, url: str) -> Optional[ManageModel]:
        return next((m for m in self.models if m.url == url), None)

    def _set_state(
        self, url: str, state: ModelState, download_percent: float = 0.0
    ) -> None:
        self.models = [
            m.model_copy(update={"state": state, "download_percent": download_percent})
            if m.url == url
            else m
            for m in self.models
        ]

    async def reload_models(self):
        """
        Rebuild the catalog from storage and the runtime cache.

        Entries that are downloading, loading or loaded keep their state.
        """
        entries = await self.runtime.cache.list()
        catalog = build_catalog(
            self.builtin_models,
            self._load_models(CUSTOM_MODELS_KEY),
            self._load_models(LOCAL_MODELS_KEY),
            entries,
        )

        in_flight = {m.url: m for m in self.models if m.state in TRANSIENT_STATES}
        self.models = [
            m.model_copy(
                update={
                    "state": in_flight[m.url].state,
                    "download_percent": in_flight[m.url].download_percent,
                }
            )
            if m.url in in_flight
            else m
            for m in catalog
        ]

    # ─────────────────────────────────────────────────────────
    # PERSISTENCE
    # ─────────────────────────────────────────────────────────

    def _load_models(self, key: str) -> list[Model]:
        raw = self.storage.load(key, [])
        if not isinstance(raw, list):
            logger.warning(f"Ignoring malformed '{key}' in storage")
            return []

        models = []
        for item in raw:
            try:
                models.append(Model(**item))
            except (TypeError, ValidationError) as e:
                logger.warning(f"Skipping invalid entry in '{key}': {e}")
        return models

    def _save_models(self, key: str, models: Sequence[Model]) -> None:
        self.storage.save(key, [m.model_dump() for m in models])

    def _forget(self, key: str, url: str) -> None:
        models = self._load_models(key)
        self._save_models(key, [m for m in models if m.url != url])

    def _load_params(self) -> InferenceParams:
        raw = self.storage.load(PARAMS_KEY, DEFAULT_INFERENCE_PARAMS)
        try:
            return InferenceParams(**raw)
        except (TypeError, ValidationError) as e:
            logger.warning(f"Invalid inference params in storage, using defaults: {e}")
            return InferenceParams()

    def set_params(self, params: InferenceParams) -> None:
        """Persist new inference parameters; they apply on next load."""
        self.storage.save(PARAMS_KEY, params.model_dump())
        self.params = params

    @property
    def show_welcome(self) -> bool:
        return bool(self.storage.load(WELCOME_KEY, True))

    def dismiss_welcome(self) -> None:
        self.storage.save(WELCOME_KEY, False)

    # ─────────────────────────────────────────────────────────
    # RUNTIME HANDLE
    # ─────────────────────────────────────────────────────────

    async def _reset_runtime(self) -> None:
        """Tear down the current runtime and replace it with a fresh one."""
        old = self.runtime
        try:
            await old.exit()
        except Exception as e:
            logger.warning(f"Error during runtime teardown: {e}")
        self.runtime = self._runtime_factory()

    def _capture_runtime_info(self) -> None:
        self.runtime_info = RuntimeInfo(
            is_multithread=self.runtime.is_multithread(),
            has_chat_template=bool(self.runtime.get_chat_template()),
        )

    async def shutdown(self):
        """Release the runtime on application exit."""
        try:
            await self.runtime.exit()
        except Exception as e:
            logger.warning(f"Error during runtime shutdown: {e}")
        self.runtime_info = None

    # ─────────────────────────────────────────────────────────
    # DOWNLOAD
    # ─────────────────────────────────────────────────────────

    async def download_model(self, model: Model) -> bool:
        """
        Download a model into the runtime cache.

        Returns:
            True if the model ended up READY; False if the call was a
            no-op or the download failed (see last_error)
        """
        if self._is_blocked():
            logger.info(f"Ignoring download of {model.url}: another operation is active")
            return False
        return await self._download(model)

    async def _download(self, model: Model) -> bool:
        url = model.url
        self._set_state(url, ModelState.DOWNLOADING, 0.0)

        def on_progress(loaded: int, total: int):
            current = self.get_model(url)
            if total <= 0 or current is None or current.state != ModelState.DOWNLOADING:
                return
            percent = min(max(loaded / total, 0.0), 1.0)
            if percent > current.download_percent:
                self._set_state(url, ModelState.DOWNLOADING, percent)

        try:
            await self.runtime.download_model(url, progress_callback=on_progress)
        except Exception as e:
            message = str(e) or "unknown error while downloading model"
            logger.error(f"Failed to download {url}: {message}")
            self.last_error = message
            await self._reset_runtime()
            self._set_state(url, ModelState.NOT_DOWNLOADED)
            return False

        self._set_state(url, ModelState.READY)
        logger.info(f"Model {url} downloaded")
        return True

    # ─────────────────────────────────────────────────────────
    # LOAD / UNLOAD
    # ─────────────────────────────────────────────────────────

    async def load_model(self, model: Model) -> bool:
        """
        Load a downloaded model into the runtime.

        Custom models are re-downloaded first so the cached copy is current.

        Raises:
            ModelNotCachedError: The model has not been downloaded
        """
        if self._is_blocked():
            logger.info(f"Ignoring load of {model.url}: another operation is active")
            return False

        url = model.url
        with self._operation():
            if model.user_added:
                await self._download(model)

            if await self.runtime.cache.get_size(url) <= 0:
                raise ModelNotCachedError(f"Model is not in cache: {url}")

            self._set_state(url, ModelState.LOADING)
            try:
                await self.runtime.load_model_from_url(url, self.params)
            except Exception as e:
                self.last_error = f"Failed to load model: {str(e) or 'Unknown error'}"
                logger.error(self.last_error)
                await self._reset_runtime()
                self._set_state(url, ModelState.READY)
                return False

            self._set_state(url, ModelState.LOADED)
            self._capture_runtime_info()
            logger.info(f"Model {url} loaded")
            return True

    async def unload_model(self):
        """
        Unload the current model.

        Local models are single-use and leave the catalog once unloaded.
        """
        current = self.current_model
        if current is None:
            return

        await self._reset_runtime()

        if current.user_added_local:
            self._forget_local(current.url)
            self.models = [m for m in self.models if m.url != current.url]
            logger.info(f"Unloaded and removed local model {current.url}")
        else:
            self._set_state(current.url, ModelState.READY)
            logger.info(f"Unloaded {current.url}")

        self.runtime_info = None

    # ─────────────────────────────────────────────────────────
    # ADD / REMOVE
    # ─────────────────────────────────────────────────────────

    def _forget_local(self, url: str) -> None:
        self._forget(LOCAL_MODELS_KEY, url)
        cleanup = self._local_cleanups.pop(url, None)
        if cleanup is None:
            return
        try:
            cleanup()
        except Exception as e:
            logger.warning(f"Cleanup of local model {url} failed: {e}")

    async def remove_model(self, model: Model) -> bool:
        """
        Forget a user-added entry and drop its cached files.

        Returns:
            False if a download, load or another add/remove is in progress
        """
        if self._is_busy():
            logger.info(f"Ignoring removal of {model.url}: another operation is active")
            return False

        with self._operation():
            current = self.current_model
            if current is not None and current.url == model.url:
                await self.unload_model()

            if model.user_added:
                self._forget(CUSTOM_MODELS_KEY, model.url)
            if model.user_added_local:
                self._forget_local(model.url)
            else:
                try:
                    name = self.runtime.cache.get_name_from_url(model.url)
                    await self.runtime.cache.delete(name)
                except Exception as e:
                    logger.warning(f"Failed to remove model from cache: {e}")

            await self.reload_models()
        return True

    async def remove_all_models(self) -> bool:
        """Clear the whole runtime cache."""
        if self._is_busy():
            logger.info("Ignoring cache clear: another operation is active")
            return False

        with self._operation():
            await self.runtime.cache.delete_many(lambda entry: True)
            await self.reload_models()
        logger.info("Removed all cached models")
        return True

    async def add_custom_model(self, url: str) -> bool:
        """
        Add a remote model by URL.

        Returns:
            False if a download, load or another add/remove is in progress

        Raises:
            DuplicateModelError: The URL is already in the catalog
        """
        if self._is_busy():
            logger.info(f"Ignoring custom model {url}: another operation is active")
            return False

        with self._operation():
            custom = await self._verify_custom(url)
            if self.get_model(custom.url) is not None:
                raise DuplicateModelError("Model with the same URL already exist")

            current = self._load_models(CUSTOM_MODELS_KEY)
            self._save_models(CUSTOM_MODELS_KEY, [*current, custom])
            await self.reload_models()
        logger.info(f"Added custom model {custom.url}")
        return True

    async def remove_custom_model(self, model: Model) -> bool:
        return await self.remove_model(model)

    async def add_local_model(
        self,
        files: Sequence[Path],
        on_removed: Optional[Callable[[], None]] = None,
    ) -> bool:
        """
        Verify local GGUF files, add them to the catalog and load them.

        The files are loaded directly and never copied into the cache.

        Args:
            files: The model file, or every shard of a split model
            on_removed: Called once the entry leaves the catalog through
                unload or removal

        Raises:
            EmptySelectionError, InvalidFormatError, FileReadError:
                The selection is not a readable GGUF model
            DuplicateModelError: A local model with the same name exists
        """
        if self._is_blocked():
            logger.info("Ignoring local model: another operation is active")
            return False

        with self._operation():
            verified = verify_local_model(files)
            local = self._load_models(LOCAL_MODELS_KEY)
            if (
                any(m.url == verified.base_name for m in local)
                or self.get_model(verified.base_name) is not None
            ):
                raise DuplicateModelError("Model with the same file name already exists")

            entry = Model(
                url=verified.base_name,
                size=verified.total_size,
                user_added=False,
                user_added_local=True,
            )
            self._save_models(LOCAL_MODELS_KEY, [*local, entry])
            if on_removed is not None:
                self._local_cleanups[entry.url] = on_removed
            await self.reload_models()
            return await self._load_local_model(files, entry.url)

    async def _load_local_model(self, files: Sequence[Path], url: str) -> bool:
        self._set_state(url, ModelState.LOADING)
        try:
            await self.runtime.load_model(files, self.params)
        except Exception as e:
            self.last_error = f"Failed to load model: {str(e) or 'Unknown error'}"
            logger.error(self.last_error)
            await self._reset_runtime()
            self._set_state(url, ModelState.READY)
            return False

        self._set_state(url, ModelState.LOADED, 1.0)
        self._capture_runtime_info()
        logger.info(f"Local model {url} loaded")
        return True
