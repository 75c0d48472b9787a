"""
Catalog records shared by the orchestrator, the runtime and the API.
"""

from enum import Enum

from pydantic import BaseModel, Field

from modeldock.config import DEFAULT_INFERENCE_PARAMS


class ModelState(str, Enum):
    """Lifecycle state of a catalog entry."""

    NOT_DOWNLOADED = "not_downloaded"
    DOWNLOADING = "downloading"
    READY = "ready"
    LOADING = "loading"
    LOADED = "loaded"


class Model(BaseModel):
    """A catalog entry as persisted in storage."""

    url: str  # Remote URL, or base file name for local models
    size: int = 0  # bytes
    user_added: bool = False
    user_added_local: bool = False


class ManageModel(Model):
    """A catalog entry annotated with its current lifecycle state."""

    name: str
    state: ModelState = ModelState.NOT_DOWNLOADED
    download_percent: float = Field(default=0.0, ge=0.0, le=1.0)

    def to_model(self) -> Model:
        """Strip the ephemeral fields."""
        return Model(
            url=self.url,
            size=self.size,
            user_added=self.user_added,
            user_added_local=self.user_added_local,
        )


class InferenceParams(BaseModel):
    """Parameters forwarded to the runtime on load and completion."""

    n_threads: int = DEFAULT_INFERENCE_PARAMS["n_threads"]
    n_context: int = DEFAULT_INFERENCE_PARAMS["n_context"]
    n_batch: int = DEFAULT_INFERENCE_PARAMS["n_batch"]
    n_predict: int = DEFAULT_INFERENCE_PARAMS["n_predict"]
    temperature: float = DEFAULT_INFERENCE_PARAMS["temperature"]


class RuntimeInfo(BaseModel):
    """Snapshot of the runtime taken right after a model is loaded."""

    is_multithread: bool
    has_chat_template: bool


class VerifiedFiles(BaseModel):
    """Result of verifying a local file selection."""

    base_name: str
    total_size: int
