"""Models module - Catalog records, verification and errors."""

from modeldock.models.exceptions import (
    DuplicateModelError,
    EmptySelectionError,
    FileReadError,
    InvalidFormatError,
    ModelDockError,
    ModelNotCachedError,
    ModelVerificationError,
)
from modeldock.models.types import (
    InferenceParams,
    ManageModel,
    Model,
    ModelState,
    RuntimeInfo,
    VerifiedFiles,
)
from modeldock.models.verifier import strip_shard_suffix, verify_local_model

__all__ = [
    "DuplicateModelError",
    "EmptySelectionError",
    "FileReadError",
    "InvalidFormatError",
    "ModelDockError",
    "ModelNotCachedError",
    "ModelVerificationError",
    "InferenceParams",
    "ManageModel",
    "Model",
    "ModelState",
    "RuntimeInfo",
    "VerifiedFiles",
    "strip_shard_suffix",
    "verify_local_model",
]
