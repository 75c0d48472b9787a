"""Models API routes."""

import shutil
import uuid
from pathlib import Path

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile

from modeldock.api.orchestrator_store import get_orchestrator
from modeldock.api.schemas import CatalogResponse, ModelRequest, SuccessResponse
from modeldock.config import UPLOAD_DIR
from modeldock.engine.orchestrator import ModelOrchestrator
from modeldock.models.exceptions import (
    DuplicateModelError,
    ModelDockError,
    ModelNotCachedError,
)
from modeldock.models.types import InferenceParams, ManageModel
from modeldock.utils.logging import logger

router = APIRouter(prefix="/models", tags=["models"])


def _catalog(orch: ModelOrchestrator) -> CatalogResponse:
    current = orch.current_model
    return CatalogResponse(
        models=orch.models,
        current_model=current.url if current else None,
        is_downloading=orch.is_downloading,
        is_loading_model=orch.is_loading_model,
        is_generating=orch.completion.is_generating,
        runtime_info=orch.runtime_info,
        params=orch.params,
        last_error=orch.last_error,
    )


def _find(orch: ModelOrchestrator, url: str) -> ManageModel:
    model = orch.get_model(url)
    if model is None:
        raise HTTPException(404, "Model not found")
    return model


def _to_http_error(e: ModelDockError) -> HTTPException:
    if isinstance(e, (DuplicateModelError, ModelNotCachedError)):
        return HTTPException(409, str(e))
    return HTTPException(400, str(e))


def _busy_error() -> HTTPException:
    return HTTPException(409, "Another model operation is in progress")


def _discard_upload(staging_dir: Path) -> None:
    shutil.rmtree(staging_dir, ignore_errors=True)
    logger.info(f"Removed staged upload {staging_dir}")


# ─────────────────────────────────────────────────────────
# CATALOG
# ─────────────────────────────────────────────────────────


@router.get("", response_model=CatalogResponse)
async def list_models(orch: ModelOrchestrator = Depends(get_orchestrator)):
    """List the catalog with lifecycle state."""
    return _catalog(orch)


@router.post("/reload", response_model=CatalogResponse)
async def reload_models(orch: ModelOrchestrator = Depends(get_orchestrator)):
    """Rebuild the catalog from storage and cache."""
    await orch.reload_models()
    return _catalog(orch)


# ─────────────────────────────────────────────────────────
# LIFECYCLE
# ─────────────────────────────────────────────────────────


@router.post("/download", response_model=SuccessResponse)
async def download_model(
    request: ModelRequest, orch: ModelOrchestrator = Depends(get_orchestrator)
):
    """Download a model into the cache. Blocks until done."""
    model = _find(orch, request.url)
    ok = await orch.download_model(model)
    return SuccessResponse(success=ok, message=None if ok else orch.last_error)


@router.post("/load", response_model=SuccessResponse)
async def load_model(
    request: ModelRequest, orch: ModelOrchestrator = Depends(get_orchestrator)
):
    """Load a downloaded model."""
    model = _find(orch, request.url)
    try:
        ok = await orch.load_model(model)
    except ModelDockError as e:
        raise _to_http_error(e)
    return SuccessResponse(success=ok, message=None if ok else orch.last_error)


@router.post("/unload", response_model=SuccessResponse)
async def unload_model(orch: ModelOrchestrator = Depends(get_orchestrator)):
    """Unload the current model."""
    await orch.unload_model()
    return SuccessResponse(success=True)


@router.delete("", response_model=CatalogResponse)
async def remove_model(
    request: ModelRequest, orch: ModelOrchestrator = Depends(get_orchestrator)
):
    """Remove a model's cached files and any user-added entry."""
    model = _find(orch, request.url)
    if model.user_added:
        removed = await orch.remove_custom_model(model)
    else:
        removed = await orch.remove_model(model)
    if not removed:
        raise _busy_error()
    return _catalog(orch)


@router.delete("/all", response_model=CatalogResponse)
async def remove_all_models(orch: ModelOrchestrator = Depends(get_orchestrator)):
    """Clear every cached model."""
    if not await orch.remove_all_models():
        raise _busy_error()
    return _catalog(orch)


# ─────────────────────────────────────────────────────────
# USER MODELS
# ─────────────────────────────────────────────────────────


@router.post("/custom", response_model=CatalogResponse)
async def add_custom_model(
    request: ModelRequest, orch: ModelOrchestrator = Depends(get_orchestrator)
):
    """Add a remote GGUF model by URL."""
    try:
        added = await orch.add_custom_model(request.url)
    except ModelDockError as e:
        raise _to_http_error(e)
    if not added:
        raise _busy_error()
    return _catalog(orch)


@router.post("/local", response_model=CatalogResponse)
async def add_local_model(
    files: list[UploadFile] = File(...),
    orch: ModelOrchestrator = Depends(get_orchestrator),
):
    """
    Upload local GGUF files and load them straight away.

    The staged copies live as long as the catalog entry does.
    """
    if orch.is_downloading or orch.is_loading_model or orch.current_model is not None:
        raise _busy_error()

    staging_dir = UPLOAD_DIR / uuid.uuid4().hex
    staging_dir.mkdir(parents=True, exist_ok=True)

    try:
        paths: list[Path] = []
        for upload in files:
            dest = staging_dir / Path(upload.filename or "model.gguf").name
            with open(dest, "wb") as f:
                shutil.copyfileobj(upload.file, f)
            paths.append(dest)
        logger.info(f"Staged {len(paths)} uploaded file(s) in {staging_dir}")

        loaded = await orch.add_local_model(
            paths, on_removed=lambda: _discard_upload(staging_dir)
        )
    except ModelDockError as e:
        _discard_upload(staging_dir)
        raise _to_http_error(e)
    except Exception:
        _discard_upload(staging_dir)
        raise

    if not loaded:
        _discard_upload(staging_dir)
    return _catalog(orch)


# ─────────────────────────────────────────────────────────
# SETTINGS
# ─────────────────────────────────────────────────────────


@router.get("/params", response_model=InferenceParams)
async def get_params(orch: ModelOrchestrator = Depends(get_orchestrator)):
    return orch.params


@router.put("/params", response_model=InferenceParams)
async def set_params(
    params: InferenceParams, orch: ModelOrchestrator = Depends(get_orchestrator)
):
    """Save inference parameters; they apply on the next load."""
    orch.set_params(params)
    return orch.params


@router.get("/welcome")
async def get_welcome(orch: ModelOrchestrator = Depends(get_orchestrator)):
    return {"show_welcome": orch.show_welcome}


@router.post("/welcome/dismiss", response_model=SuccessResponse)
async def dismiss_welcome(orch: ModelOrchestrator = Depends(get_orchestrator)):
    orch.dismiss_welcome()
    return SuccessResponse(success=True)
