"""Completion API routes."""

import asyncio
import json

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from modeldock.api.orchestrator_store import get_orchestrator
from modeldock.api.schemas import CompletionRequest, CompletionResponse, SuccessResponse
from modeldock.engine.completion import CompletionSession
from modeldock.engine.orchestrator import ModelOrchestrator
from modeldock.utils.logging import logger

router = APIRouter(prefix="/chat", tags=["chat"])


@router.post("/completion")
async def create_completion(
    request: CompletionRequest, orch: ModelOrchestrator = Depends(get_orchestrator)
):
    """Generate text with the loaded model."""
    if orch.current_model is None:
        raise HTTPException(409, "No model loaded")
    if orch.completion.is_generating:
        raise HTTPException(409, "A completion is already running")

    logger.info(f"Completion request: {request.prompt[:50]}...")

    if request.stream:
        return StreamingResponse(
            _stream_completion(orch.completion, request.prompt),
            media_type="text/event-stream",
        )

    result = await orch.completion.generate(request.prompt, lambda text: None)
    if result is None:
        raise HTTPException(409, "Model is busy")
    return CompletionResponse(content=result)


async def _stream_completion(session: CompletionSession, prompt: str):
    """Stream newly generated text as SSE."""
    q: asyncio.Queue = asyncio.Queue()

    async def run():
        try:
            await session.generate(prompt, q.put_nowait)
        finally:
            q.put_nowait(None)

    task = asyncio.create_task(run())
    try:
        sent = ""
        while True:
            text = await q.get()
            if text is None:
                break
            delta = text[len(sent):] if text.startswith(sent) else text
            sent = text
            if delta:
                yield f"data: {json.dumps(delta)}\n\n"
    finally:
        # Closed early when the client disconnects
        if not task.done():
            session.cancel()
        await task

    yield "data: [DONE]\n\n"


@router.post("/stop", response_model=SuccessResponse)
async def stop_completion(orch: ModelOrchestrator = Depends(get_orchestrator)):
    """Ask the running completion to stop."""
    orch.completion.cancel()
    return SuccessResponse(success=True)
