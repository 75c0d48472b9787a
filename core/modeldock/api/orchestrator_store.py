"""Shared orchestrator instance for API routes."""

from typing import Optional

from modeldock.engine.orchestrator import ModelOrchestrator

orchestrator: Optional[ModelOrchestrator] = None


async def get_orchestrator() -> ModelOrchestrator:
    """Get or create the orchestrator instance."""
    global orchestrator
    if orchestrator is None:
        orchestrator = ModelOrchestrator()
        await orchestrator.initialize()
    return orchestrator
