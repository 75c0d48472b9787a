"""Engine module - Model lifecycle orchestration."""

from modeldock.engine.completion import CancellationToken, CompletionSession
from modeldock.engine.orchestrator import ModelOrchestrator

__all__ = [
    "CancellationToken",
    "CompletionSession",
    "ModelOrchestrator",
]
