"""
Single in-flight text generation against the loaded model.
"""

import threading
from typing import TYPE_CHECKING, Callable, Optional

from modeldock.utils.logging import logger

if TYPE_CHECKING:
    from modeldock.engine.orchestrator import ModelOrchestrator


class CancellationToken:
    """Cooperative stop request polled by the token callback."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class CompletionSession:
    """
    Runs one completion at a time on the orchestrator's runtime.

    Cancellation is cooperative: the runtime is asked to abort the next
    time it reports a token, so a few more tokens may still arrive.
    """

    def __init__(self, orchestrator: "ModelOrchestrator"):
        self.orchestrator = orchestrator
        self.is_generating = False
        self._cancel_token: Optional[CancellationToken] = None

    async def generate(
        self,
        prompt: str,
        on_token: Callable[[str], None],
        cancel_token: Optional[CancellationToken] = None,
    ) -> Optional[str]:
        """
        Generate a completion for prompt.

        Args:
            prompt: Raw prompt text
            on_token: Receives the accumulated text after every token,
                and the final text once generation ends
            cancel_token: Optional token; one is created if omitted

        Returns:
            The final text, or None if no model is ready to generate
        """
        orchestrator = self.orchestrator
        if (
            orchestrator.is_downloading
            or orchestrator.is_loading_model
            or orchestrator.current_model is None
            or self.is_generating
        ):
            return None

        stop = cancel_token or CancellationToken()
        self._cancel_token = stop
        self.is_generating = True

        def on_new_token(token: int, piece: str, current_text: str, abort: Callable[[], None]):
            on_token(current_text)
            if stop.cancelled:
                abort()

        params = orchestrator.params
        try:
            result = await orchestrator.runtime.create_completion(
                prompt,
                n_predict=params.n_predict,
                temperature=params.temperature,
                on_new_token=on_new_token,
            )
            on_token(result)
            if stop.cancelled:
                logger.info("Completion stopped by user")
            return result
        finally:
            self.is_generating = False
            self._cancel_token = None

    def cancel(self) -> None:
        """Ask the running generation to stop."""
        if self._cancel_token is not None:
            self._cancel_token.cancel()
