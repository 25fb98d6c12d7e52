"""Per-request orchestration of a streamed thought.

A session moves through Admitted -> Streaming -> one of Completed, Truncated,
Cancelled or Failed. Every path except Cancelled ends the event stream with
the [DONE] marker, so the client always sees a well-formed sequence once
streaming has begun.
"""

import enum
import json
import logging
import random
from typing import Awaitable, Callable

from thought_relay.admission import AdmissionController, AdmissionDecision
from thought_relay.cancellation import CancelToken
from thought_relay.prompts import build_prompt, pick_fallback
from thought_relay.repetition import is_repetitive
from thought_relay.state import ClientStateStore
from thought_relay.upstream import ForwardStatus, UpstreamForwarder

logger = logging.getLogger(__name__)

FrameSink = Callable[[str], Awaitable[None]]

DONE_FRAME = "data: [DONE]\n\n"


class SessionOutcome(str, enum.Enum):
    COMPLETED = "completed"
    TRUNCATED = "truncated"
    CANCELLED = "cancelled"
    FAILED = "failed"


def sse_event(payload: dict) -> str:
    """Format a payload as one SSE data frame."""
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


class SessionOrchestrator:
    """Wire admission, prompt building, forwarding and history together.

    Args:
        store: Shared client state
        admission: Admission controller backed by the same store
        forwarder: Upstream stream forwarder
        rng: Random source for triggers and fallbacks
    """

    def __init__(
        self,
        store: ClientStateStore,
        admission: AdmissionController,
        forwarder: UpstreamForwarder,
        rng: random.Random | None = None,
    ):
        self.store = store
        self.admission = admission
        self.forwarder = forwarder
        self.rng = rng or random.Random()

    def admit(self, client_id: str) -> AdmissionDecision:
        return self.admission.check_and_record(client_id)

    def build_prompt(self, client_id: str) -> str:
        history = self.store.get_history(client_id)
        logger.debug(f"Building prompt for {client_id} with {len(history)} previous thoughts")
        return build_prompt(history, self.rng)

    async def run(self, client_id: str, sink: FrameSink, cancel: CancelToken) -> SessionOutcome:
        """Stream one thought for an admitted client.

        Args:
            client_id: Client identity
            sink: Awaitable callback receiving formatted SSE frames
            cancel: Fired when the client disconnects

        Returns:
            The terminal SessionOutcome
        """
        prompt = self.build_prompt(client_id)

        async def send_char(char: str) -> None:
            await sink(sse_event({"char": char}))

        try:
            result = await self.forwarder.forward(prompt, send_char, cancel)
        except Exception as e:
            if cancel.cancelled:
                logger.info(f"Session for {client_id} cancelled during failure: {e}")
                return SessionOutcome.CANCELLED
            logger.error(f"Thought generation failed for {client_id}: {e}", exc_info=True)
            await self._send_fallback(str(e), sink, cancel)
            return SessionOutcome.FAILED

        if result.status is ForwardStatus.CANCELLED:
            return SessionOutcome.CANCELLED

        thought = result.text.strip()

        if result.status is ForwardStatus.TRUNCATED or is_repetitive(thought):
            # Degenerate context would seed the next prompt with the same loop
            self.store.clear_history(client_id)
            logger.warning(f"Cleared history for {client_id} after repetition loop")
            await self._finish(sink, cancel)
            return SessionOutcome.TRUNCATED

        if thought:
            self.store.append_history(client_id, thought)
        self.store.touch(client_id)

        await self._finish(sink, cancel)
        preview = thought[:80] + ("..." if len(thought) > 80 else "")
        logger.info(f"Thought complete for {client_id} ({len(thought)} chars): {preview!r}")
        return SessionOutcome.COMPLETED

    async def _finish(self, sink: FrameSink, cancel: CancelToken) -> None:
        if not cancel.cancelled:
            await sink(DONE_FRAME)

    async def _send_fallback(self, error: str, sink: FrameSink, cancel: CancelToken) -> None:
        """Stream a canned thought exactly like a generated one."""
        fallback = pick_fallback(self.rng)

        if cancel.cancelled:
            return
        await sink(sse_event({"error": error, "fallback": True}))

        for char in fallback:
            if cancel.cancelled:
                return
            await sink(sse_event({"char": char}))

        await self._finish(sink, cancel)
