"""Cancellation token shared by the disconnect and timeout paths."""

import asyncio
import enum


class CancelReason(str, enum.Enum):
    DISCONNECT = "disconnect"
    TIMEOUT = "timeout"


class CancelToken:
    """Idempotent one-shot cancellation signal.

    The first cancel() wins and records its reason; later calls are no-ops.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: CancelReason | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: CancelReason = CancelReason.DISCONNECT) -> None:
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()

    async def wait(self) -> CancelReason | None:
        await self._event.wait()
        return self.reason
