"""In-memory per-client state for the thought relay.

This module provides:
1. ClientStateStore - rate records and recent-output history per client
2. run_sweeper() - background task expiring stale entries

All reads and writes, including the periodic sweep, go through a single lock
so concurrent requests from the same client never lose updates.
"""

import asyncio
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

HISTORY_CAPACITY: int = 2
HISTORY_TTL_SECONDS: float = 30 * 60
SWEEP_INTERVAL_SECONDS: float = 10 * 60
RATE_RECORD_TTL_FACTOR: int = 10


@dataclass
class RateRecord:
    client_id: str
    last_request_at: float


@dataclass
class HistoryRecord:
    client_id: str
    last_activity_at: float
    recent_outputs: deque = field(default_factory=lambda: deque(maxlen=HISTORY_CAPACITY))


@dataclass
class SweepReport:
    """Entry counts before and after a sweep."""
    rate_before: int
    rate_after: int
    history_before: int
    history_after: int


class ClientStateStore:
    """Thread-safe store of rate and history records keyed by client identity.

    Args:
        min_interval: Minimum seconds between admitted requests; rate records
            idle for RATE_RECORD_TTL_FACTOR times this are swept
        history_ttl: Seconds of inactivity after which history is swept
        clock: Monotonic time source, overridable in tests
    """

    def __init__(
        self,
        min_interval: float,
        history_ttl: float = HISTORY_TTL_SECONDS,
        clock=time.monotonic,
    ):
        self.min_interval = min_interval
        self.history_ttl = history_ttl
        self.clock = clock
        self._rates: dict[str, RateRecord] = {}
        self._histories: dict[str, HistoryRecord] = {}
        self._lock = threading.Lock()

    @property
    def rate_ttl(self) -> float:
        return self.min_interval * RATE_RECORD_TTL_FACTOR

    def try_record_request(self, client_id: str, now: float | None = None) -> float:
        """Record a request if the minimum interval has elapsed.

        The check and the write happen under one lock acquisition.

        Args:
            client_id: Client identity
            now: Request time (defaults to clock())

        Returns:
            0.0 if the request was recorded, otherwise the seconds remaining
            until the client may request again
        """
        if now is None:
            now = self.clock()

        with self._lock:
            record = self._rates.get(client_id)
            if record is not None:
                elapsed = now - record.last_request_at
                if elapsed < self.min_interval:
                    return self.min_interval - elapsed
                record.last_request_at = now
            else:
                self._rates[client_id] = RateRecord(client_id, now)
            return 0.0

    def peek_last_request_at(self, client_id: str) -> float | None:
        """Inspection only; admission goes through try_record_request."""
        with self._lock:
            record = self._rates.get(client_id)
            return record.last_request_at if record else None

    def get_history(self, client_id: str) -> list[str]:
        """Return the client's recent outputs, oldest first."""
        with self._lock:
            record = self._histories.get(client_id)
            return list(record.recent_outputs) if record else []

    def append_history(self, client_id: str, text: str, now: float | None = None) -> None:
        """Append an output, evicting the oldest one when at capacity."""
        if now is None:
            now = self.clock()

        with self._lock:
            record = self._histories.get(client_id)
            if record is None:
                record = HistoryRecord(client_id, now)
                self._histories[client_id] = record
            record.recent_outputs.append(text)
            record.last_activity_at = max(record.last_activity_at, now)

    def clear_history(self, client_id: str) -> None:
        with self._lock:
            self._histories.pop(client_id, None)

    def touch(self, client_id: str, now: float | None = None) -> None:
        """Refresh the activity timestamp of an existing history record."""
        if now is None:
            now = self.clock()

        with self._lock:
            record = self._histories.get(client_id)
            if record is not None:
                record.last_activity_at = max(record.last_activity_at, now)

    def sweep(self, now: float | None = None) -> SweepReport:
        """Drop idle rate records and inactive histories.

        A swept history also removes the client's rate record.
        """
        if now is None:
            now = self.clock()

        with self._lock:
            rate_before = len(self._rates)
            history_before = len(self._histories)

            for client_id, record in list(self._histories.items()):
                if now - record.last_activity_at > self.history_ttl:
                    del self._histories[client_id]
                    self._rates.pop(client_id, None)

            for client_id, record in list(self._rates.items()):
                if now - record.last_request_at > self.rate_ttl:
                    del self._rates[client_id]

            return SweepReport(
                rate_before=rate_before,
                rate_after=len(self._rates),
                history_before=history_before,
                history_after=len(self._histories),
            )

    def stats(self) -> dict:
        with self._lock:
            return {"rate_records": len(self._rates), "histories": len(self._histories)}


async def run_sweeper(store: ClientStateStore, interval: float = SWEEP_INTERVAL_SECONDS) -> None:
    """Sweep the store every interval seconds until cancelled."""
    while True:
        await asyncio.sleep(interval)
        report = store.sweep()
        logger.info(
            f"State cleanup: rate records {report.rate_before} -> {report.rate_after}, "
            f"histories {report.history_before} -> {report.history_after}"
        )
