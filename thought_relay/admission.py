"""Per-client admission control based on a minimum request interval."""

import logging
import math
from dataclasses import dataclass

from thought_relay.state import ClientStateStore

logger = logging.getLogger(__name__)

MIN_INTERVAL_SECONDS: float = 3.0


@dataclass(frozen=True)
class AdmissionDecision:
    allowed: bool
    retry_after: int = 0


class AdmissionController:
    """Gate requests so each client waits min_interval between them.

    An admitted request counts against the window even if it later fails:
    the controller gates admission, not success.
    """

    def __init__(self, store: ClientStateStore):
        self.store = store

    @property
    def min_interval(self) -> float:
        return self.store.min_interval

    def check_and_record(self, client_id: str, now: float | None = None) -> AdmissionDecision:
        """Admit the request and record its time, or deny with a retry hint.

        Args:
            client_id: Client identity
            now: Request time on the store's clock (defaults to now)

        Returns:
            AdmissionDecision; retry_after is whole seconds, rounded up
        """
        remaining = self.store.try_record_request(client_id, now)
        if remaining > 0:
            retry_after = math.ceil(remaining)
            logger.info(f"Rate limit hit for {client_id}, retry in {retry_after}s")
            return AdmissionDecision(allowed=False, retry_after=retry_after)
        return AdmissionDecision(allowed=True)
