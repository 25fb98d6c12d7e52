"""Streaming thought relay: admission control, context history and repetition guard."""

from .admission import AdmissionController, AdmissionDecision
from .cancellation import CancelReason, CancelToken
from .errors import ThoughtRelayError, UpstreamError
from .repetition import is_repetitive, truncate_words
from .session import SessionOrchestrator, SessionOutcome
from .state import ClientStateStore
from .upstream import ForwardResult, ForwardStatus, UpstreamForwarder

__all__ = [
    "AdmissionController",
    "AdmissionDecision",
    "CancelReason",
    "CancelToken",
    "ThoughtRelayError",
    "UpstreamError",
    "is_repetitive",
    "truncate_words",
    "SessionOrchestrator",
    "SessionOutcome",
    "ClientStateStore",
    "ForwardResult",
    "ForwardStatus",
    "UpstreamForwarder",
]
