"""Async API client and optimistic reconciliation for contest UIs."""

from .api_client import ContestClient, error_from_response
from .reconciler import (
    PHASE_TRANSITIONS,
    ActionBlocked,
    InvalidPhaseTransition,
    Phase,
    SubmissionReconciler,
    SubmissionView,
    VoteReconciler,
    VoteView,
)

__all__ = [
    "PHASE_TRANSITIONS",
    "ActionBlocked",
    "ContestClient",
    "InvalidPhaseTransition",
    "Phase",
    "SubmissionReconciler",
    "SubmissionView",
    "VoteReconciler",
    "VoteView",
    "error_from_response",
]
