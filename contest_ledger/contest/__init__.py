"""Submissions, votes and notifications."""

from .enums import ReviewDecision, SubmissionStatus
from .schemas import SubmissionFields, VoteResult
from .services import NotificationService, SubmissionService, VoteLedger

__all__ = [
    "NotificationService",
    "ReviewDecision",
    "SubmissionFields",
    "SubmissionService",
    "SubmissionStatus",
    "VoteLedger",
    "VoteResult",
]
