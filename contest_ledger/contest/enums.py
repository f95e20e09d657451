"""
Canonical enums for contest objects.
"""

from enum import Enum
from typing import Dict, FrozenSet


class SubmissionStatus(str, Enum):
    """Review status of a submission."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ReviewDecision(str, Enum):
    """Decision a reviewer can record on a pending submission."""

    APPROVE = "approve"
    REJECT = "reject"

    @property
    def target_status(self) -> SubmissionStatus:
        if self is ReviewDecision.APPROVE:
            return SubmissionStatus.APPROVED
        return SubmissionStatus.REJECTED


# Allowed review transitions. Owner edits are handled separately: an edit
# always moves the submission back to pending from any status.
REVIEW_TRANSITIONS: Dict[SubmissionStatus, FrozenSet[SubmissionStatus]] = {
    SubmissionStatus.PENDING: frozenset(
        {SubmissionStatus.APPROVED, SubmissionStatus.REJECTED}
    ),
    SubmissionStatus.APPROVED: frozenset(),
    SubmissionStatus.REJECTED: frozenset(),
}


def can_review(current: SubmissionStatus, target: SubmissionStatus) -> bool:
    return target in REVIEW_TRANSITIONS[current]
