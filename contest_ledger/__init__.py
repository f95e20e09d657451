"""
Contest Ledger

Submission and vote integrity engine for a time-boxed creative contest.
"""

import importlib.metadata

__version__ = importlib.metadata.version("contest-ledger")

from .errors import (
    ConflictAlreadyExists,
    ContestClosed,
    ContestError,
    InvalidTransition,
    NotFound,
    PartialUploadFailure,
    RateLimited,
    Unauthorized,
    UpstreamFailure,
    ValidationFailed,
)
from .policy import ensure_open, is_closed

__all__ = [
    "ConflictAlreadyExists",
    "ContestClosed",
    "ContestError",
    "InvalidTransition",
    "NotFound",
    "PartialUploadFailure",
    "RateLimited",
    "Unauthorized",
    "UpstreamFailure",
    "ValidationFailed",
    "ensure_open",
    "is_closed",
]
