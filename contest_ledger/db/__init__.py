"""
Database package for Contest Ledger.
"""

from .base import Base, get_db, get_engine, get_session_local, init_database
from .models import NotificationModel, SubmissionModel, VoteModel, VoteReceiptModel

__all__ = [
    "Base",
    "get_db",
    "get_engine",
    "get_session_local",
    "init_database",
    "NotificationModel",
    "SubmissionModel",
    "VoteModel",
    "VoteReceiptModel",
]
