"""
SQLAlchemy models for Contest Ledger.

Uniqueness is owned by the database, not by application code:
- ``uq_submissions_owner``: at most one submission per owner
- ``uq_votes_voter_work``: at most one vote per (voter, work)
- ``uq_vote_receipts_voter_key``: a toggle idempotency key is applied once

Vote counts are never stored on the submission row; they are always
counted from ``votes``.
"""

import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.sql import func

from .base import Base


def generate_id() -> str:
    return str(uuid.uuid4())


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


submission_status_enum = Enum(
    "pending",
    "approved",
    "rejected",
    name="submission_status",
)


class SubmissionModel(Base):
    """A contest work. One per owner."""

    __tablename__ = "submissions"

    id = Column(String(36), primary_key=True, default=generate_id)
    owner_id = Column(String(128), nullable=False)

    title = Column(String(200), nullable=False)
    author_name = Column(String(120), nullable=False)
    description = Column(Text, nullable=False)
    demo_url = Column(String(2048), nullable=False)
    youtube_url = Column(String(2048), nullable=True)
    image_urls = Column(JSON, nullable=False, default=list)
    image_url = Column(String(2048), nullable=True)

    status = Column(submission_status_enum, nullable=False, default="pending", index=True)
    review_note = Column(Text, nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    reviewed_by = Column(String(128), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    __table_args__ = (
        UniqueConstraint("owner_id", name="uq_submissions_owner"),
        Index("ix_submissions_status_created", "status", "created_at"),
    )

    def set_images(self, image_urls: List[str]) -> None:
        """Assign images keeping ``image_url`` equal to the first entry."""
        self.image_urls = list(image_urls)
        self.image_url = self.image_urls[0] if self.image_urls else None

    def clear_review(self) -> None:
        self.review_note = None
        self.reviewed_at = None
        self.reviewed_by = None

    def to_dict(self, vote_count: Optional[int] = None) -> Dict[str, Any]:
        """Convert model to dictionary."""
        data = {
            "id": self.id,
            "owner_id": self.owner_id,
            "title": self.title,
            "author_name": self.author_name,
            "description": self.description,
            "demo_url": self.demo_url,
            "youtube_url": self.youtube_url,
            "image_url": self.image_url,
            "image_urls": list(self.image_urls or []),
            "status": self.status,
            "review_note": self.review_note,
            "reviewed_at": _iso(self.reviewed_at),
            "reviewed_by": self.reviewed_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if vote_count is not None:
            data["vote_count"] = vote_count
        return data


class VoteModel(Base):
    """A ballot. The row's existence is the vote; rows are never updated."""

    __tablename__ = "votes"

    id = Column(String(36), primary_key=True, default=generate_id)
    voter_id = Column(String(128), nullable=False, index=True)
    work_id = Column(
        String(36),
        ForeignKey("submissions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    __table_args__ = (
        UniqueConstraint("voter_id", "work_id", name="uq_votes_voter_work"),
    )


class VoteReceiptModel(Base):
    """Outcome of a toggle performed under a client idempotency key."""

    __tablename__ = "vote_receipts"

    id = Column(String(36), primary_key=True, default=generate_id)
    voter_id = Column(String(128), nullable=False)
    idempotency_key = Column(String(128), nullable=False)
    work_id = Column(String(36), nullable=False)
    is_voted = Column(Boolean, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    __table_args__ = (
        UniqueConstraint("voter_id", "idempotency_key", name="uq_vote_receipts_voter_key"),
    )


class NotificationModel(Base):
    """Advisory message for a user, produced by lifecycle transitions."""

    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=generate_id)
    user_id = Column(String(128), nullable=False)
    title = Column(String(200), nullable=False)
    body = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    read_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("ix_notifications_user_created", "user_id", "created_at"),)

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "title": self.title,
            "body": self.body,
            "created_at": _iso(self.created_at),
            "read_at": _iso(self.read_at),
        }
