"""
Contest Service Layer.

Database operations for submissions, votes and notifications, with the
business rules that keep them consistent under concurrent requests.

Cross-request coordination happens only through the store's unique
constraints. Read-then-write sequences in this module are never assumed
atomic: every pre-check is an early answer for the common case, and the
constraint violation raised by the database is the authoritative one.
"""

from datetime import datetime
from typing import Any, List, Mapping, Optional, Tuple, Union

import structlog
from sqlalchemy import desc, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..db.models import NotificationModel, SubmissionModel, VoteModel, VoteReceiptModel
from ..errors import (
    ConflictAlreadyExists,
    InvalidTransition,
    NotFound,
    UpstreamFailure,
    ValidationFailed,
)
from ..policy.deadline_gate import Clock, ensure_open, utc_now
from .enums import ReviewDecision, SubmissionStatus, can_review
from .schemas import SubmissionFields, VoteResult

logger = structlog.get_logger()

FieldsInput = Union[Mapping[str, Any], SubmissionFields]

ALREADY_SUBMITTED_MESSAGE = "You have already submitted a work; each participant may submit only one."


class NotificationService:
    """Service for managing user notifications.

    Writes are best-effort: a failed notification is logged and dropped,
    never propagated into the operation that produced it.
    """

    def __init__(self, db: Session, clock: Optional[Clock] = None):
        self.db = db
        self.clock = clock or utc_now

    def notify(self, user_id: str, title: str, body: str) -> Optional[NotificationModel]:
        """Record a notification, returning None if the write failed."""
        notification = NotificationModel(
            user_id=user_id,
            title=title,
            body=body,
            created_at=self.clock(),
        )
        try:
            self.db.add(notification)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning("Notification write failed", user_id=user_id, title=title, error=str(e))
            return None
        return notification

    def list_for_user(self, user_id: str, limit: int = 100, offset: int = 0) -> List[NotificationModel]:
        """List a user's notifications, newest first."""
        return (
            self.db.query(NotificationModel)
            .filter(NotificationModel.user_id == user_id)
            .order_by(desc(NotificationModel.created_at))
            .offset(offset)
            .limit(limit)
            .all()
        )

    def mark_read(self, user_id: str, notification_id: str) -> NotificationModel:
        """Set read_at once; later calls keep the first read time."""
        notification = (
            self.db.query(NotificationModel)
            .filter(NotificationModel.id == notification_id)
            .filter(NotificationModel.user_id == user_id)
            .first()
        )
        if not notification:
            raise NotFound("Notification not found")

        if notification.read_at is None:
            notification.read_at = self.clock()
            try:
                self.db.commit()
            except SQLAlchemyError as e:
                self.db.rollback()
                raise UpstreamFailure("Failed to update notification") from e
            self.db.refresh(notification)
        return notification


class SubmissionService:
    """Submission lifecycle: one work per owner, review state machine.

    States: pending -> approved | rejected (reviewer), approved | rejected
    -> pending (owner edit). Creation always starts in pending.
    """

    def __init__(
        self,
        db: Session,
        deadline: datetime,
        clock: Optional[Clock] = None,
        notifications: Optional[NotificationService] = None,
    ):
        self.db = db
        self.deadline = deadline
        self.clock = clock or utc_now
        self.notifications = notifications or NotificationService(db, clock=self.clock)

    def _with_vote_counts(self):
        counts = (
            self.db.query(
                VoteModel.work_id.label("work_id"),
                func.count(VoteModel.id).label("vote_count"),
            )
            .group_by(VoteModel.work_id)
            .subquery()
        )
        return self.db.query(
            SubmissionModel, func.coalesce(counts.c.vote_count, 0)
        ).outerjoin(counts, counts.c.work_id == SubmissionModel.id)

    def count_for_owner(self, owner_id: str) -> int:
        return (
            self.db.query(func.count(SubmissionModel.id))
            .filter(SubmissionModel.owner_id == owner_id)
            .scalar()
            or 0
        )

    def create(self, owner_id: str, fields: FieldsInput) -> SubmissionModel:
        """Create the owner's single submission in pending status.

        The count pre-check only answers the common case early. Two
        concurrent first submissions can both pass it; the unique
        constraint on owner_id then rejects the loser, which is reported
        as the same "already submitted" conflict.
        """
        ensure_open(self.deadline, self.clock, action="submission")
        data = SubmissionFields.parse(fields)

        if self.count_for_owner(owner_id) > 0:
            logger.info("Duplicate submission rejected by pre-check", owner_id=owner_id)
            raise ConflictAlreadyExists(ALREADY_SUBMITTED_MESSAGE)

        now = self.clock()
        submission = SubmissionModel(
            owner_id=owner_id,
            title=data.title,
            author_name=data.author_name,
            description=data.description,
            demo_url=data.demo_url,
            youtube_url=data.youtube_url,
            status=SubmissionStatus.PENDING.value,
            created_at=now,
            updated_at=now,
        )
        submission.set_images(data.image_urls)

        try:
            self.db.add(submission)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.info("Duplicate submission rejected by unique constraint", owner_id=owner_id)
            raise ConflictAlreadyExists(ALREADY_SUBMITTED_MESSAGE) from None
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Failed to create submission", owner_id=owner_id, error=str(e))
            raise UpstreamFailure("Failed to save submission") from e

        self.db.refresh(submission)
        logger.info("Submission created", submission_id=submission.id, owner_id=owner_id)

        self.notifications.notify(
            owner_id,
            "Submission received",
            "Your work has been submitted and is waiting for review.",
        )
        return submission

    def get(self, submission_id: str) -> Optional[SubmissionModel]:
        """Get a submission by ID."""
        return (
            self.db.query(SubmissionModel)
            .filter(SubmissionModel.id == submission_id)
            .first()
        )

    def get_owned(self, owner_id: str, submission_id: str) -> SubmissionModel:
        """Get a submission the caller owns; missing and foreign look the same."""
        submission = self.get(submission_id)
        if not submission or submission.owner_id != owner_id:
            raise NotFound("Submission not found")
        return submission

    def edit(self, owner_id: str, submission_id: str, fields: FieldsInput) -> SubmissionModel:
        """Replace the owner's fields and send the work back to review.

        Any edit moves the status to pending and clears the previous review,
        so an approval never stands against content it did not see.
        """
        ensure_open(self.deadline, self.clock, action="editing")
        data = SubmissionFields.parse(fields)
        submission = self.get_owned(owner_id, submission_id)
        previous_status = submission.status

        submission.title = data.title
        submission.author_name = data.author_name
        submission.description = data.description
        submission.demo_url = data.demo_url
        submission.youtube_url = data.youtube_url
        submission.set_images(data.image_urls)
        submission.status = SubmissionStatus.PENDING.value
        submission.clear_review()
        submission.updated_at = self.clock()

        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Failed to edit submission", submission_id=submission_id, error=str(e))
            raise UpstreamFailure("Failed to save submission") from e

        self.db.refresh(submission)
        logger.info(
            "Submission edited",
            submission_id=submission_id,
            owner_id=owner_id,
            previous_status=previous_status,
        )
        return submission

    def list_for_owner(self, owner_id: str) -> List[Tuple[SubmissionModel, int]]:
        """The owner's submissions with vote counts, newest first."""
        return [
            (submission, int(count))
            for submission, count in self._with_vote_counts()
            .filter(SubmissionModel.owner_id == owner_id)
            .order_by(desc(SubmissionModel.created_at))
            .all()
        ]

    def list_by_status(
        self,
        status: SubmissionStatus,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Tuple[SubmissionModel, int]]:
        """Submissions in a status with vote counts, newest first."""
        return [
            (submission, int(count))
            for submission, count in self._with_vote_counts()
            .filter(SubmissionModel.status == status.value)
            .order_by(desc(SubmissionModel.created_at))
            .offset(offset)
            .limit(limit)
            .all()
        ]

    def latest_rejected(self, owner_id: str) -> Optional[SubmissionModel]:
        return (
            self.db.query(SubmissionModel)
            .filter(SubmissionModel.owner_id == owner_id)
            .filter(SubmissionModel.status == SubmissionStatus.REJECTED.value)
            .order_by(desc(SubmissionModel.reviewed_at))
            .first()
        )

    def review(
        self,
        submission_id: str,
        reviewer_id: str,
        decision: ReviewDecision,
        note: Optional[str] = None,
    ) -> SubmissionModel:
        """Record a reviewer decision on a pending submission."""
        submission = self.get(submission_id)
        if not submission:
            raise NotFound("Submission not found")

        current = SubmissionStatus(submission.status)
        target = decision.target_status
        if not can_review(current, target):
            raise InvalidTransition(
                f"Submission is {current.value}, cannot mark it {target.value}; "
                "only pending submissions can be reviewed.",
                details={"from": current.value, "to": target.value},
            )

        submission.status = target.value
        submission.review_note = note.strip() if note and note.strip() else None
        submission.reviewed_at = self.clock()
        submission.reviewed_by = reviewer_id

        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise UpstreamFailure("Failed to record review") from e

        self.db.refresh(submission)
        logger.info(
            "Submission reviewed",
            submission_id=submission_id,
            reviewer_id=reviewer_id,
            status=target.value,
        )

        if target is SubmissionStatus.APPROVED:
            self.notifications.notify(
                submission.owner_id,
                "Submission approved",
                f"Your work \"{submission.title}\" is now visible in the gallery.",
            )
        else:
            self.notifications.notify(
                submission.owner_id,
                "Submission not approved",
                submission.review_note
                or "Your work did not pass review. Edit it to submit it again.",
            )
        return submission


class _VoteRowChanged(Exception):
    """The vote row seen by this toggle was changed by a concurrent request."""


class VoteLedger:
    """One vote per (voter, work), toggled.

    ``toggle`` inverts the caller's current state; there is no "set" form.
    Counts are always recomputed from vote rows after the change.

    Without an idempotency key a retried toggle flips again. With a key,
    the first applied toggle stores a receipt in the same transaction and
    replays of that key return the recorded outcome instead of flipping.
    """

    def __init__(
        self,
        db: Session,
        deadline: datetime,
        clock: Optional[Clock] = None,
        max_attempts: int = 3,
    ):
        self.db = db
        self.deadline = deadline
        self.clock = clock or utc_now
        self.max_attempts = max_attempts

    def count_votes(self, work_id: str) -> int:
        return (
            self.db.query(func.count(VoteModel.id))
            .filter(VoteModel.work_id == work_id)
            .scalar()
            or 0
        )

    def has_voted(self, voter_id: str, work_id: str) -> bool:
        return (
            self.db.query(VoteModel.id)
            .filter(VoteModel.voter_id == voter_id)
            .filter(VoteModel.work_id == work_id)
            .first()
            is not None
        )

    def _get_votable_work(self, work_id: str) -> SubmissionModel:
        work = (
            self.db.query(SubmissionModel)
            .filter(SubmissionModel.id == work_id)
            .first()
        )
        if not work or work.status != SubmissionStatus.APPROVED.value:
            raise NotFound("Work not found")
        return work

    def _get_receipt(self, voter_id: str, idempotency_key: str) -> Optional[VoteReceiptModel]:
        return (
            self.db.query(VoteReceiptModel)
            .filter(VoteReceiptModel.voter_id == voter_id)
            .filter(VoteReceiptModel.idempotency_key == idempotency_key)
            .first()
        )

    def _replay(self, receipt: VoteReceiptModel, work_id: str) -> VoteResult:
        if receipt.work_id != work_id:
            raise ValidationFailed(
                "Idempotency key was already used for a different work",
                rule="idempotency_key_reused",
            )
        logger.info(
            "Replaying toggle for idempotency key",
            voter_id=receipt.voter_id,
            work_id=work_id,
            idempotency_key=receipt.idempotency_key,
        )
        return VoteResult(
            work_id=work_id,
            is_voted=receipt.is_voted,
            vote_count=self.count_votes(work_id),
        )

    def _flip(self, voter_id: str, work_id: str) -> bool:
        """Invert the vote row inside the current transaction."""
        existing = (
            self.db.query(VoteModel)
            .filter(VoteModel.voter_id == voter_id)
            .filter(VoteModel.work_id == work_id)
            .first()
        )
        if existing:
            deleted = (
                self.db.query(VoteModel)
                .filter(VoteModel.id == existing.id)
                .delete(synchronize_session=False)
            )
            if deleted == 0:
                raise _VoteRowChanged()
            self.db.expunge(existing)
            return False

        self.db.add(
            VoteModel(voter_id=voter_id, work_id=work_id, created_at=self.clock())
        )
        self.db.flush()
        return True

    def toggle(
        self,
        voter_id: str,
        work_id: str,
        idempotency_key: Optional[str] = None,
    ) -> VoteResult:
        """Cast or retract the voter's vote on a work.

        A constraint violation or vanished row means a concurrent request
        for the same pair changed the ledger between our read and write.
        Nothing of ours was applied, so the flip is re-evaluated against
        the now-visible state; N concurrent toggles end at the parity of N.
        """
        ensure_open(self.deadline, self.clock, action="voting")
        self._get_votable_work(work_id)

        if idempotency_key:
            receipt = self._get_receipt(voter_id, idempotency_key)
            if receipt:
                return self._replay(receipt, work_id)

        is_voted: Optional[bool] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                is_voted = self._flip(voter_id, work_id)
                if idempotency_key:
                    self.db.add(
                        VoteReceiptModel(
                            voter_id=voter_id,
                            idempotency_key=idempotency_key,
                            work_id=work_id,
                            is_voted=is_voted,
                            created_at=self.clock(),
                        )
                    )
                self.db.commit()
                break
            except (IntegrityError, _VoteRowChanged):
                self.db.rollback()
                is_voted = None
                if idempotency_key:
                    receipt = self._get_receipt(voter_id, idempotency_key)
                    if receipt:
                        return self._replay(receipt, work_id)
                logger.info(
                    "Vote toggle raced a concurrent change, re-evaluating",
                    voter_id=voter_id,
                    work_id=work_id,
                    attempt=attempt,
                )
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error("Vote toggle failed", voter_id=voter_id, work_id=work_id, error=str(e))
                raise UpstreamFailure(
                    "Failed to record vote",
                    retryable=bool(idempotency_key),
                ) from e

        if is_voted is None:
            raise ConflictAlreadyExists(
                "Vote already in desired state; refresh and try again",
                details={"work_id": work_id},
            )

        vote_count = self.count_votes(work_id)
        logger.info(
            "Vote toggled",
            voter_id=voter_id,
            work_id=work_id,
            is_voted=is_voted,
            vote_count=vote_count,
        )
        return VoteResult(work_id=work_id, is_voted=is_voted, vote_count=vote_count)

    def state(self, voter_id: str, work_id: str) -> VoteResult:
        """Current authoritative state for the voter on a work."""
        self._get_votable_work(work_id)
        return VoteResult(
            work_id=work_id,
            is_voted=self.has_voted(voter_id, work_id),
            vote_count=self.count_votes(work_id),
        )

    def voted_work_ids(self, voter_id: str) -> List[str]:
        return [
            row.work_id
            for row in self.db.query(VoteModel.work_id)
            .filter(VoteModel.voter_id == voter_id)
            .order_by(desc(VoteModel.created_at))
            .all()
        ]
