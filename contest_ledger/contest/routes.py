"""
Contest API Routes.

Submissions, votes, the public gallery and the caller's notification
inbox. Every handler resolves the caller through ``get_current_user``;
mutating handlers are additionally gated on the contest deadline before
identity is resolved.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Header, Query

from ..auth.identity import UserIdentity
from ..deps import (
    get_current_user,
    get_notification_service,
    get_submission_service,
    get_vote_ledger,
    require_contest_open,
)
from .enums import SubmissionStatus
from .services import NotificationService, SubmissionService, VoteLedger

router = APIRouter(tags=["contest"])

PUBLIC_HIDDEN_FIELDS = ("owner_id", "review_note", "reviewed_at", "reviewed_by")


def _public_view(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in data.items() if k not in PUBLIC_HIDDEN_FIELDS}


# =============================================================================
# Submission Endpoints
# =============================================================================


@router.post(
    "/submissions",
    status_code=201,
    dependencies=[Depends(require_contest_open)],
)
async def create_submission(
    payload: Dict[str, Any] = Body(...),
    user: UserIdentity = Depends(get_current_user),
    service: SubmissionService = Depends(get_submission_service),
) -> Dict[str, Any]:
    """Create the caller's one submission."""
    submission = service.create(user.id, payload)
    return {"id": submission.id}


@router.put(
    "/submissions/{submission_id}",
    dependencies=[Depends(require_contest_open)],
)
async def edit_submission(
    submission_id: str,
    payload: Dict[str, Any] = Body(...),
    user: UserIdentity = Depends(get_current_user),
    service: SubmissionService = Depends(get_submission_service),
) -> Dict[str, Any]:
    """Replace the caller's submission; it returns to pending review."""
    submission = service.edit(user.id, submission_id, payload)
    return submission.to_dict()


@router.get("/me/submissions")
async def list_my_submissions(
    user: UserIdentity = Depends(get_current_user),
    service: SubmissionService = Depends(get_submission_service),
) -> List[Dict[str, Any]]:
    return [
        submission.to_dict(vote_count=count)
        for submission, count in service.list_for_owner(user.id)
    ]


@router.get("/me/submissions/rejected")
async def get_my_rejection(
    user: UserIdentity = Depends(get_current_user),
    service: SubmissionService = Depends(get_submission_service),
) -> Dict[str, Any]:
    """Most recently rejected submission with its review note, if any."""
    submission = service.latest_rejected(user.id)
    return {"submission": submission.to_dict() if submission else None}


@router.get("/gallery")
async def gallery(
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    service: SubmissionService = Depends(get_submission_service),
) -> List[Dict[str, Any]]:
    """Approved works with current vote counts, newest first."""
    return [
        _public_view(submission.to_dict(vote_count=count))
        for submission, count in service.list_by_status(
            SubmissionStatus.APPROVED, limit=limit, offset=offset
        )
    ]


# =============================================================================
# Vote Endpoints
# =============================================================================


@router.post(
    "/votes/{work_id}/toggle",
    dependencies=[Depends(require_contest_open)],
)
async def toggle_vote(
    work_id: str,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key", max_length=128),
    user: UserIdentity = Depends(get_current_user),
    ledger: VoteLedger = Depends(get_vote_ledger),
) -> Dict[str, Any]:
    """Invert the caller's vote on a work and return the authoritative state.

    Works that are not approved are not publicly visible, so toggling one
    answers 404 NOT_FOUND alongside the usual 401/403/500 outcomes.
    """
    result = ledger.toggle(user.id, work_id, idempotency_key=idempotency_key or None)
    return result.to_response()


@router.get("/votes/{work_id}")
async def get_vote_state(
    work_id: str,
    user: UserIdentity = Depends(get_current_user),
    ledger: VoteLedger = Depends(get_vote_ledger),
) -> Dict[str, Any]:
    return ledger.state(user.id, work_id).to_response()


@router.get("/me/votes")
async def list_my_votes(
    user: UserIdentity = Depends(get_current_user),
    ledger: VoteLedger = Depends(get_vote_ledger),
) -> Dict[str, Any]:
    return {"work_ids": ledger.voted_work_ids(user.id)}


# =============================================================================
# Notification Endpoints
# =============================================================================


@router.get("/notifications")
async def list_notifications(
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    user: UserIdentity = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
) -> List[Dict[str, Any]]:
    """The caller's notifications, newest first."""
    return [n.to_dict() for n in service.list_for_user(user.id, limit=limit, offset=offset)]


@router.post("/notifications/{notification_id}/read")
async def mark_notification_read(
    notification_id: str,
    user: UserIdentity = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
) -> Dict[str, Any]:
    return service.mark_read(user.id, notification_id).to_dict()
