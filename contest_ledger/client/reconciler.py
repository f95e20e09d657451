"""
Client-side optimistic reconciliation.

Each work (and the caller's submission form) runs a small state machine:

    idle -> optimistic -> reconciling -> settled
                      \\             \\-> rolled_back
                       \\-> stale (request abandoned)

- optimistic: local state already shows the action's expected outcome
- reconciling: the authoritative request is in flight
- settled: the server's answer was adopted verbatim
- rolled_back: the request failed; local state restored exactly
- stale: the request was abandoned; the outcome is unknown until refetched

While a work is optimistic or reconciling its in-flight latch is held and
further actions on it are refused. A stale work refuses actions until
``refresh`` adopts authoritative state. Failed actions are never retried
automatically.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Set

import structlog

from ..policy.deadline_gate import Clock, is_closed, utc_now
from .api_client import ContestClient

logger = structlog.get_logger()


class Phase(str, Enum):
    IDLE = "idle"
    OPTIMISTIC = "optimistic"
    RECONCILING = "reconciling"
    SETTLED = "settled"
    ROLLED_BACK = "rolled_back"
    STALE = "stale"


# Allowed phase transitions; ``refresh`` is the only way out of STALE.
PHASE_TRANSITIONS = {
    Phase.IDLE: {Phase.OPTIMISTIC, Phase.SETTLED},
    Phase.OPTIMISTIC: {Phase.RECONCILING, Phase.ROLLED_BACK, Phase.STALE},
    Phase.RECONCILING: {Phase.SETTLED, Phase.ROLLED_BACK, Phase.STALE},
    Phase.SETTLED: {Phase.OPTIMISTIC, Phase.SETTLED},
    Phase.ROLLED_BACK: {Phase.OPTIMISTIC, Phase.SETTLED},
    Phase.STALE: {Phase.SETTLED},
}


class InvalidPhaseTransition(RuntimeError):
    pass


class ActionBlocked(Exception):
    """Raised when an action is refused locally (in flight, stale, closed)."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Action blocked: {reason}")


def _advance(current: Phase, target: Phase) -> Phase:
    if target not in PHASE_TRANSITIONS[current]:
        raise InvalidPhaseTransition(f"{current.value} -> {target.value}")
    return target


@dataclass
class VoteView:
    """What the UI shows for one work."""

    work_id: str
    has_voted: bool = False
    vote_count: int = 0
    phase: Phase = Phase.IDLE
    error: Optional[Exception] = None


class VoteReconciler:
    """Optimistic vote toggling with exact rollback.

    The deadline check here only decides whether the toggle is offered;
    the server re-checks it on every toggle.
    """

    def __init__(
        self,
        client: ContestClient,
        deadline: Optional[datetime] = None,
        clock: Optional[Clock] = None,
    ):
        self.client = client
        self.deadline = deadline
        self.clock = clock or utc_now
        self.views: Dict[str, VoteView] = {}
        self._in_flight: Set[str] = set()

    def view(self, work_id: str) -> VoteView:
        if work_id not in self.views:
            self.views[work_id] = VoteView(work_id=work_id)
        return self.views[work_id]

    def seed(self, work_id: str, has_voted: bool, vote_count: int) -> VoteView:
        """Initial state as rendered from a listing."""
        view = self.view(work_id)
        view.has_voted = has_voted
        view.vote_count = vote_count
        return view

    def in_flight(self, work_id: str) -> bool:
        return work_id in self._in_flight

    def blocked_reason(self, work_id: str) -> Optional[str]:
        if self.in_flight(work_id):
            return "in_flight"
        if self.view(work_id).phase is Phase.STALE:
            return "stale"
        if self.deadline is not None and is_closed(self.clock(), self.deadline):
            return "closed"
        return None

    def can_toggle(self, work_id: str) -> bool:
        return self.blocked_reason(work_id) is None

    async def toggle(self, work_id: str) -> VoteView:
        """Apply the flip locally, then adopt the server's answer or roll back."""
        reason = self.blocked_reason(work_id)
        if reason:
            raise ActionBlocked(reason)

        view = self.view(work_id)
        previous = (view.has_voted, view.vote_count)

        view.phase = _advance(view.phase, Phase.OPTIMISTIC)
        self._in_flight.add(work_id)
        try:
            view.error = None
            view.has_voted = not view.has_voted
            view.vote_count = max(0, view.vote_count + (1 if view.has_voted else -1))
            view.phase = _advance(view.phase, Phase.RECONCILING)
            result = await self.client.toggle_vote(
                work_id, idempotency_key=uuid.uuid4().hex
            )
        except asyncio.CancelledError:
            view.phase = _advance(view.phase, Phase.STALE)
            logger.info("Vote toggle abandoned; state unknown until refresh", work_id=work_id)
            raise
        except Exception as e:
            view.has_voted, view.vote_count = previous
            view.error = e
            view.phase = _advance(view.phase, Phase.ROLLED_BACK)
            logger.info(
                "Vote toggle rolled back",
                work_id=work_id,
                code=getattr(e, "code", type(e).__name__),
            )
            raise
        else:
            view.has_voted = result.is_voted
            view.vote_count = result.vote_count
            view.phase = _advance(view.phase, Phase.SETTLED)
            return view
        finally:
            self._in_flight.discard(work_id)

    async def refresh(self, work_id: str) -> VoteView:
        """Refetch authoritative state; clears a stale work."""
        if self.in_flight(work_id):
            raise ActionBlocked("in_flight")
        result = await self.client.vote_state(work_id)
        view = self.view(work_id)
        view.has_voted = result.is_voted
        view.vote_count = result.vote_count
        view.error = None
        view.phase = _advance(view.phase, Phase.SETTLED)
        return view


@dataclass
class SubmissionView:
    """What the UI shows for the caller's submission."""

    submission_id: Optional[str] = None
    status: Optional[str] = None
    fields: Dict[str, Any] = field(default_factory=dict)
    phase: Phase = Phase.IDLE
    error: Optional[Exception] = None


class SubmissionReconciler:
    """Submit-or-edit with the same optimistic discipline as votes.

    A submit shows the work as pending immediately. Success adopts the
    server's id; failure restores the previous form state exactly.
    """

    def __init__(self, client: ContestClient):
        self.client = client
        self.view = SubmissionView()
        self._in_flight = False

    async def save(self, fields: Dict[str, Any]) -> SubmissionView:
        """Create the submission, or edit it once it exists."""
        if self._in_flight:
            raise ActionBlocked("in_flight")
        if self.view.phase is Phase.STALE:
            raise ActionBlocked("stale")

        view = self.view
        previous = (view.submission_id, view.status, dict(view.fields))

        view.phase = _advance(view.phase, Phase.OPTIMISTIC)
        self._in_flight = True
        try:
            view.error = None
            view.status = "pending"
            view.fields = dict(fields)
            view.phase = _advance(view.phase, Phase.RECONCILING)
            if view.submission_id:
                saved = await self.client.edit(view.submission_id, fields)
                submission_id, status = saved["id"], saved["status"]
            else:
                submission_id, status = await self.client.submit(fields), "pending"
        except asyncio.CancelledError:
            view.phase = _advance(view.phase, Phase.STALE)
            raise
        except Exception as e:
            view.submission_id, view.status, view.fields = previous
            view.error = e
            view.phase = _advance(view.phase, Phase.ROLLED_BACK)
            raise
        else:
            view.submission_id = submission_id
            view.status = status
            view.phase = _advance(view.phase, Phase.SETTLED)
            return view
        finally:
            self._in_flight = False

    async def refresh(self) -> SubmissionView:
        """Adopt the server's copy of the caller's submission."""
        if self._in_flight:
            raise ActionBlocked("in_flight")
        submissions = await self.client.my_submissions()
        view = self.view
        if submissions:
            current = submissions[0]
            view.submission_id = current["id"]
            view.status = current["status"]
            view.fields = {
                k: current.get(k)
                for k in (
                    "title",
                    "author_name",
                    "description",
                    "demo_url",
                    "youtube_url",
                    "image_urls",
                )
            }
        else:
            view.submission_id, view.status, view.fields = None, None, {}
        view.error = None
        view.phase = _advance(view.phase, Phase.SETTLED)
        return view
