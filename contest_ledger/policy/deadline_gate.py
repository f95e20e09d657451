"""
Deadline gate for the contest.

A pure, testable check of wall-clock time against the configured contest
deadline. It gates submission create/edit and vote toggling.

The gate is enforced inside each server-side mutation, at the moment of
the mutation. Clients may evaluate ``is_closed`` to disable buttons, but
that copy of the check is advisory only: a direct request bypasses it.

Rules:
- now == deadline is closed
- now > deadline is closed
- now < deadline is open
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional

from ..errors import ContestClosed

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def _as_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_closed(now: datetime, deadline: datetime) -> bool:
    """Return True once ``now`` has reached ``deadline``.

    Naive datetimes are treated as UTC so the comparison is total.
    """
    return _as_aware(now) >= _as_aware(deadline)


def ensure_open(
    deadline: datetime,
    clock: Optional[Clock] = None,
    action: str = "this action",
) -> None:
    """Raise ContestClosed if the deadline has passed.

    Args:
        deadline: Configured contest deadline
        clock: Source of the current time (defaults to utc_now)
        action: Name of the gated action, used in the error message

    Raises:
        ContestClosed: If the contest is closed
    """
    now = (clock or utc_now)()
    if is_closed(now, deadline):
        raise ContestClosed(
            f"The contest closed at {_as_aware(deadline).isoformat()}; "
            f"{action} is no longer accepted.",
            details={"deadline": _as_aware(deadline).isoformat()},
        )
