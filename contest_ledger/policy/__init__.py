"""Admission policies."""

from .deadline_gate import Clock, ensure_open, is_closed, utc_now

__all__ = ["Clock", "ensure_open", "is_closed", "utc_now"]
