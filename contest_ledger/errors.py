"""
Domain error taxonomy for Contest Ledger.

Every rejection the engine produces is a ``ContestError`` subclass with a
stable ``code`` for programmatic handling, the HTTP status it maps to, and
whether the whole operation may be retried as-is.

- Unauthorized: bad/missing/expired credential, never retried automatically
- ContestClosed: deadline passed, terminal
- ValidationFailed: bad input shape, caller must fix and resubmit
- ConflictAlreadyExists: uniqueness rule, terminal
- NotFound: target missing or not owned by the caller
- InvalidTransition: review decision not allowed from the current status
- RateLimited: transient, retry after the hint
- UpstreamFailure: store/network/transcode hiccup, transient
"""

from typing import Any, Dict, Optional


class ContestError(Exception):
    """
    Base class for all domain rejections.

    Attributes:
        code: Stable error code
        message: Human-readable description safe to show to the caller
        details: Optional structured context (never provider internals)
    """

    code = "CONTEST_ERROR"
    status_code = 500
    retryable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(f"{self.code}: {message}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for JSON serialization."""
        payload: Dict[str, Any] = {
            "error": self.code.lower(),
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.details:
            payload["details"] = self.details
        return payload


class Unauthorized(ContestError):
    code = "UNAUTHORIZED"
    status_code = 401

    def __init__(
        self,
        message: str = "Invalid or missing credentials",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)


class ContestClosed(ContestError):
    code = "CONTEST_CLOSED"
    status_code = 403

    def __init__(
        self,
        message: str = "The contest is closed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)


class ValidationFailed(ContestError):
    code = "VALIDATION_FAILED"
    status_code = 400

    def __init__(
        self,
        message: str,
        rule: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.rule = rule
        details = dict(details or {})
        if rule:
            details.setdefault("rule", rule)
        super().__init__(message, details)


class ConflictAlreadyExists(ContestError):
    code = "ALREADY_EXISTS"
    status_code = 400


class NotFound(ContestError):
    code = "NOT_FOUND"
    status_code = 404


class InvalidTransition(ContestError):
    code = "INVALID_TRANSITION"
    status_code = 409


class RateLimited(ContestError):
    code = "RATE_LIMITED"
    status_code = 429
    retryable = True

    def __init__(self, retry_after: int, message: str = "Too many requests"):
        self.retry_after = retry_after
        super().__init__(message, {"retry_after": retry_after})


class UpstreamFailure(ContestError):
    code = "UPSTREAM_FAILURE"
    status_code = 500
    retryable = True

    def __init__(
        self,
        message: str = "Upstream service failed",
        details: Optional[Dict[str, Any]] = None,
        retryable: bool = True,
    ):
        self.retryable = retryable
        super().__init__(message, details)


class PartialUploadFailure(UpstreamFailure):
    code = "PARTIAL_UPLOAD"


ERRORS_BY_CODE = {
    cls.code: cls
    for cls in (
        Unauthorized,
        ContestClosed,
        ValidationFailed,
        ConflictAlreadyExists,
        NotFound,
        InvalidTransition,
        RateLimited,
        UpstreamFailure,
        PartialUploadFailure,
    )
}
