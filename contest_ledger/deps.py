"""
FastAPI dependencies.

Each capability the routes consume (clock, identity, services, upload
collaborators) is provided here so tests can swap it through
``app.dependency_overrides``.
"""

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from .auth.identity import IdentityResolver, JWTIdentityProvider, UserIdentity
from .config import Settings, get_settings
from .contest.services import NotificationService, SubmissionService, VoteLedger
from .db.base import get_db
from .policy.deadline_gate import Clock, ensure_open, utc_now
from .uploads.pipeline import UploadLimits, UploadPipeline
from .uploads.rate_limit import RateLimiter, SlidingWindowRateLimiter
from .uploads.storage import ObjectStore, create_object_store
from .uploads.transcoder import ImageTranscoder


def get_clock() -> Clock:
    return utc_now


def require_contest_open(
    settings: Settings = Depends(get_settings),
    clock: Clock = Depends(get_clock),
) -> None:
    """Reject mutations once the deadline has passed, before identity is resolved."""
    ensure_open(settings.contest_deadline, clock)


def build_identity_resolver(settings: Settings) -> IdentityResolver:
    return IdentityResolver(
        JWTIdentityProvider.from_settings(settings),
        cookie_name=settings.session_cookie_name,
    )


def get_identity_resolver(settings: Settings = Depends(get_settings)) -> IdentityResolver:
    return build_identity_resolver(settings)


async def get_current_user(
    request: Request,
    resolver: IdentityResolver = Depends(get_identity_resolver),
) -> UserIdentity:
    """Verified caller identity, or Unauthorized."""
    return await resolver.resolve_connection(request)


def get_notification_service(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> NotificationService:
    return NotificationService(db, clock=clock)


def get_submission_service(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    clock: Clock = Depends(get_clock),
) -> SubmissionService:
    return SubmissionService(db, deadline=settings.contest_deadline, clock=clock)


def get_vote_ledger(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    clock: Clock = Depends(get_clock),
) -> VoteLedger:
    return VoteLedger(db, deadline=settings.contest_deadline, clock=clock)


def get_rate_limiter(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> RateLimiter:
    """Process-local limiter shared by all requests of this app instance."""
    limiter = getattr(request.app.state, "upload_rate_limiter", None)
    if limiter is None:
        limiter = SlidingWindowRateLimiter(
            limit=settings.upload_rate_limit_requests,
            window_seconds=settings.upload_rate_limit_window_seconds,
        )
        request.app.state.upload_rate_limiter = limiter
    return limiter


def get_object_store(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> ObjectStore:
    store = getattr(request.app.state, "object_store", None)
    if store is None:
        store = create_object_store(settings)
        request.app.state.object_store = store
    return store


def get_transcoder(settings: Settings = Depends(get_settings)) -> ImageTranscoder:
    return ImageTranscoder(
        max_width=settings.upload_max_width,
        quality=settings.upload_webp_quality,
    )


def get_upload_pipeline(
    settings: Settings = Depends(get_settings),
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
    resolver: IdentityResolver = Depends(get_identity_resolver),
    transcoder: ImageTranscoder = Depends(get_transcoder),
    store: ObjectStore = Depends(get_object_store),
) -> UploadPipeline:
    return UploadPipeline(
        rate_limiter=rate_limiter,
        resolver=resolver,
        transcoder=transcoder,
        store=store,
        limits=UploadLimits.from_settings(settings),
        key_prefix=settings.upload_key_prefix,
    )
