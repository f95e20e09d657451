"""
Session bridging routes.

A credential obtained from the identity provider is mirrored into an
http-only, same-site cookie whose lifetime matches the credential's own,
so server-rendered pages and the route-protection middleware can
re-derive identity without a client round-trip.
"""

from datetime import datetime
from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends, Query, Response
from fastapi.responses import RedirectResponse

from ..config import Settings, get_settings
from ..contest.schemas import SessionCreate
from ..deps import get_clock, get_identity_resolver
from ..policy.deadline_gate import Clock
from .identity import IdentityResolver, UserIdentity

logger = structlog.get_logger()

router = APIRouter(prefix="/auth", tags=["auth"])


def safe_redirect_path(value: Optional[str], default: str = "/") -> str:
    """Only same-origin relative paths are followed after sign-in."""
    if not value or not value.startswith("/") or value.startswith("//") or "\\" in value:
        return default
    return value


def session_max_age(expires_in: int, identity: UserIdentity, now: datetime) -> int:
    """Cookie lifetime: never longer than the token itself remains valid."""
    max_age = expires_in
    if identity.expires_at is not None:
        remaining = int((identity.expires_at - now).total_seconds())
        max_age = min(max_age, remaining)
    return max(max_age, 0)


def set_session_cookie(
    response: Response,
    settings: Settings,
    access_token: str,
    max_age: int,
) -> None:
    response.set_cookie(
        key=settings.session_cookie_name,
        value=access_token,
        max_age=max_age,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
        path="/",
    )


def clear_session_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(
        key=settings.session_cookie_name,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
        path="/",
    )


@router.post("/session")
async def create_session(
    body: SessionCreate,
    response: Response,
    settings: Settings = Depends(get_settings),
    resolver: IdentityResolver = Depends(get_identity_resolver),
    clock: Clock = Depends(get_clock),
) -> Dict[str, Any]:
    """Verify an access token and store it in the session cookie."""
    identity = await resolver.provider.verify(body.access_token)
    max_age = session_max_age(body.expires_in, identity, clock())
    set_session_cookie(response, settings, body.access_token, max_age)
    logger.info("Session established", user_id=identity.id, max_age=max_age)
    return {"user": {"id": identity.id, "email": identity.email}, "expires_in": max_age}


@router.delete("/session")
async def delete_session(
    response: Response,
    settings: Settings = Depends(get_settings),
) -> Dict[str, str]:
    clear_session_cookie(response, settings)
    return {"status": "signed_out"}


@router.get("/callback")
async def auth_callback(
    code: Optional[str] = Query(None),
    redirected_from: Optional[str] = Query(None, alias="redirectedFrom"),
    settings: Settings = Depends(get_settings),
    resolver: IdentityResolver = Depends(get_identity_resolver),
    clock: Clock = Depends(get_clock),
) -> RedirectResponse:
    """OAuth return: exchange the code, set the cookie, go back where we came from."""
    target = safe_redirect_path(redirected_from, settings.public_redirect_path)
    response = RedirectResponse(url=target, status_code=303)
    if not code:
        return response

    issued = await resolver.provider.exchange_code(code)
    identity = await resolver.provider.verify(issued.access_token)
    max_age = session_max_age(issued.expires_in, identity, clock())
    set_session_cookie(response, settings, issued.access_token, max_age)
    logger.info("Session established from code exchange", user_id=identity.id)
    return response
