"""Route protection middleware."""

from typing import Callable, Iterable
from urllib.parse import quote

import structlog
from fastapi import Request
from fastapi.responses import RedirectResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from ..config import Settings, get_settings
from ..deps import build_identity_resolver
from ..errors import Unauthorized

logger = structlog.get_logger()


def is_protected(path: str, prefixes: Iterable[str]) -> bool:
    for prefix in prefixes:
        prefix = prefix.rstrip("/")
        if path == prefix or path.startswith(prefix + "/"):
            return True
    return False


class RouteProtectionMiddleware(BaseHTTPMiddleware):
    """Redirect unauthenticated requests for protected paths to the public page.

    The original path is preserved in ``redirectedFrom`` so the sign-in
    flow can return to it.
    """

    def __init__(self, app: ASGIApp, settings_provider: Callable[[], Settings] = get_settings):
        super().__init__(app)
        self.settings_provider = settings_provider

    async def dispatch(self, request: Request, call_next):
        settings = self.settings_provider()
        if not is_protected(request.url.path, settings.protected_path_prefixes):
            return await call_next(request)

        resolver = build_identity_resolver(settings)
        try:
            await resolver.resolve_connection(request)
        except Unauthorized:
            target = f"{settings.public_redirect_path}?redirectedFrom={quote(request.url.path)}"
            logger.info("Redirecting unauthenticated request", path=request.url.path)
            return RedirectResponse(url=target, status_code=307)

        return await call_next(request)
