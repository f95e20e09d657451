"""
Identity resolution.

Turns an inbound credential into a verified ``UserIdentity``. Two
transports carry the same bearer token:
- ``Authorization: Bearer <token>`` header (API clients)
- the http-only session cookie (server-rendered pages, middleware)

Everything downstream of ``IdentityResolver.resolve`` works on
``UserIdentity`` only. Any verification failure becomes a generic
``Unauthorized``; the provider's reason is logged, never returned.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

import httpx
import jwt
import structlog
from starlette.requests import HTTPConnection

from ..config import Settings
from ..errors import Unauthorized, UpstreamFailure

logger = structlog.get_logger()


@dataclass(frozen=True)
class UserIdentity:
    """Verified user identity issued by the identity provider."""

    id: str
    email: Optional[str] = None
    expires_at: Optional[datetime] = None


class CredentialSource(str, Enum):
    BEARER = "bearer"
    COOKIE = "cookie"


@dataclass(frozen=True)
class Credential:
    token: str
    source: CredentialSource


@dataclass(frozen=True)
class IssuedSession:
    """Token pair returned by an OAuth code exchange."""

    access_token: str
    expires_in: int


class IdentityProvider(ABC):
    """Capability consumed from the identity provider."""

    @abstractmethod
    async def verify(self, token: str) -> UserIdentity:
        """Verify a token, raising Unauthorized on any failure."""
        pass

    @abstractmethod
    async def exchange_code(self, code: str) -> IssuedSession:
        """Exchange an OAuth authorization code for an access token."""
        pass


class JWTIdentityProvider(IdentityProvider):
    """Provider whose access tokens are JWTs signed with a shared secret.

    Code exchange is delegated to the provider's token endpoint over HTTP.
    """

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        audience: Optional[str] = None,
        issuer: Optional[str] = None,
        token_url: Optional[str] = None,
        api_key: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.secret = secret
        self.algorithm = algorithm
        self.audience = audience
        self.issuer = issuer
        self.token_url = token_url
        self.api_key = api_key
        self._http_client = http_client

    @classmethod
    def from_settings(cls, settings: Settings) -> "JWTIdentityProvider":
        return cls(
            secret=settings.auth_jwt_secret,
            algorithm=settings.auth_jwt_algorithm,
            audience=settings.auth_jwt_audience,
            issuer=settings.auth_jwt_issuer,
            token_url=settings.auth_token_url,
            api_key=settings.auth_api_key,
        )

    async def verify(self, token: str) -> UserIdentity:
        options: Dict[str, Any] = {"require": ["exp", "sub"]}
        if not self.audience:
            options["verify_aud"] = False
        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                audience=self.audience,
                issuer=self.issuer,
                options=options,
            )
        except jwt.InvalidTokenError as e:
            logger.info("Credential rejected", reason=type(e).__name__)
            raise Unauthorized() from None

        subject = str(payload.get("sub") or "").strip()
        if not subject:
            logger.info("Credential rejected", reason="empty_subject")
            raise Unauthorized()

        return UserIdentity(
            id=subject,
            email=payload.get("email"),
            expires_at=datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc),
        )

    async def exchange_code(self, code: str) -> IssuedSession:
        if not self.token_url:
            raise Unauthorized("Sign-in is not configured")

        headers = {"apikey": self.api_key} if self.api_key else {}
        client = self._http_client or httpx.AsyncClient(timeout=10.0)
        try:
            response = await client.post(
                self.token_url,
                json={"auth_code": code},
                headers=headers,
            )
        except httpx.RequestError as e:
            logger.error("Identity provider unreachable", error=str(e))
            raise UpstreamFailure("Identity provider unavailable") from None
        finally:
            if self._http_client is None:
                await client.aclose()

        if response.status_code >= 500:
            logger.error("Identity provider error", status_code=response.status_code)
            raise UpstreamFailure("Identity provider unavailable")
        if response.status_code >= 400:
            logger.info("Code exchange rejected", status_code=response.status_code)
            raise Unauthorized()

        body = response.json()
        access_token = body.get("access_token")
        expires_in = int(body.get("expires_in") or 0)
        if not access_token or expires_in <= 0:
            logger.info("Code exchange returned no session")
            raise Unauthorized()
        return IssuedSession(access_token=access_token, expires_in=expires_in)


class IdentityResolver:
    """Resolve a request's credential, whichever transport carried it."""

    def __init__(self, provider: IdentityProvider, cookie_name: str):
        self.provider = provider
        self.cookie_name = cookie_name

    def credential_from(self, connection: HTTPConnection) -> Optional[Credential]:
        """Extract a credential; the bearer header wins over the cookie."""
        header = connection.headers.get("authorization", "")
        scheme, _, token = header.partition(" ")
        if scheme.lower() == "bearer" and token.strip():
            return Credential(token=token.strip(), source=CredentialSource.BEARER)

        cookie = connection.cookies.get(self.cookie_name)
        if cookie:
            return Credential(token=cookie, source=CredentialSource.COOKIE)
        return None

    async def resolve(self, credential: Optional[Credential]) -> UserIdentity:
        if credential is None:
            raise Unauthorized("Authentication required")
        return await self.provider.verify(credential.token)

    async def resolve_connection(self, connection: HTTPConnection) -> UserIdentity:
        return await self.resolve(self.credential_from(connection))
