"""
Async HTTP client for the Contest Ledger API.

Error payloads are mapped back onto the ``ContestError`` hierarchy so a
caller handles the same exception types on both sides of the wire.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx
import structlog

from ..contest.schemas import VoteResult
from ..errors import (
    ERRORS_BY_CODE,
    ContestError,
    RateLimited,
    Unauthorized,
    UpstreamFailure,
)

logger = structlog.get_logger()

UploadPart = Tuple[str, bytes, str]


def error_from_response(response: httpx.Response) -> ContestError:
    """Rebuild the domain error carried by an error response."""
    try:
        detail = response.json().get("detail")
    except ValueError:
        detail = None

    if not isinstance(detail, dict) or detail.get("code") not in ERRORS_BY_CODE:
        return UpstreamFailure(
            f"Unexpected response ({response.status_code})",
            details={"status_code": response.status_code},
            retryable=response.status_code >= 500,
        )

    cls = ERRORS_BY_CODE[detail["code"]]
    message = detail.get("message") or detail["code"]
    details = dict(detail.get("details") or {})

    if cls is RateLimited:
        retry_after = details.get("retry_after") or response.headers.get("Retry-After") or 1
        return RateLimited(retry_after=int(retry_after), message=message)
    if issubclass(cls, UpstreamFailure):
        return cls(message, details=details, retryable=bool(detail.get("retryable", True)))
    return cls(message, details=details)


class ContestClient:
    """Thin async wrapper over the HTTP surface."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 10.0,
    ):
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            transport=transport,
            timeout=timeout,
        )

    async def __aenter__(self) -> "ContestClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.RequestError as e:
            logger.warning("Contest API unreachable", method=method, url=url, error=str(e))
            raise UpstreamFailure("Contest API unreachable") from e

        if response.is_redirect:
            # protected paths redirect unauthenticated callers to the sign-in page
            raise Unauthorized("Authentication required")
        if response.is_error:
            raise error_from_response(response)
        try:
            return response.json()
        except ValueError as e:
            logger.warning(
                "Contest API returned a non-JSON body",
                method=method,
                url=url,
                status_code=response.status_code,
            )
            raise UpstreamFailure(
                "Contest API returned an unreadable response",
                details={"status_code": response.status_code},
            ) from e

    async def submit(self, fields: Dict[str, Any]) -> str:
        body = await self._request("POST", "/submissions", json=fields)
        return body["id"]

    async def edit(self, submission_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("PUT", f"/submissions/{submission_id}", json=fields)

    async def my_submissions(self) -> List[Dict[str, Any]]:
        return await self._request("GET", "/me/submissions")

    async def gallery(self, limit: int = 100, offset: int = 0) -> List[Dict[str, Any]]:
        return await self._request("GET", "/gallery", params={"limit": limit, "offset": offset})

    async def toggle_vote(
        self,
        work_id: str,
        idempotency_key: Optional[str] = None,
    ) -> VoteResult:
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        body = await self._request("POST", f"/votes/{work_id}/toggle", headers=headers)
        return VoteResult(work_id=work_id, is_voted=body["isVoted"], vote_count=body["voteCount"])

    async def vote_state(self, work_id: str) -> VoteResult:
        body = await self._request("GET", f"/votes/{work_id}")
        return VoteResult(work_id=work_id, is_voted=body["isVoted"], vote_count=body["voteCount"])

    async def upload(self, files: Sequence[UploadPart]) -> List[str]:
        """Upload ``(filename, data, content_type)`` parts; returns public URLs."""
        parts = [("files", (name, data, content_type)) for name, data, content_type in files]
        body = await self._request("POST", "/uploads", files=parts)
        return body["urls"]

    async def notifications(self) -> List[Dict[str, Any]]:
        return await self._request("GET", "/notifications")
