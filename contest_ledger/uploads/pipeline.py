"""
Upload pipeline.

Admission and validation order (first violation wins):
1. per-source sliding-window rate limit (before anything else, no auth)
2. file count within the maximum
3. every declared media type in the allow-list
4. every file size within the maximum
5. requester identity resolved

Every file of the batch is validated before any file is transcoded.
Each accepted file is then transcoded to WebP and written to the object
store. A batch that fails partway reports the succeeded files (with URLs)
and the failed ones; succeeded objects are left in place and the caller
retries only the failed subset.
"""

from __future__ import annotations

import re
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

import anyio
import structlog

from ..auth.identity import Credential, IdentityResolver
from ..config import Settings
from ..errors import PartialUploadFailure, RateLimited, ValidationFailed
from .rate_limit import RateLimiter
from .storage import ObjectStore, StorageError
from .transcoder import ImageTranscoder, TranscodeError

logger = structlog.get_logger()


@dataclass(frozen=True)
class IncomingFile:
    """An uploaded file as received, before validation.

    ``size`` is the number of bytes read; readers stop one byte past the
    limit so oversize files are detected without buffering all of them.
    """

    filename: str
    content_type: Optional[str]
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class UploadLimits:
    max_files: int = 6
    max_bytes: int = 5 * 1024 * 1024
    allowed_types: tuple = ("image/jpeg", "image/png", "image/webp")

    @classmethod
    def from_settings(cls, settings: Settings) -> "UploadLimits":
        return cls(
            max_files=settings.upload_max_files,
            max_bytes=settings.upload_max_bytes,
            allowed_types=tuple(t.lower() for t in settings.upload_allowed_types),
        )


def _sanitize_segment(value: str, fallback: str) -> str:
    name = (value or "").strip().replace("\\", "/").split("/")[-1]
    name = re.sub(r"\s+", "-", name)
    name = re.sub(r"[^a-zA-Z0-9._-]+", "", name)
    name = re.sub(r"-{2,}", "-", name).strip("-.")
    return name or fallback


def sanitize_filename(filename: str) -> str:
    """Safe object-key stem for an uploaded file name, extension dropped."""
    base = (filename or "").replace("\\", "/").split("/")[-1]
    stem = base.rsplit(".", 1)[0] if "." in base else base
    return _sanitize_segment(stem, "image")


class UploadPipeline:
    """Validate, transcode and persist a batch of uploaded images."""

    def __init__(
        self,
        rate_limiter: RateLimiter,
        resolver: IdentityResolver,
        transcoder: ImageTranscoder,
        store: ObjectStore,
        limits: Optional[UploadLimits] = None,
        key_prefix: str = "useful",
        clock: Callable[[], float] = time.time,
    ):
        self.rate_limiter = rate_limiter
        self.resolver = resolver
        self.transcoder = transcoder
        self.store = store
        self.limits = limits or UploadLimits()
        self.key_prefix = key_prefix.strip("/")
        self.clock = clock

    def admit(self, source: str) -> None:
        """Apply the per-source rate limit.

        Raises:
            RateLimited: With a retry-after hint, when the window is full
        """
        result = self.rate_limiter.hit(f"upload:{source}")
        if not result.allowed:
            logger.warning("Upload rate limited", source=source, retry_after=result.retry_after)
            raise RateLimited(retry_after=result.retry_after)

    def check_count(self, count: int) -> None:
        if count == 0:
            raise ValidationFailed("No files provided", rule="missing_files")

        if count > self.limits.max_files:
            raise ValidationFailed(
                f"Too many files: {count} (maximum {self.limits.max_files})",
                rule="max_files",
                details={"count": count, "max_files": self.limits.max_files},
            )

    def validate(self, files: Sequence[IncomingFile]) -> None:
        """Check the whole batch before anything is processed."""
        self.check_count(len(files))

        for index, item in enumerate(files):
            content_type = (item.content_type or "").split(";")[0].strip().lower()
            if content_type not in self.limits.allowed_types:
                raise ValidationFailed(
                    f"File '{item.filename}' has unsupported type "
                    f"'{item.content_type}'. Allowed: {', '.join(self.limits.allowed_types)}",
                    rule="file_type",
                    details={"index": index, "filename": item.filename},
                )

        for index, item in enumerate(files):
            if item.size > self.limits.max_bytes:
                raise ValidationFailed(
                    f"File '{item.filename}' exceeds the maximum size of "
                    f"{self.limits.max_bytes} bytes",
                    rule="file_size",
                    details={
                        "index": index,
                        "filename": item.filename,
                        "max_bytes": self.limits.max_bytes,
                    },
                )

    def build_key(self, owner_id: str, filename: str) -> str:
        """Object key namespaced by owner, distinct per upload."""
        timestamp = int(self.clock() * 1000)
        token = uuid.uuid4().hex[:8]
        owner = _sanitize_segment(owner_id, "anonymous")
        return f"{self.key_prefix}/{owner}/{timestamp}-{token}-{sanitize_filename(filename)}.webp"

    async def ingest(
        self,
        credential: Optional[Credential],
        files: Sequence[IncomingFile],
    ) -> List[str]:
        """Validate the batch, resolve the requester, then store every file.

        Call ``admit`` first; it is separate so the HTTP layer can apply it
        before reading the request body.
        """
        self.validate(files)
        owner = await self.resolver.resolve(credential)
        return await self.process(owner.id, files)

    async def process(self, owner_id: str, files: Sequence[IncomingFile]) -> List[str]:
        succeeded: List[Dict[str, Any]] = []
        failed: List[Dict[str, Any]] = []

        for index, item in enumerate(files):
            try:
                image = await anyio.to_thread.run_sync(self.transcoder.transcode, item.data)
                key = self.build_key(owner_id, item.filename)
                url = await anyio.to_thread.run_sync(
                    self.store.put_object, key, image.data, image.content_type
                )
            except (TranscodeError, StorageError) as e:
                logger.error(
                    "Upload file failed",
                    owner_id=owner_id,
                    filename=item.filename,
                    error=str(e),
                )
                failed.append({"index": index, "filename": item.filename})
                continue
            succeeded.append({"index": index, "filename": item.filename, "url": url})

        if failed:
            raise PartialUploadFailure(
                f"{len(failed)} of {len(files)} files could not be stored",
                details={"succeeded": succeeded, "failed": failed},
            )

        logger.info("Upload batch stored", owner_id=owner_id, count=len(succeeded))
        return [entry["url"] for entry in succeeded]
