"""Image upload pipeline: rate limiting, validation, transcoding, storage."""

from .pipeline import IncomingFile, UploadLimits, UploadPipeline
from .rate_limit import RateLimiter, RateLimitResult, SlidingWindowRateLimiter
from .storage import LocalObjectStore, ObjectStore, S3ObjectStore, StorageError, create_object_store
from .transcoder import ImageTranscoder, TranscodedImage, TranscodeError

__all__ = [
    "ImageTranscoder",
    "IncomingFile",
    "LocalObjectStore",
    "ObjectStore",
    "RateLimitResult",
    "RateLimiter",
    "S3ObjectStore",
    "SlidingWindowRateLimiter",
    "StorageError",
    "TranscodeError",
    "TranscodedImage",
    "UploadLimits",
    "UploadPipeline",
    "create_object_store",
]
