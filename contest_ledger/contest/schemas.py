"""
Contest object schemas.

``SubmissionFields`` is the validated body of a create or edit. It is
built from raw request data with ``SubmissionFields.parse`` so that every
validation failure surfaces as ``ValidationFailed`` before any store
mutation happens.
"""

from __future__ import annotations

from typing import Any, List, Mapping, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from ..errors import ValidationFailed


def _is_absolute_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


REQUIRED_FIELDS = ("title", "author_name", "description", "demo_url")


class SubmissionFields(BaseModel):
    """Owner-editable fields of a submission."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    title: str = Field(..., min_length=1, max_length=200)
    author_name: str = Field(..., min_length=1, max_length=120)
    description: str = Field(..., min_length=1, max_length=10000)
    demo_url: str = Field(..., min_length=1, max_length=2048)
    youtube_url: Optional[str] = Field(default=None, max_length=2048)
    image_url: Optional[str] = Field(default=None, max_length=2048)
    image_urls: List[str] = Field(default_factory=list)

    @field_validator("demo_url")
    @classmethod
    def _demo_url_is_absolute(cls, value: str) -> str:
        if not _is_absolute_url(value):
            raise ValueError("demo_url must be an absolute http(s) URL")
        return value

    @field_validator("youtube_url", "image_url", mode="before")
    @classmethod
    def _blank_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("youtube_url", "image_url")
    @classmethod
    def _optional_url_is_absolute(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not _is_absolute_url(value):
            raise ValueError("must be an absolute http(s) URL")
        return value

    @field_validator("image_urls", mode="before")
    @classmethod
    def _none_is_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("image_urls")
    @classmethod
    def _image_urls_are_absolute(cls, value: List[str]) -> List[str]:
        cleaned = [item.strip() for item in value if item and item.strip()]
        for item in cleaned:
            if not _is_absolute_url(item):
                raise ValueError(f"image URL '{item}' must be an absolute http(s) URL")
        return cleaned

    @model_validator(mode="after")
    def _derive_image_url(self) -> "SubmissionFields":
        """Keep image_url equal to image_urls[0].

        A lone legacy ``image_url`` becomes the one-element list.
        """
        if not self.image_urls and self.image_url:
            self.image_urls = [self.image_url]
        self.image_url = self.image_urls[0] if self.image_urls else None
        return self

    @classmethod
    def parse(cls, data: Mapping[str, Any] | "SubmissionFields") -> "SubmissionFields":
        """Validate raw input, raising ValidationFailed on the first violation."""
        if isinstance(data, cls):
            return data
        missing = [
            name
            for name in REQUIRED_FIELDS
            if not isinstance(data.get(name), str) or not data.get(name, "").strip()
        ]
        if missing:
            raise ValidationFailed(
                "Missing required fields: " + ", ".join(missing),
                rule="missing_fields",
                details={"fields": missing},
            )
        try:
            return cls.model_validate(dict(data))
        except ValidationError as exc:
            first = exc.errors()[0]
            field = ".".join(str(part) for part in first.get("loc", ())) or "body"
            raise ValidationFailed(
                f"Invalid value for '{field}': {first.get('msg')}",
                rule="invalid_field",
                details={"field": field},
            ) from None


class VoteResult(BaseModel):
    """Authoritative vote state for one (voter, work) pair."""

    model_config = ConfigDict(populate_by_name=True)

    work_id: str = Field(..., alias="workId")
    is_voted: bool = Field(..., alias="isVoted")
    vote_count: int = Field(..., ge=0, alias="voteCount")

    def to_response(self) -> dict:
        return {"isVoted": self.is_voted, "voteCount": self.vote_count}


class SessionCreate(BaseModel):
    """Body of POST /auth/session."""

    access_token: str = Field(..., min_length=1)
    expires_in: int = Field(..., gt=0)

