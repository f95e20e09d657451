"""Test configuration and fixtures."""

import io
import time
from datetime import datetime, timedelta, timezone
from typing import Generator

import jwt
import pytest
from fastapi.testclient import TestClient
from PIL import Image
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from contest_ledger import config
from contest_ledger.api import app
from contest_ledger.config import Settings, get_settings
from contest_ledger.contest.enums import SubmissionStatus
from contest_ledger.db.base import Base, build_engine, get_db
from contest_ledger.db.models import SubmissionModel
from contest_ledger.deps import get_clock, get_object_store, get_rate_limiter
from contest_ledger.uploads.rate_limit import SlidingWindowRateLimiter
from contest_ledger.uploads.storage import LocalObjectStore

TEST_SECRET = "test-secret-for-contest-ledger-tests"
TEST_AUDIENCE = "authenticated"
FUTURE_DEADLINE = datetime(2030, 1, 1, tzinfo=timezone.utc)


class FrozenClock:
    """Callable clock whose time tests move explicitly."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeMonotonic:
    def __init__(self, start: float = 1000.0):
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


def make_settings(**overrides) -> Settings:
    values = {
        "contest_deadline": FUTURE_DEADLINE,
        "auth_jwt_secret": TEST_SECRET,
        "auth_jwt_audience": TEST_AUDIENCE,
        "session_cookie_secure": False,
        "storage_public_base_url": "http://testserver/media",
        "log_format": "console",
    }
    values.update(overrides)
    return Settings(**values)


def make_token(
    user_id: str,
    expires_in: int = 3600,
    secret: str = TEST_SECRET,
    audience: str = TEST_AUDIENCE,
    **claims,
) -> str:
    payload = {
        "sub": user_id,
        "aud": audience,
        "exp": int(time.time()) + expires_in,
        "email": f"{user_id}@example.com",
    }
    payload.update(claims)
    return jwt.encode(payload, secret, algorithm="HS256")


def auth_headers(user_id: str) -> dict:
    return {"Authorization": f"Bearer {make_token(user_id)}"}


def make_image_bytes(width: int = 320, height: int = 200, fmt: str = "JPEG", mode: str = "RGB") -> bytes:
    color = (200, 40, 40, 128) if mode == "RGBA" else (200, 40, 40)
    image = Image.new(mode, (width, height), color)
    output = io.BytesIO()
    image.save(output, format=fmt)
    return output.getvalue()


def valid_fields(**overrides) -> dict:
    fields = {
        "title": "Lantern Garden",
        "author_name": "Mei Lin",
        "description": "A small browser toy that grows lanterns as you type.",
        "demo_url": "https://example.com/lantern",
    }
    fields.update(overrides)
    return fields


def add_submission(db: Session, owner_id: str, status: SubmissionStatus = SubmissionStatus.APPROVED, **fields) -> SubmissionModel:
    """Insert a submission directly, bypassing the lifecycle rules."""
    data = valid_fields(**fields)
    submission = SubmissionModel(
        owner_id=owner_id,
        title=data["title"],
        author_name=data["author_name"],
        description=data["description"],
        demo_url=data["demo_url"],
        status=status.value,
        image_urls=[],
        created_at=datetime.now(timezone.utc),
        updated_at=datetime.now(timezone.utc),
    )
    db.add(submission)
    db.commit()
    db.refresh(submission)
    return submission


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2026, 1, 20, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def db_engine():
    """Fresh in-memory database per test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def file_engine(tmp_path):
    """File-backed database for tests that need independent connections."""
    engine = build_engine(f"sqlite:///{tmp_path / 'contest.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db_session(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def object_store(tmp_path) -> LocalObjectStore:
    return LocalObjectStore(tmp_path / "media", "http://testserver/media")


@pytest.fixture
def rate_limiter() -> SlidingWindowRateLimiter:
    return SlidingWindowRateLimiter(limit=20, window_seconds=60, clock=FakeMonotonic())


@pytest.fixture
def client(monkeypatch, session_factory, settings, clock, object_store, rate_limiter) -> Generator[TestClient, None, None]:
    """TestClient wired to the per-test database, settings and clock."""

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_object_store] = lambda: object_store
    app.dependency_overrides[get_rate_limiter] = lambda: rate_limiter
    monkeypatch.setattr(config, "settings", settings)
    yield TestClient(app)
    app.dependency_overrides.clear()
