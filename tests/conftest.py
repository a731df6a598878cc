from __future__ import annotations

import uuid

import pytest
from fastapi.testclient import TestClient

from uploader.core.config import Settings
from uploader.main import create_app
from uploader.services.rate_limit import SlidingWindowRateLimiter
from uploader.services.storage import InMemoryObjectStore
from uploader.services.uploads import UploadService

PUBLIC_BASE = "https://files.example.com"


class FakeClock:
    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        _env_file=None,
        STORAGE_BACKEND="memory",
        AWS_S3_BUCKET="test-bucket",
        PUBLIC_BASE_URL=PUBLIC_BASE,
        ENVIRONMENT="production",
        LOG_LEVEL="WARNING",
        TRUST_FORWARDED_FOR=False,
    )


@pytest.fixture()
def store() -> InMemoryObjectStore:
    return InMemoryObjectStore(PUBLIC_BASE)


@pytest.fixture()
def limiter(settings: Settings, clock: FakeClock) -> SlidingWindowRateLimiter:
    return SlidingWindowRateLimiter(
        limit=settings.RATE_LIMIT_MAX,
        window_ms=settings.RATE_LIMIT_WINDOW_MS,
        clock=clock,
    )


@pytest.fixture()
def service(store, limiter, settings) -> UploadService:
    return UploadService(store=store, limiter=limiter, settings=settings)


@pytest.fixture()
def app(settings, store, limiter):
    return create_app(settings=settings, store=store, rate_limiter=limiter)


@pytest.fixture()
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def make_multipart():
    """
    Build a raw multipart/form-data body.

    parts: list of (field_name, filename or None, content_type or None, data)
    Returns (content_type_header, body_bytes).
    """

    def build(parts, boundary: str | None = None, close: bool = True):
        boundary = boundary or f"----test{uuid.uuid4().hex}"
        out = bytearray()
        for name, filename, content_type, data in parts:
            out += f"--{boundary}\r\n".encode()
            disposition = f'Content-Disposition: form-data; name="{name}"'
            if filename is not None:
                disposition += f'; filename="{filename}"'
            out += disposition.encode("utf-8") + b"\r\n"
            if content_type is not None:
                out += f"Content-Type: {content_type}\r\n".encode()
            out += b"\r\n"
            out += data if isinstance(data, bytes) else data.encode("utf-8")
            out += b"\r\n"
        if close:
            out += f"--{boundary}--\r\n".encode()
        return f"multipart/form-data; boundary={boundary}", bytes(out)

    return build
