from fastapi import Request

from ..core.config import Settings
from ..services.rate_limit import SlidingWindowRateLimiter
from ..services.storage import ObjectStore
from ..services.uploads import UploadService


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_rate_limiter(request: Request) -> SlidingWindowRateLimiter:
    return request.app.state.rate_limiter


def get_object_store(request: Request) -> ObjectStore:
    return request.app.state.object_store


def get_upload_service(request: Request) -> UploadService:
    return UploadService(
        store=get_object_store(request),
        limiter=get_rate_limiter(request),
        settings=get_settings(request),
    )


def client_identity(headers, remote_addr: str | None, trust_forwarded_for: bool) -> str:
    if trust_forwarded_for:
        forwarded = headers.get("x-forwarded-for")
        if forwarded:
            first = forwarded.split(",")[0].strip()
            if first:
                return first
    return remote_addr or "unknown"


def get_client_id(request: Request) -> str:
    # source address; X-Forwarded-For only when the proxy is trusted
    settings = get_settings(request)
    remote = request.client.host if request.client else None
    return client_identity(request.headers, remote, settings.TRUST_FORWARDED_FOR)
