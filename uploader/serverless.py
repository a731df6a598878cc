"""
API Gateway / Lambda proxy handler for POST /api/upload.

Runs the same UploadService as the ASGI app. The rate limiter lives as long
as the warm container does, so limits are per instance.
"""
import base64
import binascii
import json
import logging
from typing import Any, Dict, Optional

from .api.deps import client_identity
from .core.config import Settings, settings as default_settings
from .core.errors import ErrorReason, ServiceError
from .services.rate_limit import SlidingWindowRateLimiter
from .services.responder import error_payload, status_for, upload_payload
from .services.storage import build_object_store
from .services.uploads import UploadService

log = logging.getLogger(__name__)

_service: Optional[UploadService] = None


def get_service() -> UploadService:
    global _service
    if _service is None:
        _service = UploadService(
            store=build_object_store(default_settings),
            limiter=SlidingWindowRateLimiter(
                limit=default_settings.RATE_LIMIT_MAX,
                window_ms=default_settings.RATE_LIMIT_WINDOW_MS,
            ),
            settings=default_settings,
        )
    return _service


def reset_service(service: Optional[UploadService] = None) -> None:
    """Replace (or drop) the cached service, used on teardown and in tests."""
    global _service
    _service = service


def _headers(event: Dict[str, Any]) -> Dict[str, str]:
    return {k.lower(): v for k, v in (event.get("headers") or {}).items() if v is not None}


def _method(event: Dict[str, Any]) -> str:
    ctx = event.get("requestContext") or {}
    method = event.get("httpMethod") or (ctx.get("http") or {}).get("method")
    return (method or "").upper()


def _source_ip(event: Dict[str, Any]) -> Optional[str]:
    ctx = event.get("requestContext") or {}
    return (ctx.get("identity") or {}).get("sourceIp") or (ctx.get("http") or {}).get("sourceIp")


def cors_headers(origin: Optional[str], settings: Settings) -> Dict[str, str]:
    headers = {
        "Access-Control-Allow-Methods": "POST, OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type",
        "Vary": "Origin",
    }
    if origin and origin in settings.FRONTEND_ORIGINS:
        headers["Access-Control-Allow-Origin"] = origin
    return headers


def _response(status: int, body: Optional[Dict[str, Any]], headers: Dict[str, str]) -> Dict[str, Any]:
    res = {"statusCode": status, "headers": dict(headers)}
    if body is not None:
        res["headers"]["Content-Type"] = "application/json"
        res["body"] = json.dumps(body)
    else:
        res["body"] = ""
    return res


def _error(err: ServiceError, settings: Settings, headers: Dict[str, str]) -> Dict[str, Any]:
    body = error_payload(err, expose_detail=settings.is_development)
    return _response(status_for(err.reason), body.model_dump(mode="json", exclude_none=True), headers)


def handler(event: Dict[str, Any], context: Any = None) -> Dict[str, Any]:
    service = get_service()
    settings = service.settings
    headers = _headers(event)
    out_headers = cors_headers(headers.get("origin"), settings)

    method = _method(event)
    if method == "OPTIONS":
        return _response(200, None, out_headers)
    if method != "POST":
        return _error(ServiceError(ErrorReason.METHOD_NOT_ALLOWED), settings, out_headers)

    client_id = client_identity(headers, _source_ip(event), settings.TRUST_FORWARDED_FOR)

    try:
        raw = event.get("body") or ""
        if event.get("isBase64Encoded"):
            body = base64.b64decode(raw)
        else:
            body = raw.encode("utf-8") if isinstance(raw, str) else raw
    except (binascii.Error, ValueError) as e:
        return _error(
            ServiceError(ErrorReason.MISSING_FILE, "Malformed request body", detail=str(e)),
            settings,
            out_headers,
        )

    try:
        stored = service.process(client_id, headers.get("content-type"), [body])
    except ServiceError as e:
        return _error(e, settings, out_headers)
    except Exception as e:
        log.error("Unhandled error: %s", e, exc_info=True)
        err = ServiceError(ErrorReason.INTERNAL_ERROR, detail=f"{type(e).__name__}: {e}")
        return _error(err, settings, out_headers)

    return _response(200, upload_payload(stored).model_dump(mode="json"), out_headers)
