import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .core.config import Settings, settings as default_settings
from .core.errors import ErrorReason, ServiceError
from .api.routes import uploads, files
from .schemas.uploads import HealthResponse
from .services.rate_limit import SlidingWindowRateLimiter
from .services.responder import error_payload, health_payload, status_for
from .services.storage import ObjectStore, build_object_store

log = logging.getLogger("uploader")

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Cross-Origin-Resource-Policy": "same-origin",
    "Strict-Transport-Security": "max-age=15552000; includeSubDomains",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
}


def configure_logging(level: str) -> None:
    logging.basicConfig(level=level.upper(), format="%(asctime)s %(levelname)s %(name)s %(message)s")


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[ObjectStore] = None,
    rate_limiter: Optional[SlidingWindowRateLimiter] = None,
) -> FastAPI:
    """
    Build the ASGI app. The rate limiter and object store are owned by the
    app (on `app.state`); pass them in to control clock and storage in tests.
    """
    settings = settings or default_settings
    configure_logging(settings.LOG_LEVEL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log.info("Environment: %s", settings.ENVIRONMENT)
        log.info("AWS Region: %s", settings.AWS_REGION)
        log.info("S3 Bucket: %s", settings.AWS_S3_BUCKET or "Not configured")
        yield
        app.state.rate_limiter.clear()

    app = FastAPI(title="Cloud File Uploader", lifespan=lifespan)
    app.state.settings = settings
    app.state.rate_limiter = rate_limiter or SlidingWindowRateLimiter(
        limit=settings.RATE_LIMIT_MAX,
        window_ms=settings.RATE_LIMIT_WINDOW_MS,
    )
    app.state.object_store = store or build_object_store(settings)

    def internal_error(exc: Exception) -> JSONResponse:
        log.error("Unhandled error: %s", exc, exc_info=True)
        err = ServiceError(ErrorReason.INTERNAL_ERROR, detail=f"{type(exc).__name__}: {exc}")
        body = error_payload(err, expose_detail=settings.is_development)
        return JSONResponse(status_code=500, content=body.model_dump(exclude_none=True))

    # innermost: unexpected errors become a 500 response that still passes
    # through CORS and the security headers
    @app.middleware("http")
    async def catch_unhandled(request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as e:
            return internal_error(e)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.FRONTEND_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):
        log.info("Request rejected: %s (stage=%s)", exc.reason.value, exc.stage or "-")
        body = error_payload(exc, expose_detail=settings.is_development)
        return JSONResponse(status_code=status_for(exc.reason), content=body.model_dump(exclude_none=True))

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            err = ServiceError(ErrorReason.NOT_FOUND, "Endpoint not found")
        elif exc.status_code == 405:
            err = ServiceError(ErrorReason.METHOD_NOT_ALLOWED)
        else:
            return JSONResponse(status_code=exc.status_code, content={"success": False, "message": str(exc.detail)})
        return JSONResponse(status_code=exc.status_code, content=error_payload(err).model_dump(exclude_none=True))

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        return internal_error(exc)

    app.include_router(uploads.router)
    app.include_router(files.router)

    @app.get("/api/health", response_model=HealthResponse)
    def health():
        return health_payload()

    return app


app = create_app()


def run() -> None:
    uvicorn.run(
        "uploader.main:app",
        host=default_settings.HOST,
        port=default_settings.PORT,
        reload=default_settings.is_development,
    )


if __name__ == "__main__":
    run()
