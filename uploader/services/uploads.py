import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import AsyncIterator, Iterable, List, Optional
from urllib.parse import quote

from starlette.concurrency import run_in_threadpool

from ..core.config import Settings
from ..core.errors import ErrorReason, ObjectNotFound, ServiceError, StorageConfigError, StorageError
from .multipart import UploadParser, UploadRequest
from .rate_limit import SlidingWindowRateLimiter
from .responder import oversize_message
from .storage import ObjectInfo, ObjectStore, ObjectSummary, now_utc
from .validation import normalize_mime_type, validate
from ..utils.naming import generate_key

log = logging.getLogger(__name__)

UPLOADED_BY = "anonymous"  # no identity model yet
CACHE_CONTROL = "max-age=31536000"


class UploadStage(str, Enum):
    RECEIVED = "received"
    RATE_CHECKED = "rate_checked"
    PARSED = "parsed"
    VALIDATED = "validated"
    STORED = "stored"


@dataclass(frozen=True)
class StoredObject:
    key: str
    original_name: str
    mime_type: str
    size: int
    uploaded_at: datetime
    url: str
    uploaded_by: str = UPLOADED_BY


def _tag(err: ServiceError, stage: UploadStage) -> ServiceError:
    if err.stage is None:
        err.stage = stage.value
    return err


class UploadService:
    """
    Runs one upload through rate limit -> parse -> validate -> name -> store.

    Every rejection is raised as ServiceError before any storage I/O, except
    storage failures themselves which are logged here and re-raised with a
    generic reason. Nothing is retried.
    """

    def __init__(self, store: ObjectStore, limiter: SlidingWindowRateLimiter, settings: Settings):
        self.store = store
        self.limiter = limiter
        self.settings = settings

    # ---- stages ----
    def admit(self, client_id: str) -> None:
        if not self.limiter.admit(client_id, self.settings.RATE_LIMIT_MAX, self.settings.RATE_LIMIT_WINDOW_MS):
            log.warning("Rate limit exceeded for client %s", client_id)
            raise ServiceError(ErrorReason.RATE_LIMITED, stage=UploadStage.RECEIVED.value)
        log.debug("upload %s: %s", client_id, UploadStage.RATE_CHECKED.value)

    def parser(self, client_id: str, content_type: Optional[str]) -> UploadParser:
        return UploadParser(content_type, client_id, max_size=self.settings.MAX_FILE_SIZE)

    def check(self, upload: UploadRequest) -> None:
        verdict = validate(upload.mime_type, upload.size, max_size=self.settings.MAX_FILE_SIZE)
        if not verdict.accepted:
            log.info(
                "Rejected upload from %s: %s (type=%s, size=%d)",
                upload.client_id, verdict.reason.value, upload.mime_type, upload.size,
            )
            message = oversize_message(self.settings.MAX_FILE_SIZE) if verdict.reason is ErrorReason.OVERSIZE else None
            raise ServiceError(verdict.reason, message, stage=UploadStage.PARSED.value)
        log.debug("upload %s: %s", upload.client_id, UploadStage.VALIDATED.value)

    def put(self, upload: UploadRequest) -> StoredObject:
        key = f"{self.settings.UPLOAD_PREFIX}{generate_key(upload.original_name)}"
        mime_type = normalize_mime_type(upload.mime_type)
        uploaded_at = now_utc()
        metadata = {
            # S3 user metadata must be ASCII
            "originalname": quote(upload.original_name),
            "uploadedat": uploaded_at.isoformat(),
            "uploadedby": UPLOADED_BY,
        }
        try:
            url = self.store.put(
                key,
                upload.data,
                mime_type,
                metadata,
                cache_control=CACHE_CONTROL,
                content_disposition=f"inline; filename*=UTF-8''{quote(upload.original_name)}",
            )
        except StorageConfigError as e:
            log.error("Storage configuration error while storing %s: %s", key, e, exc_info=True)
            raise ServiceError(
                ErrorReason.STORAGE_CONFIG_ERROR, detail=str(e), stage=UploadStage.VALIDATED.value
            ) from e
        except StorageError as e:
            log.error("Upload to storage failed for %s: %s", key, e, exc_info=True)
            raise ServiceError(
                ErrorReason.INTERNAL_ERROR, "Upload failed. Please try again.",
                detail=str(e), stage=UploadStage.VALIDATED.value,
            ) from e

        log.info("File uploaded successfully: %s (%d bytes, %s)", key, upload.size, mime_type)
        log.debug("upload %s: %s", upload.client_id, UploadStage.STORED.value)
        return StoredObject(
            key=key,
            original_name=upload.original_name,
            mime_type=mime_type,
            size=upload.size,
            uploaded_at=uploaded_at,
            url=url,
        )

    # ---- pipelines ----
    def process(self, client_id: str, content_type: Optional[str], chunks: Iterable[bytes]) -> StoredObject:
        """Blocking pipeline for adapters that already hold the body."""
        self.admit(client_id)
        try:
            parser = self.parser(client_id, content_type)
            for chunk in chunks:
                parser.feed(chunk)
            upload = parser.finish()
        except ServiceError as e:
            raise _tag(e, UploadStage.RATE_CHECKED)
        self.check(upload)
        return self.put(upload)

    async def process_stream(
        self, client_id: str, content_type: Optional[str], chunks: AsyncIterator[bytes]
    ) -> StoredObject:
        """
        ASGI pipeline: the body is decoded as it arrives, so an oversize
        file is cut off without buffering the rest. The blocking store call
        runs in the thread pool and completes even if the caller goes away.
        """
        self.admit(client_id)
        try:
            parser = self.parser(client_id, content_type)
            async for chunk in chunks:
                parser.feed(chunk)
            upload = parser.finish()
        except ServiceError as e:
            raise _tag(e, UploadStage.RATE_CHECKED)
        self.check(upload)
        return await run_in_threadpool(self.put, upload)

    # ---- lookups ----
    def describe(self, key: str) -> ObjectInfo:
        try:
            return self.store.head(key)
        except ObjectNotFound as e:
            raise ServiceError(ErrorReason.NOT_FOUND, detail=str(e)) from e
        except StorageConfigError as e:
            log.error("Storage configuration error while reading %s: %s", key, e, exc_info=True)
            raise ServiceError(ErrorReason.STORAGE_CONFIG_ERROR, detail=str(e)) from e
        except StorageError as e:
            log.error("Failed to retrieve file metadata for %s: %s", key, e, exc_info=True)
            raise ServiceError(
                ErrorReason.INTERNAL_ERROR, "Failed to retrieve file metadata", detail=str(e)
            ) from e

    def recent(self, limit: Optional[int] = None) -> List[ObjectSummary]:
        limit = limit or self.settings.FILE_LIST_LIMIT
        try:
            return self.store.list(self.settings.UPLOAD_PREFIX, limit)
        except StorageConfigError as e:
            log.error("Storage configuration error while listing: %s", e, exc_info=True)
            raise ServiceError(ErrorReason.STORAGE_CONFIG_ERROR, detail=str(e)) from e
        except StorageError as e:
            log.error("List files error: %s", e, exc_info=True)
            raise ServiceError(ErrorReason.INTERNAL_ERROR, "Failed to retrieve files", detail=str(e)) from e
