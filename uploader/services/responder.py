from datetime import datetime
from typing import Dict, Iterable, Optional, Tuple
from urllib.parse import unquote

from ..core.errors import ErrorReason, ServiceError
from ..schemas.common import ErrorResponse, MAX_FILE_SIZE
from ..schemas.files import FileListResponse, FileMetadata, FileMetadataResponse, FileSummary
from ..schemas.uploads import HealthResponse, UploadMetadata, UploadResponse
from .storage import ObjectInfo, ObjectSummary, now_utc


def oversize_message(max_size: int) -> str:
    return f"File too large. Maximum size is {max_size / (1024 * 1024):g}MB"


RESPONSES: Dict[ErrorReason, Tuple[int, str]] = {
    ErrorReason.MISSING_FILE: (400, "No file provided"),
    ErrorReason.MULTIPLE_FILES: (400, "Only one file allowed"),
    ErrorReason.OVERSIZE: (413, oversize_message(MAX_FILE_SIZE)),
    ErrorReason.DISALLOWED_TYPE: (
        415,
        "File type not supported. Please upload images, text files, PDFs, or Word documents.",
    ),
    ErrorReason.RATE_LIMITED: (429, "Too many upload attempts, please try again later."),
    ErrorReason.STORAGE_CONFIG_ERROR: (500, "Storage configuration error. Please contact support."),
    ErrorReason.NOT_FOUND: (404, "File not found"),
    ErrorReason.INTERNAL_ERROR: (500, "Internal server error"),
    ErrorReason.METHOD_NOT_ALLOWED: (405, "Method not allowed"),
}


def status_for(reason: ErrorReason) -> int:
    return RESPONSES[reason][0]


def error_payload(err: ServiceError, expose_detail: bool = False) -> ErrorResponse:
    _, default_message = RESPONSES[err.reason]
    return ErrorResponse(
        message=err.message or default_message,
        reason=err.reason.value,
        error=err.detail if expose_detail else None,
    )


def upload_payload(stored) -> UploadResponse:
    return UploadResponse(
        fileUrl=stored.url,
        fileKey=stored.key,
        metadata=UploadMetadata(
            originalName=stored.original_name,
            mimeType=stored.mime_type,
            size=stored.size,
            uploadedAt=stored.uploaded_at,
            uploadedBy=stored.uploaded_by,
        ),
    )


def health_payload() -> HealthResponse:
    return HealthResponse(timestamp=now_utc())


def _parse_timestamp(value: Optional[str], fallback: datetime) -> datetime:
    if not value:
        return fallback
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return fallback


def file_metadata_payload(info: ObjectInfo) -> FileMetadataResponse:
    meta = info.metadata
    original = meta.get("originalname")
    return FileMetadataResponse(
        metadata=FileMetadata(
            size=info.size,
            type=info.content_type,
            lastModified=info.last_modified,
            originalName=unquote(original) if original else "Unknown",
            uploadedAt=_parse_timestamp(meta.get("uploadedat"), info.last_modified),
        )
    )


def file_list_payload(objects: Iterable[ObjectSummary], url_for) -> FileListResponse:
    return FileListResponse(
        files=[
            FileSummary(key=o.key, size=o.size, lastModified=o.last_modified, url=url_for(o.key))
            for o in objects
        ]
    )
