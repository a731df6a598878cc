from typing import Literal, Optional, get_args
from pydantic import BaseModel

AllowedContentType = Literal[
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/webp",
    "text/plain",
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
]

ALLOWED_MIME_TYPES = frozenset(get_args(AllowedContentType))

MAX_FILE_SIZE = 5 * 1024 * 1024  # 5 MiB


class ErrorResponse(BaseModel):
    success: bool = False
    message: str
    reason: str
    error: Optional[str] = None
