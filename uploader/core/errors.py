from enum import Enum
from typing import Optional


class ErrorReason(str, Enum):
    MISSING_FILE = "missing-file"
    MULTIPLE_FILES = "multiple-files"
    OVERSIZE = "oversize"
    DISALLOWED_TYPE = "disallowed-type"
    RATE_LIMITED = "rate-limited"
    STORAGE_CONFIG_ERROR = "storage-config-error"
    NOT_FOUND = "not-found"
    INTERNAL_ERROR = "internal-error"
    # transport level, only produced by the adapters
    METHOD_NOT_ALLOWED = "method-not-allowed"


class ServiceError(Exception):
    """
    Terminal rejection of a request.

    `message` overrides the user-facing text from the response table,
    `detail` is internal diagnostic text that only reaches the caller in
    development mode.
    """

    def __init__(
        self,
        reason: ErrorReason,
        message: Optional[str] = None,
        detail: Optional[str] = None,
        stage: Optional[str] = None,
    ):
        super().__init__(message or reason.value)
        self.reason = reason
        self.message = message
        self.detail = detail
        self.stage = stage


class StorageError(RuntimeError):
    """Failure reported by the object store."""


class StorageConfigError(StorageError):
    """Missing bucket or rejected credentials."""


class ObjectNotFound(StorageError):
    pass
