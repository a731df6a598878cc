from dataclasses import dataclass
from typing import Optional

from ..core.errors import ErrorReason
from ..schemas.common import ALLOWED_MIME_TYPES, MAX_FILE_SIZE


@dataclass(frozen=True)
class ValidationVerdict:
    accepted: bool
    reason: Optional[ErrorReason] = None

    @classmethod
    def reject(cls, reason: ErrorReason) -> "ValidationVerdict":
        return cls(accepted=False, reason=reason)


ACCEPTED = ValidationVerdict(accepted=True)


def normalize_mime_type(declared: Optional[str]) -> str:
    """
    'Text/Plain; charset=utf-8' -> 'text/plain'
    """
    if not declared:
        return ""
    return declared.split(";", 1)[0].strip().lower()


def validate(declared_mime_type: str, byte_size: int, max_size: int = MAX_FILE_SIZE) -> ValidationVerdict:
    """
    Admission check on the client-declared type and the byte size.

    The type is taken as declared by the client; file content is not inspected.
    A disallowed type is reported as such whatever the size.
    """
    if normalize_mime_type(declared_mime_type) not in ALLOWED_MIME_TYPES:
        return ValidationVerdict.reject(ErrorReason.DISALLOWED_TYPE)
    if byte_size > max_size:
        return ValidationVerdict.reject(ErrorReason.OVERSIZE)
    return ACCEPTED
