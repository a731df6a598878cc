import re
import time
import uuid
from typing import Optional, Tuple

MAX_BASE_LENGTH = 50
MAX_EXT_LENGTH = 16

_UNSAFE = re.compile(r"[^A-Za-z0-9]")
_DASHES = re.compile(r"-+")


def split_extension(original_name: str) -> Tuple[str, str]:
    """
    Split on the final '.'; a name without a dot has an empty extension.

      'report.final.pdf' -> ('report.final', 'pdf')
      'README'           -> ('README', '')
    """
    base, dot, ext = original_name.rpartition(".")
    if not dot:
        return original_name, ""
    return base, ext


def sanitize_base_name(base: str) -> str:
    safe = _UNSAFE.sub("-", base)
    safe = _DASHES.sub("-", safe)
    return safe[:MAX_BASE_LENGTH]


def generate_key(
    original_name: str,
    now_ms: Optional[int] = None,
    random_id: Optional[str] = None,
) -> str:
    """
    Derive a storage key from an untrusted filename.

    Format is `{unix_ms}-{8 hex}-{sanitized base}.{ext}`. The extension keeps
    only ASCII letters and digits; when nothing is left the key has no
    trailing dot. Never raises for empty or fully non-alphanumeric names.
    """
    if now_ms is None:
        now_ms = time.time_ns() // 1_000_000
    if random_id is None:
        random_id = uuid.uuid4().hex[:8]

    base, ext = split_extension(original_name or "")
    ext = _UNSAFE.sub("", ext)[:MAX_EXT_LENGTH]

    key = f"{now_ms}-{random_id}-{sanitize_base_name(base)}"
    return f"{key}.{ext}" if ext else key
