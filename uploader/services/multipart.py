"""
Streaming decoder for the upload form.

Wraps python-multipart's push parser the same way Starlette's form parser
does, but keeps only the single `file` part in memory and aborts as soon as
its running size passes the cutoff.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from python_multipart import MultipartParser
from python_multipart.exceptions import ParseError
from python_multipart.multipart import parse_options_header

from ..core.errors import ErrorReason, ServiceError
from ..schemas.common import MAX_FILE_SIZE
from .responder import oversize_message

log = logging.getLogger(__name__)

FILE_FIELD = "file"
DEFAULT_PART_TYPE = "application/octet-stream"


@dataclass
class UploadRequest:
    """One inbound upload, alive for a single request/response cycle."""
    client_id: str
    original_name: str
    mime_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


def _decode(value: bytes) -> str:
    try:
        return value.decode("utf-8")
    except UnicodeDecodeError:
        return value.decode("latin-1")


class UploadParser:
    """
    Feed raw body chunks with `feed()`, then call `finish()`.

    Raises ServiceError with:
      - missing-file: body is not multipart, is malformed, or carries no file part
      - multiple-files: a second file part, or a file part under another field name
      - oversize: the file part grows past `max_size` bytes
    """

    def __init__(self, content_type: Optional[str], client_id: str, max_size: int = MAX_FILE_SIZE):
        self.client_id = client_id
        self.max_size = max_size

        media_type, params = parse_options_header(content_type or "")
        if media_type.lower() != b"multipart/form-data":
            raise ServiceError(ErrorReason.MISSING_FILE, "Request must be multipart/form-data")
        boundary = params.get(b"boundary")
        if not boundary:
            raise ServiceError(ErrorReason.MISSING_FILE, "Missing multipart boundary")

        self._header_field = b""
        self._header_value = b""
        self._headers: dict = {}
        self._in_file = False
        self._file_name: Optional[str] = None
        self._file_type: Optional[str] = None
        self._buffer = bytearray()
        self._file_parts = 0
        self._complete = False

        callbacks = {
            "on_part_begin": self.on_part_begin,
            "on_part_data": self.on_part_data,
            "on_header_field": self.on_header_field,
            "on_header_value": self.on_header_value,
            "on_header_end": self.on_header_end,
            "on_headers_finished": self.on_headers_finished,
            "on_end": self.on_end,
        }
        self._parser = MultipartParser(boundary, callbacks)

    # ---- parser callbacks ----
    def on_part_begin(self) -> None:
        self._headers = {}
        self._in_file = False

    def on_header_field(self, data: bytes, start: int, end: int) -> None:
        self._header_field += data[start:end]

    def on_header_value(self, data: bytes, start: int, end: int) -> None:
        self._header_value += data[start:end]

    def on_header_end(self) -> None:
        self._headers[self._header_field.lower()] = self._header_value
        self._header_field = b""
        self._header_value = b""

    def on_headers_finished(self) -> None:
        _, options = parse_options_header(self._headers.get(b"content-disposition", b""))
        filename = options.get(b"filename")
        if filename is None:
            # plain form field, ignored
            return

        field_name = _decode(options.get(b"name", b""))
        self._file_parts += 1
        if field_name != FILE_FIELD:
            raise ServiceError(
                ErrorReason.MULTIPLE_FILES,
                f"Unexpected file field '{field_name}'. Only one file allowed, in field '{FILE_FIELD}'",
            )
        if self._file_parts > 1:
            raise ServiceError(ErrorReason.MULTIPLE_FILES)

        self._in_file = True
        self._file_name = _decode(filename)
        declared = self._headers.get(b"content-type")
        self._file_type = _decode(declared).strip() if declared else DEFAULT_PART_TYPE

    def on_part_data(self, data: bytes, start: int, end: int) -> None:
        if not self._in_file:
            return
        if len(self._buffer) + (end - start) > self.max_size:
            raise ServiceError(ErrorReason.OVERSIZE, oversize_message(self.max_size))
        self._buffer += data[start:end]

    def on_end(self) -> None:
        self._complete = True

    # ---- public ----
    def feed(self, chunk: bytes) -> None:
        if not chunk:
            return
        try:
            self._parser.write(chunk)
        except ParseError as e:
            log.info("Malformed multipart body from %s: %s", self.client_id, e)
            raise ServiceError(ErrorReason.MISSING_FILE, "Malformed multipart body", detail=str(e)) from e

    def finish(self) -> UploadRequest:
        try:
            self._parser.finalize()
        except ParseError as e:
            raise ServiceError(ErrorReason.MISSING_FILE, "Malformed multipart body", detail=str(e)) from e

        if self._file_name is None:
            raise ServiceError(ErrorReason.MISSING_FILE)
        if not self._complete:
            raise ServiceError(ErrorReason.MISSING_FILE, "Malformed multipart body", detail="body ended before closing boundary")

        return UploadRequest(
            client_id=self.client_id,
            original_name=self._file_name,
            mime_type=self._file_type or DEFAULT_PART_TYPE,
            data=bytes(self._buffer),
        )
