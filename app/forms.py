"""Streaming form bodies.

Submissions are read straight off ``request.stream()`` and pushed through
python-multipart's parsers. A file part goes chunk by chunk into an
``uploads.UploadWriter``, so the size limit applies while the body is still
arriving instead of after Starlette has spooled all of it.
"""

import logging
from dataclasses import dataclass, field
from urllib.parse import unquote_plus

import uploads
from config import Settings
from errors import ClientError, FileTooLarge
from python_multipart.exceptions import FormParserError
from python_multipart.multipart import MultipartParser, QuerystringParser, parse_options_header
from starlette.concurrency import run_in_threadpool
from starlette.requests import Request

logger = logging.getLogger("shortdrop.forms")

MAX_FIELD_BYTES = 64 * 1024
MAX_FIELDS = 100
# Room for boundaries, part headers and the small text fields next to a file.
FORM_OVERHEAD = 64 * 1024


@dataclass
class Submission:
    fields: dict[str, str] = field(default_factory=dict)
    stored_name: str | None = None

    def add(self, name: str, value: str) -> None:
        if len(self.fields) >= MAX_FIELDS:
            raise ClientError("Too many form fields")
        self.fields[name] = value


def _decode(raw: bytes) -> str:
    return raw.decode("utf-8", errors="replace")


def _append(buffer: bytearray, data: bytes) -> None:
    buffer += data
    if len(buffer) > MAX_FIELD_BYTES:
        raise ClientError("Form field too large")


class _MultipartReader:
    def __init__(self, boundary: bytes, settings: Settings, file_field: str, submission: Submission):
        self.settings = settings
        self.file_field = file_field
        self.submission = submission
        self._writer: uploads.UploadWriter | None = None
        self._in_part = False
        self.parser = MultipartParser(
            boundary,
            {
                "on_part_begin": self.on_part_begin,
                "on_part_data": self.on_part_data,
                "on_part_end": self.on_part_end,
                "on_header_field": self.on_header_field,
                "on_header_value": self.on_header_value,
                "on_header_end": self.on_header_end,
                "on_headers_finished": self.on_headers_finished,
            },
        )

    def on_part_begin(self) -> None:
        self._in_part = True
        self._headers: dict[bytes, bytes] = {}
        self._header_field = bytearray()
        self._header_value = bytearray()
        self._name = ""
        self._value = bytearray()
        self._skip = False

    def on_header_field(self, data: bytes, start: int, end: int) -> None:
        self._header_field += data[start:end]

    def on_header_value(self, data: bytes, start: int, end: int) -> None:
        self._header_value += data[start:end]

    def on_header_end(self) -> None:
        self._headers[bytes(self._header_field).lower()] = bytes(self._header_value)
        self._header_field = bytearray()
        self._header_value = bytearray()

    def on_headers_finished(self) -> None:
        _, options = parse_options_header(self._headers.get(b"content-disposition", b""))
        self._name = _decode(options.get(b"name", b""))
        if b"filename" not in options:
            return
        filename = _decode(options[b"filename"])
        # Browsers send an empty file part when no file was picked.
        if self._name != self.file_field or not filename:
            self._skip = True
            return
        if self.submission.stored_name is not None:
            raise ClientError("Only one file per submission")
        self._writer = uploads.UploadWriter(
            filename,
            self.settings.upload_dir,
            self.settings.max_upload_bytes,
            self.settings.allowed_extensions,
        )

    def on_part_data(self, data: bytes, start: int, end: int) -> None:
        if self._writer is not None:
            self._writer.write(data[start:end])
        elif not self._skip:
            _append(self._value, data[start:end])

    def on_part_end(self) -> None:
        self._in_part = False
        if self._writer is not None:
            writer, self._writer = self._writer, None
            self.submission.stored_name = writer.close()
        elif not self._skip:
            self.submission.add(self._name, _decode(self._value))

    @property
    def complete(self) -> bool:
        return not self._in_part

    def abort(self) -> None:
        if self._writer is not None:
            self._writer.abort()
            self._writer = None


class _UrlencodedReader:
    def __init__(self, submission: Submission):
        self.submission = submission
        self.complete = True
        self._name = bytearray()
        self._value = bytearray()
        self.parser = QuerystringParser(
            {
                "on_field_start": self.on_field_start,
                "on_field_name": self.on_field_name,
                "on_field_data": self.on_field_data,
                "on_field_end": self.on_field_end,
            }
        )

    def on_field_start(self) -> None:
        self._name = bytearray()
        self._value = bytearray()

    def on_field_name(self, data: bytes, start: int, end: int) -> None:
        _append(self._name, data[start:end])

    def on_field_data(self, data: bytes, start: int, end: int) -> None:
        _append(self._value, data[start:end])

    def on_field_end(self) -> None:
        name = unquote_plus(self._name.decode("latin-1"))
        self.submission.add(name, unquote_plus(self._value.decode("latin-1")))

    def abort(self) -> None:
        pass


async def read_submission(request: Request, settings: Settings, file_field: str) -> Submission:
    """Read a form body, storing the ``file_field`` file part if there is one.

    Returns the text fields and the generated name of the stored file. When
    reading fails part-way, any file already written is removed before the
    error propagates.
    """
    max_bytes = settings.max_upload_bytes
    length = request.headers.get("content-length", "")
    if length.isdigit() and int(length) > max_bytes + FORM_OVERHEAD:
        logger.warning("Rejected %s body of %s bytes before reading it", request.url.path, length)
        raise FileTooLarge(f"File too large. Max size: {max_bytes} bytes")

    submission = Submission()
    content_type, params = parse_options_header(request.headers.get("content-type", ""))
    if content_type == b"multipart/form-data":
        boundary = params.get(b"boundary")
        if not boundary:
            raise ClientError("Missing multipart boundary")
        reader = _MultipartReader(boundary, settings, file_field, submission)
    elif content_type == b"application/x-www-form-urlencoded":
        reader = _UrlencodedReader(submission)
    else:
        return submission

    try:
        async for chunk in request.stream():
            if chunk:
                await run_in_threadpool(reader.parser.write, chunk)
        reader.parser.finalize()
        if not reader.complete:
            raise ClientError("Incomplete form body")
    except Exception as exc:
        reader.abort()
        if submission.stored_name is not None:
            uploads.remove(settings.upload_dir, submission.stored_name)
        if isinstance(exc, FormParserError):
            raise ClientError("Malformed form body") from exc
        raise
    return submission
