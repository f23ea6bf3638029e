# services/multipart_reader.py
"""Pull-style access to a streamed multipart body.

python-multipart's ``MultipartParser`` is push based: bytes are written in and
callbacks fire. ``MultipartReader`` turns that around so callers ask for the
next part and read its payload as a stream, while the source is only read as
far as the caller needs.
"""
from collections import deque
from typing import BinaryIO, Deque, Dict, Optional, Tuple
import logging

from python_multipart.exceptions import MultipartParseError
from python_multipart.multipart import MultipartParser, parse_options_header

logger = logging.getLogger(__name__)

READ_SIZE = 64 * 1024

_HEADERS = "headers"
_DATA = "data"
_PART_END = "part_end"


class MultipartFramingError(ValueError):
    """Raised when a multipart body is malformed or truncated"""


def get_boundary(content_type: Optional[str]) -> bytes:
    """Extract the boundary parameter from a multipart Content-Type header"""
    ctype, params = parse_options_header(content_type)
    if not ctype.lower().startswith(b"multipart/"):
        raise MultipartFramingError("request Content-Type isn't multipart/form-data")

    boundary = params.get(b"boundary")
    if not boundary:
        raise MultipartFramingError("no multipart boundary param in Content-Type")
    return boundary


class BodyPart:
    """A single part of a multipart body"""

    def __init__(self, reader: "MultipartReader", headers: Dict[bytes, bytes]):
        self._reader = reader
        self.headers = headers
        self._buffer = b""
        self.finished = False

    def _disposition_param(self, name: bytes) -> Optional[bytes]:
        _, params = parse_options_header(self.headers.get(b"content-disposition"))
        return params.get(name)

    @property
    def form_name(self) -> str:
        name = self._disposition_param(b"name")
        return name.decode("utf-8", errors="replace") if name else ""

    @property
    def filename(self) -> Optional[str]:
        name = self._disposition_param(b"filename")
        return name.decode("utf-8", errors="replace") if name is not None else None

    def _fill(self) -> None:
        while not self._buffer and not self.finished:
            data = self._reader._read_part_data()
            if data:
                self._buffer = data
            else:
                self.finished = True

    def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            pieces = []
            while True:
                self._fill()
                if not self._buffer:
                    return b"".join(pieces)
                pieces.append(self._buffer)
                self._buffer = b""

        self._fill()
        data, self._buffer = self._buffer[:size], self._buffer[size:]
        return data

    def drain(self) -> None:
        """Discard whatever is left of this part"""
        while not self.finished:
            self._buffer = b""
            self._fill()
        self._buffer = b""

    def readable(self) -> bool:
        return True


class MultipartReader:
    """Iterates the parts of a multipart body read from a blocking binary stream"""

    def __init__(self, stream: BinaryIO, boundary: bytes, read_size: int = READ_SIZE):
        self._stream = stream
        self._read_size = read_size
        self._events: Deque[Tuple[str, object]] = deque()
        self._current: Optional[BodyPart] = None
        self._headers: Dict[bytes, bytes] = {}
        self._header_field = bytearray()
        self._header_value = bytearray()
        self._source_done = False
        self._closed = False

        self._parser = MultipartParser(
            boundary,
            callbacks={
                "on_part_begin": self._on_part_begin,
                "on_header_field": self._on_header_field,
                "on_header_value": self._on_header_value,
                "on_header_end": self._on_header_end,
                "on_headers_finished": self._on_headers_finished,
                "on_part_data": self._on_part_data,
                "on_part_end": self._on_part_end,
                "on_end": self._on_end,
            },
        )

    # Parser callbacks. Slices are copied since the parser reuses its buffers.
    def _on_part_begin(self) -> None:
        self._headers = {}

    def _on_header_field(self, data: bytes, start: int, end: int) -> None:
        self._header_field += data[start:end]

    def _on_header_value(self, data: bytes, start: int, end: int) -> None:
        self._header_value += data[start:end]

    def _on_header_end(self) -> None:
        self._headers[bytes(self._header_field).strip().lower()] = bytes(self._header_value).strip()
        self._header_field = bytearray()
        self._header_value = bytearray()

    def _on_headers_finished(self) -> None:
        self._events.append((_HEADERS, self._headers))

    def _on_part_data(self, data: bytes, start: int, end: int) -> None:
        if end > start:
            self._events.append((_DATA, bytes(data[start:end])))

    def _on_part_end(self) -> None:
        self._events.append((_PART_END, None))

    def _on_end(self) -> None:
        self._closed = True

    def _next_event(self) -> Optional[Tuple[str, object]]:
        """Feed the parser until an event is queued, None once the body is exhausted"""
        while not self._events:
            if self._source_done:
                return None

            data = self._stream.read(self._read_size)
            if not data:
                self._source_done = True
                self._parser.finalize()
                if not self._closed:
                    raise MultipartFramingError("unexpected EOF before closing boundary")
                continue

            try:
                self._parser.write(data)
            except MultipartParseError as e:
                raise MultipartFramingError(f"malformed multipart body: {e}") from e

        return self._events.popleft()

    def _read_part_data(self) -> bytes:
        """Next payload block of the current part, b"" once the part has ended"""
        event = self._next_event()
        if event is None:
            raise MultipartFramingError("unexpected EOF inside part")

        kind, value = event
        if kind == _DATA:
            return value
        if kind == _PART_END:
            return b""
        raise MultipartFramingError("part headers found inside part data")

    def next_part(self) -> Optional[BodyPart]:
        """Advance to the next part, or return None after the closing boundary"""
        if self._current is not None and not self._current.finished:
            self._current.drain()
        self._current = None

        while True:
            event = self._next_event()
            if event is None:
                return None

            kind, value = event
            if kind == _HEADERS:
                self._current = BodyPart(self, value)
                return self._current
            logger.debug(f"Skipping stray multipart event {kind}")
