# services/chunk_decoder.py
import logging
import os
import re
from typing import BinaryIO, Optional

from chunk_upload.config import UploadConfig
from chunk_upload.exceptions import (
    DecodeError,
    IntegerParseError,
    PartNameMismatchError,
    UnexpectedEndOfBodyError,
)
from chunk_upload.models.chunk_models import ChunkDescriptor
from chunk_upload.services.multipart_reader import (
    BodyPart,
    MultipartFramingError,
    MultipartReader,
    get_boundary,
)

logger = logging.getLogger(__name__)

UPLOAD_ID_FIELD = "upload_id"
CHUNK_NUMBER_FIELD = "chunk_number"
TOTAL_CHUNKS_FIELD = "total_chunks"
TOTAL_FILE_SIZE_FIELD = "total_file_size"
FILE_NAME_FIELD = "file_name"
CHUNK_DATA_FIELD = "chunk data"

_INTEGER_RE = re.compile(r"[+-]?[0-9]+")


def parse_int(field: str, raw: str, bits: int) -> int:
    """Strict base-10 parse of a signed integer that must fit in ``bits`` bits"""
    if not _INTEGER_RE.fullmatch(raw):
        raise IntegerParseError(field, raw, bits)

    value = int(raw)
    limit = 1 << (bits - 1)
    if not -limit <= value < limit:
        raise IntegerParseError(field, raw, bits)
    return value


def validate_upload_id(upload_id: str) -> None:
    """The upload id becomes a directory name under the chunk root"""
    if not upload_id:
        raise DecodeError(UPLOAD_ID_FIELD, "upload id is empty")
    if upload_id in (".", "..") or "\x00" in upload_id:
        raise DecodeError(UPLOAD_ID_FIELD, f"invalid upload id {upload_id!r}")
    separators = {os.sep, "/"} | ({os.altsep} if os.altsep else set())
    if any(sep in upload_id for sep in separators):
        raise DecodeError(UPLOAD_ID_FIELD, f"upload id {upload_id!r} contains a path separator")


class ChunkDecoder:
    """Decodes a chunk upload request body.

    The body must carry its parts in this exact order:

    1. ``upload_id``
    2. ``chunk_number`` (int32)
    3. ``total_chunks`` (int32)
    4. ``total_file_size`` (int64)
    5. ``file_name``
    6. the chunk payload, under any name

    The payload part is handed back unread on the descriptor, so it can be
    streamed straight to disk.
    """

    def __init__(self, config: UploadConfig):
        self.config = config

    def _next_part(self, reader: MultipartReader, field: str) -> BodyPart:
        try:
            part = reader.next_part()
        except MultipartFramingError as e:
            raise DecodeError(field, str(e)) from e

        if part is None:
            raise UnexpectedEndOfBodyError(field)
        return part

    def _read_field(self, reader: MultipartReader, expected: str) -> str:
        part = self._next_part(reader, expected)
        if part.form_name != expected:
            raise PartNameMismatchError(expected, part.form_name)

        try:
            content = part.read()
        except MultipartFramingError as e:
            raise DecodeError(expected, f"failed copying part: {e}") from e

        try:
            return content.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecodeError(expected, "part is not valid UTF-8") from e

    def decode(self, stream: BinaryIO, content_type: Optional[str]) -> ChunkDescriptor:
        """Read the scalar fields of a chunk request and leave its payload unread"""
        try:
            boundary = get_boundary(content_type)
        except MultipartFramingError as e:
            raise DecodeError(UPLOAD_ID_FIELD, str(e)) from e

        reader = MultipartReader(stream, boundary)

        upload_id = self._read_field(reader, UPLOAD_ID_FIELD)
        validate_upload_id(upload_id)
        upload_dir = self.config.staging_dir(upload_id)

        chunk_number = parse_int(
            CHUNK_NUMBER_FIELD, self._read_field(reader, CHUNK_NUMBER_FIELD), 32
        )
        total_chunks = parse_int(
            TOTAL_CHUNKS_FIELD, self._read_field(reader, TOTAL_CHUNKS_FIELD), 32
        )
        total_file_size = parse_int(
            TOTAL_FILE_SIZE_FIELD, self._read_field(reader, TOTAL_FILE_SIZE_FIELD), 64
        )
        filename = self._read_field(reader, FILE_NAME_FIELD)

        data = self._next_part(reader, CHUNK_DATA_FIELD)

        logger.debug(
            f"Decoded chunk {chunk_number}/{total_chunks} of upload {upload_id} "
            f"({filename}, {total_file_size} bytes total)"
        )

        return ChunkDescriptor(
            upload_id=upload_id,
            chunk_number=chunk_number,
            total_chunks=total_chunks,
            total_file_size=total_file_size,
            filename=filename,
            upload_dir=upload_dir,
            data=data,
        )
