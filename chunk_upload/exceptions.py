# exceptions.py
from typing import List, Optional


class ChunkUploadError(Exception):
    """Base class for every chunk upload failure"""


class DecodeError(ChunkUploadError):
    """Raised when a chunk request body can't be decoded"""

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"failed reading {field} part: {reason}")


class PartNameMismatchError(DecodeError):
    def __init__(self, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__(
            expected,
            f"invalid form name for part. Expected {expected} got {actual}",
        )


class IntegerParseError(DecodeError):
    def __init__(self, field: str, raw: str, bits: int):
        self.raw = raw
        self.bits = bits
        super().__init__(field, f"{raw!r} is not a valid base-10 int{bits}")


class UnexpectedEndOfBodyError(DecodeError):
    def __init__(self, field: str):
        super().__init__(field, "multipart body ended before this part")


class StoreError(ChunkUploadError):
    """Raised when a chunk can't be persisted to its staging directory"""

    def __init__(self, upload_id: str, chunk_number: int, reason: str):
        self.upload_id = upload_id
        self.chunk_number = chunk_number
        super().__init__(f"failed storing chunk {chunk_number} of upload {upload_id}: {reason}")


class RebuildError(ChunkUploadError):
    """Raised when an upload can't be reassembled.

    ``staged_chunks_lost`` is True only when the staging directory had already
    been removed at the time of the failure, so the upload must be sent again.
    """

    staged_chunks_lost = False

    def __init__(self, upload_id: str, reason: str):
        self.upload_id = upload_id
        self.reason = reason
        super().__init__(f"failed to rebuild file for upload {upload_id}: {reason}")


class StagingDirectoryError(RebuildError):
    pass


class ChunkReadError(RebuildError):
    def __init__(self, upload_id: str, chunk_name: str, reason: str):
        self.chunk_name = chunk_name
        super().__init__(upload_id, f"failed copying chunk {chunk_name}: {reason}")


class IncompleteUploadError(RebuildError):
    def __init__(self, upload_id: str, total_chunks: int, missing: List[int], unexpected: Optional[List[int]] = None):
        self.total_chunks = total_chunks
        self.missing = missing
        self.unexpected = unexpected or []
        reason = f"expected {total_chunks} chunks, missing {missing}"
        if self.unexpected:
            reason += f", unexpected {self.unexpected}"
        super().__init__(upload_id, reason)


class DestinationWriteError(RebuildError):
    def __init__(self, upload_id: str, filename: str, reason: str, staged_chunks_lost: bool):
        self.filename = filename
        self.staged_chunks_lost = staged_chunks_lost
        if staged_chunks_lost:
            reason += " (staged chunks were already removed)"
        super().__init__(upload_id, f"failed writing {filename}: {reason}")
