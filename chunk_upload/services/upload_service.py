# services/upload_service.py
import logging
import os
import shutil
import tempfile
from datetime import datetime
from typing import BinaryIO, IO, List, Optional, Tuple

from chunk_upload.config import UploadConfig
from chunk_upload.exceptions import (
    ChunkReadError,
    DecodeError,
    DestinationWriteError,
    IncompleteUploadError,
    IntegerParseError,
    RebuildError,
    StagingDirectoryError,
    StoreError,
)
from chunk_upload.models.chunk_models import ChunkDescriptor, RebuildResult, StagedUpload
from chunk_upload.services.chunk_decoder import ChunkDecoder, parse_int, validate_upload_id
from chunk_upload.services.multipart_reader import MultipartFramingError

logger = logging.getLogger(__name__)

COPY_BUFFER_SIZE = 64 * 1024


def chunk_index(name: str) -> Optional[int]:
    """Chunk number encoded in a staged file name, None if it isn't a number"""
    try:
        return parse_int("chunk file", name, 64)
    except IntegerParseError:
        return None


def sort_chunk_names(names: List[str]) -> List[str]:
    """Order staged chunk files numerically (1, 2, 10 rather than 1, 10, 2).

    Names that aren't numbers sort as chunk 0; ties fall back to the name so
    the order doesn't depend on the directory listing.
    """
    def sort_key(name: str) -> Tuple[int, str]:
        index = chunk_index(name)
        if index is None:
            logger.warning(f"Chunk file {name!r} isn't numbered, sorting it as chunk 0")
            index = 0
        return index, name

    return sorted(names, key=sort_key)


def copy_capped(src: BinaryIO, dst: BinaryIO, limit: int) -> Tuple[int, bool]:
    """Copy at most ``limit`` bytes. Returns bytes written and whether src had more"""
    written = 0
    while written < limit:
        data = src.read(min(COPY_BUFFER_SIZE, limit - written))
        if not data:
            return written, False
        dst.write(data)
        written += len(data)

    # the dropped tail is never an error, even when it is malformed
    try:
        return written, bool(src.read(1))
    except MultipartFramingError:
        return written, True


class UploadService:
    """Stores uploaded chunks and rebuilds them into the original file.

    Chunks of an upload are kept under ``<chunk_root>/<upload_id>/<chunk_number>``.
    Calls are blocking and independent of each other; nothing prevents a
    completion from racing a late chunk of the same upload, so callers must
    only complete an upload once all of its chunks have been acknowledged.
    """

    def __init__(self, config: UploadConfig):
        self.config = config
        self.decoder = ChunkDecoder(config)

    def process_chunk(self, stream: BinaryIO, content_type: Optional[str]) -> ChunkDescriptor:
        """Decode a chunk request body and store its payload on disk"""
        chunk = self.decoder.decode(stream, content_type)
        self.store_chunk(chunk)
        return chunk

    def store_chunk(self, chunk: ChunkDescriptor) -> int:
        """Write the chunk payload to its staging directory, truncated at max_chunk_size"""
        try:
            os.makedirs(chunk.upload_dir, exist_ok=True)
        except OSError as e:
            raise StoreError(
                chunk.upload_id, chunk.chunk_number, f"failed creating {chunk.upload_dir}: {e}"
            ) from e

        chunk_path = os.path.join(chunk.upload_dir, str(chunk.chunk_number))
        try:
            with open(chunk_path, "wb") as chunk_file:
                written, truncated = copy_capped(chunk.data, chunk_file, self.config.max_chunk_size)
        except MultipartFramingError as e:
            raise StoreError(chunk.upload_id, chunk.chunk_number, f"failed reading chunk data: {e}") from e
        except OSError as e:
            raise StoreError(chunk.upload_id, chunk.chunk_number, f"failed writing {chunk_path}: {e}") from e

        if truncated:
            logger.warning(
                f"Chunk {chunk.chunk_number} of upload {chunk.upload_id} exceeds "
                f"{self.config.max_chunk_size} bytes, extra data was dropped"
            )

        logger.info(f"Stored chunk {chunk.chunk_number} of upload {chunk.upload_id} ({written} bytes)")
        return written

    def _staging_dir(self, upload_id: str) -> str:
        try:
            validate_upload_id(upload_id)
        except DecodeError as e:
            raise StagingDirectoryError(upload_id, e.reason) from e
        return self.config.staging_dir(upload_id)

    def _append_chunk(self, upload_id: str, upload_dir: str, name: str, full_file: IO[bytes]) -> None:
        try:
            with open(os.path.join(upload_dir, name), "rb") as src:
                shutil.copyfileobj(src, full_file, COPY_BUFFER_SIZE)
        except OSError as e:
            raise ChunkReadError(upload_id, name, str(e)) from e

    def _remove_staging(self, upload_id: str, upload_dir: str) -> None:
        try:
            shutil.rmtree(upload_dir)
        except OSError as e:
            raise StagingDirectoryError(upload_id, f"failed removing {upload_dir}: {e}") from e

    def _rebuild(self, upload_id: str, cleanup: bool) -> Tuple[IO[bytes], int]:
        upload_dir = self._staging_dir(upload_id)

        try:
            names = os.listdir(upload_dir)
        except OSError as e:
            raise StagingDirectoryError(upload_id, f"failed listing {upload_dir}: {e}") from e

        try:
            full_file = tempfile.TemporaryFile(prefix="fullfile-", dir=self.config.temp_dir)
        except OSError as e:
            raise RebuildError(upload_id, f"failed creating temporary file: {e}") from e

        try:
            for name in sort_chunk_names(names):
                self._append_chunk(upload_id, upload_dir, name, full_file)

            if cleanup:
                self._remove_staging(upload_id, upload_dir)
        except RebuildError:
            full_file.close()
            raise

        full_file.seek(0)
        return full_file, len(names)

    def rebuild_file(self, upload_id: str, cleanup: bool = True) -> IO[bytes]:
        """Concatenate the staged chunks of an upload into a temporary file.

        The staging directory is removed once every chunk has been copied,
        unless ``cleanup`` is False. A chunk that can't be read aborts the
        rebuild and leaves the staging directory as it was. The returned file
        is positioned at its start and is deleted when closed.
        """
        full_file, _ = self._rebuild(upload_id, cleanup)
        return full_file

    def check_complete(self, upload_id: str, total_chunks: int) -> None:
        """Ensure exactly chunks 0..n-1 (or 1..n) are staged"""
        upload = self.get_upload(upload_id)
        if upload is None:
            raise StagingDirectoryError(upload_id, "no staged chunks")

        staged = set(upload.chunk_numbers)
        first = 0 if not staged or min(staged) <= 0 else 1
        expected = set(range(first, first + total_chunks))

        missing = sorted(expected - staged)
        unexpected = sorted(staged - expected)
        if missing or unexpected:
            raise IncompleteUploadError(upload_id, total_chunks, missing, unexpected)

    def complete_upload(self, upload_id: str, filename: str, total_chunks: Optional[int] = None) -> RebuildResult:
        """Rebuild an upload and write it to ``filename``.

        By default the staged chunks are removed before the destination is
        written, so a destination failure loses them; the raised
        DestinationWriteError says so. With ``cleanup_before_write`` off the
        destination is written first and staging is only removed afterwards.
        """
        if total_chunks is not None:
            self.check_complete(upload_id, total_chunks)

        cleanup_first = self.config.cleanup_before_write
        full_file, chunk_count = self._rebuild(upload_id, cleanup=cleanup_first)

        with full_file:
            try:
                with open(filename, "wb") as new_file:
                    shutil.copyfileobj(full_file, new_file, COPY_BUFFER_SIZE)
                    size = new_file.tell()
            except OSError as e:
                if cleanup_first:
                    logger.warning(f"Upload {upload_id} lost: staged chunks removed but {filename} couldn't be written")
                raise DestinationWriteError(upload_id, filename, str(e), staged_chunks_lost=cleanup_first) from e

        if not cleanup_first:
            self._remove_staging(upload_id, self.config.staging_dir(upload_id))

        logger.info(f"Completed upload {upload_id}: {chunk_count} chunks, {size} bytes written to {filename}")

        return RebuildResult(
            upload_id=upload_id,
            filename=filename,
            chunk_count=chunk_count,
            size=size,
        )

    def abort_upload(self, upload_id: str) -> None:
        """Drop every staged chunk of an upload"""
        upload_dir = self._staging_dir(upload_id)
        if not os.path.isdir(upload_dir):
            raise StagingDirectoryError(upload_id, "no staged chunks")

        self._remove_staging(upload_id, upload_dir)
        logger.info(f"Aborted upload {upload_id}")

    def get_upload(self, upload_id: str) -> Optional[StagedUpload]:
        """Get the staged state of an upload"""
        upload_dir = self._staging_dir(upload_id)
        if not os.path.isdir(upload_dir):
            return None

        chunk_numbers = []
        staged_bytes = 0

        # completions and aborts may remove the directory while it is scanned
        try:
            last_modified = os.stat(upload_dir).st_mtime
            with os.scandir(upload_dir) as entries:
                for entry in entries:
                    try:
                        if not entry.is_file():
                            continue
                        stat = entry.stat()
                    except FileNotFoundError:
                        continue
                    staged_bytes += stat.st_size
                    last_modified = max(last_modified, stat.st_mtime)

                    index = chunk_index(entry.name)
                    if index is not None:
                        chunk_numbers.append(index)
        except FileNotFoundError:
            return None

        return StagedUpload(
            upload_id=upload_id,
            chunk_numbers=sorted(chunk_numbers),
            staged_bytes=staged_bytes,
            last_modified=datetime.fromtimestamp(last_modified),
        )

    def get_active_uploads(self) -> List[StagedUpload]:
        """Get all uploads that still have staged chunks"""
        if not os.path.isdir(self.config.chunk_root):
            return []

        uploads = []
        with os.scandir(self.config.chunk_root) as entries:
            for entry in entries:
                if not entry.is_dir():
                    continue
                upload = self.get_upload(entry.name)
                if upload is not None:
                    uploads.append(upload)

        return sorted(uploads, key=lambda u: u.upload_id)
