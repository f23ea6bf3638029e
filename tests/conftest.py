"""Shared pytest fixtures for all tests."""

import io
import uuid

import pytest

from chunk_upload.config import UploadConfig
from chunk_upload.services.upload_service import UploadService

FIELD_ORDER = ["upload_id", "chunk_number", "total_chunks", "total_file_size", "file_name"]


def build_multipart(fields, payload=None, boundary=None):
    """
    Encode a multipart/form-data body with parts in the given order.

    Args:
        fields: list of (name, value) tuples for the text parts
        payload: optional bytes for a trailing binary part
        boundary: optional boundary string

    Returns:
        Tuple of (body bytes, content type header)
    """
    boundary = boundary or uuid.uuid4().hex
    lines = []
    for name, value in fields:
        lines.append(f"--{boundary}\r\n".encode())
        lines.append(f'Content-Disposition: form-data; name="{name}"\r\n\r\n'.encode())
        lines.append((value if isinstance(value, bytes) else str(value).encode()) + b"\r\n")

    if payload is not None:
        lines.append(f"--{boundary}\r\n".encode())
        lines.append(b'Content-Disposition: form-data; name="file"; filename="blob"\r\n')
        lines.append(b"Content-Type: application/octet-stream\r\n\r\n")
        lines.append(payload + b"\r\n")

    lines.append(f"--{boundary}--\r\n".encode())
    return b"".join(lines), f"multipart/form-data; boundary={boundary}"


def chunk_fields(upload_id, chunk_number, total_chunks=2, total_file_size=13, file_name="greeting.txt"):
    return list(zip(FIELD_ORDER, [upload_id, chunk_number, total_chunks, total_file_size, file_name]))


@pytest.fixture
def config(tmp_path):
    """
    Create a config rooted in a temporary directory.

    Args:
        tmp_path: pytest tmp_path fixture

    Returns:
        UploadConfig with a small chunk cap
    """
    return UploadConfig(
        chunk_root=str(tmp_path / "chunks"),
        max_chunk_size=1024,
        temp_dir=str(tmp_path),
    )


@pytest.fixture
def upload_service(config):
    return UploadService(config)


@pytest.fixture
def store(upload_service):
    """Helper that pushes one chunk through decode and store."""
    def _store(upload_id, chunk_number, payload, **kwargs):
        body, content_type = build_multipart(chunk_fields(upload_id, chunk_number, **kwargs), payload)
        return upload_service.process_chunk(io.BytesIO(body), content_type)
    return _store
