"""Tests for the HTTP endpoints."""

import os

import pytest
from fastapi.testclient import TestClient

from chunk_upload.main import create_app
from conftest import FIELD_ORDER


@pytest.fixture
def client(config):
    """Create FastAPI test client."""
    return TestClient(create_app(config))


def upload_chunk(client, upload_id, chunk_number, payload, total_chunks=2, total_file_size=13, file_name="greeting.txt"):
    values = [upload_id, chunk_number, total_chunks, total_file_size, file_name]
    return client.post(
        "/upload-chunk",
        data={name: str(value) for name, value in zip(FIELD_ORDER, values)},
        files={"file": ("blob", payload, "application/octet-stream")},
    )


def test_upload_and_complete(client, config, tmp_path):
    """Test the full chunk upload flow over HTTP."""
    response = upload_chunk(client, "abc123", 0, b"Hello, ")
    assert response.status_code == 200
    assert response.text == "chunk processed"

    response = upload_chunk(client, "abc123", 1, b"World!")
    assert response.status_code == 200

    destination = tmp_path / "greeting.txt"
    response = client.post("/completed-chunks", json={
        "uploadId": "abc123",
        "filename": str(destination),
    })
    assert response.status_code == 200
    assert response.text == "file processed"
    assert destination.read_bytes() == b"Hello, World!"
    assert not os.path.exists(config.staging_dir("abc123"))


def test_upload_chunk_out_of_order_fields(client):
    response = client.post(
        "/upload-chunk",
        data={"chunk_number": "0", "upload_id": "abc123"},
        files={"file": ("blob", b"data")},
    )

    assert response.status_code == 500
    assert "Expected upload_id got chunk_number" in response.json()["detail"]


def test_upload_chunk_requires_multipart(client):
    response = client.post("/upload-chunk", json={"upload_id": "abc123"})
    assert response.status_code == 500


def test_complete_unknown_upload(client, tmp_path):
    response = client.post("/completed-chunks", json={
        "uploadId": "missing",
        "filename": str(tmp_path / "out"),
    })

    assert response.status_code == 500
    assert "missing" in response.json()["detail"]


def test_complete_request_validation(client):
    response = client.post("/completed-chunks", json={"uploadId": "abc123"})
    assert response.status_code == 422


def test_complete_with_missing_chunks(client, config, tmp_path):
    upload_chunk(client, "partial", 0, b"part")

    response = client.post("/completed-chunks", json={
        "uploadId": "partial",
        "filename": str(tmp_path / "out"),
        "totalChunks": 2,
    })

    assert response.status_code == 500
    assert os.path.isdir(config.staging_dir("partial"))


def test_upload_status_and_abort(client):
    upload_chunk(client, "status", 0, b"abc")

    response = client.get("/upload/status")
    assert response.status_code == 200
    assert response.json()["chunk_numbers"] == [0]
    assert response.json()["staged_bytes"] == 3

    response = client.get("/uploads/active")
    assert [u["upload_id"] for u in response.json()["uploads"]] == ["status"]

    response = client.delete("/upload/status")
    assert response.status_code == 200
    assert response.json() == {"status": "aborted"}

    assert client.get("/upload/status").status_code == 404
    assert client.delete("/upload/status").status_code == 404
