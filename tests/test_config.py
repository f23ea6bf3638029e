"""Tests for configuration loading."""

import os
from datetime import timedelta

import pytest
from pydantic import ValidationError

from chunk_upload.config import DEFAULT_MAX_CHUNK_SIZE, UploadConfig, load_config

ENV_VARS = [
    "CHUNK_ROOT",
    "MAX_CHUNK_SIZE",
    "UPLOAD_HOST",
    "UPLOAD_PORT",
    "UPLOAD_TEMP_DIR",
    "CLEANUP_BEFORE_WRITE",
    "STALE_UPLOAD_TTL_HOURS",
    "CLEANUP_INTERVAL_HOURS",
    "LOG_LEVEL",
]


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Run with no upload settings in the environment and no .env file."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    return monkeypatch


def test_defaults(clean_env):
    config = load_config()

    assert config.chunk_root == "./data/chunks"
    assert config.max_chunk_size == DEFAULT_MAX_CHUNK_SIZE == 5 * 1024 * 1024
    assert config.port == 8080
    assert config.cleanup_before_write is True
    assert config.stale_upload_ttl == timedelta(days=7)


def test_environment_overrides(clean_env):
    clean_env.setenv("CHUNK_ROOT", "/srv/chunks")
    clean_env.setenv("MAX_CHUNK_SIZE", "1024")
    clean_env.setenv("UPLOAD_PORT", "9000")
    clean_env.setenv("CLEANUP_BEFORE_WRITE", "false")
    clean_env.setenv("STALE_UPLOAD_TTL_HOURS", "2")
    clean_env.setenv("LOG_LEVEL", "debug")

    config = load_config()

    assert config.chunk_root == "/srv/chunks"
    assert config.max_chunk_size == 1024
    assert config.port == 9000
    assert config.cleanup_before_write is False
    assert config.stale_upload_ttl == timedelta(hours=2)
    assert config.log_level == "DEBUG"


def test_dotenv_file_is_loaded(clean_env, tmp_path):
    # setenv first so the variable loaded from .env is dropped again at teardown
    clean_env.setenv("CHUNK_ROOT", "")
    clean_env.delenv("CHUNK_ROOT")
    (tmp_path / ".env").write_text("CHUNK_ROOT=/from/dotenv\n")

    assert load_config().chunk_root == "/from/dotenv"


def test_invalid_chunk_size():
    with pytest.raises(ValidationError):
        UploadConfig(max_chunk_size=0)


def test_staging_dir():
    config = UploadConfig(chunk_root="/data/chunks")
    assert config.staging_dir("abc123") == os.path.join("/data/chunks", "abc123")
