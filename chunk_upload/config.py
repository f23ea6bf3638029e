# config.py
import os
from datetime import timedelta
from typing import Optional

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field

DEFAULT_CHUNK_ROOT = "./data/chunks"
DEFAULT_MAX_CHUNK_SIZE = 5 << 20  # 5MB
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8080


class UploadConfig(BaseModel):
    """Settings shared by the decoder, the chunk store and the cleanup scheduler"""

    chunk_root: str = DEFAULT_CHUNK_ROOT
    max_chunk_size: int = Field(DEFAULT_MAX_CHUNK_SIZE, gt=0)
    host: str = DEFAULT_HOST
    port: int = Field(DEFAULT_PORT, gt=0, lt=65536)
    temp_dir: Optional[str] = None

    # False writes the destination file before the staged chunks are removed
    cleanup_before_write: bool = True

    stale_upload_ttl: timedelta = timedelta(days=7)
    cleanup_interval: timedelta = timedelta(hours=6)
    log_level: str = "INFO"

    def staging_dir(self, upload_id: str) -> str:
        """Directory holding the chunks of one upload"""
        return os.path.join(self.chunk_root, upload_id)


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_config() -> UploadConfig:
    """Build the service configuration from the environment (and a .env file if present)"""
    load_dotenv(find_dotenv(usecwd=True))

    return UploadConfig(
        chunk_root=os.getenv("CHUNK_ROOT", DEFAULT_CHUNK_ROOT),
        max_chunk_size=int(os.getenv("MAX_CHUNK_SIZE", DEFAULT_MAX_CHUNK_SIZE)),
        host=os.getenv("UPLOAD_HOST", DEFAULT_HOST),
        port=int(os.getenv("UPLOAD_PORT", DEFAULT_PORT)),
        temp_dir=os.getenv("UPLOAD_TEMP_DIR") or None,
        cleanup_before_write=_env_flag("CLEANUP_BEFORE_WRITE", True),
        stale_upload_ttl=timedelta(hours=float(os.getenv("STALE_UPLOAD_TTL_HOURS", 7 * 24))),
        cleanup_interval=timedelta(hours=float(os.getenv("CLEANUP_INTERVAL_HOURS", 6))),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
