# models/chunk_models.py
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, List, Optional
from datetime import datetime


class ChunkDescriptor(BaseModel):
    """One decoded chunk request; ``data`` is the still unread payload stream"""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    upload_id: str
    chunk_number: int
    total_chunks: int
    total_file_size: int  # in bytes
    filename: str
    upload_dir: str
    data: Any = Field(default=None, exclude=True, repr=False)


class CompleteUploadRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    upload_id: str = Field(..., alias="uploadId", min_length=1)
    filename: str = Field(..., min_length=1)
    total_chunks: Optional[int] = Field(None, alias="totalChunks", gt=0)


class StagedUpload(BaseModel):
    upload_id: str
    chunk_numbers: List[int] = []
    staged_bytes: int = 0
    last_modified: datetime


class RebuildResult(BaseModel):
    upload_id: str
    filename: str
    chunk_count: int
    size: int
