"""Pydantic schemas for API requests and responses."""
from chunked_transfer.schemas.upload import (
    CancelUploadResponse,
    ChunkAcceptedResponse,
    CompleteUploadRequest,
    CompleteUploadResponse,
    UploadStatusResponse,
)

__all__ = [
    "ChunkAcceptedResponse",
    "CompleteUploadRequest",
    "CompleteUploadResponse",
    "UploadStatusResponse",
    "CancelUploadResponse"
]
