"""Upload-related schemas."""
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class ChunkAcceptedResponse(BaseModel):
    """Acknowledgement for a persisted chunk."""
    accepted: bool = Field(True, description="Whether the chunk was persisted")
    session_id: str = Field(..., description="Upload session ID")
    chunk_index: int = Field(..., ge=0, description="Index of the persisted chunk")
    received_count: int = Field(..., ge=0, description="Distinct chunks received so far")
    total_chunks: int = Field(..., ge=1, description="Total number of chunks")
    progress_percent: float = Field(..., ge=0, le=100, description="Share of chunks received")


class CompleteUploadRequest(BaseModel):
    """Request to reassemble a fully staged session."""
    session_id: str = Field(..., min_length=1, description="Upload session ID")
    destination_id: str = Field(..., min_length=1, description="Opaque identifier of the final destination")
    content_digest: Optional[str] = Field(
        None, pattern=r"^[0-9a-fA-F]{64}$", description="SHA-256 hex digest of the payload"
    )


class CompleteUploadResponse(BaseModel):
    """Descriptor of the reassembled artifact."""
    session_id: str = Field(..., description="Upload session ID")
    file_name: str = Field(..., description="Stored file name")
    file_size: int = Field(..., ge=0, description="Size of the artifact in bytes")
    destination_id: str = Field(..., description="Destination identifier")
    destination_path: str = Field(..., description="Path of the artifact")
    chunk_count: int = Field(..., ge=1, description="Chunks concatenated")
    elapsed_time: float = Field(..., ge=0, description="Seconds since the session was created")
    reassembly_time: float = Field(..., ge=0, description="Seconds spent reassembling")
    speed_mbps: float = Field(..., ge=0, description="Average upload speed in MB/s")
    content_digest: str = Field(..., description="SHA-256 of the artifact")


class UploadStatusResponse(BaseModel):
    """Read-only view of a session's progress."""
    session_id: str = Field(..., description="Upload session ID")
    state: Literal["not_found", "in_progress"] = Field(..., description="Session state")
    phase: Optional[Literal["uploading", "reassembling"]] = Field(None, description="Lifecycle phase")
    received_count: int = Field(0, ge=0, description="Distinct chunks received")
    total_chunks: int = Field(0, ge=0, description="Total number of chunks")
    file_name: Optional[str] = Field(None, description="Original file name")
    file_size: int = Field(0, ge=0, description="Declared payload size")
    progress_percent: float = Field(0.0, ge=0, le=100, description="Share of chunks received")
    missing_chunks: List[int] = Field(default_factory=list, description="Indices still to upload")


class CancelUploadResponse(BaseModel):
    """Result of cancelling a session."""
    status: Literal["cancelled", "not_found"] = Field(..., description="Outcome")
    session_id: str = Field(..., description="Upload session ID")
