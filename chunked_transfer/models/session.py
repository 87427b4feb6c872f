"""Upload session model."""
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Set

from pydantic import BaseModel, Field, field_serializer


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionState(str, Enum):
    """Lifecycle state of a staged session."""
    UPLOADING = "uploading"
    REASSEMBLING = "reassembling"


class UploadSession(BaseModel):
    """Staged upload session, persisted as metadata.json in its staging directory."""
    session_id: str = Field(..., description="Upload session ID")
    file_name: str = Field(..., description="Original file name")
    file_size: int = Field(..., gt=0, description="Declared size of the transfer payload")
    total_chunks: int = Field(..., ge=1, description="Number of chunks announced by the sender")
    received_chunk_indices: Set[int] = Field(default_factory=set, description="Indices persisted so far")
    state: SessionState = Field(SessionState.UPLOADING, description="Session state")
    content_digest: Optional[str] = Field(None, description="SHA-256 of the payload, when supplied")
    created_at: datetime = Field(default_factory=utcnow)
    last_activity_at: datetime = Field(default_factory=utcnow)

    model_config = {
        "json_schema_extra": {
            "example": {
                "session_id": "upload_1700000000000_k3j9x2m1q",
                "file_name": "city.kml",
                "file_size": 12582912,
                "total_chunks": 3,
                "received_chunk_indices": [0, 2],
                "state": "uploading",
                "content_digest": None,
                "created_at": "2024-01-01T00:00:00Z",
                "last_activity_at": "2024-01-01T00:00:05Z"
            }
        }
    }

    @field_serializer("received_chunk_indices")
    def _serialize_indices(self, indices: Set[int]) -> List[int]:
        return sorted(indices)

    @property
    def received_count(self) -> int:
        return len(self.received_chunk_indices)

    @property
    def is_complete(self) -> bool:
        return self.received_count == self.total_chunks

    @property
    def progress_percent(self) -> float:
        return round(self.received_count / self.total_chunks * 100, 2)

    def missing_chunks(self) -> List[int]:
        return [i for i in range(self.total_chunks) if i not in self.received_chunk_indices]

    def touch(self) -> None:
        self.last_activity_at = utcnow()
