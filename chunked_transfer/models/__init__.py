"""Data models for staged upload sessions."""
from chunked_transfer.models.session import SessionState, UploadSession

__all__ = [
    "SessionState",
    "UploadSession"
]
