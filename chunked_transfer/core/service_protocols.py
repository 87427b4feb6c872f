"""Service interface protocol definitions for type-safe contracts."""
from pathlib import Path
from typing import (
    Any,
    AsyncContextManager,
    Dict,
    List,
    Optional,
    Protocol,
    runtime_checkable,
)

from chunked_transfer.models.session import UploadSession


@runtime_checkable
class SessionRepository(Protocol):
    """Storage of staged sessions: metadata plus chunk payloads."""

    def staging_path(self, session_id: str) -> Path:
        """Directory that holds a session's chunks and metadata."""
        ...

    def chunk_path(self, session_id: str, chunk_index: int) -> Path:
        """File that holds one chunk."""
        ...

    async def get(self, session_id: str) -> Optional[UploadSession]:
        """Load a session, or None when it has no metadata."""
        ...

    async def upsert(self, session: UploadSession) -> None:
        """Create or replace a session's metadata."""
        ...

    async def delete(self, session_id: str) -> bool:
        """Remove a session's staging area. Deleting twice is harmless."""
        ...

    async def write_chunk(self, session_id: str, chunk_index: int, payload: bytes) -> Path:
        """Persist a chunk, replacing any previous copy."""
        ...

    def list_session_ids(self) -> List[str]:
        """Names of all staging directories."""
        ...


@runtime_checkable
class SessionLockManager(Protocol):
    """Serializes read-modify-write of a single session's metadata."""

    def lock(self, session_id: str) -> AsyncContextManager[None]:
        """Hold the session lock for the duration of the context."""
        ...

    async def connect(self) -> None:
        ...

    async def disconnect(self) -> None:
        ...


@runtime_checkable
class FinalStorage(Protocol):
    """Collaborator that owns final artifacts."""

    def validate_destination(self, destination_id: str) -> str:
        """Reject destination identifiers that cannot be stored."""
        ...

    def resolve(self, destination_id: str, file_name: str) -> Path:
        """Path where the artifact for a destination should be written."""
        ...

    async def register(self, destination_id: str, final_path: Path, descriptor: Dict[str, Any]) -> None:
        """Record a finished artifact."""
        ...
