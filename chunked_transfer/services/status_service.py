"""Read-only progress reporting for staged sessions."""
import logging

from chunked_transfer.schemas.upload import UploadStatusResponse
from chunked_transfer.services.session_store import FileSessionRepository
from chunked_transfer.utils.logger import get_logger

logger: logging.Logger = get_logger(__name__)


class StatusReporter:
    """Reports ``not_found`` or ``in_progress`` without modifying anything."""

    def __init__(self, repository: FileSessionRepository):
        self.repository = repository

    async def status(self, session_id: str) -> UploadStatusResponse:
        self.repository.validate_session_id(session_id)
        session = await self.repository.get(session_id)

        if session is None:
            return UploadStatusResponse(session_id=session_id, state="not_found")

        return UploadStatusResponse(
            session_id=session_id,
            state="in_progress",
            phase=session.state.value,
            received_count=session.received_count,
            total_chunks=session.total_chunks,
            file_name=session.file_name,
            file_size=session.file_size,
            progress_percent=session.progress_percent,
            missing_chunks=session.missing_chunks()
        )
