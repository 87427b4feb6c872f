"""Chunk receiver: validates and persists individual chunks into a session's staging area."""
import logging
from typing import Optional

from chunked_transfer.core.config import ReceiverConfig
from chunked_transfer.core.exceptions import SessionConflictException, ValidationException
from chunked_transfer.core.service_protocols import SessionLockManager
from chunked_transfer.models.session import SessionState, UploadSession
from chunked_transfer.schemas.upload import ChunkAcceptedResponse
from chunked_transfer.services.cleanup_service import SessionGarbageCollector
from chunked_transfer.services.session_store import FileSessionRepository
from chunked_transfer.utils.file_utils import get_extension
from chunked_transfer.utils.logger import get_logger

logger: logging.Logger = get_logger(__name__)


class ChunkReceiver:
    """Accepts chunks in any order and any number of times."""

    def __init__(
        self,
        config: ReceiverConfig,
        repository: FileSessionRepository,
        lock_manager: SessionLockManager,
        collector: Optional[SessionGarbageCollector] = None
    ):
        self.config = config
        self.repository = repository
        self.lock_manager = lock_manager
        self.collector = collector

    def validate(
        self,
        session_id: str,
        chunk_index: int,
        total_chunks: int,
        file_name: str,
        file_size: int,
        payload_size: int
    ) -> None:
        """Reject malformed input before any bytes are written."""
        self.repository.validate_session_id(session_id)

        if total_chunks < 1 or total_chunks > self.config.max_total_chunks:
            raise ValidationException(
                f"total_chunks must be between 1 and {self.config.max_total_chunks}", field="total_chunks"
            )
        if chunk_index < 0 or chunk_index >= total_chunks:
            raise ValidationException(
                f"Chunk index {chunk_index} out of range for {total_chunks} chunks", field="chunk_index"
            )
        if file_size <= 0 or file_size > self.config.max_upload_size:
            raise ValidationException(
                f"file_size must be between 1 and {self.config.max_upload_size} bytes", field="file_size"
            )
        if payload_size <= 0:
            raise ValidationException("Chunk payload is empty", field="chunk")
        if payload_size > self.config.max_chunk_size:
            raise ValidationException(
                f"Chunk too large. Maximum size is {self.config.max_chunk_size} bytes",
                field="chunk",
                details={"size": payload_size, "limit": self.config.max_chunk_size}
            )

        if not file_name or len(file_name) > self.config.max_file_name_length:
            raise ValidationException(
                f"File name must be 1 to {self.config.max_file_name_length} characters", field="file_name"
            )
        if "/" in file_name or "\\" in file_name or "\x00" in file_name:
            raise ValidationException("File name must not contain path separators", field="file_name")
        if get_extension(file_name) not in self.config.accepted_extensions:
            raise ValidationException(
                f"Unsupported file type. Accepted: {', '.join(self.config.accepted_extensions)}",
                field="file_name"
            )

    async def receive(
        self,
        session_id: str,
        chunk_index: int,
        total_chunks: int,
        file_name: str,
        file_size: int,
        payload: bytes
    ) -> ChunkAcceptedResponse:
        self.validate(session_id, chunk_index, total_chunks, file_name, file_size, len(payload))

        # Session record first, so concurrent first chunks agree on one record
        async with self.lock_manager.lock(session_id):
            session = await self.repository.get(session_id)
            if session is None:
                self.repository.create_staging(session_id)
                session = UploadSession(
                    session_id=session_id,
                    file_name=file_name,
                    file_size=file_size,
                    total_chunks=total_chunks
                )
                await self.repository.upsert(session)
                logger.info(
                    "Created upload session %s for %s (%d bytes, %d chunks)",
                    session_id, file_name, file_size, total_chunks
                )
            else:
                self._check_consistent(session, total_chunks, file_name, file_size)

        await self.repository.write_chunk(session_id, chunk_index, payload)

        async with self.lock_manager.lock(session_id):
            session = await self.repository.get(session_id)
            if session is None:
                raise SessionConflictException(
                    "Upload session was removed while the chunk was being stored", session_id
                )
            self._check_consistent(session, total_chunks, file_name, file_size)
            session.received_chunk_indices.add(chunk_index)
            session.touch()
            await self.repository.upsert(session)

        logger.info(
            "Chunk %s uploaded for session %s (%d/%d)",
            chunk_index, session_id, session.received_count, session.total_chunks
        )

        if self.collector is not None:
            await self.collector.maybe_sweep()

        return ChunkAcceptedResponse(
            accepted=True,
            session_id=session_id,
            chunk_index=chunk_index,
            received_count=session.received_count,
            total_chunks=session.total_chunks,
            progress_percent=session.progress_percent
        )

    @staticmethod
    def _check_consistent(session: UploadSession, total_chunks: int, file_name: str, file_size: int) -> None:
        if session.state == SessionState.REASSEMBLING:
            raise SessionConflictException(
                "Upload session is being reassembled", session.session_id, session.state.value
            )
        if (session.total_chunks, session.file_size, session.file_name) != (total_chunks, file_size, file_name):
            raise ValidationException(
                "Chunk metadata does not match the upload session",
                details={
                    "session_id": session.session_id,
                    "expected": {
                        "total_chunks": session.total_chunks,
                        "file_size": session.file_size,
                        "file_name": session.file_name
                    }
                }
            )
