"""Reassembly of a fully staged session into its final artifact."""
import asyncio
import hashlib
import logging
import os
import time
import uuid
from pathlib import Path
from typing import Optional, Tuple

from chunked_transfer.config import PARTIAL_SUFFIX
from chunked_transfer.core.config import ReceiverConfig
from chunked_transfer.core.decorators import async_performance_monitor
from chunked_transfer.core.service_protocols import FinalStorage, SessionLockManager
from chunked_transfer.core.exceptions import (
    IncompleteUploadException,
    IntegrityException,
    MissingChunkException,
    SessionConflictException,
    SessionNotFoundException,
    StorageException,
)
from chunked_transfer.models.session import SessionState, UploadSession, utcnow
from chunked_transfer.schemas.upload import CompleteUploadResponse
from chunked_transfer.services.session_store import FileSessionRepository
from chunked_transfer.utils.file_utils import FileProcessor
from chunked_transfer.utils.logger import get_logger

logger: logging.Logger = get_logger(__name__)


class Reassembler:
    """
    Concatenates chunks ``0..total_chunks-1`` into the destination.

    The session is flagged ``reassembling`` while bytes are streamed so the
    garbage collector and late chunks leave it alone. Any failure clears the
    flag again and keeps the staged chunks, so completion can be retried.
    """

    def __init__(
        self,
        config: ReceiverConfig,
        repository: FileSessionRepository,
        lock_manager: SessionLockManager,
        storage: FinalStorage
    ):
        self.config = config
        self.repository = repository
        self.lock_manager = lock_manager
        self.storage = storage

    @async_performance_monitor("reassemble_upload", slow_threshold=5.0)
    async def complete(
        self,
        session_id: str,
        destination_id: str,
        content_digest: Optional[str] = None
    ) -> CompleteUploadResponse:
        self.repository.validate_session_id(session_id)
        self.storage.validate_destination(destination_id)
        session = await self._begin(session_id, content_digest)

        started = time.time()
        final_path: Optional[Path] = None
        partial_path: Optional[Path] = None
        try:
            final_path = self.storage.resolve(destination_id, session.file_name)
            partial_path = final_path.with_name(f".{final_path.name}.{uuid.uuid4().hex}{PARTIAL_SUFFIX}")

            loop = asyncio.get_running_loop()
            size, digest = await loop.run_in_executor(None, self._concatenate, session, partial_path)
            self._verify(session, size, digest)
            self._publish(session_id, partial_path, final_path)
        except MissingChunkException as e:
            self._discard(partial_path)
            await self._abort(session_id, forget_index=e.chunk_index)
            raise
        except BaseException:
            self._discard(partial_path)
            await self._abort(session_id)
            raise

        reassembly_time = time.time() - started
        elapsed_time = max((utcnow() - session.created_at).total_seconds(), 0.0)
        speed_mbps = (size / (1024 * 1024)) / elapsed_time if elapsed_time > 0 else 0.0

        async with self.lock_manager.lock(session_id):
            await self.repository.delete(session_id)

        response = CompleteUploadResponse(
            session_id=session_id,
            file_name=final_path.name,
            file_size=size,
            destination_id=destination_id,
            destination_path=str(final_path),
            chunk_count=session.total_chunks,
            elapsed_time=round(elapsed_time, 3),
            reassembly_time=round(reassembly_time, 3),
            speed_mbps=round(speed_mbps, 3),
            content_digest=digest
        )
        await self.storage.register(destination_id, final_path, response.model_dump())

        logger.info(
            "Upload %s reassembled into %s (%d bytes, %d chunks, %.2fs)",
            session_id, final_path, size, session.total_chunks, reassembly_time
        )
        return response

    async def _begin(self, session_id: str, content_digest: Optional[str]) -> UploadSession:
        """Check completeness and flag the session, with no writes to the destination."""
        async with self.lock_manager.lock(session_id):
            session = await self.repository.get(session_id)
            if session is None:
                raise SessionNotFoundException(session_id)
            if session.state == SessionState.REASSEMBLING:
                raise SessionConflictException(
                    "Upload session is already being reassembled", session_id, session.state.value
                )
            if not session.is_complete:
                raise IncompleteUploadException(
                    session_id,
                    received=session.received_count,
                    total=session.total_chunks,
                    missing=session.missing_chunks()
                )

            session.state = SessionState.REASSEMBLING
            session.content_digest = content_digest.lower() if content_digest else None
            session.touch()
            await self.repository.upsert(session)
            return session

    async def _abort(self, session_id: str, forget_index: Optional[int] = None) -> None:
        async with self.lock_manager.lock(session_id):
            session = await self.repository.get(session_id)
            if session is None:
                return
            session.state = SessionState.UPLOADING
            if forget_index is not None:
                session.received_chunk_indices.discard(forget_index)
            session.touch()
            await self.repository.upsert(session)
        logger.warning("Reassembly of session %s failed; staged chunks kept", session_id)

    def _concatenate(self, session: UploadSession, target: Path) -> Tuple[int, str]:
        """Stream every chunk in index order into ``target``; returns (size, sha256)."""
        digest = hashlib.sha256()
        written = 0
        buffer_size = self.config.copy_buffer_size

        try:
            with open(target, "wb") as out:
                for index in range(session.total_chunks):
                    chunk_file = self.repository.chunk_path(session.session_id, index)
                    try:
                        source = open(chunk_file, "rb")
                    except FileNotFoundError:
                        raise MissingChunkException(session.session_id, index)
                    with source:
                        for block in iter(lambda: source.read(buffer_size), b""):
                            out.write(block)
                            digest.update(block)
                            written += len(block)
        except OSError as e:
            raise StorageException(
                f"Failed to write artifact: {e}",
                operation="reassemble",
                details={"session_id": session.session_id, "path": str(target)},
                original_error=e
            )

        return written, digest.hexdigest()

    @staticmethod
    def _verify(session: UploadSession, size: int, digest: str) -> None:
        if size != session.file_size:
            raise IntegrityException(
                f"File size mismatch: expected {session.file_size}, got {size}",
                session.session_id,
                details={"expected_size": session.file_size, "actual_size": size}
            )
        if session.content_digest and session.content_digest != digest:
            raise IntegrityException(
                "Content digest mismatch",
                session.session_id,
                details={"expected_digest": session.content_digest, "actual_digest": digest}
            )

    @staticmethod
    def _publish(session_id: str, partial_path: Path, final_path: Path) -> None:
        try:
            os.replace(partial_path, final_path)
        except OSError as e:
            raise StorageException(
                f"Failed to move artifact into place: {e}",
                operation="publish",
                details={"session_id": session_id, "path": str(final_path)},
                original_error=e
            )

    @staticmethod
    def _discard(path: Optional[Path]) -> None:
        if path is not None:
            FileProcessor.safe_remove(path)
