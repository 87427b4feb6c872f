"""Garbage collection of abandoned staging areas."""
import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from typing import List, Optional

from chunked_transfer.core.decorators import async_exception_handler, async_performance_monitor
from chunked_transfer.core.exceptions import SessionConflictException, StorageException
from chunked_transfer.core.service_protocols import SessionLockManager
from chunked_transfer.models.session import SessionState
from chunked_transfer.services.session_store import FileSessionRepository
from chunked_transfer.utils.file_utils import FileProcessor, matches_token
from chunked_transfer.utils.logger import get_logger

logger: logging.Logger = get_logger(__name__)


@dataclass
class SweepResult:
    """Outcome of one collection pass"""
    scanned: int = 0
    deleted: List[str] = field(default_factory=list)
    skipped_active: int = 0
    skipped_reassembling: int = 0
    errors: int = 0

    @property
    def deleted_count(self) -> int:
        return len(self.deleted)


class SessionGarbageCollector:
    """
    Deletes staging directories that saw no activity within the retention window.

    A directory's age is the newest mtime of the directory or any file in it.
    Sessions in the ``reassembling`` state are never touched, whatever their age.
    """

    def __init__(
        self,
        repository: FileSessionRepository,
        lock_manager: SessionLockManager,
        retention_seconds: int = 3600,
        probability: float = 0.1,
        interval_seconds: int = 300,
        rng: Optional[random.Random] = None
    ):
        self.repository = repository
        self.lock_manager = lock_manager
        self.retention_seconds = retention_seconds
        self.probability = probability
        self.interval_seconds = interval_seconds
        self._rng = rng or random.Random()
        self._task: Optional[asyncio.Task] = None
        self._running = False

    @async_performance_monitor("staging_sweep")
    async def sweep(self, retention_seconds: Optional[int] = None) -> SweepResult:
        """Run one collection pass over the staging root."""
        window = self.retention_seconds if retention_seconds is None else retention_seconds
        cutoff = time.time() - window
        result = SweepResult()

        for session_id in self.repository.list_session_ids():
            if not matches_token(session_id, self.repository.session_id_pattern):
                continue
            result.scanned += 1
            try:
                await self._collect(session_id, cutoff, result)
            except (OSError, StorageException) as e:
                result.errors += 1
                logger.error("Failed to collect staging area %s: %s", session_id, e)

        if result.deleted:
            logger.info(
                "Garbage collection removed %d of %d staging areas",
                result.deleted_count, result.scanned
            )
        return result

    async def _collect(self, session_id: str, cutoff: float, result: SweepResult) -> None:
        staging = self.repository.staging_path(session_id)
        if not staging.is_dir() or FileProcessor.last_modified(staging) >= cutoff:
            result.skipped_active += 1
            return

        async with self.lock_manager.lock(session_id):
            try:
                session = await self.repository.get(session_id)
            except StorageException:
                # Unreadable metadata is treated like an orphaned directory
                session = None

            if session is not None and session.state == SessionState.REASSEMBLING:
                result.skipped_reassembling += 1
                return

            if not staging.is_dir() or FileProcessor.last_modified(staging) >= cutoff:
                result.skipped_active += 1
                return

            await self.repository.delete(session_id)
            result.deleted.append(session_id)
            logger.info("Expired staging area removed: %s", session_id)

    async def recover_interrupted(self) -> List[str]:
        """
        Return sessions left in ``reassembling`` by a stopped process to ``uploading``.

        Only safe while no other process shares the staging root, so it runs
        at startup with in-process locks.
        """
        recovered: List[str] = []
        for session_id in self.repository.list_session_ids():
            if not matches_token(session_id, self.repository.session_id_pattern):
                continue
            async with self.lock_manager.lock(session_id):
                try:
                    session = await self.repository.get(session_id)
                except StorageException as e:
                    logger.error("Unreadable staging metadata for %s: %s", session_id, e)
                    continue
                if session is None or session.state != SessionState.REASSEMBLING:
                    continue
                session.state = SessionState.UPLOADING
                session.touch()
                await self.repository.upsert(session)
            recovered.append(session_id)

        if recovered:
            logger.warning("Interrupted reassembly reset for %d sessions: %s", len(recovered), recovered)
        return recovered

    async def discard(self, session_id: str) -> bool:
        """Delete one session on request, unless it is being reassembled."""
        self.repository.validate_session_id(session_id)
        async with self.lock_manager.lock(session_id):
            try:
                session = await self.repository.get(session_id)
            except StorageException:
                session = None
            if session is not None and session.state == SessionState.REASSEMBLING:
                raise SessionConflictException(
                    "Upload session is being reassembled", session_id, session.state.value
                )
            removed = await self.repository.delete(session_id)

        if removed:
            logger.info("Upload session %s cancelled", session_id)
        return removed

    @async_exception_handler(reraise=False)
    async def maybe_sweep(self) -> Optional[SweepResult]:
        """Run a pass with the configured probability; used on chunk traffic."""
        if self.probability <= 0 or self._rng.random() >= self.probability:
            return None
        return await self.sweep()

    def start(self) -> None:
        """Start the timer-driven background pass."""
        if self._task is not None and not self._task.done():
            return
        self._running = True
        self._task = asyncio.create_task(self._run_periodically())

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _run_periodically(self) -> None:
        logger.info("Staging cleanup task started (interval %ss)", self.interval_seconds)

        while self._running:
            try:
                await asyncio.sleep(self.interval_seconds)
                await self.sweep()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Staging cleanup task error: {e}")

        logger.info("Staging cleanup task stopped")
