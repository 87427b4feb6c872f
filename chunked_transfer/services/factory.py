"""Wiring of the receiver-side services around one configuration."""
import logging
import random
from dataclasses import dataclass
from typing import Optional

from chunked_transfer.core.config import Settings
from chunked_transfer.core.service_protocols import SessionLockManager
from chunked_transfer.services.cleanup_service import SessionGarbageCollector
from chunked_transfer.services.reassembly_service import Reassembler
from chunked_transfer.services.receiver_service import ChunkReceiver
from chunked_transfer.services.session_lock import (
    LocalSessionLockManager,
    RedisSessionLockManager,
    create_lock_manager,
)
from chunked_transfer.services.session_store import FileSessionRepository
from chunked_transfer.services.status_service import StatusReporter
from chunked_transfer.services.storage_service import LocalFinalStorage
from chunked_transfer.utils.file_utils import FileProcessor
from chunked_transfer.utils.logger import get_logger

logger: logging.Logger = get_logger(__name__)


@dataclass
class TransferServices:
    """Receiver components sharing one repository and one lock manager."""
    settings: Settings
    repository: FileSessionRepository
    lock_manager: SessionLockManager
    storage: LocalFinalStorage
    collector: SessionGarbageCollector
    receiver: ChunkReceiver
    reassembler: Reassembler
    status_reporter: StatusReporter

    async def start(self, run_background_gc: Optional[bool] = None) -> None:
        """Connect the lock backend, recover interrupted reassemblies and start the collector."""
        FileProcessor.ensure_directory(self.repository.staging_root)
        FileProcessor.ensure_directory(self.storage.upload_root)

        try:
            await self.lock_manager.connect()
        except Exception as e:
            if not isinstance(self.lock_manager, RedisSessionLockManager):
                raise
            logger.error(f"Failed to connect to Redis: {e}")
            logger.warning(
                "Application will start without Redis - "
                "session locks are only valid inside this process"
            )
            self._use_lock_manager(LocalSessionLockManager())

        if isinstance(self.lock_manager, LocalSessionLockManager):
            await self.collector.recover_interrupted()

        if run_background_gc is None:
            run_background_gc = self.settings.gc_enabled
        if run_background_gc:
            self.collector.start()

    async def stop(self) -> None:
        await self.collector.stop()
        await self.lock_manager.disconnect()

    def _use_lock_manager(self, lock_manager: SessionLockManager) -> None:
        self.lock_manager = lock_manager
        self.collector.lock_manager = lock_manager
        self.receiver.lock_manager = lock_manager
        self.reassembler.lock_manager = lock_manager


def build_services(settings: Settings, rng: Optional[random.Random] = None) -> TransferServices:
    """Create every receiver component from settings."""
    receiver_config = settings.get_receiver_config()

    repository = FileSessionRepository(receiver_config.staging_dir, receiver_config.session_id_pattern)
    lock_manager = create_lock_manager(settings.get_lock_config())
    storage = LocalFinalStorage(
        receiver_config.upload_dir,
        destination_pattern=receiver_config.session_id_pattern,
        max_file_name_length=receiver_config.max_file_name_length
    )
    collector = SessionGarbageCollector(
        repository,
        lock_manager,
        retention_seconds=receiver_config.session_retention_seconds,
        probability=receiver_config.gc_probability if receiver_config.gc_enabled else 0.0,
        interval_seconds=receiver_config.gc_interval_seconds,
        rng=rng
    )

    return TransferServices(
        settings=settings,
        repository=repository,
        lock_manager=lock_manager,
        storage=storage,
        collector=collector,
        receiver=ChunkReceiver(receiver_config, repository, lock_manager, collector),
        reassembler=Reassembler(receiver_config, repository, lock_manager, storage),
        status_reporter=StatusReporter(repository)
    )
