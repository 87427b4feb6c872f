"""Receiver-side services: staging, locking, reassembly, collection and status."""
from chunked_transfer.services.cleanup_service import SessionGarbageCollector, SweepResult
from chunked_transfer.services.factory import TransferServices, build_services
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

__all__ = [
    "ChunkReceiver",
    "FileSessionRepository",
    "LocalFinalStorage",
    "LocalSessionLockManager",
    "Reassembler",
    "RedisSessionLockManager",
    "SessionGarbageCollector",
    "StatusReporter",
    "SweepResult",
    "TransferServices",
    "build_services",
    "create_lock_manager",
]
