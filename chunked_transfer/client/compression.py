"""Gzip compression on a fixed pool of background workers."""
import asyncio
import gzip
import logging
import time
import zlib
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from chunked_transfer.config import COMPRESSED_EXTENSIONS
from chunked_transfer.core.exceptions import CompressionException
from chunked_transfer.utils.logger import get_logger

logger: logging.Logger = get_logger(__name__)

_ZIP_MAGIC = b"PK\x03\x04"
_GZIP_MAGIC = b"\x1f\x8b"


@dataclass
class CompressionResult:
    """Compressed payload plus statistics"""
    data: bytes
    original_size: int
    compressed_size: int
    duration: float

    @property
    def ratio(self) -> float:
        """Space saved, in percent"""
        if self.original_size == 0:
            return 0.0
        return round((1 - self.compressed_size / self.original_size) * 100, 2)

    @property
    def speed_mbps(self) -> float:
        if self.duration <= 0:
            return 0.0
        return (self.original_size / (1024 * 1024)) / self.duration


def is_already_compressed(file_name: Optional[str] = None, head: bytes = b"") -> bool:
    """True for archive extensions or zip/gzip magic bytes"""
    if file_name and Path(file_name).suffix.lower() in COMPRESSED_EXTENSIONS:
        return True
    return head.startswith(_ZIP_MAGIC) or head.startswith(_GZIP_MAGIC)


def gzip_payload(data: bytes, level: int = 6) -> CompressionResult:
    """Compress one payload. ``mtime=0`` keeps output identical for identical input."""
    started = time.time()
    try:
        compressed = gzip.compress(data, compresslevel=level, mtime=0)
    except (zlib.error, ValueError, MemoryError, TypeError) as e:
        raise CompressionException(
            f"Compression failed: {e}",
            details={"size": len(data) if isinstance(data, (bytes, bytearray)) else None, "level": level},
            original_error=e
        )
    return CompressionResult(
        data=compressed,
        original_size=len(data),
        compressed_size=len(compressed),
        duration=time.time() - started
    )


class CompressionPool:
    """
    Compresses small payloads inline and larger ones on background workers.

    The pool size is fixed at construction. When every worker is busy new
    tasks wait in the executor queue; a failed task reports its error through
    its own future and the worker picks up the next task.
    """

    def __init__(self, workers: int = 2, threshold: int = 500 * 1024, level: int = 6):
        if workers < 1:
            raise ValueError("CompressionPool needs at least one worker")
        self.workers = workers
        self.threshold = threshold
        self.level = level
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="compress")
        self._closed = False

    def _level(self, level: Optional[int]) -> int:
        return self.level if level is None else level

    def submit(self, data: bytes, level: Optional[int] = None) -> Future:
        """Queue a payload for a background worker."""
        if self._closed:
            raise CompressionException("Compression pool is closed")
        return self._executor.submit(gzip_payload, data, self._level(level))

    def compress(self, data: bytes, level: Optional[int] = None) -> CompressionResult:
        """Compress synchronously below the threshold, on a worker above it."""
        if len(data) <= self.threshold:
            return gzip_payload(data, self._level(level))
        return self.submit(data, level).result()

    def compress_many(self, payloads: Sequence[bytes], level: Optional[int] = None) -> List[CompressionResult]:
        """Compress a batch in parallel; results keep the input order."""
        futures = [self.submit(data, level) for data in payloads]
        return [future.result() for future in futures]

    async def compress_async(self, data: bytes, level: Optional[int] = None) -> CompressionResult:
        """Awaitable variant for callers running in an event loop."""
        if len(data) <= self.threshold:
            return gzip_payload(data, self._level(level))
        return await asyncio.wrap_future(self.submit(data, level))

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._executor.shutdown(wait=True)
            logger.debug("Compression pool shut down")

    def __enter__(self) -> "CompressionPool":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
