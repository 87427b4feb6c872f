"""Chunk planning: partitions a payload into indexed chunks and fixes the upload order."""
import hashlib
import logging
import math
import random
import string
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple, Union

from chunked_transfer.client.compression import CompressionPool, is_already_compressed
from chunked_transfer.core.decorators import performance_monitor
from chunked_transfer.core.exceptions import CompressionException, ValidationException
from chunked_transfer.utils.logger import get_logger

logger: logging.Logger = get_logger(__name__)

_SESSION_ALPHABET = string.ascii_lowercase + string.digits
_HASH_BLOCK = 1024 * 1024


class CompressionMode(str, Enum):
    NONE = "none"
    WHOLE = "whole"
    PER_CHUNK = "per_chunk"


def generate_session_id(rng: Optional[random.Random] = None) -> str:
    """``upload_<epoch millis>_<9 random base36 characters>``"""
    rng = rng or random.SystemRandom()
    suffix = "".join(rng.choice(_SESSION_ALPHABET) for _ in range(9))
    return f"upload_{int(time.time() * 1000)}_{suffix}"


def partition(size: int, chunk_size: int) -> List[Tuple[int, int]]:
    """(offset, length) pairs covering ``size`` bytes; only the last may be short."""
    if chunk_size < 1:
        raise ValidationException("Chunk size must be positive", field="chunk_size")
    total = math.ceil(size / chunk_size)
    return [(i * chunk_size, min(chunk_size, size - i * chunk_size)) for i in range(total)]


class PayloadSource:
    """Random access to the bytes being transferred"""

    size: int = 0

    def read(self, offset: int, length: int) -> bytes:
        raise NotImplementedError


class FilePayload(PayloadSource):
    """Reads ranges from a file on demand, so large files are never held in memory."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self.size = self.path.stat().st_size

    def read(self, offset: int, length: int) -> bytes:
        with open(self.path, "rb") as f:
            f.seek(offset)
            return f.read(length)


class BytesPayload(PayloadSource):
    def __init__(self, data: bytes):
        self.data = bytes(data)
        self.size = len(self.data)

    def read(self, offset: int, length: int) -> bytes:
        return self.data[offset:offset + length]


@dataclass
class PlannedChunk:
    """One unit of transfer. ``attempt_count`` is local to the sender."""
    index: int
    offset: int
    size: int
    total_chunks: int
    attempt_count: int = 0
    data: Optional[bytes] = field(default=None, repr=False)


@dataclass
class TransferPlan:
    session_id: str
    file_name: str
    file_size: int
    total_chunks: int
    chunk_size: int
    chunks: List[PlannedChunk]
    payload: PayloadSource = field(repr=False)
    content_digest: str
    compression: CompressionMode = CompressionMode.NONE
    original_size: int = 0

    def read_chunk(self, chunk: PlannedChunk) -> bytes:
        if chunk.data is not None:
            return chunk.data
        return self.payload.read(chunk.offset, chunk.size)


class ChunkPlanner:
    """
    Turns a file into a ``TransferPlan``.

    Chunk ``i`` covers the payload range ``[i * chunk_size, (i + 1) * chunk_size)``.
    The upload order is shuffled so concurrent workers spread over the file.
    """

    def __init__(
        self,
        compression_pool: Optional[CompressionPool] = None,
        max_chunk_size: int = 10 * 1024 * 1024,
        compression_level: int = 6,
        rng: Optional[random.Random] = None
    ):
        self.compression_pool = compression_pool
        self.max_chunk_size = max_chunk_size
        self.compression_level = compression_level
        self._rng = rng or random.Random()

    @performance_monitor("plan_transfer")
    def plan(
        self,
        source: Union[str, Path, bytes],
        chunk_size: int,
        file_name: Optional[str] = None,
        session_id: Optional[str] = None,
        compression: CompressionMode = CompressionMode.NONE,
        shuffle: bool = True
    ) -> TransferPlan:
        if chunk_size < 1 or chunk_size > self.max_chunk_size:
            raise ValidationException(
                f"Chunk size must be between 1 and {self.max_chunk_size} bytes", field="chunk_size"
            )

        payload, file_name = self._open_source(source, file_name)
        original_size = payload.size
        if original_size == 0:
            raise ValidationException("Cannot transfer an empty file", field="file_size")

        compression = CompressionMode(compression)
        if compression != CompressionMode.NONE:
            head = payload.read(0, 4)
            if is_already_compressed(file_name, head):
                logger.info("%s is already compressed; sending it as-is", file_name)
                compression = CompressionMode.NONE

        ranges = partition(original_size, chunk_size)
        chunk_data: Optional[List[bytes]] = None

        if compression == CompressionMode.WHOLE:
            compressed = self._compress_whole(payload)
            if compressed is None:
                compression = CompressionMode.NONE
            else:
                payload = BytesPayload(compressed)
                ranges = partition(payload.size, chunk_size)
        elif compression == CompressionMode.PER_CHUNK:
            chunk_data = self._compress_per_chunk(payload, ranges)
            if chunk_data is None:
                compression = CompressionMode.NONE
            else:
                offsets = []
                position = 0
                for data in chunk_data:
                    offsets.append((position, len(data)))
                    position += len(data)
                ranges = offsets

        total_chunks = len(ranges)
        file_size = sum(length for _, length in ranges)
        chunks = [
            PlannedChunk(
                index=index,
                offset=offset,
                size=length,
                total_chunks=total_chunks,
                data=chunk_data[index] if chunk_data is not None else None
            )
            for index, (offset, length) in enumerate(ranges)
        ]
        digest = self._digest(payload, chunks)

        if shuffle:
            self._rng.shuffle(chunks)

        plan = TransferPlan(
            session_id=session_id or generate_session_id(),
            file_name=file_name,
            file_size=file_size,
            total_chunks=total_chunks,
            chunk_size=chunk_size,
            chunks=chunks,
            payload=payload,
            content_digest=digest,
            compression=compression,
            original_size=original_size
        )
        logger.info(
            "Planned %s: %d bytes in %d chunks of %d bytes (compression=%s)",
            plan.file_name, plan.file_size, plan.total_chunks, chunk_size, compression.value
        )
        return plan

    @staticmethod
    def _open_source(source: Union[str, Path, bytes], file_name: Optional[str]) -> Tuple[PayloadSource, str]:
        if isinstance(source, (bytes, bytearray, memoryview)):
            if not file_name:
                raise ValidationException("file_name is required for in-memory payloads", field="file_name")
            return BytesPayload(bytes(source)), file_name

        path = Path(source)
        if not path.is_file():
            raise ValidationException(f"File not found: {path}", field="source")
        return FilePayload(path), file_name or path.name

    def _pool(self) -> CompressionPool:
        if self.compression_pool is None:
            self.compression_pool = CompressionPool(level=self.compression_level)
        return self.compression_pool

    def _compress_whole(self, payload: PayloadSource) -> Optional[bytes]:
        try:
            result = self._pool().compress(payload.read(0, payload.size), self.compression_level)
        except CompressionException as e:
            logger.warning("Compression failed, sending the original payload: %s", e)
            return None

        logger.info(
            "Compressed %d -> %d bytes (%.1f%% saved, %.1f MB/s)",
            result.original_size, result.compressed_size, result.ratio, result.speed_mbps
        )
        return result.data

    def _compress_per_chunk(self, payload: PayloadSource, ranges: List[Tuple[int, int]]) -> Optional[List[bytes]]:
        slices = [payload.read(offset, length) for offset, length in ranges]
        try:
            results = self._pool().compress_many(slices, self.compression_level)
        except CompressionException as e:
            logger.warning("Chunk compression failed, sending the original payload: %s", e)
            return None

        if any(result.compressed_size > self.max_chunk_size for result in results):
            logger.warning("A compressed chunk exceeds the chunk ceiling; sending the original payload")
            return None
        return [result.data for result in results]

    @staticmethod
    def _digest(payload: PayloadSource, chunks: List[PlannedChunk]) -> str:
        digest = hashlib.sha256()
        for chunk in chunks:
            if chunk.data is not None:
                digest.update(chunk.data)
                continue
            position = chunk.offset
            end = chunk.offset + chunk.size
            while position < end:
                block = payload.read(position, min(_HASH_BLOCK, end - position))
                if not block:
                    raise ValidationException("Source file shrank while it was being planned", field="source")
                digest.update(block)
                position += len(block)
        return digest.hexdigest()
