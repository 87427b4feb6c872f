"""Upload orchestration: bounded concurrent chunk transfer with retry, abort and completion."""
import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Deque, Dict, Iterable, Optional, Tuple

from chunked_transfer.client.adaptive import AdaptiveSizingController
from chunked_transfer.client.planner import PlannedChunk, TransferPlan
from chunked_transfer.client.transport import ChunkTransport, is_retryable
from chunked_transfer.core.decorators import async_retry
from chunked_transfer.core.exceptions import (
    ChunkTransferException,
    UploadAbortedException,
    UploadFailedException,
)
from chunked_transfer.utils.logger import get_logger

logger: logging.Logger = get_logger(__name__)


class UploadState(str, Enum):
    PENDING = "pending"
    UPLOADING = "uploading"
    COMPLETING = "completing"
    COMPLETED = "completed"
    FAILED = "failed"
    ABORTED = "aborted"


@dataclass
class UploadProgress:
    """Progress event passed to the callback after each success or re-queue."""
    completed_count: int
    total_chunks: int
    chunk_index: int
    retrying: bool = False
    attempt: int = 1
    bytes_sent: int = 0
    elapsed: float = 0.0

    @property
    def percent(self) -> float:
        return round(self.completed_count / self.total_chunks * 100, 2)

    @property
    def speed_mbps(self) -> float:
        if self.elapsed <= 0:
            return 0.0
        return (self.bytes_sent / (1024 * 1024)) / self.elapsed


@dataclass
class UploadSummary:
    session_id: str
    state: UploadState
    total_chunks: int
    completed_chunks: int
    attempts: int
    retried_chunks: int
    bytes_sent: int
    elapsed_time: float
    result: Dict[str, Any] = field(default_factory=dict)


ProgressCallback = Callable[[UploadProgress], None]


class ChunkQueue:
    """FIFO of pending chunks shared by all workers."""

    def __init__(self, chunks: Iterable[PlannedChunk]):
        self._items: Deque[PlannedChunk] = deque(chunks)
        self._lock = asyncio.Lock()

    async def pop(self) -> Optional[PlannedChunk]:
        async with self._lock:
            return self._items.popleft() if self._items else None

    async def push(self, chunk: PlannedChunk) -> None:
        async with self._lock:
            self._items.append(chunk)

    def clear(self) -> int:
        dropped = len(self._items)
        self._items.clear()
        return dropped

    def __len__(self) -> int:
        return len(self._items)


class UploadOrchestrator:
    """
    Sends a plan's chunks with ``concurrency`` workers, then asks the receiver to reassemble.

    A failed chunk goes back to the tail of the queue until it has been tried
    ``max_attempts`` times; after that the whole upload fails and the other
    workers stop picking up work. Rejections the receiver marks as client
    errors are not retried. ``abort()`` empties the queue and lets in-flight
    chunks finish.
    """

    def __init__(
        self,
        transport: ChunkTransport,
        concurrency: int = 3,
        max_attempts: int = 3,
        complete_attempts: int = 3,
        chunk_timeout: Optional[float] = None,
        retry_delay: float = 0.0,
        progress_callback: Optional[ProgressCallback] = None,
        sizing_controller: Optional[AdaptiveSizingController] = None
    ):
        if concurrency < 1 or max_attempts < 1 or complete_attempts < 1:
            raise ValueError("concurrency and attempt limits must be at least 1")
        self.transport = transport
        self.concurrency = concurrency
        self.max_attempts = max_attempts
        self.complete_attempts = complete_attempts
        self.chunk_timeout = chunk_timeout
        self.retry_delay = retry_delay
        self.progress_callback = progress_callback
        self.sizing_controller = sizing_controller

        self.state = UploadState.PENDING
        self._queue: Optional[ChunkQueue] = None
        self._abort_requested = False
        self._failure: Optional[Tuple[PlannedChunk, Exception]] = None
        self._completed = 0
        self._bytes_sent = 0
        self._started = 0.0

    def abort(self) -> None:
        """Stop handing out chunks. In-flight transfers finish on their own."""
        self._abort_requested = True
        if self._queue is not None:
            dropped = self._queue.clear()
            logger.info("Upload abort requested; %d queued chunks dropped", dropped)

    @property
    def aborted(self) -> bool:
        return self._abort_requested

    def _stopping(self) -> bool:
        return self._abort_requested or self._failure is not None

    async def upload(
        self,
        plan: TransferPlan,
        destination_id: str,
        skip_indices: Optional[Iterable[int]] = None
    ) -> UploadSummary:
        skip = set(skip_indices or ())
        pending = [chunk for chunk in plan.chunks if chunk.index not in skip]

        self.state = UploadState.UPLOADING
        self._queue = ChunkQueue(pending)
        self._failure = None
        self._completed = plan.total_chunks - len(pending)
        self._bytes_sent = 0
        self._started = time.time()

        if self._abort_requested:
            self._queue.clear()

        logger.info(
            "Uploading %s as session %s: %d of %d chunks to send, concurrency %d",
            plan.file_name, plan.session_id, len(pending), plan.total_chunks, self.concurrency
        )

        workers = [
            asyncio.create_task(self._worker(plan))
            for _ in range(min(self.concurrency, max(len(pending), 1)))
        ]
        await asyncio.gather(*workers)

        if self._abort_requested:
            self.state = UploadState.ABORTED
            raise UploadAbortedException(
                plan.session_id, self._completed, plan.total_chunks, chunk_size=plan.chunk_size
            )

        if self._failure is not None:
            self.state = UploadState.FAILED
            chunk, error = self._failure
            raise UploadFailedException(
                f"Chunk {chunk.index} failed after {chunk.attempt_count} attempts: {error}",
                plan.session_id,
                details={
                    "chunk_index": chunk.index,
                    "attempts": chunk.attempt_count,
                    "completed": self._completed,
                    "total": plan.total_chunks
                },
                original_error=error,
                chunk_size=plan.chunk_size
            )

        self.state = UploadState.COMPLETING
        try:
            result = await self._complete(plan, destination_id)
        except Exception as e:
            self.state = UploadState.FAILED
            raise UploadFailedException(
                f"Completion failed for session {plan.session_id}: {e}",
                plan.session_id,
                details={"stage": "complete", "error": getattr(e, "details", {})},
                original_error=e,
                chunk_size=plan.chunk_size
            )

        self.state = UploadState.COMPLETED
        summary = UploadSummary(
            session_id=plan.session_id,
            state=self.state,
            total_chunks=plan.total_chunks,
            completed_chunks=self._completed,
            attempts=sum(chunk.attempt_count for chunk in pending),
            retried_chunks=sum(1 for chunk in pending if chunk.attempt_count > 1),
            bytes_sent=self._bytes_sent,
            elapsed_time=time.time() - self._started,
            result=result
        )
        logger.info(
            "Upload %s completed: %d chunks, %d attempts, %.2fs",
            plan.session_id, summary.total_chunks, summary.attempts, summary.elapsed_time
        )
        return summary

    async def _worker(self, plan: TransferPlan) -> None:
        loop = asyncio.get_running_loop()

        while not self._stopping():
            chunk = await self._queue.pop()
            if chunk is None:
                return

            chunk.attempt_count += 1
            started = loop.time()
            try:
                payload = await loop.run_in_executor(None, plan.read_chunk, chunk)
                await self._send(plan, chunk, payload)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                await self._handle_failure(chunk, e)
                continue

            elapsed = loop.time() - started
            self._completed += 1
            self._bytes_sent += chunk.size
            if self.sizing_controller is not None:
                self.sizing_controller.record(chunk.size, elapsed)
            self._emit(UploadProgress(
                completed_count=self._completed,
                total_chunks=plan.total_chunks,
                chunk_index=chunk.index,
                attempt=chunk.attempt_count,
                bytes_sent=self._bytes_sent,
                elapsed=time.time() - self._started
            ))

    async def _send(self, plan: TransferPlan, chunk: PlannedChunk, payload: bytes) -> None:
        try:
            await asyncio.wait_for(
                self.transport.send_chunk(plan, chunk, payload),
                timeout=self.chunk_timeout
            )
        except asyncio.TimeoutError as e:
            raise ChunkTransferException(
                f"Chunk {chunk.index} timed out after {self.chunk_timeout}s", original_error=e
            )

    async def _handle_failure(self, chunk: PlannedChunk, error: Exception) -> None:
        if self._stopping():
            return

        if is_retryable(error) and chunk.attempt_count < self.max_attempts:
            logger.warning(
                "Chunk %d attempt %d/%d failed, re-queued: %s",
                chunk.index, chunk.attempt_count, self.max_attempts, error
            )
            await self._queue.push(chunk)
            self._emit(UploadProgress(
                completed_count=self._completed,
                total_chunks=chunk.total_chunks,
                chunk_index=chunk.index,
                retrying=True,
                attempt=chunk.attempt_count,
                bytes_sent=self._bytes_sent,
                elapsed=time.time() - self._started
            ))
            if self.retry_delay > 0:
                await asyncio.sleep(self.retry_delay)
            return

        logger.error("Chunk %d failed permanently after %d attempts: %s", chunk.index, chunk.attempt_count, error)
        self._failure = (chunk, error)
        self._queue.clear()

    async def _complete(self, plan: TransferPlan, destination_id: str) -> Dict[str, Any]:
        complete = async_retry(
            max_attempts=self.complete_attempts,
            delay=self.retry_delay,
            jitter=False,
            retry_if=is_retryable
        )(self.transport.complete)
        return await complete(plan.session_id, destination_id, content_digest=plan.content_digest)

    def _emit(self, progress: UploadProgress) -> None:
        if self.progress_callback is not None:
            self.progress_callback(progress)
