"""High-level upload client: planning, adaptive sizing, orchestration and resume."""
import logging
from pathlib import Path
from typing import Optional, Union

from chunked_transfer.client.adaptive import AdaptiveSizingController
from chunked_transfer.client.compression import CompressionPool
from chunked_transfer.client.orchestrator import ProgressCallback, UploadOrchestrator, UploadSummary
from chunked_transfer.client.planner import ChunkPlanner, CompressionMode, TransferPlan
from chunked_transfer.client.transport import ChunkTransport
from chunked_transfer.core.config import ClientConfig
from chunked_transfer.core.exceptions import SessionNotFoundException, ValidationException
from chunked_transfer.utils.logger import get_logger

logger: logging.Logger = get_logger(__name__)


class ChunkedUploader:
    """
    Uploads files through a transport, one orchestrated transfer at a time.

    The adaptive controller learns from every transfer; its chunk size is used
    when the next file is planned.
    """

    def __init__(
        self,
        transport: ChunkTransport,
        config: ClientConfig,
        planner: Optional[ChunkPlanner] = None,
        sizing_controller: Optional[AdaptiveSizingController] = None,
        adaptive: bool = True
    ):
        self.transport = transport
        self.config = config
        self.compression_pool: Optional[CompressionPool] = None
        if planner is None:
            self.compression_pool = CompressionPool(
                workers=config.compression_workers,
                threshold=config.compression_threshold,
                level=config.compression_level
            )
            planner = ChunkPlanner(
                compression_pool=self.compression_pool,
                max_chunk_size=config.max_chunk_size,
                compression_level=config.compression_level
            )
        self.planner = planner
        self.sizing_controller = sizing_controller
        if self.sizing_controller is None and adaptive:
            self.sizing_controller = AdaptiveSizingController(
                default_chunk_size=config.chunk_size,
                min_chunk_size=config.min_chunk_size,
                max_chunk_size=config.max_chunk_size,
                target_duration=config.target_chunk_seconds,
                window=config.throughput_window,
                min_samples=config.min_samples
            )
        self.current: Optional[UploadOrchestrator] = None

    def _orchestrator(self, progress_callback: Optional[ProgressCallback]) -> UploadOrchestrator:
        self.current = UploadOrchestrator(
            self.transport,
            concurrency=self.config.concurrency,
            max_attempts=self.config.max_attempts,
            complete_attempts=self.config.complete_attempts,
            chunk_timeout=self.config.chunk_timeout,
            retry_delay=self.config.retry_delay,
            progress_callback=progress_callback,
            sizing_controller=self.sizing_controller
        )
        return self.current

    def next_chunk_size(self) -> int:
        if self.sizing_controller is not None:
            return self.sizing_controller.next_chunk_size
        return self.config.chunk_size

    def plan(
        self,
        source: Union[str, Path, bytes],
        file_name: Optional[str] = None,
        compression: CompressionMode = CompressionMode.NONE,
        chunk_size: Optional[int] = None,
        session_id: Optional[str] = None
    ) -> TransferPlan:
        return self.planner.plan(
            source,
            chunk_size or self.next_chunk_size(),
            file_name=file_name,
            session_id=session_id,
            compression=compression
        )

    async def upload_file(
        self,
        source: Union[str, Path, bytes],
        destination_id: str,
        file_name: Optional[str] = None,
        compression: CompressionMode = CompressionMode.NONE,
        chunk_size: Optional[int] = None,
        progress_callback: Optional[ProgressCallback] = None
    ) -> UploadSummary:
        plan = self.plan(source, file_name=file_name, compression=compression, chunk_size=chunk_size)
        return await self._orchestrator(progress_callback).upload(plan, destination_id)

    async def resume(
        self,
        source: Union[str, Path, bytes],
        session_id: str,
        destination_id: str,
        chunk_size: int,
        file_name: Optional[str] = None,
        compression: CompressionMode = CompressionMode.NONE,
        progress_callback: Optional[ProgressCallback] = None
    ) -> UploadSummary:
        """
        Finish an interrupted upload, sending only chunks the receiver lacks.

        ``chunk_size`` and ``compression`` must match the interrupted run,
        otherwise chunk boundaries differ and the plan is rejected.
        """
        status = await self.transport.status(session_id)
        if status.get("state") != "in_progress":
            raise SessionNotFoundException(session_id)

        plan = self.planner.plan(
            source,
            chunk_size,
            file_name=file_name,
            session_id=session_id,
            compression=compression
        )
        staged = (status.get("total_chunks"), status.get("file_size"), status.get("file_name"))
        if (plan.total_chunks, plan.file_size, plan.file_name) != staged:
            raise ValidationException(
                "Local file does not match the staged session",
                details={
                    "session_id": session_id,
                    "planned_chunks": plan.total_chunks,
                    "staged_chunks": status.get("total_chunks"),
                    "planned_size": plan.file_size,
                    "staged_size": status.get("file_size"),
                    "planned_name": plan.file_name,
                    "staged_name": status.get("file_name")
                }
            )

        missing = set(status.get("missing_chunks") or [])
        skip = [chunk.index for chunk in plan.chunks if chunk.index not in missing]
        logger.info("Resuming session %s: %d chunks missing", session_id, len(missing))
        return await self._orchestrator(progress_callback).upload(plan, destination_id, skip_indices=skip)

    def abort(self) -> None:
        if self.current is not None:
            self.current.abort()

    def close(self) -> None:
        if self.compression_pool is not None:
            self.compression_pool.close()
