"""Upload client: planning, compression, adaptive sizing and orchestrated transfer."""
from chunked_transfer.client.adaptive import AdaptiveSizingController
from chunked_transfer.client.compression import CompressionPool, CompressionResult, is_already_compressed
from chunked_transfer.client.orchestrator import (
    UploadOrchestrator,
    UploadProgress,
    UploadState,
    UploadSummary,
)
from chunked_transfer.client.planner import (
    ChunkPlanner,
    CompressionMode,
    PlannedChunk,
    TransferPlan,
    generate_session_id,
)
from chunked_transfer.client.transport import ChunkTransport, HttpChunkTransport
from chunked_transfer.client.uploader import ChunkedUploader

__all__ = [
    "AdaptiveSizingController",
    "ChunkPlanner",
    "ChunkTransport",
    "ChunkedUploader",
    "CompressionMode",
    "CompressionPool",
    "CompressionResult",
    "HttpChunkTransport",
    "PlannedChunk",
    "TransferPlan",
    "UploadOrchestrator",
    "UploadProgress",
    "UploadState",
    "UploadSummary",
    "generate_session_id",
    "is_already_compressed",
]
