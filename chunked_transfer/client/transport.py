"""HTTP transport from the upload client to the receiver API."""
import asyncio
import logging
from typing import Any, Dict, Optional, Protocol

import aiohttp

from chunked_transfer.client.planner import PlannedChunk, TransferPlan
from chunked_transfer.core.exceptions import (
    ChunkTransferException,
    IncompleteUploadException,
    IntegrityException,
    SessionNotFoundException,
    TransferException,
)
from chunked_transfer.utils.logger import get_logger

logger: logging.Logger = get_logger(__name__)

RETRYABLE_STATUS = {408, 425, 429}


class ChunkTransport(Protocol):
    """What the orchestrator needs from the wire."""

    async def send_chunk(self, plan: TransferPlan, chunk: PlannedChunk, payload: bytes) -> Dict[str, Any]:
        ...

    async def complete(self, session_id: str, destination_id: str,
                       content_digest: Optional[str] = None) -> Dict[str, Any]:
        ...

    async def status(self, session_id: str) -> Dict[str, Any]:
        ...


def is_retryable(error: Exception) -> bool:
    """Transient failures may be retried; rejected input may not."""
    return bool(getattr(error, "retryable", False))


class HttpChunkTransport:
    """
    aiohttp client for the ``/upload`` endpoints.

    Use as an async context manager so the connection pool is created and
    closed around one or more transfers.
    """

    def __init__(
        self,
        base_url: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        max_connections: int = 10,
        request_timeout: float = 300.0,
        connect_timeout: float = 60.0
    ):
        self.base_url = base_url.rstrip("/")
        self.auth = aiohttp.BasicAuth(username, password or "") if username else None
        self.max_connections = max_connections
        self.timeout = aiohttp.ClientTimeout(total=request_timeout, connect=connect_timeout)
        self.session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> "HttpChunkTransport":
        connector = aiohttp.TCPConnector(
            limit=self.max_connections,
            limit_per_host=self.max_connections,
            keepalive_timeout=30,
            enable_cleanup_closed=True
        )
        self.session = aiohttp.ClientSession(connector=connector, timeout=self.timeout, auth=self.auth)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self.session:
            await self.session.close()
            self.session = None

    async def send_chunk(self, plan: TransferPlan, chunk: PlannedChunk, payload: bytes) -> Dict[str, Any]:
        form = aiohttp.FormData()
        form.add_field("session_id", plan.session_id)
        form.add_field("chunk_index", str(chunk.index))
        form.add_field("total_chunks", str(plan.total_chunks))
        form.add_field("file_name", plan.file_name)
        form.add_field("file_size", str(plan.file_size))
        form.add_field("chunk", payload, filename="blob", content_type="application/octet-stream")
        return await self._request("POST", "/upload/chunk", data=form)

    async def complete(self, session_id: str, destination_id: str,
                       content_digest: Optional[str] = None) -> Dict[str, Any]:
        body: Dict[str, Any] = {"session_id": session_id, "destination_id": destination_id}
        if content_digest:
            body["content_digest"] = content_digest
        return await self._request("POST", "/upload/complete", json=body)

    async def status(self, session_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/upload/status/{session_id}")

    async def cancel(self, session_id: str) -> Dict[str, Any]:
        return await self._request("DELETE", f"/upload/{session_id}")

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        if self.session is None:
            raise ChunkTransferException("Transport is not open", retryable=False)

        url = f"{self.base_url}{path}"
        try:
            async with self.session.request(method, url, **kwargs) as response:
                try:
                    body = await response.json(content_type=None)
                except ValueError:
                    body = {"error": {"message": await response.text()}}
                if response.status >= 400:
                    raise self._error_from_response(response.status, body)
                return body
        except TransferException:
            raise
        except asyncio.TimeoutError as e:
            raise ChunkTransferException(f"Request timed out: {method} {path}", original_error=e)
        except aiohttp.ClientError as e:
            raise ChunkTransferException(f"Request failed: {method} {path}: {e}", original_error=e)

    @staticmethod
    def _error_from_response(status: int, body: Any) -> TransferException:
        error = body.get("error", {}) if isinstance(body, dict) else {}
        code = error.get("code")
        message = error.get("message") or f"HTTP {status}"
        details = error.get("details") or {}

        if code == "UPLOAD_INCOMPLETE":
            return IncompleteUploadException(
                details.get("session_id", ""),
                received=details.get("received", 0),
                total=details.get("total", 0),
                missing=details.get("missing")
            )
        if code == "SESSION_NOT_FOUND":
            return SessionNotFoundException(details.get("session_id", ""))
        if code == "INTEGRITY_MISMATCH":
            return IntegrityException(message, details.get("session_id", ""), details=details)

        retryable = status >= 500 or status in RETRYABLE_STATUS
        return ChunkTransferException(
            message,
            retryable=retryable,
            status_code=status,
            details={"code": code, **(details if isinstance(details, dict) else {"details": details})}
        )
