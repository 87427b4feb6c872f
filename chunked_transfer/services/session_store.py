"""Filesystem-backed repository for staged upload sessions."""
import logging
import os
import uuid
from pathlib import Path
from typing import List, Optional, Union

import aiofiles
import aiofiles.os
from pydantic import ValidationError

from chunked_transfer.config import (
    CHUNK_FILE_PREFIX,
    CHUNK_INDEX_WIDTH,
    METADATA_FILE_NAME,
)
from chunked_transfer.core.exceptions import StorageException, ValidationException
from chunked_transfer.models.session import UploadSession
from chunked_transfer.utils.file_utils import FileProcessor, matches_token
from chunked_transfer.utils.logger import get_logger

logger: logging.Logger = get_logger(__name__)


class FileSessionRepository:
    """
    Keeps every session in ``<staging_root>/<session_id>/``.

    The directory holds ``metadata.json`` and one ``chunk_NNNNNN`` file per
    received index. Writes go to a uniquely named temp file first and are
    moved into place with ``os.replace`` so readers never see torn files.
    """

    def __init__(self, staging_root: Union[str, Path], session_id_pattern: str):
        self.staging_root = Path(staging_root)
        self.session_id_pattern = session_id_pattern

    def validate_session_id(self, session_id: str) -> str:
        if not matches_token(session_id, self.session_id_pattern):
            raise ValidationException("Invalid session ID format", field="session_id")
        return session_id

    def staging_path(self, session_id: str) -> Path:
        return self.staging_root / self.validate_session_id(session_id)

    def metadata_path(self, session_id: str) -> Path:
        return self.staging_path(session_id) / METADATA_FILE_NAME

    def chunk_path(self, session_id: str, chunk_index: int) -> Path:
        return self.staging_path(session_id) / f"{CHUNK_FILE_PREFIX}{chunk_index:0{CHUNK_INDEX_WIDTH}d}"

    def create_staging(self, session_id: str) -> Path:
        return FileProcessor.ensure_directory(self.staging_path(session_id))

    async def get(self, session_id: str) -> Optional[UploadSession]:
        path = self.metadata_path(session_id)
        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                raw = await f.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageException(
                f"Failed to read session metadata: {e}",
                operation="read_metadata",
                details={"session_id": session_id},
                original_error=e
            )

        try:
            return UploadSession.model_validate_json(raw)
        except ValidationError as e:
            raise StorageException(
                "Session metadata is corrupt",
                operation="read_metadata",
                details={"session_id": session_id},
                original_error=e
            )

    async def upsert(self, session: UploadSession) -> None:
        target = self.metadata_path(session.session_id)
        await self._atomic_write(target, session.model_dump_json().encode("utf-8"), "write_metadata")

    async def write_chunk(self, session_id: str, chunk_index: int, payload: bytes) -> Path:
        target = self.chunk_path(session_id, chunk_index)
        await self._atomic_write(target, payload, "write_chunk")
        return target

    async def delete(self, session_id: str) -> bool:
        removed = FileProcessor.safe_remove(self.staging_path(session_id))
        if removed:
            logger.info("Staging area removed for session %s", session_id)
        return removed

    def list_session_ids(self) -> List[str]:
        if not self.staging_root.is_dir():
            return []
        return sorted(entry.name for entry in os.scandir(self.staging_root) if entry.is_dir())

    async def _atomic_write(self, target: Path, data: bytes, operation: str) -> None:
        temp_path = target.with_name(f".{target.name}.{uuid.uuid4().hex}.tmp")
        try:
            async with aiofiles.open(temp_path, "wb") as f:
                await f.write(data)
            await aiofiles.os.replace(temp_path, target)
        except OSError as e:
            FileProcessor.safe_remove(temp_path)
            raise StorageException(
                f"Failed to persist {target.name}: {e}",
                operation=operation,
                details={"path": str(target)},
                original_error=e
            )
