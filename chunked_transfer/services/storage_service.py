"""Final storage collaborator: where finished artifacts go and who hears about them."""
import asyncio
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Union

from chunked_transfer.core.exceptions import ValidationException
from chunked_transfer.utils.file_utils import FileProcessor, matches_token, sanitize_filename
from chunked_transfer.utils.logger import get_logger

logger: logging.Logger = get_logger(__name__)

ArtifactListener = Callable[[str, Path, Dict[str, Any]], Union[None, Awaitable[None]]]


class LocalFinalStorage:
    """Stores artifacts under ``<upload_root>/<destination_id>/<sanitized name>``."""

    def __init__(self, upload_root: Union[str, Path], destination_pattern: str, max_file_name_length: int = 255):
        self.upload_root = Path(upload_root)
        self.destination_pattern = destination_pattern
        self.max_file_name_length = max_file_name_length
        self._listeners: List[ArtifactListener] = []

    def add_listener(self, listener: ArtifactListener) -> None:
        self._listeners.append(listener)

    def validate_destination(self, destination_id: str) -> str:
        if not matches_token(destination_id, self.destination_pattern):
            raise ValidationException("Invalid destination ID format", field="destination_id")
        return destination_id

    def resolve(self, destination_id: str, file_name: str) -> Path:
        self.validate_destination(destination_id)
        directory = FileProcessor.ensure_directory(self.upload_root / destination_id)
        return directory / sanitize_filename(file_name, self.max_file_name_length)

    async def register(self, destination_id: str, final_path: Path, descriptor: Dict[str, Any]) -> None:
        logger.info("Artifact stored for destination %s at %s", destination_id, final_path)
        for listener in self._listeners:
            result = listener(destination_id, final_path, descriptor)
            if asyncio.iscoroutine(result):
                await result
