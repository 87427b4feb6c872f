"""Utility functions for file operations"""
import logging
import os
import re
import shutil
from pathlib import Path
from typing import Union

from chunked_transfer.core.exceptions import StorageException
from chunked_transfer.utils.logger import get_logger

logger: logging.Logger = get_logger(__name__)

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]")
_REPEATED_UNDERSCORES = re.compile(r"_+")


class FileProcessor:
    """File helpers shared by the staging repository, reassembler and collector"""

    @staticmethod
    def safe_remove(path: Union[str, Path]) -> bool:
        """
        Delete a file or directory tree.

        Missing paths are not an error, so repeated deletion is harmless.

        Returns:
            bool: True if something was removed
        """
        path = Path(path)

        try:
            if path.is_dir():
                shutil.rmtree(path)
                logger.debug(f"Directory removed: {path}")
                return True
            if path.exists():
                path.unlink()
                logger.debug(f"File removed: {path}")
                return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageException(f"Failed to remove {path}: {e}", operation="remove", original_error=e)

        return False

    @staticmethod
    def ensure_directory(path: Union[str, Path], mode: int = 0o755) -> Path:
        """Ensure directory exists; create if it doesn't"""
        path = Path(path)
        try:
            path.mkdir(parents=True, exist_ok=True, mode=mode)
        except OSError as e:
            raise StorageException(f"Failed to create directory {path}: {e}", operation="mkdir", original_error=e)
        return path

    @staticmethod
    def last_modified(path: Union[str, Path]) -> float:
        """
        Most recent modification time of a directory or any file directly inside it.

        Overwriting an existing chunk does not touch the directory mtime, so the
        entries are inspected as well.
        """
        path = Path(path)
        latest = path.stat().st_mtime
        if path.is_dir():
            with os.scandir(path) as entries:
                for entry in entries:
                    try:
                        latest = max(latest, entry.stat(follow_symlinks=False).st_mtime)
                    except FileNotFoundError:
                        continue
        return latest


def sanitize_filename(filename: str, max_length: int = 255) -> str:
    """Replace unsafe characters with underscores and bound the length"""
    name = Path(filename.replace("\\", "/")).name
    name = _UNSAFE_FILENAME_CHARS.sub("_", name)
    name = _REPEATED_UNDERSCORES.sub("_", name)
    name = name.lstrip(".") or "upload"
    return name[:max_length]


def get_extension(filename: str) -> str:
    """Get file extension (lowercase)"""
    return Path(filename).suffix.lower()


def matches_token(value: str, pattern: str) -> bool:
    """Check an identifier against an allow-list pattern"""
    return bool(value) and re.fullmatch(pattern, value) is not None

