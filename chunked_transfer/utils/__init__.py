"""Utility modules - provide common utility functions and classes."""
from chunked_transfer.utils.file_utils import FileProcessor, get_extension, matches_token, sanitize_filename
from chunked_transfer.utils.logger import get_logger, setup_logger

__all__ = [
    "FileProcessor",
    "get_extension",
    "matches_token",
    "sanitize_filename",
    "setup_logger",
    "get_logger",
]
