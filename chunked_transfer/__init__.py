"""Chunked, resumable file transfer: receiver service and upload client."""

__version__ = "1.0.0"
