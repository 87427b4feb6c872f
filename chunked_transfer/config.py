"""
Application configuration handle.

Modules import ``settings`` from here; the typed configuration lives in
``chunked_transfer.core.config``.
"""
from chunked_transfer.core.config import config_manager

settings = config_manager.settings

# Chunk file names inside a staging directory: chunk_000000 .. chunk_999999
CHUNK_FILE_PREFIX = "chunk_"
CHUNK_INDEX_WIDTH = 6

# Session metadata file inside a staging directory
METADATA_FILE_NAME = "metadata.json"

# Suffix for the destination file while it is being streamed
PARTIAL_SUFFIX = ".partial"

# Extensions whose content is already compressed; the client never recompresses them
COMPRESSED_EXTENSIONS = {".kmz", ".zip", ".gz", ".gzip"}
