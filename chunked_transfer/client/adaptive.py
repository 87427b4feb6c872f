"""Adaptive chunk sizing from observed throughput."""
import logging
from collections import deque
from typing import Deque, Optional

from chunked_transfer.utils.logger import get_logger

logger: logging.Logger = get_logger(__name__)

MiB = 1024 * 1024


class AdaptiveSizingController:
    """
    Picks the chunk size that should take about ``target_duration`` seconds to send.

    Samples are ``bytes / seconds`` of completed chunks, kept in a rolling
    window. Until ``min_samples`` are present the default size applies. The
    value only feeds future planning; chunks already planned keep their size.
    """

    def __init__(
        self,
        default_chunk_size: int = 5 * MiB,
        min_chunk_size: int = 1 * MiB,
        max_chunk_size: int = 10 * MiB,
        target_duration: float = 2.0,
        window: int = 10,
        min_samples: int = 3
    ):
        if not min_chunk_size <= default_chunk_size <= max_chunk_size:
            raise ValueError("default_chunk_size must lie between min_chunk_size and max_chunk_size")
        self.default_chunk_size = default_chunk_size
        self.min_chunk_size = min_chunk_size
        self.max_chunk_size = max_chunk_size
        self.target_duration = target_duration
        self.min_samples = min_samples
        self._samples: Deque[float] = deque(maxlen=window)
        self._chunk_size = default_chunk_size

    def record(self, bytes_sent: int, elapsed: float) -> int:
        """Add one observation and return the updated chunk size."""
        if elapsed <= 0 or bytes_sent <= 0:
            return self._chunk_size

        self._samples.append(bytes_sent / elapsed)
        if len(self._samples) >= self.min_samples:
            average = sum(self._samples) / len(self._samples)
            proposed = int(average * self.target_duration)
            new_size = max(self.min_chunk_size, min(self.max_chunk_size, proposed))
            if new_size != self._chunk_size:
                logger.debug(
                    "Chunk size adjusted %d -> %d bytes (avg %.2f MB/s)",
                    self._chunk_size, new_size, average / MiB
                )
            self._chunk_size = new_size
        return self._chunk_size

    @property
    def next_chunk_size(self) -> int:
        return self._chunk_size

    @property
    def average_throughput(self) -> Optional[float]:
        """Bytes per second over the window, or None without samples"""
        if not self._samples:
            return None
        return sum(self._samples) / len(self._samples)

    @property
    def sample_count(self) -> int:
        return len(self._samples)

    def reset(self) -> None:
        self._samples.clear()
        self._chunk_size = self.default_chunk_size
