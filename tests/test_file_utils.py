"""Tests for file helpers."""
import os
import time

import pytest

from chunked_transfer.core.exceptions import StorageException
from chunked_transfer.utils.file_utils import (
    FileProcessor,
    get_extension,
    matches_token,
    sanitize_filename,
)


class TestFileProcessor:
    """Removal, directories and staleness"""

    def test_safe_remove_is_idempotent(self, temp_dir):
        directory = temp_dir / "staging" / "upload_a"
        directory.mkdir(parents=True)
        (directory / "chunk_000000").write_bytes(b"x")

        assert FileProcessor.safe_remove(directory) is True
        assert FileProcessor.safe_remove(directory) is False
        assert not directory.exists()

    def test_safe_remove_file(self, temp_dir):
        path = temp_dir / ".city.kml.tmp"
        path.write_bytes(b"x")
        assert FileProcessor.safe_remove(path) is True
        assert not path.exists()

    def test_ensure_directory_is_idempotent(self, temp_dir):
        target = temp_dir / "uploads" / "city-42"
        assert FileProcessor.ensure_directory(target) == target
        assert FileProcessor.ensure_directory(target).is_dir()

    def test_ensure_directory_over_a_file(self, temp_dir):
        blocker = temp_dir / "uploads"
        blocker.write_bytes(b"x")
        with pytest.raises(StorageException):
            FileProcessor.ensure_directory(blocker / "city-42")

    def test_last_modified_uses_newest_entry(self, temp_dir):
        directory = temp_dir / "upload_b"
        directory.mkdir()
        chunk = directory / "chunk_000000"
        chunk.write_bytes(b"x")
        old = time.time() - 7200
        os.utime(directory, (old, old))
        os.utime(chunk, (old + 60, old + 60))

        assert FileProcessor.last_modified(directory) == pytest.approx(old + 60)


class TestNameHelpers:
    """Name sanitizing and allow-lists"""

    @pytest.mark.parametrize("raw, expected", [
        ("city.kml", "city.kml"),
        ("my city (v2).kml", "my_city_v2_.kml"),
        ("../../etc/passwd", "passwd"),
        ("..\\evil.kml", "evil.kml"),
        (".hidden.kml", "hidden.kml"),
    ])
    def test_sanitize_filename(self, raw, expected):
        assert sanitize_filename(raw) == expected

    def test_sanitize_bounds_length(self):
        assert len(sanitize_filename("a" * 300 + ".kml", max_length=50)) == 50

    def test_extension_is_lower_case(self):
        assert get_extension("CITY.KMZ") == ".kmz"
        assert get_extension("city") == ""

    def test_matches_token(self):
        pattern = r"^[A-Za-z0-9_-]{1,128}$"
        assert matches_token("upload_1700000000000_abc", pattern)
        assert not matches_token("", pattern)
        assert not matches_token("a/b", pattern)
        assert not matches_token("..", pattern)
