"""Tests for chunk planning."""
import gzip
import hashlib
import random
import re

import pytest

from chunked_transfer.client.compression import CompressionPool
from chunked_transfer.client.planner import (
    ChunkPlanner,
    CompressionMode,
    generate_session_id,
    partition,
)
from chunked_transfer.core.exceptions import CompressionException, ValidationException

MiB = 1024 * 1024


class TestPartition:
    """Range partitioning"""

    def test_twelve_mib_in_five_mib_chunks(self):
        ranges = partition(12 * MiB, 5 * MiB)
        assert [length for _, length in ranges] == [5 * MiB, 5 * MiB, 2 * MiB]
        assert [offset for offset, _ in ranges] == [0, 5 * MiB, 10 * MiB]

    def test_exact_multiple_has_no_short_tail(self):
        assert partition(4096, 1024) == [(0, 1024), (1024, 1024), (2048, 1024), (3072, 1024)]

    def test_smaller_than_one_chunk(self):
        assert partition(10, 1024) == [(0, 10)]

    def test_rejects_non_positive_chunk_size(self):
        with pytest.raises(ValidationException):
            partition(100, 0)


class TestSessionId:
    """Session identifier generation"""

    def test_format(self):
        session_id = generate_session_id()
        assert re.fullmatch(r"upload_\d{13}_[a-z0-9]{9}", session_id)

    def test_unique(self):
        assert len({generate_session_id() for _ in range(50)}) == 50


class TestChunkPlanner:
    """Plan construction from files and in-memory payloads"""

    def test_chunks_cover_file_without_gaps(self, kml_file, kml_bytes):
        plan = ChunkPlanner(rng=random.Random(1)).plan(kml_file, 4096)

        ordered = sorted(plan.chunks, key=lambda c: c.index)
        assert plan.total_chunks == len(ordered) == -(-len(kml_bytes) // 4096)
        assert [c.index for c in ordered] == list(range(plan.total_chunks))
        position = 0
        for chunk in ordered:
            assert chunk.offset == position
            position += chunk.size
        assert position == plan.file_size == len(kml_bytes)
        assert b"".join(plan.read_chunk(c) for c in ordered) == kml_bytes

    def test_file_name_defaults_to_basename(self, kml_file):
        plan = ChunkPlanner().plan(kml_file, 4096)
        assert plan.file_name == "city.kml"

    def test_order_is_shuffled(self, kml_bytes):
        planner = ChunkPlanner(rng=random.Random(3))
        plan = planner.plan(kml_bytes, 1024, file_name="a.kml")
        assert sorted(c.index for c in plan.chunks) == list(range(plan.total_chunks))
        assert [c.index for c in plan.chunks] != list(range(plan.total_chunks))

    def test_shuffle_can_be_disabled(self, kml_bytes):
        plan = ChunkPlanner().plan(kml_bytes, 1024, file_name="a.kml", shuffle=False)
        assert [c.index for c in plan.chunks] == list(range(plan.total_chunks))

    def test_digest_matches_payload(self, kml_bytes):
        plan = ChunkPlanner().plan(kml_bytes, 4096, file_name="a.kml")
        assert plan.content_digest == hashlib.sha256(kml_bytes).hexdigest()

    def test_session_id_passthrough(self, kml_bytes):
        plan = ChunkPlanner().plan(kml_bytes, 4096, file_name="a.kml", session_id="upload_fixed")
        assert plan.session_id == "upload_fixed"

    def test_rejects_empty_payload(self, temp_dir):
        empty = temp_dir / "empty.kml"
        empty.write_bytes(b"")
        with pytest.raises(ValidationException):
            ChunkPlanner().plan(empty, 1024)

    def test_rejects_missing_file(self, temp_dir):
        with pytest.raises(ValidationException):
            ChunkPlanner().plan(temp_dir / "missing.kml", 1024)

    def test_rejects_chunk_size_above_ceiling(self, kml_bytes):
        with pytest.raises(ValidationException):
            ChunkPlanner(max_chunk_size=1024).plan(kml_bytes, 2048, file_name="a.kml")

    def test_in_memory_payload_needs_name(self, kml_bytes):
        with pytest.raises(ValidationException):
            ChunkPlanner().plan(kml_bytes, 1024)


class TestPlannerCompression:
    """Optional gzip of the payload"""

    def test_whole_file_compression(self, kml_bytes):
        with CompressionPool(workers=2, threshold=0) as pool:
            plan = ChunkPlanner(compression_pool=pool).plan(
                kml_bytes, 1024, file_name="a.kml", compression=CompressionMode.WHOLE
            )
            ordered = sorted(plan.chunks, key=lambda c: c.index)
            sent = b"".join(plan.read_chunk(c) for c in ordered)

        assert plan.compression == CompressionMode.WHOLE
        assert plan.original_size == len(kml_bytes)
        assert plan.file_size == len(sent) < len(kml_bytes)
        assert gzip.decompress(sent) == kml_bytes
        assert plan.content_digest == hashlib.sha256(sent).hexdigest()

    def test_per_chunk_compression_forms_multi_member_gzip(self, kml_bytes):
        with CompressionPool(workers=2, threshold=0) as pool:
            plan = ChunkPlanner(compression_pool=pool).plan(
                kml_bytes, 8192, file_name="a.kml", compression=CompressionMode.PER_CHUNK
            )
        ordered = sorted(plan.chunks, key=lambda c: c.index)
        sent = b"".join(plan.read_chunk(c) for c in ordered)

        assert plan.compression == CompressionMode.PER_CHUNK
        assert plan.total_chunks == -(-len(kml_bytes) // 8192)
        assert plan.file_size == len(sent)
        assert gzip.decompress(sent) == kml_bytes

    def test_archives_are_not_recompressed(self, temp_dir, kml_bytes):
        kmz = temp_dir / "city.kmz"
        kmz.write_bytes(b"PK\x03\x04" + kml_bytes)
        plan = ChunkPlanner().plan(kmz, 4096, compression=CompressionMode.WHOLE)
        assert plan.compression == CompressionMode.NONE
        assert plan.file_size == kmz.stat().st_size

    def test_gzip_magic_is_detected(self, kml_bytes):
        payload = gzip.compress(kml_bytes)
        plan = ChunkPlanner().plan(payload, 4096, file_name="data.kml", compression=CompressionMode.WHOLE)
        assert plan.compression == CompressionMode.NONE
        assert plan.file_size == len(payload)

    def test_compression_failure_falls_back_to_original(self, kml_bytes):
        class BrokenPool:
            def compress(self, data, level=None):
                raise CompressionException("boom")

            def compress_many(self, payloads, level=None):
                raise CompressionException("boom")

        planner = ChunkPlanner(compression_pool=BrokenPool())
        whole = planner.plan(kml_bytes, 4096, file_name="a.kml", compression=CompressionMode.WHOLE)
        per_chunk = planner.plan(kml_bytes, 4096, file_name="a.kml", compression=CompressionMode.PER_CHUNK)

        for plan in (whole, per_chunk):
            assert plan.compression == CompressionMode.NONE
            assert plan.file_size == len(kml_bytes)
            assert plan.content_digest == hashlib.sha256(kml_bytes).hexdigest()

    def test_incompressible_chunk_above_ceiling_falls_back(self):
        data = random.Random(5).randbytes(4096)
        with CompressionPool(workers=1, threshold=0) as pool:
            planner = ChunkPlanner(compression_pool=pool, max_chunk_size=2048)
            plan = planner.plan(data, 2048, file_name="noise.kml", compression=CompressionMode.PER_CHUNK)
        assert plan.compression == CompressionMode.NONE
        assert plan.total_chunks == 2
