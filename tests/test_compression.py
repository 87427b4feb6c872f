"""Tests for the compression pool."""
import gzip

import pytest

from chunked_transfer.client.compression import (
    CompressionPool,
    gzip_payload,
    is_already_compressed,
)
from chunked_transfer.core.exceptions import CompressionException


class TestGzipPayload:
    """Single payload compression"""

    def test_round_trip_and_statistics(self, kml_bytes):
        result = gzip_payload(kml_bytes, level=6)
        assert gzip.decompress(result.data) == kml_bytes
        assert result.original_size == len(kml_bytes)
        assert result.compressed_size == len(result.data)
        assert 0 < result.ratio < 100

    def test_output_is_deterministic(self, kml_bytes):
        assert gzip_payload(kml_bytes).data == gzip_payload(kml_bytes).data

    def test_invalid_level_raises_compression_error(self, kml_bytes):
        with pytest.raises(CompressionException):
            gzip_payload(kml_bytes, level=42)


class TestAlreadyCompressed:
    """Detection of archives"""

    @pytest.mark.parametrize("name", ["city.kmz", "CITY.KMZ", "bundle.zip", "data.gz"])
    def test_extensions(self, name):
        assert is_already_compressed(name)

    def test_magic_bytes(self):
        assert is_already_compressed("city.kml", b"PK\x03\x04")
        assert is_already_compressed("city.kml", b"\x1f\x8b\x08\x00")

    def test_plain_kml(self):
        assert not is_already_compressed("city.kml", b"<?xm")


class TestCompressionPool:
    """Inline and background compression"""

    def test_small_payload_is_compressed_inline(self, kml_bytes):
        with CompressionPool(workers=1, threshold=len(kml_bytes)) as pool:
            submitted = []
            pool.submit = lambda data, level=None: submitted.append(data)
            result = pool.compress(kml_bytes)

        assert gzip.decompress(result.data) == kml_bytes
        assert submitted == []

    def test_large_payload_uses_worker(self, kml_bytes):
        with CompressionPool(workers=2, threshold=16) as pool:
            result = pool.compress(kml_bytes)
        assert gzip.decompress(result.data) == kml_bytes

    def test_compress_many_keeps_order(self):
        payloads = [bytes([i]) * (1000 + i) for i in range(8)]
        with CompressionPool(workers=2, threshold=0) as pool:
            results = pool.compress_many(payloads)
        assert [gzip.decompress(r.data) for r in results] == payloads

    def test_failed_task_does_not_poison_pool(self, kml_bytes):
        with CompressionPool(workers=1, threshold=0) as pool:
            failing = pool.submit(kml_bytes, level=42)
            with pytest.raises(CompressionException):
                failing.result()
            assert gzip.decompress(pool.compress(kml_bytes).data) == kml_bytes

    async def test_compress_async(self, kml_bytes):
        with CompressionPool(workers=2, threshold=0) as pool:
            result = await pool.compress_async(kml_bytes)
        assert gzip.decompress(result.data) == kml_bytes

    def test_closed_pool_rejects_work(self, kml_bytes):
        pool = CompressionPool(workers=1)
        pool.close()
        with pytest.raises(CompressionException):
            pool.submit(kml_bytes)

    def test_requires_a_worker(self):
        with pytest.raises(ValueError):
            CompressionPool(workers=0)

    @pytest.mark.parametrize("threshold", [0, 10 ** 9])
    def test_explicit_level_zero_is_kept(self, kml_bytes, threshold):
        with CompressionPool(workers=1, threshold=threshold, level=9) as pool:
            stored = pool.compress(kml_bytes, level=0)
            default = pool.compress(kml_bytes)
        assert stored.data == gzip_payload(kml_bytes, level=0).data
        assert stored.compressed_size > len(kml_bytes)
        assert default.data == gzip_payload(kml_bytes, level=9).data
