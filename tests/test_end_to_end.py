"""End-to-end transfers from the uploader into the receiver services."""
import gzip
import hashlib
import random

import pytest

from chunked_transfer.client.orchestrator import UploadState
from chunked_transfer.client.planner import ChunkPlanner, CompressionMode
from chunked_transfer.client.uploader import ChunkedUploader
from chunked_transfer.core.exceptions import (
    SessionNotFoundException,
    UploadFailedException,
    ValidationException,
)
from tests.conftest import InProcessTransport

CHUNK = 4096


@pytest.fixture
def client_config(settings):
    config = settings.get_client_config()
    config.concurrency = 3
    config.max_attempts = 3
    config.retry_delay = 0.0
    return config


@pytest.fixture
def uploader(transport, client_config):
    chunked_uploader = ChunkedUploader(transport, client_config)
    yield chunked_uploader
    chunked_uploader.close()


class TestEndToEnd:
    """Uploader, receiver and reassembler together"""

    async def test_file_arrives_byte_identical(self, uploader, kml_file, kml_bytes, settings):
        summary = await uploader.upload_file(kml_file, "city-42", chunk_size=CHUNK)

        assert summary.state == UploadState.COMPLETED
        final_path = settings.upload_dir / "city-42" / "city.kml"
        assert final_path.read_bytes() == kml_bytes
        assert summary.result["content_digest"] == hashlib.sha256(kml_bytes).hexdigest()
        assert not (settings.staging_dir / summary.session_id).exists()

    async def test_whole_file_compression(self, uploader, kml_file, kml_bytes, settings):
        summary = await uploader.upload_file(
            kml_file, "city-42", chunk_size=1024, compression=CompressionMode.WHOLE
        )
        stored = (settings.upload_dir / "city-42" / "city.kml").read_bytes()
        assert summary.result["file_size"] == len(stored) < len(kml_bytes)
        assert gzip.decompress(stored) == kml_bytes

    async def test_per_chunk_compression(self, uploader, kml_file, kml_bytes, settings):
        await uploader.upload_file(kml_file, "city-42", chunk_size=CHUNK, compression=CompressionMode.PER_CHUNK)
        stored = (settings.upload_dir / "city-42" / "city.kml").read_bytes()
        assert gzip.decompress(stored) == kml_bytes

    async def test_transient_failures_recovered(self, services, client_config, kml_file, kml_bytes, settings):
        transport = InProcessTransport(services, fail_indices={0: 2, 4: 1})
        uploader = ChunkedUploader(transport, client_config)
        try:
            summary = await uploader.upload_file(kml_file, "city-42", chunk_size=CHUNK)
        finally:
            uploader.close()

        assert summary.retried_chunks == 2
        assert (settings.upload_dir / "city-42" / "city.kml").read_bytes() == kml_bytes

    async def test_adaptive_size_applies_to_next_transfer(self, uploader, kml_file):
        assert uploader.next_chunk_size() == uploader.config.chunk_size
        await uploader.upload_file(kml_file, "city-42", chunk_size=CHUNK)
        assert uploader.sizing_controller.sample_count > 0
        assert uploader.config.min_chunk_size <= uploader.next_chunk_size() <= uploader.config.max_chunk_size


class TestResume:
    """Continuing an interrupted session"""

    async def test_resume_sends_only_missing_chunks(self, services, client_config, kml_file, kml_bytes, settings):
        failing = InProcessTransport(services, fail_indices={3: -1})
        first = ChunkedUploader(failing, client_config)
        try:
            with pytest.raises(UploadFailedException) as exc_info:
                await first.upload_file(kml_file, "city-42", chunk_size=CHUNK)
        finally:
            first.close()

        session_id = exc_info.value.session_id
        status = await services.status_reporter.status(session_id)
        assert status.state == "in_progress"
        assert 3 in status.missing_chunks

        healthy = InProcessTransport(services)
        second = ChunkedUploader(healthy, client_config)
        try:
            summary = await second.resume(kml_file, session_id, "city-42", CHUNK)
        finally:
            second.close()

        assert summary.state == UploadState.COMPLETED
        assert sorted(healthy.sent) == sorted(status.missing_chunks)
        assert (settings.upload_dir / "city-42" / "city.kml").read_bytes() == kml_bytes

    async def test_resume_unknown_session(self, uploader, kml_file):
        with pytest.raises(SessionNotFoundException):
            await uploader.resume(kml_file, "upload_gone", "city-42", CHUNK)

    async def test_resume_with_different_chunk_size_rejected(self, services, uploader, kml_file, kml_bytes):
        plan = ChunkPlanner(rng=random.Random(2)).plan(kml_file, CHUNK, session_id="upload_partial")
        chunk = next(c for c in plan.chunks if c.index == 0)
        await services.receiver.receive(
            session_id=plan.session_id,
            chunk_index=0,
            total_chunks=plan.total_chunks,
            file_name=plan.file_name,
            file_size=plan.file_size,
            payload=plan.read_chunk(chunk),
        )

        with pytest.raises(ValidationException):
            await uploader.resume(kml_file, "upload_partial", "city-42", CHUNK * 2)
