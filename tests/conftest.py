"""Shared fixtures for the transfer test suite."""
import os

os.environ.setdefault("TRANSFER_LOG_TO_FILE", "false")

import random
import shutil
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

import pytest

from chunked_transfer.client.planner import PlannedChunk, TransferPlan
from chunked_transfer.core.config import Settings
from chunked_transfer.core.exceptions import ChunkTransferException
from chunked_transfer.services.factory import build_services


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files"""
    temp_path = tempfile.mkdtemp()
    yield Path(temp_path)
    shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def settings(temp_dir):
    """Settings pointing staging and final storage at the temp directory"""
    return Settings(
        staging_dir=temp_dir / "staging",
        upload_dir=temp_dir / "uploads",
        gc_enabled=False,
        gc_probability=0.0,
        auth_enabled=True,
        auth_username="tester",
        auth_password="secret",
        log_enable_file=False,
        client_retry_delay=0.0,
    )


@pytest.fixture
async def services(settings):
    """Started receiver services with local locks"""
    transfer_services = build_services(settings, rng=random.Random(7))
    await transfer_services.start(run_background_gc=False)
    yield transfer_services
    await transfer_services.stop()


@pytest.fixture
def kml_bytes():
    """Deterministic, compressible KML-like payload of about 40 KiB"""
    placemark = (
        "<Placemark><name>P{i}</name><Point><coordinates>"
        "{lon:.6f},{lat:.6f},0</coordinates></Point></Placemark>\n"
    )
    body = "".join(
        placemark.format(i=i, lon=13.0 + i / 1000, lat=52.0 + i / 1000) for i in range(400)
    )
    document = (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        '<kml xmlns="http://www.opengis.net/kml/2.2"><Document>\n'
        f"{body}</Document></kml>\n"
    )
    return document.encode("utf-8")


@pytest.fixture
def kml_file(temp_dir, kml_bytes):
    path = temp_dir / "city.kml"
    path.write_bytes(kml_bytes)
    return path


class InProcessTransport:
    """Transport calling the receiver services directly, without HTTP."""

    def __init__(self, services, fail_indices: Optional[Dict[int, int]] = None):
        self.services = services
        self.fail_indices = dict(fail_indices or {})
        self.sent = []

    async def send_chunk(self, plan: TransferPlan, chunk: PlannedChunk, payload: bytes) -> Dict[str, Any]:
        self.sent.append(chunk.index)
        remaining = self.fail_indices.get(chunk.index, 0)
        if remaining:
            self.fail_indices[chunk.index] = remaining - 1
            raise ChunkTransferException(f"Simulated failure for chunk {chunk.index}", status_code=503)

        response = await self.services.receiver.receive(
            session_id=plan.session_id,
            chunk_index=chunk.index,
            total_chunks=plan.total_chunks,
            file_name=plan.file_name,
            file_size=plan.file_size,
            payload=payload,
        )
        return response.model_dump()

    async def complete(self, session_id: str, destination_id: str,
                       content_digest: Optional[str] = None) -> Dict[str, Any]:
        response = await self.services.reassembler.complete(session_id, destination_id, content_digest)
        return response.model_dump()

    async def status(self, session_id: str) -> Dict[str, Any]:
        response = await self.services.status_reporter.status(session_id)
        return response.model_dump()


@pytest.fixture
def transport(services):
    return InProcessTransport(services)
