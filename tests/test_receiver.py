"""Tests for chunk reception and staging."""
import asyncio
import json

import pytest

from chunked_transfer.core.exceptions import SessionConflictException, ValidationException
from chunked_transfer.models.session import SessionState

SESSION = "upload_1700000000000_abcdefghi"


async def send(services, index, payload=b"x" * 100, total=3, name="city.kml", size=300, session_id=SESSION):
    return await services.receiver.receive(
        session_id=session_id,
        chunk_index=index,
        total_chunks=total,
        file_name=name,
        file_size=size,
        payload=payload,
    )


class TestChunkValidation:
    """Input that must be rejected before anything is written"""

    @pytest.mark.parametrize("session_id", ["../etc", "a/b", "", "x" * 129, "bad id"])
    async def test_invalid_session_id(self, services, session_id):
        with pytest.raises(ValidationException):
            await send(services, 0, session_id=session_id)

    async def test_index_out_of_range(self, services):
        with pytest.raises(ValidationException) as exc_info:
            await send(services, 3)
        assert exc_info.value.details["field"] == "chunk_index"

    async def test_negative_index(self, services):
        with pytest.raises(ValidationException):
            await send(services, -1)

    async def test_empty_payload(self, services):
        with pytest.raises(ValidationException):
            await send(services, 0, payload=b"")

    async def test_oversized_payload(self, services, settings):
        with pytest.raises(ValidationException):
            await send(services, 0, payload=b"x" * (settings.max_chunk_size + 1), size=settings.max_chunk_size * 3)

    @pytest.mark.parametrize("name", ["city.txt", "city", "../city.kml", "dir\\city.kml"])
    async def test_rejected_file_names(self, services, name):
        with pytest.raises(ValidationException):
            await send(services, 0, name=name)

    async def test_nothing_staged_after_rejection(self, services, settings):
        with pytest.raises(ValidationException):
            await send(services, 0, name="city.exe")
        assert not (settings.staging_dir / SESSION).exists()


class TestChunkReceiver:
    """Persisting chunks"""

    async def test_first_chunk_creates_session(self, services, settings):
        response = await send(services, 0)

        assert response.accepted
        assert response.received_count == 1
        assert response.total_chunks == 3
        staging = settings.staging_dir / SESSION
        assert (staging / "chunk_000000").read_bytes() == b"x" * 100
        metadata = json.loads((staging / "metadata.json").read_text())
        assert metadata["file_name"] == "city.kml"
        assert metadata["received_chunk_indices"] == [0]
        assert metadata["state"] == "uploading"

    async def test_out_of_order_first_chunk_creates_session(self, services):
        response = await send(services, 2)
        assert response.received_count == 1

        session = await services.repository.get(SESSION)
        assert session.received_chunk_indices == {2}
        assert session.missing_chunks() == [0, 1]

    async def test_resend_is_idempotent(self, services, settings):
        await send(services, 1, payload=b"a" * 100)
        response = await send(services, 1, payload=b"b" * 100)

        assert response.received_count == 1
        assert (settings.staging_dir / SESSION / "chunk_000001").read_bytes() == b"b" * 100

    async def test_metadata_mismatch_rejected(self, services):
        await send(services, 0)
        with pytest.raises(ValidationException):
            await send(services, 1, total=4)
        with pytest.raises(ValidationException):
            await send(services, 1, size=301)
        with pytest.raises(ValidationException):
            await send(services, 1, name="other.kml")

    async def test_chunk_rejected_while_reassembling(self, services):
        await send(services, 0)
        session = await services.repository.get(SESSION)
        session.state = SessionState.REASSEMBLING
        await services.repository.upsert(session)

        with pytest.raises(SessionConflictException):
            await send(services, 1)

    async def test_concurrent_chunks_are_all_recorded(self, services, settings):
        total = 20
        await asyncio.gather(*[
            send(services, index, payload=bytes([index]) * 10, total=total, size=10 * total)
            for index in reversed(range(total))
        ])

        session = await services.repository.get(SESSION)
        assert session.received_chunk_indices == set(range(total))
        assert session.is_complete
        staging = settings.staging_dir / SESSION
        assert sorted(p.name for p in staging.glob("chunk_*")) == [f"chunk_{i:06d}" for i in range(total)]
        assert not list(staging.glob(".*.tmp"))

    async def test_locks_are_released(self, services):
        await asyncio.gather(*[send(services, i) for i in range(3)])
        assert services.lock_manager.active_locks == 0
