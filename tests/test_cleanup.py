"""Tests for staging garbage collection."""
import os
import random
import time

import pytest

from chunked_transfer.core.exceptions import SessionConflictException
from chunked_transfer.models.session import SessionState
from chunked_transfer.services.cleanup_service import SessionGarbageCollector
from chunked_transfer.services.factory import build_services


async def stage(services, session_id, chunks=1):
    for index in range(chunks):
        await services.receiver.receive(
            session_id=session_id,
            chunk_index=index,
            total_chunks=2,
            file_name="city.kml",
            file_size=20,
            payload=b"x" * 10,
        )


def age(path, seconds):
    """Backdate a staging directory and everything in it."""
    stamp = time.time() - seconds
    for entry in path.iterdir():
        os.utime(entry, (stamp, stamp))
    os.utime(path, (stamp, stamp))


class TestSessionGarbageCollector:
    """Expiry of abandoned sessions"""

    async def test_expired_session_removed_recent_kept(self, services, settings):
        await stage(services, "upload_old")
        await stage(services, "upload_new")
        age(settings.staging_dir / "upload_old", 2 * 3600)
        age(settings.staging_dir / "upload_new", 10 * 60)

        result = await services.collector.sweep()

        assert result.deleted == ["upload_old"]
        assert result.scanned == 2
        assert result.skipped_active == 1
        assert not (settings.staging_dir / "upload_old").exists()
        assert (settings.staging_dir / "upload_new").exists()

    async def test_recent_chunk_keeps_old_directory_alive(self, services, settings):
        await stage(services, "upload_busy")
        staging = settings.staging_dir / "upload_busy"
        age(staging, 2 * 3600)
        os.utime(staging / "chunk_000000", None)

        result = await services.collector.sweep()

        assert result.deleted == []
        assert staging.exists()

    async def test_reassembling_session_is_never_removed(self, services, settings):
        await stage(services, "upload_busy")
        session = await services.repository.get("upload_busy")
        session.state = SessionState.REASSEMBLING
        await services.repository.upsert(session)
        age(settings.staging_dir / "upload_busy", 5 * 3600)

        result = await services.collector.sweep()

        assert result.deleted == []
        assert result.skipped_reassembling == 1
        assert (settings.staging_dir / "upload_busy").exists()

    async def test_orphaned_directory_removed(self, services, settings):
        orphan = settings.staging_dir / "upload_orphan"
        orphan.mkdir(parents=True)
        (orphan / "chunk_000000").write_bytes(b"x")
        age(orphan, 2 * 3600)

        result = await services.collector.sweep()

        assert result.deleted == ["upload_orphan"]

    async def test_foreign_directory_names_ignored(self, services, settings):
        foreign = settings.staging_dir / "not a session"
        foreign.mkdir(parents=True)
        age(foreign, 2 * 3600)

        result = await services.collector.sweep()

        assert result.scanned == 0
        assert foreign.exists()

    async def test_custom_retention(self, services, settings):
        await stage(services, "upload_young")
        age(settings.staging_dir / "upload_young", 120)

        result = await services.collector.sweep(retention_seconds=60)

        assert result.deleted == ["upload_young"]

    async def test_maybe_sweep_respects_probability(self, services, settings):
        await stage(services, "upload_old")
        age(settings.staging_dir / "upload_old", 2 * 3600)

        never = SessionGarbageCollector(services.repository, services.lock_manager, probability=0.0)
        assert await never.maybe_sweep() is None
        assert (settings.staging_dir / "upload_old").exists()

        always = SessionGarbageCollector(
            services.repository, services.lock_manager, probability=1.0, rng=random.Random(0)
        )
        result = await always.maybe_sweep()
        assert result.deleted == ["upload_old"]

    async def test_periodic_task_start_stop(self, services):
        collector = SessionGarbageCollector(services.repository, services.lock_manager, interval_seconds=3600)
        collector.start()
        assert collector._task is not None
        await collector.stop()
        assert collector._task is None


class TestDiscard:
    """Explicit cancellation"""

    async def test_discard_removes_session(self, services, settings):
        await stage(services, "upload_cancel")
        assert await services.collector.discard("upload_cancel") is True
        assert not (settings.staging_dir / "upload_cancel").exists()

    async def test_discard_unknown_session(self, services):
        assert await services.collector.discard("upload_missing") is False

    async def test_discard_refuses_reassembling_session(self, services):
        await stage(services, "upload_busy")
        session = await services.repository.get("upload_busy")
        session.state = SessionState.REASSEMBLING
        await services.repository.upsert(session)

        with pytest.raises(SessionConflictException):
            await services.collector.discard("upload_busy")


class TestInterruptedReassembly:
    """Sessions left mid-reassembly by a stopped process"""

    async def test_recover_resets_state(self, services):
        await stage(services, "upload_stuck", chunks=2)
        await stage(services, "upload_idle")
        session = await services.repository.get("upload_stuck")
        session.state = SessionState.REASSEMBLING
        await services.repository.upsert(session)

        recovered = await services.collector.recover_interrupted()

        assert recovered == ["upload_stuck"]
        session = await services.repository.get("upload_stuck")
        assert session.state == SessionState.UPLOADING
        assert session.is_complete
        assert (await services.repository.get("upload_idle")).state == SessionState.UPLOADING

    async def test_restart_makes_session_completable(self, settings):
        first = build_services(settings)
        await first.start(run_background_gc=False)
        await stage(first, "upload_stuck", chunks=2)
        session = await first.repository.get("upload_stuck")
        session.state = SessionState.REASSEMBLING
        await first.repository.upsert(session)
        await first.stop()

        second = build_services(settings)
        await second.start(run_background_gc=False)
        try:
            response = await second.reassembler.complete("upload_stuck", "city-42")
            assert response.file_size == 20
            assert (settings.upload_dir / "city-42" / "city.kml").read_bytes() == b"x" * 20
        finally:
            await second.stop()
