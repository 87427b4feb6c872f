"""Tests for per-session locks and service wiring."""
import asyncio

from chunked_transfer.core.service_protocols import FinalStorage, SessionLockManager, SessionRepository
from chunked_transfer.services.factory import build_services
from chunked_transfer.services.session_lock import LocalSessionLockManager, RedisSessionLockManager


class TestLocalSessionLockManager:
    """In-process session locks"""

    async def test_same_session_is_serialized(self):
        manager = LocalSessionLockManager()
        inside = 0
        peak = 0

        async def critical():
            nonlocal inside, peak
            async with manager.lock("upload_a"):
                inside += 1
                peak = max(peak, inside)
                await asyncio.sleep(0.01)
                inside -= 1

        await asyncio.gather(*[critical() for _ in range(5)])
        assert peak == 1
        assert manager.active_locks == 0

    async def test_different_sessions_do_not_block(self):
        manager = LocalSessionLockManager()
        async with manager.lock("upload_a"):
            await asyncio.wait_for(self._enter(manager, "upload_b"), timeout=1)

    async def test_lock_released_on_error(self):
        manager = LocalSessionLockManager()
        try:
            async with manager.lock("upload_a"):
                raise RuntimeError("boom")
        except RuntimeError:
            pass
        await asyncio.wait_for(self._enter(manager, "upload_a"), timeout=1)
        assert manager.active_locks == 0

    @staticmethod
    async def _enter(manager, session_id):
        async with manager.lock(session_id):
            return True


class TestTransferServices:
    """Startup of the receiver components"""

    async def test_unreachable_redis_falls_back_to_local_locks(self, settings):
        settings.lock_backend = "redis"
        settings.redis_url = "redis://127.0.0.1:1/0"
        settings.redis_connection_pool_timeout = 1
        services = build_services(settings)
        assert isinstance(services.lock_manager, RedisSessionLockManager)

        await services.start(run_background_gc=False)
        try:
            assert isinstance(services.lock_manager, LocalSessionLockManager)
            assert services.receiver.lock_manager is services.lock_manager
            assert services.reassembler.lock_manager is services.lock_manager
            assert services.collector.lock_manager is services.lock_manager
        finally:
            await services.stop()

    async def test_start_creates_directories(self, settings):
        services = build_services(settings)
        await services.start(run_background_gc=False)
        try:
            assert settings.staging_dir.is_dir()
            assert settings.upload_dir.is_dir()
        finally:
            await services.stop()

    def test_components_satisfy_protocols(self, settings):
        services = build_services(settings)
        assert isinstance(services.repository, SessionRepository)
        assert isinstance(services.lock_manager, SessionLockManager)
        assert isinstance(services.storage, FinalStorage)
