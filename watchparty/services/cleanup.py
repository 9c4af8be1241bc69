"""
Periodic cleanup of idle rooms.
"""

import asyncio
import logging
from typing import Optional

from ..config import ROOM_CLEANUP_INTERVAL, ROOM_TIMEOUT
from .room_registry import RoomRegistry

logger = logging.getLogger("watchparty.services.cleanup")


class CleanupScheduler:
    """Sweeps idle rooms out of the registry and the store on a fixed interval.

    Runs independently of the per-room expiry timers so rooms whose timer never
    fired (or that were never rehydrated after a restart) are still reclaimed.
    """

    def __init__(self, registry: RoomRegistry, interval: float = ROOM_CLEANUP_INTERVAL,
                 idle_timeout: float = ROOM_TIMEOUT):
        self.registry = registry
        self.interval = interval
        self.idle_timeout = idle_timeout
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self._run())
            logger.info(f"🧹 Cleanup scheduled every {self.interval}s (idle timeout {self.idle_timeout}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"❌ Room cleanup failed: {e}")

    async def run_once(self) -> int:
        """Run a single sweep. Returns the number of rooms removed."""
        removed = await self.registry.sweep_idle(self.idle_timeout)

        store = self.registry.store
        if store is not None:
            # Let the evictions' deletes land so the store sweep only counts its own rooms.
            await self.registry.flush()
            try:
                removed += await store.sweep_inactive(self.idle_timeout)
            except Exception as e:
                logger.error(f"❌ Failed to sweep inactive rooms from store: {e}")

        if removed:
            logger.info(f"🧹 Cleaned up {removed} inactive rooms")
        return removed
