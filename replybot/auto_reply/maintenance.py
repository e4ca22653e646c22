"""Periodic eviction of stale auto-reply state."""

import asyncio

from loguru import logger

from replybot.auto_reply.dispatch import DispatchPipeline


class MaintenanceService:
    """
    Runs ``DispatchPipeline.run_maintenance`` on a fixed interval.

    The first pass happens one interval after start.
    """

    def __init__(self, pipeline: DispatchPipeline, every_seconds: float = 3600):
        self.pipeline = pipeline
        self.every_seconds = every_seconds
        self._running = False
        self._task: asyncio.Task | None = None
        self._runs = 0

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the maintenance loop."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info(f"Maintenance service started (every {self.every_seconds}s)")

    async def stop(self) -> None:
        """Stop the maintenance loop."""
        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("Maintenance service stopped")

    async def run_once(self) -> dict[str, int]:
        """Run a single maintenance pass now."""
        result = await self.pipeline.run_maintenance()
        self._runs += 1
        return result

    async def _loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.every_seconds)
                await self.run_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in maintenance loop: {e}")

    def get_stats(self) -> dict[str, int | bool | float]:
        return {
            "running": self._running,
            "every_seconds": self.every_seconds,
            "runs": self._runs,
        }
