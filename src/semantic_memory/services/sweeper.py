"""
Scheduled importance sweep.

Runs ``ImportanceEngine.sweep`` every ``interval_seconds`` in a background
asyncio task. A failing pass is logged and counted; the loop backs off and
keeps going.
"""

import asyncio
import logging
from typing import Any

from .importance_engine import ImportanceEngine, SweepReport

logger = logging.getLogger(__name__)


class ImportanceSweeper:
    def __init__(
        self,
        engine: ImportanceEngine,
        interval_seconds: float = 3600.0,
        scope: str | None = None,
        error_backoff_seconds: float = 1.0,
    ):
        """
        Args:
            engine: Importance engine whose sweep is scheduled
            interval_seconds: Delay between the end of one pass and the next
            scope: Restrict sweeps to one scope (None sweeps every scope)
            error_backoff_seconds: Extra delay after a failed pass
        """
        self._engine = engine
        self._interval = interval_seconds
        self._scope = scope
        self._error_backoff = error_backoff_seconds
        self._running = False
        self._task: asyncio.Task | None = None
        self._last_report: SweepReport | None = None
        self._stats = {"runs": 0, "recomputed": 0, "demoted": 0, "errors": 0}

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the background sweep loop."""
        if self._running:
            logger.warning("Importance sweeper already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info(f"Importance sweeper started (interval={self._interval}s)")

    async def stop(self) -> None:
        """Cancel the loop and wait for it to exit."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Importance sweeper stopped")

    async def run_once(self) -> SweepReport:
        """Run a single sweep pass now."""
        report = await self._engine.sweep(self._scope)
        self._last_report = report
        self._stats["runs"] += 1
        self._stats["recomputed"] += report.recomputed
        self._stats["demoted"] += report.demoted
        self._stats["errors"] += report.errors
        return report

    async def _loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self._interval)
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._stats["errors"] += 1
                logger.error(f"Importance sweep failed: {e}")
                await asyncio.sleep(self._error_backoff)

    def get_stats(self) -> dict[str, Any]:
        stats: dict[str, Any] = {"running": self._running, **self._stats}
        if self._last_report is not None:
            stats["last_duration_seconds"] = self._last_report.duration_seconds
        return stats
