"""Sweep worker — drives SchedulerService.process_pending_tasks on a timer.

Sweeps once on start, then every `interval_seconds` until stopped. A
failing sweep is logged and the loop carries on; the interval is the
retry backoff for failed tasks.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING

from event_coming.config import SchedulerConfig

if TYPE_CHECKING:
    from event_coming.core.scheduler import SchedulerService

logger = logging.getLogger(__name__)


class SchedulerWorker:
    def __init__(
        self, scheduler: SchedulerService, config: SchedulerConfig | None = None,
    ) -> None:
        self._scheduler = scheduler
        self._config = config or SchedulerConfig()
        self._stop = asyncio.Event()

    async def run(self) -> None:
        logger.info(
            "Scheduler worker started (interval=%.0fs, batch_size=%d)",
            self._config.interval_seconds, self._config.batch_size,
        )
        await self.run_once()
        while not self._stop.is_set():
            try:
                await asyncio.wait_for(
                    self._stop.wait(), timeout=self._config.interval_seconds,
                )
            except asyncio.TimeoutError:
                await self.run_once()
        logger.info("Scheduler worker stopped")

    async def run_once(self) -> int:
        """One sweep. Returns the number of tasks processed (0 on error)."""
        start = time.monotonic()
        try:
            processed = await self._scheduler.process_pending_tasks(self._config.batch_size)
        except Exception as exc:
            logger.error("Failed to process scheduled tasks: %s", exc)
            return 0

        if processed:
            logger.info(
                "Processed %d scheduled tasks in %.2fs",
                processed, time.monotonic() - start,
            )
        return processed

    def stop(self) -> None:
        self._stop.set()
