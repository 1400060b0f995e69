"""APScheduler wrapper driving periodic and visibility-triggered refreshes."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..logging_conf import component_logger

if TYPE_CHECKING:
    from ..manager import DuplicateDataManager

AUTO_REFRESH_JOB_ID = "duplicate-info::auto-refresh"


class AutoRefreshScheduler:
    """Refresh the manager on an interval while the surface is visible."""

    def __init__(
        self,
        manager: "DuplicateDataManager",
        interval: float | None = None,
        scheduler: Any | None = None,
    ) -> None:
        self.manager = manager
        self.interval = manager.config.cache.refresh_interval if interval is None else interval
        self.scheduler = scheduler or AsyncIOScheduler()
        self.logger = component_logger("scheduler")
        self.visible = True
        self.started = False
        self._tasks: set[asyncio.Task] = set()

    def start(self) -> None:
        if self.started:
            return
        if self.interval <= 0:
            self.logger.info("auto_refresh_disabled", interval=self.interval)
            return
        self.scheduler.add_job(
            self._tick,
            trigger=IntervalTrigger(seconds=float(self.interval)),
            id=AUTO_REFRESH_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        self.started = True
        self.logger.info("auto_refresh_started", interval=self.interval)

    def shutdown(self) -> None:
        if self.started:
            self.scheduler.shutdown(wait=False)
            self.started = False
            self.logger.info("auto_refresh_stopped")
        for task in list(self._tasks):
            task.cancel()

    async def _tick(self) -> bool:
        if self.manager.tracker.is_loading:
            self.logger.debug("auto_refresh_skipped", reason="loading")
            return False
        if not self.visible:
            self.logger.debug("auto_refresh_skipped", reason="hidden")
            return False
        return await self._refresh("auto-refresh")

    async def _refresh(self, reason: str) -> bool:
        try:
            await self.manager.refresh(reason)
        except Exception as exc:  # noqa: BLE001
            self.logger.warning("auto_refresh_failed", reason=reason, error=str(exc))
            return False
        return True

    def set_visible(self, visible: bool) -> asyncio.Task | None:
        """Record visibility; regaining it schedules a refresh when one is due."""

        was_hidden = not self.visible
        self.visible = visible
        if not (visible and was_hidden):
            return None
        if not self.manager.should_refresh_on_visible():
            return None
        task = asyncio.get_running_loop().create_task(self._refresh("visibility-change"))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def list_jobs(self) -> list[dict]:
        jobs = []
        for job in self.scheduler.get_jobs():
            jobs.append(
                {
                    "id": job.id,
                    "next_run_time": getattr(job, "next_run_time", None),
                    "trigger": str(job.trigger),
                }
            )
        return jobs


__all__ = ["AUTO_REFRESH_JOB_ID", "AutoRefreshScheduler"]
