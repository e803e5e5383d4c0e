"""
In-process scheduling driver.

Each long-running service (sync orchestrator, repricing scheduler) owns its
own IntervalDriver; there is no module-level scheduler. In production the
driver is usually left off and an external cron calls the scheduler webhooks
instead.
"""

import logging
from datetime import timedelta
from typing import Any, Awaitable, Callable, Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.core.utils import utcnow

logger = logging.getLogger(__name__)


def job_listener(event):
    """Listen to job events for logging"""
    if event.exception:
        logger.error(f"Job {event.job_id} crashed: {event.exception}")
    else:
        logger.info(f"Job {event.job_id} executed successfully at {utcnow().isoformat()}")


class IntervalDriver:
    """Runs one coroutine function on a fixed interval, never overlapping itself."""

    def __init__(self, name: str, scheduler: Optional[AsyncIOScheduler] = None):
        self.name = name
        self.job_id = f"{name}_cycle"
        self._scheduler = scheduler

    def _ensure_scheduler(self) -> AsyncIOScheduler:
        # Created lazily so it binds to the running event loop
        if self._scheduler is None:
            self._scheduler = AsyncIOScheduler(timezone="UTC")
            self._scheduler.add_listener(job_listener, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("Scheduler for %s started", self.name)
        return self._scheduler

    def start(
        self,
        func: Callable[[], Awaitable[Any]],
        interval_minutes: int,
        run_immediately: bool = True,
    ) -> None:
        scheduler = self._ensure_scheduler()
        job_kwargs = {}
        if run_immediately:
            job_kwargs["next_run_time"] = utcnow()

        scheduler.add_job(
            func,
            IntervalTrigger(minutes=interval_minutes),
            id=self.job_id,
            name=f"{self.name} cycle",
            replace_existing=True,
            max_instances=1,  # Only one cycle at a time
            coalesce=True,
            misfire_grace_time=60,
            **job_kwargs,
        )
        logger.info("Scheduled %s every %s minute(s)", self.name, interval_minutes)

    def reschedule(self, interval_minutes: int) -> None:
        """Restart the timer with a new interval; the next run is one full interval away."""
        if not self.is_scheduled:
            return
        self._scheduler.reschedule_job(self.job_id, trigger=IntervalTrigger(minutes=interval_minutes))
        logger.info("Rescheduled %s to every %s minute(s)", self.name, interval_minutes)

    def stop(self) -> None:
        """Remove the job; a cycle already running is left to finish."""
        if self.is_scheduled:
            self._scheduler.remove_job(self.job_id)
            logger.info("Stopped scheduled %s", self.name)

    def shutdown(self) -> None:
        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Scheduler for %s shut down", self.name)

    @property
    def is_scheduled(self) -> bool:
        return (
            self._scheduler is not None
            and self._scheduler.running
            and self._scheduler.get_job(self.job_id) is not None
        )

    @property
    def interval(self) -> Optional[timedelta]:
        if not self.is_scheduled:
            return None
        return self._scheduler.get_job(self.job_id).trigger.interval

    @property
    def next_run_time(self):
        if not self.is_scheduled:
            return None
        return self._scheduler.get_job(self.job_id).next_run_time
