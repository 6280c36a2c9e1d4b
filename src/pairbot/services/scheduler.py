"""APScheduler-based timer service for delayed session callbacks."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Coroutine

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger

from pairbot.config import SchedulerServiceConfig
from pairbot.log import get_logger
from pairbot.services.base import Service

logger = get_logger(__name__)


class SchedulerService(Service):
    """One-shot delayed jobs addressed by a caller-chosen job id.

    Job ids double as timer handles: the owner of a timer keeps its id and
    calls :meth:`cancel` before arming a replacement.
    """

    def __init__(self, config: SchedulerServiceConfig):
        self._config = config
        self._scheduler = AsyncIOScheduler(timezone=config.timezone)

    @property
    def service_name(self) -> str:
        return "scheduler"

    async def start(self) -> None:
        if not self._scheduler.running:
            self._scheduler.start()
        logger.info("scheduler_started", timezone=self._config.timezone)

    async def stop(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        logger.info("scheduler_stopped")

    async def health_check(self) -> bool:
        return self._scheduler.running

    def call_later(
        self,
        delay: float,
        callback: Callable[..., Coroutine[Any, Any, None]],
        job_id: str,
        **kwargs: Any,
    ) -> str:
        """Run ``callback(**kwargs)`` once after ``delay`` seconds. Returns the job id."""
        if self.is_pending(job_id):
            raise RuntimeError(f"Timer already armed: {job_id}")
        run_at = datetime.now(timezone.utc) + timedelta(seconds=max(delay, 0.0))
        self._scheduler.add_job(
            callback,
            DateTrigger(run_date=run_at),
            id=job_id,
            kwargs=kwargs,
            misfire_grace_time=None,
        )
        logger.debug("timer_armed", job_id=job_id, delay=delay)
        return job_id

    def cancel(self, job_id: str) -> bool:
        """Remove a pending job. Returns True if one was pending."""
        try:
            self._scheduler.remove_job(job_id)
        except JobLookupError:
            return False
        logger.debug("timer_cancelled", job_id=job_id)
        return True

    def is_pending(self, job_id: str) -> bool:
        return self._scheduler.get_job(job_id) is not None

    def pending(self) -> list[str]:
        return [job.id for job in self._scheduler.get_jobs()]
