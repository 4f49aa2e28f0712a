"""
Scheduler Service

APScheduler-based interval jobs for the console (per-agent scheduled-order
visibility checks). Jobs are keyed by id so an owner can remove exactly the
job it added.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, JobExecutionEvent
from apscheduler.job import Job
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from dispatch_console.core.config import get_settings

logger = logging.getLogger(__name__)


class SchedulerService:
    _instance: Optional["SchedulerService"] = None

    def __init__(self, timezone: str = "UTC"):
        self.timezone = timezone
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._job_metadata: Dict[str, Dict[str, Any]] = {}

    @classmethod
    def get_instance(cls) -> "SchedulerService":
        if cls._instance is None:
            cls._instance = cls(timezone=get_settings().timezone)
        return cls._instance

    def start(self) -> None:
        if self._scheduler is not None and self._scheduler.running:
            logger.warning("Scheduler already running")
            return

        self._scheduler = AsyncIOScheduler(
            timezone=self.timezone,
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": 30,
            },
        )
        self._scheduler.add_listener(self._on_job_executed, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)
        self._scheduler.start()
        logger.info("Scheduler started")

    def shutdown(self, wait: bool = False) -> None:
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=wait)
            self._scheduler = None
            self._job_metadata.clear()
            logger.info("Scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    # =========================================================================
    # Job Management
    # =========================================================================

    def add_interval_job(
        self,
        job_id: str,
        func: Callable[..., Awaitable[None]],
        seconds: int,
        *,
        args: Optional[List[Any]] = None,
    ) -> None:
        """Add (or replace) an interval job."""
        if self._scheduler is None:
            raise RuntimeError("Scheduler is not started")

        self._scheduler.add_job(
            func=func,
            trigger=IntervalTrigger(seconds=seconds, timezone=self.timezone),
            id=job_id,
            args=args or [],
            name=job_id,
            replace_existing=True,
        )
        self._job_metadata[job_id] = {
            "interval_seconds": seconds,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        logger.info(f"Interval job added: {job_id} every {seconds}s")

    def get_job(self, job_id: str) -> Optional[Job]:
        if self._scheduler is None:
            return None
        return self._scheduler.get_job(job_id)

    def remove_job(self, job_id: str) -> None:
        self._job_metadata.pop(job_id, None)
        if self.get_job(job_id) is not None:
            self._scheduler.remove_job(job_id)
            logger.info(f"Job removed: {job_id}")

    def list_jobs(self) -> List[Dict[str, Any]]:
        """Registered jobs with their interval, next run and last outcome."""
        jobs = []
        for job_id, metadata in self._job_metadata.items():
            job = self.get_job(job_id)
            next_run_time = job.next_run_time.isoformat() if job is not None and job.next_run_time else None
            jobs.append({"job_id": job_id, "next_run_time": next_run_time, **metadata})
        return jobs

    def _on_job_executed(self, event: JobExecutionEvent) -> None:
        metadata = self._job_metadata.get(event.job_id)
        if metadata is None:
            return
        metadata["last_run_time"] = datetime.now(timezone.utc).isoformat()
        if event.exception is not None:
            metadata["last_error"] = str(event.exception)
            logger.error(f"Job failed: {event.job_id} - {event.exception}")
        else:
            metadata.pop("last_error", None)


def get_scheduler_service() -> SchedulerService:
    return SchedulerService.get_instance()
