"""Periodic pipeline runs for daemon mode."""

import threading
from datetime import datetime, timezone
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from cipipeline.logging import get_logger

logger = get_logger(__name__, component="scheduler")

JOB_ID = "pipeline-run"


class SchedulerService:
    """
    Runs a pipeline callable on a fixed interval with APScheduler.

    The first run fires immediately. Overlapping runs are prevented by
    ``max_instances=1`` and missed runs coalesce into one.
    """

    def __init__(
        self,
        pipeline_callable: Callable[[], object],
        interval_seconds: int,
        pipeline_name: str = "pipeline",
        shutdown_event: Optional[threading.Event] = None,
    ):
        """
        Args:
            pipeline_callable: Called on every tick (PipelineRunner.run_once)
            interval_seconds: Seconds between runs
            pipeline_name: Used for the job name and logs
            shutdown_event: Set when the scheduler shuts down
        """
        self.pipeline_callable = pipeline_callable
        self.interval_seconds = interval_seconds
        self.pipeline_name = pipeline_name
        self.shutdown_event = shutdown_event

        self.scheduler = BackgroundScheduler(
            job_defaults={
                "max_instances": 1,
                "coalesce": True,
                "misfire_grace_time": interval_seconds,
            },
            timezone=timezone.utc,
        )

    def start(self) -> None:
        """Register the job and start the background scheduler."""
        next_run = datetime.now(timezone.utc)
        self.scheduler.add_job(
            func=self.pipeline_callable,
            trigger=IntervalTrigger(seconds=self.interval_seconds, timezone=timezone.utc),
            id=JOB_ID,
            name=f"Pipeline {self.pipeline_name}",
            replace_existing=True,
            next_run_time=next_run,
        )
        self.scheduler.start()

        logger.info(
            f"Scheduler started with interval: {self.interval_seconds} seconds",
            extra={
                "event": "scheduler.started",
                "pipeline": self.pipeline_name,
                "interval_seconds": self.interval_seconds,
                "next_run_time": next_run.isoformat(),
            },
        )

    def shutdown(self, wait: bool = False) -> None:
        """Stop the scheduler; with ``wait`` the running pipeline finishes first."""
        logger.info(
            "Shutting down scheduler",
            extra={"event": "scheduler.stopping", "wait_for_jobs": wait},
        )

        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)

        if self.shutdown_event:
            self.shutdown_event.set()

        logger.info("Scheduler shutdown complete", extra={"event": "scheduler.stopped"})

    def is_running(self) -> bool:
        return self.scheduler.running

    def get_next_run_time(self) -> Optional[datetime]:
        job = self.scheduler.get_job(JOB_ID)
        return job.next_run_time if job else None
