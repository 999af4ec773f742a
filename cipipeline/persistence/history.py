"""Session-scoped facade the runner uses to number and record builds."""

from datetime import datetime
from typing import Optional, Sequence

from cipipeline.domain.models import BuildRecord, StageRecord
from cipipeline.logging import get_logger

from .database import get_session
from .repositories import BuildRepository

logger = get_logger(__name__, component="history")


class BuildHistory:
    """Opens one short session per call so a long run never holds a transaction."""

    def start(self, pipeline_name: str, run_id: str, started_at: datetime) -> int:
        """Record a RUNNING build and return its build number."""
        with get_session() as session:
            record = BuildRepository(session).start_build(pipeline_name, run_id, started_at)

        logger.info(
            f"Build {pipeline_name} #{record.build_number} started",
            extra={"event": "history.build.started", "build_number": record.build_number},
        )
        return record.build_number

    def finish(
        self,
        run_id: str,
        status: str,
        finished_at: datetime,
        duration_seconds: float,
        stages: Sequence[StageRecord],
    ) -> BuildRecord:
        with get_session() as session:
            record = BuildRepository(session).finish_build(
                run_id, status, finished_at, duration_seconds, stages
            )

        logger.info(
            f"Build {record.pipeline_name} #{record.build_number} recorded as {status}",
            extra={"event": "history.build.finished", "status": status},
        )
        return record

    def previous_status(self, pipeline_name: str) -> Optional[str]:
        with get_session() as session:
            return BuildRepository(session).last_status(pipeline_name)
