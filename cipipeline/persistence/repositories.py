"""Build history repository.

Returns domain models (BuildRecord) rather than ORM rows, and translates
SQLAlchemy errors into persistence exceptions.
"""

import logging
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from cipipeline.domain.models import BuildRecord, StageRecord

from .exceptions import DataIntegrityError, PersistenceError, RecordNotFoundError
from .schema import BuildModel, StageRunModel, format_datetime

logger = logging.getLogger(__name__)


class BuildRepository:
    """Numbered builds and their stage outcomes."""

    def __init__(self, session: Session):
        self.session = session

    def next_build_number(self, pipeline_name: str) -> int:
        """Highest recorded build number for the pipeline plus one (1 for a new pipeline)."""
        try:
            stmt = select(func.max(BuildModel.build_number)).where(
                BuildModel.pipeline_name == pipeline_name
            )
            current = self.session.execute(stmt).scalar_one_or_none()
            return (current or 0) + 1
        except SQLAlchemyError as e:
            logger.error(f"Error reading build numbers for {pipeline_name}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to allocate build number: {e}") from e

    def start_build(self, pipeline_name: str, run_id: str, started_at: datetime) -> BuildRecord:
        """Allocate the next build number and record the build as RUNNING.

        Raises:
            DataIntegrityError: If the run id or build number is already taken
            PersistenceError: On other database errors
        """
        build_number = self.next_build_number(pipeline_name)
        model = BuildModel(
            pipeline_name=pipeline_name,
            build_number=build_number,
            run_id=run_id,
            status="RUNNING",
            started_at=format_datetime(started_at),
        )
        try:
            self.session.add(model)
            self.session.flush()
        except IntegrityError as e:
            self.session.rollback()
            raise DataIntegrityError(
                f"Build {pipeline_name} #{build_number} (run {run_id}) already exists"
            ) from e
        except SQLAlchemyError as e:
            logger.error(f"Error starting build for {pipeline_name}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to record build start: {e}") from e

        logger.debug(f"Started build {pipeline_name} #{build_number}")
        return model.to_domain()

    def finish_build(
        self,
        run_id: str,
        status: str,
        finished_at: datetime,
        duration_seconds: float,
        stages: Sequence[StageRecord],
    ) -> BuildRecord:
        """Record the final status and stage outcomes of a RUNNING build.

        Raises:
            RecordNotFoundError: If no build has this run id
            PersistenceError: On database errors
        """
        try:
            model = self.session.execute(
                select(BuildModel).where(BuildModel.run_id == run_id)
            ).scalar_one_or_none()
            if model is None:
                raise RecordNotFoundError(f"No build recorded for run {run_id}")

            model.status = status
            model.finished_at = format_datetime(finished_at)
            model.duration_seconds = duration_seconds
            model.stages.clear()
            self.session.flush()
            model.stages.extend(StageRunModel.from_domain(stage) for stage in stages)
            self.session.flush()
            return model.to_domain()

        except RecordNotFoundError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"Error finishing build for run {run_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to record build result: {e}") from e

    def get_build(self, pipeline_name: str, build_number: int) -> Optional[BuildRecord]:
        try:
            model = self.session.execute(
                select(BuildModel).where(
                    BuildModel.pipeline_name == pipeline_name,
                    BuildModel.build_number == build_number,
                )
            ).scalar_one_or_none()
            return model.to_domain() if model else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving build {pipeline_name} #{build_number}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve build: {e}") from e

    def list_builds(self, pipeline_name: str, limit: int = 20) -> List[BuildRecord]:
        """Most recent builds first."""
        try:
            stmt = (
                select(BuildModel)
                .where(BuildModel.pipeline_name == pipeline_name)
                .order_by(BuildModel.build_number.desc())
                .limit(limit)
            )
            return [model.to_domain() for model in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error listing builds for {pipeline_name}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list builds: {e}") from e

    def last_status(self, pipeline_name: str) -> Optional[str]:
        """Status of the most recent finished build, or None."""
        try:
            stmt = (
                select(BuildModel.status)
                .where(
                    BuildModel.pipeline_name == pipeline_name,
                    BuildModel.status != "RUNNING",
                )
                .order_by(BuildModel.build_number.desc())
                .limit(1)
            )
            return self.session.execute(stmt).scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Error reading last status for {pipeline_name}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to read last build status: {e}") from e
