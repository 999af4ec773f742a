"""ORM models for build history."""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Column,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    inspect,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, relationship

from cipipeline.domain.models import BuildRecord, StageRecord

logger = logging.getLogger(__name__)

Base = declarative_base()

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


class BuildModel(Base):
    """One row per pipeline run; build numbers are unique per pipeline."""

    __tablename__ = "builds"

    id = Column(Integer, primary_key=True, autoincrement=True)
    pipeline_name = Column(String(255), nullable=False)
    build_number = Column(Integer, nullable=False)
    run_id = Column(String(32), nullable=False, unique=True)
    status = Column(String(16), nullable=False)

    # ISO 8601 UTC strings
    started_at = Column(String(50), nullable=False)
    finished_at = Column(String(50), nullable=True)
    duration_seconds = Column(Float, nullable=True)

    stages = relationship(
        "StageRunModel",
        back_populates="build",
        cascade="all, delete-orphan",
        order_by="StageRunModel.position",
    )

    __table_args__ = (
        UniqueConstraint("pipeline_name", "build_number", name="uq_builds_pipeline_number"),
        Index("idx_builds_pipeline", "pipeline_name"),
    )

    def to_domain(self) -> BuildRecord:
        return BuildRecord(
            pipeline_name=self.pipeline_name,
            build_number=self.build_number,
            run_id=self.run_id,
            status=self.status,
            started_at=_parse_datetime(self.started_at),
            finished_at=_parse_datetime(self.finished_at),
            duration_seconds=self.duration_seconds,
            stages=[stage.to_domain() for stage in self.stages],
        )


class StageRunModel(Base):
    """Outcome of one stage within a build."""

    __tablename__ = "stage_runs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    build_id = Column(Integer, ForeignKey("builds.id", ondelete="CASCADE"), nullable=False)
    position = Column(Integer, nullable=False)
    name = Column(String(255), nullable=False)
    status = Column(String(16), nullable=False)
    duration_seconds = Column(Float, nullable=False, default=0.0)
    error_message = Column(Text, nullable=True)

    build = relationship("BuildModel", back_populates="stages")

    __table_args__ = (
        UniqueConstraint("build_id", "position", name="uq_stage_runs_build_position"),
    )

    def to_domain(self) -> StageRecord:
        return StageRecord(
            position=self.position,
            name=self.name,
            status=self.status,
            duration_seconds=self.duration_seconds or 0.0,
            error_message=self.error_message,
        )

    @classmethod
    def from_domain(cls, stage: StageRecord) -> "StageRunModel":
        return cls(
            position=stage.position,
            name=stage.name,
            status=stage.status,
            duration_seconds=stage.duration_seconds,
            error_message=stage.error_message,
        )


def format_datetime(dt: Optional[datetime]) -> Optional[str]:
    """Store datetimes as ISO 8601 UTC strings with a Z suffix."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def _parse_datetime(dt_str: Optional[str]) -> Optional[datetime]:
    if not dt_str:
        return None
    dt_str = dt_str.rstrip("Z")
    try:
        dt = datetime.strptime(dt_str, "%Y-%m-%dT%H:%M:%S.%f")
    except ValueError:
        dt = datetime.strptime(dt_str, "%Y-%m-%dT%H:%M:%S")
    return dt.replace(tzinfo=timezone.utc)


def create_schema(engine: Engine) -> None:
    """Create missing tables; safe to call repeatedly."""
    try:
        Base.metadata.create_all(engine, checkfirst=True)
        tables = inspect(engine).get_table_names()
        logger.info(f"Database schema ready. Tables: {', '.join(tables)}")
    except Exception as e:
        logger.error(f"Failed to create database schema: {e}", exc_info=True)
        raise
