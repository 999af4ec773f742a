"""Recorded build history.

- BuildRecord: one run of a pipeline, numbered per pipeline
- StageRecord: the outcome of one stage within a build
"""

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

BUILD_STATUSES = ("RUNNING", "SUCCESS", "UNSTABLE", "FAILURE", "ABORTED")
STAGE_STATUSES = ("SUCCESS", "UNSTABLE", "FAILURE", "SKIPPED")


def _as_utc(v: Optional[datetime]) -> Optional[datetime]:
    if v is None:
        return None
    if v.tzinfo is None:
        return v.replace(tzinfo=timezone.utc)
    return v.astimezone(timezone.utc)


class StageRecord(BaseModel):
    """Outcome of one stage of a recorded build."""

    position: int = Field(..., ge=0, description="Zero-based position in the pipeline")
    name: str = Field(..., min_length=1)
    status: str
    duration_seconds: float = Field(0.0, ge=0)
    error_message: Optional[str] = None

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        if v not in STAGE_STATUSES:
            raise ValueError(f"Unknown stage status: {v}")
        return v


class BuildRecord(BaseModel):
    """One recorded run of a pipeline."""

    pipeline_name: str = Field(..., min_length=1)
    build_number: int = Field(..., ge=1)
    run_id: str = Field(..., min_length=1)
    status: str = "RUNNING"
    started_at: datetime
    finished_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None
    stages: List[StageRecord] = Field(default_factory=list)

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        if v not in BUILD_STATUSES:
            raise ValueError(f"Unknown build status: {v}")
        return v

    @field_validator("started_at", "finished_at")
    @classmethod
    def ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v)

    @property
    def is_finished(self) -> bool:
        return self.status != "RUNNING"
