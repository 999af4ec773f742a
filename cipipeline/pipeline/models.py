"""Results of a pipeline run."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from cipipeline.domain.models import StageRecord
from cipipeline.steps.models import StepResult, StepStatus


@dataclass
class StageResult:
    """
    Outcome of one stage.

    Attributes:
        name: Stage name
        position: Zero-based position in the definition
        status: Worst step outcome, or SKIPPED if the stage never ran
        step_results: One entry per executed step (nested credential steps flattened)
        duration_seconds: Wall time of the stage
        skip_reason: Why the stage did not run, if it was skipped
    """

    name: str
    position: int
    status: StepStatus
    step_results: List[StepResult] = field(default_factory=list)
    duration_seconds: float = 0.0
    skip_reason: Optional[str] = None

    @property
    def error_message(self) -> Optional[str]:
        """First step error, or the skip reason."""
        for step in self.step_results:
            if step.error_message:
                return step.error_message
        return self.skip_reason

    def to_record(self) -> StageRecord:
        return StageRecord(
            position=self.position,
            name=self.name,
            status=self.status.value,
            duration_seconds=self.duration_seconds,
            error_message=self.error_message,
        )


@dataclass
class PipelineRunResult:
    """
    Aggregate outcome of a pipeline run.

    Attributes:
        pipeline_name: Name of the executed definition
        run_id: Unique id of this run (also in every log record)
        build_number: Per-pipeline sequence number, None if the run was skipped
        status: SUCCESS, UNSTABLE or FAILURE (SKIPPED when the run never started)
        run_started_at / run_finished_at: UTC timestamps
        stage_results: Every stage in declared order, including skipped ones
        skipped: True when another run of this runner was still in progress
        timed_out: True when options.timeout cut the run short
    """

    pipeline_name: str
    run_id: str
    run_started_at: datetime
    run_finished_at: datetime
    status: StepStatus = StepStatus.SUCCESS
    build_number: Optional[int] = None
    stage_results: List[StageResult] = field(default_factory=list)
    total_duration_seconds: float = 0.0
    skipped: bool = False
    timed_out: bool = False

    def __post_init__(self):
        if self.total_duration_seconds == 0.0:
            delta = self.run_finished_at - self.run_started_at
            self.total_duration_seconds = delta.total_seconds()

    @property
    def stage_names(self) -> List[str]:
        return [stage.name for stage in self.stage_results]

    @property
    def executed_stages(self) -> List[StageResult]:
        return [stage for stage in self.stage_results if stage.status != StepStatus.SKIPPED]

    @property
    def skipped_stages(self) -> List[StageResult]:
        return [stage for stage in self.stage_results if stage.status == StepStatus.SKIPPED]

    def get_stage(self, name: str) -> Optional[StageResult]:
        for stage in self.stage_results:
            if stage.name == name:
                return stage
        return None

    @property
    def exit_code(self) -> int:
        """CLI exit code: 0 success, 2 unstable, 1 failure."""
        if self.status == StepStatus.SUCCESS or self.skipped:
            return 0
        if self.status == StepStatus.UNSTABLE:
            return 2
        return 1
