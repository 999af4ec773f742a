"""Step outcomes and execution errors."""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class StepStatus(str, Enum):
    """Outcome of a step, stage or run, from best to worst."""

    SUCCESS = "SUCCESS"
    UNSTABLE = "UNSTABLE"
    FAILURE = "FAILURE"
    SKIPPED = "SKIPPED"

    @property
    def severity(self) -> int:
        # SKIPPED never degrades an outcome on its own
        return {"SUCCESS": 0, "SKIPPED": 0, "UNSTABLE": 1, "FAILURE": 2}[self.value]

    def combine(self, other: "StepStatus") -> "StepStatus":
        """Return the worse of two outcomes."""
        return other if other.severity > self.severity else self


class StepExecutionError(Exception):
    """A command could not be started at all (bad workspace, missing shell)."""

    pass


@dataclass
class StepResult:
    """
    Outcome of a single executed step.

    Attributes:
        label: Short human-readable description of the step
        step_type: echo, sh, meterian_scan or with_credentials
        status: Outcome of the step
        exit_code: Process exit code, None for echo, bindings and timeouts
        command: Command line that was run, secrets masked
        output: Captured output lines, secrets masked
        duration_seconds: Wall time spent on the step
        error_message: Why the step failed, when it did
    """

    label: str
    step_type: str
    status: StepStatus
    exit_code: Optional[int] = None
    command: Optional[str] = None
    output: List[str] = field(default_factory=list)
    duration_seconds: float = 0.0
    error_message: Optional[str] = None
