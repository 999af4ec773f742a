"""Step execution for pipeline stages."""

from .executor import StepExecutor
from .meterian import render_meterian_command
from .models import StepExecutionError, StepResult, StepStatus
from .shell import ProcessOutcome, ShellRunner

__all__ = [
    "StepExecutor",
    "StepResult",
    "StepStatus",
    "StepExecutionError",
    "ShellRunner",
    "ProcessOutcome",
    "render_meterian_command",
]
