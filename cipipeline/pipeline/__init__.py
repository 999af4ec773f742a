"""Sequential stage runner."""

from .models import PipelineRunResult, StageResult
from .runner import PipelineRunner, build_environment

__all__ = [
    "PipelineRunner",
    "PipelineRunResult",
    "StageResult",
    "build_environment",
]
