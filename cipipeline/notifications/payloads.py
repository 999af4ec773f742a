"""Template context for build report e-mails."""

from typing import Any, Dict

from cipipeline.pipeline.models import PipelineRunResult
from cipipeline.utils.timestamps import format_timestamp


def build_report_context(result: PipelineRunResult) -> Dict[str, Any]:
    """
    Flatten a run result into template variables.

    Keys: pipeline_name, build_number, run_id, status, started_at,
    finished_at, duration, timed_out, stages (name, status, duration,
    error), failed_stage (first non-successful stage name or None).
    """
    stages = [
        {
            "name": stage.name,
            "status": stage.status.value,
            "duration": f"{stage.duration_seconds:.1f}s",
            "error": stage.error_message,
        }
        for stage in result.stage_results
    ]

    failed_stage = next(
        (stage["name"] for stage in stages if stage["status"] in ("FAILURE", "UNSTABLE")),
        None,
    )

    return {
        "pipeline_name": result.pipeline_name,
        "build_number": result.build_number if result.build_number is not None else "-",
        "run_id": result.run_id,
        "status": result.status.value,
        "started_at": format_timestamp(result.run_started_at),
        "finished_at": format_timestamp(result.run_finished_at),
        "duration": f"{result.total_duration_seconds:.1f}s",
        "timed_out": result.timed_out,
        "stages": stages,
        "failed_stage": failed_stage,
    }
