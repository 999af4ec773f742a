"""Sequential execution of pipeline stages."""

import os
import threading
import time
from typing import Dict, List, Mapping, Optional
from uuid import uuid4

from cipipeline.config.environment import EnvironmentConfig
from cipipeline.config.models import PipelineDefinition, StageConfig
from cipipeline.credentials.store import ENV_PREFIX
from cipipeline.logging import get_logger
from cipipeline.logging.context import run_context, stage_context
from cipipeline.persistence.exceptions import PersistenceError
from cipipeline.persistence.history import BuildHistory
from cipipeline.steps.executor import StepExecutor
from cipipeline.steps.models import StepStatus
from cipipeline.utils.timestamps import utc_now
from cipipeline.utils.variables import expand_variables

from .models import PipelineRunResult, StageResult

logger = get_logger(__name__, component="runner")


def build_environment(
    definition: PipelineDefinition,
    stage: Optional[StageConfig] = None,
    environ: Optional[Mapping[str, str]] = None,
    extra: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """
    Environment for a stage's commands.

    Layers, later wins: process environment minus ``CIPIPELINE_CREDENTIAL_*``
    variables, ``extra`` (build metadata), pipeline ``environment``, stage
    ``environment``. ``${VAR}`` in pipeline values expands against the layers
    below it; stage values also see the pipeline layer. Unknown references
    expand to an empty string, stored credentials included.
    """
    process = os.environ if environ is None else environ
    # Stored credentials only reach commands through with_credentials blocks
    env = {name: value for name, value in process.items() if not name.startswith(ENV_PREFIX)}
    env.update(extra or {})

    base = dict(env)
    for name, value in definition.environment.items():
        env[name] = expand_variables(value, base)

    if stage is not None:
        base = dict(env)
        for name, value in stage.environment.items():
            env[name] = expand_variables(value, base)

    return env


class PipelineRunner:
    """
    Runs a pipeline definition stage by stage.

    Stages run strictly in declared order. A FAILURE stage skips every later
    stage; an UNSTABLE stage does the same only when
    ``options.skip_stages_after_unstable`` is set. Stage-level failures end up
    in the result and are never raised.
    """

    def __init__(
        self,
        definition: PipelineDefinition,
        env_config: EnvironmentConfig,
        step_executor: StepExecutor,
        history: Optional[BuildHistory] = None,
        notification_service=None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        """
        Args:
            definition: Pipeline to run
            env_config: Runtime settings (workspace, SMTP)
            step_executor: Executes the steps of each stage
            history: Build numbering and recording; runs are numbered in
                memory when omitted
            notification_service: Sends post-build e-mail when configured
            environ: Process environment override (defaults to os.environ)
        """
        self.definition = definition
        self.env_config = env_config
        self.step_executor = step_executor
        self.history = history
        self.notification_service = notification_service
        self.environ = environ
        self._lock = threading.Lock()
        self._local_build_number = 0

    def run_once(self) -> PipelineRunResult:
        """
        Execute every stage of the pipeline once.

        A call made while another run of this runner is in progress returns
        immediately with ``skipped=True``.
        """
        run_started_at = utc_now()
        run_id = uuid4().hex
        pipeline_name = self.definition.name

        if not self._lock.acquire(blocking=False):
            with run_context(run_id, pipeline_name):
                logger.warning(
                    "Pipeline run skipped: previous run still in progress",
                    extra={"event": "pipeline.run.skipped", "reason": "lock_held"},
                )
            return PipelineRunResult(
                pipeline_name=pipeline_name,
                run_id=run_id,
                run_started_at=run_started_at,
                run_finished_at=utc_now(),
                status=StepStatus.SKIPPED,
                skipped=True,
            )

        try:
            build_number = self._start_build(run_id, run_started_at)
            with run_context(run_id, pipeline_name, build_number):
                result = self._run_stages(run_id, build_number, run_started_at)
                self._finish_build(result)
                self._notify(result)
                return result
        finally:
            self._lock.release()

    def _run_stages(self, run_id: str, build_number: Optional[int], run_started_at) -> PipelineRunResult:
        options = self.definition.options
        timeout_seconds = options.timeout_seconds
        deadline = time.monotonic() + timeout_seconds if timeout_seconds else None

        logger.info(
            f"Pipeline run started: {self.definition.name}",
            extra={
                "event": "pipeline.run.started",
                "stage_count": len(self.definition.stages),
                "stages": self.definition.stage_names(),
            },
        )

        build_metadata = {
            "PIPELINE_NAME": self.definition.name,
            "BUILD_NUMBER": "" if build_number is None else str(build_number),
            "RUN_ID": run_id,
            "WORKSPACE": str(self.step_executor.workspace),
        }

        run_status = StepStatus.SUCCESS
        stage_results: List[StageResult] = []
        skip_reason: Optional[str] = None
        timed_out = False

        for position, stage in enumerate(self.definition.stages):
            if skip_reason is None and deadline is not None and time.monotonic() >= deadline:
                timed_out = True
                run_status = StepStatus.FAILURE
                skip_reason = f"Pipeline timeout of {options.timeout} exceeded"

            if skip_reason is not None:
                stage_results.append(self._skip_stage(stage, position, skip_reason))
                continue

            stage_result = self._run_stage(stage, position, build_metadata, deadline)
            stage_results.append(stage_result)
            run_status = run_status.combine(stage_result.status)

            if stage_result.status == StepStatus.FAILURE:
                if deadline is not None and time.monotonic() >= deadline:
                    timed_out = True
                    skip_reason = f"Pipeline timeout of {options.timeout} exceeded"
                else:
                    skip_reason = f"Stage '{stage.name}' failed"
            elif stage_result.status == StepStatus.UNSTABLE and options.skip_stages_after_unstable:
                skip_reason = f"Stage '{stage.name}' is unstable"

        result = PipelineRunResult(
            pipeline_name=self.definition.name,
            run_id=run_id,
            build_number=build_number,
            run_started_at=run_started_at,
            run_finished_at=utc_now(),
            status=run_status,
            stage_results=stage_results,
            timed_out=timed_out,
        )

        log = logger.info if result.status == StepStatus.SUCCESS else logger.warning
        log(
            f"Pipeline run finished: {result.status.value}",
            extra={
                "event": "pipeline.run.completed",
                "status": result.status.value,
                "duration_ms": int(result.total_duration_seconds * 1000),
                "executed_stages": len(result.executed_stages),
                "skipped_stages": len(result.skipped_stages),
                "timed_out": timed_out,
            },
        )
        return result

    def _run_stage(
        self,
        stage: StageConfig,
        position: int,
        build_metadata: Mapping[str, str],
        deadline: Optional[float],
    ) -> StageResult:
        with stage_context(stage.name, position):
            logger.info(
                f"Stage started: {stage.name}",
                extra={"event": "stage.started"},
            )
            start = time.monotonic()

            env = build_environment(
                self.definition, stage, environ=self.environ, extra=build_metadata
            )
            step_results = self.step_executor.execute_steps(stage.steps, env, deadline=deadline)

            status = StepStatus.SUCCESS
            for step_result in step_results:
                status = status.combine(step_result.status)

            result = StageResult(
                name=stage.name,
                position=position,
                status=status,
                step_results=step_results,
                duration_seconds=time.monotonic() - start,
            )

            log = logger.info if status == StepStatus.SUCCESS else logger.warning
            log(
                f"Stage finished: {stage.name} ({status.value})",
                extra={
                    "event": "stage.completed",
                    "status": status.value,
                    "step_count": len(step_results),
                    "duration_ms": int(result.duration_seconds * 1000),
                    "error": result.error_message,
                },
            )
            return result

    def _skip_stage(self, stage: StageConfig, position: int, reason: str) -> StageResult:
        with stage_context(stage.name, position):
            logger.info(
                f"Stage skipped: {stage.name}",
                extra={"event": "stage.skipped", "reason": reason},
            )
        return StageResult(
            name=stage.name,
            position=position,
            status=StepStatus.SKIPPED,
            skip_reason=reason,
        )

    def _start_build(self, run_id: str, run_started_at) -> Optional[int]:
        if self.history is None:
            self._local_build_number += 1
            return self._local_build_number

        try:
            return self.history.start(self.definition.name, run_id, run_started_at)
        except PersistenceError as e:
            logger.error(
                f"Build history unavailable, running without a build number: {e}",
                extra={"event": "history.unavailable", "error_type": type(e).__name__},
            )
            return None

    def _finish_build(self, result: PipelineRunResult) -> None:
        if self.history is None or result.build_number is None:
            return

        try:
            self.history.finish(
                result.run_id,
                result.status.value,
                result.run_finished_at,
                result.total_duration_seconds,
                [stage.to_record() for stage in result.stage_results],
            )
        except PersistenceError as e:
            logger.error(
                f"Failed to record build result: {e}",
                extra={"event": "history.record_failed", "error_type": type(e).__name__},
            )

    def _notify(self, result: PipelineRunResult) -> None:
        if self.notification_service is None or not self.env_config.notifications_enabled:
            return

        recipients = self.definition.post.recipients_for(result.status.value)
        if not recipients:
            return

        try:
            self.notification_service.notify(result, recipients, self.env_config)
        except Exception as e:
            # Post actions never change the build outcome
            logger.error(
                f"Post-build notification failed: {e}",
                extra={"event": "notification.failed", "error_type": type(e).__name__},
                exc_info=True,
            )
