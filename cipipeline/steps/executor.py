"""Step execution: echo, shell, Meterian scan and credential blocks."""

import time
from pathlib import Path
from typing import List, Mapping, Optional, Sequence

from cipipeline.config.duration import parse_duration
from cipipeline.config.models import (
    EchoStep,
    MeterianScanStep,
    ShStep,
    Step,
    WithCredentialsStep,
)
from cipipeline.credentials import CredentialError, CredentialStore, bind_credentials
from cipipeline.logging import get_logger
from cipipeline.logging.masking import SecretMasker, default_masker

from .meterian import render_meterian_command
from .models import StepExecutionError, StepResult, StepStatus
from .shell import ShellRunner

logger = get_logger(__name__, component="steps")


class StepExecutor:
    """
    Executes steps of a stage against a workspace.

    Failures are reported through StepResult, never raised: a failed command,
    a timeout, a missing credential and a command that cannot start all come
    back as a FAILURE result.
    """

    def __init__(
        self,
        workspace: Path,
        credential_store: CredentialStore,
        shell_runner: Optional[ShellRunner] = None,
        masker: SecretMasker = default_masker,
    ):
        """
        Args:
            workspace: Directory commands run in (``$(pwd)`` inside steps)
            credential_store: Lookup used by with_credentials blocks
            shell_runner: Command runner (defaults to /bin/sh)
            masker: Registry of secrets redacted from output
        """
        self.workspace = Path(workspace)
        self.credential_store = credential_store
        self.shell_runner = shell_runner or ShellRunner()
        self.masker = masker

    def execute_steps(
        self,
        steps: Sequence[Step],
        env: Mapping[str, str],
        deadline: Optional[float] = None,
    ) -> List[StepResult]:
        """
        Run steps in order, stopping after the first FAILURE.

        UNSTABLE steps do not stop the sequence.

        Args:
            steps: Steps to run
            env: Environment for every command
            deadline: time.monotonic() value after which commands are killed
        """
        results: List[StepResult] = []
        for step in steps:
            step_results = self.execute(step, env, deadline=deadline)
            results.extend(step_results)
            if any(result.status == StepStatus.FAILURE for result in step_results):
                break
        return results

    def execute(
        self,
        step: Step,
        env: Mapping[str, str],
        deadline: Optional[float] = None,
    ) -> List[StepResult]:
        """Run one step; credential blocks return one result per nested step."""
        if isinstance(step, EchoStep):
            return [self._echo(step)]
        if isinstance(step, ShStep):
            return [
                self._run_command(
                    step, step.script, env, step.unstable_exit_codes, step.timeout, deadline
                )
            ]
        if isinstance(step, MeterianScanStep):
            return [self._meterian_scan(step, env, deadline)]
        if isinstance(step, WithCredentialsStep):
            return self._with_credentials(step, env, deadline)
        raise TypeError(f"Unsupported step type: {type(step).__name__}")

    def _echo(self, step: EchoStep) -> StepResult:
        message = self.masker.mask(step.message)
        logger.info(message, extra={"event": "step.echo"})
        return StepResult(
            label=self.masker.mask(step.label),
            step_type=step.type,
            status=StepStatus.SUCCESS,
            output=[message],
        )

    def _meterian_scan(
        self, step: MeterianScanStep, env: Mapping[str, str], deadline: Optional[float]
    ) -> StepResult:
        if not env.get(step.token_source_variable):
            # The scanner decides what an empty token means
            logger.warning(
                f"{step.token_source_variable} is empty; the scanner will run without a token",
                extra={
                    "event": "meterian.token.missing",
                    "token_variable": step.token_source_variable,
                },
            )

        command = render_meterian_command(step)
        logger.info(
            f"Running Meterian scan with {step.image_reference}",
            extra={
                "event": "meterian.scan.started",
                "image": step.image_reference,
                "workspace_mount": step.workspace_mount,
            },
        )
        return self._run_command(
            step, command, env, step.unstable_exit_codes, step.timeout, deadline
        )

    def _with_credentials(
        self, step: WithCredentialsStep, env: Mapping[str, str], deadline: Optional[float]
    ) -> List[StepResult]:
        start = time.monotonic()
        try:
            with bind_credentials(
                self.credential_store, step.bindings, env, masker=self.masker
            ) as bound_env:
                return self.execute_steps(step.steps, bound_env, deadline=deadline)
        except CredentialError as e:
            logger.error(
                f"Credential binding failed: {e}",
                extra={
                    "event": "credentials.binding.failed",
                    "error_type": type(e).__name__,
                },
            )
            return [
                StepResult(
                    label=step.label,
                    step_type=step.type,
                    status=StepStatus.FAILURE,
                    duration_seconds=time.monotonic() - start,
                    error_message=str(e),
                )
            ]

    def _run_command(
        self,
        step: Step,
        command: str,
        env: Mapping[str, str],
        unstable_exit_codes: Sequence[int],
        timeout: Optional[str],
        deadline: Optional[float],
    ) -> StepResult:
        label = self.masker.mask(step.label)
        masked_command = self.masker.mask(command)
        timeout_seconds = _effective_timeout(timeout, deadline)

        if timeout_seconds is not None and timeout_seconds <= 0:
            return StepResult(
                label=label,
                step_type=step.type,
                status=StepStatus.FAILURE,
                command=masked_command,
                error_message="Pipeline timeout reached before the step started",
            )

        logger.info(
            f"+ {masked_command}",
            extra={"event": "step.started", "step_type": step.type},
        )

        start = time.monotonic()
        try:
            outcome = self.shell_runner.run(
                command, env=env, cwd=self.workspace, timeout=timeout_seconds
            )
        except StepExecutionError as e:
            logger.error(
                f"Step could not start: {e}",
                extra={"event": "step.start_failed", "step_type": step.type},
            )
            return StepResult(
                label=label,
                step_type=step.type,
                status=StepStatus.FAILURE,
                command=masked_command,
                duration_seconds=time.monotonic() - start,
                error_message=str(e),
            )
        duration = time.monotonic() - start

        output = [self.masker.mask(line) for line in outcome.output]
        for line in output:
            logger.info(line, extra={"event": "step.output"})

        error_message = None
        if outcome.timed_out:
            status = StepStatus.FAILURE
            error_message = f"Timed out after {timeout_seconds:.0f}s"
        elif outcome.exit_code == 0:
            status = StepStatus.SUCCESS
        elif outcome.exit_code in unstable_exit_codes:
            status = StepStatus.UNSTABLE
        else:
            status = StepStatus.FAILURE
            error_message = f"Script returned exit code {outcome.exit_code}"

        logger.info(
            f"Step finished: {status.value}",
            extra={
                "event": "step.completed",
                "step_type": step.type,
                "status": status.value,
                "exit_code": outcome.exit_code,
                "duration_ms": int(duration * 1000),
            },
        )

        return StepResult(
            label=label,
            step_type=step.type,
            status=status,
            exit_code=outcome.exit_code,
            command=masked_command,
            output=output,
            duration_seconds=duration,
            error_message=error_message,
        )


def _effective_timeout(timeout: Optional[str], deadline: Optional[float]) -> Optional[float]:
    """Tighter of the step's own timeout and the time left before the run deadline."""
    candidates = []
    if timeout:
        candidates.append(float(parse_duration(timeout)))
    if deadline is not None:
        candidates.append(deadline - time.monotonic())
    return min(candidates) if candidates else None
