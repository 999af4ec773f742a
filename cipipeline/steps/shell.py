"""Shell command execution."""

import os
import signal
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Mapping, Optional, Union

from .models import StepExecutionError


@dataclass
class ProcessOutcome:
    """What a finished (or killed) command left behind."""

    exit_code: Optional[int]
    output: List[str] = field(default_factory=list)
    timed_out: bool = False


def _decode(output: Union[str, bytes, None]) -> str:
    if output is None:
        return ""
    if isinstance(output, bytes):
        return output.decode("utf-8", errors="replace")
    return output


def _kill_process_group(process: subprocess.Popen) -> None:
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        # Group already gone
        pass


class ShellRunner:
    """Run commands through ``/bin/sh`` with stdout and stderr merged.

    The step executor takes any object with this ``run`` signature, which is
    how tests replace real processes.
    """

    def __init__(self, shell: str = "/bin/sh"):
        self.shell = shell

    def run(
        self,
        command: str,
        env: Mapping[str, str],
        cwd: Path,
        timeout: Optional[float] = None,
    ) -> ProcessOutcome:
        """
        Run ``command`` and wait for it.

        The shell leads its own session, so a timeout kills everything it
        started (subshells, pipelines, background jobs) and not only the
        shell itself.

        Raises:
            StepExecutionError: If the process cannot be started
        """
        try:
            process = subprocess.Popen(
                command,
                shell=True,
                executable=self.shell,
                cwd=str(cwd),
                env=dict(env),
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                start_new_session=True,
            )
        except OSError as e:
            raise StepExecutionError(f"Cannot start command in {cwd}: {e}") from e

        try:
            stdout, _ = process.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            _kill_process_group(process)
            stdout, _ = process.communicate()
            return ProcessOutcome(
                exit_code=None,
                output=_decode(stdout).splitlines(),
                timed_out=True,
            )

        return ProcessOutcome(
            exit_code=process.returncode,
            output=_decode(stdout).splitlines(),
        )
