"""Structural checks on pipeline definitions.

``check_pipeline`` applies to any definition. ``check_meterian_pipeline``
checks the Build/Test/Meterian Scan/Deploy layout: stage order, the scanner
image and workspace mount, and that the token a scan command reads is the
variable its credential block binds.
"""

import re
from dataclasses import dataclass
from typing import Iterator, List, Mapping, Optional, Sequence, Set, Tuple

from cipipeline.config.models import (
    MeterianScanStep,
    PipelineDefinition,
    ShStep,
    Step,
    WithCredentialsStep,
)
from cipipeline.steps.meterian import render_meterian_command
from cipipeline.utils.variables import SHELL_BUILTIN_VARIABLES, referenced_variables

EXPECTED_STAGE_ORDER = ["Build", "Test", "Meterian Scan", "Deploy"]
SCAN_STAGE_NAME = "Meterian Scan"
SCANNER_IMAGE = "meterian/cli"
WORKSPACE_MOUNT = "/workspace"

# Set by the runner for every stage
BUILD_VARIABLES = frozenset({"PIPELINE_NAME", "BUILD_NUMBER", "RUN_ID", "WORKSPACE"})

_ENV_FORWARD_PATTERN = re.compile(
    r"(?:--env|-e)[ =]['\"]?[A-Za-z_][A-Za-z0-9_]*=['\"]?\$\{?([A-Za-z_][A-Za-z0-9_]*)\}?"
)


def _mount_pattern(mount: str) -> re.Pattern:
    current_dir = r"(?:\$\(pwd\)|\$\{?PWD\}?|`pwd`|\.)"
    return re.compile(
        r"(?:-v|--volume)[ =]['\"]?" + current_dir + r"['\"]?:['\"]?" + re.escape(mount) + r"(?![\w/])"
    )


@dataclass(frozen=True)
class Finding:
    """One problem found in a definition."""

    level: str  # "error" or "warning"
    code: str
    message: str
    stage: Optional[str] = None

    def __str__(self) -> str:
        where = f"[{self.stage}] " if self.stage else ""
        return f"{self.level.upper()} {self.code}: {where}{self.message}"


@dataclass(frozen=True)
class CommandSite:
    """A command inside a stage with the variables bound around it."""

    step: Step
    command: str
    bound_variables: frozenset
    in_binding_block: bool


def iter_commands(steps: Sequence[Step], bound: frozenset = frozenset(), in_block: bool = False) -> Iterator[CommandSite]:
    """Yield every shell command, descending into credential blocks."""
    for step in steps:
        if isinstance(step, ShStep):
            yield CommandSite(step, step.script, bound, in_block)
        elif isinstance(step, MeterianScanStep):
            yield CommandSite(step, render_meterian_command(step), bound, in_block)
        elif isinstance(step, WithCredentialsStep):
            inner = bound | {binding.variable for binding in step.bindings}
            yield from iter_commands(step.steps, frozenset(inner), True)


def forwarded_token_variables(command: str) -> Set[str]:
    """Variables a command forwards into a container with ``--env NAME=$VAR``."""
    return set(_ENV_FORWARD_PATTERN.findall(command))


def _iter_binding_blocks(steps: Sequence[Step]) -> Iterator[WithCredentialsStep]:
    for step in steps:
        if isinstance(step, WithCredentialsStep):
            yield step
            yield from _iter_binding_blocks(step.steps)


def check_pipeline(
    definition: PipelineDefinition,
    environ: Optional[Mapping[str, str]] = None,
) -> List[Finding]:
    """
    General checks for any definition.

    Args:
        definition: Definition to check
        environ: Process environment expected at run time; when None,
            variables only the process could provide are reported as warnings

    Returns:
        Findings, errors first
    """
    findings: List[Finding] = []
    process_variables = set(environ or {})

    # Loaded definitions reject duplicates; constructed ones may not
    seen: Set[str] = set()
    for name in definition.stage_names():
        if name in seen:
            findings.append(Finding("error", "duplicate-stage", f"Stage '{name}' is declared twice", name))
        seen.add(name)

    for stage in definition.stages:
        declared = (
            set(definition.environment)
            | set(stage.environment)
            | BUILD_VARIABLES
            | SHELL_BUILTIN_VARIABLES
            | process_variables
        )

        for site in iter_commands(stage.steps):
            available = declared | site.bound_variables

            if isinstance(site.step, MeterianScanStep):
                token = site.step.token_source_variable
                if site.in_binding_block and token not in available:
                    findings.append(Finding(
                        "error",
                        "token-not-bound",
                        f"Scan reads ${token} but the enclosing credential block binds "
                        f"{', '.join(sorted(site.bound_variables))}",
                        stage.name,
                    ))
                elif not site.in_binding_block and token not in available:
                    findings.append(Finding(
                        "warning",
                        "ambient-token",
                        f"Scan token ${token} comes from the process environment; "
                        "the scan runs with an empty token when it is unset",
                        stage.name,
                    ))
                continue

            for name in sorted(referenced_variables(site.command) - available):
                findings.append(Finding(
                    "warning",
                    "unbound-variable",
                    f"Command references ${name}, which no binding or environment block defines",
                    stage.name,
                ))

        for block in _iter_binding_blocks(stage.steps):
            used: Set[str] = set()
            for site in iter_commands(block.steps):
                used |= referenced_variables(site.command)
            for binding in block.bindings:
                if binding.variable not in used:
                    findings.append(Finding(
                        "warning",
                        "unused-binding",
                        f"Credential '{binding.credentials_id}' is bound to "
                        f"${binding.variable} but no command in the block reads it",
                        stage.name,
                    ))

    return sorted(findings, key=lambda finding: finding.level != "error")


def check_meterian_pipeline(definition: PipelineDefinition) -> List[Finding]:
    """
    Checks for the Build / Test / Meterian Scan / Deploy layout.

    - stage order is exactly Build, Test, Meterian Scan, Deploy
    - the scan stage runs the meterian/cli image with the current
      directory mounted at /workspace
    - inside credential blocks, the variable a scan command forwards is the
      variable the block binds
    """
    findings: List[Finding] = []

    stage_names = definition.stage_names()
    if stage_names != EXPECTED_STAGE_ORDER:
        findings.append(Finding(
            "error",
            "stage-order",
            f"Expected stages {EXPECTED_STAGE_ORDER}, found {stage_names}",
        ))

    scan_stage = definition.get_stage(SCAN_STAGE_NAME)
    if scan_stage is None:
        findings.append(Finding("error", "scan-stage-missing", f"No '{SCAN_STAGE_NAME}' stage"))
        return findings

    scan_sites = [
        site for site in iter_commands(scan_stage.steps)
        if isinstance(site.step, MeterianScanStep) or SCANNER_IMAGE in site.command
    ]
    if not scan_sites:
        findings.append(Finding(
            "error",
            "scanner-image",
            f"No command in the stage runs the {SCANNER_IMAGE} image",
            SCAN_STAGE_NAME,
        ))

    mount_pattern = _mount_pattern(WORKSPACE_MOUNT)
    for site in scan_sites:
        if SCANNER_IMAGE not in site.command:
            findings.append(Finding(
                "error",
                "scanner-image",
                f"Scan command does not reference {SCANNER_IMAGE}: {site.command}",
                SCAN_STAGE_NAME,
            ))
        if not mount_pattern.search(site.command):
            findings.append(Finding(
                "error",
                "workspace-mount",
                f"Scan command does not mount the current directory at {WORKSPACE_MOUNT}",
                SCAN_STAGE_NAME,
            ))
        if site.in_binding_block:
            for name in sorted(forwarded_token_variables(site.command) - site.bound_variables):
                findings.append(Finding(
                    "error",
                    "token-variable-mismatch",
                    f"Scan forwards ${name} but the credential block binds "
                    f"{', '.join(sorted(site.bound_variables))}",
                    SCAN_STAGE_NAME,
                ))

    return findings


def has_errors(findings: Sequence[Finding]) -> bool:
    return any(finding.level == "error" for finding in findings)


def summarize(findings: Sequence[Finding]) -> Tuple[int, int]:
    """(error count, warning count)"""
    errors = sum(1 for finding in findings if finding.level == "error")
    return errors, len(findings) - errors
