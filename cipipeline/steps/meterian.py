"""Docker command line for the Meterian scanner container."""

import shlex

from cipipeline.config.models import MeterianScanStep


def render_meterian_command(step: MeterianScanStep) -> str:
    """
    Build the ``docker run`` invocation for a scan step.

    The current directory is mounted read/write at ``step.workspace_mount``
    and the token is forwarded by reference, so the secret itself never
    appears in the command line.

    Example:
        >>> render_meterian_command(MeterianScanStep())
        'docker run --rm --volume "$(pwd):/workspace" --env METERIAN_API_TOKEN="$METERIAN_API_TOKEN" meterian/cli'
    """
    parts = ["docker", "run"]
    if step.interactive:
        parts.append("-it")
    parts.append("--rm")
    parts.append(f'--volume "$(pwd):{step.workspace_mount}"')
    parts.append(f'--env {step.token_variable}="${step.token_source_variable}"')
    parts.append(shlex.quote(step.image_reference))
    parts.extend(shlex.quote(arg) for arg in step.extra_args)
    return " ".join(parts)
