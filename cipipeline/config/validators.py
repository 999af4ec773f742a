"""Soft checks on raw pipeline definitions.

These never reject a definition; they surface likely mistakes as
``UserWarning``s before schema validation runs.
"""

import re
import warnings
from typing import Any, Dict, Iterator, List

# NAME_TOKEN=literal (not $VAR) in a shell script
_INLINE_SECRET_PATTERN = re.compile(
    r"\b([A-Z0-9_]*(?:TOKEN|SECRET|PASSWORD|PASS|API_KEY))=(?![\$'\"]?\$)([^\s'\"$]+)"
)


def _iter_steps(steps: Any) -> Iterator[Dict[str, Any]]:
    """Yield raw step mappings depth-first, including nested binding blocks."""
    if not isinstance(steps, list):
        return
    for step in steps:
        if not isinstance(step, dict):
            continue
        yield step
        if step.get("type") == "with_credentials":
            yield from _iter_steps(step.get("steps"))


def check_for_warnings(definition_dict: Dict[str, Any]) -> List[str]:
    """
    Inspect a raw definition for likely mistakes.

    Args:
        definition_dict: Parsed YAML mapping

    Returns:
        Warning messages (empty when nothing looks off)
    """
    warning_messages = []
    stages = definition_dict.get("stages", [])
    if not isinstance(stages, list):
        return warning_messages

    declares_unstable = False
    for stage in stages:
        if not isinstance(stage, dict):
            continue
        name = stage.get("name", "Unknown")

        for step in _iter_steps(stage.get("steps")):
            if step.get("unstable_exit_codes"):
                declares_unstable = True

            script = step.get("sh") or step.get("script")
            if isinstance(script, str):
                for match in _INLINE_SECRET_PATTERN.finditer(script):
                    warning_messages.append(
                        f"Stage '{name}' passes a literal value for {match.group(1)}; "
                        "bind it with with_credentials instead"
                    )

    options = definition_dict.get("options", {})
    if isinstance(options, dict) and options.get("skip_stages_after_unstable") and not declares_unstable:
        warning_messages.append(
            "skip_stages_after_unstable is set but no step declares unstable_exit_codes; "
            "the option has no effect"
        )

    post = definition_dict.get("post", {})
    if isinstance(post, dict):
        for outcome in post:
            if outcome not in ("always", "success", "unstable", "failure"):
                warning_messages.append(f"Unknown post condition '{outcome}' will be ignored")

    return warning_messages


def emit_warnings(warning_messages: List[str]) -> None:
    """Emit each message as a UserWarning."""
    for message in warning_messages:
        warnings.warn(message, UserWarning, stacklevel=2)
