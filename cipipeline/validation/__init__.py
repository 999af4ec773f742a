"""Structural checks on pipeline definitions."""

from .checks import (
    EXPECTED_STAGE_ORDER,
    Finding,
    check_meterian_pipeline,
    check_pipeline,
    forwarded_token_variables,
    has_errors,
    iter_commands,
    summarize,
)

__all__ = [
    "EXPECTED_STAGE_ORDER",
    "Finding",
    "check_pipeline",
    "check_meterian_pipeline",
    "forwarded_token_variables",
    "has_errors",
    "iter_commands",
    "summarize",
]
