"""Helpers shared by the runner, validation and persistence layers."""

from .timestamps import ensure_utc, format_timestamp, utc_now
from .variables import expand_variables, referenced_variables

__all__ = [
    "utc_now",
    "ensure_utc",
    "format_timestamp",
    "expand_variables",
    "referenced_variables",
]
