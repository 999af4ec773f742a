"""Interval triggers for daemon mode."""

from .service import SchedulerService

__all__ = [
    "SchedulerService",
]
