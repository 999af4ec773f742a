"""Scoped logging context for pipeline runs.

The runner enters run_context() (``run_id``, ``pipeline``, ``build_number``)
for a whole run and stage_context() (``stage``, ``stage_position``) while a
stage executes; the logging filter copies the active fields onto every
record. Context lives in a ContextVar, so scheduled runs on worker threads
never see each other's fields.
"""

from contextvars import ContextVar, Token
from typing import Any, Dict, Optional

LogContextVar: ContextVar[Dict[str, Any]] = ContextVar("log_context", default={})


def get_log_context() -> Dict[str, Any]:
    """Return a copy of the active logging context."""
    return LogContextVar.get().copy()


def push_log_context(**kwargs) -> Token:
    """Merge ``kwargs`` into the active context.

    Returns:
        Token to hand to pop_log_context() to restore the previous fields
    """
    return LogContextVar.set({**LogContextVar.get(), **kwargs})


def pop_log_context(token: Token) -> None:
    """Restore the context captured by push_log_context()."""
    LogContextVar.reset(token)


def clear_log_context() -> None:
    """Drop all context fields (test helper)."""
    LogContextVar.set({})


class log_context:
    """Context manager that scopes logging fields to a block.

    Example:
        >>> with log_context(run_id="4f1c", stage="Build"):
        ...     logger.info("Stage started")  # carries run_id and stage
    """

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.token: Optional[Token] = None

    def __enter__(self):
        self.token = push_log_context(**self.kwargs)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.token is not None:
            pop_log_context(self.token)
        return False


def run_context(run_id: str, pipeline: str, build_number: Optional[int] = None) -> log_context:
    """Fields for one pipeline run.

    ``build_number`` is left out while it is unknown (a run skipped by the
    lock, or build history unavailable) rather than logged as null.
    """
    fields: Dict[str, Any] = {"run_id": run_id, "pipeline": pipeline}
    if build_number is not None:
        fields["build_number"] = build_number
    return log_context(**fields)


def stage_context(stage: str, position: int) -> log_context:
    """Fields for one stage; ``stage_position`` is 1-based like the build log."""
    return log_context(stage=stage, stage_position=position + 1)
