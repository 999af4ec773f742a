"""Structured build logging for pipeline runs.

Every record emitted by the runner carries an ``event`` field plus whatever
run context is active (run id, pipeline, build number, stage).
"""

import logging
from typing import Optional, Union

from .context import log_context
from .masking import SecretMasker, SecretMaskingFilter

__all__ = [
    "ComponentLoggerAdapter",
    "SecretMasker",
    "SecretMaskingFilter",
    "get_logger",
    "log_context",
]


class ComponentLoggerAdapter(logging.LoggerAdapter):
    """LoggerAdapter that tags records with a component and keeps call extras."""

    def process(self, msg, kwargs):
        # Call-site extras win over the adapter's component tag
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


def get_logger(
    name: str, component: Optional[str] = None
) -> Union[logging.Logger, ComponentLoggerAdapter]:
    """Return a logger, optionally bound to a ``component`` field.

    Example:
        >>> logger = get_logger(__name__, component="runner")
        >>> logger.info("Stage started", extra={"event": "stage.started"})
    """
    logger = logging.getLogger(name)

    if component:
        return ComponentLoggerAdapter(logger, {"component": component})

    return logger
