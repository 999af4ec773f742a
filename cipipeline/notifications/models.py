"""Notification results and exceptions."""

from dataclasses import dataclass, field
from typing import List, Optional


class NotificationError(Exception):
    """Base exception for post-build notification errors."""

    pass


class NotificationTemplateError(NotificationError):
    """A template failed to render (missing variable, syntax error)."""

    pass


class SMTPDeliveryError(NotificationError):
    """A single SMTP delivery attempt failed."""

    pass


@dataclass
class NotificationResult:
    """
    Outcome of a post-build notification.

    Attributes:
        pipeline_name: Pipeline the build belongs to
        build_number: Build that was reported
        recipients: Addresses the message was addressed to
        attempts: Delivery attempts made
        status: sent or failed
        error: Last error when delivery failed
    """

    pipeline_name: str
    build_number: Optional[int]
    recipients: List[str] = field(default_factory=list)
    attempts: int = 0
    status: str = "failed"
    error: Optional[str] = None

    def is_success(self) -> bool:
        return self.status == "sent"
