"""Post-build e-mail reports.

- NotificationService: render and deliver with retry/backoff
- TemplateRenderer: Jinja2 subject/HTML/text templates
- SMTPClient: smtplib wrapper with TLS/SSL support
"""

from .models import (
    NotificationError,
    NotificationResult,
    NotificationTemplateError,
    SMTPDeliveryError,
)
from .payloads import build_report_context
from .service import NotificationService
from .smtp_client import SMTPClient, build_sender_address
from .templates import TemplateRenderer

__all__ = [
    "NotificationService",
    "NotificationResult",
    "NotificationError",
    "NotificationTemplateError",
    "SMTPDeliveryError",
    "TemplateRenderer",
    "SMTPClient",
    "build_report_context",
    "build_sender_address",
]
