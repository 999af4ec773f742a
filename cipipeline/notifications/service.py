"""Post-build e-mail notifications."""

import logging
import time
from email.message import EmailMessage
from typing import Callable, List, Optional

from cipipeline.config.environment import EnvironmentConfig
from cipipeline.logging import get_logger
from cipipeline.pipeline.models import PipelineRunResult

from .models import NotificationResult, NotificationTemplateError, SMTPDeliveryError
from .payloads import build_report_context
from .smtp_client import SMTPClient, build_sender_address
from .templates import TemplateRenderer

logger = get_logger(__name__, component="notification")


class NotificationService:
    """Renders a build report and delivers it with retry and exponential backoff."""

    def __init__(
        self,
        template_renderer: Optional[TemplateRenderer] = None,
        smtp_client: Optional[SMTPClient] = None,
        max_retries: int = 3,
        retry_initial_delay: float = 5.0,
        retry_backoff_multiplier: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
        logger_instance: Optional[logging.Logger] = None,
    ):
        """
        Args:
            template_renderer: Renderer (default templates when None)
            smtp_client: SMTP client (smtplib-backed when None)
            max_retries: Extra attempts after the first failure
            retry_initial_delay: Seconds before the first retry
            retry_backoff_multiplier: Growth factor of the delay per retry
            sleep: Delay function, replaced in tests
        """
        self.template_renderer = template_renderer or TemplateRenderer()
        self.smtp_client = smtp_client or SMTPClient()
        self.max_retries = max_retries
        self.retry_initial_delay = retry_initial_delay
        self.retry_backoff_multiplier = retry_backoff_multiplier
        self.sleep = sleep
        self.logger = logger_instance or logger

    def notify(
        self,
        result: PipelineRunResult,
        recipients: List[str],
        env_config: EnvironmentConfig,
    ) -> NotificationResult:
        """
        Send the build report for ``result`` to ``recipients``.

        Never raises for delivery or template problems; the outcome is in the
        returned NotificationResult.
        """
        outcome = NotificationResult(
            pipeline_name=result.pipeline_name,
            build_number=result.build_number,
            recipients=list(recipients),
        )

        if not recipients:
            outcome.status = "skipped"
            return outcome

        try:
            rendered = self.template_renderer.render(build_report_context(result))
        except NotificationTemplateError as e:
            outcome.error = str(e)
            self.logger.error(
                f"Build report rendering failed: {e}",
                extra={"event": "notification.render.failed"},
            )
            return outcome

        message = EmailMessage()
        message["Subject"] = rendered["subject"]
        message["From"] = build_sender_address(env_config)
        message["To"] = ", ".join(recipients)
        message.set_content(rendered["text_body"])
        message.add_alternative(rendered["html_body"], subtype="html")

        max_attempts = self.max_retries + 1
        for attempt in range(1, max_attempts + 1):
            if attempt > 1:
                delay = min(
                    self.retry_initial_delay * self.retry_backoff_multiplier ** (attempt - 2),
                    60.0,
                )
                self.logger.warning(
                    f"Retrying build report delivery (attempt {attempt}/{max_attempts}) "
                    f"after {delay:.1f}s",
                    extra={"event": "notification.send.retry", "attempt": attempt},
                )
                self.sleep(delay)

            outcome.attempts = attempt
            try:
                self.smtp_client.send(message, env_config)
            except SMTPDeliveryError as e:
                outcome.error = str(e)
                self.logger.warning(
                    f"Build report delivery failed (attempt {attempt}/{max_attempts}): {e}",
                    extra={
                        "event": "notification.send.failure",
                        "attempt": attempt,
                        "retry_remaining": attempt < max_attempts,
                    },
                )
                continue

            outcome.status = "sent"
            outcome.error = None
            self.logger.info(
                f"Build report sent to {', '.join(recipients)}",
                extra={
                    "event": "notification.send.success",
                    "attempt": attempt,
                    "recipients": recipients,
                },
            )
            return outcome

        self.logger.error(
            f"Build report delivery gave up after {max_attempts} attempts",
            extra={"event": "notification.send.exhausted", "error": outcome.error},
        )
        return outcome
