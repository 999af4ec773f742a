"""SMTP delivery of build reports."""

import logging
import smtplib
import ssl
from email.message import EmailMessage
from typing import Callable, Optional

from cipipeline.config.environment import EnvironmentConfig

from .models import SMTPDeliveryError

logger = logging.getLogger(__name__)


class SMTPClient:
    """Thin smtplib wrapper: connect, upgrade to TLS, authenticate, send, quit.

    Port 465 uses implicit TLS; any other port uses STARTTLS when
    ``SMTP_USE_TLS`` is on. The factories exist so tests can pass mocks.
    """

    def __init__(
        self,
        smtp_factory: Optional[Callable] = None,
        smtp_ssl_factory: Optional[Callable] = None,
    ):
        self.smtp_factory = smtp_factory or smtplib.SMTP
        self.smtp_ssl_factory = smtp_ssl_factory or smtplib.SMTP_SSL

    def send(self, message: EmailMessage, env_config: EnvironmentConfig) -> None:
        """
        Raises:
            SMTPDeliveryError: If connecting, authenticating or sending fails
        """
        smtp = None
        try:
            if env_config.smtp_port == 465:
                smtp = self.smtp_ssl_factory(
                    env_config.smtp_host,
                    env_config.smtp_port,
                    context=ssl.create_default_context(),
                )
            else:
                smtp = self.smtp_factory(env_config.smtp_host, env_config.smtp_port)
                if env_config.smtp_use_tls:
                    smtp.starttls(context=ssl.create_default_context())

            if env_config.smtp_user and env_config.smtp_pass:
                smtp.login(env_config.smtp_user, env_config.smtp_pass)

            smtp.send_message(message)
            logger.debug(f"Message sent to {message['To']}")

        except smtplib.SMTPException as e:
            raise SMTPDeliveryError(f"SMTP error during message delivery: {e}") from e
        except OSError as e:
            raise SMTPDeliveryError(f"Network error during SMTP connection: {e}") from e
        finally:
            if smtp is not None:
                try:
                    smtp.quit()
                except (smtplib.SMTPException, OSError) as e:
                    logger.warning(f"Error closing SMTP connection: {e}")


def build_sender_address(env_config: EnvironmentConfig) -> str:
    """``Name <SMTP_USER>``, or ``Name <noreply@SMTP_HOST>`` without a user."""
    sender_email = env_config.smtp_user or f"noreply@{env_config.smtp_host}"
    return f"{env_config.smtp_sender_name} <{sender_email}>"
