"""Unit tests for NotificationService.

Tests the service for:
- Message construction (subject, sender, recipients, both bodies)
- Retry with exponential backoff on SMTP failures
- Template errors reported without delivery attempts
- Empty recipient lists
"""

from unittest.mock import Mock

import pytest

from cipipeline.config.environment import EnvironmentConfig
from cipipeline.notifications import (
    NotificationService,
    NotificationTemplateError,
    SMTPDeliveryError,
    TemplateRenderer,
)
from tests.helpers import make_run_result

RECIPIENTS = ["team@example.com", "oncall@example.com"]


@pytest.fixture
def env_config():
    return EnvironmentConfig(smtp_host="smtp.example.com", smtp_user="ci@example.com", smtp_pass="x")


@pytest.fixture
def smtp_client():
    return Mock()


@pytest.fixture
def sleep():
    return Mock()


@pytest.fixture
def service(smtp_client, sleep):
    return NotificationService(smtp_client=smtp_client, sleep=sleep)


class TestNotificationService:
    """Delivery of build reports."""

    def test_sends_report(self, service, smtp_client, env_config):
        outcome = service.notify(make_run_result(), RECIPIENTS, env_config)

        assert outcome.is_success()
        assert outcome.attempts == 1
        assert outcome.build_number == 7

        message, config = smtp_client.send.call_args.args
        assert config is env_config
        assert message["Subject"] == "[FAILURE] meterian-credentials #7 - Meterian Scan"
        assert message["From"] == "CI Pipeline <ci@example.com>"
        assert message["To"] == "team@example.com, oncall@example.com"
        assert message.get_body(("plain",)).get_content().startswith("Pipeline meterian-credentials")
        assert "<table" in message.get_body(("html",)).get_content()

    def test_retries_with_backoff(self, service, smtp_client, sleep, env_config):
        smtp_client.send.side_effect = [
            SMTPDeliveryError("timeout"),
            SMTPDeliveryError("timeout"),
            None,
        ]

        outcome = service.notify(make_run_result(), RECIPIENTS, env_config)

        assert outcome.is_success()
        assert outcome.attempts == 3
        assert outcome.error is None
        assert [c.args[0] for c in sleep.call_args_list] == [5.0, 10.0]

    def test_gives_up_after_max_retries(self, smtp_client, sleep, env_config):
        smtp_client.send.side_effect = SMTPDeliveryError("connection refused")
        service = NotificationService(smtp_client=smtp_client, max_retries=2, sleep=sleep)

        outcome = service.notify(make_run_result(), RECIPIENTS, env_config)

        assert outcome.status == "failed"
        assert outcome.attempts == 3
        assert outcome.error == "connection refused"
        assert smtp_client.send.call_count == 3

    def test_backoff_is_capped(self, smtp_client, sleep, env_config):
        smtp_client.send.side_effect = SMTPDeliveryError("down")
        service = NotificationService(
            smtp_client=smtp_client,
            max_retries=3,
            retry_initial_delay=40.0,
            sleep=sleep,
        )

        service.notify(make_run_result(), RECIPIENTS, env_config)

        assert [c.args[0] for c in sleep.call_args_list] == [40.0, 60.0, 60.0]

    def test_template_error_skips_delivery(self, smtp_client, env_config):
        renderer = Mock(spec=TemplateRenderer)
        renderer.render.side_effect = NotificationTemplateError("Template rendering failed: boom")
        service = NotificationService(template_renderer=renderer, smtp_client=smtp_client)

        outcome = service.notify(make_run_result(), RECIPIENTS, env_config)

        assert outcome.status == "failed"
        assert "boom" in outcome.error
        smtp_client.send.assert_not_called()

    def test_no_recipients(self, service, smtp_client, env_config):
        outcome = service.notify(make_run_result(), [], env_config)

        assert outcome.status == "skipped"
        smtp_client.send.assert_not_called()
