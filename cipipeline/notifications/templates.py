"""Jinja2 rendering of build report e-mails."""

import logging
from typing import Any, Dict

from jinja2 import Environment, PackageLoader, StrictUndefined, TemplateError, select_autoescape

from .models import NotificationTemplateError

logger = logging.getLogger(__name__)


class TemplateRenderer:
    """Renders subject, HTML and text bodies from cipipeline.notifications templates.

    StrictUndefined turns a missing context key into an error instead of an
    empty string. Only the HTML body is autoescaped.
    """

    def __init__(
        self,
        template_dir: str = "email_templates",
        subject_template: str = "build_report_subject.j2",
        html_template: str = "build_report_body.html.j2",
        text_template: str = "build_report_body.txt.j2",
    ):
        self.subject_template_name = subject_template
        self.html_template_name = html_template
        self.text_template_name = text_template

        self.env = Environment(
            loader=PackageLoader("cipipeline.notifications", template_dir),
            autoescape=select_autoescape(enabled_extensions=("html.j2",), default=False),
            undefined=StrictUndefined,
        )

    def render(self, context: Dict[str, Any]) -> Dict[str, str]:
        """
        Returns:
            ``subject`` (single line), ``html_body`` and ``text_body``

        Raises:
            NotificationTemplateError: If any template fails to render
        """
        try:
            subject = (
                self.env.get_template(self.subject_template_name)
                .render(context)
                .strip()
                .replace("\n", " ")
            )
            html_body = self.env.get_template(self.html_template_name).render(context)
            text_body = self.env.get_template(self.text_template_name).render(context)
        except TemplateError as e:
            error_msg = f"Template rendering failed: {e}"
            logger.error(error_msg, exc_info=True)
            raise NotificationTemplateError(error_msg) from e

        return {"subject": subject, "html_body": html_body, "text_body": text_body}
