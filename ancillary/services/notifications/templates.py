"""
Notification template engine with Jinja2 for email rendering.

Templates live in ``ancillary/templates/notifications``. Each email is a pair
of files: ``<name>_subject.txt`` and the plain text body ``<name>.txt``.
"""

from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Optional

from jinja2 import (
    Environment,
    FileSystemLoader,
    Template,
    TemplateError,
    TemplateNotFound,
    select_autoescape,
)

from ancillary.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TEMPLATE_DIR = (
    Path(__file__).parent.parent.parent / "templates" / "notifications"
)


class TemplateEngineError(Exception):
    """Base exception for template engine errors."""

    def __init__(self, message: str, template_name: Optional[str] = None):
        super().__init__(message)
        self.template_name = template_name


class TemplateNotFoundError(TemplateEngineError):
    """Raised when a template cannot be found."""

    pass


class TemplateRenderError(TemplateEngineError):
    """Raised when template rendering fails."""

    pass


class TemplateEngine:
    """
    Template engine for rendering notification emails.

    Registers a ``money`` filter that prints an amount with two decimals and
    its currency code, e.g. ``{{ refund_amount | money(currency) }}``.
    """

    def __init__(self, template_dir: Optional[str] = None, cache_size: int = 50):
        """
        Initialize the template engine.

        Args:
            template_dir: Directory containing template files. Defaults to
                the templates shipped with the package.
            cache_size: Size of the template cache.
        """
        self.template_dir = Path(template_dir) if template_dir else DEFAULT_TEMPLATE_DIR

        self.env = Environment(
            loader=FileSystemLoader(str(self.template_dir)),
            autoescape=select_autoescape(["html", "xml"]),
            cache_size=cache_size,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self.env.filters["money"] = self._format_money

        logger.debug(
            "Template engine initialized",
            template_dir=str(self.template_dir),
            cache_size=cache_size,
        )

    def render_email(self, template_name: str, context: dict[str, Any]) -> dict[str, str]:
        """
        Render an email template.

        Args:
            template_name: Template name without suffix
            context: Variables substituted into subject and body

        Returns:
            Dictionary with ``subject`` and ``text_body``

        Raises:
            TemplateNotFoundError: If either template file is missing
            TemplateRenderError: If rendering fails
        """
        try:
            subject = self._load_template(f"{template_name}_subject.txt").render(**context)
            body = self._load_template(f"{template_name}.txt").render(**context)
        except TemplateNotFound as e:
            logger.error(
                "Email template not found",
                template_name=template_name,
                error=str(e),
            )
            raise TemplateNotFoundError(
                f"Email template not found: {template_name}",
                template_name=template_name,
            ) from e
        except TemplateError as e:
            logger.error(
                "Email template rendering failed",
                template_name=template_name,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise TemplateRenderError(
                f"Failed to render email template: {e}",
                template_name=template_name,
            ) from e

        return {"subject": " ".join(subject.split()), "text_body": body}

    def _load_template(self, template_path: str) -> Template:
        return self.env.get_template(template_path)

    @staticmethod
    def _format_money(value: Any, currency: Optional[str] = None) -> str:
        """Format an amount as ``12.50 EUR``."""
        try:
            amount = Decimal(str(value or 0)).quantize(Decimal("0.01"))
        except InvalidOperation:
            return str(value)
        return f"{amount} {currency}" if currency else str(amount)


def get_template_engine(template_dir: Optional[str] = None) -> TemplateEngine:
    """Create a template engine over the given or packaged template directory."""
    return TemplateEngine(template_dir=template_dir)
