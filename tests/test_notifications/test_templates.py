"""
Test suite for the Jinja2 notification template engine.
"""

from decimal import Decimal

import pytest

from ancillary.services.notifications.templates import (
    TemplateEngine,
    TemplateNotFoundError,
    TemplateRenderError,
    get_template_engine,
)


@pytest.fixture
def engine() -> TemplateEngine:
    return get_template_engine()


class TestPackagedTemplates:
    """Test the templates shipped with the package."""

    @pytest.mark.parametrize(
        "template_name",
        [
            "cancellation_confirmation",
            "bulk_cancellation_confirmation",
            "admin_notification",
        ],
    )
    def test_templates_exist(self, engine: TemplateEngine, template_name: str) -> None:
        rendered = engine.render_email(template_name, {"items": [], "status": "x"})

        assert rendered["subject"]
        assert rendered["text_body"]

    def test_confirmation_skips_empty_lines(self, engine: TemplateEngine) -> None:
        rendered = engine.render_email(
            "cancellation_confirmation",
            {
                "name": "Jane",
                "outcome": "approved",
                "cancellation_id": "CXL-1-abc",
                "refund_amount": Decimal("40"),
                "cancellation_fee": 0,
                "currency": "GBP",
            },
        )

        lines = rendered["text_body"].splitlines()
        assert "Cancellation ID: CXL-1-abc" in lines
        assert "Refund: 40.00 GBP" in lines
        assert not any(line.startswith(("Product:", "Cancellation fee:", "Note:")) for line in lines)

    def test_admin_subject_without_reference(self, engine: TemplateEngine) -> None:
        rendered = engine.render_email("admin_notification", {"status": "order.failed"})

        assert rendered["subject"] == "Cancellation ORDER.FAILED"


class TestTemplateErrors:
    """Test failures are wrapped into template engine errors."""

    def test_missing_template(self, tmp_path) -> None:
        engine = TemplateEngine(template_dir=str(tmp_path))

        with pytest.raises(TemplateNotFoundError) as exc_info:
            engine.render_email("cancellation_confirmation", {})

        assert exc_info.value.template_name == "cancellation_confirmation"

    def test_broken_template(self, tmp_path) -> None:
        (tmp_path / "broken_subject.txt").write_text("Subject")
        (tmp_path / "broken.txt").write_text("{% if name %}unterminated")
        engine = TemplateEngine(template_dir=str(tmp_path))

        with pytest.raises(TemplateRenderError):
            engine.render_email("broken", {"name": "Jane"})


class TestMoneyFilter:
    """Test amount formatting."""

    @pytest.mark.parametrize(
        ("value", "currency", "expected"),
        [
            (Decimal("63.75"), "EUR", "63.75 EUR"),
            (85, "USD", "85.00 USD"),
            (None, "USD", "0.00 USD"),
            ("12.5", None, "12.50"),
        ],
    )
    def test_format(self, value, currency, expected: str) -> None:
        assert TemplateEngine._format_money(value, currency) == expected
