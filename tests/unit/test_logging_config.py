"""Tests for the structured logging system (financing_kernel/logging_config.py)."""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from financing_kernel.exceptions import InvalidTransitionError
from financing_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests, then restore the suite's DEBUG setup."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


class TestStructuredFormatter:
    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        record = _parse_all_logs(stream)[0]
        assert record["message"] == "hello"
        assert record["level"] == "INFO"
        assert record["logger"] == "financing_kernel.test"
        assert "ts" in record

    def test_extra_fields_and_types(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        invoice_id = uuid4()
        get_logger("test").info(
            "offer_created",
            extra={"invoice_id_extra": invoice_id, "amount": Decimal("5782.00")},
        )

        record = _parse_all_logs(stream)[0]
        assert record["invoice_id_extra"] == str(invoice_id)
        assert record["amount"] == "5782.00"

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        with LogContext.bind(correlation_id="corr-1", operation="accept_offer"):
            get_logger("test").info("inside")
        get_logger("test").info("outside")

        inside, outside = _parse_all_logs(stream)
        assert inside["correlation_id"] == "corr-1"
        assert inside["operation"] == "accept_offer"
        assert "correlation_id" not in outside

    def test_kernel_error_fields_extracted(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise InvalidTransitionError("Invoice", "inv-1", "settled", "cancel")
        except InvalidTransitionError:
            get_logger("test").error("refused", exc_info=True)

        record = _parse_all_logs(stream)[0]
        assert record["exc_type"] == "InvalidTransitionError"
        assert record["exc_code"] == "INVALID_TRANSITION"
        assert record["exc_current_state"] == "settled"
        assert "traceback" in record


class TestLogContext:
    def test_set_and_get(self):
        LogContext.set(invoice_id="inv-1", actor_role="buyer")
        assert LogContext.get_all() == {"invoice_id": "inv-1", "actor_role": "buyer"}

    def test_clear(self):
        LogContext.set(correlation_id="c")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_restores_previous(self):
        LogContext.set(operation="outer")
        with LogContext.bind(operation="inner", actor_id=uuid4()):
            assert LogContext.get_all()["operation"] == "inner"
        assert LogContext.get_all() == {"operation": "outer"}

    def test_bind_skips_none(self):
        with LogContext.bind(invoice_id=None, operation="create_invoice"):
            assert "invoice_id" not in LogContext.get_all()


class TestConfigureLogging:
    def test_idempotent(self):
        handler, _ = _make_handler()
        configure_logging(handler=handler)
        configure_logging(handler=handler)
        handlers = logging.getLogger("financing_kernel").handlers
        assert handlers.count(handler) == 1
        assert [h for h in handlers if isinstance(h.formatter, StructuredFormatter)] == [handler]

    def test_get_logger_is_child_of_root(self):
        assert get_logger("modules.invoices.service").name == (
            "financing_kernel.modules.invoices.service"
        )

    def test_level_filters(self):
        handler, stream = _make_handler()
        configure_logging(level=logging.WARNING, handler=handler)
        get_logger("test").info("hidden")
        get_logger("test").warning("shown")
        assert [r["message"] for r in _parse_all_logs(stream)] == ["shown"]
