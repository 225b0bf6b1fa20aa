"""Structured JSON logging: context propagation and exception fields."""

import json
import logging
from io import StringIO

import pytest

from warehouse_kernel.exceptions import InsufficientStockError
from warehouse_kernel.logging_config import LogContext, StructuredFormatter, get_logger


def _format(record_factory):
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    logger = logging.getLogger("warehouse_kernel.tests.structured")
    logger.addHandler(handler)
    try:
        record_factory(logger)
    finally:
        logger.removeHandler(handler)
    return [json.loads(line) for line in stream.getvalue().splitlines()]


class TestFormatter:
    def test_one_json_object_per_line(self):
        (entry,) = _format(lambda log: log.info("stock_checked", extra={"quantity": 3}))
        assert entry["message"] == "stock_checked"
        assert entry["level"] == "INFO"
        assert entry["quantity"] == 3
        assert entry["logger"] == "warehouse_kernel.tests.structured"

    def test_context_fields_included(self):
        with LogContext.bind(correlation_id="req-1", document_id="doc-9"):
            (entry,) = _format(lambda log: log.info("inside"))
        assert entry["correlation_id"] == "req-1"
        assert entry["document_id"] == "doc-9"

    def test_bind_restores_previous_context(self):
        LogContext.set(actor_id="outer")
        with LogContext.bind(actor_id="inner"):
            assert LogContext.get_all()["actor_id"] == "inner"
        assert LogContext.get_all()["actor_id"] == "outer"

    def test_unknown_context_field_rejected(self):
        with pytest.raises(KeyError):
            LogContext.set(tenant="x")

    def test_exception_fields_flattened(self):
        def log_error(log):
            try:
                raise InsufficientStockError("p-1", "l-1", requested=5, available=2)
            except InsufficientStockError:
                log.warning("confirm_failed", exc_info=True)

        (entry,) = _format(log_error)
        assert entry["exc_type"] == "InsufficientStockError"
        assert entry["exc_code"] == InsufficientStockError.code
        assert entry["exc_requested"] == 5
        assert entry["exc_available"] == 2
        assert "traceback" in entry


class TestKernelLoggers:
    def test_get_logger_namespaced(self):
        assert get_logger("services.ledger").name == "warehouse_kernel.services.ledger"

    def test_confirm_logs_carry_document_context(self, captured_logs, receive, product, loc_a):
        result = receive(product, loc_a, 2)
        confirmed = [r for r in captured_logs() if r["message"] == "document_confirmed"]
        assert len(confirmed) == 1
        assert confirmed[0]["document_id"] == str(result.document.id)
        assert confirmed[0]["number"] == result.document.number
