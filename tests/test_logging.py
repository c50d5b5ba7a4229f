"""
Tests for structured logging output and secret redaction.
"""
import io
import json
from typing import Any, Generator

import pytest
import structlog

from paypal_checkout.monitoring.logging import REDACTED, redact_secrets, setup_logging


@pytest.fixture
def log_stream() -> Generator[io.StringIO, Any, None]:
    """Route log output into a buffer, then restore stdout logging."""
    stream = io.StringIO()
    setup_logging(stream)
    yield stream
    setup_logging()


def last_line(stream: io.StringIO) -> Any:
    return json.loads(stream.getvalue().splitlines()[-1])


class TestLogOutput:
    """Test suite for the JSON log format."""

    @pytest.mark.unit
    def test_single_json_object_per_line(self, log_stream: io.StringIO) -> None:
        """Test fields are top-level JSON, not an encoded string inside message."""
        structlog.get_logger("paypal_checkout.test").warning(
            "paypal_order_created", processor_order_id="PO-1"
        )

        line = last_line(log_stream)

        assert line["message"] == "paypal_order_created"
        assert line["processor_order_id"] == "PO-1"
        assert line["level"] == "WARNING"
        assert line["logger"] == "paypal_checkout.test"
        assert line["@timestamp"]
        assert line["app_name"] == "paypal-checkout"

    @pytest.mark.unit
    def test_context_vars_included(self, log_stream: io.StringIO) -> None:
        structlog.contextvars.bind_contextvars(transmission_id="T-1")
        try:
            structlog.get_logger("paypal_checkout.test").warning("webhook_received")
        finally:
            structlog.contextvars.unbind_contextvars("transmission_id")

        assert last_line(log_stream)["transmission_id"] == "T-1"

    @pytest.mark.unit
    def test_secrets_never_written(self, log_stream: io.StringIO) -> None:
        structlog.get_logger("paypal_checkout.test").warning(
            "paypal_request_failed",
            error="401 for Authorization: Bearer A21-token-1",
            headers={"PAYPAL-TRANSMISSION-SIG": "c2lnbmF0dXJl", "PAYPAL-TRANSMISSION-ID": "T-1"},
        )

        output = log_stream.getvalue()
        assert "A21-token-1" not in output
        assert "c2lnbmF0dXJl" not in output
        assert last_line(log_stream)["headers"]["PAYPAL-TRANSMISSION-ID"] == "T-1"


class TestRedactSecrets:
    """Test suite for the redaction processor."""

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "key", ["authorization", "Authorization", "access_token", "client_secret", "paypal_transmission_sig"]
    )
    def test_sensitive_keys_masked(self, key: str) -> None:
        event = redact_secrets(None, "info", {"event": "x", key: "secret-value"})

        assert event[key] == REDACTED

    @pytest.mark.unit
    def test_bearer_token_masked_in_text(self) -> None:
        event = redact_secrets(None, "info", {"event": "x", "body": "Bearer abc.DEF-123=="})

        assert event["body"] == f"Bearer {REDACTED}"

    @pytest.mark.unit
    def test_other_fields_untouched(self) -> None:
        event = redact_secrets(None, "info", {"event": "x", "order_id": 7, "status": "APPROVED"})

        assert event == {"event": "x", "order_id": 7, "status": "APPROVED"}
