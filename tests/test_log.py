"""Tests for credential redaction in log output."""

import logging

from rad_security_mcp.log import REDACTED, RedactingFilter, redact


def test_redact_masks_nested_sensitive_keys():
    data = {
        "endpoint": "/x",
        "headers": {"Authorization": "Bearer t", "Accept": "json"},
        "items": [{"secret_key": "s", "name": "n"}],
        "session_token": "abc",
    }
    assert redact(data) == {
        "endpoint": "/x",
        "headers": {"Authorization": REDACTED, "Accept": "json"},
        "items": [{"secret_key": REDACTED, "name": "n"}],
        "session_token": REDACTED,
    }
    assert data["session_token"] == "abc"


def test_filter_redacts_record_args():
    record = logging.LogRecord("t", logging.INFO, __file__, 1, "params %s", ({"api_key": "k"},), None)
    assert RedactingFilter().filter(record)
    assert record.getMessage() == "params {'api_key': '[REDACTED]'}"
