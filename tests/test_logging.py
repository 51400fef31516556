"""Redaction and correlation id processors."""

import uuid

from tasknest.logging import (
    _add_correlation_id,
    _redact_pii,
    correlation_id_var,
    set_correlation_id,
)


class TestRedaction:
    def test_masks_credential_and_email_fields(self):
        event = _redact_pii(
            None,
            "info",
            {
                "event": "login_succeeded",
                "email": "alice@example.com",
                "refresh_token": "abcdefghijkl",
                "user_no": 7,
            },
        )

        assert event["email"] == "al***om"
        assert event["refresh_token"] == "ab***kl"
        assert event["event"] == "login_succeeded"
        assert event["user_no"] == 7

    def test_structural_fields_untouched(self):
        event = _redact_pii(
            None, "warning", {"event": "x", "error_code": "rate_limited", "status_code": 429}
        )
        assert event["error_code"] == "rate_limited"

    def test_short_values_kept(self):
        assert _redact_pii(None, "info", {"code": "1234"})["code"] == "1234"


class TestCorrelationId:
    def test_generates_uuid_when_missing(self):
        token = correlation_id_var.set(None)
        try:
            cid = set_correlation_id()
            assert str(uuid.UUID(cid)) == cid
            assert _add_correlation_id(None, "info", {})["correlation_id"] == cid
        finally:
            correlation_id_var.reset(token)

    def test_keeps_supplied_id(self):
        token = correlation_id_var.set(None)
        try:
            assert set_correlation_id("trace-1") == "trace-1"
        finally:
            correlation_id_var.reset(token)
