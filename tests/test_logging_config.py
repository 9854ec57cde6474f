"""Unit tests for app.middleware.logging_config - scope stamping and redaction."""

import json
import logging

from flask import g

from app.middleware.logging_config import (
    REDACTED,
    JSONFormatter,
    ReadableFormatter,
    ScopeFilter,
)

CLAIM_ID = "0f8fad5b-d9cb-469f-a165-70867728950e"


def _record(msg="Submitting claim", **extra):
    record = logging.makeLogRecord({
        "name": "app.services.claim_service",
        "msg": msg,
        "levelno": logging.INFO,
        "levelname": "INFO",
    })
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestScopeFilter:
    def test_request_scope_is_stamped(self, app):
        with app.test_request_context(f"/api/v1/claims/{CLAIM_ID}/submit", method="POST"):
            g.request_id = "req-123"
            record = _record()
            assert ScopeFilter().filter(record) is True
        assert record.claim_id == CLAIM_ID
        assert record.request_id == "req-123"
        assert record.charity_id is None

    def test_explicit_scope_is_kept(self, app):
        with app.test_request_context(f"/api/v1/claims/{CLAIM_ID}/submit", method="POST"):
            record = _record(claim_id="other-claim")
            ScopeFilter().filter(record)
        assert record.claim_id == "other-claim"

    def test_outside_request_nothing_is_added(self):
        record = _record()
        ScopeFilter().filter(record)
        assert not hasattr(record, "claim_id")

    def test_credential_extras_are_redacted(self):
        record = _record(password="gateway-pass-01", Authorization="Bearer abc", sender_id="USER01")
        ScopeFilter().filter(record)
        assert record.password == REDACTED
        assert record.Authorization == REDACTED
        assert record.sender_id == "USER01"


class TestFormatters:
    def test_json_line_carries_extras_and_scope(self):
        record = _record(claim_id=CLAIM_ID, status=200, gateway_password="pw")
        ScopeFilter().filter(record)
        entry = json.loads(JSONFormatter().format(record))
        assert entry["message"] == "Submitting claim"
        assert entry["level"] == "INFO"
        assert entry["claim_id"] == CLAIM_ID
        assert entry["status"] == 200
        assert entry["gateway_password"] == REDACTED
        assert "pw" not in entry.values()

    def test_readable_line_shows_scope(self):
        line = ReadableFormatter(color=False).format(_record(claim_id="c1", request_id="r1"))
        assert line.endswith("app.services.claim_service: Submitting claim [claim=c1 req=r1]")

    def test_readable_line_without_scope(self):
        line = ReadableFormatter(color=False).format(_record())
        assert line.endswith("INFO     app.services.claim_service: Submitting claim")
