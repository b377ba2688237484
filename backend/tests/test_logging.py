# backend/tests/test_logging.py
from __future__ import annotations

import json
import logging

from strataguard.logging_config import JsonFormatter
from strataguard.middleware.request_id import pick_request_id
from strataguard.middleware.structured_logging import loggable_path


def _record(**extra) -> logging.LogRecord:
    rec = logging.LogRecord("strataguard.test", logging.INFO, __file__, 1, "hello %s", ("world",), None)
    for k, v in extra.items():
        setattr(rec, k, v)
    return rec


def test_formatter_emits_extras_and_redacts_secrets():
    line = json.loads(JsonFormatter().format(_record(violation_id=7, code="123456", mail_to="a@b.c")))
    assert line["message"] == "hello world"
    assert line["logger"] == "strataguard.test"
    assert line["violation_id"] == 7
    assert line["mail_to"] == "a@b.c"
    assert line["code"] == "***"


def test_public_tokens_are_masked_in_paths():
    assert loggable_path("/public/violation/6b1f0c3e/status") == "/public/violation/<token>/status"
    assert loggable_path("/public/violations/12") == "/public/violations/12"
    assert loggable_path("/api/violations/12") == "/api/violations/12"


def test_request_ids_from_clients_are_sanitised():
    assert pick_request_id("abc-123") == "abc-123"
    assert pick_request_id("bad id\nInjected: yes") != "bad id\nInjected: yes"
    assert len(pick_request_id(None)) == 32
