from __future__ import annotations

import json
import logging

from aegisx.core.logging import JsonLogFormatter, set_correlation_id


def test_json_formatter_includes_correlation_id_and_extras() -> None:
    set_correlation_id("corr-42")
    record = logging.LogRecord("aegisx.test", logging.INFO, __file__, 1, "login_succeeded", None, None)
    record.user_id = "u1"
    record.reason = ""

    payload = json.loads(JsonLogFormatter().format(record))

    assert payload["message"] == "login_succeeded"
    assert payload["level"] == "INFO"
    assert payload["correlation_id"] == "corr-42"
    assert payload["user_id"] == "u1"
    assert "reason" not in payload
