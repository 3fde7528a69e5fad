"""Tests for log configuration and secret redaction."""

import json
import logging

import structlog

from termpost.config import Config
from termpost.logging_config import REDACTED, configure_logging, redact_secrets


def test_sensitive_keys_are_masked() -> None:
    event = {"event": "login", "password": "hunter2", "api_key_value": "k", "user": "ada"}
    result = redact_secrets(None, "info", event)
    assert result["password"] == REDACTED
    assert result["api_key_value"] == REDACTED
    assert result["user"] == "ada"


def test_bearer_tokens_in_text_are_masked() -> None:
    result = redact_secrets(None, "info", {"event": "sent", "command": "curl -H 'Authorization: Bearer abc.def'"})
    assert "abc.def" not in result["command"]
    assert "Bearer ***" in result["command"]


def test_header_lists_are_masked() -> None:
    event = {"event": "request", "headers": [("Authorization", "Basic eDp5"), ("Accept", "*/*")]}
    result = redact_secrets(None, "info", event)
    assert result["headers"] == [("Authorization", REDACTED), ("Accept", "*/*")]


def test_header_dicts_are_masked() -> None:
    result = redact_secrets(None, "info", {"event": "request", "headers": {"authorization": "x", "Accept": "*/*"}})
    assert result["headers"] == {"authorization": REDACTED, "Accept": "*/*"}


def test_configure_logging_writes_json_lines(tmp_path) -> None:
    config = Config(data_dir=tmp_path)
    configure_logging(config, level="DEBUG")
    try:
        structlog.get_logger("termpost.test").info("Request dispatched", url="http://x", token="secret")
        for handler in logging.getLogger().handlers:
            handler.flush()

        line = config.log_file.read_text(encoding="utf-8").strip().splitlines()[-1]
        record = json.loads(line)
        assert record["event"] == "Request dispatched"
        assert record["token"] == REDACTED
        assert record["level"] == "info"
        assert record["logger"] == "termpost.test"
    finally:
        for handler in list(logging.getLogger().handlers):
            handler.close()
            logging.getLogger().removeHandler(handler)
        structlog.reset_defaults()
