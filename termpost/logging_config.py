"""structlog setup. The terminal belongs to the UI, so logs go to a file."""

import logging
import re
from typing import Optional

import structlog

from .config import Config

REDACTED = "***"
_SENSITIVE_KEYS = {"authorization", "api_key", "api_key_value", "token", "bearer_token", "password"}
_BEARER_PATTERN = re.compile(r"\b(Bearer|Basic)\s+[^\s,;'\"]+", re.IGNORECASE)


def _redact_text(value: str) -> str:
    return _BEARER_PATTERN.sub(lambda m: f"{m.group(1)} {REDACTED}", value)


def redact_secrets(logger, method_name, event_dict):
    """Mask credential-like values before the event is rendered."""
    for key, value in list(event_dict.items()):
        if key.lower() in _SENSITIVE_KEYS and value:
            event_dict[key] = REDACTED
        elif isinstance(value, str):
            event_dict[key] = _redact_text(value)

    headers = event_dict.get("headers")
    if isinstance(headers, dict):
        event_dict["headers"] = {
            name: REDACTED if name.lower() in _SENSITIVE_KEYS else value
            for name, value in headers.items()
        }
    elif isinstance(headers, (list, tuple)):
        event_dict["headers"] = [
            (name, REDACTED if name.lower() in _SENSITIVE_KEYS else value)
            for name, value in headers
        ]
    return event_dict


def configure_logging(config: Optional[Config] = None, level: Optional[str] = None):
    config = config or Config.from_env()
    level_name = (level or config.log_level).upper()
    log_level = getattr(logging, level_name, logging.INFO)

    config.data_dir.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(config.log_file, encoding="utf-8")
    handler.setFormatter(logging.Formatter("%(message)s"))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(log_level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            redact_secrets,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        cache_logger_on_first_use=True,
    )
