from __future__ import annotations

import logging
import os
import sys
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, MutableMapping, cast
from uuid import UUID

import structlog

_configured: bool = False

_SENSITIVE_KEYS = {
    "token",
    "access_token",
    "refresh_token",
    "authorization",
    "password",
    "secret",
    "api_key",
    "database_url",
    "dsn",
}


def _add_msg_from_event(_: Any, __: str, event_dict: MutableMapping[str, Any]) -> Mapping[str, Any]:
    """Mirror structlog's ``event`` into ``msg`` so every line carries both keys."""
    if "msg" not in event_dict and isinstance(event_dict.get("event"), str):
        event_dict["msg"] = event_dict["event"]
    return event_dict


def _plain(value: Any) -> Any:
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _render_domain_values(
    _: Any, __: str, event_dict: MutableMapping[str, Any]
) -> Mapping[str, Any]:
    """Proposal ids, enums and deadlines are logged as their plain JSON form."""
    return {key: _plain(value) for key, value in event_dict.items()}


def _mask_value(key: str, value: Any) -> Any:
    if isinstance(value, Mapping):
        typed_mapping = cast(Mapping[str, Any], value)
        return {k: _mask_value(k, v) for k, v in typed_mapping.items()}
    if isinstance(value, list):
        return [_mask_value(key, item) for item in cast(list[Any], value)]
    if key.lower() in _SENSITIVE_KEYS:
        return "[REDACTED]"
    return value


def _mask_sensitive_values(
    _: Any, __: str, event_dict: MutableMapping[str, Any]
) -> Mapping[str, Any]:
    """Redact secret-bearing keys (case-insensitive), recursing into dicts and lists."""
    return {key: _mask_value(key, value) for key, value in event_dict.items()}


def configure_logging(level: str | None = None) -> None:
    """Configure structlog/stdlib logging for JSON Lines output.

    - Keys: ts, level, msg, event
    - Timestamp: UTC ISO-8601
    - Output: one JSON object per line on stdout
    """

    global _configured

    raw_level: str = level if level is not None else os.getenv("LOG_LEVEL", "INFO")
    log_level = getattr(logging, raw_level.upper(), logging.INFO)

    # force=True lets tests that swap sys.stdout (capsys) reconfigure the handler.
    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        stream=sys.stdout,
        force=True,
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
            _add_msg_from_event,
            _render_domain_values,
            _mask_sensitive_values,
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    _configured = True


def is_configured() -> bool:
    return _configured
