"""JSONL request log for Persona Relay.

Every outbound AI request leaves a trail in ``requests.jsonl``: one JSON
object per line, written through the non-propagating
``persona_relay.requests`` logger so request records never mix with the
application log.

Event types:
    ai_request
        Written by ``HttpAIServiceAdapter`` once per network-level send,
        after retries. Fields: ``operation`` ("send_request"), ``status``
        ("success" | "error"), ``request_id``, ``latency_ms``; ``model`` on
        success; ``error_type``, ``error_code`` and ``error_message`` on
        error.
    request_lifecycle
        Written by ``SendRequestUseCase`` (through ``RequestLoggerAdapter``)
        once per recorded attempt. Fields: ``operation`` ("send"),
        ``status``, ``request_id``, ``personality_id``, ``model``,
        ``attempt``, ``request_status`` (aggregate status after the
        attempt), ``latency_ms`` and the same error fields as above.

Both carry ``timestamp`` (ISO 8601, UTC), filled in when the caller did not
set one. Datetimes and paths inside an event are serialized as strings.

Location:
    ``$PERSONA_RELAY_LOG_DIR/requests.jsonl`` when the variable is set,
    otherwise ``logs/requests.jsonl`` under the project root. UTF-8, no
    rotation.
"""

from __future__ import annotations

import functools
import json
import logging
import os
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import TypeAdapter

REQUEST_LOG_FILENAME = "requests.jsonl"


@functools.cache
def _get_logs_dir() -> Path:
    """Resolve (and create) the logs directory once per process."""
    override = os.getenv("PERSONA_RELAY_LOG_DIR")
    logs_dir = Path(override) if override else Path(__file__).resolve().parents[3] / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    return logs_dir


def _build_request_logger(logs_dir: Path) -> logging.Logger:
    request_logger = logging.getLogger("persona_relay.requests")
    if not request_logger.handlers:
        request_logger.setLevel(logging.INFO)
        handler = logging.FileHandler(logs_dir / REQUEST_LOG_FILENAME, encoding="utf-8")
        handler.setFormatter(logging.Formatter("%(message)s"))
        request_logger.addHandler(handler)
        request_logger.propagate = False
    return request_logger


LOGS_DIR = _get_logs_dir()
REQUEST_LOGGER = _build_request_logger(LOGS_DIR)


def _json_default(value: Any) -> Any:
    match value:
        case datetime():
            return TypeAdapter(datetime).dump_python(value, mode="json")
        case _:
            return str(value)


def log_request_event(event: dict[str, Any]) -> None:
    """Append one request event to the JSONL log.

    The caller's dict is left untouched; ``timestamp`` is added to the
    written record when missing.

    Args:
        event: An ``ai_request`` or ``request_lifecycle`` payload.

    Example:
        >>> log_request_event({
        ...     "event": "request_lifecycle",
        ...     "operation": "send",
        ...     "status": "success",
        ...     "request_id": "air_1700000000000_ab12cd34",
        ...     "attempt": 1,
        ... })
    """
    record = {"timestamp": datetime.now(UTC).isoformat(), **event}
    REQUEST_LOGGER.info(json.dumps(record, default=_json_default))


__all__ = ["LOGS_DIR", "REQUEST_LOGGER", "REQUEST_LOG_FILENAME", "log_request_event"]
