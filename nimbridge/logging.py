"""structlog setup for the relay, with API-key redaction on every event."""

import json
import logging
import re
import sys
from typing import Any

import structlog

# NIM keys, OpenAI-style keys, Authorization header values
_SECRET_RE = re.compile(r"nvapi-[A-Za-z0-9_-]{10,}|sk-[A-Za-z0-9_-]{10,}|Bearer\s+[A-Za-z0-9_\-.]{10,}")


def mask_secret(value: str) -> str:
    """Keep the first and last four characters of *value*; short values are fully hidden."""
    return "****" if len(value) <= 8 else f"{value[:4]}****{value[-4:]}"


def _redact_value(value: Any) -> Any:
    if isinstance(value, str):
        return _SECRET_RE.sub(lambda m: mask_secret(m.group(0)), value)
    if isinstance(value, dict):
        return {k: _redact_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return type(value)(_redact_value(v) for v in value)
    return value


def _redact_event(logger: Any, method_name: str, event_dict: dict) -> dict:
    return {key: _redact_value(val) for key, val in event_dict.items()}


def setup_logging(json_output: bool = True, level: str = "INFO") -> None:
    """Route structlog through stdlib logging under the ``nimbridge`` logger."""
    renderer: Any
    if json_output:
        renderer = structlog.processors.JSONRenderer(serializer=lambda obj, **kw: json.dumps(obj, ensure_ascii=False, **kw))
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            _redact_event,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
    ))
    root = logging.getLogger("nimbridge")
    root.handlers[:] = [handler]
    root.setLevel(level.upper())
    root.propagate = False


def get_logger(name: str = "nimbridge") -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
