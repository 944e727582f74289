"""Structured logging for focusflow.

Every module logs through ``get_logger(__name__)`` with event-style messages
and keyword fields. Two processors run on every event: one masks anything
that looks like a credential, the other clips free-text fields so that the
owner's conversation text never lands in logs in full.
"""

import json
import logging
import re
import sys
from typing import Any

import structlog

# Patterns that look like secrets in log output
_SECRET_PATTERNS = [
    re.compile(r"sk-[A-Za-z0-9_-]{10,}"),           # OpenAI / Anthropic style
    re.compile(r"Bearer\s+[A-Za-z0-9_\-.]{10,}"),    # Authorization headers
    re.compile(r"AIza[A-Za-z0-9_-]{10,}"),           # Google API keys
    re.compile(r"ghp_[A-Za-z0-9]{10,}"),             # GitHub PAT
]

# Fields that may carry conversation text
_TEXT_FIELDS = frozenset({"content", "preview", "user_message", "reply"})
MAX_TEXT_CHARS = 80

# Chatty third-party loggers kept at WARNING unless debugging
_NOISY_LOGGERS = ("LiteLLM", "litellm", "httpx", "httpcore")


def mask_secret(value: str) -> str:
    """Mask a secret value, keeping first 4 and last 4 chars visible.

    >>> mask_secret("sk-abc123456789xyz")
    'sk-a****9xyz'
    """
    if len(value) <= 8:
        return "****"
    return value[:4] + "****" + value[-4:]


def _redact_value(value: str) -> str:
    for pattern in _SECRET_PATTERNS:
        value = pattern.sub(lambda m: mask_secret(m.group(0)), value)
    return value


def _redact_event(logger: Any, method_name: str, event_dict: dict) -> dict:
    """Structlog processor that redacts secrets from all string values."""
    for key, val in event_dict.items():
        if isinstance(val, str):
            event_dict[key] = _redact_value(val)
    return event_dict


def _clip_text_fields(logger: Any, method_name: str, event_dict: dict) -> dict:
    for key in _TEXT_FIELDS.intersection(event_dict):
        val = event_dict[key]
        if isinstance(val, str) and len(val) > MAX_TEXT_CHARS:
            event_dict[key] = val[:MAX_TEXT_CHARS] + "..."
    return event_dict


def bind_turn(owner_id: str, thread_id: str) -> None:
    """Attach owner and thread to every event logged by the current task."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(owner_id=owner_id, thread_id=thread_id)


def setup_logging(json_output: bool = False, level: str = "WARNING") -> None:
    """Configure structlog over the stdlib ``focusflow`` logger.

    Args:
        json_output: Emit JSON lines instead of the console renderer.
        level: Level name for the ``focusflow`` logger hierarchy.
    """
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        _clip_text_fields,
        _redact_event,
    ]

    if json_output:
        renderer = structlog.processors.JSONRenderer(serializer=lambda obj, **kw: json.dumps(obj, ensure_ascii=False, **kw))
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )

    numeric_level = getattr(logging, level.upper(), logging.WARNING)
    root = logging.getLogger("focusflow")
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(numeric_level)
    root.propagate = False

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))


def get_logger(name: str = "focusflow") -> structlog.stdlib.BoundLogger:
    """Return a structlog bound logger for the given name."""
    return structlog.get_logger(name)
