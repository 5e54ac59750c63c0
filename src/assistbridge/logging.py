from __future__ import annotations

import errno
import logging
import re
import sys
from typing import Any

import structlog


OPENAI_KEY_RE = re.compile(r"\bsk-[A-Za-z0-9_-]{8,}")
AUTH_HEADER_RE = re.compile(r"\b(Basic|Bearer)\s+[A-Za-z0-9+/=._-]{8,}")


def redact_secrets_processor(_, __, event_dict):
    """Processor to redact API keys and auth headers from log messages."""
    for field in ("event", "error", "body"):
        value = event_dict.get(field)
        if not isinstance(value, str):
            continue
        redacted = OPENAI_KEY_RE.sub("sk-[REDACTED]", value)
        redacted = AUTH_HEADER_RE.sub(r"\1 [REDACTED]", redacted)
        if redacted != value:
            event_dict[field] = redacted

    return event_dict


class SafeStreamHandler(logging.StreamHandler):
    def handleError(self, record: logging.LogRecord) -> None:
        exc = sys.exc_info()[1]
        if isinstance(exc, BrokenPipeError) or (
            isinstance(exc, OSError) and exc.errno == errno.EPIPE
        ):
            try:
                self.stream.close()
            except Exception:
                pass
            return
        super().handleError(record)


def get_logger(name: str | None = None) -> Any:
    return structlog.get_logger(name)


def bound_message(**values: Any):
    """Attach message identifiers to every log line emitted inside the block."""
    return structlog.contextvars.bound_contextvars(**values)


def setup_logging(*, debug: bool = False, json_output: bool | None = None) -> None:
    """Configure structlog for stderr with secret redaction.

    Debug runs render for a console; otherwise each event is a JSON line.
    """
    if json_output is None:
        json_output = not debug
    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            redact_secrets_processor,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = SafeStreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(message)s"))
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        handlers=[handler],
        force=True,
    )
    for noisy in ("httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
