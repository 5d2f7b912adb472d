"""structlog configuration for the listener.

Request handlers bind a per-request context (id, method, path, peer) so every
line logged while a notification is processed can be correlated. Raw
notification bodies are logged under the ``payload`` key and are shortened
before rendering.
"""

from __future__ import annotations

import logging
import re
import sys
from uuid import uuid4

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

PAYLOAD_KEYS = ("payload",)
PAYLOAD_LIMIT = 200

_SECRET_RE = re.compile(
    r"(key|secret|password|signature)[\"']?\s*[:=]\s*[\"']?[\w\-\.]+", re.IGNORECASE
)


def excerpt(data: bytes | str, limit: int = PAYLOAD_LIMIT) -> str:
    """Shorten a request body for log output."""
    if isinstance(data, bytes):
        data = data.decode("utf-8", errors="replace")
    if len(data) <= limit:
        return data
    return data[:limit] + f"... ({len(data) - limit} more chars)"


def _shorten_payload(_logger: WrappedLogger, _method: str, event_dict: EventDict) -> EventDict:
    for key in PAYLOAD_KEYS:
        value = event_dict.get(key)
        if isinstance(value, (bytes, str)):
            event_dict[key] = excerpt(value)
    return event_dict


def _redact_secrets(_logger: WrappedLogger, _method: str, event_dict: EventDict) -> EventDict:
    for key, value in list(event_dict.items()):
        if isinstance(value, str) and _SECRET_RE.search(value):
            event_dict[key] = _SECRET_RE.sub(r"\1=***REDACTED***", value)
    return event_dict


# ---------------------------------------------------------------------------
# Per-request context
# ---------------------------------------------------------------------------

def bind_request_context(method: str, path: str, remote: str | None) -> str:
    """Attach request details to every log line of the current task."""
    request_id = uuid4().hex[:12]
    structlog.contextvars.bind_contextvars(
        request_id=request_id, method=method, path=path, remote=remote or "unknown"
    )
    return request_id


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------

def setup_logging(level: str = "INFO", json_output: bool = False) -> None:
    """Route structlog through stdlib logging on stderr."""
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    pre_chain: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _shorten_payload,
        _redact_secrets,
    ]
    renderer: Processor = (
        structlog.processors.JSONRenderer() if json_output
        else structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    )

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(numeric_level)

    # aiohttp.access logs one line per request; the listener logs its own
    for name in ("aiohttp.access", "httpx", "httpcore"):
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
