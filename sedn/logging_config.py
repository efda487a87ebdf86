"""
Structured logging configuration using structlog.

JSON lines in production, colored console output when running at DEBUG.
"""

import logging
import sys
from typing import Optional

import structlog

from .config import settings


# Event keys whose values are shortened before rendering
SENSITIVE_KEYS = frozenset({"solution", "private_key", "verifier_private_key", "signature", "token"})


def redact_sensitive(logger, method_name, event_dict):
    """structlog processor applying ``redact`` to sensitive event keys."""
    for key in SENSITIVE_KEYS.intersection(event_dict):
        event_dict[key] = redact(str(event_dict[key]))
    return event_dict


def _pre_chain(json_output: bool) -> list:
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        redact_sensitive,
    ]
    if json_output:
        processors.append(structlog.processors.format_exc_info)
    return processors


def setup_logging(log_level: Optional[str] = None) -> None:
    """Configure structlog and route stdlib logging through the same pipeline.

    Module loggers (``logging.getLogger(__name__)``) and the structlog event
    loggers share the pre-chain, so both carry the bound execution context
    and have sensitive keys redacted.

    Args:
        log_level: Override log level (default: from settings.log_level)
    """
    level = getattr(logging, (log_level or settings.log_level).upper(), logging.INFO)
    json_output = level != logging.DEBUG
    pre_chain = _pre_chain(json_output)

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    # RPC polling is chatty at the transport level
    for name in ("httpcore", "httpx"):
        logging.getLogger(name).setLevel(logging.WARNING)


def bind_execution_context(**values) -> None:
    """Bind values (execution_id, chain_id, ...) onto every log line in this task."""
    structlog.contextvars.bind_contextvars(**values)


def clear_execution_context() -> None:
    structlog.contextvars.clear_contextvars()


def redact(value: Optional[str], keep: int = 6) -> str:
    """Shorten secrets (solutions, keys) before they reach a log line."""
    if not value:
        return ""
    if len(value) <= keep:
        return "***"
    return f"{value[:keep]}***"
