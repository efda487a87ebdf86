import logging

import structlog

from sedn.logging_config import (
    bind_execution_context,
    clear_execution_context,
    redact,
    redact_sensitive,
    setup_logging,
)


def test_redact_shortens_secrets():
    assert redact("correct horse battery staple") == "correc***"
    assert redact("abc") == "***"
    assert redact(None) == ""


def test_setup_logging_sets_level():
    setup_logging("DEBUG")
    try:
        assert logging.getLogger().level == logging.DEBUG
        assert logging.getLogger("httpx").level == logging.WARNING
    finally:
        setup_logging("INFO")


def test_execution_context_binding():
    bind_execution_context(execution_id="exec_1", chain_id=137)
    try:
        bound = structlog.contextvars.get_contextvars()
        assert bound["execution_id"] == "exec_1"
        assert bound["chain_id"] == 137
    finally:
        clear_execution_context()
    assert "execution_id" not in structlog.contextvars.get_contextvars()


def test_processor_redacts_sensitive_keys():
    event = redact_sensitive(None, "info", {"event": "claim_built", "solution": "open sesame", "chain_id": 137})
    assert event["solution"] == "open s***"
    assert event["chain_id"] == 137
