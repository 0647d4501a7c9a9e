"""
Tests for structured logging and the socket correlation context.
"""
import logging

import pytest

from app.core.logging import (
    StructuredLogger, actor_id_var, bind_socket_context, log_operation, request_id_var, request_start_var,
)


@pytest.fixture(autouse=True)
def clean_context():
    yield
    request_id_var.set(None)
    actor_id_var.set(None)
    request_start_var.set(None)


def test_socket_context_is_attached(caplog):
    caplog.set_level(logging.INFO, logger="officehub.test")
    bind_socket_context("sid-1", 7)

    StructuredLogger("officehub.test").info("message relayed", room="conversation_c1")

    line = caplog.records[-1].getMessage()
    assert line.startswith("[sid-1][user 7] message relayed")
    assert "room=conversation_c1" in line


def test_error_is_summarised(caplog):
    caplog.set_level(logging.WARNING, logger="officehub.test")

    StructuredLogger("officehub.test").warning("emit failed", error=ConnectionError("closed"))

    assert caplog.records[-1].getMessage().endswith("| error=ConnectionError: closed")


@pytest.mark.anyio
async def test_log_operation_reraises_and_logs(caplog):
    caplog.set_level(logging.ERROR, logger="officehub.test")

    @log_operation("save_thing", StructuredLogger("officehub.test"))
    async def save_thing():
        raise RuntimeError("disk full")

    with pytest.raises(RuntimeError):
        await save_thing()

    assert "save_thing failed" in caplog.records[-1].getMessage()
