"""Pytest bootstrap for backend test runs.

This file sits at the backend/ directory root so it is imported before any
test module. The environment has to be in place before `app.core.config`
is first imported, because settings and the database engine are created
at import time.
"""
import os

os.environ["TESTING"] = "true"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test_officehub.db"
os.environ["NOTIFICATIONS_ENABLED"] = "true"
# Transports stay unconfigured unless a test injects one
os.environ["SMTP_USER"] = ""
os.environ["SMTP_PASSWORD"] = ""
os.environ["SMS_ACCOUNT_SID"] = ""
os.environ.pop("SOCKETIO_REDIS_URL", None)

import pytest


def pytest_collection_modifyitems(items):
    """Treat legacy pytest.mark.asyncio as anyio-compatible so tests run under the anyio plugin."""
    for item in items:
        if 'asyncio' in getattr(item, 'keywords', {}):
            item.add_marker(pytest.mark.anyio)
