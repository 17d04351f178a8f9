"""Shared fixtures: loguru capture and small sample documents."""

import sys

import pytest
from loguru import logger


@pytest.fixture(autouse=True)
def _reset_logger():
    """CLIs reconfigure loguru; put the default stderr sink back after each test."""
    yield
    logger.remove()
    logger.add(sys.stderr)


@pytest.fixture
def log_messages():
    """Collect loguru records at WARNING and above."""
    messages = []
    handler_id = logger.add(lambda msg: messages.append(msg.record["message"]),
                            level="WARNING")
    yield messages
    logger.remove(handler_id)
