import io
import logging
import sys

import pytest
from loguru import logger

from utils.logs import configure_from, setup_logging


@pytest.fixture
def restore_logger():
    yield
    logger.remove()
    logger.add(sys.stderr)


def test_verbose_uses_short_level_names(restore_logger):
    sink = io.StringIO()
    setup_logging("verbose", sink=sink)

    logger.debug("hidden")
    logger.info("joined voice")
    logger.error("stream failed")

    output = sink.getvalue()
    assert "hidden" not in output
    assert "[INFO] test_logs: joined voice" in output
    assert "[FAIL] test_logs: stream failed" in output


def test_minimal_only_shows_warnings(restore_logger):
    sink = io.StringIO()
    setup_logging("minimal", sink=sink)

    logger.info("queued")
    logger.warning("volume clamped")

    output = sink.getvalue()
    assert "queued" not in output
    assert "[WARN]" in output
    assert logging.getLogger("discord").level == logging.WARNING


def test_debug_opens_up_library_loggers(restore_logger):
    sink = io.StringIO()
    setup_logging("debug", sink=sink)

    logger.debug("ducked")

    assert "[DBUG]" in sink.getvalue()
    assert logging.getLogger("discord.voice_state").level == logging.DEBUG


def test_configure_from_reads_level(restore_logger):
    class Config:
        def get(self, key, default=None):
            return {"logging": {"level": "minimal"}}.get(key, default)

    handler_id = configure_from(Config())

    assert isinstance(handler_id, int)
    assert logging.getLogger("discord").level == logging.WARNING
