# Copyright (C) 2025 grodz
#
# This file is part of Lull.
#
# Lull is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program. If not, see <https://www.gnu.org/licenses/>.

"""Log output setup (loguru)."""

import logging
import sys
from typing import Any, TextIO

from loguru import logger

# Config level names -> loguru level
LOG_LEVEL_MAP = {
    "minimal": "WARNING",
    "verbose": "INFO",
    "debug": "DEBUG",
}

# 4-character level names keep columns aligned.
# CAUTION: Changing these may break log parsing or monitoring tools.
LEVEL_NAMES = {
    "TRACE": "TRCE",
    "DEBUG": "DBUG",
    "INFO": "INFO",
    "SUCCESS": "GOOD",
    "WARNING": "WARN",
    "ERROR": "FAIL",
    "CRITICAL": "CRIT",
}

LOG_FORMAT = "[{time:YYYY-MM-DD HH:mm:ss}] [{extra[short_level]}] {name}: {message}"


def _short_level(record: dict) -> None:
    record["extra"]["short_level"] = LEVEL_NAMES.get(record["level"].name, record["level"].name[:4])


def setup_logging(level: str = "verbose", sink: TextIO = sys.stderr) -> int:
    """
    Replace loguru's default sink with Lull's format.

    Args:
        level: "minimal", "verbose" or "debug" (unknown names act like verbose)
        sink: Where log lines go

    Returns:
        The loguru handler id (pass to ``logger.remove`` to undo)
    """
    loguru_level = LOG_LEVEL_MAP.get(level, "INFO")

    logger.remove()
    logger.configure(patcher=_short_level)
    handler_id = logger.add(sink, level=loguru_level, format=LOG_FORMAT, backtrace=False, diagnose=False)

    # discord.py logs through the standard library; keep it quiet unless debugging
    library_level = logging.DEBUG if level == "debug" else logging.WARNING
    for name in ("discord", "discord.player", "discord.voice_state", "discord.gateway"):
        logging.getLogger(name).setLevel(library_level)

    return handler_id


def configure_from(config_manager: Any) -> int:
    """Set up logging from a loaded ConfigManager's ``logging.level``."""
    section = config_manager.get("logging", {}) or {}
    return setup_logging(section.get("level", "verbose"))
