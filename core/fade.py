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

"""
Volume Fades

Linear volume ramps driven by a single cancelable task per controller.
"""

import asyncio
from typing import List, Optional

from loguru import logger

from core.transport import VoiceConnection

VOLUME_FLOOR = 0.0
VOLUME_CEILING = 2.0


def fade_steps(start: float, target: float, steps: int) -> List[float]:
    """
    Volume values written during a fade from ``start`` to ``target``.

    Returns exactly ``steps`` values. Each is clamped to [0, 2], they move
    monotonically toward ``target``, and the last one is ``target`` itself
    (clamped), so a finished fade always lands on its goal.

    Examples:
        fade_steps(1.0, 0.5, 5) → 0.9, 0.8, 0.7, 0.6, 0.5
        fade_steps(1.8, 3.0, 3) → 2.0, 2.0, 2.0  (clamped)
    """
    if steps <= 0:
        raise ValueError(f"steps must be positive, got {steps}")

    step = (target - start) / steps
    values = []
    for i in range(1, steps + 1):
        value = target if i == steps else start + i * step
        values.append(max(VOLUME_FLOOR, min(value, VOLUME_CEILING)))
    return values


class VolumeFader:
    """
    Runs at most one fade at a time against a voice connection.

    Starting a fade cancels the one in flight. The step values are computed
    up front from the connection's volume at the moment the fade starts;
    step ``i`` (0-based) is written ``i * interval`` seconds later.
    """

    def __init__(self, duration: float, steps: int) -> None:
        self.duration = duration
        self.steps = steps
        self._task: Optional[asyncio.Task] = None

    @property
    def interval(self) -> float:
        return self.duration / self.steps

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def fade(self, connection: VoiceConnection, target: float) -> asyncio.Task:
        """Cancel any running fade and start ramping ``connection`` toward ``target``."""
        self.cancel()
        values = fade_steps(connection.volume, target, self.steps)
        logger.debug(f"fading volume {connection.volume:.2f} -> {values[-1]:.2f} over {self.duration}s")
        self._task = asyncio.create_task(self._run(connection, values))
        return self._task

    def cancel(self) -> None:
        """Stop the running fade, leaving the volume wherever it got to."""
        task, self._task = self._task, None
        if task and not task.done():
            task.cancel()

    async def wait(self) -> None:
        """Wait for the running fade (if any) to finish or be cancelled."""
        task = self._task
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            if not task.cancelled():
                raise

    async def _run(self, connection: VoiceConnection, values: List[float]) -> None:
        loop = asyncio.get_running_loop()
        started = loop.time()
        for i, value in enumerate(values):
            # Absolute deadlines keep slow steps from stretching the fade
            delay = started + i * self.interval - loop.time()
            if delay > 0:
                await asyncio.sleep(delay)
            connection.set_volume(value)
