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
Playback Primitives

States, the transition guard, playback session tokens, and the events a
voice connection sends back to its controller.
"""

from dataclasses import dataclass, field
from enum import Enum
from itertools import count
from time import monotonic as _now
from typing import Optional

from core.track import QueueItem


class PlaybackState(Enum):
    """
    Current state of voice playback.

    IDLE: Nothing is current (may or may not be connected to voice)
    PLAYING: A track is on the transport
    PAUSED: A track is loaded but the transport is paused
    """
    IDLE = 0
    PLAYING = 1
    PAUSED = 2


class Transition(Enum):
    """
    What the controller is doing to the transport right now.

    While not IDLE, the controller is deliberately stopping a stream to start
    another one, so an end-of-stream notice is a side effect and must not
    auto-advance the queue.
    """
    IDLE = 0
    ADVANCING = 1
    SEEKING = 2


_SESSION_IDS = count(1)


@dataclass(slots=True)
class PlaybackSession:
    """Token that scopes end-of-stream events to a specific play call.

    Every ``play`` on the transport gets a fresh session, and the transport
    hands the same session back in ``StreamEnded``. When the controller
    stops a stream on purpose it cancels the session first, so an end event
    that arrives late (after the guard has been cleared) is recognised as
    stale and dropped instead of advancing the queue a second time.
    """

    item: QueueItem
    offset: Optional[float] = None
    id: int = field(default_factory=lambda: next(_SESSION_IDS))
    started_at: float = field(default_factory=_now)
    cancelled: bool = False

    def cancel(self) -> None:
        """Mark the session as cancelled so its end event is ignored."""
        self.cancelled = True


# =============================================================================
# Transport events
# =============================================================================

@dataclass(frozen=True, slots=True)
class StreamEnded:
    """The stream started under ``session`` stopped (naturally or not)."""
    session: Optional[PlaybackSession]
    error: Optional[BaseException] = None


@dataclass(frozen=True, slots=True)
class SpeakingStarted:
    """A channel member started transmitting voice."""
    user_id: int


@dataclass(frozen=True, slots=True)
class SpeakingStopped:
    """A channel member stopped transmitting voice."""
    user_id: int
