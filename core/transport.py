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
Transport Contracts

What the playback core needs from a voice connection. The discord.py
implementation lives in systems/voice_manager.py; tests use fakes.
"""

from typing import Any, Callable, Optional, Protocol, Union

from core.playback import PlaybackSession, SpeakingStarted, SpeakingStopped, StreamEnded

TransportEvent = Union[StreamEnded, SpeakingStarted, SpeakingStopped]
EventListener = Callable[[TransportEvent], None]


class VoiceConnection(Protocol):
    """
    A live connection to one voice channel.

    ``play``/``stop_playing``/``pause``/``resume``/``set_volume`` take effect
    immediately and never block. Listeners are called on the event loop
    thread, one event at a time.
    """

    @property
    def playing(self) -> bool:
        ...

    @property
    def paused(self) -> bool:
        ...

    @property
    def volume(self) -> float:
        """Volume currently applied to the outgoing stream."""
        ...

    def play(self, stream: str, *, session: PlaybackSession, offset: Optional[float] = None) -> None:
        """Start ``stream``, ``offset`` seconds in. Ends with ``StreamEnded(session)``."""
        ...

    def stop_playing(self) -> None:
        ...

    def pause(self) -> None:
        ...

    def resume(self) -> None:
        ...

    def set_volume(self, volume: float) -> None:
        ...

    async def switch_channel(self, channel: Any) -> None:
        ...

    async def leave(self) -> None:
        ...

    def add_listener(self, listener: EventListener) -> None:
        ...


class VoiceTransport(Protocol):
    """Factory that joins voice channels."""

    async def join(self, channel: Any, *, inline_volume: bool = True) -> VoiceConnection:
        ...
