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
Guild Queue State

Per-guild queue + current slot, and the cache that hands those states out.

Queue model: current ← queue[0] ← queue[1] ← ...
The current item is never also in the queue.
"""

import asyncio
from collections import deque
from typing import Deque, Dict, Iterator, List, Optional, Protocol

from loguru import logger

from core.track import QueueItem


class GuildPlaybackState:
    """
    Queue and current item for one guild.

    Owned by exactly one PlaybackController. The controller is the only
    writer; everything else should read through ``snapshot()``.
    """

    def __init__(self, guild_id: int) -> None:
        self.guild_id = guild_id
        self.queue: Deque[QueueItem] = deque()
        self.current: Optional[QueueItem] = None

    def push(self, item: QueueItem) -> None:
        """Append to the end of the queue."""
        self.queue.append(item)

    def push_front(self, item: QueueItem) -> None:
        """Put an item at the head of the queue so it plays next."""
        self.queue.appendleft(item)

    def pop_next(self) -> Optional[QueueItem]:
        """Remove and return the head of the queue, or None if empty."""
        if not self.queue:
            return None
        return self.queue.popleft()

    def clear(self) -> int:
        """Drop every queued item (current is untouched). Returns how many were dropped."""
        dropped = len(self.queue)
        self.queue.clear()
        return dropped

    def snapshot(self, limit: Optional[int] = None) -> List[QueueItem]:
        """Copy of the queue, optionally only the first ``limit`` items."""
        if limit is None:
            return list(self.queue)
        if limit <= 0:
            return []
        return [item for _, item in zip(range(limit), self.queue)]

    def __len__(self) -> int:
        return len(self.queue)

    def __iter__(self) -> Iterator[QueueItem]:
        return iter(self.queue)

    def __repr__(self) -> str:
        return f"GuildPlaybackState(guild={self.guild_id}, current={self.current!r}, queued={len(self.queue)})"


class QueueCache(Protocol):
    """Source of per-guild playback state."""

    async def get(self, guild_id: int) -> GuildPlaybackState:
        ...


class MemoryQueueCache:
    """
    In-process QueueCache.

    Creates an empty state the first time a guild is asked for and hands back
    the same object afterwards. Nothing survives a restart.
    """

    def __init__(self) -> None:
        self._states: Dict[int, GuildPlaybackState] = {}
        self._lock = asyncio.Lock()

    async def get(self, guild_id: int) -> GuildPlaybackState:
        # Fast path - no lock
        if guild_id in self._states:
            return self._states[guild_id]

        async with self._lock:
            if guild_id not in self._states:
                self._states[guild_id] = GuildPlaybackState(guild_id)
                logger.debug(f"guild {guild_id}: created queue state")
            return self._states[guild_id]

    def __contains__(self, guild_id: int) -> bool:
        return guild_id in self._states
