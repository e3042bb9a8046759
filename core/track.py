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
Queue Items

Immutable references to something the transport can play, plus the
display metadata the now-playing embed needs.
"""

from dataclasses import dataclass, field
from typing import Optional, Tuple


@dataclass(frozen=True, slots=True)
class Requester:
    """The user who submitted an item."""
    id: int
    name: str
    avatar_url: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ItemField:
    """One extra line shown under the now-playing title (e.g. duration, source)."""
    name: str
    value: str
    inline: bool = True


@dataclass(frozen=True, slots=True)
class QueueItem:
    """
    A playable entry in a guild queue.

    Items are never mutated after they are enqueued. Identity matters: the
    same object moves from the queue into the current slot (and back again on
    rewind), so tests and callers can compare with ``is``.

    Attributes:
        stream: URL or file path handed to the transport's play call
        requester: Who asked for it
        title: Display title
        image_url: Thumbnail/cover for the embed (optional)
        extras: Extra embed fields, in display order
    """
    stream: str
    requester: Requester
    title: str
    image_url: Optional[str] = None
    extras: Tuple[ItemField, ...] = field(default_factory=tuple)

    @property
    def display_name(self) -> str:
        """Title for log lines."""
        return self.title or self.stream

    def __repr__(self) -> str:
        return f"QueueItem({self.display_name!r})"
