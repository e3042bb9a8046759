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

"""Now-playing embed and the message it lives in."""

from typing import Any, Optional, Protocol

import discord
from loguru import logger

from core.track import QueueItem

DEFAULT_AUTHOR_NAME = "Lull Music"
DEFAULT_COLOR = 0x0000FF
DEFAULT_IDLE_TITLE = "Not playing"


class PresentationTarget(Protocol):
    """Anything that can be edited to show a new embed (discord.Message, PartialMessage)."""

    async def edit(self, *, embed: discord.Embed) -> Any:
        ...


def create_playing_embed(
    item: Optional[QueueItem],
    *,
    author_name: str = DEFAULT_AUTHOR_NAME,
    author_icon_url: Optional[str] = None,
    color: int = DEFAULT_COLOR,
    idle_title: str = DEFAULT_IDLE_TITLE,
) -> discord.Embed:
    """Build the now-playing embed for ``item``, or the idle embed for None."""
    if item is None:
        embed = discord.Embed(title=idle_title, color=color)
        embed.set_author(name=author_name, icon_url=author_icon_url)
        return embed

    embed = discord.Embed(title=item.title, color=color)
    embed.set_author(name=item.requester.name, icon_url=item.requester.avatar_url)
    if item.image_url:
        embed.set_image(url=item.image_url)
    for extra in item.extras:
        embed.add_field(name=extra.name, value=extra.value, inline=extra.inline)
    return embed


class NowPlayingPresenter:
    """
    Keeps one guild's now-playing message in sync with its current item.

    Nothing happens until a target message is registered with
    ``set_target``. Rendering failures are logged and never propagate into
    the playback state machine.
    """

    def __init__(
        self,
        *,
        enabled: bool = True,
        author_name: str = DEFAULT_AUTHOR_NAME,
        author_icon_url: Optional[str] = None,
        color: int = DEFAULT_COLOR,
        idle_title: str = DEFAULT_IDLE_TITLE,
    ) -> None:
        self.enabled = enabled
        self.author_name = author_name
        self.author_icon_url = author_icon_url
        self.color = color
        self.idle_title = idle_title
        self.target: Optional[PresentationTarget] = None

    @classmethod
    def from_config(cls, config_manager: Any, *, author_icon_url: Optional[str] = None) -> "NowPlayingPresenter":
        """
        Build from the ``now_playing`` section.

        ``author_icon_url`` (usually the bot user's avatar URL, which is only
        known once logged in) wins over the configured icon.
        """
        section = config_manager.get("now_playing", {}) or {}
        return cls(
            enabled=section.get("enabled", True),
            author_name=section.get("author_name", DEFAULT_AUTHOR_NAME),
            author_icon_url=author_icon_url or section.get("author_icon_url"),
            color=section.get("color", DEFAULT_COLOR),
            idle_title=section.get("idle_title", DEFAULT_IDLE_TITLE),
        )

    def set_target(self, message: Optional[PresentationTarget]) -> None:
        """Register (or with None, forget) the message to keep updated."""
        self.target = message

    def render(self, item: Optional[QueueItem]) -> discord.Embed:
        return create_playing_embed(
            item,
            author_name=self.author_name,
            author_icon_url=self.author_icon_url,
            color=self.color,
            idle_title=self.idle_title,
        )

    async def refresh(self, item: Optional[QueueItem]) -> bool:
        """
        Re-render the target message for ``item``.

        Returns:
            True if the message was edited, False if there was nothing to edit
            or the edit failed
        """
        if not self.enabled or self.target is None:
            return False

        try:
            await self.target.edit(embed=self.render(item))
            return True
        except discord.NotFound:
            # Message deleted - only a new command should bring it back
            self.target = None
            logger.debug("now-playing message was deleted, dropping target")
        except discord.HTTPException as e:
            logger.warning(f"now-playing update failed: {e}")
        return False
