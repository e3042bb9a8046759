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
Voice Transport (discord.py)

Joins voice channels with discord.py and exposes them as VoiceConnection
objects: inline volume through PCMVolumeTransformer, seeks through FFmpeg's
``-ss``, and end-of-stream / speaking notices marshalled back onto the event
loop for the controller's mailbox.

Channels are joined with discord-ext-voice-recv's VoiceRecvClient so the
bot can hear who is talking; the received audio itself is discarded.
"""

import asyncio
from typing import Any, List, Optional

import discord
from discord.ext import voice_recv
from loguru import logger

from core.playback import PlaybackSession, SpeakingStarted, SpeakingStopped, StreamEnded
from core.transport import EventListener, TransportEvent

DEFAULT_BEFORE_OPTIONS = "-reconnect 1 -reconnect_streamed 1 -reconnect_delay_max 5"
DEFAULT_OPTIONS = "-vn"


def make_audio_source(
    stream: str,
    *,
    offset: Optional[float] = None,
    volume: float = 1.0,
    before_options: str = DEFAULT_BEFORE_OPTIONS,
    options: str = DEFAULT_OPTIONS,
) -> discord.PCMVolumeTransformer:
    """
    Create a volume-controllable audio source for ``stream``.

    Audio sources are single-use, so every play (including a seek restart)
    gets a fresh one.

    Args:
        stream: URL or file path FFmpeg can read
        offset: Seconds to skip before output starts (input-side ``-ss``)
        volume: Initial volume multiplier
        before_options: FFmpeg input options
        options: FFmpeg output options

    Returns:
        PCMVolumeTransformer wrapping an FFmpegPCMAudio
    """
    if offset:
        before_options = f"-ss {offset:g} {before_options}".strip()
    source = discord.FFmpegPCMAudio(stream, before_options=before_options, options=options)
    return discord.PCMVolumeTransformer(source, volume=volume)


class DiscordVoiceConnection:
    """
    VoiceConnection backed by a discord.VoiceClient.

    discord.py calls the ``after`` hook from its player thread, and voice
    receive sinks report speaking from theirs, so every event is handed to
    the loop with ``call_soon_threadsafe`` before listeners see it.
    """

    def __init__(
        self,
        voice_client: discord.VoiceClient,
        *,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        before_options: str = DEFAULT_BEFORE_OPTIONS,
        options: str = DEFAULT_OPTIONS,
    ) -> None:
        self.voice_client = voice_client
        self.before_options = before_options
        self.options = options
        self._loop = loop or asyncio.get_running_loop()
        self._volume: float = 1.0
        self._source: Optional[discord.PCMVolumeTransformer] = None
        self._listeners: List[EventListener] = []

    # =========================================================================
    # Playback
    # =========================================================================

    @property
    def playing(self) -> bool:
        return self.voice_client.is_playing()

    @property
    def paused(self) -> bool:
        return self.voice_client.is_paused()

    @property
    def volume(self) -> float:
        return self._volume

    def play(self, stream: str, *, session: PlaybackSession, offset: Optional[float] = None) -> None:
        self._source = make_audio_source(
            stream,
            offset=offset,
            volume=self._volume,
            before_options=self.before_options,
            options=self.options,
        )

        def after(error: Optional[Exception]) -> None:
            # Runs on discord.py's player thread
            self._emit_threadsafe(StreamEnded(session, error))

        self.voice_client.play(self._source, after=after)

    def stop_playing(self) -> None:
        # VoiceRecvClient.stop() would stop receiving too
        if isinstance(self.voice_client, voice_recv.VoiceRecvClient):
            self.voice_client.stop_playing()
        else:
            self.voice_client.stop()
        self._source = None

    def pause(self) -> None:
        self.voice_client.pause()

    def resume(self) -> None:
        self.voice_client.resume()

    def set_volume(self, volume: float) -> None:
        self._volume = volume
        if self._source is not None:
            self._source.volume = volume

    # =========================================================================
    # Channel
    # =========================================================================

    async def switch_channel(self, channel: Any) -> None:
        await self.voice_client.move_to(channel)

    async def leave(self) -> None:
        try:
            await self.voice_client.disconnect(force=True)
        except (discord.ClientException, asyncio.TimeoutError) as e:
            logger.debug(f"voice disconnect failed: {e}")
        self._source = None

    # =========================================================================
    # Events
    # =========================================================================

    def add_listener(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    def listen_for_speakers(self) -> None:
        """Start reporting channel members' speaking state (needs a VoiceRecvClient)."""
        self.voice_client.listen(SpeakingSink(self))

    def speaking_started(self, user_id: int) -> None:
        """Report that ``user_id`` started talking (safe from any thread)."""
        self._emit_threadsafe(SpeakingStarted(user_id))

    def speaking_stopped(self, user_id: int) -> None:
        """Report that ``user_id`` went quiet (safe from any thread)."""
        self._emit_threadsafe(SpeakingStopped(user_id))

    def _emit_threadsafe(self, event: TransportEvent) -> None:
        if self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._emit, event)

    def _emit(self, event: TransportEvent) -> None:
        for listener in list(self._listeners):
            listener(event)


class SpeakingSink(voice_recv.AudioSink):
    """
    Receive sink that only tracks who is talking.

    voice_recv fires the speaking listeners from its router thread; they are
    forwarded to the connection, which hands them to the event loop.
    """

    def __init__(self, connection: DiscordVoiceConnection) -> None:
        super().__init__()
        self.connection = connection

    def wants_opus(self) -> bool:
        # Nothing decodes the audio, so skip the Opus decoder
        return True

    def write(self, user: Any, data: voice_recv.VoiceData) -> None:
        pass

    def cleanup(self) -> None:
        pass

    @voice_recv.AudioSink.listener()
    def on_voice_member_speaking_start(self, member: discord.Member) -> None:
        if member is not None:
            self.connection.speaking_started(member.id)

    @voice_recv.AudioSink.listener()
    def on_voice_member_speaking_stop(self, member: discord.Member) -> None:
        if member is not None:
            self.connection.speaking_stopped(member.id)


class DiscordVoiceTransport:
    """VoiceTransport that joins discord.py voice channels."""

    def __init__(
        self,
        *,
        self_deaf: bool = False,
        timeout: float = 30.0,
        before_options: str = DEFAULT_BEFORE_OPTIONS,
        options: str = DEFAULT_OPTIONS,
    ) -> None:
        # Not deafened by default: ducking needs to hear who is talking
        self.self_deaf = self_deaf
        self.timeout = timeout
        self.before_options = before_options
        self.options = options

    @classmethod
    def from_config(cls, config_manager: Any) -> "DiscordVoiceTransport":
        section = config_manager.get("playback", {}) or {}
        return cls(
            before_options=section.get("ffmpeg_before_options", DEFAULT_BEFORE_OPTIONS),
            options=section.get("ffmpeg_options", DEFAULT_OPTIONS),
        )

    async def join(self, channel: discord.abc.Connectable, *, inline_volume: bool = True) -> DiscordVoiceConnection:
        """
        Connect to ``channel``.

        ``inline_volume`` is accepted for interface parity; every source is
        wrapped in PCMVolumeTransformer regardless. Speaking notifications
        start flowing as soon as the connection is returned.
        """
        voice_client = await channel.connect(
            cls=voice_recv.VoiceRecvClient,
            timeout=self.timeout,
            self_deaf=self.self_deaf,
        )
        logger.debug(f"connected to voice channel {getattr(channel, 'name', channel)}")
        connection = DiscordVoiceConnection(
            voice_client,
            before_options=self.before_options,
            options=self.options,
        )
        connection.listen_for_speakers()
        return connection
