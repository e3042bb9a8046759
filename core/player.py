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
Playback Controller - Per-Guild State Management

One controller per guild drives the queue state machine
(play/skip/rewind/seek), volume fades, and ducking while people talk.
The registry at the bottom hands controllers out by guild id.
"""

import asyncio
from typing import Any, Callable, Dict, List, Optional, Set

from loguru import logger

from core.exceptions import NotConnectedError, NothingPlayingError
from core.fade import VolumeFader
from core.playback import (
    PlaybackSession,
    PlaybackState,
    SpeakingStarted,
    SpeakingStopped,
    StreamEnded,
    Transition,
)
from core.queue import GuildPlaybackState, QueueCache
from core.settings import PlaybackSettings
from core.track import QueueItem
from core.transport import TransportEvent, VoiceConnection, VoiceTransport
from ui.now_playing import NowPlayingPresenter
from utils.context_managers import transition_guard


class PlaybackController:
    """
    Per-guild playback controller.

    Commands (play, skip, rewind, seek, connect, disconnect) run under a
    per-guild lock. Transport events enter through ``dispatch`` and are
    handled one at a time by a mailbox worker that takes the same lock, so a
    command and an event for the same guild never interleave.

    Manages:
    - Voice connection (join, switch channel, leave)
    - Queue advancement and the end-of-stream auto-advance
    - Target volume, fades, and ducking while members speak
    - Now-playing message refreshes
    """

    def __init__(
        self,
        guild_id: int,
        state: GuildPlaybackState,
        transport: VoiceTransport,
        settings: Optional[PlaybackSettings] = None,
        presenter: Optional[NowPlayingPresenter] = None,
    ):
        """
        Initialize controller for a guild.

        Args:
            guild_id: Guild this controller belongs to
            state: Queue/current holder (owned by this controller from now on)
            transport: Joins voice channels
            settings: Timing and volume constants (defaults if omitted)
            presenter: Now-playing message updater (inactive one if omitted)
        """
        self.guild_id = guild_id
        self.state = state
        self.transport = transport
        self.settings = settings or PlaybackSettings()
        self.presenter = presenter or NowPlayingPresenter()

        # =====================================================================
        # VOICE CONNECTION
        # =====================================================================
        self.voice_channel: Any = None  # Last channel joined, kept after disconnect
        self.connection: Optional[VoiceConnection] = None

        # =====================================================================
        # VOLUME & DUCKING
        # =====================================================================
        self.volume: float = self.settings.default_volume
        self.fader = VolumeFader(self.settings.fade_duration, self.settings.fade_steps)
        self.speaking: Set[int] = set()
        self._duck_release: Optional[asyncio.Task] = None

        # =====================================================================
        # RACE CONDITION GUARDS
        # =====================================================================
        self._transition = Transition.IDLE
        self._playback_session: Optional[PlaybackSession] = None
        self._lock = asyncio.Lock()
        self._events: asyncio.Queue = asyncio.Queue()
        self._event_worker: Optional[asyncio.Task] = None

    def __repr__(self) -> str:
        return f"<PlaybackController guild={self.guild_id} state={self.playback_state.name}>"

    # =========================================================================
    # State
    # =========================================================================

    @property
    def is_connected(self) -> bool:
        return self.connection is not None

    @property
    def is_playing(self) -> bool:
        return self.connection is not None and self.connection.playing

    @property
    def is_paused(self) -> bool:
        return self.connection is not None and self.connection.paused

    @property
    def playback_state(self) -> PlaybackState:
        if self.state.current is None:
            return PlaybackState.IDLE
        if self.is_paused:
            return PlaybackState.PAUSED
        return PlaybackState.PLAYING

    @property
    def transition(self) -> Transition:
        return self._transition

    @property
    def now_playing(self) -> Optional[QueueItem]:
        return self.state.current

    @property
    def queue(self) -> List[QueueItem]:
        return self.state.snapshot()

    @property
    def duck_release_pending(self) -> bool:
        return self._duck_release is not None

    def set_now_playing_message(self, message: Any) -> None:
        """Register the message that shows what's playing in this guild."""
        self.presenter.set_target(message)

    # =========================================================================
    # Connection
    # =========================================================================

    async def connect(self, channel: Any) -> None:
        """Join ``channel``, or move there if already connected elsewhere."""
        async with self._lock:
            await self._connect(channel)

    async def _connect(self, channel: Any) -> None:
        if self.connection is not None:
            # Already connected - move without interrupting playback
            await self.connection.switch_channel(channel)
            self.voice_channel = channel
            logger.info(f"guild {self.guild_id}: switched voice channel")
            return

        self._cancel_timers()
        self.voice_channel = channel
        connection = await self.transport.join(channel, inline_volume=True)
        connection.add_listener(self.dispatch)
        connection.set_volume(self.volume)
        self.connection = connection
        logger.info(f"guild {self.guild_id}: joined voice")

    async def _ensure_connected(self, channel: Any = None) -> None:
        """Connect to ``channel`` if given, else rejoin the remembered channel if needed.

        Raises:
            NotConnectedError: No connection, no channel given, nothing remembered
        """
        if channel is not None:
            await self._connect(channel)
        elif self.connection is None:
            if self.voice_channel is None:
                raise NotConnectedError("Not connected and no voice channel specified")
            await self._connect(self.voice_channel)

    async def disconnect(self) -> None:
        """
        Stop playback and leave voice.

        Pending fades, the duck-release timer and queued transport events are
        all dropped so none of them can touch the old connection. The queue is
        kept; the current item is not.
        """
        async with self._lock:
            if self.connection is None:
                return

            connection, self.connection = self.connection, None
            self._cancel_timers()
            self.cancel_active_session()
            self.speaking.clear()

            if connection.playing or connection.paused:
                connection.stop_playing()
            self._reset_mailbox()
            await connection.leave()

            self.state.current = None
            logger.info(f"guild {self.guild_id}: left voice")
            await self._refresh()

    async def close(self) -> None:
        """Disconnect and stop the event worker for good."""
        await self.disconnect()
        self._reset_mailbox()

    # =========================================================================
    # Queue commands
    # =========================================================================

    async def play(self, item: QueueItem, channel: Any = None) -> bool:
        """
        Enqueue ``item``, starting playback right away if nothing is current.

        Args:
            item: What to play
            channel: Voice channel to (re)join first; the remembered one is
                used when omitted and not connected

        Returns:
            True if ``item`` started immediately, False if it was queued

        Raises:
            NotConnectedError: No connection and no channel to join
        """
        async with self._lock:
            await self._ensure_connected(channel)

            self.state.push(item)
            started = False
            if self.state.current is None:
                started = self._advance() is item
            if not started:
                logger.info(f"guild {self.guild_id}: queued {item.display_name} (position {len(self.state)})")

            await self._refresh()
            return started

    async def skip(self) -> Optional[QueueItem]:
        """
        Abandon the current item and play the next one.

        Returns:
            The item now playing, or None if the queue ran out (or not connected)
        """
        async with self._lock:
            if self.connection is None:
                return None

            skipped = self.state.current
            next_item = self._advance()
            if skipped is not None:
                logger.info(f"guild {self.guild_id}: skipped {skipped.display_name}")
            await self._refresh()
            return next_item

    async def rewind(self) -> Optional[QueueItem]:
        """
        Restart the current item from the top.

        The current item goes back to the front of the queue and the queue
        advances, so whatever was next still plays second. There is no
        history: an idle guild just starts its queue head.

        Raises:
            NotConnectedError: No connection and no channel to rejoin
        """
        async with self._lock:
            await self._ensure_connected()

            current = self.state.current
            if current is not None:
                self.state.current = None
                self.state.push_front(current)

            next_item = self._advance()
            if current is not None:
                logger.info(f"guild {self.guild_id}: rewound {current.display_name}")
            await self._refresh()
            return next_item

    async def seek(self, position: float) -> None:
        """
        Restart the current item ``position`` seconds in.

        The queue is left alone and the current item keeps its identity.

        Raises:
            ValueError: Negative position
            NotConnectedError: No connection and no channel to rejoin
            NothingPlayingError: Nothing is current
        """
        if position < 0:
            raise ValueError(f"seek position must be non-negative, got {position}")

        async with self._lock:
            await self._ensure_connected()

            current = self.state.current
            if current is None:
                raise NothingPlayingError("Nothing to seek in")

            with transition_guard(self, Transition.SEEKING):
                self._stop_stream()
                self._start(current, offset=position)

            logger.info(f"guild {self.guild_id}: seeked {current.display_name} to {position}s")
            await self._refresh()

    def pause(self) -> bool:
        """Pause the transport. Returns False (and does nothing) when not connected."""
        if self.connection is None:
            return False
        self.connection.pause()
        return True

    def resume(self) -> bool:
        """Resume the transport. Returns False (and does nothing) when not connected."""
        if self.connection is None:
            return False
        self.connection.resume()
        return True

    # =========================================================================
    # Transitions
    # =========================================================================

    def _advance(self) -> Optional[QueueItem]:
        """
        Move the queue head onto the transport.

        An intentional stop of the old stream happens under the ADVANCING
        guard, so it never feeds back into the end-of-stream auto-advance.

        Returns:
            The item that started, or None if the queue was empty (guild is
            now idle)
        """
        next_item = self.state.pop_next()

        if next_item is None:
            if self.state.current is not None or self.is_playing or self.is_paused:
                with transition_guard(self, Transition.ADVANCING):
                    self._stop_stream()
                self.state.current = None
            logger.debug(f"guild {self.guild_id}: queue is empty, nothing to play")
            return None

        with transition_guard(self, Transition.ADVANCING):
            self._stop_stream()
            self.state.current = next_item
            self._start(next_item)

        logger.info(f"guild {self.guild_id}: now playing {next_item.display_name}")
        return next_item

    def _stop_stream(self) -> None:
        if self.connection.playing or self.connection.paused:
            self.connection.stop_playing()

    def _start(self, item: QueueItem, offset: Optional[float] = None) -> None:
        """
        Play ``item`` under a fresh session.

        If the transport refuses (e.g. the bot was kicked from voice), the
        guild is left idle rather than holding a current item that will never
        end, and the error propagates to the caller.
        """
        session = PlaybackSession(item=item, offset=offset)
        self._playback_session = session
        try:
            self.connection.play(item.stream, session=session, offset=offset)
        except Exception:
            session.cancel()
            self._playback_session = None
            self.state.current = None
            logger.opt(exception=True).error(f"guild {self.guild_id}: failed to start {item.display_name}")
            raise

    def cancel_active_session(self) -> None:
        """Invalidate the current playback session so its end event is ignored."""
        session = self._playback_session
        if session is not None:
            session.cancel()
        self._playback_session = None

    async def _refresh(self) -> None:
        await self.presenter.refresh(self.state.current)

    # =========================================================================
    # Volume
    # =========================================================================

    def set_volume(self, volume: float) -> bool:
        """
        Set the target volume and fade toward it.

        Values are clamped to 0-max_volume. Does nothing when not connected.

        Returns:
            True if the volume was applied
        """
        if self.connection is None:
            return False

        clamped = self.settings.clamp_volume(volume)
        if clamped != volume:
            logger.warning(f"volume {volume} out of range, clamped to {clamped}")
        self.volume = clamped
        self.fade_volume_to(clamped)
        return True

    def fade_volume_to(self, target: float) -> None:
        """Fade the live transport volume to ``target`` (the stored target is unchanged)."""
        if self.connection is None:
            return
        self.fader.fade(self.connection, target)

    def cancel_fade(self) -> None:
        self.fader.cancel()

    def _cancel_duck_release(self) -> None:
        task, self._duck_release = self._duck_release, None
        if task and not task.done():
            task.cancel()

    def _cancel_timers(self) -> None:
        self.cancel_fade()
        self._cancel_duck_release()

    # =========================================================================
    # Transport events
    # =========================================================================

    def dispatch(self, event: TransportEvent) -> None:
        """
        Entry point for transport events.

        Must be called on the event loop thread. An end-of-stream event that
        arrives while a transition is in progress is the echo of a deliberate
        stop and is dropped here; everything else goes to the mailbox.
        """
        if isinstance(event, StreamEnded) and self._transition is not Transition.IDLE:
            logger.debug(f"guild {self.guild_id}: stream end during {self._transition.name.lower()}, ignoring")
            return

        if self._event_worker is None or self._event_worker.done():
            self._event_worker = asyncio.create_task(self._process_events(self._events))
        self._events.put_nowait(event)

    async def drain_events(self) -> None:
        """Wait until every dispatched event has been handled."""
        await self._events.join()

    def _reset_mailbox(self) -> None:
        worker, self._event_worker = self._event_worker, None
        if worker and not worker.done():
            worker.cancel()
        self._events = asyncio.Queue()

    async def _process_events(self, events: asyncio.Queue) -> None:
        while True:
            event = await events.get()
            try:
                async with self._lock:
                    await self._handle_event(event)
            except Exception:
                logger.opt(exception=True).error(f"guild {self.guild_id}: failed to handle {event}")
            finally:
                events.task_done()

    async def _handle_event(self, event: TransportEvent) -> None:
        if isinstance(event, StreamEnded):
            await self._on_stream_end(event)
        elif isinstance(event, SpeakingStarted):
            self._on_speaking_start(event.user_id)
        elif isinstance(event, SpeakingStopped):
            self._on_speaking_stop(event.user_id)
        else:
            logger.warning(f"guild {self.guild_id}: unknown transport event {event!r}")

    async def _on_stream_end(self, event: StreamEnded) -> None:
        """Natural end of a track: clear current and auto-advance."""
        session = event.session
        if session is None or session.cancelled or session is not self._playback_session:
            logger.debug(f"guild {self.guild_id}: stale stream end, ignoring")
            return

        if event.error is not None:
            logger.warning(f"guild {self.guild_id}: stream for {session.item.display_name} failed: {event.error}")

        self._playback_session = None
        self.state.current = None

        if self._advance() is None:
            logger.info(f"guild {self.guild_id}: queue finished")
        await self._refresh()

    def _on_speaking_start(self, user_id: int) -> None:
        """Duck instantly when the channel goes from silent to speaking."""
        if self.connection is None:
            return

        if not self.speaking:
            if self._duck_release is not None:
                # Spoke again inside the grace period - still ducked, keep it that way
                self._cancel_duck_release()
                logger.debug(f"guild {self.guild_id}: speech resumed, staying ducked")
            else:
                self.cancel_fade()
                ducked = self.settings.duck_ratio * self.volume
                self.connection.set_volume(ducked)
                logger.debug(f"guild {self.guild_id}: ducked to {ducked:.2f}")

        self.speaking.add(user_id)

    def _on_speaking_stop(self, user_id: int) -> None:
        """Schedule the fade back up once the last speaker goes quiet."""
        if user_id not in self.speaking:
            return

        self.speaking.discard(user_id)
        if not self.speaking and self.connection is not None:
            self._cancel_duck_release()
            self._duck_release = asyncio.create_task(self._release_duck())

    async def _release_duck(self) -> None:
        await asyncio.sleep(self.settings.duck_release_delay)
        self._duck_release = None
        logger.debug(f"guild {self.guild_id}: silence, restoring volume to {self.volume:.2f}")
        self.fade_volume_to(self.volume)


# =============================================================================
# Controller Registry
# =============================================================================

class PlaybackRegistry:
    """
    Hands out one PlaybackController per guild.

    Controllers are created on first use from the guild's cached queue state
    and live until ``shutdown``. Nothing is evicted implicitly.
    """

    def __init__(
        self,
        cache: QueueCache,
        transport: VoiceTransport,
        settings: Optional[PlaybackSettings] = None,
        presenter_factory: Optional[Callable[[], NowPlayingPresenter]] = None,
    ):
        self.cache = cache
        self.transport = transport
        self.settings = settings or PlaybackSettings()
        self.presenter_factory = presenter_factory or NowPlayingPresenter
        self._controllers: Dict[int, PlaybackController] = {}
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(
        cls,
        config_manager: Any,
        cache: QueueCache,
        transport: VoiceTransport,
        *,
        author_icon_url: Optional[str] = None,
    ) -> "PlaybackRegistry":
        """
        Build a registry whose controllers use the loaded settings.yaml.

        Args:
            author_icon_url: Icon for the idle now-playing embed, typically
                the bot's avatar URL
        """
        return cls(
            cache,
            transport,
            settings=PlaybackSettings.from_config(config_manager),
            presenter_factory=lambda: NowPlayingPresenter.from_config(config_manager, author_icon_url=author_icon_url),
        )

    async def resolve(self, guild_id: int) -> PlaybackController:
        """
        Get or create the controller for a guild (safe under concurrency).

        Returns:
            PlaybackController for the guild
        """
        # Fast path - no lock
        if guild_id in self._controllers:
            return self._controllers[guild_id]

        # Slow path - need lock for creation
        async with self._lock:
            # Double-check
            if guild_id in self._controllers:
                return self._controllers[guild_id]

            state = await self.cache.get(guild_id)
            controller = PlaybackController(
                guild_id,
                state,
                self.transport,
                settings=self.settings,
                presenter=self.presenter_factory(),
            )
            self._controllers[guild_id] = controller
            logger.debug(f"guild {guild_id}: created playback controller")

        return self._controllers[guild_id]

    def get(self, guild_id: int) -> Optional[PlaybackController]:
        """Existing controller for a guild, without creating one."""
        return self._controllers.get(guild_id)

    def __contains__(self, guild_id: int) -> bool:
        return guild_id in self._controllers

    def __len__(self) -> int:
        return len(self._controllers)

    async def shutdown(self) -> None:
        """
        Disconnect every controller (called on bot shutdown).

        The registry is emptied; a later ``resolve`` builds a fresh controller
        from the cached queue state.
        """
        controllers = list(self._controllers.values())
        self._controllers.clear()
        for controller in controllers:
            try:
                await controller.close()
            except Exception:
                logger.opt(exception=True).warning(f"guild {controller.guild_id}: error while closing controller")
