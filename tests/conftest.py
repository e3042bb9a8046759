"""Shared fixtures: fake voice transport, fake message, quick playback settings."""

import asyncio

import pytest

from core.player import PlaybackController
from core.playback import SpeakingStarted, SpeakingStopped, StreamEnded
from core.queue import GuildPlaybackState
from core.settings import PlaybackSettings
from core.track import ItemField, QueueItem, Requester
from ui.now_playing import NowPlayingPresenter


class FakeConnection:
    """
    In-memory VoiceConnection.

    end_on_stop controls what a deliberate stop does:
    - "sync": StreamEnded is delivered inside stop_playing() (like eris)
    - "deferred": StreamEnded is delivered on the next loop iteration (like discord.py)
    - None: no event at all
    """

    def __init__(self, channel, end_on_stop="sync"):
        self.channel = channel
        self.end_on_stop = end_on_stop
        self.playing = False
        self.paused = False
        self.volume = 1.0
        self.volume_writes = []
        self.plays = []
        self.stops = 0
        self.switched_to = []
        self.left = False
        self.session = None
        self.listeners = []

    def play(self, stream, *, session, offset=None):
        self.plays.append((stream, offset))
        self.session = session
        self.playing = True
        self.paused = False

    def stop_playing(self):
        self.stops += 1
        was_active = self.playing or self.paused
        self.playing = False
        self.paused = False
        if not was_active:
            return
        event = StreamEnded(self.session)
        if self.end_on_stop == "sync":
            self.emit(event)
        elif self.end_on_stop == "deferred":
            asyncio.get_running_loop().call_soon(self.emit, event)

    def pause(self):
        if self.playing:
            self.playing = False
            self.paused = True

    def resume(self):
        if self.paused:
            self.paused = False
            self.playing = True

    def set_volume(self, volume):
        self.volume = volume
        self.volume_writes.append(volume)

    async def switch_channel(self, channel):
        self.switched_to.append(channel)
        self.channel = channel

    async def leave(self):
        self.left = True

    def add_listener(self, listener):
        self.listeners.append(listener)

    def emit(self, event):
        for listener in list(self.listeners):
            listener(event)

    # Test helpers

    def finish(self):
        """The current stream reaches its natural end."""
        self.playing = False
        self.paused = False
        self.emit(StreamEnded(self.session))

    def speak(self, user_id):
        self.emit(SpeakingStarted(user_id))

    def quiet(self, user_id):
        self.emit(SpeakingStopped(user_id))


class FakeTransport:
    def __init__(self, end_on_stop="sync"):
        self.end_on_stop = end_on_stop
        self.joins = []
        self.connections = []

    async def join(self, channel, *, inline_volume=True):
        self.joins.append((channel, inline_volume))
        connection = FakeConnection(channel, end_on_stop=self.end_on_stop)
        self.connections.append(connection)
        return connection

    @property
    def connection(self):
        return self.connections[-1] if self.connections else None


class FakeMessage:
    def __init__(self, error=None):
        self.embeds = []
        self.error = error

    async def edit(self, *, embed):
        if self.error is not None:
            raise self.error
        self.embeds.append(embed)


def make_item(name, user_id=1):
    return QueueItem(
        stream=f"https://media.example/{name}.mp3",
        requester=Requester(id=user_id, name=f"user{user_id}", avatar_url=f"https://cdn.example/{user_id}.png"),
        title=name,
        image_url=f"https://img.example/{name}.jpg",
        extras=(ItemField("Duration", "3:30"),),
    )


@pytest.fixture
def items():
    return {name: make_item(name) for name in "ABCD"}


@pytest.fixture
def fast_settings():
    # 15 fade steps, 10ms apart; 50ms duck release
    return PlaybackSettings(fade_duration=0.15, fade_steps_per_second=100, duck_release_delay=0.05)


@pytest.fixture(params=["sync", "deferred"])
def transport(request):
    return FakeTransport(end_on_stop=request.param)


@pytest.fixture
def message():
    return FakeMessage()


@pytest.fixture
async def controller(transport, fast_settings, message):
    presenter = NowPlayingPresenter()
    presenter.set_target(message)
    controller = PlaybackController(42, GuildPlaybackState(42), transport, settings=fast_settings, presenter=presenter)
    yield controller
    await controller.close()


@pytest.fixture
def settle():
    """Let deferred transport callbacks land and the mailbox drain."""
    async def _settle(controller):
        for _ in range(3):
            await asyncio.sleep(0)
            await controller.drain_events()
    return _settle
