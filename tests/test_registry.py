import asyncio

import pytest

from conftest import FakeTransport, make_item
from core.player import PlaybackRegistry
from core.queue import MemoryQueueCache
from core.settings import PlaybackSettings
from utils.config import ConfigManager


@pytest.fixture
def cache():
    return MemoryQueueCache()


@pytest.fixture
def registry(cache):
    return PlaybackRegistry(cache, FakeTransport())


async def test_resolve_memoizes(registry, cache):
    controller = await registry.resolve(1)

    assert await registry.resolve(1) is controller
    assert controller.state is await cache.get(1)
    assert controller.guild_id == 1


async def test_concurrent_resolve_creates_one_controller(registry):
    controllers = await asyncio.gather(*(registry.resolve(5) for _ in range(20)))

    assert len(registry) == 1
    assert all(c is controllers[0] for c in controllers)


async def test_guilds_are_isolated(registry):
    first = await registry.resolve(1)
    second = await registry.resolve(2)

    await first.play(make_item("A"), "general")

    assert first is not second
    assert first.state is not second.state
    assert second.now_playing is None
    assert second.connection is None
    assert first.presenter is not second.presenter


async def test_get_does_not_create(registry):
    assert registry.get(9) is None
    assert 9 not in registry

    controller = await registry.resolve(9)

    assert registry.get(9) is controller
    assert 9 in registry


async def test_shutdown_disconnects_everything(registry):
    controllers = []
    for guild_id in (1, 2):
        controller = await registry.resolve(guild_id)
        await controller.play(make_item("A"), f"voice-{guild_id}")
        controllers.append(controller)

    await registry.shutdown()

    assert all(connection.left for connection in registry.transport.connections)
    assert all(controller.connection is None for controller in controllers)


async def test_shutdown_forgets_controllers_but_keeps_queues(registry, cache):
    old = await registry.resolve(1)
    await old.play(make_item("A"), "general")
    await old.play(make_item("B"))

    await registry.shutdown()

    assert len(registry) == 0
    assert registry.get(1) is None

    fresh = await registry.resolve(1)
    assert fresh is not old
    assert fresh.state is await cache.get(1)
    assert [item.title for item in fresh.queue] == ["B"]


async def test_from_config_uses_settings_file(tmp_path, cache):
    (tmp_path / "settings.yaml").write_text(
        "playback:\n  default_volume: 0.5\n  duck_ratio: 0.1\nnow_playing:\n  color: '#FF0000'\n",
        encoding="utf-8",
    )
    config = ConfigManager(tmp_path)
    await config.load()

    registry = PlaybackRegistry.from_config(config, cache, FakeTransport())
    controller = await registry.resolve(1)

    assert registry.settings == PlaybackSettings(default_volume=0.5, duck_ratio=0.1)
    assert controller.volume == 0.5
    assert controller.presenter.color == 0xFF0000


async def test_from_config_passes_bot_avatar_to_presenters(tmp_path, cache):
    config = ConfigManager(tmp_path)
    await config.load()

    registry = PlaybackRegistry.from_config(config, cache, FakeTransport(), author_icon_url="https://cdn.example/bot.png")
    controller = await registry.resolve(1)

    assert controller.presenter.render(None).author.icon_url == "https://cdn.example/bot.png"
