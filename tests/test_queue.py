import asyncio

from conftest import make_item
from core.queue import GuildPlaybackState, MemoryQueueCache


def test_items_play_in_insertion_order():
    state = GuildPlaybackState(1)
    a, b, c = make_item("A"), make_item("B"), make_item("C")
    for item in (a, b, c):
        state.push(item)

    assert len(state) == 3
    assert [state.pop_next() for _ in range(4)] == [a, b, c, None]


def test_push_front_plays_next():
    state = GuildPlaybackState(1)
    a, b = make_item("A"), make_item("B")
    state.push(b)
    state.push_front(a)

    assert state.snapshot() == [a, b]
    assert state.pop_next() is a


def test_clear_reports_dropped_and_keeps_current():
    state = GuildPlaybackState(1)
    state.current = make_item("now")
    state.push(make_item("A"))
    state.push(make_item("B"))

    assert state.clear() == 2
    assert len(state) == 0
    assert state.current is not None


def test_snapshot_is_a_copy():
    state = GuildPlaybackState(1)
    items = [make_item(name) for name in "ABCD"]
    for item in items:
        state.push(item)

    snapshot = state.snapshot()
    snapshot.clear()

    assert len(state) == 4
    assert state.snapshot(2) == items[:2]
    assert state.snapshot(0) == []
    assert state.snapshot(10) == items
    assert list(state) == items


async def test_cache_returns_same_state():
    cache = MemoryQueueCache()

    first = await cache.get(7)
    first.push(make_item("A"))

    assert await cache.get(7) is first
    assert 7 in cache
    assert 8 not in cache
    assert len(await cache.get(8)) == 0


async def test_cache_concurrent_first_access():
    cache = MemoryQueueCache()

    states = await asyncio.gather(*(cache.get(3) for _ in range(10)))

    assert all(state is states[0] for state in states)
