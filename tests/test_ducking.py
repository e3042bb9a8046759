"""Attenuation while members of the voice channel speak."""

import asyncio

import pytest

# fast_settings: 15 fade steps 10ms apart, release after 50ms of silence
RELEASE_WAIT = 0.4


@pytest.fixture
async def connected(controller, transport):
    await controller.connect("general")
    assert transport.connection.volume_writes == [1.0]
    return transport.connection


async def test_first_speaker_ducks_instantly(controller, connected, settle):
    connected.speak(7)
    await settle(controller)

    assert connected.volume_writes == [1.0, 0.2]
    assert controller.speaking == {7}
    assert not controller.fader.active


async def test_second_speaker_does_not_duck_again(controller, connected, settle):
    connected.speak(7)
    connected.speak(8)
    await settle(controller)

    assert connected.volume_writes == [1.0, 0.2]
    assert controller.speaking == {7, 8}


async def test_release_fades_back_after_silence(controller, connected, settle):
    connected.speak(7)
    connected.quiet(7)
    await settle(controller)
    assert controller.duck_release_pending

    await asyncio.sleep(RELEASE_WAIT)

    release = connected.volume_writes[2:]
    assert len(release) == 15
    assert all(a < b for a, b in zip([0.2] + release, release))
    assert release[-1] == 1.0
    assert not controller.duck_release_pending


async def test_speaking_inside_grace_window_keeps_duck(controller, connected, settle):
    connected.speak(7)
    connected.quiet(7)
    await settle(controller)

    connected.speak(7)
    await settle(controller)
    assert not controller.duck_release_pending

    await asyncio.sleep(RELEASE_WAIT)
    assert connected.volume_writes == [1.0, 0.2]
    assert controller.speaking == {7}


async def test_release_waits_for_last_speaker(controller, connected, settle):
    connected.speak(7)
    connected.speak(8)
    connected.quiet(7)
    await settle(controller)

    assert not controller.duck_release_pending
    await asyncio.sleep(RELEASE_WAIT)
    assert connected.volume_writes == [1.0, 0.2]

    connected.quiet(8)
    await settle(controller)
    await asyncio.sleep(RELEASE_WAIT)
    assert connected.volume_writes[-1] == 1.0


async def test_speaking_during_release_fade_cuts_it_short(controller, connected, settle):
    connected.speak(7)
    connected.quiet(7)
    await settle(controller)

    # Past the release delay, partway through the fade
    await asyncio.sleep(0.1)
    connected.speak(9)
    await settle(controller)

    assert connected.volume_writes[-1] == 0.2
    assert not controller.fader.active

    writes = len(connected.volume_writes)
    await asyncio.sleep(RELEASE_WAIT)
    assert len(connected.volume_writes) == writes


async def test_duck_follows_target_volume(controller, connected, settle):
    controller.set_volume(0.5)
    await controller.fader.wait()

    connected.speak(7)
    await settle(controller)

    assert connected.volume_writes[-1] == pytest.approx(0.1)

    connected.quiet(7)
    await settle(controller)
    await asyncio.sleep(RELEASE_WAIT)
    assert connected.volume_writes[-1] == 0.5


async def test_unknown_speaker_stop_is_ignored(controller, connected, settle):
    connected.quiet(99)
    await settle(controller)

    assert not controller.duck_release_pending
    assert connected.volume_writes == [1.0]


async def test_disconnect_cancels_pending_release(controller, connected, settle):
    connected.speak(7)
    connected.quiet(7)
    await settle(controller)

    await controller.disconnect()
    assert not controller.duck_release_pending
    assert controller.speaking == set()

    await asyncio.sleep(RELEASE_WAIT)
    assert connected.volume_writes == [1.0, 0.2]
