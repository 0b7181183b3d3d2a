import asyncio

import pytest

from app.player.bridge import PlaybackBridge
from app.player.state_machine import PlayerState, PlayerStateMachine
from tests.conftest import info_delivery, make_lesson_ref, state_change


def _machine(host, **kwargs):
    bridge = PlaybackBridge(host, poll_interval=10)
    options = {"confirm_timeout": 0.05, "max_retries": 1, "load_timeout": 5}
    options.update(kwargs)
    return PlayerStateMachine(bridge, **options)


async def _ready_machine(host, **kwargs):
    sm = _machine(host, **kwargs)
    sm.attach(make_lesson_ref(duration=600))
    host.send({"event": "onReady"})
    assert sm.get_current_state() == PlayerState.READY
    return sm


def _finish(sm):
    sm.bridge.detach()
    sm.close()


@pytest.mark.asyncio
async def test_state_machine_initialization(host):
    sm = _machine(host)
    assert sm.get_current_state() == PlayerState.UNINITIALIZED

    sm.attach(make_lesson_ref(duration=600))
    assert sm.get_current_state() == PlayerState.LOADING
    assert sm.session.is_loading
    assert sm.session.duration == 600
    _finish(sm)


@pytest.mark.asyncio
async def test_first_time_event_makes_player_ready(host):
    sm = _machine(host)
    sm.attach(make_lesson_ref())
    host.send(info_delivery(current_time=0.0, duration=601))

    assert sm.get_current_state() == PlayerState.READY
    assert sm.session.duration == 601
    assert not sm.session.is_loading
    _finish(sm)


@pytest.mark.asyncio
async def test_time_alone_never_ends_playback(host):
    sm = await _ready_machine(host)
    ended = []
    sm.on_ended(ended.append)

    host.send(state_change(1))
    host.send(info_delivery(current_time=600.0, duration=600))
    host.send(info_delivery(current_time=600.0, duration=600))

    assert sm.get_current_state() == PlayerState.PLAYING
    assert ended == []

    host.send(state_change(0))
    assert sm.get_current_state() == PlayerState.ENDED
    assert len(ended) == 1
    _finish(sm)


@pytest.mark.asyncio
async def test_duplicate_ended_notifies_once(host):
    sm = await _ready_machine(host)
    ended = []
    sm.on_ended(ended.append)

    host.send(state_change(0))
    host.send(state_change(0))

    assert len(ended) == 1
    assert ended[0].id == 1
    _finish(sm)


@pytest.mark.asyncio
async def test_event_order_does_not_matter_for_playing_and_time(host):
    first = await _ready_machine(host)
    host.send(state_change(1))
    host.send(info_delivery(current_time=30.0))
    first_result = (first.get_current_state(), first.session.current_time)
    _finish(first)

    second = await _ready_machine(host)
    host.send(info_delivery(current_time=30.0))
    host.send(state_change(1))
    second_result = (second.get_current_state(), second.session.current_time)
    _finish(second)

    assert first_result == second_result == (PlayerState.PLAYING, 30.0)


@pytest.mark.asyncio
async def test_play_is_optimistic_and_confirmed_by_event(host):
    sm = await _ready_machine(host)
    states = []
    sm.subscribe(lambda state, session: states.append(state))

    assert sm.play() is True
    assert sm.get_current_state() == PlayerState.PLAYING
    assert host.command_names().count("playVideo") == 1

    host.send(state_change(1))
    await asyncio.sleep(0.08)
    assert host.command_names().count("playVideo") == 1
    assert sm.session.soft_error is None
    assert states[0] == PlayerState.PLAYING
    _finish(sm)


@pytest.mark.asyncio
async def test_unconfirmed_command_retries_once_then_soft_error(host):
    sm = await _ready_machine(host)

    sm.play()
    await asyncio.sleep(0.2)

    assert host.command_names().count("playVideo") == 2
    assert sm.session.soft_error is not None
    # 乐观状态不回滚
    assert sm.get_current_state() == PlayerState.PLAYING
    _finish(sm)


@pytest.mark.asyncio
async def test_later_event_overrides_optimistic_state(host):
    sm = await _ready_machine(host)
    sm.play()
    host.send(state_change(2))

    assert sm.get_current_state() == PlayerState.READY
    assert not sm.session.is_playing
    _finish(sm)


@pytest.mark.asyncio
async def test_toggle_play(host):
    sm = await _ready_machine(host)
    sm.toggle_play()
    assert sm.get_current_state() == PlayerState.PLAYING
    sm.toggle_play()
    assert sm.get_current_state() == PlayerState.READY
    assert host.command_names()[-2:] == ["playVideo", "pauseVideo"]
    _finish(sm)


@pytest.mark.asyncio
async def test_seek_keeps_optimistic_position_until_confirmed(host):
    sm = await _ready_machine(host)
    host.send(state_change(1))
    host.send(info_delivery(current_time=100.0))

    assert sm.seek(300) is True
    assert sm.get_current_state() == PlayerState.SEEKING
    assert sm.session.current_time == 300
    assert ("seekTo", [300.0, True]) in host.commands()

    # 旧位置不覆盖乐观位置
    host.send(info_delivery(current_time=101.0))
    assert sm.session.current_time == 300
    assert sm.get_current_state() == PlayerState.SEEKING

    host.send(info_delivery(current_time=300.5))
    assert sm.get_current_state() == PlayerState.PLAYING
    assert sm.session.current_time == 300.5
    _finish(sm)


@pytest.mark.asyncio
async def test_seek_is_clamped_to_duration(host):
    sm = await _ready_machine(host)
    sm.seek(9999)
    assert sm.session.current_time == 600
    sm.seek(-10)
    assert sm.session.current_time == 0
    _finish(sm)


@pytest.mark.asyncio
async def test_seek_relative(host):
    sm = await _ready_machine(host, seek_step=10)
    host.send(info_delivery(current_time=50.0))
    sm.seek_forward()
    assert sm.session.current_time == 60
    host.send(info_delivery(current_time=60.0))
    sm.seek_backward()
    assert sm.session.current_time == 50
    _finish(sm)


@pytest.mark.asyncio
async def test_unconfirmed_seek_returns_to_origin_state(host):
    sm = await _ready_machine(host)
    sm.seek(200)
    await asyncio.sleep(0.2)

    assert sm.get_current_state() == PlayerState.READY
    assert sm.session.soft_error is not None
    assert sm.session.current_time == 200
    _finish(sm)


@pytest.mark.asyncio
async def test_seek_after_end_returns_to_ready(host):
    sm = await _ready_machine(host)
    host.send(state_change(0))
    assert sm.get_current_state() == PlayerState.ENDED

    sm.seek(10)
    host.send(info_delivery(current_time=10.0))
    assert sm.get_current_state() == PlayerState.READY
    _finish(sm)


@pytest.mark.asyncio
async def test_seek_then_ended_scenario(host):
    sm = await _ready_machine(host)
    ended = []
    sm.on_ended(ended.append)

    sm.play()
    host.send(state_change(1))
    sm.seek(590)
    host.send(info_delivery(current_time=590.2))
    assert sm.get_current_state() == PlayerState.PLAYING

    host.send(state_change(0))
    assert sm.get_current_state() == PlayerState.ENDED
    assert len(ended) == 1
    _finish(sm)


@pytest.mark.asyncio
async def test_intents_ignored_while_loading(host):
    sm = _machine(host)
    sm.attach(make_lesson_ref())
    assert sm.play() is False
    assert sm.seek(10) is False
    assert "playVideo" not in host.command_names()
    _finish(sm)


@pytest.mark.asyncio
async def test_load_timeout_moves_to_error(host):
    sm = _machine(host, load_timeout=0.05)
    sm.attach(make_lesson_ref())
    await asyncio.sleep(0.1)

    assert sm.get_current_state() == PlayerState.ERROR
    assert sm.session.error

    # 出错后忽略事件
    host.send(state_change(1))
    assert sm.get_current_state() == PlayerState.ERROR
    _finish(sm)


@pytest.mark.asyncio
async def test_player_error_event_moves_to_error(host):
    sm = await _ready_machine(host)
    host.send({"event": "onError", "info": 101})
    assert sm.get_current_state() == PlayerState.ERROR
    assert "101" in sm.session.error
    _finish(sm)


@pytest.mark.asyncio
async def test_reattach_after_error_recovers(host):
    sm = _machine(host, load_timeout=0.05)
    sm.attach(make_lesson_ref())
    await asyncio.sleep(0.1)
    assert sm.get_current_state() == PlayerState.ERROR

    sm.attach(make_lesson_ref())
    host.send({"event": "onReady"})
    assert sm.get_current_state() == PlayerState.READY
    _finish(sm)


@pytest.mark.asyncio
async def test_volume_and_mute(host):
    sm = await _ready_machine(host)

    sm.mute()
    assert sm.session.muted
    sm.set_volume(40)
    assert not sm.session.muted
    assert sm.session.volume == 40
    assert host.commands()[-2:] == [("unMute", []), ("setVolume", [40])]

    sm.toggle_mute()
    assert sm.session.muted
    sm.set_volume(250)
    assert sm.session.volume == 100
    _finish(sm)


@pytest.mark.asyncio
async def test_playback_rate(host):
    sm = await _ready_machine(host)
    sm.set_playback_rate(1.5)
    assert sm.session.playback_rate == 1.5
    assert ("setPlaybackRate", [1.5]) in host.commands()

    with pytest.raises(ValueError):
        sm.set_playback_rate(3.0)
    _finish(sm)


@pytest.mark.asyncio
async def test_fullscreen_toggle(host):
    sm = await _ready_machine(host)
    sm.toggle_fullscreen()
    assert sm.session.is_fullscreen
    sm.exit_fullscreen()
    assert not sm.session.is_fullscreen
    assert host.fullscreen_calls == [True, False]
    _finish(sm)


@pytest.mark.asyncio
async def test_preferences_carry_over_to_next_lesson(host):
    sm = await _ready_machine(host)
    sm.set_volume(30)
    sm.mute()
    sm.set_playback_rate(1.25)

    sm.release()
    sm.bridge.detach()
    handle = sm.attach(make_lesson_ref(lesson_id=2, order_index=2))
    host.send({"event": "onReady"})

    assert sm.session.volume == 30
    assert sm.session.muted
    assert sm.session.playback_rate == 1.25
    assert host.command_names(handle.element_id) == ["mute", "setVolume", "setPlaybackRate"]
    _finish(sm)


@pytest.mark.asyncio
async def test_release_stops_timers(host):
    sm = await _ready_machine(host)
    sm.play()
    sm.release()
    await asyncio.sleep(0.15)

    assert sm.get_current_state() == PlayerState.UNINITIALIZED
    assert host.command_names().count("playVideo") == 1
    _finish(sm)
