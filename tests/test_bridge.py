import asyncio
import json

import pytest

from app.player.bridge import PlaybackBridge
from app.player.messages import EventKind
from tests.conftest import info_delivery, make_lesson_ref, state_change


def _collect(bridge):
    events = []
    bridge.on_event(events.append)
    return events


@pytest.mark.asyncio
async def test_attach_mounts_and_sends_handshake(host):
    bridge = PlaybackBridge(host, poll_interval=10)
    handle = bridge.attach(make_lesson_ref())

    assert host.mounts[0][0] == handle.element_id
    assert "dQw4w9WgXcQ" in host.mounts[0][1]
    assert host.listener_count() == 1
    assert json.loads(host.posted[0][1]) == {"event": "listening", "id": handle.element_id}
    assert bridge.current_handle is handle

    bridge.detach(handle)


@pytest.mark.asyncio
async def test_detach_twice_is_safe(host):
    bridge = PlaybackBridge(host, poll_interval=10)
    handle = bridge.attach(make_lesson_ref())

    assert bridge.detach(handle) is True
    assert bridge.detach(handle) is False

    assert host.unmounts == [handle.element_id]
    assert host.listener_count() == 0
    await asyncio.sleep(0)
    assert handle.poll_task.cancelled() or handle.poll_task.done()
    assert bridge.current_handle is None


@pytest.mark.asyncio
async def test_double_attach_detaches_previous(host):
    bridge = PlaybackBridge(host, poll_interval=10)
    first = bridge.attach(make_lesson_ref(lesson_id=1))
    second = bridge.attach(make_lesson_ref(lesson_id=2, order_index=2))

    assert first.detached
    assert not second.detached
    assert host.unmounts == [first.element_id]
    assert host.listener_count() == 1

    bridge.detach()


@pytest.mark.asyncio
async def test_events_are_normalised(host):
    bridge = PlaybackBridge(host, poll_interval=10)
    events = _collect(bridge)
    handle = bridge.attach(make_lesson_ref())

    host.send(state_change(1))
    host.send(info_delivery(current_time=5.0, duration=600))

    assert [e.kind for e in events] == [EventKind.PLAYING, EventKind.TIME]
    assert events[1].value == 5.0
    assert handle.is_loading is False

    bridge.detach(handle)


@pytest.mark.asyncio
async def test_events_after_detach_are_ignored(host):
    bridge = PlaybackBridge(host, poll_interval=10)
    events = _collect(bridge)
    handle = bridge.attach(make_lesson_ref())
    listener = list(host._listeners.values())[0]

    bridge.detach(handle)
    # 模拟已排队、在卸载后才到达的消息
    listener("https://www.youtube-nocookie.com", json.dumps(state_change(0)))

    assert events == []


@pytest.mark.asyncio
async def test_origin_allow_list(host):
    bridge = PlaybackBridge(host, poll_interval=10, allowed_origin="https://www.youtube-nocookie.com")
    events = _collect(bridge)
    handle = bridge.attach(make_lesson_ref())

    host.send(state_change(1), origin="https://evil.example.com")
    assert events == []

    host.send(state_change(1))
    assert [e.kind for e in events] == [EventKind.PLAYING]

    bridge.detach(handle)


@pytest.mark.asyncio
async def test_command_normalises_args(host):
    bridge = PlaybackBridge(host, poll_interval=10)
    handle = bridge.attach(make_lesson_ref())

    bridge.command("seekTo", (-5,))
    bridge.command("setVolume", (150,))
    bridge.command("play")

    assert host.commands(handle.element_id) == [
        ("seekTo", [0.0, True]),
        ("setVolume", [100]),
        ("playVideo", []),
    ]
    bridge.detach(handle)


@pytest.mark.asyncio
async def test_unknown_command_raises(host):
    bridge = PlaybackBridge(host, poll_interval=10)
    with pytest.raises(ValueError):
        bridge.command("rewind")


@pytest.mark.asyncio
async def test_commands_without_attachment_are_dropped(host):
    bridge = PlaybackBridge(host, poll_interval=10)
    bridge.command("play")
    assert host.posted == []


@pytest.mark.asyncio
async def test_fullscreen_goes_to_host(host):
    bridge = PlaybackBridge(host, poll_interval=10)
    bridge.command("enterFullscreen")
    bridge.command("exitFullscreen")
    assert host.fullscreen_calls == [True, False]


@pytest.mark.asyncio
async def test_polling_requests_time_and_repeats_handshake_while_loading(host):
    bridge = PlaybackBridge(host, poll_interval=0.01)
    handle = bridge.attach(make_lesson_ref())

    await asyncio.sleep(0.035)
    names = host.command_names(handle.element_id)
    assert "getCurrentTime" in names
    assert "getDuration" in names
    handshakes = [d for _, d in host.posted if json.loads(d).get("event") == "listening"]
    assert len(handshakes) >= 2

    host.send(state_change(2))
    posted_before = len(host.posted)
    await asyncio.sleep(0.025)
    new_messages = [json.loads(d) for _, d in host.posted[posted_before:]]
    assert new_messages
    assert all(m.get("event") == "command" for m in new_messages)

    bridge.detach(handle)
    await asyncio.sleep(0)
    count = len(host.posted)
    await asyncio.sleep(0.03)
    assert len(host.posted) == count


@pytest.mark.asyncio
async def test_host_errors_do_not_escape(host):
    def broken(element_id, data):
        raise RuntimeError("channel closed")

    host.post_message = broken
    bridge = PlaybackBridge(host, poll_interval=10)
    handle = bridge.attach(make_lesson_ref())
    bridge.command("play")
    bridge.detach(handle)


@pytest.mark.asyncio
async def test_subscriber_errors_are_isolated(host):
    bridge = PlaybackBridge(host, poll_interval=10)

    def broken(event):
        raise RuntimeError("boom")

    bridge.on_event(broken)
    events = _collect(bridge)
    handle = bridge.attach(make_lesson_ref())
    host.send(state_change(1))

    assert [e.kind for e in events] == [EventKind.PLAYING]
    bridge.detach(handle)


@pytest.mark.asyncio
async def test_unsubscribe(host):
    bridge = PlaybackBridge(host, poll_interval=10)
    events = []
    unsubscribe = bridge.on_event(events.append)
    handle = bridge.attach(make_lesson_ref())
    unsubscribe()
    host.send(state_change(1))
    assert events == []
    bridge.detach(handle)
