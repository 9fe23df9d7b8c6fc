"""Tests for reply/event classification."""

import asyncio

import pytest

from arduino_config_mcp.protocol.dispatcher import EventDispatcher

PONG = '{"response":"PONG","success":true}'
INPUT_EVENT = '{"response":"INPUT_EVENT","type":"BTN_PRESS","id":0}'


@pytest.mark.asyncio
async def test_frames_without_waiter_go_to_subscribers():
    dispatcher = EventDispatcher()
    seen = []
    dispatcher.subscribe(seen.append)

    assert dispatcher.dispatch(PONG) is False
    assert seen == [PONG]


@pytest.mark.asyncio
async def test_reply_satisfies_waiter_and_is_consumed():
    dispatcher = EventDispatcher()
    seen = []
    dispatcher.subscribe(seen.append)

    waiter = dispatcher.expect_reply()
    assert dispatcher.awaiting_reply
    assert dispatcher.dispatch(PONG) is True
    assert waiter.result() == PONG
    assert seen == []
    assert not dispatcher.awaiting_reply


@pytest.mark.asyncio
async def test_input_event_never_satisfies_waiter():
    dispatcher = EventDispatcher()
    seen = []
    dispatcher.subscribe(seen.append)

    waiter = dispatcher.expect_reply()
    assert dispatcher.dispatch(INPUT_EVENT) is False
    assert dispatcher.dispatch("Booting v1.0") is False
    assert not waiter.done()
    assert seen == [INPUT_EVENT, "Booting v1.0"]

    dispatcher.dispatch(PONG)
    assert waiter.result() == PONG


@pytest.mark.asyncio
async def test_only_first_reply_is_consumed():
    dispatcher = EventDispatcher()
    seen = []
    dispatcher.subscribe(seen.append)

    dispatcher.expect_reply()
    dispatcher.dispatch(PONG)
    second = '{"response":"OK","success":true}'
    assert dispatcher.dispatch(second) is False
    assert seen == [second]


@pytest.mark.asyncio
async def test_one_waiter_at_a_time():
    dispatcher = EventDispatcher()
    first = dispatcher.expect_reply()
    with pytest.raises(RuntimeError):
        dispatcher.expect_reply()

    dispatcher.release_reply(first)
    assert first.cancelled()
    dispatcher.expect_reply()


@pytest.mark.asyncio
async def test_released_waiter_does_not_capture_late_reply():
    dispatcher = EventDispatcher()
    seen = []
    dispatcher.subscribe(seen.append)

    waiter = dispatcher.expect_reply()
    dispatcher.release_reply(waiter)
    assert dispatcher.dispatch(PONG) is False
    assert seen == [PONG]
    await asyncio.sleep(0)
