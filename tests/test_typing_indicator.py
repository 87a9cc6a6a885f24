import asyncio

import pytest

from chat_relay.client.typing_indicator import TypingNotifier, TypingState
from chat_relay.schemas.events import STOP_TYPING, TYPING


class Recorder:

    def __init__(self):
        self.calls = []

    async def __call__(self, event, receiver_id):
        self.calls.append((event, receiver_id))


@pytest.mark.asyncio
async def test_idle_timeout_emits_stop_once():
    emit = Recorder()
    notifier = TypingNotifier(emit, timeout=0.05)

    await notifier.on_input("bob", "h")
    await notifier.on_input("bob", "he")
    await asyncio.sleep(0.15)

    assert emit.calls == [(TYPING, "bob"), (TYPING, "bob"), (STOP_TYPING, "bob")]
    assert not notifier.typing


@pytest.mark.asyncio
async def test_keystrokes_restart_the_timer():
    emit = Recorder()
    notifier = TypingNotifier(emit, timeout=0.2)

    for text in ("a", "ab", "abc"):
        await notifier.on_input("bob", text)
        await asyncio.sleep(0.05)

    assert (STOP_TYPING, "bob") not in emit.calls
    await asyncio.sleep(0.35)
    assert emit.calls[-1] == (STOP_TYPING, "bob")


@pytest.mark.asyncio
async def test_without_resend_only_first_keystroke_signals():
    emit = Recorder()
    notifier = TypingNotifier(emit, timeout=1, resend=False)

    await notifier.on_input("bob", "a")
    await notifier.on_input("bob", "ab")

    assert emit.calls == [(TYPING, "bob")]
    notifier.cancel()


@pytest.mark.asyncio
async def test_clearing_input_stops_immediately():
    emit = Recorder()
    notifier = TypingNotifier(emit, timeout=1)

    await notifier.on_input("bob", "a")
    await notifier.on_input("bob", "")

    assert emit.calls == [(TYPING, "bob"), (STOP_TYPING, "bob")]
    await asyncio.sleep(0)
    assert not notifier.typing


@pytest.mark.asyncio
async def test_submit_always_sends_stop():
    emit = Recorder()
    notifier = TypingNotifier(emit, timeout=1)
    notifier.switch_peer("bob")

    await notifier.on_submit()

    assert emit.calls == [(STOP_TYPING, "bob")]


@pytest.mark.asyncio
async def test_switching_peer_cancels_pending_stop():
    emit = Recorder()
    notifier = TypingNotifier(emit, timeout=0.05)

    await notifier.on_input("bob", "a")
    notifier.switch_peer("carol")
    await asyncio.sleep(0.15)

    assert emit.calls == [(TYPING, "bob")]
    assert notifier.peer_id == "carol"


def test_typing_state_tracks_senders():
    state = TypingState()
    state.apply(TYPING, "bob")
    state.apply(TYPING, "carol")
    state.apply(STOP_TYPING, "bob")
    state.apply(TYPING, None)

    assert state.is_typing("carol")
    assert not state.is_typing("bob")
    assert state.users == {"carol"}

    state.clear()
    assert not state.is_typing("carol")


def test_discard_drops_only_that_sender():
    state = TypingState()
    state.apply(TYPING, "bob")
    state.apply(TYPING, "carol")

    state.discard("bob")
    state.discard(None)

    assert state.users == {"carol"}
