import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set

from chat_relay.schemas.events import STOP_TYPING, TYPING


logger = logging.getLogger(__name__)

# (event, receiver_id)
Emit = Callable[[str, str], Awaitable[None]]

DEFAULT_TIMEOUT = 1.5


class TypingNotifier:
    """Debounces keystrokes into ``typing`` / ``stopTyping`` signals.

    Each keystroke with non-empty input emits ``typing`` (or only the first
    one when ``resend`` is off) and restarts a timer; when the timer fires
    without further input, ``stopTyping`` goes out. Submitting or clearing
    the input stops immediately.
    """

    def __init__(self, emit: Emit, timeout: float = DEFAULT_TIMEOUT, resend: bool = True) -> None:
        self._emit = emit
        self._timeout = timeout
        self._resend = resend
        self._peer: Optional[str] = None
        self._typing = False
        self._timer: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def typing(self) -> bool:
        return self._typing

    @property
    def peer_id(self) -> Optional[str]:
        return self._peer

    async def on_input(self, peer_id: str, text: str) -> None:
        if not text or not text.strip():
            await self.stop(peer_id)
            return
        if self._peer != peer_id:
            self.switch_peer(peer_id)
        if self._resend or not self._typing:
            await self._emit(TYPING, peer_id)
        self._typing = True
        self._restart_timer(peer_id)

    async def on_submit(self, peer_id: Optional[str] = None) -> None:
        await self.stop(peer_id)

    async def stop(self, peer_id: Optional[str] = None) -> None:
        self._cancel_timer()
        self._typing = False
        peer = peer_id or self._peer
        if peer:
            await self._emit(STOP_TYPING, peer)

    def switch_peer(self, peer_id: Optional[str]) -> None:
        # no stopTyping here: a stale one must not reach the new conversation
        self.cancel()
        self._peer = peer_id

    def cancel(self) -> None:
        self._cancel_timer()
        self._typing = False

    def _restart_timer(self, peer_id: str) -> None:
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self._timeout, self._expire, peer_id)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _expire(self, peer_id: str) -> None:
        self._timer = None
        if not self._typing or self._peer != peer_id:
            return
        self._typing = False
        task = asyncio.ensure_future(self._emit(STOP_TYPING, peer_id))
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning("stopTyping emit failed", exc_info=task.exception())


class TypingState:
    """Receiving side: which peers are currently typing to this client."""

    def __init__(self) -> None:
        self._typing: Set[str] = set()

    def apply(self, event: str, sender_id: Optional[str]) -> None:
        if not sender_id:
            return
        if event == TYPING:
            self._typing.add(sender_id)
        elif event == STOP_TYPING:
            self._typing.discard(sender_id)

    def is_typing(self, user_id: Optional[str]) -> bool:
        return user_id in self._typing

    def discard(self, user_id: Optional[str]) -> None:
        self._typing.discard(user_id)

    def clear(self) -> None:
        self._typing.clear()

    @property
    def users(self) -> Set[str]:
        return set(self._typing)
