"""Typing presence: outbound debouncing and inbound aggregation.

``TypingDebouncer`` turns local keystrokes into a sparse stream of
start/stop signals. ``TypingPresence`` collects other users' indicators for
the active scope, coalesces bursts of updates and evicts indicators whose
owner stopped refreshing them.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Set

from pydantic import ValidationError as PydanticValidationError

from chatsync.shared.models import TypingIndicator, parse_iso

from .events import EventKind, event_kind

logger = logging.getLogger(__name__)

EmitTyping = Callable[[bool], Awaitable[None]]
PresenceListener = Callable[[List[TypingIndicator]], None]


class TypingState(str, Enum):
    IDLE = "idle"
    PENDING_START = "pending_start"
    ACTIVE = "active"
    PENDING_STOP = "pending_stop"


class TypingDebouncer:
    """State machine for the local user's typing signal.

    ``IDLE`` -> ``PENDING_START`` on the first non-empty input. The start
    signal is sent once input has settled for ``start_debounce`` seconds
    (``ACTIVE``), and again after every later settle, no more often than
    ``min_repeat_interval``. Without further input for ``idle_timeout`` seconds, or
    when the input is cleared, a stop signal is sent (``PENDING_STOP`` until
    it completes, then ``IDLE``).
    """

    def __init__(
        self,
        emit: EmitTyping,
        start_debounce: float = 0.4,
        idle_timeout: float = 2.5,
        min_repeat_interval: float = 0.4,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.emit = emit
        self.start_debounce = start_debounce
        self.idle_timeout = idle_timeout
        self.min_repeat_interval = min_repeat_interval
        self._clock = clock

        self.state = TypingState.IDLE
        self._start_timer: Optional[asyncio.TimerHandle] = None
        self._idle_timer: Optional[asyncio.TimerHandle] = None
        self._last_sent: Optional[bool] = None
        self._last_sent_at = 0.0
        self._emissions: Set[asyncio.Task] = set()

    def on_local_input_change(self, text: str) -> None:
        if not text.strip():
            self._cancel_timers()
            if self.state != TypingState.IDLE:
                self._send(False)
            return

        loop = asyncio.get_running_loop()
        if self.state != TypingState.ACTIVE:
            self.state = TypingState.PENDING_START
        # While active, each settle refreshes the indicator before it goes stale
        if self._start_timer is not None:
            self._start_timer.cancel()
        self._start_timer = loop.call_later(self.start_debounce, self._on_start_timer)

        if self._idle_timer is not None:
            self._idle_timer.cancel()
        self._idle_timer = loop.call_later(self.idle_timeout, self._on_idle_timer)

    def _on_start_timer(self) -> None:
        self._start_timer = None
        if self.state == TypingState.PENDING_START:
            self.state = TypingState.ACTIVE
            self._send(True)
        elif self.state == TypingState.ACTIVE:
            self._send(True)

    def _on_idle_timer(self) -> None:
        self._idle_timer = None
        if self._start_timer is not None:
            self._start_timer.cancel()
            self._start_timer = None
        if self.state == TypingState.ACTIVE:
            self._send(False)
        else:
            self.state = TypingState.IDLE

    def _send(self, typing: bool) -> None:
        now = self._clock()
        if self._last_sent == typing and now - self._last_sent_at < self.min_repeat_interval:
            logger.debug(f"Skipping repeated typing={typing}")
            if not typing:
                self.state = TypingState.IDLE
            return

        self._last_sent = typing
        self._last_sent_at = now
        if not typing:
            self.state = TypingState.PENDING_STOP

        task = asyncio.create_task(self._emit(typing))
        self._emissions.add(task)
        task.add_done_callback(self._emissions.discard)

    async def _emit(self, typing: bool) -> None:
        try:
            await self.emit(typing)
        except Exception as e:
            logger.warning(f"Failed to send typing={typing}: {e}")
        finally:
            if not typing and self.state == TypingState.PENDING_STOP:
                self.state = TypingState.IDLE

    def _cancel_timers(self) -> None:
        for timer in (self._start_timer, self._idle_timer):
            if timer is not None:
                timer.cancel()
        self._start_timer = None
        self._idle_timer = None

    async def flush(self) -> None:
        """Wait for in-flight emissions."""
        if self._emissions:
            await asyncio.gather(*list(self._emissions), return_exceptions=True)

    def cancel(self) -> None:
        """Drop every timer without signalling (e.g. on scope switch)."""
        self._cancel_timers()
        self.state = TypingState.IDLE
        self._last_sent = None
        self._last_sent_at = 0.0


class TypingPresence:
    """Who else is typing in the active scope."""

    def __init__(
        self,
        local_user_id: str,
        scope_id: Optional[str] = None,
        stale_after: float = 5.0,
        sweep_interval: float = 1.0,
        batch_window: float = 0.05,
        on_change: Optional[PresenceListener] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.local_user_id = local_user_id
        self.scope_id = scope_id
        self.stale_after = stale_after
        self.sweep_interval = sweep_interval
        self.batch_window = batch_window
        self.on_change = on_change
        self._clock = clock

        self._indicators: Dict[str, TypingIndicator] = {}
        # user id -> indicator, or None for a removal
        self._pending: Dict[str, Optional[TypingIndicator]] = {}
        self._flush_handle: Optional[asyncio.TimerHandle] = None
        self._sweeper: Optional[asyncio.Task] = None

    @property
    def typing_users(self) -> List[TypingIndicator]:
        return sorted(self._indicators.values(), key=lambda i: (i.updated_at, i.user_id))

    def set_scope(self, scope_id: Optional[str]) -> None:
        self.scope_id = scope_id
        self._pending.clear()
        if self._flush_handle is not None:
            self._flush_handle.cancel()
            self._flush_handle = None
        if self._indicators:
            self._indicators.clear()
            self._notify()

    def handle(self, raw: Mapping[str, Any]) -> None:
        """Subscription callback for the typing channel."""
        kind = event_kind(raw.get("eventKinds") or raw.get("events") or [])
        payload = raw.get("payload")
        if kind is None or not isinstance(payload, Mapping):
            logger.debug("Ignoring malformed typing event")
            return

        try:
            indicator = TypingIndicator.model_validate(payload)
        except PydanticValidationError as e:
            logger.warning(f"Dropping typing event: {e.error_count()} errors")
            return

        if indicator.user_id == self.local_user_id or indicator.scope_id != self.scope_id:
            return

        self._pending[indicator.user_id] = None if kind == EventKind.DELETE else indicator
        self._schedule_flush()

    def _schedule_flush(self) -> None:
        if self.batch_window <= 0:
            self.flush()
            return
        if self._flush_handle is None:
            loop = asyncio.get_running_loop()
            self._flush_handle = loop.call_later(self.batch_window, self.flush)

    def flush(self) -> None:
        """Apply every queued update as one change."""
        self._flush_handle = None
        pending, self._pending = self._pending, {}
        changed = False
        for user_id, indicator in pending.items():
            if indicator is None:
                changed = self._indicators.pop(user_id, None) is not None or changed
            else:
                self._indicators[user_id] = indicator
                changed = True
        if changed:
            self._notify()

    def sweep(self, now: Optional[float] = None) -> List[str]:
        """Evict indicators not refreshed within ``stale_after`` seconds."""
        now = self._clock() if now is None else now
        stale = [
            user_id
            for user_id, indicator in self._indicators.items()
            if now - parse_iso(indicator.updated_at).timestamp() > self.stale_after
        ]
        for user_id in stale:
            del self._indicators[user_id]
        if stale:
            logger.debug(f"Evicted stale typing indicators: {stale}")
            self._notify()
        return stale

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            self.sweep()

    def start(self) -> None:
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_forever())

    async def stop(self) -> None:
        if self._flush_handle is not None:
            self._flush_handle.cancel()
            self._flush_handle = None
        sweeper, self._sweeper = self._sweeper, None
        if sweeper is not None:
            sweeper.cancel()
            try:
                await sweeper
            except asyncio.CancelledError:
                pass

    def _notify(self) -> None:
        if self.on_change is None:
            return
        try:
            self.on_change(self.typing_users)
        except Exception as e:
            logger.error(f"Typing listener failed: {e}", exc_info=True)
