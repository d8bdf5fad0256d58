"""Per-session progress state machine and message history.

States:  initialized → connected → generating → completed | error

`connected` is reached when a live channel attaches while the session is
still initialized; `generating` when the pipeline starts. `completed` and
`error` are terminal and set the done signal exactly once. `error` can be
forced from any state; any other backwards move is ignored.

Every state change and every report() produces exactly one StatusMessage.
It is appended to the session's MessageHistory first and only then delivered
to the attached channel (if any). Delivery failures are logged and never
change the state: generation keeps going whether or not anybody watches.

Every send to a channel is bounded by `send_timeout`. A channel that fails
or stalls on a delivery is dropped and closed, so a viewer that stops
reading costs the pipeline at most one timeout.

Locking:
  _lock      (threading.Lock) guards state, output, error, active flag and
             the channel reference. Never held across an await.
  _delivery  (asyncio.Lock) serialises history-append + send, history replay
             on attach, and channel swaps, so a reconnecting channel receives
             the full history before any newer message.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from datetime import datetime
from typing import Any, Protocol

from dndbot.models import GenerationState, StatusMessage, utcnow

logger = logging.getLogger(__name__)

_STATE_ORDER = {
    GenerationState.INITIALIZED: 0,
    GenerationState.CONNECTED: 1,
    GenerationState.GENERATING: 2,
    GenerationState.COMPLETED: 3,
    GenerationState.ERROR: 3,
}

_STATE_MESSAGES = {
    GenerationState.CONNECTED: "🔌 Connected",
    GenerationState.GENERATING: "🎲 Generating your adventure...",
    GenerationState.COMPLETED: "✨ Adventure generation completed!",
    GenerationState.ERROR: "❌ Error generating adventure",
}


# ---------------------------------------------------------------------------
# Reporter — capability passed to anything that wants to publish progress
# ---------------------------------------------------------------------------

class Reporter(Protocol):
    async def report(self, message: str, output: str | None = None) -> None: ...


class NullReporter:
    """Reporter that discards everything."""

    async def report(self, message: str, output: str | None = None) -> None:
        return None


# ---------------------------------------------------------------------------
# Channel — the slice of a WebSocket the session layer needs
# ---------------------------------------------------------------------------

class Channel(Protocol):
    async def send_json(self, data: Any) -> None: ...

    async def close(self, code: int = 1000, reason: str | None = None) -> None: ...


# ---------------------------------------------------------------------------
# MessageHistory
# ---------------------------------------------------------------------------

class MessageHistory:
    """Append-only, ordered list of status messages for one session."""

    def __init__(self, messages: list[StatusMessage] | None = None) -> None:
        self._lock = threading.Lock()
        self._messages: list[StatusMessage] = list(messages or [])

    def append(self, message: StatusMessage) -> None:
        with self._lock:
            self._messages.append(message)

    def messages(self) -> list[StatusMessage]:
        """Return a copy of the messages."""
        with self._lock:
            return list(self._messages)

    def last_activity(self) -> datetime | None:
        with self._lock:
            if not self._messages:
                return None
            return self._messages[-1].timestamp

    def __len__(self) -> int:
        with self._lock:
            return len(self._messages)


# ---------------------------------------------------------------------------
# GenerationProgress
# ---------------------------------------------------------------------------

class GenerationProgress:
    """Progress record of one generation session. Implements Reporter."""

    def __init__(
        self,
        session_id: str,
        history: MessageHistory | None = None,
        send_timeout: float = 10.0,
    ) -> None:
        self.session_id = session_id
        self.history = history if history is not None else MessageHistory()
        self.send_timeout = send_timeout
        self.created_at = utcnow()
        self.started = time.monotonic()
        self.done = asyncio.Event()

        self._lock = threading.Lock()
        self._delivery = asyncio.Lock()
        self._state = GenerationState.INITIALIZED
        self._output = ""
        self._error: BaseException | None = None
        self._active = True
        self._channel: Channel | None = None

    def __repr__(self) -> str:
        return f"<GenerationProgress {self.session_id} {self.state.value}>"

    # -- Guarded accessors ---------------------------------------------------

    @property
    def state(self) -> GenerationState:
        with self._lock:
            return self._state

    @property
    def output(self) -> str:
        with self._lock:
            return self._output

    @property
    def error(self) -> BaseException | None:
        with self._lock:
            return self._error

    @property
    def active(self) -> bool:
        with self._lock:
            return self._active

    @property
    def channel(self) -> Channel | None:
        with self._lock:
            return self._channel

    def set_active(self, active: bool) -> None:
        with self._lock:
            self._active = active

    # -- Emission ------------------------------------------------------------

    def _snapshot(self, message: str) -> StatusMessage:
        with self._lock:
            return StatusMessage(status=self._state.value, message=message, output=self._output)

    async def _send(self, channel: Channel, msg: StatusMessage) -> None:
        await asyncio.wait_for(channel.send_json(msg.model_dump(mode="json")), self.send_timeout)

    async def _close_channel(self, channel: Channel) -> None:
        try:
            await asyncio.wait_for(channel.close(), self.send_timeout)
        except Exception as e:
            logger.warning("[Session %s] Error closing channel: %r", self.session_id, e)

    async def _drop(self, channel: Channel) -> None:
        """Forget and close a channel that failed a delivery. Caller holds _delivery."""
        with self._lock:
            if self._channel is channel:
                self._channel = None
        await self._close_channel(channel)

    async def _emit(self, message: str) -> None:
        async with self._delivery:
            msg = self._snapshot(message)
            self.history.append(msg)
            channel = self.channel
            if channel is None:
                return
            try:
                await self._send(channel, msg)
            except Exception as e:
                logger.warning("[Session %s] Failed to deliver message, dropping channel: %r",
                               self.session_id, e)
                await self._drop(channel)

    async def report(self, message: str, output: str | None = None) -> None:
        if output is not None:
            with self._lock:
                self._output = output
        await self._emit(message)

    async def update_state(
        self,
        state: GenerationState,
        message: str | None = None,
        error: BaseException | None = None,
    ) -> bool:
        """Move to `state` and emit `message` (or the state's default message).

        Returns False if the transition was refused.
        """
        with self._lock:
            old = self._state
            if old.terminal and state != GenerationState.ERROR:
                refused = True
            elif state == GenerationState.ERROR:
                refused = old == GenerationState.ERROR
            else:
                refused = _STATE_ORDER[state] <= _STATE_ORDER[old]
            if not refused:
                self._state = state
                if error is not None:
                    self._error = error
        if refused:
            logger.warning("[Session %s] Ignoring state transition %s -> %s",
                           self.session_id, old.value, state.value)
            return False

        logger.info("[Session %s] State transition: %s -> %s",
                    self.session_id, old.value, state.value)
        await self._emit(message or _STATE_MESSAGES[state])
        if state.terminal:
            self.signal_done()
        return True

    def signal_done(self) -> bool:
        """Set the done signal. Returns False if it was already set."""
        with self._lock:
            if self.done.is_set():
                return False
            self.done.set()
            return True

    # -- Channel handling ----------------------------------------------------

    async def attach(self, channel: Channel) -> bool:
        """Attach a live channel, closing any previous one, and replay history.

        Returns False if the replay failed; the channel is then closed and
        not attached.
        """
        async with self._delivery:
            with self._lock:
                previous = self._channel
                self._channel = None
            if previous is not None and previous is not channel:
                logger.info("[Session %s] Closing existing channel", self.session_id)
                await self._close_channel(previous)

            messages = self.history.messages()
            logger.info("[Session %s] Replaying %d historical messages",
                        self.session_id, len(messages))
            for i, msg in enumerate(messages):
                try:
                    await self._send(channel, msg)
                except Exception as e:
                    logger.warning("[Session %s] Failed to replay message %d, dropping channel: %r",
                                   self.session_id, i, e)
                    await self._close_channel(channel)
                    return False

            with self._lock:
                self._channel = channel

        if self.state == GenerationState.INITIALIZED:
            await self.update_state(GenerationState.CONNECTED)
        else:
            await self._emit(f"🎲 Current state: {self.state.value}")
        return True

    async def detach(self, channel: Channel) -> bool:
        """Forget `channel` if it is still the attached one."""
        async with self._delivery:
            with self._lock:
                if self._channel is not channel:
                    return False
                self._channel = None
        logger.info("[Session %s] Channel detached", self.session_id)
        return True

    async def close(self) -> None:
        """Close and detach the attached channel, if any."""
        async with self._delivery:
            with self._lock:
                channel = self._channel
                self._channel = None
        if channel is not None:
            await self._close_channel(channel)

    async def probe(self, channel: Channel) -> bool:
        """Send a keepalive frame on `channel`. Not recorded in the history.

        Returns False if the frame could not be sent within send_timeout, or
        if `channel` was dropped by a failed delivery in the meantime.
        """
        async with self._delivery:
            if self.channel is not channel:
                return False
            ping = StatusMessage(type="ping", status=self.state.value)
            try:
                await self._send(channel, ping)
            except Exception as e:
                logger.info("[Session %s] Ping failed: %r", self.session_id, e)
                return False
        return True
