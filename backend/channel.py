"""Live WebSocket channel for a generation session.

Connection flow:
  1. Reject ids that are not UUIDs, and unknown sessions, with close code
     1008 before accepting.
  2. Accept and attach to the session's progress: any previous channel is
     closed, the message history is replayed, then the current state is sent.
  3. Run the keepalive ticker and the read loop in one task group. Whichever
     ends first (missed ping, idle client, client disconnect) cancels the
     other.
  4. Detach and close the socket, shielded from cancellation.

Inbound frames carry nothing beyond liveness: clients answer each ping with
a {"type": "pong"} frame, and a client that sends nothing for `idle_timeout`
seconds is disconnected.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

import anyio
from fastapi import WebSocket, status
from starlette.websockets import WebSocketState

from dndbot.progress import GenerationProgress
from dndbot.registry import SessionRegistry, is_valid_session_id

logger = logging.getLogger(__name__)

CLOSE_TIMEOUT = 5.0


class ChannelManager:
    def __init__(
        self,
        registry: SessionRegistry,
        ping_interval: float = 30.0,
        idle_timeout: float | None = 60.0,
    ) -> None:
        self.registry = registry
        self.ping_interval = ping_interval
        self.idle_timeout = idle_timeout or None

    async def serve(self, websocket: WebSocket, session_id: str | None) -> None:
        if not session_id or not is_valid_session_id(session_id):
            logger.info("Rejecting WebSocket with invalid session id: %r", session_id)
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Invalid session ID")
            return

        progress = self.registry.get(session_id)
        if progress is None:
            logger.info("[Session %s] Rejecting WebSocket: session not found", session_id)
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Session not found")
            return

        await websocket.accept()
        logger.info("[Session %s] WebSocket connected", session_id)
        try:
            if not await progress.attach(websocket):
                return
            async with anyio.create_task_group() as tg:
                tg.start_soon(_first_to_finish, tg.cancel_scope,
                              self._read_loop, websocket, session_id)
                tg.start_soon(_first_to_finish, tg.cancel_scope,
                              self._keepalive, websocket, progress)
        finally:
            with anyio.CancelScope(shield=True):
                await progress.detach(websocket)
                await self._close(websocket, session_id)

    async def _read_loop(self, websocket: WebSocket, session_id: str) -> None:
        while True:
            with anyio.move_on_after(self.idle_timeout) as idle:
                message = await websocket.receive()
            if idle.cancelled_caught:
                logger.info("[Session %s] No frame from client for %ss, disconnecting",
                            session_id, self.idle_timeout)
                return
            if message["type"] == "websocket.disconnect":
                logger.info("[Session %s] WebSocket closed by client (code=%s)",
                            session_id, message.get("code"))
                return
            logger.debug("[Session %s] Inbound frame", session_id)

    async def _keepalive(self, websocket: WebSocket, progress: GenerationProgress) -> None:
        while True:
            await anyio.sleep(self.ping_interval)
            if not await progress.probe(websocket):
                return

    async def _close(self, websocket: WebSocket, session_id: str) -> None:
        if (websocket.application_state == WebSocketState.DISCONNECTED
                or websocket.client_state == WebSocketState.DISCONNECTED):
            return
        try:
            with anyio.fail_after(CLOSE_TIMEOUT):
                await websocket.close()
        except Exception as e:
            logger.warning("[Session %s] Error closing WebSocket: %r", session_id, e)


async def _first_to_finish(scope: anyio.CancelScope,
                           func: Callable[..., Awaitable[None]], *args) -> None:
    await func(*args)
    scope.cancel()
