"""Session registry: active sessions, demoted cache, persisted message history.

Two tiers of sessions:

    active   — dict of session id → GenerationProgress, while generation or a
               viewer keeps the session busy
    demoted  — TTLCache of finished sessions, still queryable until the TTL
               expires

get() checks both tiers, so callers never see the difference.

Message histories live next to the sessions (one MessageHistory per id) and
outlive demotion. They are written to a JSON file mapping session id to its
message list, on a timer, after cleanups and at shutdown:

    {"<session id>": [{"type": ..., "status": ..., "message": ..., ...}, ...]}
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
import threading
import time
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from dndbot.models import StatusMessage, utcnow
from dndbot.progress import GenerationProgress, MessageHistory

logger = logging.getLogger(__name__)


def is_valid_session_id(session_id: str | None) -> bool:
    """A session id is a canonical, lower-case UUID string."""
    if not session_id:
        return False
    try:
        return str(uuid.UUID(session_id)) == session_id
    except ValueError:
        return False


# ---------------------------------------------------------------------------
# TTLCache
# ---------------------------------------------------------------------------

class TTLCache:
    """Small time-bounded cache. Entries vanish `ttl` seconds after set()."""

    def __init__(self, ttl: float, maxsize: int = 1024,
                 clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl
        self.maxsize = maxsize
        self._clock = clock
        self._data: dict[str, tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            item = self._data.get(key)
            if item is None:
                return None
            expires, value = item
            if self._clock() >= expires:
                del self._data[key]
                return None
            return value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        with self._lock:
            if key not in self._data and len(self._data) >= self.maxsize:
                oldest = min(self._data, key=lambda k: self._data[k][0])
                del self._data[oldest]
            self._data[key] = (self._clock() + (self.ttl if ttl is None else ttl), value)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def expire(self) -> int:
        """Drop expired entries. Returns how many were removed."""
        now = self._clock()
        with self._lock:
            dead = [k for k, (expires, _) in self._data.items() if now >= expires]
            for k in dead:
                del self._data[k]
        return len(dead)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None


# ---------------------------------------------------------------------------
# SessionRegistry
# ---------------------------------------------------------------------------

class SessionRegistry:
    """Owns every GenerationProgress and MessageHistory of the process.

    Args:
        history_path:   JSON file the message histories are persisted to.
        cache_ttl:      Seconds a demoted session stays queryable.
        stale_after:    Seconds of history inactivity after which a session
                        and its history are forgotten.
        linger:         Seconds a finished session stays in the active tier
                        after its last message.
        reap_interval:  Seconds between reap_stale() runs (start()).
        persist_interval: Seconds between persist() runs (start()).
        send_timeout:   Seconds a channel send may take before the channel
                        is dropped (passed to each GenerationProgress).
        clock:          Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        history_path: Path,
        cache_ttl: float = 24 * 3600,
        stale_after: float = 3600,
        linger: float = 600,
        reap_interval: float = 600,
        persist_interval: float = 300,
        send_timeout: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.history_path = history_path
        self.stale_after = stale_after
        self.linger = linger
        self.reap_interval = reap_interval
        self.persist_interval = persist_interval
        self.send_timeout = send_timeout

        self._lock = threading.RLock()
        self._sessions: dict[str, GenerationProgress] = {}
        self._histories: dict[str, MessageHistory] = {}
        self._demoted = TTLCache(cache_ttl, clock=clock)
        self._snapshot = TTLCache(cache_ttl, maxsize=1, clock=clock)
        self._tasks: list[asyncio.Task] = []

    # -- Sessions --------------------------------------------------------------

    def create(self, session_id: str | None = None) -> GenerationProgress:
        session_id = session_id or str(uuid.uuid4())
        with self._lock:
            if session_id in self._sessions:
                raise ValueError(f"Session {session_id} is already active")
            history = self._histories.setdefault(session_id, MessageHistory())
            progress = GenerationProgress(session_id, history, send_timeout=self.send_timeout)
            self._sessions[session_id] = progress
            self._demoted.delete(session_id)
        logger.info("[Session %s] Created", session_id)
        return progress

    def get(self, session_id: str) -> GenerationProgress | None:
        with self._lock:
            progress = self._sessions.get(session_id)
        if progress is not None:
            return progress
        return self._demoted.get(session_id)

    def is_active(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions

    def active_sessions(self) -> list[GenerationProgress]:
        with self._lock:
            return list(self._sessions.values())

    def history(self, session_id: str) -> list[StatusMessage] | None:
        with self._lock:
            history = self._histories.get(session_id)
        return history.messages() if history is not None else None

    async def cleanup(self, session_id: str) -> bool:
        """Retire an active session into the demoted cache.

        Marks it inactive, closes its channel, signals done and persists the
        histories. Returns False (and does nothing) if the session is not
        active, so calling it twice is harmless.
        """
        with self._lock:
            progress = self._sessions.pop(session_id, None)
        if progress is None:
            return False

        progress.set_active(False)
        await progress.close()
        progress.signal_done()
        self._demoted.set(session_id, progress)
        logger.info("[Session %s] Cleaned up and demoted to cache", session_id)
        self.persist()
        return True

    async def reap_stale(self) -> int:
        """Demote finished sessions and forget idle histories.

        Returns the number of sessions affected.
        """
        now = utcnow()
        linger = timedelta(seconds=self.linger)
        stale = timedelta(seconds=self.stale_after)

        finished: list[str] = []
        forgotten: list[str] = []
        with self._lock:
            for session_id, history in self._histories.items():
                last = history.last_activity()
                if last is None:
                    continue
                if now - last > stale:
                    forgotten.append(session_id)
            for session_id, progress in self._sessions.items():
                if session_id in forgotten or not progress.state.terminal:
                    continue
                last = progress.history.last_activity()
                if last is not None and now - last > linger:
                    finished.append(session_id)

        for session_id in finished + forgotten:
            await self.cleanup(session_id)
        with self._lock:
            for session_id in forgotten:
                self._histories.pop(session_id, None)
        self._demoted.expire()

        changed = len(finished) + len(forgotten)
        if changed:
            logger.info("Reaped %d finished and %d stale sessions",
                        len(finished), len(forgotten))
            self.persist()
        return changed

    # -- Persistence -------------------------------------------------------------

    def _dump(self) -> dict[str, list[dict]]:
        with self._lock:
            items = list(self._histories.items())
        return {sid: [m.model_dump(mode="json") for m in h.messages()] for sid, h in items}

    def persist(self) -> None:
        """Write every message history to the cache and the history file."""
        data = self._dump()
        self._snapshot.set("message_history", data)

        self.history_path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.history_path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp, self.history_path)
        except OSError as e:
            logger.error("Error writing history file %s: %s", self.history_path, e)
            Path(tmp).unlink(missing_ok=True)
            return
        logger.debug("Persisted %d message histories", len(data))

    def load(self) -> int:
        """Restore histories from the file, then overlay newer cached ones.

        Returns the number of histories loaded.
        """
        loaded: dict[str, list[StatusMessage]] = {}
        if self.history_path.is_file():
            try:
                raw = json.loads(self.history_path.read_text() or "{}")
                loaded = _parse_histories(raw)
            except (json.JSONDecodeError, ValueError) as e:
                logger.error("Error decoding history file %s: %s", self.history_path, e)

        cached = self._snapshot.get("message_history")
        if cached:
            for session_id, messages in _parse_histories(cached).items():
                if _newer(messages, loaded.get(session_id)):
                    loaded[session_id] = messages

        with self._lock:
            for session_id, messages in loaded.items():
                current = self._histories.get(session_id)
                if current is None or _newer(messages, current.messages()):
                    history = MessageHistory(messages)
                    self._histories[session_id] = history
                    progress = self._sessions.get(session_id)
                    if progress is not None:
                        progress.history = history
        logger.info("Loaded %d message histories", len(loaded))
        return len(loaded)

    # -- Background maintenance -----------------------------------------------

    async def _every(self, interval: float, job: Callable[[], Any]) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                result = job()
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("Session maintenance job failed")

    def start(self) -> None:
        """Start the periodic reap and persist loops on the running loop."""
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._every(self.reap_interval, self.reap_stale)),
            asyncio.create_task(self._every(self.persist_interval, self.persist)),
        ]

    async def stop(self) -> None:
        """Stop the maintenance loops and persist one last time."""
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
        self.persist()


def _parse_histories(raw: Any) -> dict[str, list[StatusMessage]]:
    if not isinstance(raw, dict):
        raise ValueError("history data must be a JSON object")
    return {
        str(sid): [StatusMessage.model_validate(m) for m in messages or []]
        for sid, messages in raw.items()
    }


def _last(messages: list[StatusMessage] | None) -> datetime | None:
    return messages[-1].timestamp if messages else None


def _newer(candidate: list[StatusMessage], current: list[StatusMessage] | None) -> bool:
    cand_last, cur_last = _last(candidate), _last(current)
    if cand_last is None:
        return False
    if cur_last is None:
        return True
    return cand_last > cur_last
