"""Per-call session storage — carries conversation state between webhooks.

Twilio calls the voice webhook once per caller utterance and keeps no
state of its own, so each turn:

  1. takes the per-call lock        ``async with store.lock(call_sid)``
  2. loads the session              ``await store.get_or_create(call_sid)``
  3. runs the engine on its state
  4. writes the new state back      ``await store.save(call_sid, state)``

The lock serializes duplicate or retried deliveries for one call without
blocking any other call.  Sessions are removed by ``complete()`` when the
call-status callback arrives, and by ``evict_expired()`` for calls whose
callback never came.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

from pydantic import BaseModel, Field
from redis.asyncio import Redis

from clinic_booking.models.state import ConversationState, GreetingState

log = logging.getLogger("clinic_booking.session")


def redact_pii(value: str) -> str:
    """Mask PII for logging — show first 3 and last 2 chars only."""
    if not value or len(value) <= 5:
        return "***"
    return value[:3] + "***" + value[-2:]


class CallSession(BaseModel):
    """Everything remembered about one call between turns."""

    call_sid: str
    started_at: float
    last_seen: float
    state: ConversationState = Field(default_factory=GreetingState)

    @property
    def step(self) -> str:
        return self.state.step


class SessionStore(ABC):
    """Keyed, per-call-locked store of CallSession objects."""

    @abstractmethod
    def lock(self, call_sid: str):
        """Async context manager giving exclusive access to one call's session."""

    @abstractmethod
    async def get_or_create(self, call_sid: str) -> CallSession:
        """Return the call's session, creating it at the greeting step if new."""

    @abstractmethod
    async def save(self, call_sid: str, state: ConversationState) -> None:
        """Store ``state`` as the call's current conversation state."""

    @abstractmethod
    async def complete(self, call_sid: str) -> int | None:
        """Drop the session and return the call's elapsed seconds.

        Returns None (and does nothing) if the call is unknown.
        """

    @abstractmethod
    async def evict_expired(self) -> int:
        """Drop idle sessions past their TTL. Returns how many were dropped."""

    @abstractmethod
    async def active_sessions(self) -> list[CallSession]:
        """Snapshot of all live sessions."""

    async def run_evictor(self, interval_seconds: float) -> None:
        """Background loop: evict expired sessions every ``interval_seconds``."""
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                evicted = await self.evict_expired()
            except Exception:
                log.exception("Session eviction failed")
                continue
            if evicted:
                log.info("Evicted %d idle session(s)", evicted)


class InMemorySessionStore(SessionStore):
    """Single-process store: a dict of sessions and a dict of asyncio locks."""

    def __init__(
        self,
        ttl_seconds: float = 3600,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._sessions: dict[str, CallSession] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        # holders and waiters per call; a lock entry outlives them only while
        # its session does
        self._lock_users: dict[str, int] = {}

    @asynccontextmanager
    async def lock(self, call_sid: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(call_sid, asyncio.Lock())
        self._lock_users[call_sid] = self._lock_users.get(call_sid, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[call_sid] -= 1
            if not self._lock_users[call_sid]:
                del self._lock_users[call_sid]
                if call_sid not in self._sessions:
                    self._locks.pop(call_sid, None)

    def _new_session(self, call_sid: str) -> CallSession:
        now = self._clock()
        return CallSession(call_sid=call_sid, started_at=now, last_seen=now)

    async def get_or_create(self, call_sid: str) -> CallSession:
        session = self._sessions.get(call_sid)
        if session is None:
            session = self._new_session(call_sid)
            self._sessions[call_sid] = session
            log.info("Session created: %s", call_sid)
        return session.model_copy(deep=True)

    async def save(self, call_sid: str, state: ConversationState) -> None:
        session = self._sessions.get(call_sid) or self._new_session(call_sid)
        self._sessions[call_sid] = session.model_copy(
            update={"state": state, "last_seen": self._clock()}
        )

    def _drop_lock(self, call_sid: str) -> None:
        if call_sid not in self._lock_users:
            self._locks.pop(call_sid, None)

    async def complete(self, call_sid: str) -> int | None:
        session = self._sessions.pop(call_sid, None)
        self._drop_lock(call_sid)
        if session is None:
            return None
        elapsed = int(self._clock() - session.started_at)
        log.info("Session completed: %s after %ds", call_sid, elapsed)
        return elapsed

    async def evict_expired(self) -> int:
        cutoff = self._clock() - self._ttl
        expired = [
            sid for sid, s in self._sessions.items()
            if s.last_seen < cutoff and sid not in self._lock_users
        ]
        for sid in expired:
            del self._sessions[sid]
            self._drop_lock(sid)
        return len(expired)

    async def active_sessions(self) -> list[CallSession]:
        return [s.model_copy(deep=True) for s in self._sessions.values()]


class RedisSessionStore(SessionStore):
    """Durable store for multi-worker deployments.

    Sessions are JSON blobs under ``{prefix}{call_sid}`` with a TTL that is
    refreshed on every save, so Redis does the eviction.  Per-call exclusion
    uses a Redis lock so it also holds across worker processes.
    """

    def __init__(
        self,
        redis: Redis,
        ttl_seconds: int = 3600,
        prefix: str = "clinic_booking:call:",
        lock_timeout: float = 30.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._redis = redis
        self._ttl = ttl_seconds
        self._prefix = prefix
        self._lock_timeout = lock_timeout
        self._clock = clock

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisSessionStore":
        return cls(Redis.from_url(url, decode_responses=True), **kwargs)

    def _key(self, call_sid: str) -> str:
        return f"{self._prefix}{call_sid}"

    @asynccontextmanager
    async def lock(self, call_sid: str) -> AsyncIterator[None]:
        async with self._redis.lock(
            f"{self._key(call_sid)}:lock",
            timeout=self._lock_timeout,
            blocking_timeout=self._lock_timeout,
        ):
            yield

    async def _load(self, call_sid: str) -> CallSession | None:
        raw = await self._redis.get(self._key(call_sid))
        return CallSession.model_validate_json(raw) if raw else None

    async def get_or_create(self, call_sid: str) -> CallSession:
        session = await self._load(call_sid)
        if session is not None:
            return session

        now = self._clock()
        session = CallSession(call_sid=call_sid, started_at=now, last_seen=now)
        created = await self._redis.set(
            self._key(call_sid), session.model_dump_json(), ex=self._ttl, nx=True
        )
        if not created:
            # Another worker created it between our GET and SET
            return await self._load(call_sid) or session
        log.info("Session created: %s", call_sid)
        return session

    async def save(self, call_sid: str, state: ConversationState) -> None:
        now = self._clock()
        session = await self._load(call_sid) or CallSession(
            call_sid=call_sid, started_at=now, last_seen=now
        )
        session = session.model_copy(update={"state": state, "last_seen": now})
        await self._redis.set(self._key(call_sid), session.model_dump_json(), ex=self._ttl)

    async def complete(self, call_sid: str) -> int | None:
        raw = await self._redis.getdel(self._key(call_sid))
        if not raw:
            return None
        session = CallSession.model_validate_json(raw)
        elapsed = int(self._clock() - session.started_at)
        log.info("Session completed: %s after %ds", call_sid, elapsed)
        return elapsed

    async def evict_expired(self) -> int:
        # Key TTLs already bound memory
        return 0

    async def active_sessions(self) -> list[CallSession]:
        sessions: list[CallSession] = []
        async for key in self._redis.scan_iter(match=f"{self._prefix}*"):
            if key.endswith(":lock"):
                continue
            raw = await self._redis.get(key)
            if raw:
                sessions.append(CallSession.model_validate_json(raw))
        return sessions
