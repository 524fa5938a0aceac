from __future__ import annotations

import hashlib
import logging
import secrets
import time
from abc import ABC, abstractmethod
from collections.abc import Callable

from auth.models import AuthorizationRequest

logger = logging.getLogger(__name__)

DEFAULT_STATE_TTL_SECONDS = 600
STATE_KEY_PREFIX = "schwab_oauth_state:"


def generate_state() -> str:
    # 32 random bytes, well above the 128-bit floor.
    return secrets.token_urlsafe(32)


def state_hash(state: str) -> str:
    return hashlib.sha256(state.encode("utf-8")).hexdigest()[:8]


class StateStore(ABC):
    """Single-use anti-CSRF state tokens with a fixed TTL."""

    def __init__(
        self,
        *,
        ttl_seconds: int = DEFAULT_STATE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def _new_request(self, state: str, redirect_uri: str) -> AuthorizationRequest:
        issued_at = self._clock()
        return AuthorizationRequest(
            state=state,
            redirect_uri=redirect_uri,
            issued_at=issued_at,
            expires_at=issued_at + self.ttl_seconds,
        )

    async def issue(self, redirect_uri: str = "") -> str:
        state = generate_state()
        await self.remember(state, redirect_uri)
        return state

    @abstractmethod
    async def remember(self, state: str, redirect_uri: str = "") -> None:
        raise NotImplementedError

    @abstractmethod
    async def take(self, state: str) -> AuthorizationRequest | None:
        """Atomically look up and delete ``state``; None if absent or expired."""
        raise NotImplementedError

    async def consume(self, state: str) -> bool:
        return await self.take(state) is not None


class MemoryStateStore(StateStore):
    def __init__(
        self,
        *,
        ttl_seconds: int = DEFAULT_STATE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
        max_entries: int = 10_000,
    ) -> None:
        super().__init__(ttl_seconds=ttl_seconds, clock=clock)
        self.max_entries = max_entries
        self._pending: dict[str, AuthorizationRequest] = {}

    def __len__(self) -> int:
        return len(self._pending)

    async def remember(self, state: str, redirect_uri: str = "") -> None:
        self._evict_expired()
        # Re-inserting moves the key to the end so the cap drops the oldest.
        self._pending.pop(state, None)
        self._pending[state] = self._new_request(state, redirect_uri)
        while len(self._pending) > self.max_entries:
            oldest = next(iter(self._pending))
            del self._pending[oldest]

    async def take(self, state: str) -> AuthorizationRequest | None:
        if not state:
            return None
        # No await between lookup and delete: atomic on the event loop.
        pending = self._pending.pop(state, None)
        self._evict_expired()
        if pending is None:
            logger.info("State not found or already used state_hash=%s", state_hash(state))
            return None
        if pending.is_expired(self._clock()):
            logger.info("State expired state_hash=%s", state_hash(state))
            return None
        return pending

    def _evict_expired(self) -> None:
        now = self._clock()
        expired = [state for state, pending in self._pending.items() if pending.is_expired(now)]
        for state in expired:
            del self._pending[state]


class RedisStateStore(StateStore):
    """State store shared across processes through Redis.

    ``take`` uses GETDEL, a single atomic command, so two callbacks replaying
    the same state cannot both succeed. Redis drops unconsumed keys through
    the key TTL.
    """

    def __init__(
        self,
        redis_client,
        *,
        ttl_seconds: int = DEFAULT_STATE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
        key_prefix: str = STATE_KEY_PREFIX,
    ) -> None:
        super().__init__(ttl_seconds=ttl_seconds, clock=clock)
        self.redis = redis_client
        self.key_prefix = key_prefix

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisStateStore":
        import redis.asyncio

        return cls(redis.asyncio.from_url(url), **kwargs)

    def _key(self, state: str) -> str:
        return f"{self.key_prefix}{state}"

    async def remember(self, state: str, redirect_uri: str = "") -> None:
        pending = self._new_request(state, redirect_uri)
        await self.redis.set(self._key(state), pending.to_json(), ex=self.ttl_seconds)

    async def take(self, state: str) -> AuthorizationRequest | None:
        if not state:
            return None
        try:
            raw = await self.redis.getdel(self._key(state))
        except Exception as error:
            logger.error(
                "State lookup failed state_hash=%s reason=%s",
                state_hash(state),
                type(error).__name__,
            )
            return None
        if raw is None:
            logger.info("State not found or already used state_hash=%s", state_hash(state))
            return None

        try:
            pending = AuthorizationRequest.from_json(raw)
            expired = pending.is_expired(self._clock())
        except (ValueError, TypeError):
            logger.warning("Unreadable state record state_hash=%s", state_hash(state))
            return None
        if expired:
            logger.info("State expired state_hash=%s", state_hash(state))
            return None
        return pending
