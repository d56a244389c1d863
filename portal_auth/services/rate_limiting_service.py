"""
Attempt limiting for second-factor verification
Fixed window per (client IP, user) pair, counted before the code is checked
"""

import asyncio
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Callable, Dict, Optional, Tuple

from redis.exceptions import RedisError

from portal_auth.auth.errors import LimiterUnavailableError, RateLimitedError
from portal_auth.config.redis_config import RedisKeyBuilder, get_redis_client
from portal_auth.config.two_factor_config import (
    RATE_LIMIT_BACKEND,
    TWO_FACTOR_MAX_ATTEMPTS,
    TWO_FACTOR_WINDOW_SECONDS,
)
from portal_auth.core.logging import get_logger

logger = get_logger(__name__)

TWO_FACTOR_SCOPE = "two_factor"


@dataclass
class RateLimitRule:
    """Rate limiting rule configuration"""
    requests: int  # Attempts allowed per window
    window: int    # Window length in seconds


@dataclass
class AttemptWindow:
    attempt_count: int
    window_reset_at: float  # epoch seconds


@dataclass
class RateLimitResult:
    """Budget left after a counted attempt; refusals raise RateLimitedError instead"""
    remaining: int
    reset_time: int  # epoch seconds


class AttemptStore(ABC):
    """Storage for per-key attempt windows."""

    @abstractmethod
    async def get(self, key: str, now: float) -> Optional[AttemptWindow]:
        """Current window for key, or None when no live window exists."""

    @abstractmethod
    async def increment(self, key: str, rule: RateLimitRule, now: float) -> Tuple[AttemptWindow, bool]:
        """
        Atomically roll the window if it has elapsed, then count one attempt
        unless the budget is already spent.

        Returns the window after the call and whether the attempt was counted.
        """

    @abstractmethod
    async def reset(self, key: str) -> None:
        """Drop the window for key."""


class InMemoryAttemptStore(AttemptStore):
    """Single-process store; one dict behind an asyncio lock."""

    PRUNE_THRESHOLD = 10000

    def __init__(self):
        self._windows: Dict[str, AttemptWindow] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str, now: float) -> Optional[AttemptWindow]:
        async with self._lock:
            window = self._windows.get(key)
            if window is None or now > window.window_reset_at:
                return None
            return replace(window)

    async def increment(self, key: str, rule: RateLimitRule, now: float) -> Tuple[AttemptWindow, bool]:
        async with self._lock:
            if len(self._windows) >= self.PRUNE_THRESHOLD:
                self._prune(now)

            window = self._windows.get(key)
            if window is None or now > window.window_reset_at:
                window = AttemptWindow(attempt_count=0, window_reset_at=now + rule.window)
                self._windows[key] = window

            if window.attempt_count >= rule.requests:
                return replace(window), False

            window.attempt_count += 1
            return replace(window), True

    async def reset(self, key: str) -> None:
        async with self._lock:
            self._windows.pop(key, None)

    def _prune(self, now: float) -> None:
        expired = [k for k, w in self._windows.items() if now > w.window_reset_at]
        for k in expired:
            del self._windows[k]


# KEYS[1] counter key; ARGV[1] max attempts; ARGV[2] window in ms.
# Returns {count, ttl_ms, counted}.
_INCREMENT_SCRIPT = """
local current = tonumber(redis.call('GET', KEYS[1]) or '0')
local ttl = redis.call('PTTL', KEYS[1])
if current >= tonumber(ARGV[1]) then
  if ttl < 0 then
    redis.call('PEXPIRE', KEYS[1], ARGV[2])
    ttl = tonumber(ARGV[2])
  end
  return {current, ttl, 0}
end
current = redis.call('INCR', KEYS[1])
if ttl < 0 then
  redis.call('PEXPIRE', KEYS[1], ARGV[2])
  ttl = tonumber(ARGV[2])
end
return {current, ttl, 1}
"""


class RedisAttemptStore(AttemptStore):
    """Shared store for multi-instance deployments; the key TTL is the window."""

    def __init__(self, redis_client=None):
        self.redis_client = redis_client

    async def _get_redis(self):
        """Get Redis client with lazy initialization"""
        if self.redis_client is None:
            self.redis_client = await get_redis_client()
        return self.redis_client

    async def get(self, key: str, now: float) -> Optional[AttemptWindow]:
        try:
            redis = await self._get_redis()
            count = await redis.get(key)
            ttl_ms = await redis.pttl(key)
        except RedisError as e:
            logger.error(f"Attempt store read failed for {key}: {str(e)}")
            raise LimiterUnavailableError() from e

        if count is None or ttl_ms is None or ttl_ms < 0:
            return None
        return AttemptWindow(attempt_count=int(count), window_reset_at=now + ttl_ms / 1000)

    async def increment(self, key: str, rule: RateLimitRule, now: float) -> Tuple[AttemptWindow, bool]:
        try:
            redis = await self._get_redis()
            count, ttl_ms, counted = await redis.eval(
                _INCREMENT_SCRIPT, 1, key, rule.requests, rule.window * 1000
            )
        except RedisError as e:
            logger.error(f"Attempt store increment failed for {key}: {str(e)}")
            raise LimiterUnavailableError() from e

        window = AttemptWindow(attempt_count=int(count), window_reset_at=now + int(ttl_ms) / 1000)
        return window, bool(int(counted))

    async def reset(self, key: str) -> None:
        try:
            redis = await self._get_redis()
            await redis.delete(key)
        except RedisError as e:
            logger.error(f"Attempt store reset failed for {key}: {str(e)}")
            raise LimiterUnavailableError() from e


class AttemptLimiter:
    """
    Gate in front of code verification.

    Every call spends budget, whether or not the code turns out to be valid,
    so a correct guess inside an exhausted window is still refused.
    """

    def __init__(
        self,
        store: AttemptStore,
        rule: Optional[RateLimitRule] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.rule = rule or RateLimitRule(TWO_FACTOR_MAX_ATTEMPTS, TWO_FACTOR_WINDOW_SECONDS)
        self._clock = clock

    def _get_rate_limit_key(self, client_ip: Optional[str], subject_id: Optional[str]) -> str:
        return RedisKeyBuilder.attempt_key(TWO_FACTOR_SCOPE, client_ip or "unknown", subject_id or "unknown")

    async def hit(self, client_ip: Optional[str], subject_id: Optional[str]) -> RateLimitResult:
        """Count one attempt or raise RateLimitedError with the seconds left in the window."""
        key = self._get_rate_limit_key(client_ip, subject_id)
        now = self._clock()

        window, counted = await self.store.increment(key, self.rule, now)

        if not counted:
            retry_after = max(1, math.ceil(window.window_reset_at - now))
            logger.warning(
                f"Verification rate limit exceeded for user {subject_id} from {client_ip}, "
                f"retry after {retry_after}s"
            )
            raise RateLimitedError(retry_after)

        return RateLimitResult(
            remaining=max(0, self.rule.requests - window.attempt_count),
            reset_time=int(window.window_reset_at),
        )

    async def get_window(self, client_ip: Optional[str], subject_id: Optional[str]) -> Optional[AttemptWindow]:
        return await self.store.get(self._get_rate_limit_key(client_ip, subject_id), self._clock())

    async def reset(self, client_ip: Optional[str], subject_id: Optional[str]) -> None:
        await self.store.reset(self._get_rate_limit_key(client_ip, subject_id))


def build_attempt_limiter(backend: str = RATE_LIMIT_BACKEND) -> AttemptLimiter:
    """Construct the limiter once at application startup."""
    if backend == "redis":
        logger.info("Using Redis attempt store for verification rate limiting")
        return AttemptLimiter(RedisAttemptStore())
    if backend != "memory":
        raise ValueError(f"Unknown RATE_LIMIT_BACKEND: {backend}")
    logger.info("Using in-memory attempt store for verification rate limiting")
    return AttemptLimiter(InMemoryAttemptStore())
