"""Tests for the verification attempt limiter and its stores."""
import pytest
from unittest.mock import AsyncMock
from redis.exceptions import ConnectionError as RedisConnectionError

from portal_auth.auth.errors import LimiterUnavailableError, RateLimitedError
from portal_auth.services.rate_limiting_service import (
    AttemptLimiter,
    InMemoryAttemptStore,
    RateLimitRule,
    RedisAttemptStore,
    build_attempt_limiter,
)


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_limiter(clock):
    return AttemptLimiter(InMemoryAttemptStore(), RateLimitRule(requests=5, window=900), clock=clock)


class TestInMemoryLimiter:

    @pytest.mark.asyncio
    async def test_sixth_attempt_is_rejected(self, memory_limiter):
        for expected_remaining in (4, 3, 2, 1, 0):
            result = await memory_limiter.hit("10.0.0.1", "user-1")
            assert result.remaining == expected_remaining

        with pytest.raises(RateLimitedError) as exc_info:
            await memory_limiter.hit("10.0.0.1", "user-1")

        assert exc_info.value.retry_after_seconds == 900
        assert exc_info.value.kind == "RateLimited"

    @pytest.mark.asyncio
    async def test_rejected_attempts_do_not_extend_window(self, memory_limiter, clock):
        for _ in range(5):
            await memory_limiter.hit("10.0.0.1", "user-1")

        clock.advance(600)
        with pytest.raises(RateLimitedError) as exc_info:
            await memory_limiter.hit("10.0.0.1", "user-1")
        assert exc_info.value.retry_after_seconds == 300

        window = await memory_limiter.get_window("10.0.0.1", "user-1")
        assert window.attempt_count == 5

    @pytest.mark.asyncio
    async def test_window_resets_after_expiry(self, memory_limiter, clock):
        for _ in range(5):
            await memory_limiter.hit("10.0.0.1", "user-1")

        clock.advance(901)
        result = await memory_limiter.hit("10.0.0.1", "user-1")

        assert result.remaining == 4
        window = await memory_limiter.get_window("10.0.0.1", "user-1")
        assert window.attempt_count == 1

    @pytest.mark.asyncio
    async def test_keys_are_independent(self, memory_limiter):
        for _ in range(5):
            await memory_limiter.hit("10.0.0.1", "user-1")

        assert (await memory_limiter.hit("10.0.0.2", "user-1")).remaining == 4
        assert (await memory_limiter.hit("10.0.0.1", "user-2")).remaining == 4

    @pytest.mark.asyncio
    async def test_reset(self, memory_limiter):
        for _ in range(5):
            await memory_limiter.hit("10.0.0.1", "user-1")

        await memory_limiter.reset("10.0.0.1", "user-1")

        assert await memory_limiter.get_window("10.0.0.1", "user-1") is None
        assert (await memory_limiter.hit("10.0.0.1", "user-1")).remaining == 4

    @pytest.mark.asyncio
    async def test_unknown_identity(self, memory_limiter):
        result = await memory_limiter.hit(None, None)
        assert result.remaining == 4
        window = await memory_limiter.get_window(None, None)
        assert window.attempt_count == 1

    @pytest.mark.asyncio
    async def test_expired_windows_are_pruned(self, clock):
        store = InMemoryAttemptStore()
        store.PRUNE_THRESHOLD = 3
        limiter = AttemptLimiter(store, RateLimitRule(5, 900), clock=clock)

        for ip in ("10.0.0.1", "10.0.0.2", "10.0.0.3"):
            await limiter.hit(ip, "user-1")
        clock.advance(901)
        await limiter.hit("10.0.0.4", "user-1")

        assert len(store._windows) == 1


class TestRedisStore:

    @pytest.fixture
    def mock_redis(self):
        return AsyncMock()

    @pytest.fixture
    def redis_limiter(self, mock_redis, clock):
        return AttemptLimiter(RedisAttemptStore(mock_redis), RateLimitRule(5, 900), clock=clock)

    @pytest.mark.asyncio
    async def test_allowed_attempt(self, redis_limiter, mock_redis, clock):
        mock_redis.eval.return_value = [1, 900000, 1]

        result = await redis_limiter.hit("10.0.0.1", "user-1")

        assert result.remaining == 4
        assert result.reset_time == int(clock.now + 900)
        args = mock_redis.eval.call_args.args
        assert args[1:] == (1, "rate_limit:two_factor:10.0.0.1:user-1", 5, 900000)

    @pytest.mark.asyncio
    async def test_exhausted_budget(self, redis_limiter, mock_redis):
        mock_redis.eval.return_value = [5, 300000, 0]

        with pytest.raises(RateLimitedError) as exc_info:
            await redis_limiter.hit("10.0.0.1", "user-1")

        assert exc_info.value.retry_after_seconds == 300

    @pytest.mark.asyncio
    async def test_get_window(self, redis_limiter, mock_redis, clock):
        mock_redis.get.return_value = "3"
        mock_redis.pttl.return_value = 120000

        window = await redis_limiter.get_window("10.0.0.1", "user-1")

        assert window.attempt_count == 3
        assert window.window_reset_at == clock.now + 120

    @pytest.mark.asyncio
    async def test_get_window_missing_key(self, redis_limiter, mock_redis):
        mock_redis.get.return_value = None
        mock_redis.pttl.return_value = -2

        assert await redis_limiter.get_window("10.0.0.1", "user-1") is None

    @pytest.mark.asyncio
    async def test_reset_deletes_key(self, redis_limiter, mock_redis):
        await redis_limiter.reset("10.0.0.1", "user-1")
        mock_redis.delete.assert_awaited_once_with("rate_limit:two_factor:10.0.0.1:user-1")

    @pytest.mark.asyncio
    async def test_redis_failure_fails_closed(self, redis_limiter, mock_redis):
        mock_redis.eval.side_effect = RedisConnectionError("connection refused")

        with pytest.raises(LimiterUnavailableError) as exc_info:
            await redis_limiter.hit("10.0.0.1", "user-1")

        assert exc_info.value.status_code == 503


class TestBuildAttemptLimiter:

    def test_memory_backend(self):
        limiter = build_attempt_limiter("memory")
        assert isinstance(limiter.store, InMemoryAttemptStore)
        assert limiter.rule.requests == 5
        assert limiter.rule.window == 900

    def test_redis_backend(self):
        limiter = build_attempt_limiter("redis")
        assert isinstance(limiter.store, RedisAttemptStore)

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            build_attempt_limiter("memcached")
