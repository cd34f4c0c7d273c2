"""
state 캐시, 인가 컨텍스트 저장소, state 인코더 테스트
"""

from datetime import timedelta

import pytest

from infra.core.exceptions import ConfigurationError, CsrfStateError
from modules.auth.auth_schema import AuthorizationContext, utcnow
from modules.auth.context_store import (
    InMemoryAuthorizationContextStore,
    RedisAuthorizationContextStore,
)
from modules.auth.state_cache import (
    CacheKeyStrategy,
    InMemoryStateCache,
    RedisStateCache,
    create_state_cache,
    determine_state_key,
)
from modules.auth.state_coder import Base64JsonStateCoder


def _context(state: str, seconds: int = 180) -> AuthorizationContext:
    now = utcnow()
    return AuthorizationContext(
        provider_id="fake",
        state=state,
        raw_state=state,
        created_at=now,
        expires_at=now + timedelta(seconds=seconds),
    )


class TestDetermineStateKey:
    """캐시 키 전략 테스트"""

    def test_uuid_strategy_uses_state(self):
        """UUID 전략은 state 가 키"""
        assert determine_state_key(CacheKeyStrategy.UUID, "abc", "github") == "abc"

    def test_provider_id_strategy_uses_provider(self):
        """PROVIDER_ID 전략은 provider id 가 키"""
        assert determine_state_key(CacheKeyStrategy.PROVIDER_ID, "abc", "github") == "github"


class TestInMemoryStateCache:
    """메모리 state 캐시 테스트"""

    @pytest.mark.asyncio
    async def test_cache_and_get(self):
        """저장한 값 조회"""
        cache = InMemoryStateCache()
        await cache.cache("k", "v")
        assert await cache.get("k") == "v"
        assert await cache.contains_key("k")

    @pytest.mark.asyncio
    async def test_remove(self):
        """삭제 후 조회되지 않음"""
        cache = InMemoryStateCache()
        await cache.cache("k", "v")
        await cache.remove("k")
        assert await cache.get("k") is None
        assert not await cache.contains_key("k")

    @pytest.mark.asyncio
    async def test_expired_entry_is_absent(self):
        """TTL 이 지난 항목은 없는 것으로 취급"""
        cache = InMemoryStateCache()
        await cache.cache("k", "v", ttl_seconds=0)
        assert await cache.get("k") is None

    @pytest.mark.asyncio
    async def test_purge_expired(self):
        """만료 항목 일괄 정리"""
        cache = InMemoryStateCache()
        await cache.cache("old", "v", ttl_seconds=0)
        await cache.cache("new", "v", ttl_seconds=60)
        assert cache.purge_expired() == 1
        assert await cache.get("new") == "v"

    @pytest.mark.asyncio
    async def test_cache_purges_expired_entries(self):
        """정리 주기가 지나면 저장할 때 만료 항목을 함께 정리"""
        now = [1000.0]
        cache = InMemoryStateCache(purge_interval_seconds=60, clock=lambda: now[0])
        await cache.cache("old", "v", ttl_seconds=30)

        now[0] += 61
        await cache.cache("new", "v", ttl_seconds=30)

        assert list(cache._store) == ["new"]

    @pytest.mark.asyncio
    async def test_overwrite_same_key(self):
        """같은 키에 다시 저장하면 덮어씀"""
        cache = InMemoryStateCache(key_strategy=CacheKeyStrategy.PROVIDER_ID)
        await cache.cache("github", "first")
        await cache.cache("github", "second")
        assert await cache.get("github") == "second"


class TestRedisStateCache:
    """Redis state 캐시 테스트"""

    @pytest.mark.asyncio
    async def test_keys_are_prefixed(self, fake_redis):
        """prefix 가 붙은 키로 저장"""
        cache = RedisStateCache(fake_redis, key_prefix="TEST:")
        await cache.cache("abc", "state-value", ttl_seconds=30)

        assert "TEST:abc" in fake_redis.values
        assert await cache.get("abc") == "state-value"
        assert await cache.contains_key("abc")

    @pytest.mark.asyncio
    async def test_remove(self, fake_redis):
        """삭제"""
        cache = RedisStateCache(fake_redis)
        await cache.cache("abc", "v")
        await cache.remove("abc")
        assert await cache.get("abc") is None


class TestCreateStateCache:
    """설정 기반 state 캐시 생성 테스트"""

    def test_memory_cache(self, config, monkeypatch):
        """기본값은 메모리 캐시"""
        monkeypatch.setenv("OAUTH2_STATE_CACHE_KEY_STRATEGY", "provider_id")
        cache = create_state_cache(config)
        assert isinstance(cache, InMemoryStateCache)
        assert cache.key_strategy == CacheKeyStrategy.PROVIDER_ID

    def test_unknown_type(self, config, monkeypatch):
        """알 수 없는 캐시 종류"""
        monkeypatch.setenv("OAUTH2_STATE_CACHE_TYPE", "memcached")
        with pytest.raises(ConfigurationError):
            create_state_cache(config)

    def test_unknown_strategy(self, config, monkeypatch):
        """알 수 없는 키 전략"""
        monkeypatch.setenv("OAUTH2_STATE_CACHE_KEY_STRATEGY", "random")
        with pytest.raises(ConfigurationError):
            create_state_cache(config)

    def test_redis_without_url(self, config, monkeypatch):
        """REDIS_URL 없이 redis 캐시 요청"""
        monkeypatch.setenv("OAUTH2_STATE_CACHE_TYPE", "redis")
        with pytest.raises(ConfigurationError):
            create_state_cache(config)


class TestAuthorizationContextStore:
    """인가 컨텍스트 저장소 테스트"""

    @pytest.mark.asyncio
    async def test_pop_once(self):
        """컨텍스트는 한 번만 꺼낼 수 있음"""
        store = InMemoryAuthorizationContextStore()
        await store.save(_context("s1"))

        assert (await store.pop("s1")).provider_id == "fake"
        assert await store.pop("s1") is None

    @pytest.mark.asyncio
    async def test_expired_context(self):
        """만료된 컨텍스트는 None"""
        store = InMemoryAuthorizationContextStore()
        await store.save(_context("s1", seconds=-1))
        assert await store.pop("s1") is None

    @pytest.mark.asyncio
    async def test_cleanup_expired(self):
        """만료 컨텍스트 정리"""
        store = InMemoryAuthorizationContextStore()
        await store.save(_context("old", seconds=-1))
        await store.save(_context("new"))
        assert store.cleanup_expired() == 1

    @pytest.mark.asyncio
    async def test_save_purges_expired_contexts(self):
        """정리 주기가 지나면 저장할 때 만료 컨텍스트를 함께 정리"""
        now = [utcnow()]
        store = InMemoryAuthorizationContextStore(purge_interval_seconds=60, clock=lambda: now[0])
        await store.save(_context("old", seconds=30))

        now[0] += timedelta(seconds=61)
        await store.save(_context("new", seconds=600))

        assert list(store._contexts) == ["new"]

    @pytest.mark.asyncio
    async def test_redis_pop_once(self, fake_redis):
        """Redis 저장소도 한 번만 꺼낼 수 있음"""
        store = RedisAuthorizationContextStore(fake_redis)
        await store.save(_context("s1"))

        context = await store.pop("s1")
        assert context is not None
        assert context.state == "s1"
        assert await store.pop("s1") is None


class TestBase64JsonStateCoder:
    """state 인코더 테스트"""

    def test_encode_decode(self):
        """nonce 와 redirect 를 함께 실어 보냄"""
        coder = Base64JsonStateCoder()
        encoded = coder.encode("nonce-1", {"redirect": "/home"})

        assert "=" not in encoded
        assert coder.decode(encoded) == {"nonce": "nonce-1", "redirect": "/home"}

    def test_decode_garbage(self):
        """해석할 수 없는 state"""
        coder = Base64JsonStateCoder()
        with pytest.raises(CsrfStateError) as exc_info:
            coder.decode("not-a-valid-state!!")
        assert exc_info.value.error_code == "STATE_DECODE_ERROR"
