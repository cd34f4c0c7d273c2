"""
OAuth2 state 캐시

인가 요청 때 저장한 state 를 콜백에서 검증하기 위한 TTL 캐시입니다.
키 전략에 따라 state 자체(UUID) 또는 provider id 를 키로 사용합니다.
"""

import threading
import time
from enum import Enum
from typing import Callable, Dict, Optional, Protocol, Tuple

import redis.asyncio as aioredis

from infra.core.config import Config
from infra.core.exceptions import ConfigurationError
from infra.core.logger import get_logger
from infra.core.redis_client import get_redis_client

logger = get_logger(__name__)


class CacheKeyStrategy(str, Enum):
    """state 캐시 키 전략"""
    UUID = "uuid"                # 요청마다 새 키 (state 가 키)
    PROVIDER_ID = "provider_id"  # provider id 가 키 (같은 클라이언트의 동시 요청은 덮어씀)


def determine_state_key(strategy: CacheKeyStrategy, state: str, provider_id: str) -> str:
    """전략에 따른 캐시 키 결정"""
    if strategy == CacheKeyStrategy.PROVIDER_ID:
        return provider_id
    return state


class StateCache(Protocol):
    """state 캐시 인터페이스"""

    key_strategy: CacheKeyStrategy

    async def cache(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        ...

    async def get(self, key: str) -> Optional[str]:
        ...

    async def contains_key(self, key: str) -> bool:
        ...

    async def remove(self, key: str) -> None:
        ...


class InMemoryStateCache:
    """
    프로세스 메모리 state 캐시 (단일 노드용)

    콜백이 오지 않은 항목도 남지 않도록 저장할 때 만료 항목을 정리합니다.
    정리는 purge_interval_seconds 마다 최대 한 번 수행됩니다.
    """

    def __init__(
        self,
        default_ttl_seconds: int = 180,
        key_strategy: CacheKeyStrategy = CacheKeyStrategy.UUID,
        purge_interval_seconds: float = 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.default_ttl_seconds = default_ttl_seconds
        self.key_strategy = key_strategy
        self.purge_interval_seconds = purge_interval_seconds
        self.clock = clock
        self._store: Dict[str, Tuple[str, float]] = {}
        self._lock = threading.Lock()
        self._next_purge_at = clock() + purge_interval_seconds

    async def cache(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        now = self.clock()
        if now >= self._next_purge_at:
            self.purge_expired()
        with self._lock:
            self._store[key] = (value, now + ttl)

    async def get(self, key: str) -> Optional[str]:
        """값 조회 (만료된 항목은 조회 시 제거)"""
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self.clock() >= expires_at:
                del self._store[key]
                return None
            return value

    async def contains_key(self, key: str) -> bool:
        return await self.get(key) is not None

    async def remove(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)

    def purge_expired(self) -> int:
        """만료된 항목 일괄 제거"""
        now = self.clock()
        with self._lock:
            expired = [k for k, (_, exp) in self._store.items() if now >= exp]
            for key in expired:
                del self._store[key]
            self._next_purge_at = now + self.purge_interval_seconds
        if expired:
            logger.debug(f"만료된 state {len(expired)}개 정리")
        return len(expired)


class RedisStateCache:
    """Redis state 캐시 (여러 노드가 공유)"""

    def __init__(
        self,
        redis: aioredis.Redis,
        key_prefix: str = "AUTH2_STATE:",
        default_ttl_seconds: int = 180,
        key_strategy: CacheKeyStrategy = CacheKeyStrategy.UUID,
    ):
        self.redis = redis
        self.key_prefix = key_prefix
        self.default_ttl_seconds = default_ttl_seconds
        self.key_strategy = key_strategy

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    async def cache(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        await self.redis.set(self._key(key), value, px=ttl * 1000)

    async def get(self, key: str) -> Optional[str]:
        return await self.redis.get(self._key(key))

    async def contains_key(self, key: str) -> bool:
        return bool(await self.redis.exists(self._key(key)))

    async def remove(self, key: str) -> None:
        await self.redis.delete(self._key(key))


def create_state_cache(config: Config) -> StateCache:
    """
    설정에 맞는 state 캐시 생성

    Raises:
        ConfigurationError: 알 수 없는 캐시 종류/키 전략, Redis 미설정
    """
    try:
        strategy = CacheKeyStrategy(config.state_cache_key_strategy)
    except ValueError as e:
        raise ConfigurationError(
            f"알 수 없는 state 캐시 키 전략입니다: {config.state_cache_key_strategy}",
            config_key="OAUTH2_STATE_CACHE_KEY_STRATEGY",
        ) from e

    cache_type = config.state_cache_type
    if cache_type == "memory":
        logger.info(f"state 캐시: memory, 키 전략={strategy.value}")
        return InMemoryStateCache(config.state_timeout_seconds, strategy)

    if cache_type == "redis":
        redis = get_redis_client(config)
        if redis is None:
            raise ConfigurationError(
                "redis state 캐시에는 REDIS_URL 이 필요합니다", config_key="REDIS_URL"
            )
        logger.info(f"state 캐시: redis, 키 전략={strategy.value}")
        return RedisStateCache(
            redis,
            key_prefix=config.state_cache_key_prefix,
            default_ttl_seconds=config.state_timeout_seconds,
            key_strategy=strategy,
        )

    raise ConfigurationError(
        f"알 수 없는 state 캐시 종류입니다: {cache_type}",
        config_key="OAUTH2_STATE_CACHE_TYPE",
    )

