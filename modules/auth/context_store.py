"""
인가 요청 컨텍스트 저장소

Initiator 가 저장하고 Callback Processor 가 state 로 한 번만 꺼내갑니다.
꺼낸 뒤에는 삭제되므로 같은 콜백을 다시 보내면 실패합니다.
"""

import threading
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Protocol

import redis.asyncio as aioredis

from infra.core.config import Config
from infra.core.logger import get_logger
from infra.core.redis_client import get_redis_client

from .auth_schema import AuthorizationContext, utcnow

logger = get_logger(__name__)


class AuthorizationContextStore(Protocol):
    """컨텍스트 저장소 인터페이스"""

    async def save(self, context: AuthorizationContext) -> None:
        ...

    async def pop(self, state: str) -> Optional[AuthorizationContext]:
        ...


class InMemoryAuthorizationContextStore:
    """
    메모리 컨텍스트 저장소

    콜백 없이 버려진 컨텍스트가 쌓이지 않도록 저장할 때 만료된 컨텍스트를 정리합니다.
    """

    def __init__(
        self,
        purge_interval_seconds: float = 60,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._contexts: Dict[str, AuthorizationContext] = {}
        self._lock = threading.Lock()
        self.purge_interval = timedelta(seconds=purge_interval_seconds)
        self.clock = clock
        self._next_purge_at = clock() + self.purge_interval

    async def save(self, context: AuthorizationContext) -> None:
        if self.clock() >= self._next_purge_at:
            self.cleanup_expired()
        with self._lock:
            self._contexts[context.state] = context

    async def pop(self, state: str) -> Optional[AuthorizationContext]:
        """컨텍스트를 꺼내고 삭제 (만료된 컨텍스트는 None)"""
        with self._lock:
            context = self._contexts.pop(state, None)
        if context is None or context.is_expired(self.clock()):
            return None
        return context

    def cleanup_expired(self) -> int:
        """만료된 컨텍스트 정리"""
        now = self.clock()
        with self._lock:
            expired = [s for s, ctx in self._contexts.items() if ctx.is_expired(now)]
            for state in expired:
                del self._contexts[state]
            self._next_purge_at = now + self.purge_interval
        if expired:
            logger.debug(f"만료된 인가 컨텍스트 {len(expired)}개 정리")
        return len(expired)


class RedisAuthorizationContextStore:
    """Redis 컨텍스트 저장소 (GETDEL 로 한 번만 소비)"""

    def __init__(self, redis: aioredis.Redis, key_prefix: str = "AUTH2_CONTEXT:"):
        self.redis = redis
        self.key_prefix = key_prefix

    async def save(self, context: AuthorizationContext) -> None:
        ttl_ms = int((context.expires_at - context.created_at).total_seconds() * 1000)
        await self.redis.set(
            f"{self.key_prefix}{context.state}",
            context.model_dump_json(),
            px=max(ttl_ms, 1),
        )

    async def pop(self, state: str) -> Optional[AuthorizationContext]:
        data = await self.redis.getdel(f"{self.key_prefix}{state}")
        if data is None:
            return None
        context = AuthorizationContext.model_validate_json(data)
        return None if context.is_expired() else context


def create_context_store(config: Config) -> AuthorizationContextStore:
    """state 캐시와 같은 백엔드로 컨텍스트 저장소 생성"""
    if config.state_cache_type == "redis":
        redis = get_redis_client(config)
        if redis is not None:
            return RedisAuthorizationContextStore(redis)
    return InMemoryAuthorizationContextStore()
