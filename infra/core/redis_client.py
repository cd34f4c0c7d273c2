"""
공유 캐시(Redis) 연결 관리

REDIS_URL 이 설정된 경우에만 클라이언트를 만들며,
분산 갱신 락과 Redis state 캐시가 같은 연결을 공유합니다.
"""

from typing import Optional

import redis.asyncio as aioredis

from .config import Config, get_config
from .logger import get_logger

logger = get_logger(__name__)

_redis_client: Optional[aioredis.Redis] = None


def get_redis_client(config: Optional[Config] = None) -> Optional[aioredis.Redis]:
    """
    Redis 클라이언트를 반환하는 레이지 싱글톤 함수

    Args:
        config: 설정 (None 이면 전역 설정)

    Returns:
        Optional[aioredis.Redis]: REDIS_URL 미설정 시 None (단일 노드 모드)
    """
    global _redis_client

    if _redis_client is None:
        config = config or get_config()
        if not config.redis_url:
            logger.debug("REDIS_URL 미설정: 단일 노드 모드")
            return None
        _redis_client = aioredis.from_url(config.redis_url, decode_responses=True)
        logger.info("Redis 클라이언트 생성 완료")

    return _redis_client


async def close_redis_client() -> None:
    """Redis 연결 종료"""
    global _redis_client

    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("Redis 연결 종료됨")
