"""
Infra Core 모듈

OAuth2 로그인 서비스 전반에서 공유하는 인프라 컴포넌트를 제공합니다.
- 설정 (.env)
- SQLite 데이터베이스 관리
- 토큰 암호화
- Redis 연결
- 제한된 비동기 작업 풀
- 표준 예외와 로거 (요청 추적 id 포함)
"""

from infra.core.logger import get_logger

logger = get_logger(__name__)

# 안전한 import를 위한 예외 처리
try:
    # 핵심 인프라 컴포넌트 import
    from .config import Config, get_config
    from .database import DatabaseManager, get_database_manager
    from .exceptions import (
        Auth2Error,
        BindingError,
        ConfigurationError,
        CsrfStateError,
        DatabaseConnectionError,
        DatabaseError,
        PersistenceError,
        ProviderProtocolError,
        RefreshTransientError,
        RefreshUnsupportedError,
        TokenError,
        UsernameExhaustedError,
    )
    from .logger import get_request_id, mask, request_id_context
    from .redis_client import close_redis_client, get_redis_client
    from .task_pool import CallerRunsTaskPool
    from .token_crypto import TokenCipher, get_token_cipher

except ImportError as e:
    logger.info(f"Infra core 모듈 import 오류: {e}")
    logger.info("의존성 확인:")
    logger.info("1. pip install -e . 로 의존성이 설치되었는지 확인")
    logger.info("2. 프로젝트 루트에서 실행하고 있는지 확인")
    raise

__all__ = [
    # Configuration
    "Config",
    "get_config",
    # Database
    "DatabaseManager",
    "get_database_manager",
    # Logging
    "get_logger",
    "get_request_id",
    "mask",
    "request_id_context",
    # Exceptions
    "Auth2Error",
    "DatabaseError",
    "DatabaseConnectionError",
    "ConfigurationError",
    "CsrfStateError",
    "ProviderProtocolError",
    "UsernameExhaustedError",
    "BindingError",
    "PersistenceError",
    "TokenError",
    "RefreshUnsupportedError",
    "RefreshTransientError",
    # Redis
    "get_redis_client",
    "close_redis_client",
    # Task pool
    "CallerRunsTaskPool",
    # Token crypto
    "TokenCipher",
    "get_token_cipher",
]
