"""
Auth 모듈 - OAuth2 제3자 로그인 플로우

인가 요청을 시작하고 provider 콜백을 처리해 로컬 사용자와 연결합니다.

주요 기능:
- state 생성/캐시 (메모리, Redis)
- 인가 컨텍스트 한 번만 소비
- 콜백 처리 (기존 연결 로그인, 계정 연결, 자동 가입, 임시 사용자)
- aiohttp 웹 어댑터
"""

from .auth_initiator import AuthorizationInitiator, generate_state
from .auth_orchestrator import AuthOrchestrator, get_auth_orchestrator
from .auth_schema import (
    AuthorizationContext,
    AuthorizationRedirect,
    AutoRegisteredLogin,
    BoundLogin,
    CallbackParams,
    CallbackStage,
    LoginOutcome,
    TemporaryLogin,
)
from .auth_web_server import AuthWebServer
from .callback_processor import CallbackProcessor
from .context_store import (
    AuthorizationContextStore,
    InMemoryAuthorizationContextStore,
    RedisAuthorizationContextStore,
    create_context_store,
)
from .state_cache import (
    CacheKeyStrategy,
    InMemoryStateCache,
    RedisStateCache,
    StateCache,
    create_state_cache,
    determine_state_key,
)
from .state_coder import Base64JsonStateCoder, StateCoder

__all__ = [
    "AuthorizationInitiator",
    "generate_state",
    "AuthOrchestrator",
    "get_auth_orchestrator",
    "AuthorizationContext",
    "AuthorizationRedirect",
    "AutoRegisteredLogin",
    "BoundLogin",
    "CallbackParams",
    "CallbackStage",
    "LoginOutcome",
    "TemporaryLogin",
    "AuthWebServer",
    "CallbackProcessor",
    "AuthorizationContextStore",
    "InMemoryAuthorizationContextStore",
    "RedisAuthorizationContextStore",
    "create_context_store",
    "CacheKeyStrategy",
    "InMemoryStateCache",
    "RedisStateCache",
    "StateCache",
    "create_state_cache",
    "determine_state_key",
    "Base64JsonStateCoder",
    "StateCoder",
]
