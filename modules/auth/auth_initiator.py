"""
OAuth2 인가 시작

state 를 만들어 컨텍스트와 state 캐시에 저장한 뒤
provider 인가 페이지 URL 을 돌려줍니다.
"""

import secrets
from datetime import timedelta
from typing import Any, Dict, Optional

from infra.core.config import Config, get_config
from infra.core.logger import get_logger, mask

from modules.provider.provider_registry import ProviderRegistry

from .auth_schema import AuthorizationContext, AuthorizationRedirect, utcnow
from .context_store import AuthorizationContextStore
from .state_cache import StateCache, determine_state_key
from .state_coder import StateCoder

logger = get_logger(__name__)


def generate_state() -> str:
    """
    CSRF 방지용 state 를 생성합니다.

    Returns:
        url-safe 랜덤 문자열
    """
    return secrets.token_urlsafe(32)


class AuthorizationInitiator:
    """인가 요청 생성기"""

    def __init__(
        self,
        provider_registry: ProviderRegistry,
        state_cache: StateCache,
        context_store: AuthorizationContextStore,
        state_coder: Optional[StateCoder] = None,
        config: Optional[Config] = None,
    ):
        self.provider_registry = provider_registry
        self.state_cache = state_cache
        self.context_store = context_store
        self.state_coder = state_coder
        self.config = config or get_config()

    async def initiate(
        self,
        provider_id: str,
        state: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> AuthorizationRedirect:
        """
        인가 요청 시작

        Args:
            provider_id: provider 식별자
            state: 호출자가 지정한 state (없으면 생성)
            params: 호출자 파라미터 (예: redirect)

        Returns:
            AuthorizationRedirect: 사용자를 보낼 URL

        Raises:
            ConfigurationError: 등록되지 않은 provider
        """
        client = self.provider_registry.require(provider_id)
        params = dict(params or {})

        raw_state = state or generate_state()
        encoded_state = (
            self.state_coder.encode(raw_state, params) if self.state_coder else raw_state
        )

        timeout = self.config.state_timeout_seconds
        now = utcnow()
        await self.context_store.save(
            AuthorizationContext(
                provider_id=provider_id,
                state=encoded_state,
                raw_state=raw_state,
                params=params,
                created_at=now,
                expires_at=now + timedelta(seconds=timeout),
            )
        )

        cache_key = determine_state_key(
            self.state_cache.key_strategy, encoded_state, provider_id
        )
        await self.state_cache.cache(cache_key, encoded_state, timeout)

        url = client.authorize_url(encoded_state)
        logger.info(f"[{provider_id}] 인가 요청 생성: state={mask(encoded_state)}")
        return AuthorizationRedirect(provider_id=provider_id, state=encoded_state, url=url)
