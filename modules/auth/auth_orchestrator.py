"""
Auth 모듈의 OAuth2 로그인 오케스트레이터

설정으로부터 provider 레지스트리, state 캐시, 컨텍스트 저장소,
connection 서비스, 토큰 갱신 작업을 조립하고 생명주기를 관리하는 메인 API입니다.
"""

from typing import Any, Dict, Optional

import redis.asyncio as aioredis

from infra.core.config import Config, get_config
from infra.core.database import DatabaseManager, get_database_manager
from infra.core.logger import get_logger
from infra.core.redis_client import close_redis_client, get_redis_client
from infra.core.token_crypto import TokenCipher, get_token_cipher

from modules.account.account_schema import LocalIdentity
from modules.account.identity_service import SqliteLocalIdentityService
from modules.connection.connection_repository import ConnectionRepository
from modules.connection.connection_service import ConnectionService
from modules.connection.token_repository import TokenRepository
from modules.provider.provider_registry import ProviderRegistry, build_provider_registry
from modules.refresh_job.refresh_scheduler import RefreshTokenScheduler
from modules.refresh_job.refresh_token_job import RefreshTokenJob

from .auth_initiator import AuthorizationInitiator
from .auth_schema import AuthorizationRedirect, LoginOutcome
from .auth_web_server import AuthWebServer, IdentityResolver
from .callback_processor import CallbackProcessor
from .context_store import create_context_store
from .state_cache import create_state_cache
from .state_coder import Base64JsonStateCoder

logger = get_logger(__name__)


class AuthOrchestrator:
    """OAuth2 로그인 구성요소 조립 및 생명주기 관리"""

    def __init__(
        self,
        config: Optional[Config] = None,
        db: Optional[DatabaseManager] = None,
        cipher: Optional[TokenCipher] = None,
        provider_registry: Optional[ProviderRegistry] = None,
        redis: Optional[aioredis.Redis] = None,
        identity_resolver: Optional[IdentityResolver] = None,
    ):
        """오케스트레이터 초기화"""
        self.config = config or get_config()
        self.db = db or get_database_manager()
        self.cipher = cipher or get_token_cipher()
        self.provider_registry = provider_registry or build_provider_registry(self.config)
        self.redis = redis if redis is not None else get_redis_client(self.config)

        self.state_cache = create_state_cache(self.config)
        self.context_store = create_context_store(self.config)
        self.state_coder = Base64JsonStateCoder()

        self.identity_service = SqliteLocalIdentityService(db=self.db)
        self.token_repository = TokenRepository(db=self.db, cipher=self.cipher)
        self.connection_service = ConnectionService(
            identity_service=self.identity_service,
            provider_registry=self.provider_registry,
            connection_repository=ConnectionRepository(db=self.db, cipher=self.cipher),
            token_repository=self.token_repository,
            config=self.config,
            db=self.db,
        )

        self.initiator = AuthorizationInitiator(
            self.provider_registry,
            self.state_cache,
            self.context_store,
            state_coder=self.state_coder,
            config=self.config,
        )
        self.callback_processor = CallbackProcessor(
            self.provider_registry,
            self.state_cache,
            self.context_store,
            self.identity_service,
            self.connection_service,
            state_coder=self.state_coder,
            config=self.config,
        )

        self.refresh_job = RefreshTokenJob(
            self.provider_registry,
            self.connection_service,
            token_repository=self.token_repository,
            config=self.config,
            redis=self.redis,
        )
        self.refresh_scheduler = RefreshTokenScheduler(self.refresh_job, config=self.config)
        self.web_server = AuthWebServer(
            self.initiator,
            self.callback_processor,
            config=self.config,
            identity_resolver=identity_resolver,
        )

        logger.info(
            f"OAuth2 로그인 구성 완료: providers={self.provider_registry.provider_ids()}, "
            f"분산 모드={self.redis is not None}"
        )

    async def auth_orchestrator_start_authorization(
        self, provider_id: str, state: Optional[str] = None, redirect: Optional[str] = None
    ) -> AuthorizationRedirect:
        """인가 요청을 시작합니다."""
        params = {"redirect": redirect} if redirect else {}
        return await self.initiator.initiate(provider_id, state=state, params=params)

    async def auth_orchestrator_handle_callback(
        self,
        provider_id: str,
        params: Dict[str, Any],
        current_identity: Optional[LocalIdentity] = None,
    ) -> LoginOutcome:
        """provider 콜백을 처리합니다."""
        return await self.callback_processor.process(
            provider_id, params, current_identity=current_identity
        )

    async def auth_orchestrator_start(self, host: str = "0.0.0.0", port: int = 5000) -> str:
        """웹서버와 토큰 갱신 스케줄러를 시작합니다."""
        server_url = await self.web_server.start(host, port)
        await self.refresh_scheduler.start()
        return server_url

    async def auth_orchestrator_shutdown(self) -> None:
        """실행 중인 작업을 마무리하고 리소스를 정리합니다."""
        logger.info("OAuth2 로그인 서비스 종료 중...")
        await self.refresh_scheduler.stop()
        await self.web_server.stop()
        await self.callback_processor.update_pool.join()
        await self.provider_registry.close()
        await close_redis_client()
        logger.info("OAuth2 로그인 서비스 종료 완료")


# 전역 오케스트레이터 인스턴스
_auth_orchestrator: Optional[AuthOrchestrator] = None


def get_auth_orchestrator() -> AuthOrchestrator:
    """
    Auth 오케스트레이터 인스턴스를 반환합니다.

    Returns:
        AuthOrchestrator 인스턴스
    """
    global _auth_orchestrator
    if _auth_orchestrator is None:
        _auth_orchestrator = AuthOrchestrator()
    return _auth_orchestrator
