"""
OAuth2 콜백 처리

provider 콜백 한 번을 아래 단계로 처리합니다.

    INITIATED → CODE_RECEIVED → STATE_VALIDATED → TOKEN_EXCHANGED
      → USER_FETCHED → IDENTITY_RESOLVED → {BOUND, AUTO_REGISTERED, TEMPORARY, FAILED}

실패 시 예외의 details["stage"] 에 마지막으로 도달한 단계가 기록됩니다.
"""

from typing import Any, Dict, Optional, Union

from infra.core.config import Config, get_config
from infra.core.exceptions import (
    Auth2Error,
    BindingError,
    CsrfStateError,
    DatabaseError,
    PersistenceError,
    ProviderProtocolError,
)
from infra.core.logger import get_logger, mask
from infra.core.task_pool import CallerRunsTaskPool

from modules.account.account_schema import LocalIdentity, TemporaryIdentity
from modules.account.identity_service import LocalIdentityService
from modules.connection.connection_schema import Connection
from modules.connection.connection_service import ConnectionService
from modules.provider.provider_registry import ProviderRegistry
from modules.provider.provider_schema import ExternalProfile

from .auth_schema import (
    AutoRegisteredLogin,
    BoundLogin,
    CallbackParams,
    CallbackStage,
    LoginOutcome,
    TemporaryLogin,
)
from .context_store import AuthorizationContextStore
from .state_cache import StateCache, determine_state_key
from .state_coder import StateCoder

logger = get_logger(__name__)


class CallbackProcessor:
    """provider 콜백 처리기"""

    def __init__(
        self,
        provider_registry: ProviderRegistry,
        state_cache: StateCache,
        context_store: AuthorizationContextStore,
        identity_service: LocalIdentityService,
        connection_service: ConnectionService,
        state_coder: Optional[StateCoder] = None,
        config: Optional[Config] = None,
        update_pool: Optional[CallerRunsTaskPool] = None,
    ):
        self.provider_registry = provider_registry
        self.state_cache = state_cache
        self.context_store = context_store
        self.identity_service = identity_service
        self.connection_service = connection_service
        self.state_coder = state_coder
        self.config = config or get_config()
        self.update_pool = update_pool or CallerRunsTaskPool(
            "connection-update", self.config.connection_update_pool_size
        )

    async def process(
        self,
        provider_id: str,
        params: Union[CallbackParams, Dict[str, Any]],
        current_identity: Optional[LocalIdentity] = None,
    ) -> LoginOutcome:
        """
        콜백 처리

        Args:
            provider_id: 콜백 경로의 provider 식별자
            params: 콜백 쿼리 파라미터 (code, state, error ...)
            current_identity: 이미 로그인한 사용자 (계정 연결 시)

        Returns:
            LoginOutcome: BoundLogin, AutoRegisteredLogin, TemporaryLogin 중 하나

        Raises:
            ConfigurationError: 등록되지 않은 provider
            CsrfStateError: state/컨텍스트 누락, 만료, 불일치
            ProviderProtocolError: provider 오류 응답
            UsernameExhaustedError: 자동 가입 username 소진
            BindingError: 다른 사용자에게 연결된 외부 계정
            PersistenceError: 저장 실패
        """
        stage = CallbackStage.INITIATED
        try:
            client = self.provider_registry.require(provider_id)
            callback = params if isinstance(params, CallbackParams) else CallbackParams(
                code=params.get("code"),
                state=params.get("state"),
                error=params.get("error"),
                error_description=params.get("error_description"),
            )
            self._check_authorization_response(provider_id, callback)
            stage = self._advance(provider_id, CallbackStage.CODE_RECEIVED)

            await self._validate_state(provider_id, callback.state)
            stage = self._advance(provider_id, CallbackStage.STATE_VALIDATED)

            token = await client.exchange_token(callback.code)
            stage = self._advance(provider_id, CallbackStage.TOKEN_EXCHANGED)

            profile = await client.fetch_user_info(token)
            stage = self._advance(provider_id, CallbackStage.USER_FETCHED)

            decoded_state = (
                self.state_coder.decode(callback.state) if self.state_coder else callback.state
            )
            outcome = await self._resolve_identity(profile, decoded_state, current_identity)
            logger.info(
                f"[{provider_id}] 로그인 처리 완료: kind={outcome.kind}, "
                f"user={outcome.identity.username}"
            )
            return outcome

        except DatabaseError as e:
            logger.error(f"[{provider_id}] 콜백 처리 중 저장 실패: stage={stage.value}, {e}")
            raise PersistenceError(
                f"연결 정보 저장에 실패했습니다: {e.message}",
                provider_id=provider_id,
                details={"stage": stage.value},
            ) from e
        except Auth2Error as e:
            e.details.setdefault("stage", stage.value)
            logger.warning(f"[{provider_id}] 콜백 처리 실패: stage={stage.value}, {e}")
            raise

    def _advance(self, provider_id: str, stage: CallbackStage) -> CallbackStage:
        logger.debug(f"[{provider_id}] 콜백 단계: {stage.value}")
        return stage

    def _check_authorization_response(self, provider_id: str, callback: CallbackParams) -> None:
        if callback.has_error():
            raise ProviderProtocolError(
                f"provider 가 인가를 거부했습니다: {callback.error_description or callback.error}",
                provider_id=provider_id,
                error_code="AUTHORIZATION_DENIED",
                details={"error": callback.error},
            )
        if not callback.code or not callback.state:
            raise ProviderProtocolError(
                "인가 응답에 code 또는 state 가 없습니다",
                provider_id=provider_id,
                error_code="INVALID_AUTHORIZATION_RESPONSE",
            )

    async def _validate_state(self, provider_id: str, state: str) -> None:
        """
        인가 컨텍스트와 state 캐시 검증

        성공하면 컨텍스트와 캐시 항목이 모두 제거됩니다.
        """
        context = await self.context_store.pop(state)
        cache_key = determine_state_key(self.state_cache.key_strategy, state, provider_id)

        if self.config.ignore_check_state:
            await self.state_cache.remove(cache_key)
            return

        if context is None:
            raise CsrfStateError(
                "인가 요청을 찾을 수 없거나 만료되었습니다",
                provider_id=provider_id,
                error_code="AUTHORIZATION_REQUEST_NOT_FOUND",
            )
        if context.provider_id != provider_id:
            raise CsrfStateError(
                "인가 요청의 provider 가 일치하지 않습니다",
                provider_id=provider_id,
                error_code="PROVIDER_MISMATCH",
            )

        cached = await self.state_cache.get(cache_key)
        if cached is None or cached != state:
            logger.warning(f"[{provider_id}] state 불일치: state={mask(state)}")
            raise CsrfStateError(
                "state 가 만료되었거나 일치하지 않습니다",
                provider_id=provider_id,
            )
        await self.state_cache.remove(cache_key)

    async def _resolve_identity(
        self,
        profile: ExternalProfile,
        decoded_state: Any,
        current_identity: Optional[LocalIdentity],
    ) -> LoginOutcome:
        provider_id = profile.provider_id

        identity = self.identity_service.find_by_external_id(
            provider_id, profile.provider_user_id
        )
        if identity is not None:
            if current_identity and current_identity.username != identity.username:
                raise BindingError(
                    "이미 다른 사용자에게 연결된 계정입니다",
                    provider_id=provider_id,
                    user_id=current_identity.username,
                )
            self._advance(provider_id, CallbackStage.IDENTITY_RESOLVED)
            connection = self.connection_service.get_connection(
                identity.username, provider_id, profile.provider_user_id
            )
            if connection is not None:
                await self.update_pool.submit(self._update_connection(profile, connection))
            self._advance(provider_id, CallbackStage.BOUND)
            return BoundLogin(identity=identity, profile=profile, decoded_state=decoded_state)

        if current_identity is not None:
            self._advance(provider_id, CallbackStage.IDENTITY_RESOLVED)
            self.connection_service.binding(current_identity.username, profile)
            self._advance(provider_id, CallbackStage.BOUND)
            return BoundLogin(
                identity=current_identity, profile=profile, decoded_state=decoded_state
            )

        if self.config.auto_sign_up:
            identity = self.connection_service.sign_up(profile, decoded_state)
            self._advance(provider_id, CallbackStage.IDENTITY_RESOLVED)
            self._advance(provider_id, CallbackStage.AUTO_REGISTERED)
            return AutoRegisteredLogin(
                identity=identity, profile=profile, decoded_state=decoded_state
            )

        self._advance(provider_id, CallbackStage.IDENTITY_RESOLVED)
        temporary = TemporaryIdentity(
            username=profile.username,
            authorities=self.config.temporary_user_authorities,
            password=self.config.temporary_user_password,
            profile=profile,
        )
        self._advance(provider_id, CallbackStage.TEMPORARY)
        return TemporaryLogin(identity=temporary, profile=profile, decoded_state=decoded_state)

    async def _update_connection(self, profile: ExternalProfile, connection: Connection) -> None:
        self.connection_service.update_user_connection(profile, connection)
