"""
Connection 서비스

외부 계정 가입/연결/해제와 토큰 갱신 결과 반영을 담당합니다.
토큰 → 연결 순서의 쓰기는 하나의 트랜잭션으로 묶입니다.
"""

from typing import Any, Optional

from infra.core.config import Config, get_config
from infra.core.database import DatabaseManager, get_database_manager
from infra.core.exceptions import (
    BindingError,
    DatabaseError,
    PersistenceError,
    UsernameExhaustedError,
)
from infra.core.logger import get_logger

from modules.account.account_schema import LocalIdentity
from modules.account.identity_service import LocalIdentityService, generate_usernames
from modules.provider.provider_registry import ProviderRegistry
from modules.provider.provider_schema import ExternalProfile, TokenRecord, expire_in_to_timestamp

from .connection_repository import ConnectionRepository
from .connection_schema import Connection
from .token_repository import TokenRepository

logger = get_logger(__name__)


class ConnectionService:
    """외부 계정 연결 서비스"""

    def __init__(
        self,
        identity_service: LocalIdentityService,
        provider_registry: ProviderRegistry,
        connection_repository: Optional[ConnectionRepository] = None,
        token_repository: Optional[TokenRepository] = None,
        config: Optional[Config] = None,
        db: Optional[DatabaseManager] = None,
    ):
        self.identity_service = identity_service
        self.provider_registry = provider_registry
        self.config = config or get_config()
        self.db = db or get_database_manager()
        self.connection_repository = connection_repository or ConnectionRepository(db=self.db)
        self.token_repository = token_repository or TokenRepository(db=self.db)

    # ------------------------------------------------------------------
    # 가입 / 연결
    # ------------------------------------------------------------------

    def sign_up(self, profile: ExternalProfile, decoded_state: Any = None) -> LocalIdentity:
        """
        외부 계정으로 로컬 사용자 자동 가입

        Args:
            profile: 외부 프로필
            decoded_state: 디코딩된 state

        Returns:
            LocalIdentity: 생성된 사용자

        Raises:
            UsernameExhaustedError: 후보 사용자명이 모두 사용 중 (쓰기 없음)
            PersistenceError: 연결 저장 실패
        """
        candidates = generate_usernames(profile)
        used = self.identity_service.username_exists(candidates)
        username = next(
            (name for name, taken in zip(candidates, used) if not taken), None
        )
        if username is None:
            logger.warning(f"자동 가입 실패: 사용 가능한 username 없음 {candidates}")
            raise UsernameExhaustedError(candidates=candidates)

        with self.db.transaction(immediate=True):
            identity = self.identity_service.register_from_external(
                profile, username, self.config.default_authorities, decoded_state
            )
            self.register_connection(identity.username, profile)

        logger.info(
            f"자동 가입 완료: username={username}, provider={profile.provider_id}"
        )
        return identity

    def binding(self, username: str, profile: ExternalProfile) -> Connection:
        """
        로그인한 사용자에게 외부 계정 연결

        Raises:
            BindingError: 다른 사용자에게 이미 연결된 외부 계정
        """
        existing = self.connection_repository.find_connections_by_provider_user(
            profile.provider_id, profile.provider_user_id
        )
        for connection in existing:
            if connection.user_id != username:
                raise BindingError(
                    "이미 다른 사용자에게 연결된 계정입니다",
                    provider_id=profile.provider_id,
                    user_id=username,
                )
            self.update_user_connection(profile, connection)
            return self.connection_repository.get_connection(
                connection.user_id, connection.provider_id, connection.provider_user_id
            )

        with self.db.transaction(immediate=True):
            connection = self.register_connection(username, profile)
        logger.info(f"계정 연결 완료: username={username}, provider={profile.provider_id}")
        return connection

    def unbinding(self, username: str, provider_id: str, provider_user_id: str) -> bool:
        """외부 계정 연결 해제"""
        removed = self.connection_repository.remove_connection(
            username, provider_id, provider_user_id
        )
        if removed:
            logger.info(f"계정 연결 해제: username={username}, provider={provider_id}")
        return removed > 0

    def register_connection(self, user_id: str, profile: ExternalProfile) -> Connection:
        """
        토큰과 연결 저장 (토큰 먼저)

        연결 저장이 실패하면 한 번 재시도하고, 다시 실패하면
        남겨진 토큰 id 를 담아 PersistenceError 를 발생시킵니다.
        호출자의 트랜잭션 안에서 실행되어야 롤백이 함께 적용됩니다.
        """
        token_record = self._save_token(profile)
        token_id = token_record.id if token_record else None

        connection = Connection(
            user_id=user_id,
            provider_id=profile.provider_id,
            provider_user_id=profile.provider_user_id,
            display_name=profile.nickname,
            profile_url=profile.blog,
            image_url=profile.avatar,
            access_token=profile.token.access_token,
            refresh_token=profile.token.refresh_token,
            expire_time=self._expire_time(profile),
            token_id=token_id,
        )

        try:
            return self.connection_repository.add_connection(connection)
        except DatabaseError as e:
            logger.warning(f"연결 저장 실패, 재시도: user_id={user_id}, error={e.message}")

        try:
            return self.connection_repository.add_connection(connection)
        except DatabaseError as e:
            logger.error(
                f"연결 저장 재시도 실패: user_id={user_id}, token_id={token_id}"
            )
            raise PersistenceError(
                orphaned_token_id=token_id, provider_id=profile.provider_id
            ) from e

    def update_user_connection(self, profile: ExternalProfile, connection: Connection) -> None:
        """
        재로그인 시 연결과 토큰을 새 값으로 갱신

        새 토큰이 저장되므로 갱신 대상 여부도 다시 켜집니다.
        """
        with self.db.transaction():
            token_id = connection.token_id
            if self.config.enable_auth_token_table:
                record = self._token_record(profile, token_id)
                if token_id is None or self.token_repository.update_token(record) == 0:
                    token_id = self.token_repository.save_token(record).id

            updated = connection.model_copy(
                update={
                    "display_name": profile.nickname,
                    "profile_url": profile.blog,
                    "image_url": profile.avatar,
                    "access_token": profile.token.access_token,
                    "refresh_token": profile.token.refresh_token,
                    "expire_time": self._expire_time(profile),
                    "token_id": token_id,
                }
            )
            self.connection_repository.update_connection(updated)

        logger.debug(
            f"연결 갱신 완료: user_id={connection.user_id}, provider={connection.provider_id}"
        )

    def get_connection(
        self, user_id: str, provider_id: str, provider_user_id: str
    ) -> Optional[Connection]:
        return self.connection_repository.get_connection(user_id, provider_id, provider_user_id)

    # ------------------------------------------------------------------
    # 토큰 갱신 결과 반영
    # ------------------------------------------------------------------

    def apply_refreshed_token(self, record: TokenRecord) -> None:
        """갱신된 토큰을 토큰 테이블과 연결들에 함께 반영"""
        with self.db.transaction():
            self.token_repository.update_token(record)
            self.connection_repository.update_connection_by_token_id(record)

    def disable_refresh(self, token_id: int) -> None:
        """갱신 대상에서 영구 제외"""
        self.token_repository.update_enable_refresh(token_id, False)

    # ------------------------------------------------------------------

    def _timeout_ms(self, provider_id: str) -> int:
        client = self.provider_registry.resolve(provider_id)
        if client is None:
            return self.config.http_timeout_ms
        return client.provider_config.timeout_ms

    def _expire_time(self, profile: ExternalProfile) -> int:
        return expire_in_to_timestamp(
            profile.token.expire_in, self._timeout_ms(profile.provider_id)
        )

    def _token_record(self, profile: ExternalProfile, token_id: Optional[int] = None) -> TokenRecord:
        token = profile.token
        return TokenRecord(
            id=token_id,
            provider_id=profile.provider_id,
            access_token=token.access_token,
            refresh_token=token.refresh_token,
            token_type=token.token_type,
            scope=token.scope,
            expire_time=self._expire_time(profile),
            enable_refresh=True,
        )

    def _save_token(self, profile: ExternalProfile) -> Optional[TokenRecord]:
        if not self.config.enable_auth_token_table:
            return None
        return self.token_repository.save_token(self._token_record(profile))
