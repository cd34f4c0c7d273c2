"""
공용 테스트 픽스처

임시 SQLite DB, 테스트용 provider 클라이언트, 메모리 기반 가짜 Redis 를 제공합니다.
"""

import os
import time
from types import SimpleNamespace
from typing import Any, Dict, Optional

from cryptography.fernet import Fernet

# 모듈 import 전에 환경 설정 (로그 파일 생성 방지, 필수 키)
os.environ["ENABLE_FILE_LOGGING"] = "false"
os.environ.setdefault("ENCRYPTION_KEY", Fernet.generate_key().decode())

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from infra.core.config import Config
from infra.core.database import DatabaseManager
from infra.core.token_crypto import TokenCipher
from modules.account.identity_service import SqliteLocalIdentityService
from modules.auth.auth_initiator import AuthorizationInitiator
from modules.auth.callback_processor import CallbackProcessor
from modules.auth.context_store import InMemoryAuthorizationContextStore
from modules.auth.state_cache import CacheKeyStrategy, InMemoryStateCache
from modules.auth.state_coder import Base64JsonStateCoder
from modules.connection.connection_repository import ConnectionRepository
from modules.connection.connection_service import ConnectionService
from modules.connection.token_repository import TokenRepository
from modules.provider.provider_client import OAuth2ProviderClient
from modules.provider.provider_registry import ProviderRegistry
from modules.provider.provider_schema import (
    ExternalProfile,
    OAuthToken,
    ProviderConfig,
    ProviderKind,
    TokenRecord,
    now_millis,
)


class FakeProviderClient(OAuth2ProviderClient):
    """네트워크 없이 동작하는 provider 클라이언트"""

    AUTHORIZE_URL = "https://provider.test/oauth/authorize"
    TOKEN_URL = "https://provider.test/oauth/token"
    USER_INFO_URL = "https://provider.test/api/user"

    def __init__(self, provider_config: ProviderConfig):
        super().__init__(provider_config)
        self.user: Dict[str, Any] = {"id": 1001, "login": "octo", "name": "Octo Cat"}
        self.token_data: Dict[str, Any] = {
            "access_token": "access-1",
            "refresh_token": "refresh-1",
            "expires_in": 3600,
            "token_type": "bearer",
        }
        self.exchanged_codes = []
        self.refreshed_ids = []
        # token_id → 발생시킬 예외
        self.refresh_errors: Dict[int, Exception] = {}

    async def exchange_token(self, code: str) -> OAuthToken:
        self.exchanged_codes.append(code)
        return self._parse_token_response(dict(self.token_data))

    async def fetch_user_info(self, token: OAuthToken) -> ExternalProfile:
        return self._to_profile(dict(self.user), token)

    async def refresh_token(self, record: TokenRecord) -> TokenRecord:
        self.refreshed_ids.append(record.id)
        error = self.refresh_errors.get(record.id)
        if error is not None:
            raise error
        return record.model_copy(
            update={
                "access_token": f"refreshed-{record.id}",
                "expire_time": now_millis() + 7 * 24 * 3600 * 1000,
                "enable_refresh": True,
            }
        )


class FakeRedis:
    """테스트용 최소 비동기 Redis (문자열/해시, 만료 지원)"""

    def __init__(self):
        self.values: Dict[str, Any] = {}
        self.expiry: Dict[str, float] = {}
        self.fail = False

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError("connection refused")

    def _alive(self, key: str) -> bool:
        expires_at = self.expiry.get(key)
        if expires_at is not None and time.monotonic() >= expires_at:
            self.values.pop(key, None)
            self.expiry.pop(key, None)
        return key in self.values

    async def set(self, key: str, value: str, px: Optional[int] = None) -> bool:
        self._check()
        self.values[key] = value
        self.expiry.pop(key, None)
        if px is not None:
            self.expiry[key] = time.monotonic() + px / 1000
        return True

    async def get(self, key: str) -> Optional[str]:
        self._check()
        return self.values.get(key) if self._alive(key) else None

    async def getdel(self, key: str) -> Optional[str]:
        self._check()
        value = await self.get(key)
        await self.delete(key)
        return value

    async def delete(self, *keys: str) -> int:
        self._check()
        removed = 0
        for key in keys:
            if self._alive(key):
                removed += 1
            self.values.pop(key, None)
            self.expiry.pop(key, None)
        return removed

    async def exists(self, key: str) -> int:
        self._check()
        return int(self._alive(key))

    async def hsetnx(self, key: str, field: str, value: str) -> int:
        self._check()
        if not self._alive(key):
            self.values[key] = {}
        if field in self.values[key]:
            return 0
        self.values[key][field] = value
        return 1

    async def expire(self, key: str, seconds: int) -> bool:
        self._check()
        if not self._alive(key):
            return False
        self.expiry[key] = time.monotonic() + seconds
        return True

    async def ttl(self, key: str) -> int:
        self._check()
        if not self._alive(key):
            return -2
        if key not in self.expiry:
            return -1
        return int(self.expiry[key] - time.monotonic())

    async def aclose(self) -> None:
        return None


@pytest.fixture
def config(tmp_path, monkeypatch) -> Config:
    """테스트용 설정 (.env 파일 없이 환경 변수만 사용)"""
    monkeypatch.setenv("DATABASE_PATH", str(tmp_path / "auth2.db"))
    monkeypatch.setenv("OAUTH2_DOMAIN", "http://auth.test")
    monkeypatch.delenv("REDIS_URL", raising=False)
    return Config(env_file=tmp_path / "missing.env")


@pytest.fixture
def db(tmp_path):
    """임시 파일 DB"""
    manager = DatabaseManager(str(tmp_path / "test.db"))
    yield manager
    manager.close()


@pytest.fixture
def cipher() -> TokenCipher:
    return TokenCipher(Fernet.generate_key().decode())


@pytest.fixture
def provider_config() -> ProviderConfig:
    return ProviderConfig(
        provider_id="fake",
        kind=ProviderKind.CUSTOMIZE,
        client_id="client-id",
        client_secret="client-secret",
        redirect_uri="http://auth.test/callback/fake",
        authorize_url=FakeProviderClient.AUTHORIZE_URL,
        token_url=FakeProviderClient.TOKEN_URL,
        user_info_url=FakeProviderClient.USER_INFO_URL,
    )


@pytest.fixture
def fake_client(provider_config) -> FakeProviderClient:
    return FakeProviderClient(provider_config)


@pytest.fixture
def registry(fake_client) -> ProviderRegistry:
    return ProviderRegistry({"fake": fake_client})


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def services(config, db, cipher, registry):
    """로그인 플로우 구성요소 일체"""
    identity_service = SqliteLocalIdentityService(db=db)
    token_repository = TokenRepository(db=db, cipher=cipher)
    connection_repository = ConnectionRepository(db=db, cipher=cipher)
    connection_service = ConnectionService(
        identity_service=identity_service,
        provider_registry=registry,
        connection_repository=connection_repository,
        token_repository=token_repository,
        config=config,
        db=db,
    )
    state_cache = InMemoryStateCache(config.state_timeout_seconds, CacheKeyStrategy.UUID)
    context_store = InMemoryAuthorizationContextStore()
    state_coder = Base64JsonStateCoder()

    initiator = AuthorizationInitiator(
        registry, state_cache, context_store, state_coder=state_coder, config=config
    )
    processor = CallbackProcessor(
        registry,
        state_cache,
        context_store,
        identity_service,
        connection_service,
        state_coder=state_coder,
        config=config,
    )
    return SimpleNamespace(
        config=config,
        db=db,
        registry=registry,
        identity_service=identity_service,
        token_repository=token_repository,
        connection_repository=connection_repository,
        connection_service=connection_service,
        state_cache=state_cache,
        context_store=context_store,
        state_coder=state_coder,
        initiator=initiator,
        processor=processor,
    )


def make_profile(
    provider_id: str = "fake",
    provider_user_id: str = "1001",
    username: str = "octo",
    access_token: str = "access-1",
    refresh_token: Optional[str] = "refresh-1",
    expire_in: Optional[int] = 3600,
) -> ExternalProfile:
    """테스트용 외부 프로필"""
    return ExternalProfile(
        provider_id=provider_id,
        provider_user_id=provider_user_id,
        username=username,
        nickname="Octo Cat",
        token=OAuthToken(
            access_token=access_token, refresh_token=refresh_token, expire_in=expire_in
        ),
    )
