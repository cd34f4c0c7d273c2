"""
인가 시작 → 콜백 처리 전체 흐름 테스트
"""

import time
import urllib.parse
from datetime import datetime, timedelta

import pytest

from infra.core.exceptions import (
    BindingError,
    ConfigurationError,
    CsrfStateError,
    ProviderProtocolError,
)
from modules.account.account_schema import LocalIdentity
from modules.auth.auth_initiator import AuthorizationInitiator
from modules.auth.auth_schema import (
    AutoRegisteredLogin,
    BoundLogin,
    CallbackParams,
    CallbackStage,
    TemporaryLogin,
    utcnow,
)
from modules.auth.callback_processor import CallbackProcessor
from modules.auth.context_store import InMemoryAuthorizationContextStore
from modules.auth.state_cache import CacheKeyStrategy, InMemoryStateCache


def _state_from(url: str) -> str:
    return dict(urllib.parse.parse_qsl(urllib.parse.urlparse(url).query))["state"]


async def _login(services, provider_id: str = "fake", code: str = "code-1", **kwargs):
    redirect = await services.initiator.initiate(provider_id)
    return await services.processor.process(
        provider_id, {"code": code, "state": redirect.state}, **kwargs
    )


class TestAuthorizationInitiator:
    """인가 시작 테스트"""

    @pytest.mark.asyncio
    async def test_redirect_url(self, services):
        """provider 인가 URL 과 state 반환"""
        redirect = await services.initiator.initiate("fake", params={"redirect": "/home"})

        assert redirect.url.startswith("https://provider.test/oauth/authorize?")
        assert _state_from(redirect.url) == redirect.state
        assert await services.state_cache.get(redirect.state) == redirect.state
        assert services.state_coder.decode(redirect.state)["redirect"] == "/home"

    @pytest.mark.asyncio
    async def test_caller_state(self, services):
        """호출자가 지정한 state 를 nonce 로 사용"""
        redirect = await services.initiator.initiate("fake", state="my-state")

        assert services.state_coder.decode(redirect.state)["nonce"] == "my-state"

    @pytest.mark.asyncio
    async def test_unknown_provider(self, services):
        """등록되지 않은 provider"""
        with pytest.raises(ConfigurationError):
            await services.initiator.initiate("nope")


class TestCallbackProcessor:
    """콜백 처리 테스트"""

    @pytest.mark.asyncio
    async def test_first_login_auto_registers(self, services, fake_client):
        """처음 보는 외부 계정은 자동 가입"""
        outcome = await _login(services)

        assert isinstance(outcome, AutoRegisteredLogin)
        assert outcome.identity.username == "octo"
        assert outcome.profile.provider_user_id == "1001"
        assert fake_client.exchanged_codes == ["code-1"]

    @pytest.mark.asyncio
    async def test_second_login_is_bound(self, services):
        """이미 연결된 외부 계정은 기존 사용자로 로그인"""
        await _login(services)
        outcome = await _login(services, code="code-2")
        await services.processor.update_pool.join()

        assert isinstance(outcome, BoundLogin)
        assert outcome.identity.username == "octo"
        assert len(services.connection_repository.find_connections_by_user("octo")) == 1

    @pytest.mark.asyncio
    async def test_bound_login_resolved_by_external_id(self, services, monkeypatch):
        """연결된 사용자는 외부 계정 id 로 조회"""
        await _login(services)
        lookups = []
        original = services.identity_service.find_by_external_id

        def find_by_external_id(provider_id, provider_user_id):
            lookups.append((provider_id, provider_user_id))
            return original(provider_id, provider_user_id)

        monkeypatch.setattr(services.identity_service, "find_by_external_id", find_by_external_id)
        outcome = await _login(services, code="code-2")
        await services.processor.update_pool.join()

        assert isinstance(outcome, BoundLogin)
        assert outcome.identity.username == "octo"
        assert lookups == [("fake", "1001")]

    @pytest.mark.asyncio
    async def test_bound_login_updates_connection(self, services, fake_client):
        """재로그인 시 새 토큰으로 연결 갱신"""
        await _login(services)
        fake_client.token_data["access_token"] = "access-2"

        await _login(services, code="code-2")
        await services.processor.update_pool.join()

        connection = services.connection_repository.get_connection("octo", "fake", "1001")
        assert connection.access_token == "access-2"

    @pytest.mark.asyncio
    async def test_decoded_state_returned(self, services):
        """인코딩했던 redirect 가 결과에 포함"""
        redirect = await services.initiator.initiate("fake", params={"redirect": "/after"})
        outcome = await services.processor.process(
            "fake", CallbackParams(code="c", state=redirect.state)
        )

        assert outcome.decoded_state["redirect"] == "/after"

    @pytest.mark.asyncio
    async def test_replayed_callback_rejected(self, services):
        """같은 콜백을 다시 보내면 거부"""
        redirect = await services.initiator.initiate("fake")
        params = {"code": "code-1", "state": redirect.state}
        await services.processor.process("fake", params)

        with pytest.raises(CsrfStateError) as exc_info:
            await services.processor.process("fake", params)
        assert exc_info.value.details["stage"] == CallbackStage.CODE_RECEIVED.value

    @pytest.mark.asyncio
    async def test_unknown_state_rejected(self, services, fake_client):
        """발급하지 않은 state"""
        with pytest.raises(CsrfStateError):
            await services.processor.process("fake", {"code": "c", "state": "forged"})
        assert fake_client.exchanged_codes == []

    @pytest.mark.asyncio
    async def test_provider_mismatch(self, services, fake_client, registry):
        """다른 provider 경로로 돌아온 콜백"""
        redirect = await services.initiator.initiate("fake")
        services.processor.provider_registry = type(registry)(
            {"fake": fake_client, "other": fake_client}
        )

        with pytest.raises(CsrfStateError) as exc_info:
            await services.processor.process("other", {"code": "c", "state": redirect.state})
        assert exc_info.value.error_code == "PROVIDER_MISMATCH"

    @pytest.mark.asyncio
    async def test_provider_error_param(self, services):
        """provider 가 error 로 돌려보낸 경우"""
        redirect = await services.initiator.initiate("fake")

        with pytest.raises(ProviderProtocolError) as exc_info:
            await services.processor.process(
                "fake", {"error": "access_denied", "state": redirect.state}
            )
        assert exc_info.value.error_code == "AUTHORIZATION_DENIED"
        assert exc_info.value.details["stage"] == CallbackStage.INITIATED.value

    @pytest.mark.asyncio
    async def test_missing_code(self, services):
        """code 가 없는 콜백"""
        with pytest.raises(ProviderProtocolError):
            await services.processor.process("fake", {"state": "s"})

    @pytest.mark.asyncio
    async def test_exchange_failure_stage(self, services, fake_client):
        """토큰 교환 실패 시 단계 기록"""
        fake_client.token_data = {"error": "bad_verification_code"}

        with pytest.raises(ProviderProtocolError) as exc_info:
            await _login(services)
        assert exc_info.value.details["stage"] == CallbackStage.STATE_VALIDATED.value

    @pytest.mark.asyncio
    async def test_temporary_identity(self, services, monkeypatch):
        """자동 가입이 꺼져 있으면 임시 사용자"""
        monkeypatch.setenv("OAUTH2_AUTO_SIGN_UP", "false")
        monkeypatch.setenv("OAUTH2_TEMPORARY_USER_PASSWORD", "temp-pass")

        outcome = await _login(services)

        assert isinstance(outcome, TemporaryLogin)
        assert outcome.identity.username == "octo"
        assert outcome.identity.authorities == ["ROLE_TEMPORARY_USER"]
        assert outcome.identity.password == "temp-pass"
        assert services.db.fetch_one("SELECT COUNT(*) AS n FROM users")["n"] == 0
        assert services.db.fetch_one("SELECT COUNT(*) AS n FROM user_connection")["n"] == 0

    @pytest.mark.asyncio
    async def test_binding_logged_in_user(self, services):
        """로그인한 사용자에게 외부 계정 연결"""
        alice = LocalIdentity(username="alice", authorities=["ROLE_USER"])

        outcome = await _login(services, current_identity=alice)

        assert isinstance(outcome, BoundLogin)
        assert outcome.identity.username == "alice"
        assert services.connection_repository.get_connection("alice", "fake", "1001") is not None

    @pytest.mark.asyncio
    async def test_binding_account_of_other_user(self, services):
        """다른 사용자에게 연결된 외부 계정은 연결 불가"""
        await _login(services)
        bob = LocalIdentity(username="bob")

        with pytest.raises(BindingError):
            await _login(services, code="code-2", current_identity=bob)

    @pytest.mark.asyncio
    async def test_ignore_check_state(self, services, monkeypatch):
        """state 검증을 끄면 발급하지 않은 state 도 통과"""
        monkeypatch.setenv("OAUTH2_IGNORE_CHECK_STATE", "true")
        state = services.state_coder.encode("anything")

        outcome = await services.processor.process("fake", {"code": "c", "state": state})

        assert isinstance(outcome, AutoRegisteredLogin)


class TestProviderIdKeyStrategy:
    """PROVIDER_ID 키 전략 테스트"""

    @pytest.mark.asyncio
    async def test_latest_request_wins(self, services):
        """같은 provider 의 새 요청이 이전 state 를 덮어씀"""
        state_cache = InMemoryStateCache(key_strategy=CacheKeyStrategy.PROVIDER_ID)
        initiator = AuthorizationInitiator(
            services.registry,
            state_cache,
            services.context_store,
            state_coder=services.state_coder,
            config=services.config,
        )
        processor = CallbackProcessor(
            services.registry,
            state_cache,
            services.context_store,
            services.identity_service,
            services.connection_service,
            state_coder=services.state_coder,
            config=services.config,
        )

        first = await initiator.initiate("fake")
        second = await initiator.initiate("fake")

        with pytest.raises(CsrfStateError):
            await processor.process("fake", {"code": "c", "state": first.state})

        outcome = await processor.process("fake", {"code": "c", "state": second.state})
        assert isinstance(outcome, AutoRegisteredLogin)


class _ShiftedClock:
    """테스트에서 시간을 앞으로 돌리기 위한 시계"""

    def __init__(self):
        self.offset = 0.0

    def monotonic(self) -> float:
        return time.monotonic() + self.offset

    def utcnow(self) -> datetime:
        return utcnow() + timedelta(seconds=self.offset)


class TestAbandonedAuthorization:
    """콜백이 오지 않은 인가 요청 정리 테스트"""

    @pytest.mark.asyncio
    async def test_expired_requests_are_purged(self, services, monkeypatch):
        """TTL 이 지난 뒤 새 인가 요청이 오면 버려진 컨텍스트와 state 가 정리됨"""
        clock = _ShiftedClock()
        monkeypatch.setattr("modules.auth.auth_initiator.utcnow", clock.utcnow)
        state_cache = InMemoryStateCache(
            services.config.state_timeout_seconds, clock=clock.monotonic
        )
        context_store = InMemoryAuthorizationContextStore(clock=clock.utcnow)
        initiator = AuthorizationInitiator(
            services.registry,
            state_cache,
            context_store,
            state_coder=services.state_coder,
            config=services.config,
        )

        for _ in range(200):
            await initiator.initiate("fake")
        assert len(context_store._contexts) == 200
        assert len(state_cache._store) == 200

        clock.offset = 10_000
        fresh = [await initiator.initiate("fake") for _ in range(5)]

        assert len(context_store._contexts) == 5
        assert len(state_cache._store) == 5
        assert await state_cache.get(fresh[-1].state) == fresh[-1].state
