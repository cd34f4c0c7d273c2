"""
토큰 갱신 작업 테스트

배치 분할, 단일 노드/분산 모드, 갱신 불가 토큰 제외를 검증합니다.
"""

import pytest

from infra.core.exceptions import RefreshTransientError, RefreshUnsupportedError
from infra.core.logger import get_request_id
from modules.provider.provider_schema import TokenRecord
from modules.refresh_job import (
    LOCK_KEY,
    LOCK_TTL_SECONDS,
    RefreshTokenJob,
    RefreshTokenScheduler,
    compute_batches,
)
from modules.refresh_job.refresh_scheduler import JOB_ID

from conftest import make_profile

NOW = 1_700_000_000_000
HOUR = 60 * 60 * 1000


def _save(services, expire_time: int, provider_id: str = "fake", enable_refresh: bool = True) -> TokenRecord:
    return services.token_repository.save_token(
        TokenRecord(
            provider_id=provider_id,
            access_token="old-access",
            refresh_token="refresh",
            expire_time=expire_time,
            enable_refresh=enable_refresh,
        )
    )


def _job(services, redis=None) -> RefreshTokenJob:
    return RefreshTokenJob(
        services.registry,
        services.connection_service,
        token_repository=services.token_repository,
        config=services.config,
        redis=redis,
        clock=lambda: NOW,
    )


class TestComputeBatches:
    """배치 분할 테스트"""

    def test_partition(self):
        """max=2500, batch=1000 → 3개 배치"""
        batches = compute_batches(2500, 1000)

        assert [(b.start_id, b.end_id) for b in batches] == [(1, 1000), (1001, 2000), (2001, 3000)]
        assert [b.index for b in batches] == [0, 1, 2]

    def test_exact_multiple(self):
        """나누어떨어지는 경우"""
        assert len(compute_batches(2000, 1000)) == 2

    def test_empty_table(self):
        """토큰이 없으면 배치 없음"""
        assert compute_batches(0, 1000) == []

    def test_invalid_batch_count(self):
        with pytest.raises(ValueError):
            compute_batches(10, 0)


class TestSingleNodeRefresh:
    """단일 노드 모드 테스트"""

    @pytest.mark.asyncio
    async def test_refreshes_expiring_tokens_only(self, services, fake_client):
        """만료 임박 토큰만 갱신"""
        soon = _save(services, NOW + HOUR)
        later = _save(services, NOW + 48 * HOUR)
        never = _save(services, -1)
        disabled = _save(services, NOW + HOUR, enable_refresh=False)

        report = await _job(services).run()

        assert fake_client.refreshed_ids == [soon.id]
        assert report.tokens_refreshed == 1
        assert report.batches_total == 1
        assert report.batches_processed == 1
        assert services.token_repository.get_token(soon.id).access_token == f"refreshed-{soon.id}"
        for record in (later, never, disabled):
            assert services.token_repository.get_token(record.id).access_token == "old-access"

    @pytest.mark.asyncio
    async def test_run_has_trace_id(self, services, fake_client, monkeypatch):
        """실행마다 새 추적 id 가 붙고 갱신 작업에도 전달됨"""
        _save(services, NOW + HOUR)
        seen = []
        original_refresh = fake_client.refresh_token

        async def refresh_token(record):
            seen.append(get_request_id())
            return await original_refresh(record)

        monkeypatch.setattr(fake_client, "refresh_token", refresh_token)

        await _job(services).run()
        _save(services, NOW + HOUR)
        await _job(services).run()

        assert len(seen) == 2
        assert "-" not in seen
        assert seen[0] != seen[1]
        assert get_request_id() == "-"

    @pytest.mark.asyncio
    async def test_refresh_propagates_to_connections(self, services, monkeypatch):
        """갱신 결과가 연결에도 반영"""
        services.connection_service.sign_up(make_profile())
        connection = services.connection_repository.get_connection("octo", "fake", "1001")
        monkeypatch.setenv("OAUTH2_REMAINING_EXPIRE_IN_HOURS", str(24 * 365 * 100))

        report = await RefreshTokenJob(
            services.registry,
            services.connection_service,
            token_repository=services.token_repository,
            config=services.config,
        ).run()

        assert report.tokens_refreshed == 1
        updated = services.connection_repository.get_connection("octo", "fake", "1001")
        assert updated.access_token == f"refreshed-{connection.token_id}"

    @pytest.mark.asyncio
    async def test_multiple_batches(self, services, fake_client, monkeypatch):
        """배치 크기보다 토큰이 많으면 여러 배치"""
        monkeypatch.setenv("OAUTH2_BATCH_COUNT", "2")
        records = [_save(services, NOW + HOUR) for _ in range(5)]

        report = await _job(services).run()

        assert report.batches_total == 3
        assert sorted(fake_client.refreshed_ids) == [r.id for r in records]

    @pytest.mark.asyncio
    async def test_unsupported_disables_refresh(self, services, fake_client):
        """갱신 불가 토큰은 영구 제외되고 다시 시도하지 않음"""
        record = _save(services, NOW + HOUR)
        fake_client.refresh_errors[record.id] = RefreshUnsupportedError(token_id=record.id)

        first = await _job(services).run()
        second = await _job(services).run()

        assert first.tokens_unsupported == 1
        assert services.token_repository.get_token(record.id).enable_refresh is False
        assert second.tokens_unsupported == 0
        assert fake_client.refreshed_ids == [record.id]

    @pytest.mark.asyncio
    async def test_transient_failure_left_untouched(self, services, fake_client):
        """일시적 실패는 그대로 두고 다음 실행에서 재시도"""
        record = _save(services, NOW + HOUR)
        fake_client.refresh_errors[record.id] = RefreshTransientError(token_id=record.id)

        report = await _job(services).run()

        assert report.tokens_failed == 1
        stored = services.token_repository.get_token(record.id)
        assert stored.enable_refresh is True
        assert stored.access_token == "old-access"

    @pytest.mark.asyncio
    async def test_unknown_provider_skipped(self, services, fake_client):
        """등록되지 않은 provider 의 토큰은 건너뜀"""
        _save(services, NOW + HOUR, provider_id="retired")

        report = await _job(services).run()

        assert report.tokens_skipped == 1
        assert fake_client.refreshed_ids == []

    @pytest.mark.asyncio
    async def test_token_table_disabled(self, services, fake_client, monkeypatch):
        """auth_token 테이블을 쓰지 않으면 아무것도 하지 않음"""
        _save(services, NOW + HOUR)
        monkeypatch.setenv("OAUTH2_ENABLE_AUTH_TOKEN_TABLE", "false")

        report = await _job(services).run()

        assert report.batches_total == 0
        assert fake_client.refreshed_ids == []


class TestDistributedRefresh:
    """Redis 배치 락 테스트"""

    @pytest.mark.asyncio
    async def test_locked_batch_is_skipped(self, services, fake_client, fake_redis, monkeypatch):
        """다른 노드가 잡은 배치는 건너뜀"""
        monkeypatch.setenv("OAUTH2_BATCH_COUNT", "2")
        first_batch = [_save(services, NOW + HOUR) for _ in range(2)]
        second_batch = [_save(services, NOW + HOUR) for _ in range(2)]
        await fake_redis.hsetnx(LOCK_KEY, "0", "0")

        report = await _job(services, redis=fake_redis).run()

        assert report.batches_skipped == 1
        assert report.batches_processed == 1
        assert sorted(fake_client.refreshed_ids) == [r.id for r in second_batch]
        assert all(r.id not in fake_client.refreshed_ids for r in first_batch)

    @pytest.mark.asyncio
    async def test_lock_key_expires(self, services, fake_redis):
        """락 해시에 TTL 설정"""
        _save(services, NOW + HOUR)

        await _job(services, redis=fake_redis).run()

        ttl = await fake_redis.ttl(LOCK_KEY)
        assert 0 < ttl <= LOCK_TTL_SECONDS
        assert "0" in fake_redis.values[LOCK_KEY]

    @pytest.mark.asyncio
    async def test_lock_key_ttl_renewed_every_run(self, services, fake_redis):
        """이미 있는 락 해시도 실행할 때마다 TTL 을 6시간으로 다시 설정"""
        _save(services, NOW + HOUR)
        await fake_redis.hsetnx(LOCK_KEY, "created_at", "0")
        await fake_redis.expire(LOCK_KEY, 60)

        await _job(services, redis=fake_redis).run()

        assert await fake_redis.ttl(LOCK_KEY) > LOCK_TTL_SECONDS - 60

    @pytest.mark.asyncio
    async def test_second_node_skips_everything(self, services, fake_client, fake_redis):
        """같은 주기에 두 번째 노드는 모든 배치를 건너뜀"""
        _save(services, NOW + HOUR)

        await _job(services, redis=fake_redis).run()
        report = await _job(services, redis=fake_redis).run()

        assert report.batches_skipped == report.batches_total == 1
        assert len(fake_client.refreshed_ids) == 1

    @pytest.mark.asyncio
    async def test_redis_failure_aborts(self, services, fake_client, fake_redis):
        """Redis 오류 시 작업 중단"""
        _save(services, NOW + HOUR)
        fake_redis.fail = True

        report = await _job(services, redis=fake_redis).run()

        assert report.aborted is True
        assert fake_client.refreshed_ids == []


class TestRefreshTokenScheduler:
    """스케줄러 테스트"""

    @pytest.mark.asyncio
    async def test_disabled_by_default(self, services):
        """기본값은 비활성화"""
        scheduler = RefreshTokenScheduler(_job(services), config=services.config)

        assert await scheduler.start() is False
        assert not scheduler.is_running

    @pytest.mark.asyncio
    async def test_cron_job_registered(self, services, monkeypatch):
        """활성화하면 cron 작업 등록"""
        monkeypatch.setenv("OAUTH2_ENABLE_REFRESH_TOKEN_JOB", "true")
        monkeypatch.setenv("OAUTH2_REFRESH_TOKEN_JOB_CRON", "0 3 * * *")
        scheduler = RefreshTokenScheduler(_job(services), config=services.config)

        assert await scheduler.start() is True
        try:
            job = scheduler.scheduler.get_job(JOB_ID)
            assert job is not None
            assert job.max_instances == 1
        finally:
            await scheduler.stop()
        assert not scheduler.is_running

    @pytest.mark.asyncio
    async def test_run_now(self, services, fake_client):
        """즉시 실행 결과 보관"""
        _save(services, NOW + HOUR)
        scheduler = RefreshTokenScheduler(_job(services), config=services.config)

        report = await scheduler.run_now()

        assert scheduler.last_report is report
        assert report.tokens_refreshed == 1
