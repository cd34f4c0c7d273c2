"""
토큰 갱신 작업

auth_token 테이블을 id 범위 배치로 나눠 곧 만료될 토큰을 갱신합니다.
Redis 가 설정된 경우 배치마다 HSETNX 락을 잡아 여러 노드가 같은 배치를
중복 처리하지 않도록 합니다.
"""

import math
from datetime import datetime, timezone
from typing import Callable, List, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from infra.core.config import Config, get_config
from infra.core.exceptions import (
    DatabaseError,
    ProviderProtocolError,
    RefreshTransientError,
    RefreshUnsupportedError,
)
from infra.core.logger import get_logger, request_id_context
from infra.core.task_pool import CallerRunsTaskPool

from modules.connection.connection_service import ConnectionService
from modules.connection.token_repository import TokenRepository
from modules.provider.provider_client import OAuth2ProviderClient
from modules.provider.provider_registry import ProviderRegistry
from modules.provider.provider_schema import TokenRecord, now_millis

from .refresh_job_schema import RefreshJobReport, TokenBatch

logger = get_logger(__name__)

LOCK_KEY = "RefreshTokenJob:HashKey:lock"
LOCK_TTL_SECONDS = 6 * 60 * 60
LOCK_MARKER_FIELD = "created_at"


def compute_batches(max_token_id: int, batch_count: int) -> List[TokenBatch]:
    """
    토큰 id 범위를 배치로 분할

    Args:
        max_token_id: 가장 큰 토큰 id
        batch_count: 배치당 id 개수

    Returns:
        List[TokenBatch]: [1, bc], [bc+1, 2bc], ... (마지막 배치는 max 를 넘을 수 있음)
    """
    if batch_count < 1:
        raise ValueError("batch_count 는 1 이상이어야 합니다")
    if max_token_id < 1:
        return []

    total = math.ceil(max_token_id / batch_count)
    return [
        TokenBatch(index=i, start_id=1 + i * batch_count, end_id=(i + 1) * batch_count)
        for i in range(total)
    ]


class RefreshTokenJob:
    """토큰 갱신 작업"""

    def __init__(
        self,
        provider_registry: ProviderRegistry,
        connection_service: ConnectionService,
        token_repository: Optional[TokenRepository] = None,
        config: Optional[Config] = None,
        redis: Optional[aioredis.Redis] = None,
        clock: Callable[[], int] = now_millis,
        pool: Optional[CallerRunsTaskPool] = None,
    ):
        """
        Args:
            provider_registry: provider 레지스트리
            connection_service: 갱신 결과를 반영할 connection 서비스
            token_repository: 토큰 저장소 (기본값: connection 서비스의 저장소)
            config: 설정
            redis: 분산 락용 Redis 클라이언트 (None 이면 단일 노드 모드)
            clock: 현재 시각(epoch ms) 함수
            pool: 갱신 작업 풀
        """
        self.provider_registry = provider_registry
        self.connection_service = connection_service
        self.token_repository = token_repository or connection_service.token_repository
        self.config = config or get_config()
        self.redis = redis
        self.clock = clock
        self.pool = pool or CallerRunsTaskPool(
            "refresh-token",
            self.config.refresh_token_pool_size,
            self.config.refresh_token_queue_capacity,
        )

    @property
    def distributed(self) -> bool:
        return self.redis is not None

    async def run(self) -> RefreshJobReport:
        """
        갱신 작업 1회 실행

        요청 처리 중이 아니면 실행마다 새 추적 id 를 정해 이번 실행의 로그를 묶습니다.

        Returns:
            RefreshJobReport: 실행 결과
        """
        with request_id_context():
            return await self._run()

    async def _run(self) -> RefreshJobReport:
        report = RefreshJobReport(started_at=datetime.now(timezone.utc))

        if not self.config.enable_auth_token_table:
            logger.debug("auth_token 테이블 미사용: 토큰 갱신 작업 생략")
            report.finished_at = datetime.now(timezone.utc)
            return report

        batches = compute_batches(self.token_repository.get_max_token_id(), self.config.batch_count)
        report.batches_total = len(batches)
        expire_before = self.clock() + self.config.remaining_expire_in_hours * 60 * 60 * 1000
        mode = "분산" if self.distributed else "단일 노드"
        logger.info(f"🔄 토큰 갱신 작업 시작: 배치 {len(batches)}개, 모드={mode}")

        try:
            if self.distributed and batches:
                await self._prepare_lock()

            for batch in batches:
                if self.distributed and not await self._acquire_batch(batch):
                    logger.info(f"배치 {batch.index} 는 다른 노드가 처리 중, 건너뜀")
                    report.batches_skipped += 1
                    continue
                await self._process_batch(batch, expire_before, report)
                report.batches_processed += 1
        except RedisError as e:
            logger.error(f"Redis 오류로 토큰 갱신 작업 중단: {str(e)}")
            report.aborted = True
        finally:
            await self.pool.join()

        report.finished_at = datetime.now(timezone.utc)
        logger.info(
            f"토큰 갱신 작업 완료: 배치 {report.batches_processed}/{report.batches_total} 처리 "
            f"(건너뜀 {report.batches_skipped}), 갱신 {report.tokens_refreshed}, "
            f"제외 {report.tokens_unsupported}, 실패 {report.tokens_failed}, "
            f"{report.duration_seconds:.1f}초 소요"
        )
        return report

    async def _prepare_lock(self) -> None:
        """락 해시를 만들고(없으면) 실행마다 TTL 을 다시 설정"""
        await self.redis.hsetnx(LOCK_KEY, LOCK_MARKER_FIELD, str(self.clock()))
        await self.redis.expire(LOCK_KEY, LOCK_TTL_SECONDS)

    async def _acquire_batch(self, batch: TokenBatch) -> bool:
        return bool(await self.redis.hsetnx(LOCK_KEY, str(batch.index), "0"))

    async def _process_batch(
        self, batch: TokenBatch, expire_before: int, report: RefreshJobReport
    ) -> None:
        records = self.token_repository.find_tokens_to_refresh(
            expire_before, batch.start_id, batch.end_id
        )
        logger.debug(
            f"배치 {batch.index} [{batch.start_id}, {batch.end_id}]: 갱신 대상 {len(records)}개"
        )

        for record in records:
            client = self.provider_registry.resolve(record.provider_id)
            if client is None:
                logger.warning(
                    f"등록되지 않은 provider 의 토큰, 건너뜀: "
                    f"token_id={record.id}, provider={record.provider_id}"
                )
                report.tokens_skipped += 1
                continue
            await self.pool.submit(self._refresh_one(client, record, report))

    async def _refresh_one(
        self, client: OAuth2ProviderClient, record: TokenRecord, report: RefreshJobReport
    ) -> None:
        try:
            refreshed = await client.refresh_token(record)
        except RefreshUnsupportedError as e:
            logger.info(f"갱신 불가 토큰, 갱신 대상에서 제외: token_id={record.id}, {e}")
            self._disable_refresh(record, report)
            return
        except (RefreshTransientError, ProviderProtocolError) as e:
            logger.warning(f"토큰 갱신 실패, 다음 실행에서 재시도: token_id={record.id}, {e}")
            report.tokens_failed += 1
            return

        try:
            self.connection_service.apply_refreshed_token(refreshed)
        except DatabaseError as e:
            logger.error(f"갱신된 토큰 저장 실패: token_id={record.id}, {e}")
            report.tokens_failed += 1
            return
        report.tokens_refreshed += 1

    def _disable_refresh(self, record: TokenRecord, report: RefreshJobReport) -> None:
        try:
            self.connection_service.disable_refresh(record.id)
        except DatabaseError as e:
            logger.error(f"갱신 제외 처리 실패: token_id={record.id}, {e}")
            report.tokens_failed += 1
            return
        report.tokens_unsupported += 1
