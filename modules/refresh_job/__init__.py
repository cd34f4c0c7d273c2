"""
Refresh Job 모듈 - 저장된 OAuth2 토큰 주기적 갱신

주요 기능:
- 토큰 id 범위 배치 분할
- Redis HSETNX 배치 락 (분산 모드)
- 갱신 불가 토큰 영구 제외
- cron 기반 스케줄링
"""

from .refresh_job_schema import RefreshJobReport, TokenBatch
from .refresh_scheduler import RefreshTokenScheduler
from .refresh_token_job import LOCK_KEY, LOCK_TTL_SECONDS, RefreshTokenJob, compute_batches

__all__ = [
    "RefreshJobReport",
    "TokenBatch",
    "RefreshTokenScheduler",
    "RefreshTokenJob",
    "compute_batches",
    "LOCK_KEY",
    "LOCK_TTL_SECONDS",
]
