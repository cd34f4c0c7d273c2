"""
토큰 갱신 작업 스키마
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class TokenBatch(BaseModel):
    """토큰 id 범위 배치 (양 끝 포함)"""
    index: int = Field(..., description="배치 번호 (0 부터)")
    start_id: int = Field(..., description="시작 id")
    end_id: int = Field(..., description="끝 id")


class RefreshJobReport(BaseModel):
    """갱신 작업 1회 실행 결과"""
    batches_total: int = Field(default=0, description="전체 배치 수")
    batches_processed: int = Field(default=0, description="처리한 배치 수")
    batches_skipped: int = Field(default=0, description="다른 노드가 처리해 건너뛴 배치 수")
    tokens_refreshed: int = Field(default=0, description="갱신 성공 토큰 수")
    tokens_unsupported: int = Field(default=0, description="갱신 대상에서 제외된 토큰 수")
    tokens_failed: int = Field(default=0, description="일시적 실패 토큰 수")
    tokens_skipped: int = Field(default=0, description="provider 미등록으로 건너뛴 토큰 수")
    aborted: bool = Field(default=False, description="Redis 오류로 중단 여부")
    started_at: Optional[datetime] = Field(None, description="시작 시간")
    finished_at: Optional[datetime] = Field(None, description="종료 시간")

    @property
    def duration_seconds(self) -> float:
        if self.started_at is None or self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()
