"""
Connection 모듈의 Pydantic 스키마
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class Connection(BaseModel):
    """로컬 사용자와 외부 계정의 연결 (토큰은 평문)"""
    user_id: str = Field(..., description="로컬 사용자명")
    provider_id: str = Field(..., description="provider 식별자")
    provider_user_id: str = Field(..., description="provider 내 사용자 ID")
    rank: Optional[int] = Field(None, description="같은 사용자/provider 내 순번 (1부터)")
    display_name: Optional[str] = Field(None, description="표시 이름")
    profile_url: Optional[str] = Field(None, description="프로필 페이지 URL")
    image_url: Optional[str] = Field(None, description="프로필 이미지 URL")
    access_token: str = Field(..., description="액세스 토큰")
    refresh_token: Optional[str] = Field(None, description="리프레시 토큰")
    expire_time: int = Field(default=-1, description="만료 시각 (epoch ms, -1 은 만료 없음)")
    token_id: Optional[int] = Field(None, description="auth_token 테이블 ID")
    created_at: Optional[datetime] = Field(None, description="생성 시간")
    updated_at: Optional[datetime] = Field(None, description="수정 시간")
