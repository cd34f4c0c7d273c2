"""
Account 모듈의 데이터 스키마 정의

로컬 사용자와 가입 전 임시 사용자를 표현합니다.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from modules.provider.provider_schema import ExternalProfile


class LocalIdentity(BaseModel):
    """로컬 사용자"""
    username: str = Field(..., description="사용자명 (connection 의 user_id)")
    authorities: List[str] = Field(default_factory=list, description="권한 목록")
    password: str = Field(default="", description="비밀번호 해시 (외부 로그인 가입 시 빈 값)")
    nickname: Optional[str] = Field(None, description="표시 이름")
    avatar: Optional[str] = Field(None, description="프로필 이미지 URL")
    email: Optional[str] = Field(None, description="이메일")
    created_at: Optional[datetime] = Field(None, description="가입 시간")


class TemporaryIdentity(BaseModel):
    """자동 가입이 꺼져 있을 때 가입 페이지로 넘길 임시 사용자 (저장하지 않음)"""
    username: str = Field(..., description="외부 사용자명")
    authorities: List[str] = Field(default_factory=list, description="임시 권한 목록")
    password: str = Field(default="", description="임시 사용자 공용 비밀번호")
    profile: ExternalProfile = Field(..., description="외부 프로필")
