"""
Auth 모듈의 OAuth2 로그인 관련 Pydantic 스키마

인가 요청 컨텍스트, 콜백 파라미터, 콜백 처리 단계와 로그인 결과를 정의합니다.
"""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field

from modules.account.account_schema import LocalIdentity, TemporaryIdentity
from modules.provider.provider_schema import ExternalProfile


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CallbackStage(str, Enum):
    """콜백 처리 단계"""
    INITIATED = "INITIATED"                  # 인가 URL 로 리다이렉트됨
    CODE_RECEIVED = "CODE_RECEIVED"          # 콜백 수신, code/state 추출
    STATE_VALIDATED = "STATE_VALIDATED"      # state 검증 완료
    TOKEN_EXCHANGED = "TOKEN_EXCHANGED"      # 토큰 교환 완료
    USER_FETCHED = "USER_FETCHED"            # 사용자 정보 조회 완료
    IDENTITY_RESOLVED = "IDENTITY_RESOLVED"  # 로컬 사용자 결정
    BOUND = "BOUND"
    AUTO_REGISTERED = "AUTO_REGISTERED"
    TEMPORARY = "TEMPORARY"
    FAILED = "FAILED"


class AuthorizationContext(BaseModel):
    """인가 요청 컨텍스트 (콜백에서 한 번만 소비)"""
    provider_id: str = Field(..., description="provider 식별자")
    state: str = Field(..., description="provider 로 보낸 (인코딩된) state")
    raw_state: str = Field(..., description="인코딩 전 state")
    params: Dict[str, Any] = Field(default_factory=dict, description="호출자 파라미터")
    created_at: datetime = Field(default_factory=utcnow, description="생성 시간")
    expires_at: datetime = Field(
        default_factory=lambda: utcnow() + timedelta(minutes=3), description="만료 시간"
    )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """컨텍스트 만료 여부 확인"""
        return (now or utcnow()) > self.expires_at


class AuthorizationRedirect(BaseModel):
    """인가 시작 결과"""
    provider_id: str = Field(..., description="provider 식별자")
    state: str = Field(..., description="provider 로 보낸 state")
    url: str = Field(..., description="사용자를 보낼 인가 URL")


class CallbackParams(BaseModel):
    """provider 콜백 파라미터"""
    code: Optional[str] = Field(None, description="인가 코드")
    state: Optional[str] = Field(None, description="state")
    error: Optional[str] = Field(None, description="오류 코드")
    error_description: Optional[str] = Field(None, description="오류 설명")

    def has_error(self) -> bool:
        """오류 여부 확인"""
        return self.error is not None


class BoundLogin(BaseModel):
    """기존 로컬 사용자로 로그인"""
    kind: Literal["bound"] = "bound"
    identity: LocalIdentity
    profile: ExternalProfile
    decoded_state: Optional[Any] = None


class AutoRegisteredLogin(BaseModel):
    """자동 가입 후 로그인"""
    kind: Literal["auto_registered"] = "auto_registered"
    identity: LocalIdentity
    profile: ExternalProfile
    decoded_state: Optional[Any] = None


class TemporaryLogin(BaseModel):
    """가입 페이지로 보낼 임시 사용자"""
    kind: Literal["temporary"] = "temporary"
    identity: TemporaryIdentity
    profile: ExternalProfile
    decoded_state: Optional[Any] = None


LoginOutcome = Union[BoundLogin, AutoRegisteredLogin, TemporaryLogin]
