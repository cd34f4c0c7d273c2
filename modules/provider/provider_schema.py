"""
Provider 모듈의 Pydantic 스키마

provider 설정, 토큰 교환 결과, 외부 프로필, 저장된 토큰 레코드를 정의합니다.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ProviderKind(str, Enum):
    """지원하는 provider 종류"""
    GITHUB = "github"
    GITEE = "gitee"
    GOOGLE = "google"
    GITLAB = "gitlab"
    CUSTOMIZE = "customize"


class ProviderConfig(BaseModel):
    """provider 별 OAuth2 클라이언트 설정 (생성 후 변경 불가)"""
    model_config = ConfigDict(frozen=True)

    provider_id: str = Field(..., description="provider 식별자 (콜백 경로에 사용)")
    kind: ProviderKind = Field(..., description="provider 종류")
    client_id: str = Field(..., description="클라이언트 ID")
    client_secret: str = Field(..., description="클라이언트 시크릿")
    redirect_uri: str = Field(..., description="콜백 URL")
    scopes: List[str] = Field(default_factory=list, description="요청 스코프")
    authorize_url: Optional[str] = Field(None, description="인가 엔드포인트 (기본값 덮어쓰기)")
    token_url: Optional[str] = Field(None, description="토큰 엔드포인트 (기본값 덮어쓰기)")
    user_info_url: Optional[str] = Field(None, description="사용자 정보 엔드포인트 (기본값 덮어쓰기)")
    timeout_ms: int = Field(default=3000, description="HTTP 타임아웃(밀리초)")
    proxy_url: Optional[str] = Field(None, description="HTTP 프록시")
    refresh_supported: bool = Field(default=True, description="refresh_token 그랜트 지원 여부")


class OAuthToken(BaseModel):
    """토큰 엔드포인트 응답"""
    access_token: str = Field(..., description="액세스 토큰")
    refresh_token: Optional[str] = Field(None, description="리프레시 토큰")
    expire_in: Optional[int] = Field(None, description="만료까지 남은 시간(초)")
    token_type: Optional[str] = Field(None, description="토큰 타입")
    scope: Optional[str] = Field(None, description="부여된 스코프")
    id_token: Optional[str] = Field(None, description="OIDC ID 토큰")
    raw: Dict[str, Any] = Field(default_factory=dict, description="원본 응답")


class ExternalProfile(BaseModel):
    """provider 가 돌려준 사용자 프로필"""
    provider_id: str = Field(..., description="provider 식별자")
    provider_user_id: str = Field(..., description="provider 내 사용자 ID")
    username: str = Field(..., description="provider 내 사용자명")
    nickname: Optional[str] = Field(None, description="표시 이름")
    avatar: Optional[str] = Field(None, description="프로필 이미지 URL")
    blog: Optional[str] = Field(None, description="프로필 페이지 URL")
    email: Optional[str] = Field(None, description="이메일")
    token: OAuthToken = Field(..., description="교환된 토큰")
    raw: Dict[str, Any] = Field(default_factory=dict, description="원본 응답")


class TokenRecord(BaseModel):
    """auth_token 테이블의 한 행 (토큰은 평문)"""
    id: Optional[int] = Field(None, description="토큰 ID")
    provider_id: str = Field(..., description="provider 식별자")
    access_token: str = Field(..., description="액세스 토큰")
    refresh_token: Optional[str] = Field(None, description="리프레시 토큰")
    token_type: Optional[str] = Field(None, description="토큰 타입")
    scope: Optional[str] = Field(None, description="스코프")
    expire_time: int = Field(default=-1, description="만료 시각 (epoch ms, -1 은 만료 없음)")
    enable_refresh: bool = Field(default=True, description="갱신 대상 여부")
    updated_at: Optional[datetime] = Field(None, description="수정 시간")


def now_millis() -> int:
    """현재 시각 (epoch ms)"""
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def expire_in_to_timestamp(
    expire_in: Optional[int], timeout_ms: int, now_ms: Optional[int] = None
) -> int:
    """
    provider 의 expires_in(초)을 만료 시각(epoch ms)으로 변환

    네트워크 지연을 고려해 provider 타임아웃만큼 앞당깁니다.

    Args:
        expire_in: 남은 시간(초), None 또는 1 미만이면 만료 없음
        timeout_ms: provider HTTP 타임아웃(밀리초)
        now_ms: 기준 시각 (기본값: 현재)

    Returns:
        int: 만료 시각, 만료 없음은 -1
    """
    if expire_in is None or expire_in < 1:
        return -1
    now_ms = now_millis() if now_ms is None else now_ms
    return now_ms + expire_in * 1000 - timeout_ms
