"""
Provider 모듈 - 외부 OAuth2 provider 클라이언트

주요 기능:
- provider 별 인가 URL 생성, 토큰 교환, 사용자 정보 조회, 토큰 갱신
- 설정 기반 불변 레지스트리
"""

from .provider_client import OAuth2ProviderClient
from .provider_registry import ProviderRegistry, build_provider_config, build_provider_registry
from .provider_schema import (
    ExternalProfile,
    OAuthToken,
    ProviderConfig,
    ProviderKind,
    TokenRecord,
    expire_in_to_timestamp,
    now_millis,
)
from .providers import (
    CustomizeClient,
    GiteeClient,
    GitHubClient,
    GitLabClient,
    GoogleClient,
    PROVIDER_FACTORIES,
)

__all__ = [
    "OAuth2ProviderClient",
    "ProviderRegistry",
    "build_provider_config",
    "build_provider_registry",
    "ExternalProfile",
    "OAuthToken",
    "ProviderConfig",
    "ProviderKind",
    "TokenRecord",
    "expire_in_to_timestamp",
    "now_millis",
    "CustomizeClient",
    "GiteeClient",
    "GitHubClient",
    "GitLabClient",
    "GoogleClient",
    "PROVIDER_FACTORIES",
]
