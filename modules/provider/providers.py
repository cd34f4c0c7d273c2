"""
provider 별 OAuth2 클라이언트

각 클래스는 엔드포인트 기본값과 프로필 매핑만 다릅니다.
"""

from typing import Any, Callable, Dict

from infra.core.exceptions import ConfigurationError, RefreshUnsupportedError

from .provider_client import OAuth2ProviderClient
from .provider_schema import ExternalProfile, OAuthToken, ProviderConfig, ProviderKind, TokenRecord


class GitHubClient(OAuth2ProviderClient):
    """GitHub OAuth App"""

    AUTHORIZE_URL = "https://github.com/login/oauth/authorize"
    TOKEN_URL = "https://github.com/login/oauth/access_token"
    USER_INFO_URL = "https://api.github.com/user"
    DEFAULT_SCOPES = ["read:user"]

    def _to_profile(self, data: Dict[str, Any], token: OAuthToken) -> ExternalProfile:
        return ExternalProfile(
            provider_id=self.provider_id,
            provider_user_id=str(data.get("id", "")),
            username=data.get("login") or str(data.get("id", "")),
            nickname=data.get("name"),
            avatar=data.get("avatar_url"),
            blog=data.get("blog") or data.get("html_url"),
            email=data.get("email"),
            token=token,
            raw=data,
        )

    async def refresh_token(self, record: TokenRecord) -> TokenRecord:
        # OAuth App 토큰은 만료되지 않으며 refresh 그랜트가 없음
        raise RefreshUnsupportedError(
            "GitHub 는 토큰 갱신을 지원하지 않습니다",
            provider_id=self.provider_id,
            token_id=record.id,
        )


class GiteeClient(OAuth2ProviderClient):
    """Gitee (码云)"""

    AUTHORIZE_URL = "https://gitee.com/oauth/authorize"
    TOKEN_URL = "https://gitee.com/oauth/token"
    USER_INFO_URL = "https://gitee.com/api/v5/user"
    DEFAULT_SCOPES = ["user_info"]

    def _user_info_request(self, token: OAuthToken) -> Dict[str, Any]:
        # access_token 을 쿼리 파라미터로 전달
        return {
            "url": self.user_info_endpoint,
            "params": {"access_token": token.access_token},
        }

    def _refresh_params(self, refresh_token: str) -> Dict[str, str]:
        return {"grant_type": "refresh_token", "refresh_token": refresh_token}

    def _to_profile(self, data: Dict[str, Any], token: OAuthToken) -> ExternalProfile:
        return ExternalProfile(
            provider_id=self.provider_id,
            provider_user_id=str(data.get("id", "")),
            username=data.get("login") or str(data.get("id", "")),
            nickname=data.get("name"),
            avatar=data.get("avatar_url"),
            blog=data.get("blog") or data.get("html_url"),
            email=data.get("email"),
            token=token,
            raw=data,
        )


class GoogleClient(OAuth2ProviderClient):
    """Google (OpenID Connect)"""

    AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
    TOKEN_URL = "https://oauth2.googleapis.com/token"
    USER_INFO_URL = "https://openidconnect.googleapis.com/v1/userinfo"
    DEFAULT_SCOPES = ["openid", "email", "profile"]

    def _authorize_params(self, state: str) -> Dict[str, str]:
        params = super()._authorize_params(state)
        # refresh token 을 받으려면 offline 접근 필요
        params["access_type"] = "offline"
        params["prompt"] = "consent"
        return params

    def _to_profile(self, data: Dict[str, Any], token: OAuthToken) -> ExternalProfile:
        email = data.get("email")
        return ExternalProfile(
            provider_id=self.provider_id,
            provider_user_id=str(data.get("sub", "")),
            username=email or str(data.get("sub", "")),
            nickname=data.get("name"),
            avatar=data.get("picture"),
            blog=data.get("profile"),
            email=email,
            token=token,
            raw=data,
        )


class GitLabClient(OAuth2ProviderClient):
    """GitLab (gitlab.com 또는 자체 호스팅, URL 덮어쓰기로 지원)"""

    AUTHORIZE_URL = "https://gitlab.com/oauth/authorize"
    TOKEN_URL = "https://gitlab.com/oauth/token"
    USER_INFO_URL = "https://gitlab.com/api/v4/user"
    DEFAULT_SCOPES = ["read_user"]

    def _to_profile(self, data: Dict[str, Any], token: OAuthToken) -> ExternalProfile:
        return ExternalProfile(
            provider_id=self.provider_id,
            provider_user_id=str(data.get("id", "")),
            username=data.get("username") or str(data.get("id", "")),
            nickname=data.get("name"),
            avatar=data.get("avatar_url"),
            blog=data.get("web_url"),
            email=data.get("email"),
            token=token,
            raw=data,
        )


class CustomizeClient(OAuth2ProviderClient):
    """설정으로 엔드포인트를 모두 지정하는 provider"""

    def __init__(self, provider_config: ProviderConfig):
        missing = [
            name
            for name in ("authorize_url", "token_url", "user_info_url")
            if not getattr(provider_config, name)
        ]
        if missing:
            raise ConfigurationError(
                f"customize provider 에 필요한 URL 이 없습니다: {', '.join(missing)}",
                provider_id=provider_config.provider_id,
            )
        super().__init__(provider_config)


ProviderFactory = Callable[[ProviderConfig], OAuth2ProviderClient]

PROVIDER_FACTORIES: Dict[ProviderKind, ProviderFactory] = {
    ProviderKind.GITHUB: GitHubClient,
    ProviderKind.GITEE: GiteeClient,
    ProviderKind.GOOGLE: GoogleClient,
    ProviderKind.GITLAB: GitLabClient,
    ProviderKind.CUSTOMIZE: CustomizeClient,
}

# 해외 provider 는 긴 타임아웃 사용
FOREIGN_PROVIDER_KINDS = frozenset(
    {ProviderKind.GITHUB, ProviderKind.GOOGLE, ProviderKind.GITLAB}
)
