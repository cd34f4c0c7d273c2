"""
범용 OAuth2 authorization code 클라이언트

provider 별 구현은 엔드포인트 기본값과 프로필 매핑만 재정의합니다.
"""

import asyncio
import urllib.parse
from typing import Any, Dict, List, Optional

import aiohttp

from infra.core.exceptions import (
    ProviderProtocolError,
    RefreshTransientError,
    RefreshUnsupportedError,
)
from infra.core.logger import get_logger

from .provider_schema import (
    ExternalProfile,
    OAuthToken,
    ProviderConfig,
    TokenRecord,
    expire_in_to_timestamp,
)

logger = get_logger(__name__)

# 이 에러 코드로 refresh 가 거부되면 다시 시도해도 소용없음
NON_RETRYABLE_REFRESH_ERRORS = ("invalid_grant", "unsupported_grant_type", "unauthorized_client")


class OAuth2ProviderClient:
    """provider 하나와 통신하는 비동기 OAuth2 클라이언트"""

    AUTHORIZE_URL: Optional[str] = None
    TOKEN_URL: Optional[str] = None
    USER_INFO_URL: Optional[str] = None
    DEFAULT_SCOPES: List[str] = []
    SCOPE_DELIMITER = " "

    def __init__(self, provider_config: ProviderConfig):
        """
        Args:
            provider_config: provider 설정
        """
        self.provider_config = provider_config
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def provider_id(self) -> str:
        return self.provider_config.provider_id

    @property
    def authorize_endpoint(self) -> Optional[str]:
        return self.provider_config.authorize_url or self.AUTHORIZE_URL

    @property
    def token_endpoint(self) -> Optional[str]:
        return self.provider_config.token_url or self.TOKEN_URL

    @property
    def user_info_endpoint(self) -> Optional[str]:
        return self.provider_config.user_info_url or self.USER_INFO_URL

    @property
    def scopes(self) -> List[str]:
        return list(self.provider_config.scopes) or list(self.DEFAULT_SCOPES)

    async def _get_session(self) -> aiohttp.ClientSession:
        """HTTP 세션을 반환 (레이지 초기화)"""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.provider_config.timeout_ms / 1000)
            self._session = aiohttp.ClientSession(
                timeout=timeout,
                headers={
                    "User-Agent": "Auth2/1.0",
                    "Accept": "application/json",
                },
            )
        return self._session

    # ------------------------------------------------------------------
    # 인가 URL
    # ------------------------------------------------------------------

    def _authorize_params(self, state: str) -> Dict[str, str]:
        params = {
            "response_type": "code",
            "client_id": self.provider_config.client_id,
            "redirect_uri": self.provider_config.redirect_uri,
            "state": state,
        }
        if self.scopes:
            params["scope"] = self.SCOPE_DELIMITER.join(self.scopes)
        return params

    def authorize_url(self, state: str) -> str:
        """
        provider 인가 페이지 URL 생성

        Args:
            state: 콜백에서 돌아올 state

        Returns:
            str: 사용자를 보낼 URL
        """
        return f"{self.authorize_endpoint}?" + urllib.parse.urlencode(
            self._authorize_params(state)
        )

    # ------------------------------------------------------------------
    # 토큰 교환 / 사용자 정보
    # ------------------------------------------------------------------

    def _token_params(self, code: str) -> Dict[str, str]:
        return {
            "grant_type": "authorization_code",
            "code": code,
            "client_id": self.provider_config.client_id,
            "client_secret": self.provider_config.client_secret,
            "redirect_uri": self.provider_config.redirect_uri,
        }

    def _refresh_params(self, refresh_token: str) -> Dict[str, str]:
        return {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self.provider_config.client_id,
            "client_secret": self.provider_config.client_secret,
        }

    async def exchange_token(self, code: str) -> OAuthToken:
        """
        인가 코드를 토큰으로 교환

        Args:
            code: 콜백으로 받은 인가 코드

        Returns:
            OAuthToken: 교환된 토큰

        Raises:
            ProviderProtocolError: 응답이 비정상이거나 네트워크 오류
        """
        data = await self._request_json("POST", self.token_endpoint, data=self._token_params(code))
        token = self._parse_token_response(data)
        logger.info(f"[{self.provider_id}] 토큰 교환 성공")
        return token

    def _user_info_request(self, token: OAuthToken) -> Dict[str, Any]:
        """사용자 정보 요청 인자 (url, headers, params)"""
        return {
            "url": self.user_info_endpoint,
            "headers": {"Authorization": f"Bearer {token.access_token}"},
        }

    async def fetch_user_info(self, token: OAuthToken) -> ExternalProfile:
        """
        토큰으로 사용자 프로필 조회

        Args:
            token: 교환된 토큰

        Returns:
            ExternalProfile: 정규화된 프로필
        """
        request = self._user_info_request(token)
        data = await self._request_json(
            "GET",
            request["url"],
            headers=request.get("headers"),
            params=request.get("params"),
        )
        profile = self._to_profile(data, token)
        if not profile.provider_user_id:
            raise ProviderProtocolError(
                "사용자 정보에 ID 가 없습니다",
                provider_id=self.provider_id,
                api_endpoint=request["url"],
            )
        logger.info(f"[{self.provider_id}] 사용자 정보 조회 성공: {profile.username}")
        return profile

    def _to_profile(self, data: Dict[str, Any], token: OAuthToken) -> ExternalProfile:
        """provider 응답을 ExternalProfile 로 변환 (provider 별 재정의)"""
        user_id = data.get("id") or data.get("sub")
        return ExternalProfile(
            provider_id=self.provider_id,
            provider_user_id=str(user_id) if user_id is not None else "",
            username=str(data.get("login") or data.get("username") or data.get("preferred_username") or user_id or ""),
            nickname=data.get("name") or data.get("nickname"),
            avatar=data.get("avatar_url") or data.get("picture"),
            blog=data.get("html_url") or data.get("web_url") or data.get("blog") or data.get("profile"),
            email=data.get("email"),
            token=token,
            raw=data,
        )

    # ------------------------------------------------------------------
    # 토큰 갱신
    # ------------------------------------------------------------------

    async def refresh_token(self, record: TokenRecord) -> TokenRecord:
        """
        저장된 토큰 갱신

        Args:
            record: 갱신할 토큰 레코드

        Returns:
            TokenRecord: 새 토큰이 반영된 레코드 (id 유지)

        Raises:
            RefreshUnsupportedError: 갱신이 불가능한 토큰
            RefreshTransientError: 일시적 실패
        """
        if not self.provider_config.refresh_supported:
            raise RefreshUnsupportedError(
                f"{self.provider_id} 는 토큰 갱신을 지원하지 않습니다",
                provider_id=self.provider_id,
                token_id=record.id,
            )
        if not record.refresh_token:
            raise RefreshUnsupportedError(
                "refresh token 이 없습니다",
                provider_id=self.provider_id,
                token_id=record.id,
            )

        try:
            data = await self._request_json(
                "POST", self.token_endpoint, data=self._refresh_params(record.refresh_token)
            )
            token = self._parse_token_response(data)
        except ProviderProtocolError as e:
            if e.details.get("error") in NON_RETRYABLE_REFRESH_ERRORS:
                raise RefreshUnsupportedError(
                    f"refresh token 이 거부되었습니다: {e.details.get('error')}",
                    provider_id=self.provider_id,
                    token_id=record.id,
                ) from e
            raise RefreshTransientError(
                f"토큰 갱신 실패: {e.message}",
                provider_id=self.provider_id,
                token_id=record.id,
            ) from e

        logger.info(f"[{self.provider_id}] 토큰 갱신 성공: token_id={record.id}")
        return record.model_copy(
            update={
                "access_token": token.access_token,
                # 새 리프레시 토큰이 없으면 기존 토큰 유지
                "refresh_token": token.refresh_token or record.refresh_token,
                "token_type": token.token_type or record.token_type,
                "scope": token.scope or record.scope,
                "expire_time": expire_in_to_timestamp(
                    token.expire_in, self.provider_config.timeout_ms
                ),
                "enable_refresh": True,
            }
        )

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _parse_token_response(self, data: Dict[str, Any]) -> OAuthToken:
        """토큰 응답 파싱 (200 응답 안의 error 도 실패로 처리)"""
        if data.get("error") or not data.get("access_token"):
            raise ProviderProtocolError(
                f"토큰 응답 오류: {data.get('error_description') or data.get('error') or 'access_token 없음'}",
                provider_id=self.provider_id,
                api_endpoint=self.token_endpoint,
                details={"error": data.get("error")},
            )

        expire_in = data.get("expires_in")
        try:
            expire_in = int(expire_in) if expire_in is not None else None
        except (TypeError, ValueError):
            expire_in = None

        return OAuthToken(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expire_in=expire_in,
            token_type=data.get("token_type"),
            scope=data.get("scope"),
            id_token=data.get("id_token"),
            raw=data,
        )

    async def _request_json(
        self,
        method: str,
        url: Optional[str],
        data: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        provider 에 요청하고 JSON 응답을 반환

        Raises:
            ProviderProtocolError: 비정상 상태 코드, JSON 아님, 네트워크 오류
        """
        try:
            session = await self._get_session()
            async with session.request(
                method,
                url,
                data=data,
                headers=headers,
                params=params,
                proxy=self.provider_config.proxy_url,
            ) as response:
                try:
                    body = await response.json(content_type=None)
                except ValueError:
                    body = None

                if response.status != 200:
                    error = body.get("error") if isinstance(body, dict) else None
                    raise ProviderProtocolError(
                        f"provider 요청 실패: HTTP {response.status}",
                        provider_id=self.provider_id,
                        api_endpoint=url,
                        status_code=response.status,
                        details={"error": error},
                    )

                if not isinstance(body, dict):
                    raise ProviderProtocolError(
                        "provider 응답이 JSON 객체가 아닙니다",
                        provider_id=self.provider_id,
                        api_endpoint=url,
                        status_code=response.status,
                    )
                return body

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ProviderProtocolError(
                f"provider 요청 중 네트워크 오류: {str(e) or type(e).__name__}",
                provider_id=self.provider_id,
                api_endpoint=url,
                error_code="PROVIDER_UNAVAILABLE",
            ) from e

    async def close(self) -> None:
        """HTTP 세션을 종료합니다."""
        if self._session and not self._session.closed:
            await self._session.close()
            logger.debug(f"[{self.provider_id}] 세션 종료됨")
