"""
provider id → 클라이언트 레지스트리

시작 시 한 번 만들어지며 이후 변경되지 않습니다.
"""

from types import MappingProxyType
from typing import Dict, List, Mapping, Optional

from infra.core.config import Config
from infra.core.exceptions import ConfigurationError
from infra.core.logger import get_logger

from .provider_client import OAuth2ProviderClient
from .provider_schema import ProviderConfig, ProviderKind
from .providers import FOREIGN_PROVIDER_KINDS, PROVIDER_FACTORIES

logger = get_logger(__name__)


class ProviderRegistry:
    """설정된 provider 클라이언트 조회"""

    def __init__(self, clients: Mapping[str, OAuth2ProviderClient]):
        self._clients = MappingProxyType(dict(clients))

    def resolve(self, provider_id: str) -> Optional[OAuth2ProviderClient]:
        """provider id 로 클라이언트 조회 (없으면 None)"""
        return self._clients.get(provider_id)

    def require(self, provider_id: str) -> OAuth2ProviderClient:
        """
        provider id 로 클라이언트 조회

        Raises:
            ConfigurationError: 등록되지 않은 provider
        """
        client = self._clients.get(provider_id)
        if client is None:
            raise ConfigurationError(
                f"등록되지 않은 provider 입니다: {provider_id}",
                provider_id=provider_id,
                error_code="UNKNOWN_PROVIDER",
            )
        return client

    def provider_ids(self) -> List[str]:
        return list(self._clients)

    def __contains__(self, provider_id: str) -> bool:
        return provider_id in self._clients

    def __len__(self) -> int:
        return len(self._clients)

    async def close(self) -> None:
        """모든 클라이언트의 HTTP 세션 종료"""
        for client in self._clients.values():
            await client.close()


def build_provider_config(settings: Dict, config: Config) -> ProviderConfig:
    """
    원시 설정값을 ProviderConfig 로 변환

    Raises:
        ConfigurationError: 알 수 없는 provider 종류
    """
    provider_id = settings["provider_id"]
    try:
        kind = ProviderKind(settings["kind"])
    except ValueError as e:
        raise ConfigurationError(
            f"알 수 없는 provider 종류입니다: {settings['kind']}",
            config_key=f"OAUTH2_{provider_id.upper()}_KIND",
            provider_id=provider_id,
        ) from e

    timeout_ms = (
        config.http_foreign_timeout_ms
        if kind in FOREIGN_PROVIDER_KINDS
        else config.http_timeout_ms
    )

    return ProviderConfig(
        provider_id=provider_id,
        kind=kind,
        client_id=settings["client_id"],
        client_secret=settings["client_secret"],
        redirect_uri=settings["redirect_uri"],
        scopes=settings.get("scopes") or [],
        authorize_url=settings.get("authorize_url"),
        token_url=settings.get("token_url"),
        user_info_url=settings.get("user_info_url"),
        timeout_ms=timeout_ms,
        proxy_url=config.http_proxy_url,
        refresh_supported=settings.get("refresh_supported", True),
    )


def build_provider_registry(config: Config) -> ProviderRegistry:
    """
    설정으로부터 레지스트리 생성

    client_id 와 client_secret 이 모두 있는 provider 만 등록됩니다.

    Args:
        config: 애플리케이션 설정

    Returns:
        ProviderRegistry: 불변 레지스트리
    """
    clients: Dict[str, OAuth2ProviderClient] = {}

    for provider_id in config.provider_ids:
        settings = config.provider_settings(provider_id)
        if not settings.get("client_id") or not settings.get("client_secret"):
            logger.warning(f"[{provider_id}] client_id/client_secret 미설정, 등록 생략")
            continue

        provider_config = build_provider_config(settings, config)
        factory = PROVIDER_FACTORIES[provider_config.kind]
        clients[provider_id] = factory(provider_config)
        logger.info(f"[{provider_id}] provider 등록 완료: kind={provider_config.kind.value}")

    logger.info(f"provider 레지스트리 생성 완료: {list(clients)}")
    return ProviderRegistry(clients)
