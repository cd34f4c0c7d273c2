"""
Auth2 프로젝트의 설정 관리 시스템

환경 변수(.env)를 안전하게 로드하고 관리하는 설정 클래스를 제공합니다.
레이지 싱글톤 패턴으로 구현되어 어디서든 동일한 설정 객체를 참조할 수 있습니다.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from .exceptions import ConfigurationError
from .logging_config import get_logger


logger = get_logger(__name__)

_TRUE_VALUES = ("true", "1", "yes", "on")


def _env_bool(key: str, default: str) -> bool:
    return os.getenv(key, default).lower() in _TRUE_VALUES


class Config:
    """애플리케이션 설정을 관리하는 클래스"""

    def __init__(self, env_file: Optional[Path] = None):
        """설정 초기화 및 환경 변수 로드

        Args:
            env_file: 로드할 .env 파일 경로 (기본값: 프로젝트 루트의 .env)
        """
        self._load_environment(env_file)
        self._validate_required_settings()

    def _load_environment(self, env_file: Optional[Path]) -> None:
        """환경 변수 파일(.env)을 로드"""
        if env_file is None:
            # 프로젝트 루트에서 .env 파일 찾기
            project_root = Path(__file__).parent.parent.parent
            env_file = project_root / ".env"

        if env_file.exists():
            load_dotenv(env_file)
            logger.debug(f"✅ .env 파일 로드 완료: {env_file}")
        else:
            logger.debug(f".env 파일 없음, 환경 변수만 사용: {env_file}")

    def _validate_required_settings(self) -> None:
        """필수 설정값들이 있는지 검증"""
        required_settings = ["ENCRYPTION_KEY"]

        missing_settings = [key for key in required_settings if not os.getenv(key)]

        if missing_settings:
            raise ConfigurationError(
                f"필수 설정값이 누락되었습니다: {', '.join(missing_settings)}",
                details={"missing_settings": missing_settings},
            )

        if self.batch_count < 1:
            raise ConfigurationError(
                "OAUTH2_BATCH_COUNT 는 1 이상이어야 합니다",
                config_key="OAUTH2_BATCH_COUNT",
            )

    # 데이터베이스 설정
    @property
    def database_path(self) -> str:
        """SQLite 데이터베이스 파일 경로"""
        path = os.getenv("DATABASE_PATH", "./data/auth2.db")
        # 디렉터리가 없으면 생성
        db_dir = Path(path).parent
        db_dir.mkdir(parents=True, exist_ok=True)
        return path

    @property
    def encryption_key(self) -> str:
        """토큰 암호화 키 (Fernet 키)"""
        key = os.getenv("ENCRYPTION_KEY")
        if not key:
            raise ConfigurationError("ENCRYPTION_KEY가 설정되지 않았습니다")
        return key

    # 공유 캐시 설정
    @property
    def redis_url(self) -> Optional[str]:
        """Redis 접속 URL (설정 시 분산 모드)"""
        return os.getenv("REDIS_URL") or None

    # 로깅 설정
    @property
    def log_level(self) -> str:
        """로그 레벨"""
        return os.getenv("LOG_LEVEL", "INFO").upper()

    # 엔드포인트 설정
    @property
    def domain(self) -> str:
        """콜백 URL 을 만들 때 사용하는 외부 도메인"""
        return os.getenv("OAUTH2_DOMAIN", "http://127.0.0.1:5000").rstrip("/")

    @property
    def auth_login_url_prefix(self) -> str:
        """인증 시작 경로 prefix"""
        return os.getenv("OAUTH2_AUTH_LOGIN_URL_PREFIX", "/authorize")

    @property
    def redirect_url_prefix(self) -> str:
        """provider 콜백 경로 prefix"""
        return os.getenv("OAUTH2_REDIRECT_URL_PREFIX", "/callback")

    def redirect_uri(self, provider_id: str) -> str:
        """provider 별 콜백 URL"""
        return f"{self.domain}{self.redirect_url_prefix}/{provider_id}"

    # 로그인/가입 정책
    @property
    def auto_sign_up(self) -> bool:
        """처음 보는 외부 계정을 자동 가입시킬지 여부"""
        return _env_bool("OAUTH2_AUTO_SIGN_UP", "true")

    @property
    def sign_up_url(self) -> Optional[str]:
        """임시 사용자를 보낼 가입 페이지"""
        return os.getenv("OAUTH2_SIGN_UP_URL", "/signUp.html") or None

    @property
    def default_authorities(self) -> List[str]:
        """자동 가입 사용자 권한"""
        value = os.getenv("OAUTH2_DEFAULT_AUTHORITIES", "ROLE_USER")
        return [item.strip() for item in value.split(",") if item.strip()]

    @property
    def temporary_user_password(self) -> str:
        """임시 사용자 공용 비밀번호"""
        return os.getenv("OAUTH2_TEMPORARY_USER_PASSWORD", "")

    @property
    def temporary_user_authorities(self) -> List[str]:
        """임시 사용자 권한"""
        value = os.getenv("OAUTH2_TEMPORARY_USER_AUTHORITIES", "ROLE_TEMPORARY_USER")
        return [item.strip() for item in value.split(",") if item.strip()]

    # state 설정
    @property
    def ignore_check_state(self) -> bool:
        """콜백 state 검증 생략 여부"""
        return _env_bool("OAUTH2_IGNORE_CHECK_STATE", "false")

    @property
    def state_timeout_seconds(self) -> int:
        """state / 인증 컨텍스트 유효 시간(초)"""
        return int(os.getenv("OAUTH2_STATE_TIMEOUT_SECONDS", "180"))

    @property
    def state_cache_type(self) -> str:
        """state 캐시 백엔드 (memory, redis)"""
        return os.getenv("OAUTH2_STATE_CACHE_TYPE", "memory").lower()

    @property
    def state_cache_key_strategy(self) -> str:
        """state 캐시 키 전략 (uuid, provider_id)"""
        return os.getenv("OAUTH2_STATE_CACHE_KEY_STRATEGY", "uuid").lower()

    @property
    def state_cache_key_prefix(self) -> str:
        """Redis state 캐시 키 prefix"""
        return os.getenv("OAUTH2_STATE_CACHE_KEY_PREFIX", "AUTH2_STATE:")

    # 토큰 갱신 작업 설정
    @property
    def enable_auth_token_table(self) -> bool:
        """auth_token 테이블 사용 여부"""
        return _env_bool("OAUTH2_ENABLE_AUTH_TOKEN_TABLE", "true")

    @property
    def enable_refresh_token_job(self) -> bool:
        """토큰 갱신 스케줄러 사용 여부"""
        return _env_bool("OAUTH2_ENABLE_REFRESH_TOKEN_JOB", "false")

    @property
    def refresh_token_job_cron(self) -> str:
        """토큰 갱신 작업 cron 표현식 (5 필드)"""
        return os.getenv("OAUTH2_REFRESH_TOKEN_JOB_CRON", "* 2 * * *")

    @property
    def batch_count(self) -> int:
        """배치당 토큰 id 범위 크기"""
        return int(os.getenv("OAUTH2_BATCH_COUNT", "1000"))

    @property
    def remaining_expire_in_hours(self) -> int:
        """만료까지 남은 시간이 이 값보다 작은 토큰을 갱신"""
        return int(os.getenv("OAUTH2_REMAINING_EXPIRE_IN_HOURS", "24"))

    @property
    def refresh_token_pool_size(self) -> int:
        """토큰 갱신 풀 최대 동시 작업 수"""
        return int(os.getenv("REFRESH_TOKEN_POOL_SIZE", str(os.cpu_count() or 1)))

    @property
    def refresh_token_queue_capacity(self) -> int:
        """토큰 갱신 풀 대기열 크기"""
        default = self.refresh_token_pool_size * 2
        return int(os.getenv("REFRESH_TOKEN_QUEUE_CAPACITY", str(default)))

    @property
    def connection_update_pool_size(self) -> int:
        """connection 갱신 풀 최대 동시 작업 수"""
        return int(os.getenv("CONNECTION_UPDATE_POOL_SIZE", str(os.cpu_count() or 1)))

    # 타임아웃 설정
    @property
    def http_timeout_ms(self) -> int:
        """provider HTTP 요청 타임아웃(밀리초)"""
        return int(os.getenv("HTTP_TIMEOUT_MS", "3000"))

    @property
    def http_foreign_timeout_ms(self) -> int:
        """해외 provider HTTP 요청 타임아웃(밀리초)"""
        return int(os.getenv("HTTP_FOREIGN_TIMEOUT_MS", "15000"))

    @property
    def http_proxy_url(self) -> Optional[str]:
        """provider 호출용 프록시"""
        return os.getenv("HTTP_PROXY_URL") or None

    # Provider 설정
    @property
    def provider_ids(self) -> List[str]:
        """설정된 provider id 목록"""
        value = os.getenv("OAUTH2_PROVIDERS", "")
        return [item.strip() for item in value.split(",") if item.strip()]

    def provider_settings(self, provider_id: str) -> Dict[str, Any]:
        """
        provider 별 원시 설정값을 반환

        Args:
            provider_id: provider 식별자

        Returns:
            Dict[str, Any]: kind, client_id, client_secret, scopes, 엔드포인트 URL 등
        """
        prefix = f"OAUTH2_{provider_id.upper()}_"
        scopes = os.getenv(f"{prefix}SCOPES", "")
        return {
            "provider_id": provider_id,
            "kind": os.getenv(f"{prefix}KIND", provider_id).lower(),
            "client_id": os.getenv(f"{prefix}CLIENT_ID"),
            "client_secret": os.getenv(f"{prefix}CLIENT_SECRET"),
            "scopes": [s.strip() for s in scopes.replace(",", " ").split() if s.strip()],
            "authorize_url": os.getenv(f"{prefix}AUTHORIZE_URL"),
            "token_url": os.getenv(f"{prefix}TOKEN_URL"),
            "user_info_url": os.getenv(f"{prefix}USER_INFO_URL"),
            "refresh_supported": _env_bool(f"{prefix}REFRESH_SUPPORTED", "true"),
            "redirect_uri": self.redirect_uri(provider_id),
        }

    def get_setting(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """임의의 환경 변수 값을 가져오기"""
        return os.getenv(key, default)

    def to_dict(self) -> dict:
        """설정을 딕셔너리로 반환 (민감한 정보 제외)"""
        return {
            "database_path": self.database_path,
            "redis_configured": bool(self.redis_url),
            "log_level": self.log_level,
            "domain": self.domain,
            "auth_login_url_prefix": self.auth_login_url_prefix,
            "redirect_url_prefix": self.redirect_url_prefix,
            "auto_sign_up": self.auto_sign_up,
            "sign_up_url": self.sign_up_url,
            "default_authorities": self.default_authorities,
            "temporary_user_authorities": self.temporary_user_authorities,
            "ignore_check_state": self.ignore_check_state,
            "state_timeout_seconds": self.state_timeout_seconds,
            "state_cache_type": self.state_cache_type,
            "state_cache_key_strategy": self.state_cache_key_strategy,
            "enable_auth_token_table": self.enable_auth_token_table,
            "enable_refresh_token_job": self.enable_refresh_token_job,
            "refresh_token_job_cron": self.refresh_token_job_cron,
            "batch_count": self.batch_count,
            "remaining_expire_in_hours": self.remaining_expire_in_hours,
            "http_timeout_ms": self.http_timeout_ms,
            "http_foreign_timeout_ms": self.http_foreign_timeout_ms,
            "providers": self.provider_ids,
        }


@lru_cache(maxsize=1)
def get_config() -> Config:
    """
    설정 인스턴스를 반환하는 레이지 싱글톤 함수

    Returns:
        Config: 설정 인스턴스
    """
    return Config()
