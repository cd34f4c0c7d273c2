"""
토큰 저장 시 암호화/복호화를 담당하는 코덱

access/refresh 토큰은 DB 에 Fernet 으로 암호화되어 저장되며,
리포지토리 계층에서만 암복호화가 일어납니다.
"""

from functools import lru_cache
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from .exceptions import ConfigurationError
from .logger import get_logger

logger = get_logger(__name__)


class TokenCipher:
    """Fernet 기반 토큰 암호화 클래스"""

    def __init__(self, encryption_key: Optional[str] = None):
        """
        Args:
            encryption_key: Fernet 키 (None 이면 설정값 사용)
        """
        self._encryption_key = encryption_key
        self._cipher_suite: Optional[Fernet] = None

    def _get_cipher_suite(self) -> Fernet:
        """레이지 로딩으로 암호화 객체 반환"""
        if self._cipher_suite is None:
            key = self._encryption_key
            if key is None:
                from .config import get_config

                key = get_config().encryption_key
            try:
                self._cipher_suite = Fernet(key.encode())
                logger.debug("암호화 객체 초기화 완료")
            except (ValueError, TypeError) as e:
                raise ConfigurationError(
                    f"잘못된 암호화 키입니다: {e}", config_key="ENCRYPTION_KEY"
                ) from e
        return self._cipher_suite

    def encrypt(self, data: Optional[str]) -> Optional[str]:
        """
        토큰을 암호화 (None 은 그대로 반환)

        Args:
            data: 암호화할 문자열

        Returns:
            Optional[str]: 암호화된 문자열 (base64)
        """
        if data is None:
            return None
        return self._get_cipher_suite().encrypt(data.encode()).decode()

    def decrypt(self, encrypted_data: Optional[str]) -> Optional[str]:
        """
        암호화된 토큰을 복호화

        Args:
            encrypted_data: 암호화된 문자열 (base64)

        Returns:
            Optional[str]: 복호화된 문자열
        """
        if encrypted_data is None:
            return None
        try:
            return self._get_cipher_suite().decrypt(encrypted_data.encode()).decode()
        except InvalidToken as e:
            logger.error("토큰 복호화 실패: 키가 다르거나 데이터가 손상되었습니다")
            raise ConfigurationError(
                "토큰 복호화 실패", config_key="ENCRYPTION_KEY"
            ) from e


@lru_cache(maxsize=1)
def get_token_cipher() -> TokenCipher:
    """TokenCipher 레이지 싱글톤"""
    return TokenCipher()
