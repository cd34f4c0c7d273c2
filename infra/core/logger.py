"""
Auth2 프로젝트의 로거 진입점

프로젝트 전반에서 사용할 표준화된 로거, 요청 추적 id, 민감 정보 마스킹 도구를 제공합니다.
"""

import logging
from typing import Optional

from .logging_config import get_logger as get_configured_logger
from .logging_config import get_request_id, request_id_context


def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """
    프로젝트용 로거를 반환합니다.

    Args:
        name: 로거 이름 (일반적으로 모듈명)
        level: 로그 레벨 (DEBUG, INFO, WARNING, ERROR, CRITICAL)

    Returns:
        설정된 로거 인스턴스
    """
    return get_configured_logger(name, level)


def mask(value: Optional[str], visible: int = 8) -> str:
    """토큰/state 같은 비밀값을 로그용으로 잘라서 반환"""
    if not value:
        return "None"
    if len(value) <= visible:
        return "***"
    return f"{value[:visible]}..."


__all__ = ["get_logger", "get_request_id", "mask", "request_id_context"]
