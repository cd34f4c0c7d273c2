"""
Auth 모듈의 웹 어댑터 전용 헬퍼 함수들

예외 → HTTP 상태 코드 변환, 로그인 결과 응답 본문 생성,
리다이렉트 대상 검증, 요청 추적 id 검증 등의 기능을 포함합니다.
"""

import re
import urllib.parse
from typing import Any, Dict, Optional

from infra.core.exceptions import (
    Auth2Error,
    BindingError,
    ConfigurationError,
    CsrfStateError,
    PersistenceError,
    ProviderProtocolError,
    UsernameExhaustedError,
)

# 순서대로 검사 (하위 클래스 먼저)
_ERROR_STATUS = (
    (ConfigurationError, 404),
    (CsrfStateError, 403),
    (ProviderProtocolError, 502),
    (UsernameExhaustedError, 409),
    (BindingError, 409),
    (PersistenceError, 500),
)


def auth_error_status(error: Auth2Error) -> int:
    """
    예외에 해당하는 HTTP 상태 코드를 반환합니다.

    Args:
        error: Auth2Error 인스턴스

    Returns:
        HTTP 상태 코드 (알 수 없는 예외는 500)
    """
    for error_type, status in _ERROR_STATUS:
        if isinstance(error, error_type):
            return status
    return 500


def auth_safe_redirect(target: Optional[str]) -> Optional[str]:
    """
    같은 사이트 안의 경로만 리다이렉트 대상으로 허용합니다.

    브라우저는 경로의 백슬래시를 / 로 바꾸고 탭/개행은 지운 뒤 해석하므로
    "/" 다음에 백슬래시가 오는 값도 다른 호스트로 이동합니다. 이런 값은 거부합니다.

    Args:
        target: 리다이렉트 대상

    Returns:
        허용되면 대상 경로, 아니면 None
    """
    if not target or not target.startswith("/") or target[1:2] in ("/", "\\"):
        return None
    if any(ord(ch) < 0x20 or ch == "\x7f" for ch in target):
        return None

    parts = urllib.parse.urlsplit(target.replace("\\", "/"))
    if parts.scheme or parts.netloc:
        return None
    return target


def auth_outcome_payload(outcome: Any) -> Dict[str, Any]:
    """로그인 결과를 응답 본문으로 변환 (비밀번호 제외)"""
    identity = outcome.identity
    return {
        "kind": outcome.kind,
        "username": identity.username,
        "authorities": list(identity.authorities),
        "provider_id": outcome.profile.provider_id,
        "provider_user_id": outcome.profile.provider_user_id,
    }


def auth_outcome_redirect(outcome: Any) -> Optional[str]:
    """decoded state 에 담긴 redirect 값 추출"""
    decoded_state = outcome.decoded_state
    if isinstance(decoded_state, dict):
        return auth_safe_redirect(decoded_state.get("redirect"))
    return None


_REQUEST_ID_PATTERN = re.compile(r"[A-Za-z0-9._-]{1,64}")


def auth_request_id(header_value: Optional[str]) -> Optional[str]:
    """
    클라이언트가 보낸 X-Request-Id 를 추적 id 로 쓸 수 있으면 반환합니다.

    로그에 그대로 찍히므로 영숫자, '.', '_', '-' 로 된 64자 이하 값만 허용합니다.
    """
    if header_value and _REQUEST_ID_PATTERN.fullmatch(header_value):
        return header_value
    return None
