"""
state 인코더

provider 로 보내는 state 에 로그인 후 이동할 주소 같은 값을 함께 실어 보냅니다.
"""

import base64
import json
from typing import Any, Dict, Optional, Protocol

from infra.core.exceptions import CsrfStateError


class StateCoder(Protocol):
    """state 인코딩/디코딩 인터페이스"""

    def encode(self, state: str, params: Optional[Dict[str, Any]] = None) -> str:
        ...

    def decode(self, encoded_state: str) -> Any:
        ...


class Base64JsonStateCoder:
    """{"nonce": state, "redirect": 대상} 을 url-safe base64 JSON 으로 인코딩"""

    def __init__(self, redirect_param: str = "redirect"):
        self.redirect_param = redirect_param

    def encode(self, state: str, params: Optional[Dict[str, Any]] = None) -> str:
        payload = {"nonce": state, "redirect": (params or {}).get(self.redirect_param)}
        raw = json.dumps(payload, separators=(",", ":")).encode("utf-8")
        return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")

    def decode(self, encoded_state: str) -> Dict[str, Any]:
        """
        Raises:
            CsrfStateError: 해석할 수 없는 state
        """
        padding = "=" * (-len(encoded_state) % 4)
        try:
            raw = base64.urlsafe_b64decode(encoded_state + padding)
            payload = json.loads(raw.decode("utf-8"))
        except (ValueError, UnicodeDecodeError) as e:
            raise CsrfStateError("state 를 해석할 수 없습니다", error_code="STATE_DECODE_ERROR") from e
        if not isinstance(payload, dict) or "nonce" not in payload:
            raise CsrfStateError("state 형식이 올바르지 않습니다", error_code="STATE_DECODE_ERROR")
        return payload
