"""
Auth2 프로젝트의 표준 예외 클래스 정의

프로젝트 전반에서 사용할 구조화된 예외 계층을 제공합니다.
모든 사용자 정의 예외는 Auth2Error를 상속받습니다.
"""

from typing import Optional, Dict, Any


class Auth2Error(Exception):
    """Auth2 프로젝트의 최상위 예외 클래스"""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def __str__(self) -> str:
        if self.error_code:
            return f"[{self.error_code}] {self.message}"
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """예외 정보를 딕셔너리로 반환"""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "details": self.details,
        }


class DatabaseError(Auth2Error):
    """데이터베이스 관련 오류"""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        table: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.get("details", {})
        if operation:
            details["operation"] = operation
        if table:
            details["table"] = table

        super().__init__(
            message=message,
            error_code=kwargs.get("error_code", "DB_ERROR"),
            details=details,
        )


class DatabaseConnectionError(DatabaseError):
    """데이터베이스 연결 오류"""

    def __init__(self, message: str = "데이터베이스 연결에 실패했습니다", **kwargs):
        kwargs.setdefault("error_code", "DB_CONNECTION_ERROR")
        super().__init__(message=message, **kwargs)


class ConfigurationError(Auth2Error):
    """설정 관련 오류 (알 수 없는 provider, 잘못된 설정값 등)"""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        provider_id: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.get("details", {})
        if config_key:
            details["config_key"] = config_key
        if provider_id:
            details["provider_id"] = provider_id

        super().__init__(
            message=message,
            error_code=kwargs.get("error_code", "CONFIG_ERROR"),
            details=details,
        )


class CsrfStateError(Auth2Error):
    """state 누락/만료/불일치 오류"""

    def __init__(
        self,
        message: str = "유효하지 않은 state 입니다",
        provider_id: Optional[str] = None,
        stage: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.get("details", {})
        if provider_id:
            details["provider_id"] = provider_id
        if stage:
            details["stage"] = stage

        super().__init__(
            message=message,
            error_code=kwargs.get("error_code", "CSRF_STATE_ERROR"),
            details=details,
        )


class ProviderProtocolError(Auth2Error):
    """provider 응답이 비정상이거나 형식이 잘못된 경우"""

    def __init__(
        self,
        message: str,
        provider_id: Optional[str] = None,
        api_endpoint: Optional[str] = None,
        status_code: Optional[int] = None,
        stage: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.get("details", {})
        if provider_id:
            details["provider_id"] = provider_id
        if api_endpoint:
            details["api_endpoint"] = api_endpoint
        if status_code:
            details["status_code"] = status_code
        if stage:
            details["stage"] = stage

        super().__init__(
            message=message,
            error_code=kwargs.get("error_code", "PROVIDER_PROTOCOL_ERROR"),
            details=details,
        )


class UsernameExhaustedError(Auth2Error):
    """자동 가입 시 모든 후보 username 이 이미 사용 중인 경우"""

    def __init__(
        self,
        message: str = "사용 가능한 username 이 없습니다",
        candidates: Optional[list] = None,
        **kwargs
    ):
        details = kwargs.get("details", {})
        if candidates:
            details["candidates"] = list(candidates)

        super().__init__(
            message=message,
            error_code=kwargs.get("error_code", "USERNAME_USED"),
            details=details,
        )


class BindingError(Auth2Error):
    """외부 계정이 이미 다른 로컬 사용자에게 연결된 경우"""

    def __init__(
        self,
        message: str,
        provider_id: Optional[str] = None,
        user_id: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.get("details", {})
        if provider_id:
            details["provider_id"] = provider_id
        if user_id:
            details["user_id"] = user_id

        super().__init__(
            message=message,
            error_code=kwargs.get("error_code", "BINDING_ERROR"),
            details=details,
        )


class PersistenceError(Auth2Error):
    """토큰 교환 이후 connection/토큰 저장 실패"""

    def __init__(
        self,
        message: str = "연결 정보 저장에 실패했습니다",
        orphaned_token_id: Optional[int] = None,
        provider_id: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.get("details", {})
        if orphaned_token_id is not None:
            details["orphaned_token_id"] = orphaned_token_id
        if provider_id:
            details["provider_id"] = provider_id

        super().__init__(
            message=message,
            error_code=kwargs.get("error_code", "REGISTER_FAILURE"),
            details=details,
        )
        self.orphaned_token_id = orphaned_token_id


class TokenError(Auth2Error):
    """토큰 관련 오류"""

    def __init__(
        self,
        message: str,
        provider_id: Optional[str] = None,
        token_id: Optional[int] = None,
        **kwargs
    ):
        details = kwargs.get("details", {})
        if provider_id:
            details["provider_id"] = provider_id
        if token_id is not None:
            details["token_id"] = token_id

        super().__init__(
            message=message,
            error_code=kwargs.get("error_code", "TOKEN_ERROR"),
            details=details,
        )


class RefreshUnsupportedError(TokenError):
    """provider 가 refresh 를 지원하지 않거나 refresh token 을 거부한 경우"""

    def __init__(self, message: str = "토큰 갱신을 지원하지 않습니다", **kwargs):
        kwargs.setdefault("error_code", "REFRESH_UNSUPPORTED")
        super().__init__(message=message, **kwargs)


class RefreshTransientError(TokenError):
    """일시적인 갱신 실패 (네트워크, 타임아웃 등)"""

    def __init__(self, message: str = "토큰 갱신에 일시적으로 실패했습니다", **kwargs):
        kwargs.setdefault("error_code", "REFRESH_TRANSIENT")
        super().__init__(message=message, **kwargs)
