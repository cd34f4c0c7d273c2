"""
Connection 모듈 - 로컬 사용자와 외부 계정 연결 저장소

주요 기능:
- 연결 추가 (사용자/provider 별 rank 자동 할당)
- 토큰 저장/갱신 (암호화 저장)
- 자동 가입, 계정 연결/해제, 재로그인 시 갱신
"""

from .connection_repository import ConnectionRepository
from .connection_schema import Connection
from .connection_service import ConnectionService
from .token_repository import TokenRepository

__all__ = [
    "Connection",
    "ConnectionRepository",
    "ConnectionService",
    "TokenRepository",
]
