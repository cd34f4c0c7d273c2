"""
Account 모듈 - 로컬 사용자 관리

외부 계정 로그인에서 사용하는 로컬 사용자 조회/자동 가입 기능을 제공합니다.
"""

from .account_schema import LocalIdentity, TemporaryIdentity
from .identity_service import (
    LocalIdentityService,
    SqliteLocalIdentityService,
    generate_usernames,
)

__all__ = [
    "LocalIdentity",
    "TemporaryIdentity",
    "LocalIdentityService",
    "SqliteLocalIdentityService",
    "generate_usernames",
]
