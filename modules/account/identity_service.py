"""
로컬 사용자 서비스

외부 계정으로 로컬 사용자를 조회/가입시키며, 기본 구현은 users 테이블을 사용합니다.
"""

import sqlite3
from datetime import datetime, timezone
from typing import Any, List, Optional, Protocol

from infra.core.database import DatabaseManager, get_database_manager
from infra.core.logger import get_logger

from modules.provider.provider_schema import ExternalProfile

from .account_schema import LocalIdentity

logger = get_logger(__name__)


class LocalIdentityService(Protocol):
    """로컬 사용자 서비스 인터페이스"""

    def find_by_external_id(
        self, provider_id: str, provider_user_id: str
    ) -> Optional[LocalIdentity]:
        ...

    def load_by_username(self, username: str) -> Optional[LocalIdentity]:
        ...

    def register_from_external(
        self,
        profile: ExternalProfile,
        username: str,
        default_authorities: List[str],
        decoded_state: Any = None,
    ) -> LocalIdentity:
        ...

    def username_exists(self, usernames: List[str]) -> List[bool]:
        ...


def generate_usernames(profile: ExternalProfile) -> List[str]:
    """
    자동 가입용 후보 사용자명 (우선순위 순)

    Returns:
        List[str]: username, username_providerId, username_providerId_providerUserId
    """
    username = profile.username
    return [
        username,
        f"{username}_{profile.provider_id}",
        f"{username}_{profile.provider_id}_{profile.provider_user_id}",
    ]


class SqliteLocalIdentityService:
    """users 테이블 기반 로컬 사용자 서비스"""

    TABLE = "users"

    def __init__(self, db: Optional[DatabaseManager] = None):
        self.db = db or get_database_manager()

    def find_by_external_id(
        self, provider_id: str, provider_user_id: str
    ) -> Optional[LocalIdentity]:
        """외부 계정에 연결된 로컬 사용자 조회 (rank 가 가장 작은 연결 기준)"""
        row = self.db.fetch_one(
            f"""
            SELECT u.* FROM {self.TABLE} u
            JOIN user_connection c ON c.user_id = u.username
            WHERE c.provider_id = ? AND c.provider_user_id = ?
            ORDER BY c.rank
            LIMIT 1
            """,
            (provider_id, provider_user_id),
        )
        return self._row_to_identity(row) if row else None

    def load_by_username(self, username: str) -> Optional[LocalIdentity]:
        row = self.db.fetch_one(
            f"SELECT * FROM {self.TABLE} WHERE username = ?", (username,)
        )
        return self._row_to_identity(row) if row else None

    def register_from_external(
        self,
        profile: ExternalProfile,
        username: str,
        default_authorities: List[str],
        decoded_state: Any = None,
    ) -> LocalIdentity:
        """
        외부 프로필로 로컬 사용자 생성

        Args:
            profile: 외부 프로필
            username: 사용할 사용자명
            default_authorities: 부여할 권한
            decoded_state: 인가 요청 시 인코딩했던 state (기본 구현은 사용하지 않음)

        Returns:
            LocalIdentity: 생성된 사용자
        """
        now = datetime.now(timezone.utc)
        self.db.insert(
            self.TABLE,
            {
                "username": username,
                "password": "",
                "authorities": ",".join(default_authorities),
                "nickname": profile.nickname,
                "avatar": profile.avatar,
                "email": profile.email,
                "created_at": now.isoformat(),
            },
        )
        logger.info(f"외부 계정으로 사용자 생성: username={username}, provider={profile.provider_id}")
        return LocalIdentity(
            username=username,
            authorities=list(default_authorities),
            nickname=profile.nickname,
            avatar=profile.avatar,
            email=profile.email,
            created_at=now,
        )

    def username_exists(self, usernames: List[str]) -> List[bool]:
        """후보 사용자명 각각의 사용 여부"""
        if not usernames:
            return []
        placeholders = ", ".join("?" for _ in usernames)
        rows = self.db.fetch_all(
            f"SELECT username FROM {self.TABLE} WHERE username IN ({placeholders})",
            tuple(usernames),
        )
        taken = {row["username"] for row in rows}
        return [name in taken for name in usernames]

    def _row_to_identity(self, row: sqlite3.Row) -> LocalIdentity:
        authorities = row["authorities"] or ""
        return LocalIdentity(
            username=row["username"],
            authorities=[a for a in authorities.split(",") if a],
            password=row["password"] or "",
            nickname=row["nickname"],
            avatar=row["avatar"],
            email=row["email"],
            created_at=datetime.fromisoformat(row["created_at"]) if row["created_at"] else None,
        )
