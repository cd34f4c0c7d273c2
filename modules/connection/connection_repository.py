"""
Connection Repository - user_connection 테이블 CRUD 및 암호화 처리

rank 는 (user_id, provider_id) 별로 1부터 증가하며,
BEGIN IMMEDIATE 트랜잭션 안에서 계산과 삽입이 함께 이루어집니다.
"""

import sqlite3
from datetime import datetime, timezone
from typing import List, Optional

from infra.core.database import DatabaseManager, get_database_manager
from infra.core.logger import get_logger
from infra.core.token_crypto import TokenCipher, get_token_cipher

from modules.provider.provider_schema import TokenRecord

from .connection_schema import Connection

logger = get_logger(__name__)


class ConnectionRepository:
    """연결 데이터 저장소"""

    TABLE = "user_connection"

    def __init__(
        self,
        db: Optional[DatabaseManager] = None,
        cipher: Optional[TokenCipher] = None,
    ):
        self.db = db or get_database_manager()
        self.cipher = cipher or get_token_cipher()

    def add_connection(self, connection: Connection) -> Connection:
        """
        연결 추가 (rank 자동 할당)

        Args:
            connection: 추가할 연결 (rank 는 무시됨)

        Returns:
            Connection: rank 가 채워진 연결
        """
        now = datetime.now(timezone.utc).isoformat()

        with self.db.transaction(immediate=True):
            row = self.db.fetch_one(
                f"""
                SELECT COALESCE(MAX(rank) + 1, 1) AS next_rank FROM {self.TABLE}
                WHERE user_id = ? AND provider_id = ?
                """,
                (connection.user_id, connection.provider_id),
            )
            rank = row["next_rank"]

            self.db.insert(
                self.TABLE,
                {
                    "user_id": connection.user_id,
                    "provider_id": connection.provider_id,
                    "provider_user_id": connection.provider_user_id,
                    "rank": rank,
                    "display_name": connection.display_name,
                    "profile_url": connection.profile_url,
                    "image_url": connection.image_url,
                    "access_token": self.cipher.encrypt(connection.access_token),
                    "token_id": connection.token_id,
                    "refresh_token": self.cipher.encrypt(connection.refresh_token),
                    "expire_time": connection.expire_time,
                    "created_at": now,
                    "updated_at": now,
                },
            )

        logger.info(
            f"연결 추가 완료: user_id={connection.user_id}, "
            f"provider={connection.provider_id}, rank={rank}"
        )
        return connection.model_copy(update={"rank": rank})

    def update_connection(self, connection: Connection) -> int:
        """
        연결 정보 전체 갱신 ((user_id, provider_id, provider_user_id) 기준)

        Returns:
            int: 갱신된 행 수
        """
        return self.db.update(
            self.TABLE,
            {
                "display_name": connection.display_name,
                "profile_url": connection.profile_url,
                "image_url": connection.image_url,
                "access_token": self.cipher.encrypt(connection.access_token),
                "token_id": connection.token_id,
                "refresh_token": self.cipher.encrypt(connection.refresh_token),
                "expire_time": connection.expire_time,
                "updated_at": datetime.now(timezone.utc).isoformat(),
            },
            "user_id = ? AND provider_id = ? AND provider_user_id = ?",
            (connection.user_id, connection.provider_id, connection.provider_user_id),
        )

    def update_connection_by_token_id(self, record: TokenRecord) -> int:
        """
        갱신된 토큰을 해당 토큰을 참조하는 연결들에 반영

        Returns:
            int: 갱신된 행 수
        """
        return self.db.update(
            self.TABLE,
            {
                "access_token": self.cipher.encrypt(record.access_token),
                "refresh_token": self.cipher.encrypt(record.refresh_token),
                "expire_time": record.expire_time,
                "updated_at": datetime.now(timezone.utc).isoformat(),
            },
            "token_id = ?",
            (record.id,),
        )

    def remove_connection(self, user_id: str, provider_id: str, provider_user_id: str) -> int:
        """연결 삭제"""
        return self.db.delete(
            self.TABLE,
            "user_id = ? AND provider_id = ? AND provider_user_id = ?",
            (user_id, provider_id, provider_user_id),
        )

    def get_connection(
        self, user_id: str, provider_id: str, provider_user_id: str
    ) -> Optional[Connection]:
        """키로 연결 조회"""
        row = self.db.fetch_one(
            f"""
            SELECT * FROM {self.TABLE}
            WHERE user_id = ? AND provider_id = ? AND provider_user_id = ?
            """,
            (user_id, provider_id, provider_user_id),
        )
        return self._row_to_connection(row) if row else None

    def find_connections_by_provider_user(
        self, provider_id: str, provider_user_id: str
    ) -> List[Connection]:
        """외부 계정에 연결된 모든 연결 조회"""
        rows = self.db.fetch_all(
            f"""
            SELECT * FROM {self.TABLE}
            WHERE provider_id = ? AND provider_user_id = ?
            ORDER BY rank
            """,
            (provider_id, provider_user_id),
        )
        return [self._row_to_connection(row) for row in rows]

    def find_connections_by_user(
        self, user_id: str, provider_id: Optional[str] = None
    ) -> List[Connection]:
        """로컬 사용자의 연결 조회 (provider 지정 가능)"""
        if provider_id:
            rows = self.db.fetch_all(
                f"""
                SELECT * FROM {self.TABLE}
                WHERE user_id = ? AND provider_id = ?
                ORDER BY provider_id, rank
                """,
                (user_id, provider_id),
            )
        else:
            rows = self.db.fetch_all(
                f"SELECT * FROM {self.TABLE} WHERE user_id = ? ORDER BY provider_id, rank",
                (user_id,),
            )
        return [self._row_to_connection(row) for row in rows]

    def _row_to_connection(self, row: sqlite3.Row) -> Connection:
        return Connection(
            user_id=row["user_id"],
            provider_id=row["provider_id"],
            provider_user_id=row["provider_user_id"],
            rank=row["rank"],
            display_name=row["display_name"],
            profile_url=row["profile_url"],
            image_url=row["image_url"],
            access_token=self.cipher.decrypt(row["access_token"]),
            refresh_token=self.cipher.decrypt(row["refresh_token"]),
            expire_time=row["expire_time"],
            token_id=row["token_id"],
            created_at=datetime.fromisoformat(row["created_at"]) if row["created_at"] else None,
            updated_at=datetime.fromisoformat(row["updated_at"]) if row["updated_at"] else None,
        )
