"""
Token Repository - auth_token 테이블 CRUD 및 암호화 처리

access/refresh 토큰은 저장 시 암호화되고 조회 시 복호화됩니다.
"""

import sqlite3
from datetime import datetime, timezone
from typing import List, Optional

from infra.core.database import DatabaseManager, get_database_manager
from infra.core.logger import get_logger
from infra.core.token_crypto import TokenCipher, get_token_cipher

from modules.provider.provider_schema import TokenRecord

logger = get_logger(__name__)


class TokenRepository:
    """토큰 데이터 저장소"""

    TABLE = "auth_token"

    def __init__(
        self,
        db: Optional[DatabaseManager] = None,
        cipher: Optional[TokenCipher] = None,
    ):
        self.db = db or get_database_manager()
        self.cipher = cipher or get_token_cipher()

    def save_token(self, record: TokenRecord) -> TokenRecord:
        """
        토큰 저장

        Args:
            record: 저장할 토큰 (id 는 무시됨)

        Returns:
            TokenRecord: id 가 채워진 토큰
        """
        now = datetime.now(timezone.utc)
        token_id = self.db.insert(
            self.TABLE,
            {
                "provider_id": record.provider_id,
                "access_token": self.cipher.encrypt(record.access_token),
                "refresh_token": self.cipher.encrypt(record.refresh_token),
                "token_type": record.token_type,
                "scope": record.scope,
                "expire_time": record.expire_time,
                "enable_refresh": int(record.enable_refresh),
                "updated_at": now.isoformat(),
            },
        )
        logger.debug(f"토큰 저장 완료: token_id={token_id}, provider={record.provider_id}")
        return record.model_copy(update={"id": token_id, "updated_at": now})

    def update_token(self, record: TokenRecord) -> int:
        """
        토큰 갱신 (id 기준)

        Returns:
            int: 갱신된 행 수
        """
        return self.db.update(
            self.TABLE,
            {
                "access_token": self.cipher.encrypt(record.access_token),
                "refresh_token": self.cipher.encrypt(record.refresh_token),
                "token_type": record.token_type,
                "scope": record.scope,
                "expire_time": record.expire_time,
                "enable_refresh": int(record.enable_refresh),
                "updated_at": datetime.now(timezone.utc).isoformat(),
            },
            "id = ?",
            (record.id,),
        )

    def update_enable_refresh(self, token_id: int, enabled: bool) -> int:
        """갱신 대상 여부 변경"""
        return self.db.update(
            self.TABLE,
            {
                "enable_refresh": int(enabled),
                "updated_at": datetime.now(timezone.utc).isoformat(),
            },
            "id = ?",
            (token_id,),
        )

    def get_token(self, token_id: int) -> Optional[TokenRecord]:
        """id 로 토큰 조회"""
        row = self.db.fetch_one(f"SELECT * FROM {self.TABLE} WHERE id = ?", (token_id,))
        return self._row_to_record(row) if row else None

    def get_max_token_id(self) -> int:
        """가장 큰 토큰 id (비어 있으면 0)"""
        row = self.db.fetch_one(f"SELECT MAX(id) AS max_id FROM {self.TABLE}")
        if not row or row["max_id"] is None:
            return 0
        return row["max_id"]

    def find_tokens_to_refresh(
        self, expire_before: int, start_id: int, end_id: int
    ) -> List[TokenRecord]:
        """
        id 범위 안에서 갱신이 필요한 토큰 조회

        Args:
            expire_before: 이 시각(epoch ms) 이전에 만료되는 토큰
            start_id: 시작 id (포함)
            end_id: 끝 id (포함)

        Returns:
            List[TokenRecord]: 갱신 대상 토큰
        """
        rows = self.db.fetch_all(
            f"""
            SELECT * FROM {self.TABLE}
            WHERE enable_refresh = 1
              AND expire_time <> -1
              AND expire_time < ?
              AND id BETWEEN ? AND ?
            ORDER BY id
            """,
            (expire_before, start_id, end_id),
        )
        return [self._row_to_record(row) for row in rows]

    def _row_to_record(self, row: sqlite3.Row) -> TokenRecord:
        return TokenRecord(
            id=row["id"],
            provider_id=row["provider_id"],
            access_token=self.cipher.decrypt(row["access_token"]),
            refresh_token=self.cipher.decrypt(row["refresh_token"]),
            token_type=row["token_type"],
            scope=row["scope"],
            expire_time=row["expire_time"],
            enable_refresh=bool(row["enable_refresh"]),
            updated_at=datetime.fromisoformat(row["updated_at"]) if row["updated_at"] else None,
        )
