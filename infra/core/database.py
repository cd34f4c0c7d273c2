"""
SQLite 데이터베이스 관리

users / auth_token / user_connection 테이블을 담는 SQLite 연결을 관리합니다.
- 최초 연결 시 migrations/initial_schema.sql 로 스키마 생성
- WAL 모드, 스레드 간 공유 연결 (RLock 으로 직렬화)
- transaction(immediate=True) 로 쓰기 락을 먼저 잡는 트랜잭션 (중첩 시 SAVEPOINT)
"""

import sqlite3
import threading
from contextlib import contextmanager
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from .exceptions import DatabaseConnectionError, DatabaseError
from .logger import get_logger

logger = get_logger(__name__)

SCHEMA_PATH = Path(__file__).parent.parent / "migrations" / "initial_schema.sql"

Params = Union[tuple, list, dict, None]


class DatabaseManager:
    """SQLite 연결과 쿼리 실행을 담당"""

    def __init__(self, database_path: Optional[str] = None):
        """
        Args:
            database_path: DB 파일 경로 (None 이면 DATABASE_PATH 설정값)
        """
        if database_path is None:
            from .config import get_config

            database_path = get_config().database_path
        self.database_path = database_path
        self._connection: Optional[sqlite3.Connection] = None
        # 트랜잭션 전체를 한 스레드가 점유
        self._lock = threading.RLock()
        self._tx_depth = 0

    def _get_connection(self) -> sqlite3.Connection:
        with self._lock:
            if self._connection is not None:
                return self._connection
            try:
                connection = sqlite3.connect(
                    self.database_path,
                    check_same_thread=False,
                    timeout=30.0,
                    isolation_level=None,  # 트랜잭션은 transaction() 에서 직접 관리
                )
                connection.row_factory = sqlite3.Row
                connection.execute("PRAGMA foreign_keys = ON")
                connection.execute("PRAGMA journal_mode = WAL")
            except sqlite3.Error as e:
                raise DatabaseConnectionError(
                    f"데이터베이스 연결 실패: {str(e)}",
                    details={"database_path": self.database_path},
                ) from e

            self._ensure_schema(connection)
            self._connection = connection
            logger.info(f"데이터베이스 연결 성공: {self.database_path}")
            return connection

    def _ensure_schema(self, connection: sqlite3.Connection) -> None:
        exists = connection.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='user_connection'"
        ).fetchone()
        if exists:
            return

        try:
            schema_sql = SCHEMA_PATH.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise DatabaseError(
                f"스키마 파일을 찾을 수 없습니다: {SCHEMA_PATH}", operation="load_schema_file"
            ) from e

        try:
            connection.executescript(schema_sql)
        except sqlite3.Error as e:
            raise DatabaseError(f"스키마 초기화 실패: {str(e)}", operation="initialize_schema") from e
        logger.info(f"데이터베이스 스키마 초기화 완료: {SCHEMA_PATH.name}")

    def _execute(
        self,
        operation: str,
        query: str,
        params: Params,
        handle: Callable[[sqlite3.Cursor], Any],
        table: Optional[str] = None,
    ) -> Any:
        connection = self._get_connection()
        with self._lock:
            cursor = connection.cursor()
            try:
                cursor.execute(query, params or ())
                return handle(cursor)
            except sqlite3.Error as e:
                logger.error(f"{operation} 실패: {str(e)} ({query.strip()[:100]})")
                raise DatabaseError(
                    f"{operation} 실패: {str(e)}",
                    operation=operation,
                    table=table,
                    details={"query": query.strip()[:200]},
                ) from e
            finally:
                cursor.close()

    def fetch_one(self, query: str, params: Params = None) -> Optional[sqlite3.Row]:
        """단일 행 조회"""
        return self._execute("fetch_one", query, params, lambda c: c.fetchone())

    def fetch_all(self, query: str, params: Params = None) -> List[sqlite3.Row]:
        """전체 행 조회"""
        return self._execute("fetch_all", query, params, lambda c: c.fetchall())

    def insert(self, table: str, data: Dict[str, Any]) -> int:
        """
        행 삽입

        Returns:
            int: 삽입된 행의 id
        """
        columns = ", ".join(data.keys())
        placeholders = ", ".join("?" for _ in data)
        query = f"INSERT INTO {table} ({columns}) VALUES ({placeholders})"
        return self._execute("insert", query, list(data.values()), lambda c: c.lastrowid, table)

    def update(
        self,
        table: str,
        data: Dict[str, Any],
        where_clause: str,
        where_params: Optional[tuple] = None,
    ) -> int:
        """
        행 갱신

        Returns:
            int: 갱신된 행 수
        """
        set_clause = ", ".join(f"{column} = ?" for column in data)
        query = f"UPDATE {table} SET {set_clause} WHERE {where_clause}"
        params = list(data.values()) + list(where_params or ())
        return self._execute("update", query, params, lambda c: c.rowcount, table)

    def delete(self, table: str, where_clause: str, where_params: Optional[tuple] = None) -> int:
        """
        행 삭제

        Returns:
            int: 삭제된 행 수
        """
        query = f"DELETE FROM {table} WHERE {where_clause}"
        return self._execute("delete", query, where_params, lambda c: c.rowcount, table)

    def table_exists(self, table_name: str) -> bool:
        return (
            self.fetch_one("SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table_name,))
            is not None
        )

    @contextmanager
    def transaction(self, immediate: bool = False):
        """
        트랜잭션 컨텍스트

        중첩 호출은 SAVEPOINT 로 처리됩니다. 블록 안에서 await 하면 안 됩니다.

        Args:
            immediate: True 면 BEGIN IMMEDIATE 로 쓰기 락을 먼저 확보
        """
        connection = self._get_connection()

        with self._lock:
            depth = self._tx_depth
            savepoint = f"sp_{depth}"
            try:
                if depth == 0:
                    connection.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
                else:
                    connection.execute(f"SAVEPOINT {savepoint}")
            except sqlite3.Error as e:
                raise DatabaseError(f"트랜잭션 시작 실패: {str(e)}", operation="begin") from e

            self._tx_depth += 1
            try:
                yield connection
            except Exception as e:
                self._tx_depth -= 1
                if depth == 0:
                    connection.execute("ROLLBACK")
                    logger.warning(f"트랜잭션 롤백됨: {str(e)}")
                else:
                    connection.execute(f"ROLLBACK TO {savepoint}")
                    connection.execute(f"RELEASE {savepoint}")
                raise

            self._tx_depth -= 1
            try:
                connection.execute("COMMIT" if depth == 0 else f"RELEASE {savepoint}")
            except sqlite3.Error as e:
                if depth == 0:
                    connection.execute("ROLLBACK")
                raise DatabaseError(f"트랜잭션 커밋 실패: {str(e)}", operation="commit") from e

    def close(self) -> None:
        """연결 종료"""
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None
                logger.info("데이터베이스 연결 종료됨")


@lru_cache(maxsize=1)
def get_database_manager() -> DatabaseManager:
    """데이터베이스 매니저 레이지 싱글톤"""
    return DatabaseManager()
