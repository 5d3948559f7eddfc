import sqlite3
import logging
from typing import Any, Dict, List, Optional, Sequence

from .sql_adapter import SQLDatabaseAdapter
from ..storage.sqlite_base import get_sqlite_db_connection

logger = logging.getLogger(__name__)


class SQLiteAdapter(SQLDatabaseAdapter):
    """Adapter for the main (shared) database holding core auth tables."""

    def __init__(self, connection: Optional[sqlite3.Connection] = None, use_plural: bool = True):
        super().__init__(use_plural=use_plural)
        self._connection = connection

    async def _get_connection(self) -> sqlite3.Connection:
        if self._connection is not None:
            return self._connection
        return await get_sqlite_db_connection()

    async def _fetch(self, sql: str, params: Sequence[Any]) -> List[Dict[str, Any]]:
        conn = await self._get_connection()
        cursor = conn.execute(sql, tuple(params))
        return [dict(row) for row in cursor.fetchall()]

    async def _write(self, sql: str, params: Sequence[Any]) -> int:
        conn = await self._get_connection()
        try:
            cursor = conn.execute(sql, tuple(params))
            conn.commit()
        except sqlite3.Error as e:
            logger.error(f"SQLite error executing '{sql}': {e}")
            conn.rollback()
            raise
        return cursor.rowcount
