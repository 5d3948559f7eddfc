from typing import Any, Dict, List, Sequence

from .sql_adapter import SQLDatabaseAdapter
from ..cloudflare.d1_client import CloudflareD1Client


class D1HttpAdapter(SQLDatabaseAdapter):
    """Adapter bound to one tenant database, executing SQL over the D1 query endpoint."""

    def __init__(self, client: CloudflareD1Client, database_id: str, use_plural: bool = True):
        super().__init__(use_plural=use_plural)
        self.client = client
        self.database_id = database_id

    async def _fetch(self, sql: str, params: Sequence[Any]) -> List[Dict[str, Any]]:
        result = await self.client.query(self.database_id, sql, params)
        return list(result.results)

    async def _write(self, sql: str, params: Sequence[Any]) -> int:
        result = await self.client.query(self.database_id, sql, params)
        return result.changes
