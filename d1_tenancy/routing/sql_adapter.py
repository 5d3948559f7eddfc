# d1_tenancy/routing/sql_adapter.py
from abc import abstractmethod
from typing import Any, Dict, List, Optional, Sequence
from uuid import uuid4

from . import sql_builder
from .adapter_interfaces import AbstractDatabaseAdapter
from .models import SortBy, Where, WhereInput, normalize_where


class SQLDatabaseAdapter(AbstractDatabaseAdapter):
    """
    Database adapter that renders every operation to parameterised SQL.

    Subclasses only supply the transport: ``_fetch`` for statements that
    return rows and ``_write`` for statements that return a change count.
    """

    def __init__(self, use_plural: bool = True):
        self.use_plural = use_plural

    @abstractmethod
    async def _fetch(self, sql: str, params: Sequence[Any]) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def _write(self, sql: str, params: Sequence[Any]) -> int:
        pass

    def _table(self, model: str) -> str:
        return sql_builder.table_name(model, self.use_plural)

    async def create(self, model: str, data: Dict[str, Any]) -> Dict[str, Any]:
        record = dict(data)
        record.setdefault("id", uuid4().hex)
        sql, params = sql_builder.build_insert(self._table(model), record)
        await self._write(sql, params)
        created = await self.find_one(model, [Where(field="id", value=record["id"])])
        return created if created is not None else record

    async def find_one(self, model: str, where: WhereInput) -> Optional[Dict[str, Any]]:
        rows = await self.find_many(model, where, limit=1)
        return rows[0] if rows else None

    async def find_many(
        self,
        model: str,
        where: Optional[WhereInput] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        sort_by: Optional[SortBy] = None,
    ) -> List[Dict[str, Any]]:
        sql, params = sql_builder.build_select(self._table(model), normalize_where(where), limit, offset, sort_by)
        rows = await self._fetch(sql, params)
        return [sql_builder.row_to_record(row) for row in rows]

    async def count(self, model: str, where: Optional[WhereInput] = None) -> int:
        sql, params = sql_builder.build_count(self._table(model), normalize_where(where))
        rows = await self._fetch(sql, params)
        if not rows:
            return 0
        return int(rows[0].get("count", 0))

    async def update(self, model: str, where: WhereInput, update: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        existing = await self.find_one(model, where)
        if existing is None:
            return None
        id_clause = [Where(field="id", value=existing["id"])]
        sql, params = sql_builder.build_update(self._table(model), id_clause, update)
        await self._write(sql, params)
        return await self.find_one(model, id_clause)

    async def update_many(self, model: str, where: WhereInput, update: Dict[str, Any]) -> int:
        sql, params = sql_builder.build_update(self._table(model), normalize_where(where), update)
        return await self._write(sql, params)

    async def delete(self, model: str, where: WhereInput) -> None:
        sql, params = sql_builder.build_delete(self._table(model), normalize_where(where))
        await self._write(sql, params)

    async def delete_many(self, model: str, where: WhereInput) -> int:
        sql, params = sql_builder.build_delete(self._table(model), normalize_where(where))
        return await self._write(sql, params)
