import sqlite3
import logging
import json
from typing import Optional, List, Dict, Any
from datetime import datetime, timezone
from uuid import uuid4

from .storage_interfaces import AbstractTenantRegistry
from .models import (
    REGISTRY_COLUMN_TYPES,
    MigrationHistoryEntry,
    RegistryFieldType,
    RegistrySchemaOptions,
    TenantMigrationStatus,
    TenantRecord,
    TenantStatus,
    TenantType,
    is_allowed_transition,
)
from ..errors import TenantAlreadyExistsError, TenantNotFoundError
from ..storage.sqlite_base import create_registry_schema, get_sqlite_db_connection

logger = logging.getLogger(__name__)

# Columns update_status may touch besides status itself
UPDATABLE_FIELDS = {
    "database_id",
    "database_name",
    "deleted_at",
    "last_migration_version",
    "migration_history",
}

BASE_COLUMNS = UPDATABLE_FIELDS | {"id", "tenant_id", "tenant_type", "status", "created_at"}


def _to_db_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, list):
        return json.dumps([
            item.model_dump(mode="json") if isinstance(item, MigrationHistoryEntry) else item
            for item in value
        ])
    if isinstance(value, TenantStatus):
        return value.value
    return value


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _from_db_value(value: Any, field_type: RegistryFieldType) -> Any:
    if value is None:
        return None
    if field_type is RegistryFieldType.BOOLEAN:
        return bool(value)
    if field_type is RegistryFieldType.DATE:
        return _parse_datetime(value)
    return value


class SQLiteTenantRegistry(AbstractTenantRegistry):
    """SQLite implementation of the tenant registry, stored in the main database."""

    def __init__(
        self,
        connection: Optional[sqlite3.Connection] = None,
        schema: Optional[RegistrySchemaOptions] = None,
    ):
        """
        Use an explicit connection, or the global main-database connection when None.

        ``schema`` renames the registry table and declares extra columns.
        """
        self._connection = connection
        self.schema = schema or RegistrySchemaOptions()
        clashing = sorted(set(self.schema.fields) & BASE_COLUMNS)
        if clashing:
            raise ValueError(f"Additional registry fields clash with built-in columns: {', '.join(clashing)}")
        self.table_name = self.schema.table_name
        self._table = f'"{self.table_name}"'

    async def initialize(self) -> None:
        """Initialize the registry by ensuring database and table exist."""
        create_registry_schema(
            await self._get_connection(),
            self.table_name,
            {name: REGISTRY_COLUMN_TYPES[field.type] for name, field in self.schema.fields.items()},
        )
        logger.info("SQLiteTenantRegistry initialized.")

    async def teardown(self) -> None:
        """Clean up resources. Connection is managed globally so no action needed."""
        logger.info("SQLiteTenantRegistry teardown (connection managed globally).")

    async def _get_connection(self) -> sqlite3.Connection:
        if self._connection is not None:
            return self._connection
        return await get_sqlite_db_connection()

    async def _execute_query(self, query: str, params: tuple = (), commit: bool = True) -> sqlite3.Cursor:
        """
        Execute a SQL query with proper error handling and transaction management.

        Raises:
            sqlite3.Error: If query execution fails
        """
        conn = await self._get_connection()
        cursor = conn.cursor()
        try:
            cursor.execute(query, params)
            if commit:
                conn.commit()
        except sqlite3.Error as e:
            logger.error(f"SQLite error executing query '{query.strip()}': {e}")
            if commit:
                conn.rollback()
            raise
        return cursor

    async def _fetchone(self, query: str, params: tuple = ()) -> Optional[sqlite3.Row]:
        cursor = await self._execute_query(query, params, commit=False)
        return cursor.fetchone()

    async def _fetchall(self, query: str, params: tuple = ()) -> List[sqlite3.Row]:
        cursor = await self._execute_query(query, params, commit=False)
        return cursor.fetchall()

    def _row_to_record(self, row: Optional[sqlite3.Row]) -> Optional[TenantRecord]:
        """Convert a database row to a TenantRecord, decoding timestamps and history JSON."""
        if not row:
            return None
        history_raw = row["migration_history"]
        history = json.loads(history_raw) if history_raw else []
        return TenantRecord(
            id=row["id"],
            tenant_id=row["tenant_id"],
            tenant_type=TenantType(row["tenant_type"]),
            database_name=row["database_name"],
            database_id=row["database_id"] or "",
            status=TenantStatus(row["status"]),
            created_at=_parse_datetime(row["created_at"]),
            deleted_at=_parse_datetime(row["deleted_at"]),
            last_migration_version=row["last_migration_version"] or "0000",
            migration_history=[MigrationHistoryEntry.model_validate(entry) for entry in history],
            additional_fields={
                name: _from_db_value(row[name], field.type) if name in row.keys() else field.default_value
                for name, field in self.schema.fields.items()
            },
        )

    async def get(self, record_id: str) -> Optional[TenantRecord]:
        row = await self._fetchone(f"SELECT * FROM {self._table} WHERE id = ?", (record_id,))
        return self._row_to_record(row)

    async def find(self, tenant_id: str, tenant_type: TenantType) -> Optional[TenantRecord]:
        query = f"""
            SELECT * FROM {self._table}
            WHERE tenant_id = ? AND tenant_type = ?
            ORDER BY (status != 'deleted') DESC, created_at DESC
            LIMIT 1
        """
        row = await self._fetchone(query, (tenant_id, TenantType(tenant_type).value))
        return self._row_to_record(row)

    async def find_active(self, tenant_id: str, tenant_type: TenantType) -> Optional[TenantRecord]:
        query = f"""
            SELECT * FROM {self._table}
            WHERE tenant_id = ? AND tenant_type = ? AND status = ?
            LIMIT 1
        """
        row = await self._fetchone(query, (tenant_id, TenantType(tenant_type).value, TenantStatus.ACTIVE.value))
        return self._row_to_record(row)

    def _resolve_additional_fields(self, values: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """Apply declared defaults and reject unknown or missing required fields."""
        values = dict(values or {})
        unknown = sorted(set(values) - set(self.schema.fields))
        if unknown:
            raise ValueError(f"Unknown registry field(s): {', '.join(unknown)}")
        resolved: Dict[str, Any] = {}
        for name, field in self.schema.fields.items():
            value = values.get(name, field.default_value)
            if value is None and field.required:
                raise ValueError(f"Registry field '{name}' is required")
            resolved[name] = value
        return resolved

    async def insert(
        self,
        tenant_id: str,
        tenant_type: TenantType,
        database_name: str,
        additional_fields: Optional[Dict[str, Any]] = None
    ) -> TenantRecord:
        record = TenantRecord(
            id=uuid4().hex,
            tenant_id=tenant_id,
            tenant_type=TenantType(tenant_type),
            database_name=database_name,
            database_id="",
            status=TenantStatus.CREATING,
            created_at=datetime.now(timezone.utc),
            additional_fields=self._resolve_additional_fields(additional_fields),
        )
        columns = [
            "id", "tenant_id", "tenant_type", "database_name", "database_id",
            "status", "created_at", "last_migration_version", "migration_history",
            *record.additional_fields,
        ]
        column_sql = ", ".join(f'"{column}"' for column in columns)
        placeholders = ", ".join("?" for _ in columns)
        query = f"INSERT INTO {self._table} ({column_sql}) VALUES ({placeholders})"
        params = (
            record.id,
            record.tenant_id,
            record.tenant_type.value,
            record.database_name,
            record.database_id,
            record.status.value,
            record.created_at.isoformat(),
            record.last_migration_version,
            "[]",
            *(_to_db_value(value) for value in record.additional_fields.values()),
        )
        try:
            await self._execute_query(query, params)
        except sqlite3.IntegrityError as e:
            raise TenantAlreadyExistsError(
                f"A non-deleted tenant database record already exists for {record.tenant_type.value} '{tenant_id}'"
            ) from e
        logger.info(f"Registry: Inserted tenant record {record.id} for {record.tenant_type.value} '{tenant_id}' (creating).")
        return record

    async def update_status(
        self,
        record_id: str,
        status: TenantStatus,
        extra_fields: Optional[Dict[str, Any]] = None
    ) -> bool:
        try:
            status = TenantStatus(status)
            current = await self.get(record_id)
            if current is None:
                logger.warning(f"Registry: Cannot update status of unknown tenant record {record_id}.")
                return False
            if not is_allowed_transition(current.status, status):
                logger.error(
                    f"Registry: Refusing status transition {current.status.value} -> {status.value} "
                    f"for tenant record {record_id}."
                )
                return False

            set_clauses = ["status = ?"]
            params: List[Any] = [status.value]
            for key, value in (extra_fields or {}).items():
                if key not in UPDATABLE_FIELDS and key not in self.schema.fields:
                    logger.warning(f"Registry: Ignoring non-updatable field '{key}' for tenant record {record_id}.")
                    continue
                set_clauses.append(f'"{key}" = ?')
                params.append(_to_db_value(value))

            query = f"UPDATE {self._table} SET {', '.join(set_clauses)} WHERE id = ?"
            params.append(record_id)
            await self._execute_query(query, tuple(params))
            return True
        except Exception as e:
            logger.error(f"Registry: Failed to update tenant record {record_id} to '{status}': {e}", exc_info=True)
            return False

    async def append_migration(
        self,
        record_id: str,
        version: str,
        name: str,
        checksum: Optional[str] = None
    ) -> None:
        record = await self.get(record_id)
        if record is None:
            raise TenantNotFoundError(f"Tenant record {record_id} not found")

        history = list(record.migration_history)
        history.append(MigrationHistoryEntry(version=version, name=name, checksum=checksum))
        query = f"UPDATE {self._table} SET last_migration_version = ?, migration_history = ? WHERE id = ?"
        await self._execute_query(query, (version, _to_db_value(history), record_id))
        logger.info(f"Registry: Recorded migration {version} ({name}) for tenant '{record.tenant_id}'.")

    async def list_tenants(
        self,
        status: Optional[TenantStatus] = None,
        tenant_type: Optional[TenantType] = None,
        skip: int = 0,
        limit: int = 100
    ) -> List[TenantRecord]:
        conditions = []
        params: List[Any] = []
        if status is not None:
            conditions.append("status = ?")
            params.append(TenantStatus(status).value)
        if tenant_type is not None:
            conditions.append("tenant_type = ?")
            params.append(TenantType(tenant_type).value)

        where_sql = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        query = f"SELECT * FROM {self._table} {where_sql} ORDER BY created_at DESC LIMIT ? OFFSET ?"
        params.extend([limit, skip])
        rows = await self._fetchall(query, tuple(params))
        return [self._row_to_record(row) for row in rows]

    async def get_migration_status(self, tenant_id: str, tenant_type: TenantType) -> Optional[TenantMigrationStatus]:
        record = await self.find(tenant_id, tenant_type)
        if record is None:
            return None
        return TenantMigrationStatus(
            tenant_id=record.tenant_id,
            current_version=record.last_migration_version or "unknown",
            migration_history=record.migration_history,
        )


# Singleton instance management
_sqlite_tenant_registry_instance: Optional[SQLiteTenantRegistry] = None


async def get_sqlite_tenant_registry() -> SQLiteTenantRegistry:
    """
    Get or create the shared SQLiteTenantRegistry bound to the main database.
    """
    global _sqlite_tenant_registry_instance
    if _sqlite_tenant_registry_instance is None:
        _sqlite_tenant_registry_instance = SQLiteTenantRegistry()
        await _sqlite_tenant_registry_instance.initialize()
    return _sqlite_tenant_registry_instance
