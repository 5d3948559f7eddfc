# d1_tenancy/migrations/schema_initializer.py
import asyncio
import inspect
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Tuple, Union

from .models import MigrationFile, ResolvableValue, TenantMigrationConfig
from ..cloudflare.d1_client import CloudflareD1Client
from ..errors import (
    InvalidSchemaError,
    MigrationFailedError,
    ProviderError,
)

logger = logging.getLogger(__name__)

STATEMENT_BREAKPOINT = "--> statement-breakpoint"


async def resolve_value(value: ResolvableValue) -> str:
    """
    Resolve a string, a function returning a string, or an async function
    returning a string into a concrete string.

    Raises:
        InvalidSchemaError: if the value (or what it produces) is not a string
    """
    if isinstance(value, str):
        return value
    if callable(value):
        result = value()
        if inspect.isawaitable(result):
            result = await result
        if isinstance(result, str):
            return result
        raise InvalidSchemaError(f"Resolver returned {type(result).__name__}, expected str")
    raise InvalidSchemaError(f"Invalid value type: {type(value).__name__}")


def split_sql_statements(sql: str) -> List[str]:
    """Split a migration blob on the statement breakpoint marker, dropping empty segments."""
    return [statement.strip() for statement in sql.split(STATEMENT_BREAKPOINT) if statement.strip()]


async def execute_d1_sql(client: CloudflareD1Client, database_id: str, sql: str) -> None:
    """
    Execute every statement of ``sql`` against a tenant database, in order.

    Statements run one at a time and are not wrapped in a transaction: a
    failure part-way leaves the earlier statements applied.
    """
    statements = split_sql_statements(sql)
    if client.config.debug_logs:
        logger.debug(f"D1: Executing {len(statements)} SQL statement(s) on tenant database {database_id}")
        for statement in statements:
            logger.debug(f"  > {statement}")

    for index, statement in enumerate(statements, start=1):
        try:
            await client.query(database_id, statement)
        except ProviderError:
            logger.error(
                f"D1: SQL execution failed on database {database_id} at statement "
                f"{index}/{len(statements)}; earlier statements remain applied."
            )
            raise


async def initialize_tenant_database(
    client: CloudflareD1Client,
    database_id: str,
    migration_config: TenantMigrationConfig,
) -> Tuple[str, str]:
    """
    Apply the current tenant schema to a freshly created database.

    Returns:
        The resolved (schema, version) pair so the caller can record the version.

    Raises:
        InvalidSchemaError: the resolved schema is empty
        ProviderError: SQL execution failed
    """
    if isinstance(migration_config.current_schema, (list, tuple)):
        schema = f"\n{STATEMENT_BREAKPOINT}\n".join(migration_config.current_schema)
    else:
        schema = await resolve_value(migration_config.current_schema)
    version = await resolve_value(migration_config.current_version)

    if not schema or not schema.strip():
        raise InvalidSchemaError("Schema is empty or undefined")

    await execute_d1_sql(client, database_id, schema)
    logger.info(f"D1: Initialized tenant database {database_id} with schema version '{version}'.")
    return schema, version


def default_checksum_generator(sql: str) -> str:
    """
    32-bit rolling hash of the SQL text, rendered as signed hex.

    Only an integrity tag for identifying migrations; not a security boundary.
    """
    value = 0
    for char in sql:
        value = ((value << 5) - value + ord(char)) & 0xFFFFFFFF
    if value >= 0x80000000:
        value -= 0x100000000
    return format(value, "x")


def load_migration_files(
    folder: Union[str, Path],
    generate_checksum: Optional[Callable[[str], str]] = None,
) -> List[MigrationFile]:
    """
    Load ``*.sql`` migration files from a folder, ordered by filename.

    ``0003_brave_hulk.sql`` becomes version ``0003`` with name ``brave_hulk``.
    """
    migrations_dir = Path(folder)
    if not migrations_dir.is_dir():
        logger.warning(f"Tenant migrations folder not found: {migrations_dir}")
        return []

    checksum = generate_checksum or default_checksum_generator
    migrations = []
    for path in sorted(migrations_dir.glob("*.sql")):
        version, _, name = path.stem.partition("_")
        sql = path.read_text(encoding="utf-8")
        migrations.append(MigrationFile(version=version, name=name or version, sql=sql, checksum=checksum(sql)))
    logger.info(f"Loaded {len(migrations)} tenant migration file(s) from {migrations_dir}")
    return migrations


def pending_migrations(
    last_migration_version: str,
    migration_history: Sequence[Any],
    migrations: Sequence[MigrationFile],
) -> List[MigrationFile]:
    """
    Select the migrations a tenant still needs.

    A tenant without any recorded history needs every migration. Otherwise a
    migration is pending when its version sorts after the last applied
    version and it is not already in the history.
    """
    if not migration_history:
        return list(migrations)
    applied = {getattr(entry, "version", None) for entry in migration_history}
    return [
        migration for migration in migrations
        if migration.version > last_migration_version and migration.version not in applied
    ]


def is_retryable_error(error: BaseException) -> bool:
    """Network failures, timeouts, rate limits and 502/503/504 responses are worth retrying."""
    return isinstance(error, ProviderError) and error.retryable


async def apply_tenant_migrations(
    client: CloudflareD1Client,
    database_id: str,
    migrations: Sequence[MigrationFile],
    retry_count: int = 2,
    backoff_seconds: float = 1.0,
    on_applied: Optional[Callable[[MigrationFile], Awaitable[None]]] = None,
) -> List[str]:
    """
    Apply migrations to an existing tenant database in order.

    Each statement is attempted up to ``retry_count`` times when the failure
    is retryable, with exponential backoff between attempts. ``on_applied``
    is awaited after each migration completes so bookkeeping never runs
    ahead of the database.

    Returns:
        The versions applied.

    Raises:
        MigrationFailedError: a statement failed and could not be retried
    """
    applied: List[str] = []
    for migration in migrations:
        for statement in split_sql_statements(migration.sql):
            attempt = 1
            while True:
                try:
                    await client.query(database_id, statement)
                    break
                except ProviderError as e:
                    if attempt < retry_count and is_retryable_error(e):
                        delay = backoff_seconds * (2 ** (attempt - 1))
                        logger.warning(
                            f"D1: Migration {migration.version} attempt {attempt} failed with a retryable "
                            f"error on {database_id}; retrying in {delay:.1f}s. Error: {e}"
                        )
                        await asyncio.sleep(delay)
                        attempt += 1
                        continue
                    raise MigrationFailedError(
                        f"Failed to apply tenant migration {migration.version}_{migration.name} "
                        f"after {attempt} attempt(s): {e}"
                    ) from e
        applied.append(migration.version)
        if on_applied is not None:
            await on_applied(migration)
    return applied
