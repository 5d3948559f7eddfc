# d1_tenancy/storage/sqlite_base.py
import re
import sqlite3
import logging
from pathlib import Path
from typing import Dict, Optional

from ..settings import settings

logger = logging.getLogger(__name__)

# Global connection instance to ensure single connection per application lifecycle
_db_connection: Optional[sqlite3.Connection] = None

DEFAULT_REGISTRY_TABLE = "tenants"
_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


async def get_sqlite_db_connection() -> sqlite3.Connection:
    """
    Get or create the main database SQLite connection.

    Uses a singleton pattern to maintain a single connection throughout
    the application lifecycle. Ensures the database directory exists
    and initializes the registry schema on first connection.

    Returns:
        sqlite3.Connection: The database connection instance

    Raises:
        sqlite3.Error: If database connection fails
    """
    global _db_connection
    if _db_connection is None:
        try:
            db_path = Path(settings.sqlite_db_path).resolve()
            # Ensure the database directory structure exists
            db_path.parent.mkdir(parents=True, exist_ok=True)

            logger.info(f"Attempting to connect to SQLite DB at: {db_path}")

            _db_connection = create_sqlite_connection(str(db_path))

            logger.info(f"Successfully connected to SQLite DB: {db_path}")

            await init_sqlite_db(_db_connection)
        except sqlite3.Error as e:
            logger.error(
                f"Error connecting to SQLite database at {settings.sqlite_db_path}: {e}",
                exc_info=True
            )
            raise
    return _db_connection


def create_sqlite_connection(database: str = ":memory:") -> sqlite3.Connection:
    """Open a connection configured the way every store in this package expects."""
    # Enable thread-safe access for async/FastAPI compatibility
    conn = sqlite3.connect(database, check_same_thread=False)
    # Enable column access by name instead of index
    conn.row_factory = sqlite3.Row
    return conn


async def init_sqlite_db(conn: Optional[sqlite3.Connection] = None):
    """
    Initialize the tenant registry schema in the main database.

    Uses IF NOT EXISTS to safely handle repeated initialization calls.

    Args:
        conn: Optional database connection. If None, uses the global connection.
    """
    db_conn = conn or await get_sqlite_db_connection()
    create_registry_schema(db_conn)


def create_registry_schema(
    db_conn: sqlite3.Connection,
    table_name: str = DEFAULT_REGISTRY_TABLE,
    extra_columns: Optional[Dict[str, str]] = None,
) -> None:
    """
    Create the tenant registry table and its indexes if they do not exist.

    ``extra_columns`` maps additional column names to SQLite types. Missing
    columns are added to an existing table; existing ones are left as they are.
    """
    for identifier in [table_name, *(extra_columns or {})]:
        if not _IDENTIFIER_RE.match(identifier):
            raise ValueError(f"Invalid registry identifier: {identifier!r}")
    cursor = db_conn.cursor()

    # One row per tenant database lifecycle; rows are soft-deleted only
    cursor.execute(f'''
    CREATE TABLE IF NOT EXISTS "{table_name}" (
        id TEXT PRIMARY KEY,
        tenant_id TEXT NOT NULL,
        tenant_type TEXT NOT NULL,
        database_name TEXT NOT NULL,
        database_id TEXT NOT NULL DEFAULT '',
        status TEXT NOT NULL DEFAULT 'creating',
        created_at TEXT NOT NULL,
        deleted_at TEXT,
        last_migration_version TEXT NOT NULL DEFAULT '0000',
        migration_history TEXT NOT NULL DEFAULT '[]'
    )
    ''')
    logger.info(f"Ensured '{table_name}' table exists.")

    existing = {row[1] for row in cursor.execute(f'PRAGMA table_info("{table_name}")').fetchall()}
    for column, column_type in (extra_columns or {}).items():
        if column not in existing:
            cursor.execute(f'ALTER TABLE "{table_name}" ADD COLUMN "{column}" {column_type}')
            logger.info(f"Added column '{column}' ({column_type}) to '{table_name}'.")

    # At most one non-deleted row per tenant identity
    cursor.execute(f'''
    CREATE UNIQUE INDEX IF NOT EXISTS "ux_{table_name}_live_identity"
    ON "{table_name}" (tenant_id, tenant_type)
    WHERE status != 'deleted'
    ''')
    cursor.execute(f'''
    CREATE INDEX IF NOT EXISTS "ix_{table_name}_status" ON "{table_name}" (status)
    ''')
    logger.info("Ensured tenant registry indexes exist.")

    db_conn.commit()
    logger.info("SQLite database schema initialized/verified.")


async def close_sqlite_db_connection():
    """
    Properly close the global SQLite database connection.

    Should be called during application shutdown to ensure
    proper cleanup of database resources.
    """
    global _db_connection
    if _db_connection is not None:
        logger.info("Closing SQLite DB connection.")
        _db_connection.close()
        _db_connection = None
        logger.info("SQLite DB connection closed.")
