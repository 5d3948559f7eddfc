# d1_tenancy/storage/__init__.py

"""Storage module initialization.

Connection management and schema setup for the main (shared) SQLite
database that holds the tenant registry.
"""

from .sqlite_base import (
    get_sqlite_db_connection,
    create_sqlite_connection,
    init_sqlite_db,
    create_registry_schema,
    close_sqlite_db_connection
)

# Export public API for database operations
__all__ = [
    "get_sqlite_db_connection",
    "create_sqlite_connection",
    "init_sqlite_db",
    "create_registry_schema",
    "close_sqlite_db_connection"
]
