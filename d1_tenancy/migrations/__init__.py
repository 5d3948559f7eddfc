# d1_tenancy/migrations/__init__.py
"""
Tenant schema initialization and migrations.

Resolves the current tenant schema, executes it against new tenant
databases, and brings lagging tenant databases up to date.
"""

from .models import TenantMigrationConfig, MigrationFile, MigrationReport, TenantMigrationResult
from .schema_initializer import (
    STATEMENT_BREAKPOINT,
    resolve_value,
    split_sql_statements,
    execute_d1_sql,
    initialize_tenant_database,
    default_checksum_generator,
    load_migration_files,
    pending_migrations,
    apply_tenant_migrations,
)

__all__ = [
    "TenantMigrationConfig",
    "MigrationFile",
    "MigrationReport",
    "TenantMigrationResult",
    "STATEMENT_BREAKPOINT",
    "resolve_value",
    "split_sql_statements",
    "execute_d1_sql",
    "initialize_tenant_database",
    "default_checksum_generator",
    "load_migration_files",
    "pending_migrations",
    "apply_tenant_migrations",
]
