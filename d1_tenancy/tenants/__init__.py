# d1_tenancy/tenants/__init__.py
"""
Tenant database management.

This package provides the tenant registry (models, storage abstraction and
SQLite implementation), the lifecycle orchestrator and its hooks, and the
admin API endpoints.
"""

from .models import (
    MigrationHistoryEntry,
    RegistryField,
    RegistryFieldType,
    RegistrySchemaOptions,
    TenantMigrationStatus,
    TenantRecord,
    TenantStatus,
    TenantType,
)
from .storage_interfaces import AbstractTenantRegistry
from .sqlite_tenant_registry import SQLiteTenantRegistry, get_sqlite_tenant_registry
from .hooks import HookFailurePolicy, TenantHooks
from .service import TenantDatabaseService

# Export all public components for external use
__all__ = [
    # Registry data models
    "MigrationHistoryEntry",
    "RegistryField",
    "RegistryFieldType",
    "RegistrySchemaOptions",
    "TenantMigrationStatus",
    "TenantRecord",
    "TenantStatus",
    "TenantType",
    # Registry abstraction and implementation
    "AbstractTenantRegistry",
    "SQLiteTenantRegistry",
    "get_sqlite_tenant_registry",
    # Lifecycle orchestration
    "HookFailurePolicy",
    "TenantHooks",
    "TenantDatabaseService",
]
