from .adapter_interfaces import AbstractDatabaseAdapter
from .connection_pool import TenantConnectionPool
from .d1_http_adapter import D1HttpAdapter
from .models import AdapterOperation, RoutingResult, SortBy, Where, WhereOperator
from .sql_adapter import SQLDatabaseAdapter
from .sqlite_adapter import SQLiteAdapter
from .tenant_router import (
    DEFAULT_CORE_MODELS,
    DEFAULT_TENANT_FIELDS,
    TenantRoutingAdapter,
    resolve_core_models,
)

__all__ = [
    "AbstractDatabaseAdapter",
    "AdapterOperation",
    "D1HttpAdapter",
    "DEFAULT_CORE_MODELS",
    "DEFAULT_TENANT_FIELDS",
    "RoutingResult",
    "SQLDatabaseAdapter",
    "SQLiteAdapter",
    "SortBy",
    "TenantConnectionPool",
    "TenantRoutingAdapter",
    "Where",
    "WhereOperator",
    "resolve_core_models",
]
