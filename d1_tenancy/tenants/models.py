from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Optional, List, Dict
from datetime import datetime, timezone


class TenantType(str, Enum):
    """Which entity owns a tenant database. Exactly one is active per deployment."""
    USER = "user"
    ORGANIZATION = "organization"


class TenantStatus(str, Enum):
    """Lifecycle status of a tenant database."""
    CREATING = "creating"
    ACTIVE = "active"
    DELETING = "deleting"
    DELETED = "deleted"


# Forward-only lifecycle; a status may also be "updated" to itself to set extra fields
ALLOWED_STATUS_TRANSITIONS: Dict[TenantStatus, List[TenantStatus]] = {
    TenantStatus.CREATING: [TenantStatus.CREATING, TenantStatus.ACTIVE],
    TenantStatus.ACTIVE: [TenantStatus.ACTIVE, TenantStatus.DELETING],
    TenantStatus.DELETING: [TenantStatus.DELETING, TenantStatus.DELETED],
    TenantStatus.DELETED: [TenantStatus.DELETED],
}


def is_allowed_transition(current: TenantStatus, new: TenantStatus) -> bool:
    return new in ALLOWED_STATUS_TRANSITIONS.get(current, [])


class RegistryFieldType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"


# SQLite column type per registry field type
REGISTRY_COLUMN_TYPES: Dict[RegistryFieldType, str] = {
    RegistryFieldType.STRING: "TEXT",
    RegistryFieldType.NUMBER: "REAL",
    RegistryFieldType.BOOLEAN: "INTEGER",
    RegistryFieldType.DATE: "TEXT",
}


class RegistryField(BaseModel):
    """An extra column on the tenant registry table."""
    type: RegistryFieldType = RegistryFieldType.STRING
    required: bool = False
    default_value: Any = None


class RegistrySchemaOptions(BaseModel):
    """Customizes the tenant registry table: its name and any extra columns."""
    table_name: str = "tenants"
    fields: Dict[str, RegistryField] = Field(default_factory=dict)


class MigrationHistoryEntry(BaseModel):
    """One applied schema migration, as recorded in the main database."""
    version: str
    name: str
    applied_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    checksum: Optional[str] = None


class TenantRecord(BaseModel):
    """A row of the tenant registry stored in the main database."""
    id: str
    tenant_id: str = Field(description="User ID or organization ID owning the database")
    tenant_type: TenantType
    database_name: str
    database_id: str = Field(
        default="",
        description="Cloudflare D1 database UUID; empty until the provider has created it"
    )
    status: TenantStatus = TenantStatus.CREATING
    created_at: datetime
    deleted_at: Optional[datetime] = None
    last_migration_version: str = "0000"
    migration_history: List[MigrationHistoryEntry] = Field(default_factory=list)
    additional_fields: Dict[str, Any] = Field(
        default_factory=dict,
        description="Values of the extra registry columns declared in RegistrySchemaOptions"
    )

    model_config = ConfigDict(from_attributes=True)


class TenantMigrationStatus(BaseModel):
    tenant_id: str
    current_version: str
    migration_history: List[MigrationHistoryEntry] = Field(default_factory=list)


class TenantProvisionRequest(BaseModel):
    """Admin request to (re)provision the database for a tenant."""
    tenant_id: str = Field(description="User ID or organization ID to provision a database for")
    additional_fields: Dict[str, Any] = Field(
        default_factory=dict,
        description="Values for extra registry columns, if any are configured"
    )


class TenantMigrateRequest(BaseModel):
    dry_run: bool = False
