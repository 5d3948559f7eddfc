# d1_tenancy/migrations/models.py
from pydantic import BaseModel, ConfigDict, Field
from typing import Awaitable, Callable, List, Optional, Union

# A value that is either given directly or produced by a sync/async function
ResolvableValue = Union[str, Callable[[], str], Callable[[], Awaitable[str]]]


class TenantMigrationConfig(BaseModel):
    """Schema source used to initialize newly created tenant databases."""
    current_schema: Union[ResolvableValue, List[str]] = Field(
        description="Raw SQL for the complete current tenant schema, statements separated by "
                    "'--> statement-breakpoint', or a list of individual statements."
    )
    current_version: ResolvableValue = Field(
        description="Version identifier recorded for databases initialized with this schema "
                    "(e.g. 'v1.2.0' or '0003')."
    )
    generate_checksum: Optional[Callable[[str], str]] = None

    model_config = ConfigDict(arbitrary_types_allowed=True)


class MigrationFile(BaseModel):
    """A single tenant migration loaded from the migrations folder."""
    version: str
    name: str
    sql: str
    checksum: Optional[str] = None


class TenantMigrationResult(BaseModel):
    tenant_id: str
    database_name: str
    applied: List[str] = Field(default_factory=list)
    pending: List[str] = Field(default_factory=list)
    success: bool = True
    error: Optional[str] = None


class MigrationReport(BaseModel):
    """Outcome of a migration run across all active tenant databases."""
    dry_run: bool = False
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    tenants: List[TenantMigrationResult] = Field(default_factory=list)
