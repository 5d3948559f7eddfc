# d1_tenancy/tenants/endpoints.py
import logging
from fastapi import APIRouter, Depends, HTTPException, Path, Query, status
from typing import List, Annotated, Optional

from .models import (
    TenantMigrateRequest,
    TenantMigrationStatus,
    TenantProvisionRequest,
    TenantRecord,
    TenantStatus,
)
from .service import TenantDatabaseService
from ..dependencies import get_admin_api_key, get_tenant_database_service
from ..migrations.models import MigrationFile, MigrationReport
from ..migrations.schema_initializer import load_migration_files
from ..settings import settings

logger = logging.getLogger(__name__)

# Admin router for tenant database management - requires admin API key authentication
tenants_admin_router = APIRouter(
    prefix="/admin/tenants",
    tags=["Admin - Tenant Databases"],
    dependencies=[Depends(get_admin_api_key)]
)


async def get_tenant_migrations() -> List[MigrationFile]:
    """Load the tenant migrations folder configured in settings."""
    return load_migration_files(settings.tenant_migrations_dir)


@tenants_admin_router.get("/", response_model=List[TenantRecord])
@tenants_admin_router.get("", response_model=List[TenantRecord], include_in_schema=False)
async def list_tenants_endpoint(
    service: Annotated[TenantDatabaseService, Depends(get_tenant_database_service)],
    tenant_status: Annotated[Optional[TenantStatus], Query(alias="status", description="Only return records in this status.")] = None,
    skip: Annotated[int, Query(ge=0, description="Number of records to skip.")] = 0,
    limit: Annotated[int, Query(ge=1, le=100, description="Maximum number of records to return.")] = 100
):
    """List tenant database records, newest first. Handles both trailing slash variants."""
    return await service.list_tenants(status=tenant_status, skip=skip, limit=limit)


@tenants_admin_router.post("/migrate", response_model=MigrationReport)
async def migrate_tenants_endpoint(
    request: TenantMigrateRequest,
    service: Annotated[TenantDatabaseService, Depends(get_tenant_database_service)],
    migrations: Annotated[List[MigrationFile], Depends(get_tenant_migrations)]
):
    """Apply pending migrations to every active tenant database, or report the plan on dry run."""
    logger.info(f"API: Received tenant migration request (dry_run={request.dry_run}, {len(migrations)} file(s)).")
    return await service.migrate_tenants(migrations, dry_run=request.dry_run)


@tenants_admin_router.get("/{tenant_id}", response_model=TenantRecord)
async def get_tenant_endpoint(
    tenant_id: Annotated[str, Path(description="User or organization ID owning the database")],
    service: Annotated[TenantDatabaseService, Depends(get_tenant_database_service)]
):
    record = await service.get_tenant(tenant_id)
    if not record:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tenant database not found")
    return record


@tenants_admin_router.get("/{tenant_id}/migrations", response_model=TenantMigrationStatus)
async def get_tenant_migration_status_endpoint(
    tenant_id: Annotated[str, Path(description="User or organization ID owning the database")],
    service: Annotated[TenantDatabaseService, Depends(get_tenant_database_service)]
):
    """Current schema version and applied migration history of a tenant database."""
    return await service.get_migration_status(tenant_id)


@tenants_admin_router.post("/", response_model=TenantRecord, status_code=status.HTTP_201_CREATED)
async def provision_tenant_endpoint(
    request: TenantProvisionRequest,
    service: Annotated[TenantDatabaseService, Depends(get_tenant_database_service)]
):
    """
    Provision the database for a tenant, e.g. for a tenant created before
    multi-tenancy was enabled. Returns the existing record unchanged if a
    non-deleted one is already present.
    """
    logger.info(f"API: Received request to provision tenant database for '{request.tenant_id}'")
    try:
        return await service.create_tenant_database(
            request.tenant_id, actor="admin-api", additional_fields=request.additional_fields
        )
    except ValueError as e:
        logger.warning(f"API: Rejected provisioning request for '{request.tenant_id}': {e}")
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e


@tenants_admin_router.delete("/{tenant_id}", response_model=TenantRecord)
async def delete_tenant_endpoint(
    tenant_id: Annotated[str, Path(description="User or organization ID owning the database")],
    service: Annotated[TenantDatabaseService, Depends(get_tenant_database_service)]
):
    """Delete the tenant's D1 database. Returns 404 if the tenant has no active database."""
    logger.info(f"API: Received request to delete tenant database for '{tenant_id}'")
    record = await service.delete_tenant_database(tenant_id, actor="admin-api")
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No active tenant database to delete.")
    return record
