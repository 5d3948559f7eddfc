# d1_tenancy/tenants/service.py
import asyncio
import logging
import weakref
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from .hooks import HookFailurePolicy, TenantHooks, run_hook
from .models import (
    MigrationHistoryEntry,
    TenantMigrationStatus,
    TenantRecord,
    TenantStatus,
    TenantType,
)
from .storage_interfaces import AbstractTenantRegistry
from ..cloudflare.d1_client import (
    CloudflareD1Client,
    get_cloudflare_d1_tenant_database_name,
    validate_cloudflare_credentials,
)
from ..errors import (
    DatabaseCreationFailedError,
    DatabaseDeletionFailedError,
    TenantAlreadyExistsError,
    TenantNotFoundError,
)
from ..migrations.models import MigrationFile, MigrationReport, TenantMigrationConfig, TenantMigrationResult
from ..migrations.schema_initializer import (
    apply_tenant_migrations,
    default_checksum_generator,
    initialize_tenant_database,
    pending_migrations,
)
from ..routing.connection_pool import TenantConnectionPool

logger = logging.getLogger(__name__)

INITIAL_SCHEMA_MIGRATION_NAME = "initial_schema"


class TenantDatabaseService:
    """
    Lifecycle orchestrator for per-tenant D1 databases.

    Owns the tenant registry and the provider client. Creation and deletion
    are driven by user/organization lifecycle events; each call is
    idempotent and serialized per tenant identity within the process.
    Provider failures always propagate to the caller and leave the registry
    row in its intermediate status so it can be retried or inspected.
    """

    def __init__(
        self,
        registry: AbstractTenantRegistry,
        client: CloudflareD1Client,
        mode: TenantType,
        database_prefix: str = "tenant_",
        migrations: Optional[TenantMigrationConfig] = None,
        hooks: Optional[TenantHooks] = None,
        hook_failure_policy: HookFailurePolicy = HookFailurePolicy.LOG,
        connection_pool: Optional[TenantConnectionPool] = None,
        migration_retry_count: int = 2,
        migration_backoff_seconds: float = 1.0,
    ):
        self.registry = registry
        self.client = client
        self.mode = TenantType(mode)
        self.database_prefix = database_prefix
        self.migrations = migrations
        self.hooks = hooks or TenantHooks()
        self.hook_failure_policy = HookFailurePolicy(hook_failure_policy)
        self.connection_pool = connection_pool
        self.migration_retry_count = migration_retry_count
        self.migration_backoff_seconds = migration_backoff_seconds
        # Entries disappear once no caller holds or waits on the lock
        self._locks: "weakref.WeakValueDictionary[Tuple[str, str], asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, tenant_id: str) -> asyncio.Lock:
        key = (tenant_id, self.mode.value)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def create_tenant_database(
        self,
        tenant_id: str,
        actor: Optional[Any] = None,
        additional_fields: Optional[Dict[str, Any]] = None,
    ) -> TenantRecord:
        """
        Provision the D1 database for a tenant.

        Returns the existing record unchanged if a non-deleted one already
        exists, otherwise the newly activated record.

        Raises:
            MissingCredentialsError: credentials are blank (before any other work)
            DatabaseCreationFailedError: the provider or schema initialization failed
            ValueError: ``additional_fields`` does not match the registry schema
            HookFailedError: a hook failed under the 'raise' policy
        """
        validate_cloudflare_credentials(self.client.config)
        database_name = get_cloudflare_d1_tenant_database_name(tenant_id, self.database_prefix)

        async with self._lock_for(tenant_id):
            existing = await self.registry.find(tenant_id, self.mode)
            if existing is not None and existing.status != TenantStatus.DELETED:
                logger.info(
                    f"Service: {self.mode.value} '{tenant_id}' already has a database record "
                    f"({existing.status.value}); skipping creation."
                )
                return existing

            await run_hook(
                "before_create", self.hooks.before_create, self.hook_failure_policy,
                tenant_id=tenant_id, mode=self.mode.value, actor=actor,
            )

            try:
                record = await self.registry.insert(tenant_id, self.mode, database_name, additional_fields)
            except TenantAlreadyExistsError:
                logger.info(f"Service: Concurrent creation detected for {self.mode.value} '{tenant_id}'; skipping.")
                return await self.registry.find(tenant_id, self.mode)

            logger.info(f"Service: Creating D1 database '{database_name}' for {self.mode.value} '{tenant_id}'.")
            try:
                database_id = await self.client.create_database(database_name)
            except Exception as e:
                logger.error(f"Service: Failed to create D1 database '{database_name}': {e}")
                raise DatabaseCreationFailedError(cause=e) from e

            await self.registry.update_status(record.id, TenantStatus.CREATING, {"database_id": database_id})

            extra_fields: Dict[str, Any] = {"database_id": database_id}
            if self.migrations is not None:
                try:
                    schema, version = await initialize_tenant_database(self.client, database_id, self.migrations)
                except Exception as e:
                    logger.error(f"Service: Schema initialization failed for '{database_name}' ({database_id}): {e}")
                    raise DatabaseCreationFailedError(
                        f"Failed to initialize schema for tenant database '{database_name}': {e}", cause=e
                    ) from e
                generate_checksum = self.migrations.generate_checksum or default_checksum_generator
                extra_fields["last_migration_version"] = version
                extra_fields["migration_history"] = [
                    MigrationHistoryEntry(
                        version=version,
                        name=INITIAL_SCHEMA_MIGRATION_NAME,
                        checksum=generate_checksum(schema),
                    )
                ]
            else:
                logger.warning(
                    f"Service: No tenant migrations configured; database '{database_name}' was created empty."
                )

            if not await self.registry.update_status(record.id, TenantStatus.ACTIVE, extra_fields):
                logger.error(
                    f"Service: Database '{database_name}' ({database_id}) was created but its registry "
                    f"record {record.id} could not be marked active."
                )

            await run_hook(
                "after_create", self.hooks.after_create, self.hook_failure_policy,
                tenant_id=tenant_id, database_name=database_name, database_id=database_id,
                mode=self.mode.value, actor=actor,
            )

            logger.info(f"Service: Tenant database '{database_name}' ready for {self.mode.value} '{tenant_id}'.")
            return await self.registry.get(record.id) or record

    async def delete_tenant_database(self, tenant_id: str, actor: Optional[Any] = None) -> Optional[TenantRecord]:
        """
        Delete the D1 database of a tenant and soft-delete its registry record.

        Returns the deleted record, or None when the tenant had no active database.

        Raises:
            MissingCredentialsError: credentials are blank
            DatabaseDeletionFailedError: the provider call failed; the record stays 'deleting'
            HookFailedError: a hook failed under the 'raise' policy
        """
        validate_cloudflare_credentials(self.client.config)

        async with self._lock_for(tenant_id):
            record = await self.registry.find_active(tenant_id, self.mode)
            if record is None:
                logger.info(f"Service: No active database for {self.mode.value} '{tenant_id}'; nothing to delete.")
                return None

            await run_hook(
                "before_delete", self.hooks.before_delete, self.hook_failure_policy,
                tenant_id=tenant_id, database_name=record.database_name, database_id=record.database_id,
                mode=self.mode.value, actor=actor,
            )

            await self.registry.update_status(record.id, TenantStatus.DELETING)

            logger.info(f"Service: Deleting D1 database '{record.database_name}' ({record.database_id}).")
            try:
                await self.client.delete_database(record.database_id)
            except Exception as e:
                logger.error(f"Service: Failed to delete D1 database '{record.database_name}': {e}")
                raise DatabaseDeletionFailedError(cause=e) from e

            await self.registry.update_status(
                record.id, TenantStatus.DELETED, {"deleted_at": datetime.now(timezone.utc)}
            )
            if self.connection_pool is not None:
                self.connection_pool.evict(record.database_id)

            await run_hook(
                "after_delete", self.hooks.after_delete, self.hook_failure_policy,
                tenant_id=tenant_id, mode=self.mode.value, actor=actor,
            )

            logger.info(f"Service: Tenant database for {self.mode.value} '{tenant_id}' deleted.")
            return await self.registry.get(record.id)

    async def get_tenant(self, tenant_id: str) -> Optional[TenantRecord]:
        logger.info(f"Service: Getting tenant database record for {self.mode.value} '{tenant_id}'")
        return await self.registry.find(tenant_id, self.mode)

    async def list_tenants(
        self,
        status: Optional[TenantStatus] = None,
        skip: int = 0,
        limit: int = 100
    ) -> List[TenantRecord]:
        logger.info(f"Service: Listing tenant databases with status: {status}, skip: {skip}, limit: {limit}")
        return await self.registry.list_tenants(status=status, tenant_type=self.mode, skip=skip, limit=limit)

    async def get_migration_status(self, tenant_id: str) -> TenantMigrationStatus:
        """
        Raises:
            TenantNotFoundError: the tenant has no registry record
        """
        migration_status = await self.registry.get_migration_status(tenant_id, self.mode)
        if migration_status is None:
            raise TenantNotFoundError(f"No tenant database record for {self.mode.value} '{tenant_id}'")
        return migration_status

    async def _list_active_tenants(self, page_size: int = 100) -> List[TenantRecord]:
        records: List[TenantRecord] = []
        skip = 0
        while True:
            page = await self.registry.list_tenants(
                status=TenantStatus.ACTIVE, tenant_type=self.mode, skip=skip, limit=page_size
            )
            records.extend(page)
            if len(page) < page_size:
                return records
            skip += page_size

    async def _recorded_versions(self, record_id: str) -> Set[str]:
        """Versions already in a tenant's history; empty if the record cannot be read."""
        try:
            record = await self.registry.get(record_id)
        except Exception as e:
            logger.error(f"Service: Could not re-read migration history for record {record_id}: {e}")
            return set()
        if record is None:
            return set()
        return {entry.version for entry in record.migration_history}

    async def migrate_tenants(self, migrations: Sequence[MigrationFile], dry_run: bool = False) -> MigrationReport:
        """
        Bring every active tenant database up to date with ``migrations``.

        Tenants are processed one at a time. A failing tenant is recorded in
        the report and the run continues with the next one. History is
        appended after each successfully applied migration.
        """
        migrations = sorted(migrations, key=lambda m: m.version)
        tenants = await self._list_active_tenants()
        report = MigrationReport(dry_run=dry_run, total=len(tenants))
        logger.info(
            f"Service: {'Planning' if dry_run else 'Running'} {len(migrations)} migration(s) "
            f"across {len(tenants)} active tenant database(s)."
        )

        for record in tenants:
            pending = pending_migrations(record.last_migration_version, record.migration_history, migrations)
            result = TenantMigrationResult(
                tenant_id=record.tenant_id,
                database_name=record.database_name,
                pending=[migration.version for migration in pending],
            )

            if dry_run or not pending:
                report.succeeded += 1
                report.tenants.append(result)
                continue

            async def record_applied(migration: MigrationFile, record_id: str = record.id) -> None:
                await self.registry.append_migration(record_id, migration.version, migration.name, migration.checksum)

            try:
                result.applied = await apply_tenant_migrations(
                    self.client,
                    record.database_id,
                    pending,
                    retry_count=self.migration_retry_count,
                    backoff_seconds=self.migration_backoff_seconds,
                    on_applied=record_applied,
                )
                result.pending = []
                report.succeeded += 1
                logger.info(
                    f"Service: Applied {len(result.applied)} migration(s) to '{record.database_name}'."
                )
            except Exception as e:
                applied_versions = await self._recorded_versions(record.id)
                result.applied = [v for v in result.pending if v in applied_versions]
                result.pending = [v for v in result.pending if v not in applied_versions]
                result.success = False
                result.error = str(e)
                report.failed += 1
                logger.error(f"Service: Migration failed for tenant '{record.tenant_id}': {e}")
            report.tenants.append(result)

        logger.info(
            f"Service: Migration run finished: {report.succeeded} succeeded, {report.failed} failed."
        )
        return report
