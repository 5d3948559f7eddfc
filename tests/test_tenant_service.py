# tests/test_tenant_service.py
import asyncio
import gc

import pytest

from d1_tenancy.errors import (
    DatabaseCreationFailedError,
    DatabaseDeletionFailedError,
    HookFailedError,
    MissingCredentialsError,
    TenantNotFoundError,
)
from d1_tenancy.migrations.models import MigrationFile, TenantMigrationConfig
from d1_tenancy.tenants.hooks import HookFailurePolicy, TenantHooks
from d1_tenancy.tenants.models import RegistryField, RegistrySchemaOptions, TenantStatus, TenantType
from d1_tenancy.tenants.service import TenantDatabaseService
from d1_tenancy.tenants.sqlite_tenant_registry import SQLiteTenantRegistry

ORG = TenantType.ORGANIZATION


async def test_create_provisions_and_activates(service, fake_d1):
    record = await service.create_tenant_database("org_1")

    assert record.status == TenantStatus.ACTIVE
    assert record.database_name == "tenant_org_1"
    assert fake_d1.names[record.database_id] == "tenant_org_1"
    assert fake_d1.tables(record.database_id) == ["notes"]


async def test_creation_is_idempotent(service, fake_d1):
    first = await service.create_tenant_database("org_1")
    second = await service.create_tenant_database("org_1")

    assert second.id == first.id
    assert len(fake_d1.requests_for("create")) == 1


async def test_concurrent_creation_provisions_one_database(service, fake_d1, registry):
    results = await asyncio.gather(*(service.create_tenant_database("org_1") for _ in range(3)))

    assert len({r.id for r in results}) == 1
    assert len(fake_d1.requests_for("create")) == 1
    assert len(await registry.list_tenants()) == 1


async def test_initial_schema_is_recorded_as_one_history_entry(registry, d1_client):
    service = TenantDatabaseService(
        registry, d1_client, ORG,
        migrations=TenantMigrationConfig(current_schema="CREATE TABLE notes (id TEXT)", current_version="v1.0.0"),
    )

    record = await service.create_tenant_database("org_1")

    assert record.last_migration_version == "v1.0.0"
    assert [entry.version for entry in record.migration_history] == ["v1.0.0"]
    assert record.migration_history[0].checksum


async def test_without_migrations_database_is_left_empty(registry, d1_client, fake_d1, caplog):
    service = TenantDatabaseService(registry, d1_client, ORG)

    record = await service.create_tenant_database("org_1")

    assert record.status == TenantStatus.ACTIVE
    assert record.migration_history == []
    assert fake_d1.tables(record.database_id) == []
    assert "No tenant migrations configured" in caplog.text


async def test_missing_credentials_fail_before_any_bookkeeping(registry, d1_client, fake_d1):
    d1_client.config = d1_client.config.model_copy(update={"account_id": " "})
    service = TenantDatabaseService(registry, d1_client, ORG)

    with pytest.raises(MissingCredentialsError):
        await service.create_tenant_database("org_1")
    assert await registry.find("org_1", ORG) is None
    assert fake_d1.requests == []


async def test_provider_failure_leaves_record_creating(service, fake_d1, registry):
    fake_d1.force_response("create", 500)

    with pytest.raises(DatabaseCreationFailedError, match="forced create failure"):
        await service.create_tenant_database("org_1")

    record = await registry.find("org_1", ORG)
    assert record.status == TenantStatus.CREATING
    assert record.database_id == ""


async def test_schema_failure_keeps_database_id_on_creating_record(registry, d1_client, fake_d1):
    service = TenantDatabaseService(
        registry, d1_client, ORG,
        migrations=TenantMigrationConfig(current_schema="CREATE TABLE broken (", current_version="0001"),
    )

    with pytest.raises(DatabaseCreationFailedError):
        await service.create_tenant_database("org_1")

    record = await registry.find("org_1", ORG)
    assert record.status == TenantStatus.CREATING
    assert record.database_id in fake_d1.databases


async def test_delete_soft_deletes_and_evicts_connection(service, fake_d1, registry, connection_pool):
    created = await service.create_tenant_database("org_1")
    connection_pool.get(created.database_id)

    deleted = await service.delete_tenant_database("org_1")

    assert deleted.status == TenantStatus.DELETED
    assert deleted.deleted_at is not None
    assert created.database_id not in fake_d1.databases
    assert created.database_id not in connection_pool
    assert await registry.find_active("org_1", ORG) is None


async def test_deletion_is_idempotent(service, fake_d1):
    await service.create_tenant_database("org_1")

    await service.delete_tenant_database("org_1")
    assert await service.delete_tenant_database("org_1") is None
    assert await service.delete_tenant_database("never_created") is None
    assert len(fake_d1.requests_for("delete")) == 1


async def test_provider_failure_on_delete_leaves_record_deleting(service, fake_d1, registry):
    await service.create_tenant_database("org_1")
    fake_d1.force_response("delete", 502)

    with pytest.raises(DatabaseDeletionFailedError):
        await service.delete_tenant_database("org_1")

    assert (await registry.find("org_1", ORG)).status == TenantStatus.DELETING


async def test_recreate_after_delete_gets_new_record_and_database(service):
    first = await service.create_tenant_database("org_1")
    await service.delete_tenant_database("org_1")

    second = await service.create_tenant_database("org_1")

    assert second.id != first.id
    assert second.database_id != first.database_id
    assert second.status == TenantStatus.ACTIVE


async def test_hooks_receive_lifecycle_details(registry, d1_client):
    calls = []

    async def before_create(**kwargs):
        calls.append(("before_create", kwargs))

    def after_create(**kwargs):
        calls.append(("after_create", kwargs))

    hooks = TenantHooks(
        before_create=before_create,
        after_create=after_create,
        before_delete=lambda **kwargs: calls.append(("before_delete", kwargs)),
        after_delete=lambda **kwargs: calls.append(("after_delete", kwargs)),
    )
    service = TenantDatabaseService(registry, d1_client, ORG, hooks=hooks)

    record = await service.create_tenant_database("org_1", actor="alice")
    await service.delete_tenant_database("org_1", actor="bob")

    assert [name for name, _ in calls] == ["before_create", "after_create", "before_delete", "after_delete"]
    assert calls[0][1] == {"tenant_id": "org_1", "mode": "organization", "actor": "alice"}
    assert calls[1][1]["database_id"] == record.database_id
    assert calls[1][1]["database_name"] == "tenant_org_1"
    assert calls[2][1]["actor"] == "bob"


async def test_failing_hook_is_logged_by_default(registry, d1_client, caplog):
    def explode(**kwargs):
        raise RuntimeError("hook boom")

    service = TenantDatabaseService(registry, d1_client, ORG, hooks=TenantHooks(after_create=explode))

    record = await service.create_tenant_database("org_1")

    assert record.status == TenantStatus.ACTIVE
    assert "hook boom" in caplog.text


async def test_failing_hook_raises_under_raise_policy(registry, d1_client, fake_d1):
    def explode(**kwargs):
        raise RuntimeError("hook boom")

    service = TenantDatabaseService(
        registry, d1_client, ORG,
        hooks=TenantHooks(before_create=explode),
        hook_failure_policy=HookFailurePolicy.RAISE,
    )

    with pytest.raises(HookFailedError) as exc_info:
        await service.create_tenant_database("org_1")

    assert exc_info.value.hook_name == "before_create"
    assert isinstance(exc_info.value.__cause__, RuntimeError)
    assert await registry.find("org_1", ORG) is None
    assert fake_d1.requests == []


async def test_migration_status_for_unknown_tenant(service):
    with pytest.raises(TenantNotFoundError):
        await service.get_migration_status("nobody")


NOTES_V2 = MigrationFile(version="0002", name="add_notes_body", sql="ALTER TABLE notes ADD COLUMN body TEXT")
INITIAL = MigrationFile(version="0001", name="init", sql="SELECT 1")


async def test_migrate_applies_only_pending_migrations(service, registry, fake_d1):
    first = await service.create_tenant_database("org_1")
    await service.create_tenant_database("org_2")

    report = await service.migrate_tenants([NOTES_V2, INITIAL])

    assert (report.total, report.succeeded, report.failed) == (2, 2, 0)
    assert all(result.applied == ["0002"] for result in report.tenants)
    migration_status = await service.get_migration_status("org_1")
    assert migration_status.current_version == "0002"
    assert [e.version for e in migration_status.migration_history] == ["0001", "0002"]
    assert "SELECT 1" not in fake_d1.executed[first.database_id]


async def test_dry_run_reports_without_applying(service, fake_d1):
    record = await service.create_tenant_database("org_1")
    executed_before = list(fake_d1.executed[record.database_id])

    report = await service.migrate_tenants([INITIAL, NOTES_V2], dry_run=True)

    assert report.dry_run is True
    assert report.tenants[0].pending == ["0002"]
    assert report.tenants[0].applied == []
    assert fake_d1.executed[record.database_id] == executed_before
    assert (await service.get_migration_status("org_1")).current_version == "0001"


async def test_one_failing_tenant_does_not_stop_the_run(service, fake_d1):
    await service.create_tenant_database("org_1")
    await service.create_tenant_database("org_2")
    fake_d1.force_response("query", 400)

    report = await service.migrate_tenants([NOTES_V2])

    assert (report.succeeded, report.failed) == (1, 1)
    failed = [result for result in report.tenants if not result.success][0]
    assert failed.pending == ["0002"]
    assert "forced query failure" in failed.error


async def test_deleted_tenants_are_not_migrated(service):
    await service.create_tenant_database("org_1")
    await service.delete_tenant_database("org_1")

    report = await service.migrate_tenants([NOTES_V2])

    assert report.total == 0


async def test_two_services_racing_share_one_registry_row(registry, d1_client, migration_config, fake_d1):
    async def yield_control(**kwargs):
        await asyncio.sleep(0)

    services = [
        TenantDatabaseService(
            registry, d1_client, ORG, migrations=migration_config, hooks=TenantHooks(before_create=yield_control)
        )
        for _ in range(2)
    ]

    first, second = await asyncio.gather(*(s.create_tenant_database("org_1") for s in services))

    assert first.id == second.id
    assert len(fake_d1.requests_for("create")) == 1
    rows = await registry.list_tenants()
    assert len(rows) == 1
    assert rows[0].status == TenantStatus.ACTIVE


async def test_identity_locks_are_released_after_use(service):
    await service.create_tenant_database("org_1")
    await service.create_tenant_database("org_2")
    await service.delete_tenant_database("org_1")
    gc.collect()

    assert len(service._locks) == 0


async def test_unreadable_history_after_failure_does_not_stop_the_run(service, fake_d1, registry, monkeypatch):
    await service.create_tenant_database("org_1")
    await service.create_tenant_database("org_2")
    fake_d1.force_response("query", 400)

    async def broken_get(record_id):
        raise RuntimeError("registry unavailable")

    monkeypatch.setattr(registry, "get", broken_get)

    report = await service.migrate_tenants([NOTES_V2])

    assert (report.total, report.succeeded, report.failed) == (2, 1, 1)
    failed = [result for result in report.tenants if not result.success][0]
    assert failed.pending == ["0002"]
    assert failed.applied == []


async def test_create_stores_additional_registry_fields(main_db, d1_client, migration_config):
    registry = SQLiteTenantRegistry(
        main_db, schema=RegistrySchemaOptions(fields={"plan": RegistryField(default_value="free")})
    )
    await registry.initialize()
    service = TenantDatabaseService(registry, d1_client, ORG, migrations=migration_config)

    record = await service.create_tenant_database("org_1", additional_fields={"plan": "pro"})

    assert record.status == TenantStatus.ACTIVE
    assert record.additional_fields == {"plan": "pro"}
