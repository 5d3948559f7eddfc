# tests/test_tenant_registry.py
import pytest

from d1_tenancy.errors import TenantAlreadyExistsError, TenantNotFoundError
from d1_tenancy.tenants.models import (
    RegistryField,
    RegistryFieldType,
    RegistrySchemaOptions,
    TenantStatus,
    TenantType,
    is_allowed_transition,
)
from d1_tenancy.tenants.sqlite_tenant_registry import SQLiteTenantRegistry

ORG = TenantType.ORGANIZATION


async def _activate(registry, record, database_id="db-1"):
    assert await registry.update_status(record.id, TenantStatus.ACTIVE, {"database_id": database_id})
    return await registry.get(record.id)


async def _delete(registry, record):
    assert await registry.update_status(record.id, TenantStatus.DELETING)
    assert await registry.update_status(record.id, TenantStatus.DELETED)


@pytest.mark.parametrize(
    "current, new, allowed",
    [
        (TenantStatus.CREATING, TenantStatus.ACTIVE, True),
        (TenantStatus.ACTIVE, TenantStatus.DELETING, True),
        (TenantStatus.DELETING, TenantStatus.DELETED, True),
        (TenantStatus.ACTIVE, TenantStatus.ACTIVE, True),
        (TenantStatus.ACTIVE, TenantStatus.CREATING, False),
        (TenantStatus.CREATING, TenantStatus.DELETED, False),
        (TenantStatus.DELETED, TenantStatus.ACTIVE, False),
    ],
)
def test_status_transitions_only_move_forward(current, new, allowed):
    assert is_allowed_transition(current, new) is allowed


async def test_insert_creates_record_in_creating_status(registry):
    record = await registry.insert("org_1", ORG, "tenant_org_1")

    stored = await registry.get(record.id)
    assert stored.status == TenantStatus.CREATING
    assert stored.database_name == "tenant_org_1"
    assert stored.database_id == ""
    assert stored.last_migration_version == "0000"
    assert stored.migration_history == []


async def test_second_live_record_for_identity_is_rejected(registry):
    await registry.insert("org_1", ORG, "tenant_org_1")

    with pytest.raises(TenantAlreadyExistsError):
        await registry.insert("org_1", ORG, "tenant_org_1")


async def test_same_id_with_other_tenant_type_is_independent(registry):
    await registry.insert("shared", ORG, "tenant_shared")

    record = await registry.insert("shared", TenantType.USER, "tenant_shared")
    assert record.tenant_type == TenantType.USER


async def test_identity_can_be_reused_after_deletion(registry):
    first = await _activate(registry, await registry.insert("org_1", ORG, "tenant_org_1"))
    await _delete(registry, first)

    second = await registry.insert("org_1", ORG, "tenant_org_1")

    assert second.id != first.id
    found = await registry.find("org_1", ORG)
    assert found.id == second.id


async def test_find_returns_deleted_record_when_nothing_is_live(registry):
    record = await _activate(registry, await registry.insert("org_1", ORG, "tenant_org_1"))
    await _delete(registry, record)

    found = await registry.find("org_1", ORG)

    assert found.id == record.id
    assert found.status == TenantStatus.DELETED
    assert await registry.find_active("org_1", ORG) is None


async def test_backward_transition_is_refused(registry):
    record = await _activate(registry, await registry.insert("org_1", ORG, "tenant_org_1"))

    assert await registry.update_status(record.id, TenantStatus.CREATING) is False
    assert (await registry.get(record.id)).status == TenantStatus.ACTIVE


async def test_deleted_is_terminal(registry):
    record = await _activate(registry, await registry.insert("org_1", ORG, "tenant_org_1"))
    await _delete(registry, record)

    assert await registry.update_status(record.id, TenantStatus.ACTIVE) is False


async def test_update_status_of_unknown_record_returns_false(registry):
    assert await registry.update_status("missing", TenantStatus.ACTIVE) is False


async def test_update_status_ignores_unknown_fields(registry):
    record = await registry.insert("org_1", ORG, "tenant_org_1")

    assert await registry.update_status(record.id, TenantStatus.ACTIVE, {"tenant_id": "hijack", "database_id": "db-9"})

    stored = await registry.get(record.id)
    assert stored.tenant_id == "org_1"
    assert stored.database_id == "db-9"


async def test_append_migration_updates_version_and_history(registry):
    record = await _activate(registry, await registry.insert("org_1", ORG, "tenant_org_1"))

    await registry.append_migration(record.id, "0002", "add_notes", checksum="abc")
    await registry.append_migration(record.id, "0003", "add_tags")

    stored = await registry.get(record.id)
    assert stored.last_migration_version == "0003"
    assert [(e.version, e.name) for e in stored.migration_history] == [("0002", "add_notes"), ("0003", "add_tags")]
    assert stored.migration_history[0].checksum == "abc"


async def test_append_migration_for_unknown_record(registry):
    with pytest.raises(TenantNotFoundError):
        await registry.append_migration("missing", "0001", "init")


async def test_list_tenants_filters_and_paginates(registry):
    for index in range(3):
        await _activate(registry, await registry.insert(f"org_{index}", ORG, f"tenant_org_{index}"), f"db-{index}")
    await registry.insert("org_pending", ORG, "tenant_org_pending")

    active = await registry.list_tenants(status=TenantStatus.ACTIVE)
    creating = await registry.list_tenants(status=TenantStatus.CREATING)
    page = await registry.list_tenants(skip=1, limit=2)

    assert {r.tenant_id for r in active} == {"org_0", "org_1", "org_2"}
    assert [r.tenant_id for r in creating] == ["org_pending"]
    assert len(page) == 2
    assert await registry.list_tenants(tenant_type=TenantType.USER) == []


async def test_migration_status(registry):
    record = await _activate(registry, await registry.insert("org_1", ORG, "tenant_org_1"))
    await registry.append_migration(record.id, "0001", "init")

    migration_status = await registry.get_migration_status("org_1", ORG)

    assert migration_status.current_version == "0001"
    assert len(migration_status.migration_history) == 1
    assert await registry.get_migration_status("unknown", ORG) is None


@pytest.fixture
def custom_registry(main_db):
    schema = RegistrySchemaOptions(
        table_name="tenant_databases",
        fields={
            "plan": RegistryField(type=RegistryFieldType.STRING, default_value="free"),
            "region": RegistryField(required=True),
            "seats": RegistryField(type=RegistryFieldType.NUMBER),
            "archived": RegistryField(type=RegistryFieldType.BOOLEAN, default_value=False),
        },
    )
    return SQLiteTenantRegistry(main_db, schema=schema)


async def test_custom_table_and_additional_fields_round_trip(custom_registry, main_db):
    await custom_registry.initialize()

    record = await custom_registry.insert("org_1", ORG, "tenant_org_1", {"region": "weur", "seats": 5})
    stored = await custom_registry.get(record.id)

    assert stored.additional_fields == {"plan": "free", "region": "weur", "seats": 5, "archived": False}
    columns = {row[1] for row in main_db.execute('PRAGMA table_info("tenant_databases")').fetchall()}
    assert {"plan", "region", "seats", "archived"} <= columns
    assert main_db.execute("SELECT COUNT(*) FROM tenants").fetchone()[0] == 0


async def test_additional_fields_can_be_updated_with_status(custom_registry):
    await custom_registry.initialize()
    record = await custom_registry.insert("org_1", ORG, "tenant_org_1", {"region": "weur"})

    assert await custom_registry.update_status(record.id, TenantStatus.ACTIVE, {"database_id": "db-1", "archived": True})

    stored = await custom_registry.find_active("org_1", ORG)
    assert stored.additional_fields["archived"] is True


async def test_custom_table_keeps_one_live_row_per_identity(custom_registry):
    await custom_registry.initialize()
    await custom_registry.insert("org_1", ORG, "tenant_org_1", {"region": "weur"})

    with pytest.raises(TenantAlreadyExistsError):
        await custom_registry.insert("org_1", ORG, "tenant_org_1", {"region": "weur"})


async def test_additional_fields_are_validated(custom_registry):
    await custom_registry.initialize()

    with pytest.raises(ValueError, match="required"):
        await custom_registry.insert("org_1", ORG, "tenant_org_1")
    with pytest.raises(ValueError, match="Unknown"):
        await custom_registry.insert("org_1", ORG, "tenant_org_1", {"region": "weur", "color": "red"})


async def test_new_fields_are_added_to_an_existing_table(main_db):
    await SQLiteTenantRegistry(main_db).insert("org_old", ORG, "tenant_org_old")
    registry = SQLiteTenantRegistry(main_db, schema=RegistrySchemaOptions(fields={"plan": RegistryField()}))

    await registry.initialize()

    old = await registry.find("org_old", ORG)
    assert old.additional_fields == {"plan": None}


def test_additional_fields_may_not_shadow_built_in_columns(main_db):
    with pytest.raises(ValueError, match="status"):
        SQLiteTenantRegistry(main_db, schema=RegistrySchemaOptions(fields={"status": RegistryField()}))
