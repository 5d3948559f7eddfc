# tests/test_plugin.py
import asyncio

import pytest

from d1_tenancy.core.plugin import (
    ORGANIZATION_CREATED,
    ORGANIZATION_DELETED,
    USER_CREATED,
    USER_DELETED,
    CloudflareD1MultiTenancy,
    MultiTenancyOptions,
    resolve_tenancy_mode,
)
from d1_tenancy.core.provider import TenancyProvider
from d1_tenancy.errors import InvalidTenancyModeError
from d1_tenancy.routing.models import Where
from d1_tenancy.tenants.models import RegistryField, RegistrySchemaOptions, TenantStatus, TenantType

from conftest import TENANT_SCHEMA


def _tenancy(api_config, d1_client, registry, main_adapter, **overrides) -> CloudflareD1MultiTenancy:
    options = MultiTenancyOptions(cloudflare_d1_api=api_config, **overrides)
    return CloudflareD1MultiTenancy(options, registry=registry, main_adapter=main_adapter, client=d1_client)


@pytest.mark.parametrize("mode, expected", [
    ("user", TenantType.USER),
    ("organization", TenantType.ORGANIZATION),
    (["organization"], TenantType.ORGANIZATION),
    ({"user"}, TenantType.USER),
])
def test_resolve_single_mode(mode, expected):
    assert resolve_tenancy_mode(mode) is expected


@pytest.mark.parametrize("mode", [["user", "organization"], [], "", None, "team"])
def test_invalid_modes_are_rejected(mode):
    with pytest.raises(InvalidTenancyModeError):
        resolve_tenancy_mode(mode)


def test_configuring_both_modes_fails(api_config, d1_client, registry, main_adapter):
    with pytest.raises(InvalidTenancyModeError):
        _tenancy(api_config, d1_client, registry, main_adapter, mode=["user", "organization"])


def test_event_handlers_cover_only_active_mode(api_config, d1_client, registry, main_adapter):
    user_tenancy = _tenancy(api_config, d1_client, registry, main_adapter, mode="user")
    org_tenancy = _tenancy(api_config, d1_client, registry, main_adapter, mode="organization")

    assert set(user_tenancy.event_handlers()) == {USER_CREATED, USER_DELETED}
    assert set(org_tenancy.event_handlers()) == {ORGANIZATION_CREATED, ORGANIZATION_DELETED}


async def test_user_mode_lifecycle(api_config, d1_client, registry, main_adapter, fake_d1):
    tenancy = _tenancy(api_config, d1_client, registry, main_adapter, mode="user")

    created = await tenancy.on_user_created({"id": "u1", "email": "u1@example.com"})
    ignored = await tenancy.on_organization_created({"id": "org_9"})
    deleted = await tenancy.dispatch(USER_DELETED, {"id": "u1"})

    assert created.database_name == "tenant_u1"
    assert ignored is None
    assert deleted.status == TenantStatus.DELETED
    assert list(fake_d1.names.values()) == []
    assert len(fake_d1.requests_for("create")) == 1


async def test_unknown_event_is_ignored(api_config, d1_client, registry, main_adapter, fake_d1):
    tenancy = _tenancy(api_config, d1_client, registry, main_adapter)

    assert await tenancy.dispatch(USER_CREATED, {"id": "u1"}) is None
    assert await tenancy.dispatch("team.created", {"id": "t1"}) is None
    assert fake_d1.requests == []


async def test_debug_logs_flag_reaches_client(api_config, registry, main_adapter):
    tenancy = CloudflareD1MultiTenancy(
        MultiTenancyOptions(cloudflare_d1_api=api_config, debug_logs=True),
        registry=registry, main_adapter=main_adapter,
    )

    assert tenancy.client.config.debug_logs is True
    await tenancy.close()


async def test_organization_lifecycle_end_to_end(api_config, d1_client, registry, main_adapter, fake_d1):
    from d1_tenancy.migrations.models import TenantMigrationConfig

    fake_d1.next_database_ids = ["db-abc"]
    tenancy = _tenancy(
        api_config, d1_client, registry, main_adapter,
        mode="organization",
        migrations=TenantMigrationConfig(current_schema=TENANT_SCHEMA, current_version="v1.0.0"),
    )
    await tenancy.initialize()

    record = await tenancy.dispatch(ORGANIZATION_CREATED, {"id": "org_42", "name": "Acme"}, actor={"id": "u1"})

    assert record.database_name == "tenant_org_42"
    assert record.database_id == "db-abc"
    assert record.status == TenantStatus.ACTIVE
    assert record.last_migration_version == "v1.0.0"

    await tenancy.adapter.create("note", {"tenantId": "org_42", "title": "hello"})
    notes = await tenancy.adapter.find_many("note", [Where(field="tenantId", value="org_42")])

    assert [n["title"] for n in notes] == ["hello"]
    assert any(sql.startswith('SELECT * FROM "notes"') for sql in fake_d1.executed["db-abc"])

    await tenancy.on_organization_deleted("org_42", actor={"id": "u1"})
    assert "db-abc" not in tenancy.connection_pool


async def test_provider_builds_instance_once(api_config, d1_client, registry, main_adapter):
    calls = []

    async def factory():
        calls.append(1)
        await asyncio.sleep(0)
        return _tenancy(api_config, d1_client, registry, main_adapter)

    provider = TenancyProvider(factory)

    first, second = await asyncio.gather(provider.get(), provider.get())

    assert first is second
    assert provider.instance is first
    assert len(calls) == 1

    await provider.close()
    assert provider.instance is None
    assert await provider.get() is not first
    assert len(calls) == 2


def test_registry_schema_options_shape_the_registry(api_config, d1_client, main_adapter):
    tenancy = CloudflareD1MultiTenancy(
        MultiTenancyOptions(
            cloudflare_d1_api=api_config,
            registry_schema=RegistrySchemaOptions(table_name="tenant_databases", fields={"plan": RegistryField()}),
            additional_fields={"region": RegistryField(required=True)},
        ),
        main_adapter=main_adapter, client=d1_client,
    )

    assert tenancy.registry.table_name == "tenant_databases"
    assert set(tenancy.registry.schema.fields) == {"plan", "region"}
    assert tenancy.adapter.is_core_model("tenant_databases")
    assert tenancy.adapter.is_core_model("user")
