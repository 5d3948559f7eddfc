# d1_tenancy/core/plugin.py
import logging
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Union

from ..cloudflare.d1_client import CloudflareD1Client
from ..cloudflare.models import CloudflareD1ApiConfig
from ..errors import InvalidTenancyModeError
from ..migrations.models import TenantMigrationConfig
from ..routing.adapter_interfaces import AbstractDatabaseAdapter
from ..routing.connection_pool import TenantConnectionPool
from ..routing.sqlite_adapter import SQLiteAdapter
from ..routing.tenant_router import TenantRoutingAdapter, resolve_core_models
from ..tenants.hooks import HookFailurePolicy, TenantHooks
from ..tenants.models import RegistryField, RegistrySchemaOptions, TenantRecord, TenantType
from ..tenants.service import TenantDatabaseService
from ..tenants.sqlite_tenant_registry import SQLiteTenantRegistry
from ..tenants.storage_interfaces import AbstractTenantRegistry

logger = logging.getLogger(__name__)

# Event names understood by CloudflareD1MultiTenancy.dispatch
USER_CREATED = "user.created"
USER_DELETED = "user.deleted"
ORGANIZATION_CREATED = "organization.created"
ORGANIZATION_DELETED = "organization.deleted"


class MultiTenancyOptions(BaseModel):
    """Configuration for per-tenant D1 databases."""
    cloudflare_d1_api: CloudflareD1ApiConfig = Field(default_factory=CloudflareD1ApiConfig)
    mode: Union[str, List[str]] = Field(
        default=TenantType.ORGANIZATION.value,
        description="'user' or 'organization'. A collection is accepted but must hold exactly one mode."
    )
    database_prefix: str = "tenant_"
    hooks: Optional[TenantHooks] = None
    hook_failure_policy: HookFailurePolicy = HookFailurePolicy.LOG
    migrations: Optional[TenantMigrationConfig] = None
    core_models: Optional[Union[List[str], Callable[[List[str]], Iterable[str]]]] = None
    tenant_routing: Optional[Callable[..., Any]] = None
    tenant_fields: Optional[List[str]] = None
    use_plural: bool = True
    connection_cache_size: int = 128
    migration_retry_count: int = 2
    registry_schema: RegistrySchemaOptions = Field(
        default_factory=RegistrySchemaOptions,
        description="Registry table name and extra columns."
    )
    additional_fields: Dict[str, RegistryField] = Field(
        default_factory=dict,
        description="Extra registry columns, merged over registry_schema.fields."
    )
    debug_logs: bool = False

    model_config = ConfigDict(arbitrary_types_allowed=True)


def resolve_tenancy_mode(mode: Any) -> TenantType:
    """
    Reduce the configured mode to a single TenantType.

    Raises:
        InvalidTenancyModeError: no mode, both modes, or an unknown mode
    """
    modes = {mode} if isinstance(mode, str) else set(mode or [])
    try:
        resolved = {TenantType(m) for m in modes}
    except ValueError as e:
        raise InvalidTenancyModeError(f"Unknown multi-tenancy mode: {mode!r}") from e
    if len(resolved) != 1:
        raise InvalidTenancyModeError()
    return resolved.pop()


def _entity_id(entity: Any) -> str:
    if isinstance(entity, str):
        return entity
    if isinstance(entity, dict):
        entity_id = entity.get("id")
    else:
        entity_id = getattr(entity, "id", None)
    if not entity_id:
        raise ValueError(f"Cannot determine ID of {type(entity).__name__} for tenant database lifecycle")
    return str(entity_id)


class CloudflareD1MultiTenancy:
    """
    Wires the tenant registry, the D1 client, the lifecycle orchestrator and
    the routing adapter together, and exposes the host's lifecycle event
    handlers for the configured mode.
    """

    def __init__(
        self,
        options: MultiTenancyOptions,
        registry: Optional[AbstractTenantRegistry] = None,
        main_adapter: Optional[AbstractDatabaseAdapter] = None,
        client: Optional[CloudflareD1Client] = None,
    ):
        self.options = options
        self.mode = resolve_tenancy_mode(options.mode)

        api_config = options.cloudflare_d1_api
        if options.debug_logs and not api_config.debug_logs:
            api_config = api_config.model_copy(update={"debug_logs": True})
        self.client = client or CloudflareD1Client(api_config)

        self.registry_schema = options.registry_schema.model_copy(
            update={"fields": {**options.registry_schema.fields, **options.additional_fields}}
        )
        self.registry = registry or SQLiteTenantRegistry(schema=self.registry_schema)
        self.connection_pool = TenantConnectionPool(
            self.client, use_plural=options.use_plural, max_size=options.connection_cache_size
        )
        self.service = TenantDatabaseService(
            registry=self.registry,
            client=self.client,
            mode=self.mode,
            database_prefix=options.database_prefix,
            migrations=options.migrations,
            hooks=options.hooks,
            hook_failure_policy=options.hook_failure_policy,
            connection_pool=self.connection_pool,
            migration_retry_count=options.migration_retry_count,
        )
        self.main_adapter = main_adapter or SQLiteAdapter(use_plural=options.use_plural)
        self.adapter = TenantRoutingAdapter(
            main_adapter=self.main_adapter,
            registry=self.registry,
            pool=self.connection_pool,
            mode=self.mode,
            # The registry table itself always lives in the main database
            core_models=sorted(resolve_core_models(options.core_models) | {self.registry_schema.table_name}),
            tenant_routing=options.tenant_routing,
            tenant_fields=options.tenant_fields,
        )
        logger.info(f"CloudflareD1MultiTenancy configured in '{self.mode.value}' mode.")

    async def initialize(self) -> None:
        await self.registry.initialize()

    async def close(self) -> None:
        self.connection_pool.clear()
        await self.client.aclose()
        await self.registry.teardown()

    async def on_user_created(self, user: Any) -> Optional[TenantRecord]:
        if self.mode is not TenantType.USER:
            return None
        return await self.service.create_tenant_database(_entity_id(user), actor=user)

    async def on_user_deleted(self, user: Any) -> Optional[TenantRecord]:
        if self.mode is not TenantType.USER:
            return None
        return await self.service.delete_tenant_database(_entity_id(user), actor=user)

    async def on_organization_created(self, organization: Any, actor: Optional[Any] = None) -> Optional[TenantRecord]:
        if self.mode is not TenantType.ORGANIZATION:
            return None
        return await self.service.create_tenant_database(_entity_id(organization), actor=actor)

    async def on_organization_deleted(self, organization_id: str, actor: Optional[Any] = None) -> Optional[TenantRecord]:
        if self.mode is not TenantType.ORGANIZATION:
            return None
        return await self.service.delete_tenant_database(_entity_id(organization_id), actor=actor)

    def event_handlers(self) -> Dict[str, Callable[..., Awaitable[Optional[TenantRecord]]]]:
        """Handlers for the active mode only, keyed by event name."""
        if self.mode is TenantType.USER:
            return {USER_CREATED: self.on_user_created, USER_DELETED: self.on_user_deleted}
        return {
            ORGANIZATION_CREATED: self.on_organization_created,
            ORGANIZATION_DELETED: self.on_organization_deleted,
        }

    async def dispatch(self, event: str, *args: Any, **kwargs: Any) -> Optional[TenantRecord]:
        handler = self.event_handlers().get(event)
        if handler is None:
            logger.debug(f"Ignoring event '{event}' in '{self.mode.value}' mode.")
            return None
        return await handler(*args, **kwargs)
