# d1_tenancy/core/provider.py
import asyncio
import inspect
import logging
from pathlib import Path
from typing import Awaitable, Callable, Optional, Union

from .plugin import CloudflareD1MultiTenancy, MultiTenancyOptions
from ..cloudflare.models import CloudflareD1ApiConfig
from ..migrations.models import TenantMigrationConfig
from ..migrations.schema_initializer import load_migration_files
from ..settings import Settings, settings
from ..tenants.models import RegistrySchemaOptions

logger = logging.getLogger(__name__)

TenancyFactory = Callable[[], Union[CloudflareD1MultiTenancy, Awaitable[CloudflareD1MultiTenancy]]]


def build_migration_config_from_settings(app_settings: Settings) -> Optional[TenantMigrationConfig]:
    """
    Read the tenant schema lazily from ``tenant_schema_path``.

    The version defaults to the newest file in the migrations folder so new
    databases are not re-migrated by the next migration run.
    """
    if not app_settings.tenant_schema_path:
        return None
    schema_path = Path(app_settings.tenant_schema_path)

    def read_schema() -> str:
        return schema_path.read_text(encoding="utf-8")

    def current_version() -> str:
        if app_settings.tenant_schema_version:
            return app_settings.tenant_schema_version
        migrations = load_migration_files(app_settings.tenant_migrations_dir)
        return migrations[-1].version if migrations else "0000"

    return TenantMigrationConfig(current_schema=read_schema, current_version=current_version)


def build_options_from_settings(app_settings: Settings = settings) -> MultiTenancyOptions:
    return MultiTenancyOptions(
        cloudflare_d1_api=CloudflareD1ApiConfig(
            api_token=app_settings.cloudflare_d1_api_token,
            account_id=app_settings.cloudflare_acct_id,
            base_url=app_settings.cloudflare_api_base_url,
            timeout=app_settings.cloudflare_http_timeout,
            debug_logs=app_settings.debug_mode,
        ),
        mode=app_settings.tenancy_mode,
        database_prefix=app_settings.tenant_database_prefix,
        hook_failure_policy=app_settings.hook_failure_policy,
        migrations=build_migration_config_from_settings(app_settings),
        use_plural=app_settings.use_plural_table_names,
        connection_cache_size=app_settings.tenant_connection_cache_size,
        migration_retry_count=app_settings.tenant_migration_retry_count,
        registry_schema=RegistrySchemaOptions(table_name=app_settings.tenant_registry_table),
        debug_logs=app_settings.debug_mode,
    )


class TenancyProvider:
    """
    Get-or-create accessor for the shared CloudflareD1MultiTenancy instance.

    ``get()`` builds and initializes the instance exactly once, even when
    called concurrently; later calls return the same object until ``close()``.
    """

    def __init__(self, factory: Optional[TenancyFactory] = None):
        self._factory = factory or (lambda: CloudflareD1MultiTenancy(build_options_from_settings()))
        self._instance: Optional[CloudflareD1MultiTenancy] = None
        self._lock = asyncio.Lock()

    @property
    def instance(self) -> Optional[CloudflareD1MultiTenancy]:
        return self._instance

    async def get(self) -> CloudflareD1MultiTenancy:
        if self._instance is not None:
            return self._instance
        async with self._lock:
            if self._instance is None:
                instance = self._factory()
                if inspect.isawaitable(instance):
                    instance = await instance
                await instance.initialize()
                self._instance = instance
                logger.info("TenancyProvider: Multi-tenancy instance initialized.")
        return self._instance

    async def close(self) -> None:
        async with self._lock:
            if self._instance is not None:
                await self._instance.close()
                self._instance = None
                logger.info("TenancyProvider: Multi-tenancy instance closed.")


tenancy_provider = TenancyProvider()
