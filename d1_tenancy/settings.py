from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Optional
import logging
from pathlib import Path

# Configure logging for settings module
logger = logging.getLogger(__name__)
if not logging.getLogger().hasHandlers():
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s SETTINGS.PY - [%(levelname)s] - %(message)s'
    )

# This settings.py file is at <project>/d1_tenancy/settings.py
# Two .parent calls will get to the project root directory
PROJECT_ROOT = Path(__file__).parent.parent.resolve()
DOTENV_PATH = PROJECT_ROOT / ".env"

if DOTENV_PATH.exists():
    logger.info(f"SETTINGS.PY: .env file FOUND at explicit path: {DOTENV_PATH}")
else:
    logger.warning(
        f"SETTINGS.PY: .env file NOT FOUND at explicit path: {DOTENV_PATH}. "
        "Will rely on OS env vars or defaults."
    )


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    app_name: str = "D1 Tenancy"
    debug_mode: bool = False

    # Main (shared) database holding core auth tables and the tenant registry
    sqlite_db_path: str = "./d1_tenancy_data.sqlite3"
    tenant_registry_table: str = "tenants"
    use_plural_table_names: bool = True

    # Cloudflare D1 API credentials for tenant database management
    cloudflare_d1_api_token: Optional[str] = Field(
        default=None,
        description="Cloudflare API token with D1:edit permissions (CLOUDFLARE_D1_API_TOKEN)."
    )
    cloudflare_acct_id: Optional[str] = Field(
        default=None,
        description="Cloudflare account ID where tenant databases live (CLOUDFLARE_ACCT_ID)."
    )
    cloudflare_api_base_url: str = "https://api.cloudflare.com/client/v4"
    cloudflare_http_timeout: float = 30.0

    # Multi-tenancy behaviour
    tenancy_mode: str = Field(
        default="organization",
        description="Either 'user' or 'organization'. Exactly one mode may be active."
    )
    tenant_database_prefix: str = "tenant_"
    hook_failure_policy: str = Field(
        default="log",
        description="'log' to log hook failures and continue, 'raise' to propagate them."
    )
    tenant_connection_cache_size: int = 128

    # Tenant schema and migrations
    tenant_schema_path: Optional[str] = Field(
        default=None,
        description="Path to the raw SQL schema applied to newly created tenant databases."
    )
    tenant_schema_version: Optional[str] = None
    tenant_migrations_dir: str = "./drizzle-tenant"
    tenant_migration_retry_count: int = 2

    # Security settings
    admin_api_key: Optional[str] = Field(
        default=None,
        description="API Key for accessing admin routes."
    )

    model_config = SettingsConfigDict(
        env_file=DOTENV_PATH if DOTENV_PATH.exists() else None,
        extra="ignore",
        env_file_encoding='utf-8'
    )


# Initialize settings instance
settings = Settings()

# Log configuration values for debugging (sensitive values are masked)
logger.info(
    f"SETTINGS.PY: Post-Settings() settings.debug_mode: "
    f"{settings.debug_mode} (Type: {type(settings.debug_mode)})"
)
logger.info(
    f"SETTINGS.PY: Post-Settings() settings.tenancy_mode: '{settings.tenancy_mode}', "
    f"tenant_database_prefix: '{settings.tenant_database_prefix}'"
)
logger.info(
    f"SETTINGS.PY: Post-Settings() settings.cloudflare_d1_api_token: "
    f"{'********' if settings.cloudflare_d1_api_token else 'None'}, "
    f"cloudflare_acct_id: {'********' if settings.cloudflare_acct_id else 'None'}"
)
logger.info(
    f"SETTINGS.PY: Post-Settings() settings.admin_api_key: "
    f"{'********' if settings.admin_api_key else 'None'} (Type: {type(settings.admin_api_key)})"
)
