# d1_tenancy/dependencies.py
import logging
import secrets
from fastapi import Depends, HTTPException, status, Header
from typing import Optional, Annotated

from .core.plugin import CloudflareD1MultiTenancy
from .core.provider import tenancy_provider
from .settings import settings
from .tenants.service import TenantDatabaseService

logger = logging.getLogger(__name__)

_TENANT_ADMIN_CHALLENGE = {"WWW-Authenticate": 'Basic realm="Tenant Admin"'}


def _reject(status_code: int, detail: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail=detail, headers=_TENANT_ADMIN_CHALLENGE)


async def get_admin_api_key(
    x_admin_api_key: Annotated[
        Optional[str],
        Header(description="Shared secret for the tenant admin routes (ADMIN_API_KEY).")
    ] = None
) -> str:
    """
    Guard for the tenant admin routes.

    503 while the server has no ADMIN_API_KEY, 401 without the header and
    403 when the key does not match.
    """
    expected = settings.admin_api_key
    if not expected:
        logger.critical("API: ADMIN_API_KEY is not configured; tenant admin routes are disabled.")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Tenant admin API is not configured (ADMIN_API_KEY missing on server).",
        )
    if not x_admin_api_key:
        logger.warning("API: Tenant admin request without X-Admin-API-Key header.")
        raise _reject(status.HTTP_401_UNAUTHORIZED, "X-Admin-API-Key header is required for tenant admin routes.")
    if not secrets.compare_digest(x_admin_api_key.encode("utf-8"), expected.encode("utf-8")):
        logger.warning("API: Tenant admin request with a wrong X-Admin-API-Key.")
        raise _reject(status.HTTP_403_FORBIDDEN, "X-Admin-API-Key does not match the server's ADMIN_API_KEY.")
    return x_admin_api_key


async def get_tenancy() -> CloudflareD1MultiTenancy:
    """Return the shared multi-tenancy instance, building it on first use."""
    return await tenancy_provider.get()


async def get_tenant_database_service(
    tenancy: Annotated[CloudflareD1MultiTenancy, Depends(get_tenancy)]
) -> TenantDatabaseService:
    return tenancy.service
