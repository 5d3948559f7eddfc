# d1_tenancy/cloudflare/__init__.py
"""
Cloudflare D1 provider client.

Wraps the Cloudflare REST API calls used to create, delete and query
tenant databases.
"""

from .models import CloudflareD1ApiConfig, D1QueryResult
from .d1_client import (
    CloudflareD1Client,
    validate_cloudflare_credentials,
    get_cloudflare_d1_tenant_database_name,
)

__all__ = [
    "CloudflareD1ApiConfig",
    "D1QueryResult",
    "CloudflareD1Client",
    "validate_cloudflare_credentials",
    "get_cloudflare_d1_tenant_database_name",
]
