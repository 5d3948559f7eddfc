# d1_tenancy/core/__init__.py

"""
Host integration for per-tenant D1 databases: the configured multi-tenancy
instance and the accessor that builds it once per process.
"""

from .plugin import CloudflareD1MultiTenancy, MultiTenancyOptions, resolve_tenancy_mode
from .provider import TenancyProvider, build_options_from_settings, tenancy_provider

__all__ = [
    "CloudflareD1MultiTenancy",
    "MultiTenancyOptions",
    "TenancyProvider",
    "build_options_from_settings",
    "resolve_tenancy_mode",
    "tenancy_provider",
]
