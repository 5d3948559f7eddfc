# d1_tenancy/errors.py
from typing import Any, List, Optional


# Default human readable messages keyed by error code
CLOUDFLARE_D1_MULTI_TENANCY_ERROR_CODES = {
    "DATABASE_ALREADY_EXISTS": "Tenant database already exists",
    "DATABASE_NOT_FOUND": "Tenant database not found",
    "DATABASE_CREATION_FAILED": "Failed to create tenant database",
    "DATABASE_DELETION_FAILED": "Failed to delete tenant database",
    "CLOUDFLARE_D1_API_ERROR": "Cloudflare D1 API error",
    "MISSING_CREDENTIALS": "Cloudflare API token and account ID are required for D1 multi-tenancy",
    "INVALID_CREDENTIALS": "Invalid Cloudflare API credentials provided",
    "INVALID_SCHEMA": "Tenant schema is empty or could not be resolved",
    "MIGRATION_FAILED": "Failed to apply tenant migrations",
    "INVALID_TENANCY_MODE": "Exactly one multi-tenancy mode ('user' or 'organization') must be configured",
    "HOOK_FAILED": "Tenant lifecycle hook failed",
}


class CloudflareD1MultiTenancyError(Exception):
    """Base class for every error raised by the multi-tenancy layer.

    Each subclass carries a stable ``code`` so callers (and the HTTP layer)
    can branch on the failure kind without parsing messages.
    """

    code: str = "CLOUDFLARE_D1_API_ERROR"

    def __init__(self, message: Optional[str] = None):
        self.message = message or CLOUDFLARE_D1_MULTI_TENANCY_ERROR_CODES[self.code]
        super().__init__(self.message)


class MissingCredentialsError(CloudflareD1MultiTenancyError):
    """Raised before any network call when the API token or account ID is blank."""

    code = "MISSING_CREDENTIALS"


class ProviderError(CloudflareD1MultiTenancyError):
    """A non-success response (or transport failure) from the Cloudflare API."""

    code = "CLOUDFLARE_D1_API_ERROR"

    def __init__(
        self,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        errors: Optional[List[Any]] = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.errors = errors or []
        self.retryable = retryable


class CloudflareD1ApiError(ProviderError):
    """Generic Cloudflare D1 API failure."""


class InvalidCredentialsError(ProviderError):
    """The Cloudflare API rejected the token or account (401/403 or auth error code)."""

    code = "INVALID_CREDENTIALS"

    def __init__(self, message: Optional[str] = None, status_code: Optional[int] = None, errors: Optional[List[Any]] = None):
        super().__init__(
            message or (
                "Failed to authenticate with Cloudflare API. Please verify your API token has "
                "D1:edit permissions and your account ID is correct."
            ),
            status_code=status_code,
            errors=errors,
            retryable=False,
        )


class DatabaseCreationFailedError(CloudflareD1MultiTenancyError):
    """Wraps any failure while provisioning or initializing a tenant database."""

    code = "DATABASE_CREATION_FAILED"

    def __init__(self, message: Optional[str] = None, cause: Optional[BaseException] = None):
        if cause is not None and message is None:
            message = f"{CLOUDFLARE_D1_MULTI_TENANCY_ERROR_CODES[self.code]}: {cause}"
        super().__init__(message)
        self.cause = cause


class DatabaseDeletionFailedError(CloudflareD1MultiTenancyError):
    """Wraps any failure while deleting a tenant database."""

    code = "DATABASE_DELETION_FAILED"

    def __init__(self, message: Optional[str] = None, cause: Optional[BaseException] = None):
        if cause is not None and message is None:
            message = f"{CLOUDFLARE_D1_MULTI_TENANCY_ERROR_CODES[self.code]}: {cause}"
        super().__init__(message)
        self.cause = cause


class InvalidSchemaError(CloudflareD1MultiTenancyError):
    code = "INVALID_SCHEMA"


class MigrationFailedError(CloudflareD1MultiTenancyError):
    code = "MIGRATION_FAILED"


class TenantNotFoundError(CloudflareD1MultiTenancyError):
    """No active tenant database could be resolved for an operation."""

    code = "DATABASE_NOT_FOUND"


class TenantAlreadyExistsError(CloudflareD1MultiTenancyError):
    """A non-deleted registry row already exists for the tenant identity."""

    code = "DATABASE_ALREADY_EXISTS"


class InvalidTenancyModeError(CloudflareD1MultiTenancyError):
    code = "INVALID_TENANCY_MODE"


class HookFailedError(CloudflareD1MultiTenancyError):
    """Raised when a lifecycle hook fails and the hook failure policy is 'raise'."""

    code = "HOOK_FAILED"

    def __init__(self, hook_name: str, cause: BaseException):
        super().__init__(f"Tenant lifecycle hook '{hook_name}' failed: {cause}")
        self.hook_name = hook_name
        self.cause = cause
