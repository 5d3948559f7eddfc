# d1_tenancy/cloudflare/d1_client.py
import httpx
import json
import logging
from typing import Any, Dict, List, Optional, Sequence, Type, TypeVar
from pydantic import BaseModel, ValidationError

from .models import (
    CloudflareD1ApiConfig,
    D1CreateResponse,
    D1DeleteResponse,
    D1QueryResponse,
    D1QueryResult,
)
from ..errors import (
    CloudflareD1ApiError,
    InvalidCredentialsError,
    MissingCredentialsError,
)

logger = logging.getLogger(__name__)

# Cloudflare API error codes that signal a rejected token or account
CLOUDFLARE_AUTH_ERROR_CODES = {10000, 9106, 9109}
RETRYABLE_STATUS_CODES = {429, 502, 503, 504}

ResponseModel = TypeVar("ResponseModel", bound=BaseModel)


def validate_cloudflare_credentials(config: CloudflareD1ApiConfig) -> None:
    """
    Fail fast when the API token or account ID is missing or blank.

    Raises:
        MissingCredentialsError: before any network call is attempted
    """
    if not config.api_token or not config.api_token.strip():
        raise MissingCredentialsError(
            "Cloudflare API token is required for D1 multi-tenancy. Please set the "
            "CLOUDFLARE_D1_API_TOKEN environment variable or provide cloudflare_d1_api.api_token."
        )
    if not config.account_id or not config.account_id.strip():
        raise MissingCredentialsError(
            "Cloudflare account ID is required for D1 multi-tenancy. Please set the "
            "CLOUDFLARE_ACCT_ID environment variable or provide cloudflare_d1_api.account_id."
        )


def get_cloudflare_d1_tenant_database_name(tenant_id: str, prefix: str = "tenant_") -> str:
    """Return the deterministic D1 database name for a tenant."""
    return f"{prefix}{tenant_id}"


def _error_messages(errors: Sequence[Any]) -> str:
    messages = []
    for err in errors:
        if isinstance(err, dict):
            messages.append(str(err.get("message", err)))
        else:
            messages.append(str(err))
    return ", ".join(messages)


class CloudflareD1Client:
    """
    Minimal async client for the Cloudflare D1 REST API.

    Covers database creation and deletion plus the per-database query
    endpoint used as the SQL execution transport. Calls are never retried
    here; callers decide using ``ProviderError.retryable``.
    """

    def __init__(self, config: CloudflareD1ApiConfig, http_client: Optional[httpx.AsyncClient] = None):
        """Initialize with API configuration and an optional pre-built HTTP client."""
        self.config = config
        self._client = http_client
        self._owns_client = http_client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.timeout)
        return self._client

    def _database_url(self, database_id: Optional[str] = None) -> str:
        url = f"{self.config.base_url.rstrip('/')}/accounts/{self.config.account_id}/d1/database"
        if database_id:
            url += f"/{database_id}"
        return url

    async def _request(
        self,
        method: str,
        url: str,
        response_model: Type[ResponseModel],
        json_payload: Optional[Dict[str, Any]] = None,
        operation: str = "request",
    ) -> ResponseModel:
        """
        Issue an authenticated request and return the body parsed as ``response_model``.

        Authentication failures are recognised from the HTTP status (401/403)
        or Cloudflare's auth error codes. Any other non-success response is
        raised as CloudflareD1ApiError with its status code attached.
        """
        validate_cloudflare_credentials(self.config)
        headers = {
            "Authorization": f"Bearer {self.config.api_token}",
            "Content-Type": "application/json",
        }

        if self.config.debug_logs:
            logger.debug(f"D1: {method} {url} | JSON: {json_payload is not None}")

        try:
            response = await self._get_client().request(method, url, json=json_payload, headers=headers)
        except httpx.TimeoutException as e:
            logger.error(f"D1: Timeout during {operation} ({method} {url}): {e}")
            raise CloudflareD1ApiError(
                f"Cloudflare D1 API timeout during {operation}: {e}", retryable=True
            ) from e
        except httpx.RequestError as e:
            logger.error(f"D1: Network error during {operation} ({method} {url}): {e}")
            raise CloudflareD1ApiError(
                f"Cloudflare D1 API network error during {operation}: {e}", retryable=True
            ) from e

        body: Optional[Dict[str, Any]] = None
        if response.content:
            try:
                body = response.json()
            except json.JSONDecodeError:
                body = None
        if not isinstance(body, dict):
            body = None

        errors: List[Any] = (body or {}).get("errors") or []
        error_codes = {err.get("code") for err in errors if isinstance(err, dict)}

        if response.status_code in (401, 403) or error_codes & CLOUDFLARE_AUTH_ERROR_CODES:
            logger.error(f"D1: Authentication rejected during {operation} (status {response.status_code}).")
            raise InvalidCredentialsError(status_code=response.status_code, errors=errors)

        if not 200 <= response.status_code < 300:
            detail = _error_messages(errors) or response.reason_phrase
            logger.error(f"D1: {operation} failed with status {response.status_code}: {detail}")
            raise CloudflareD1ApiError(
                f"Cloudflare API error during {operation}: {response.status_code} {detail}",
                status_code=response.status_code,
                errors=errors,
                retryable=response.status_code in RETRYABLE_STATUS_CODES,
            )

        if body is None:
            raise CloudflareD1ApiError(
                f"Cloudflare D1 API returned a malformed response during {operation}",
                status_code=response.status_code,
            )

        if body.get("success") is False and errors:
            detail = _error_messages(errors)
            logger.error(f"D1: {operation} reported errors: {detail}")
            raise CloudflareD1ApiError(
                f"Cloudflare D1 API error during {operation}: {detail}",
                status_code=response.status_code,
                errors=errors,
            )

        try:
            return response_model.model_validate(body)
        except ValidationError as e:
            logger.error(f"D1: {operation} returned an unexpected response shape: {e}")
            raise CloudflareD1ApiError(
                f"Cloudflare D1 API returned a malformed response during {operation}",
                status_code=response.status_code,
            ) from e

    async def create_database(self, name: str) -> str:
        """
        Create a D1 database and return its UUID.

        Raises:
            MissingCredentialsError: credentials are blank
            InvalidCredentialsError: the API rejected authentication
            CloudflareD1ApiError: any other failure, including a missing UUID
        """
        parsed = await self._request(
            "POST", self._database_url(), D1CreateResponse, {"name": name}, operation="database creation"
        )
        database_id = parsed.result.uuid if parsed.result else None
        if not database_id:
            raise CloudflareD1ApiError("Failed to get database ID from Cloudflare API response")
        logger.info(f"D1: Created database '{name}' ({database_id}).")
        return database_id

    async def delete_database(self, database_id: str) -> None:
        """Delete a D1 database by UUID."""
        await self._request("DELETE", self._database_url(database_id), D1DeleteResponse, operation="database deletion")
        logger.info(f"D1: Deleted database {database_id}.")

    async def query(self, database_id: str, sql: str, params: Optional[Sequence[Any]] = None) -> D1QueryResult:
        """Execute a single SQL statement against a D1 database."""
        payload: Dict[str, Any] = {"sql": sql}
        if params:
            payload["params"] = list(params)
        parsed = await self._request(
            "POST", f"{self._database_url(database_id)}/query", D1QueryResponse, payload, operation="SQL execution"
        )
        if not parsed.result:
            return D1QueryResult()
        statement_result = parsed.result[0]
        if not statement_result.success:
            raise CloudflareD1ApiError(f"Cloudflare D1 reported a failed statement on database {database_id}")
        return statement_result

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
