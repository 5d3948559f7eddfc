# d1_tenancy/cloudflare/models.py
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any


class CloudflareD1ApiConfig(BaseModel):
    """Credentials and transport options for the Cloudflare D1 REST API."""
    api_token: Optional[str] = Field(
        default=None,
        description="Cloudflare API token with D1:edit permissions"
    )
    account_id: Optional[str] = Field(
        default=None,
        description="Cloudflare account ID"
    )
    base_url: str = "https://api.cloudflare.com/client/v4"
    timeout: float = 30.0
    debug_logs: bool = False


class D1ApiMessage(BaseModel):
    code: Optional[int] = None
    message: str = ""


class D1DatabaseResult(BaseModel):
    uuid: Optional[str] = None
    name: Optional[str] = None


class D1CreateResponse(BaseModel):
    """Response body of ``POST /accounts/{account_id}/d1/database``."""
    result: Optional[D1DatabaseResult] = None
    success: Optional[bool] = None
    errors: List[D1ApiMessage] = Field(default_factory=list)


class D1DeleteResponse(BaseModel):
    """Response body of ``DELETE /accounts/{account_id}/d1/database/{database_id}``."""
    result: Optional[Any] = None
    success: Optional[bool] = None
    errors: List[D1ApiMessage] = Field(default_factory=list)


class D1QueryResult(BaseModel):
    """A single statement result from the D1 query endpoint."""
    results: List[Dict[str, Any]] = Field(default_factory=list)
    success: bool = True
    meta: Dict[str, Any] = Field(default_factory=dict)

    @property
    def changes(self) -> int:
        """Number of rows written by the statement, as reported by D1."""
        return int(self.meta.get("changes") or 0)


class D1QueryResponse(BaseModel):
    result: List[D1QueryResult] = Field(default_factory=list)
    success: Optional[bool] = None
    errors: List[D1ApiMessage] = Field(default_factory=list)
