# tests/conftest.py
"""
Shared fixtures. The Cloudflare API is replaced by FakeCloudflareD1, an
httpx.MockTransport handler that keeps one in-memory SQLite database per
fake D1 database, so every flow runs offline.
"""
import json
import sqlite3
from collections import defaultdict
from typing import Any, Dict, List, Optional

import httpx
import pytest

from d1_tenancy.cloudflare.d1_client import CloudflareD1Client
from d1_tenancy.cloudflare.models import CloudflareD1ApiConfig
from d1_tenancy.migrations.models import TenantMigrationConfig
from d1_tenancy.routing.connection_pool import TenantConnectionPool
from d1_tenancy.routing.sqlite_adapter import SQLiteAdapter
from d1_tenancy.storage.sqlite_base import create_registry_schema, create_sqlite_connection
from d1_tenancy.tenants.models import TenantType
from d1_tenancy.tenants.service import TenantDatabaseService
from d1_tenancy.tenants.sqlite_tenant_registry import SQLiteTenantRegistry

API_BASE_URL = "https://api.cloudflare.test/client/v4"
ACCOUNT_ID = "acct-123"
API_TOKEN = "test-token"

TENANT_SCHEMA = """
CREATE TABLE notes (
    id TEXT PRIMARY KEY,
    tenant_id TEXT,
    organization_id TEXT,
    user_id TEXT,
    title TEXT,
    created_at TEXT
);
--> statement-breakpoint
CREATE INDEX notes_tenant_idx ON notes (tenant_id);
"""


def _envelope(result: Any = None, success: bool = True, errors: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
    return {"result": result, "success": success, "errors": errors or [], "messages": []}


class FakeCloudflareD1:
    """In-process stand-in for the Cloudflare D1 REST API."""

    def __init__(self):
        self.databases: Dict[str, sqlite3.Connection] = {}
        self.names: Dict[str, str] = {}
        self.executed: Dict[str, List[str]] = defaultdict(list)
        self.requests: List[httpx.Request] = []
        self.next_database_ids: List[str] = []
        self._forced: Dict[str, List[httpx.Response]] = defaultdict(list)
        self._counter = 0

    def force_response(
        self,
        operation: str,
        status_code: int = 500,
        body: Optional[Dict[str, Any]] = None,
        times: int = 1,
    ) -> None:
        """Answer the next ``times`` calls of ``operation`` ('create', 'delete' or 'query') with a canned response."""
        if body is None:
            body = _envelope(success=False, errors=[{"code": 7500, "message": f"forced {operation} failure"}])
        for _ in range(times):
            self._forced[operation].append(httpx.Response(status_code, json=body))

    def requests_for(self, operation: str) -> List[httpx.Request]:
        return [request for request in self.requests if self._operation(request) == operation]

    @staticmethod
    def _operation(request: httpx.Request) -> str:
        path = request.url.path
        if path.endswith("/query"):
            return "query"
        if request.method == "POST":
            return "create"
        return "delete"

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.headers.get("Authorization") != f"Bearer {API_TOKEN}":
            return httpx.Response(
                401, json=_envelope(success=False, errors=[{"code": 10000, "message": "Authentication error"}])
            )

        operation = self._operation(request)
        if self._forced[operation]:
            return self._forced[operation].pop(0)

        prefix = f"/client/v4/accounts/{ACCOUNT_ID}/d1/database"
        remainder = request.url.path[len(prefix):].strip("/")
        database_id = remainder.split("/")[0] if remainder else None

        if operation == "create":
            return self._create(json.loads(request.content))
        if database_id not in self.databases:
            return httpx.Response(
                404, json=_envelope(success=False, errors=[{"code": 7404, "message": "Database not found"}])
            )
        if operation == "delete":
            self.databases.pop(database_id).close()
            self.names.pop(database_id, None)
            return httpx.Response(200, json=_envelope(result=None))
        return self._query(database_id, json.loads(request.content))

    def _create(self, payload: Dict[str, Any]) -> httpx.Response:
        name = payload["name"]
        if name in self.names.values():
            return httpx.Response(
                400, json=_envelope(success=False, errors=[{"code": 7502, "message": "Database already exists"}])
            )
        if self.next_database_ids:
            database_id = self.next_database_ids.pop(0)
        else:
            self._counter += 1
            database_id = f"db-{self._counter:04d}"
        conn = sqlite3.connect(":memory:", check_same_thread=False)
        conn.row_factory = sqlite3.Row
        self.databases[database_id] = conn
        self.names[database_id] = name
        return httpx.Response(200, json=_envelope(result={"uuid": database_id, "name": name}))

    def _query(self, database_id: str, payload: Dict[str, Any]) -> httpx.Response:
        sql = payload["sql"]
        self.executed[database_id].append(sql)
        conn = self.databases[database_id]
        try:
            cursor = conn.execute(sql, payload.get("params") or [])
            rows = [dict(row) for row in cursor.fetchall()]
            conn.commit()
        except sqlite3.Error as e:
            return httpx.Response(
                400, json=_envelope(success=False, errors=[{"code": 7500, "message": str(e)}])
            )
        changes = cursor.rowcount if cursor.rowcount > 0 else 0
        return httpx.Response(
            200,
            json=_envelope(result=[{"results": rows, "success": True, "meta": {"changes": changes}}]),
        )

    def tables(self, database_id: str) -> List[str]:
        rows = self.databases[database_id].execute(
            "SELECT name FROM sqlite_master WHERE type = 'table' ORDER BY name"
        ).fetchall()
        return [row["name"] for row in rows]


@pytest.fixture
def fake_d1() -> FakeCloudflareD1:
    return FakeCloudflareD1()


@pytest.fixture
def api_config() -> CloudflareD1ApiConfig:
    return CloudflareD1ApiConfig(api_token=API_TOKEN, account_id=ACCOUNT_ID, base_url=API_BASE_URL)


@pytest.fixture
def d1_client(fake_d1, api_config) -> CloudflareD1Client:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(fake_d1.handler))
    return CloudflareD1Client(api_config, http_client=http_client)


@pytest.fixture
def main_db() -> sqlite3.Connection:
    """Main database with the tenant registry and the core auth tables."""
    conn = create_sqlite_connection(":memory:")
    create_registry_schema(conn)
    conn.executescript("""
        CREATE TABLE users (id TEXT PRIMARY KEY, name TEXT, email TEXT);
        CREATE TABLE sessions (id TEXT PRIMARY KEY, user_id TEXT, active_organization_id TEXT);
        CREATE TABLE organizations (id TEXT PRIMARY KEY, name TEXT);
    """)
    yield conn
    conn.close()


@pytest.fixture
def registry(main_db) -> SQLiteTenantRegistry:
    return SQLiteTenantRegistry(main_db)


@pytest.fixture
def migration_config() -> TenantMigrationConfig:
    return TenantMigrationConfig(current_schema=TENANT_SCHEMA, current_version="0001")


@pytest.fixture
def connection_pool(d1_client) -> TenantConnectionPool:
    return TenantConnectionPool(d1_client, max_size=8)


@pytest.fixture
def service(registry, d1_client, migration_config, connection_pool) -> TenantDatabaseService:
    return TenantDatabaseService(
        registry=registry,
        client=d1_client,
        mode=TenantType.ORGANIZATION,
        migrations=migration_config,
        connection_pool=connection_pool,
        migration_backoff_seconds=0,
    )


@pytest.fixture
def main_adapter(main_db) -> SQLiteAdapter:
    return SQLiteAdapter(main_db)
