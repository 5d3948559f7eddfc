# d1_tenancy/routing/tenant_router.py
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple, Union

from .adapter_interfaces import AbstractDatabaseAdapter
from .connection_pool import TenantConnectionPool
from .models import AdapterOperation, RoutingResult, SortBy, WhereInput, WhereOperator, normalize_where
from ..errors import TenantNotFoundError
from ..tenants.models import TenantType
from ..tenants.storage_interfaces import AbstractTenantRegistry

logger = logging.getLogger(__name__)

# Models that always live in the main database
DEFAULT_CORE_MODELS: List[str] = [
    "user", "users",
    "account", "accounts",
    "session", "sessions",
    "organization", "organizations",
    "member", "members",
    "invitation", "invitations",
    "verification", "verifications",
    "tenant", "tenants",
]

# Fields inspected, in order, when no routing callback decides the tenant
DEFAULT_TENANT_FIELDS: Dict[TenantType, List[str]] = {
    TenantType.ORGANIZATION: ["tenantId", "organizationId", "activeOrganizationId"],
    TenantType.USER: ["tenantId", "userId"],
}

CallbackResult = Union[None, str, RoutingResult, Mapping[str, Any]]
TenantRoutingCallback = Callable[[AdapterOperation], Union[CallbackResult, Awaitable[CallbackResult]]]
CoreModelsOption = Union[None, Iterable[str], Callable[[List[str]], Iterable[str]]]


def resolve_core_models(core_models: CoreModelsOption = None) -> Set[str]:
    """A list replaces the defaults; a callable receives the defaults and returns the new list."""
    if core_models is None:
        return set(DEFAULT_CORE_MODELS)
    if callable(core_models):
        return set(core_models(list(DEFAULT_CORE_MODELS)))
    return set(core_models)


def _as_tenant_id(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (list, tuple, set, dict)):
        return None
    value = str(value)
    return value or None


class TenantRoutingAdapter(AbstractDatabaseAdapter):
    """
    Routes each data-access call to the main database or to a tenant database.

    Core models go to the main adapter. Everything else needs a tenant ID
    (from the routing callback, then the configured tenant fields) with an
    active registry row; otherwise TenantNotFoundError is raised and the main
    database is never used as a fallback.
    """

    def __init__(
        self,
        main_adapter: AbstractDatabaseAdapter,
        registry: AbstractTenantRegistry,
        pool: TenantConnectionPool,
        mode: TenantType,
        core_models: CoreModelsOption = None,
        tenant_routing: Optional[TenantRoutingCallback] = None,
        tenant_fields: Optional[Sequence[str]] = None,
    ):
        self.main_adapter = main_adapter
        self.registry = registry
        self.pool = pool
        self.mode = TenantType(mode)
        self.core_models = resolve_core_models(core_models)
        self.tenant_routing = tenant_routing
        self.tenant_fields = list(tenant_fields) if tenant_fields else list(DEFAULT_TENANT_FIELDS[self.mode])

    def is_core_model(self, model: str) -> bool:
        return model in self.core_models

    async def _run_callback(self, operation: AdapterOperation) -> Optional[RoutingResult]:
        if self.tenant_routing is None:
            return None
        result = self.tenant_routing(operation)
        if inspect.isawaitable(result):
            result = await result
        if result is None:
            return None
        # A blank tenant ID in any form falls through to the field lookup
        if isinstance(result, RoutingResult):
            return result if _as_tenant_id(result.tenant_id) else None
        if isinstance(result, str):
            return RoutingResult(tenant_id=result, data=operation.data) if result else None
        if isinstance(result, Mapping):
            tenant_id = _as_tenant_id(result.get("tenant_id") or result.get("tenantId"))
            if tenant_id is None:
                return None
            return RoutingResult(tenant_id=tenant_id, data=result.get("data", operation.data))
        raise TypeError(f"Tenant routing callback returned unsupported type {type(result).__name__}")

    def _tenant_id_from_fields(self, operation: AdapterOperation) -> Optional[str]:
        """
        Find the tenant ID in the configured tenant fields.

        Only AND-connected ``eq`` clauses (or the create/update payload) name a
        tenant. A tenant field inside an OR group, or two different tenant IDs
        in the same source, cannot be routed to a single database.
        """
        candidates: List[List[Tuple[str, Any]]] = []
        if operation.operation == "create":
            if isinstance(operation.data, Mapping):
                candidates.append(list(operation.data.items()))
        else:
            clauses = normalize_where(operation.data)
            or_fields = sorted({c.field for c in clauses if c.connector == "OR" and c.field in self.tenant_fields})
            if or_fields:
                raise TenantNotFoundError(
                    f"Ambiguous tenant for {operation.operation} on '{operation.model_name}': "
                    f"tenant field(s) {', '.join(or_fields)} used in an OR condition"
                )
            candidates.append([
                (clause.field, clause.value)
                for clause in clauses
                if clause.operator is WhereOperator.EQ and clause.connector == "AND"
            ])
            if operation.update:
                candidates.append(list(operation.update.items()))

        for pairs in candidates:
            tenant_ids: Set[str] = set()
            for field, value in pairs:
                tenant_id = _as_tenant_id(value) if field in self.tenant_fields else None
                if tenant_id is not None:
                    tenant_ids.add(tenant_id)
            if len(tenant_ids) > 1:
                raise TenantNotFoundError(
                    f"Ambiguous tenant for {operation.operation} on '{operation.model_name}': "
                    f"{', '.join(sorted(tenant_ids))}"
                )
            if tenant_ids:
                return tenant_ids.pop()
        return None

    async def _route(
        self,
        model: str,
        operation_name: str,
        data: Any,
        update: Optional[Dict[str, Any]] = None,
    ) -> Tuple[AbstractDatabaseAdapter, Any]:
        """Return the adapter to use and the (possibly rewritten) payload."""
        if self.is_core_model(model):
            return self.main_adapter, data

        operation = AdapterOperation(
            model_name=model,
            operation=operation_name,
            data=data,
            update=update,
            fallback_adapter=self.main_adapter,
        )
        routed = await self._run_callback(operation)
        if routed is not None:
            tenant_id, payload = routed.tenant_id, routed.data
        else:
            tenant_id, payload = self._tenant_id_from_fields(operation), data

        if not tenant_id:
            raise TenantNotFoundError(
                f"No tenant ID could be resolved for {operation_name} on non-core model '{model}'"
            )

        record = await self.registry.find_active(tenant_id, self.mode)
        if record is None or not record.database_id:
            raise TenantNotFoundError(f"No active tenant database for {self.mode.value} '{tenant_id}'")

        logger.debug(
            f"Router: {operation_name} on '{model}' routed to tenant '{tenant_id}' (database {record.database_id})"
        )
        return self.pool.get(record.database_id), payload

    async def create(self, model: str, data: Dict[str, Any]) -> Dict[str, Any]:
        adapter, payload = await self._route(model, "create", data)
        return await adapter.create(model, payload)

    async def find_one(self, model: str, where: WhereInput) -> Optional[Dict[str, Any]]:
        adapter, payload = await self._route(model, "find_one", where)
        return await adapter.find_one(model, payload)

    async def find_many(
        self,
        model: str,
        where: Optional[WhereInput] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        sort_by: Optional[SortBy] = None,
    ) -> List[Dict[str, Any]]:
        adapter, payload = await self._route(model, "find_many", where)
        return await adapter.find_many(model, payload, limit=limit, offset=offset, sort_by=sort_by)

    async def count(self, model: str, where: Optional[WhereInput] = None) -> int:
        adapter, payload = await self._route(model, "count", where)
        return await adapter.count(model, payload)

    async def update(self, model: str, where: WhereInput, update: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        adapter, payload = await self._route(model, "update", where, update)
        return await adapter.update(model, payload, update)

    async def update_many(self, model: str, where: WhereInput, update: Dict[str, Any]) -> int:
        adapter, payload = await self._route(model, "update_many", where, update)
        return await adapter.update_many(model, payload, update)

    async def delete(self, model: str, where: WhereInput) -> None:
        adapter, payload = await self._route(model, "delete", where)
        await adapter.delete(model, payload)

    async def delete_many(self, model: str, where: WhereInput) -> int:
        adapter, payload = await self._route(model, "delete_many", where)
        return await adapter.delete_many(model, payload)
