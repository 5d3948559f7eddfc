# d1_tenancy/routing/connection_pool.py
import logging
from collections import OrderedDict

from .d1_http_adapter import D1HttpAdapter
from ..cloudflare.d1_client import CloudflareD1Client

logger = logging.getLogger(__name__)


class TenantConnectionPool:
    """
    Bounded LRU cache of tenant database adapters, keyed by database ID.

    Keys are always the provider's database ID, never the tenant ID, so a
    re-created tenant database can never be served a stale adapter.
    """

    def __init__(self, client: CloudflareD1Client, use_plural: bool = True, max_size: int = 128):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.client = client
        self.use_plural = use_plural
        self.max_size = max_size
        self._adapters: "OrderedDict[str, D1HttpAdapter]" = OrderedDict()

    def get(self, database_id: str) -> D1HttpAdapter:
        adapter = self._adapters.get(database_id)
        if adapter is not None:
            self._adapters.move_to_end(database_id)
            return adapter

        adapter = D1HttpAdapter(self.client, database_id, use_plural=self.use_plural)
        self._adapters[database_id] = adapter
        if len(self._adapters) > self.max_size:
            evicted_id, _ = self._adapters.popitem(last=False)
            logger.debug(f"Router: Connection cache full, dropped adapter for database {evicted_id}")
        return adapter

    def evict(self, database_id: str) -> bool:
        """Drop the cached adapter for a database. Returns True if one was cached."""
        removed = self._adapters.pop(database_id, None) is not None
        if removed:
            logger.debug(f"Router: Evicted cached adapter for database {database_id}")
        return removed

    def clear(self) -> None:
        self._adapters.clear()

    def __contains__(self, database_id: object) -> bool:
        return database_id in self._adapters

    def __len__(self) -> int:
        return len(self._adapters)
