from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from .models import SortBy, WhereInput


class AbstractDatabaseAdapter(ABC):
    """
    Narrow data-access capability shared by the main database adapter,
    tenant database adapters and the routing adapter.

    Records are plain dicts keyed by camelCase field names.
    """

    @abstractmethod
    async def create(self, model: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a record and return it as stored. An ``id`` is generated when absent."""
        pass

    @abstractmethod
    async def find_one(self, model: str, where: WhereInput) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    async def find_many(
        self,
        model: str,
        where: Optional[WhereInput] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        sort_by: Optional[SortBy] = None,
    ) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def count(self, model: str, where: Optional[WhereInput] = None) -> int:
        pass

    @abstractmethod
    async def update(self, model: str, where: WhereInput, update: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Update the first matching record and return it, or None when nothing matched."""
        pass

    @abstractmethod
    async def update_many(self, model: str, where: WhereInput, update: Dict[str, Any]) -> int:
        pass

    @abstractmethod
    async def delete(self, model: str, where: WhereInput) -> None:
        pass

    @abstractmethod
    async def delete_many(self, model: str, where: WhereInput) -> int:
        pass
