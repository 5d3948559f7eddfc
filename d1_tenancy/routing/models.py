# d1_tenancy/routing/models.py
from enum import Enum
from pydantic import BaseModel, ConfigDict
from typing import Any, Dict, List, Literal, Optional, Sequence, Union


class WhereOperator(str, Enum):
    EQ = "eq"
    NE = "ne"
    LT = "lt"
    LTE = "lte"
    GT = "gt"
    GTE = "gte"
    IN = "in"
    NOT_IN = "not_in"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"


class Where(BaseModel):
    """A single filter condition on a model field (camelCase field name)."""
    field: str
    value: Any = None
    operator: WhereOperator = WhereOperator.EQ
    connector: Literal["AND", "OR"] = "AND"


class SortBy(BaseModel):
    field: str
    direction: Literal["asc", "desc"] = "asc"


WhereInput = Sequence[Union[Where, Dict[str, Any]]]


def normalize_where(where: Optional[WhereInput]) -> List[Where]:
    """Accept Where models or plain dicts and return Where models."""
    if not where:
        return []
    return [clause if isinstance(clause, Where) else Where.model_validate(clause) for clause in where]


class AdapterOperation(BaseModel):
    """
    Describes one data-access call, as handed to a custom routing callback.

    ``data`` is the create payload for ``create``, and the where clauses for
    every other operation. ``update`` carries the update payload for
    ``update``/``update_many``.
    """
    model_name: str
    operation: str
    data: Any = None
    update: Optional[Dict[str, Any]] = None
    fallback_adapter: Any = None

    model_config = ConfigDict(arbitrary_types_allowed=True)


class RoutingResult(BaseModel):
    """Routing callback result that also rewrites the outgoing payload."""
    tenant_id: str
    data: Any = None
