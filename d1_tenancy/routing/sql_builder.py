# d1_tenancy/routing/sql_builder.py
"""
Parameterised SQL generation shared by the main-database and tenant-database
adapters. Model and field names arrive in camelCase and are mapped to
snake_case tables and columns; rows are mapped back to camelCase keys.
"""
import re
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .models import SortBy, Where, WhereOperator

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_CAMEL_BOUNDARY_RE = re.compile(r"(?<=[a-z0-9])([A-Z])")

_COMPARISON_OPERATORS = {
    WhereOperator.EQ: "=",
    WhereOperator.NE: "!=",
    WhereOperator.LT: "<",
    WhereOperator.LTE: "<=",
    WhereOperator.GT: ">",
    WhereOperator.GTE: ">=",
}


def to_snake_case(name: str) -> str:
    return _CAMEL_BOUNDARY_RE.sub(r"_\1", name).lower()


def to_camel_case(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def quote_identifier(name: str) -> str:
    """Quote a table or column name, rejecting anything that is not a plain identifier."""
    if not _IDENTIFIER_RE.match(name):
        raise ValueError(f"Invalid SQL identifier: {name!r}")
    return f'"{name}"'


def table_name(model: str, use_plural: bool = True) -> str:
    table = to_snake_case(model)
    if use_plural and not table.endswith("s"):
        table += "s"
    return table


def column_name(field: str) -> str:
    return to_snake_case(field)


def to_db_value(value: Any) -> Any:
    if isinstance(value, bool):
        return int(value)
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return value


def row_to_record(row: Dict[str, Any]) -> Dict[str, Any]:
    return {to_camel_case(key): value for key, value in row.items()}


def _clause_sql(clause: Where) -> Tuple[str, List[Any]]:
    column = quote_identifier(column_name(clause.field))
    operator = WhereOperator(clause.operator)
    value = clause.value

    if operator in (WhereOperator.EQ, WhereOperator.NE) and value is None:
        return f"{column} IS {'NOT ' if operator is WhereOperator.NE else ''}NULL", []
    if operator in _COMPARISON_OPERATORS:
        return f"{column} {_COMPARISON_OPERATORS[operator]} ?", [to_db_value(value)]
    if operator in (WhereOperator.IN, WhereOperator.NOT_IN):
        values = list(value) if isinstance(value, (list, tuple, set)) else [value]
        if not values:
            # Empty IN matches nothing; empty NOT IN matches everything
            return ("1 = 0", []) if operator is WhereOperator.IN else ("1 = 1", [])
        placeholders = ", ".join("?" for _ in values)
        keyword = "IN" if operator is WhereOperator.IN else "NOT IN"
        return f"{column} {keyword} ({placeholders})", [to_db_value(v) for v in values]

    pattern = {
        WhereOperator.CONTAINS: "%{}%",
        WhereOperator.STARTS_WITH: "{}%",
        WhereOperator.ENDS_WITH: "%{}",
    }[operator]
    return f"{column} LIKE ?", [pattern.format(value)]


def build_where(where: Sequence[Where]) -> Tuple[str, List[Any]]:
    """
    Render where clauses as ``WHERE ...``.

    AND clauses are conjoined, OR clauses disjoined, and the two groups are
    combined with AND. Returns an empty string when there is nothing to filter.
    """
    and_parts: List[str] = []
    or_parts: List[str] = []
    params: List[Any] = []
    and_params: List[Any] = []
    or_params: List[Any] = []

    for clause in where:
        sql, clause_params = _clause_sql(clause)
        if clause.connector == "OR":
            or_parts.append(sql)
            or_params.extend(clause_params)
        else:
            and_parts.append(sql)
            and_params.extend(clause_params)

    parts = list(and_parts)
    params.extend(and_params)
    if or_parts:
        parts.append(f"({' OR '.join(or_parts)})")
        params.extend(or_params)

    if not parts:
        return "", []
    return "WHERE " + " AND ".join(parts), params


def build_select(
    table: str,
    where: Sequence[Where],
    limit: Optional[int] = None,
    offset: Optional[int] = None,
    sort_by: Optional[SortBy] = None,
) -> Tuple[str, List[Any]]:
    where_sql, params = build_where(where)
    sql = f"SELECT * FROM {quote_identifier(table)} {where_sql}".rstrip()
    if sort_by is not None:
        direction = "DESC" if sort_by.direction == "desc" else "ASC"
        sql += f" ORDER BY {quote_identifier(column_name(sort_by.field))} {direction}"
    if limit is not None:
        sql += " LIMIT ?"
        params.append(int(limit))
    if offset:
        if limit is None:
            sql += " LIMIT -1"
        sql += " OFFSET ?"
        params.append(int(offset))
    return sql, params


def build_count(table: str, where: Sequence[Where]) -> Tuple[str, List[Any]]:
    where_sql, params = build_where(where)
    return f"SELECT COUNT(*) AS count FROM {quote_identifier(table)} {where_sql}".rstrip(), params


def build_insert(table: str, data: Dict[str, Any]) -> Tuple[str, List[Any]]:
    columns = [quote_identifier(column_name(field)) for field in data]
    placeholders = ", ".join("?" for _ in data)
    sql = f"INSERT INTO {quote_identifier(table)} ({', '.join(columns)}) VALUES ({placeholders})"
    return sql, [to_db_value(value) for value in data.values()]


def build_update(table: str, where: Sequence[Where], update: Dict[str, Any]) -> Tuple[str, List[Any]]:
    if not update:
        raise ValueError("Update payload must not be empty")
    assignments = ", ".join(f"{quote_identifier(column_name(field))} = ?" for field in update)
    params = [to_db_value(value) for value in update.values()]
    where_sql, where_params = build_where(where)
    sql = f"UPDATE {quote_identifier(table)} SET {assignments} {where_sql}".rstrip()
    return sql, params + where_params


def build_delete(table: str, where: Sequence[Where]) -> Tuple[str, List[Any]]:
    where_sql, params = build_where(where)
    return f"DELETE FROM {quote_identifier(table)} {where_sql}".rstrip(), params
