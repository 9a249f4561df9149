"""
Custom report query compiler.

Turns a ``CustomReportSpec`` into a single SQL string scoped to one tenant
schema. Compilation is deterministic and side-effect free; executing the
result is the report service's job.

Every schema, table, column and alias name is validated as a bare
identifier before it reaches the output. Two things bypass that check:
join predicates, which must be ``TrustedSqlFragment`` instances, and filter
values, which are rendered as escaped literals.
"""

import math
import re
from typing import Any, List, Optional, Tuple

from app.core.exceptions import InvalidReportSpecError, MissingDataSourceError
from app.db.sql import assert_valid_identifier, qualify, quote_literal, require_trusted
from app.schemas.report import CustomReportSpec, SelectedColumn

AGGREGATES = {"sum", "avg", "count", "min", "max"}
JOIN_TYPES = {"inner", "left", "right", "full"}
COMPARISON_OPERATORS = {"=", "!=", ">", "<", ">=", "<="}
SORT_DIRECTIONS = {"ASC", "DESC"}

NUMBER_PATTERN = re.compile(r"[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?")


def _column_alias(col: SelectedColumn) -> str:
    return col.alias if col.alias else f"{col.table}_{col.column}"


def _find_selected(spec: CustomReportSpec, name: str) -> Optional[SelectedColumn]:
    for col in spec.selected_columns:
        if col.column == name:
            return col
    for col in spec.selected_columns:
        if col.alias and col.alias == name:
            return col
    return None


def resolve_column(tenant_schema: str, spec: CustomReportSpec, name: str) -> str:
    """
    Qualify a filter, group-by or order-by column name.

    ``table.column`` is qualified directly. A bare name is matched against the
    selected columns by column name, then by alias; unmatched names are
    qualified against the first data source.
    """
    if "." in name:
        table, _, column = name.partition(".")
        return qualify(tenant_schema, table, column)

    assert_valid_identifier(name)
    match = _find_selected(spec, name)
    if match is not None:
        return qualify(tenant_schema, match.table, match.column)
    return qualify(tenant_schema, spec.data_sources[0], name)


def is_numeric_literal(value: Any) -> bool:
    """True when ``value`` can be emitted as an unquoted finite number."""
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    if isinstance(value, float):
        return math.isfinite(value)
    if isinstance(value, str):
        text = value.strip()
        return bool(NUMBER_PATTERN.fullmatch(text)) and math.isfinite(float(text))
    return False


def render_value(value: Any) -> str:
    if value is None:
        return "NULL"
    if is_numeric_literal(value):
        return str(value).strip()
    return quote_literal(value)


def _quote_required(column: str, operator: str, value: Any) -> str:
    if value is None:
        raise InvalidReportSpecError(f"{operator} filter on {column} cannot compare with NULL")
    return quote_literal(value)


def _render_predicate(column: str, operator: str, value: Any) -> str:
    if operator == "IN":
        values = value if isinstance(value, (list, tuple)) else [value]
        if not values:
            raise InvalidReportSpecError(f"IN filter on {column} needs at least one value")
        rendered = ("NULL" if v is None else quote_literal(v) for v in values)
        return f"{column} IN ({', '.join(rendered)})"

    if operator == "BETWEEN":
        if isinstance(value, (list, tuple)):
            if len(value) != 2:
                raise InvalidReportSpecError(f"BETWEEN filter on {column} needs exactly two values")
            low, high = value
        else:
            low = high = value
        low, high = _quote_required(column, operator, low), _quote_required(column, operator, high)
        return f"{column} BETWEEN {low} AND {high}"

    if operator == "LIKE":
        return f"{column} LIKE {_quote_required(column, operator, value)}"

    if operator in COMPARISON_OPERATORS:
        return f"{column} {operator} {render_value(value)}"

    raise InvalidReportSpecError(f"Unsupported filter operator: {operator!r}")


def _build_projection(tenant_schema: str, spec: CustomReportSpec) -> Tuple[List[str], List[str], bool]:
    projection: List[str] = []
    bare_columns: List[str] = []
    has_aggregate = False

    for col in spec.selected_columns:
        qualified = qualify(tenant_schema, col.table, col.column)
        alias = _column_alias(col)
        assert_valid_identifier(alias)

        if col.aggregate:
            if col.aggregate not in AGGREGATES:
                raise InvalidReportSpecError(f"Unsupported aggregate: {col.aggregate!r}")
            projection.append(f"{col.aggregate.upper()}({qualified}) AS {alias}")
            has_aggregate = True
        else:
            projection.append(f"{qualified} AS {alias}")
            bare_columns.append(qualified)

    return projection, bare_columns, has_aggregate


def _build_from(tenant_schema: str, spec: CustomReportSpec) -> str:
    clause = f"FROM {qualify(tenant_schema, spec.data_sources[0])}"
    for join in spec.joins:
        if join.type not in JOIN_TYPES:
            raise InvalidReportSpecError(f"Unsupported join type: {join.type!r}")
        table = qualify(tenant_schema, join.table)
        predicate = require_trusted(join.on, "Join predicate")
        clause += f" {join.type.upper()} JOIN {table} ON {predicate}"
    return clause


def _order_target(tenant_schema: str, spec: CustomReportSpec, name: str) -> str:
    if "." not in name:
        for col in spec.selected_columns:
            if col.aggregate and _column_alias(col) == name:
                return name
    return resolve_column(tenant_schema, spec, name)


def compile_custom_report(tenant_schema: str, spec: CustomReportSpec) -> str:
    """
    Compile a custom report specification into SQL.

    Args:
        tenant_schema: Schema every table reference is qualified with
        spec: Declarative report specification

    Returns:
        SQL text

    Raises:
        InvalidIdentifierError: If any schema/table/column/alias is unsafe
        MissingDataSourceError: If the report names no data source
        InvalidReportSpecError: If the report is otherwise malformed
    """
    assert_valid_identifier(tenant_schema)

    if not spec.data_sources:
        raise MissingDataSourceError()
    if not spec.selected_columns:
        raise InvalidReportSpecError("At least one selected column is required")
    for source in spec.data_sources:
        assert_valid_identifier(source)

    projection, bare_columns, has_aggregate = _build_projection(tenant_schema, spec)
    clauses = [f"SELECT {', '.join(projection)}", _build_from(tenant_schema, spec)]

    if spec.filters:
        conditions = [
            _render_predicate(resolve_column(tenant_schema, spec, f.column), f.operator, f.value)
            for f in spec.filters
        ]
        clauses.append(f"WHERE {' AND '.join(conditions)}")

    if spec.group_by:
        group_columns = [resolve_column(tenant_schema, spec, name) for name in spec.group_by]
    elif has_aggregate:
        group_columns = bare_columns
    else:
        group_columns = []
    if group_columns:
        clauses.append(f"GROUP BY {', '.join(group_columns)}")

    if spec.order_by:
        order_parts = []
        for order in spec.order_by:
            direction = order.direction.upper()
            if direction not in SORT_DIRECTIONS:
                raise InvalidReportSpecError(f"Unsupported sort direction: {order.direction!r}")
            order_parts.append(f"{_order_target(tenant_schema, spec, order.column)} {direction}")
        clauses.append(f"ORDER BY {', '.join(order_parts)}")

    return " ".join(clauses)
