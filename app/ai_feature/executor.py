# app/ai_feature/executor.py
"""
EXECUTOR MODULE - Run a validated QueryDescriptor against the tabular store

Purpose:
    1. Build a SELECT for the descriptor's table (joining devices for readings)
    2. Apply user filters through a fixed operator → SQL mapping
    3. Apply baseline data-quality predicates (not user controlled)
    4. Order, clamp the limit, execute, return plain dict rows

Only descriptors that went through parse_query_params() should reach this
module. Anything odd that still slips through (unknown operator, field the
table does not have) becomes a no-op filter with a warning instead of failing
the whole query.
"""

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Optional, Tuple
from uuid import UUID

from sqlalchemy import Select, select, text
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.elements import ColumnElement

from app.core import models
from app.core.schemas import (
    DatabaseStatus,
    FilterOperator,
    OrderDirection,
    QueryDescriptor,
    QueryExecutionResult,
    clamp_limit,
)
from app.ai_feature.fields import physical_column

logger = logging.getLogger(__name__)


TABLE_MODELS = {
    "sensor_readings": models.SensorReading,
    "air_quality": models.AirQuality,
    "fire_data": models.FireData,
    "weather_data": models.WeatherData,
}

# Tables whose rows are always returned with a joined auxiliary table
AUTO_JOINS = {"sensor_readings": "devices"}

DEVICE_PREFIX = "device__"

# Column each table is ordered by when the descriptor names no usable orderBy
TIME_COLUMNS = {
    "sensor_readings": "timestamp",
    "air_quality": "datetime",
    "fire_data": "datetime",
    "weather_data": "datetime",
}


# ============================================================================
# STEP 1: BASE QUERY
# ============================================================================


def build_base_query(table: str) -> Tuple[Select, Dict[str, ColumnElement]]:
    """
    Build the SELECT for a table plus a lookup of the columns it exposes.

    sensor_readings is always inner-joined with devices because consumers
    need coordinates. Device columns are selected with a "device__" prefix
    and are reachable in the lookup as "device.<column>".
    """
    model = TABLE_MODELS[table]
    table_obj = model.__table__
    columns: Dict[str, ColumnElement] = {c.name: c for c in table_obj.columns}

    if AUTO_JOINS.get(table) == "devices":
        devices = models.Device.__table__
        query = select(
            table_obj,
            *[c.label(f"{DEVICE_PREFIX}{c.name}") for c in devices.columns],
        ).join(devices, table_obj.c.device_id == devices.c.id)
        columns.update({f"device.{c.name}": c for c in devices.columns})
    else:
        query = select(table_obj)

    return query, columns


# ============================================================================
# STEP 2: USER FILTERS
# ============================================================================


OPERATORS: Dict[FilterOperator, Callable[[ColumnElement, Any], ColumnElement]] = {
    FilterOperator.EQ: lambda column, value: column == value,
    FilterOperator.NEQ: lambda column, value: column != value,
    FilterOperator.GT: lambda column, value: column > value,
    FilterOperator.GTE: lambda column, value: column >= value,
    FilterOperator.LT: lambda column, value: column < value,
    FilterOperator.LTE: lambda column, value: column <= value,
    FilterOperator.LIKE: lambda column, value: column.like(f"%{value}%"),
    FilterOperator.ILIKE: lambda column, value: column.ilike(f"%{value}%"),
    FilterOperator.IS: lambda column, value: column.is_(value),
    FilterOperator.NOT_IS: lambda column, value: column.is_not(value),
}

COMPARISONS = frozenset(
    {
        FilterOperator.EQ,
        FilterOperator.NEQ,
        FilterOperator.GT,
        FilterOperator.GTE,
        FilterOperator.LT,
        FilterOperator.LTE,
    }
)

# IS / IS NOT only take SQL literals
IS_LITERALS = {"null": None, "true": True, "false": False}


def is_literal(value: Any) -> Any:
    """
    None, booleans and their string spellings ("null", "true", "false").

    Raises:
        ValueError: anything else
    """
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in IS_LITERALS:
        return IS_LITERALS[value.strip().lower()]
    raise ValueError(f"{value!r} is not null, true or false")


def coerce_value(column: ColumnElement, value: Any) -> Any:
    """
    Convert a filter value to the column's Python type.

    Model output often quotes numbers and dates ("20", "2026-01-01");
    drivers like asyncpg refuse to bind those to numeric/timestamp columns.

    Raises:
        ValueError / TypeError: the value cannot represent the column type
    """
    try:
        python_type = column.type.python_type
    except NotImplementedError:
        return value

    if value is None or (isinstance(value, python_type) and not isinstance(value, bool)):
        return value
    if isinstance(value, bool) and python_type is not bool:
        raise TypeError(f"boolean {value} for a {python_type.__name__} column")

    if python_type is datetime:
        if not isinstance(value, str):
            raise TypeError(f"expected an ISO datetime string, got {value!r}")
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        if parsed.tzinfo is None and getattr(column.type, "timezone", False):
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    if python_type is date:
        return date.fromisoformat(str(value).strip())
    if python_type is float:
        return float(value)
    if python_type is int:
        number = float(value)
        return int(number) if number.is_integer() else number
    if python_type is bool:
        return is_literal(value)
    if python_type is str:
        if isinstance(value, (dict, list)):
            raise TypeError(f"expected a scalar, got {type(value).__name__}")
        return str(value)
    return value


def resolve_column(
    table: str, field: Optional[str], columns: Dict[str, ColumnElement]
) -> Optional[ColumnElement]:
    """Canonical field name → SQL column of this query, or None."""
    if not field:
        return None
    name = physical_column(table, field)
    if name is None:
        return None
    return columns.get(name)


def apply_filters(
    query: Select,
    descriptor: QueryDescriptor,
    columns: Dict[str, ColumnElement],
) -> Select:
    """
    Apply descriptor filters in the order given.

    A filter on a missing column, with an unknown operator, or with a
    value that does not fit the column is skipped with a warning.
    """
    for query_filter in descriptor.filters:
        column = resolve_column(descriptor.table, query_filter.field, columns)
        if column is None:
            logger.warning(
                f"Skipping filter on '{query_filter.field}': "
                f"not a column of {descriptor.table}"
            )
            continue

        try:
            operator = FilterOperator(query_filter.operator)
        except ValueError:
            logger.warning(f"Unknown operator: {query_filter.operator}")
            continue

        value = query_filter.value
        try:
            if operator in (FilterOperator.IS, FilterOperator.NOT_IS):
                value = is_literal(value)
            elif operator in COMPARISONS:
                value = coerce_value(column, value)
        except (TypeError, ValueError) as error:
            logger.warning(
                f"Skipping filter {query_filter.field} {operator.value} "
                f"{query_filter.value!r}: {error}"
            )
            continue

        query = query.where(OPERATORS[operator](column, value))

    return query


# ============================================================================
# STEP 3: BASELINE DATA QUALITY
# ============================================================================


def apply_quality_filters(
    query: Select, table: str, columns: Dict[str, ColumnElement]
) -> Select:
    """
    Drop placeholder rows that would mislead analysis.

    Sensors write 0 when they have no reading, and rows without a
    position cannot be mapped.
    """
    if table == "sensor_readings":
        query = query.where(
            columns["temperature"] != 0,
            columns["humidity"] != 0,
        )
    elif table == "air_quality":
        query = query.where(
            columns["latitude"].is_not(None),
            columns["temperature"] != 0,
            columns["relativehumidity"] != 0,
            columns["latitude"] != 0,
            columns["longitude"] != 0,
        )
    return query


# ============================================================================
# STEP 4: ORDER, LIMIT, EXECUTE
# ============================================================================


def build_query(descriptor: QueryDescriptor) -> Select:
    """Full SELECT for a descriptor, without executing it."""
    query, columns = build_base_query(descriptor.table)

    extra_joins = [j for j in descriptor.joins if j != AUTO_JOINS.get(descriptor.table)]
    if extra_joins:
        logger.info(f"No known join {extra_joins} for {descriptor.table}, skipping")

    query = apply_filters(query, descriptor, columns)
    query = apply_quality_filters(query, descriptor.table, columns)

    order_column = None
    if descriptor.order_by:
        order_column = resolve_column(descriptor.table, descriptor.order_by, columns)
        if order_column is None:
            logger.warning(
                f"Cannot order {descriptor.table} by '{descriptor.order_by}', "
                "using time order"
            )
    if order_column is None:
        # Default ordering: by time, so "desc" means most recent first
        order_column = columns[TIME_COLUMNS[descriptor.table]]

    if descriptor.order_direction == OrderDirection.ASC:
        query = query.order_by(order_column.asc())
    else:
        query = query.order_by(order_column.desc())

    # Clamp again even though the descriptor was validated
    return query.limit(clamp_limit(descriptor.limit))


def _json_value(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, UUID):
        return str(value)
    return value


def row_to_dict(row: Dict[str, Any]) -> Dict[str, Any]:
    """Flat result row → dict, nesting prefixed device columns under "device"."""
    record: Dict[str, Any] = {}
    device: Dict[str, Any] = {}
    for key, value in row.items():
        if key.startswith(DEVICE_PREFIX):
            device[key[len(DEVICE_PREFIX):]] = _json_value(value)
        else:
            record[key] = _json_value(value)
    if device:
        record["device"] = device
    return record


async def execute_query(
    descriptor: QueryDescriptor, db: AsyncSession
) -> QueryExecutionResult:
    """
    Execute a descriptor and return rows.

    Never raises: store errors (connection, permissions, bad table)
    come back as success=False with empty data.

    Example:
        result = await execute_query(parse_result.data, db)
        if result.success:
            rows = result.data
    """
    try:
        if descriptor.table not in TABLE_MODELS:
            raise ValueError(f"Unknown table: {descriptor.table}")

        query = build_query(descriptor)
        result = await db.execute(query)
        rows = [row_to_dict(dict(row)) for row in result.mappings().all()]

        return QueryExecutionResult(
            success=True,
            data=rows,
            count=len(rows),
            table=descriptor.table,
        )

    except Exception as error:
        logger.error(f"Database query error on {descriptor.table}: {error}")
        return QueryExecutionResult(
            success=False,
            data=[],
            count=0,
            table=descriptor.table,
            error=str(error),
        )


# ============================================================================
# DATABASE STATUS
# ============================================================================


async def _probe(db: AsyncSession, statement, params: Optional[Dict[str, Any]] = None) -> bool:
    try:
        await db.execute(statement, params or {})
        return True
    except Exception as error:
        logger.info(f"Status probe failed: {error}")
        await db.rollback()
        return False


async def check_database_status(db: AsyncSession) -> DatabaseStatus:
    """
    Report which parts of the store are reachable.

    Each probe runs independently; a failed probe rolls the session back
    so the next one starts clean.
    """
    legacy = await _probe(db, select(models.AirQuality.id).limit(1))
    normalized = await _probe(db, select(models.SensorReading.id).limit(1))
    vector = await _probe(
        db,
        text(
            "SELECT * FROM match_knowledge_base("
            "CAST(:embedding AS vector), :threshold, :match_count)"
        ),
        {"embedding": "[" + ",".join(["0"] * 1536) + "]", "threshold": 0.75, "match_count": 1},
    )
    knowledge = await _probe(
        db,
        text("SELECT * FROM search_knowledge_base_text(:search_term, :limit_count)"),
        {"search_term": "test", "limit_count": 1},
    )

    return DatabaseStatus(
        connected=legacy or normalized,
        normalized_schema=normalized,
        legacy_schema=legacy,
        vector_search=vector,
        knowledge_base=knowledge,
    )
