# app/ai_feature/parser.py
"""
PARSER MODULE - Turn language-model text into a query we are willing to run

Purpose:
    The model is asked for a JSON object describing a query. What comes back
    is untrusted text: prose, markdown fences, broken JSON, or a perfectly
    valid object naming a table we never expose. Every one of those cases must
    end in a descriptor that is safe to execute.

Data Flow:
    raw text → shape pre-check → json.loads() → validate_query_descriptor()
             → normalize field names → allow-lists → ParseSuccess
                                                    ↘ ParseFailure(fallback)

Failure kinds:
    malformed        - not a JSON object or wrong shape
    policy_violation - well formed but names a table/field we do not allow
                       (logged as an error: either a bypass attempt or schema drift)
"""

import json
import logging
from typing import Any, Dict, List, Optional

from app.core.schemas import (
    DEFAULT_QUERY_LIMIT,
    OrderDirection,
    ParseFailure,
    ParseFailureKind,
    ParseResult,
    ParseSuccess,
    QueryDescriptor,
    QueryFilter,
)
from app.ai_feature.fields import (
    FIELD_ALLOWLIST,
    JOIN_ALLOWLIST,
    TABLE_ALLOWLIST,
    normalize_field_name,
)
from app.ai_feature.validation import (
    DescriptorValidationError,
    validate_query_descriptor,
)

logger = logging.getLogger(__name__)


DEFAULT_TABLE = "air_quality"
DEFAULT_ORDER_BY = "datetime"


def default_descriptor() -> QueryDescriptor:
    """
    The descriptor used when nothing usable came back:
        {"table": "air_quality", "filters": [], "limit": 100,
         "orderBy": "datetime", "orderDirection": "desc", "joins": []}
    """
    return QueryDescriptor(
        table=DEFAULT_TABLE,
        filters=[],
        limit=DEFAULT_QUERY_LIMIT,
        order_by=DEFAULT_ORDER_BY,
        order_direction=OrderDirection.DESC,
        joins=[],
    )


def build_fallback(
    table: Optional[str] = None,
    filters: Optional[List[QueryFilter]] = None,
    limit: Optional[int] = None,
    order_by: Optional[str] = None,
    order_direction: Optional[OrderDirection] = None,
    joins: Optional[List[str]] = None,
) -> QueryDescriptor:
    """
    Minimal safe descriptor built from the parts of a candidate that passed.

    Any part not given (or not allowed) is replaced by the default, so the
    result always passes both the schema and the allow-lists.
    """
    safe_filters = [f for f in (filters or []) if f.field in FIELD_ALLOWLIST]
    return QueryDescriptor(
        table=table if table in TABLE_ALLOWLIST else DEFAULT_TABLE,
        filters=safe_filters,
        limit=limit if limit is not None else DEFAULT_QUERY_LIMIT,
        order_by=order_by if order_by in FIELD_ALLOWLIST else DEFAULT_ORDER_BY,
        order_direction=order_direction or OrderDirection.DESC,
        joins=[j for j in (joins or []) if j in JOIN_ALLOWLIST],
    )


def _malformed(error: str, validation_errors: Optional[List[Dict[str, Any]]] = None):
    logger.warning(f"Malformed query params: {error}")
    return ParseFailure(
        error=error,
        kind=ParseFailureKind.MALFORMED,
        fallback=default_descriptor(),
        validation_errors=validation_errors or [],
    )


def _policy_violation(error: str, fallback: QueryDescriptor):
    logger.error(f"Query params policy violation: {error}")
    return ParseFailure(
        error=error,
        kind=ParseFailureKind.POLICY_VIOLATION,
        fallback=fallback,
    )


def normalize_descriptor_fields(descriptor: QueryDescriptor) -> QueryDescriptor:
    """Rewrite filter fields and orderBy to their canonical names."""
    filters = [
        f.model_copy(update={"field": normalize_field_name(f.field)})
        for f in descriptor.filters
    ]
    order_by = (
        normalize_field_name(descriptor.order_by)
        if descriptor.order_by is not None
        else None
    )
    joins = [j.strip().lower() for j in descriptor.joins]
    return descriptor.model_copy(
        update={"filters": filters, "order_by": order_by, "joins": joins}
    )


def enforce_allowlists(descriptor: QueryDescriptor) -> ParseResult:
    """
    Security check on an already well-formed descriptor.

    Order of checks (first violation wins):
        table → filter fields → orderBy → joins
    """
    d = descriptor

    if d.table not in TABLE_ALLOWLIST:
        return _policy_violation(
            f"Table '{d.table}' is not allowed",
            build_fallback(
                limit=d.limit,
                order_by=d.order_by,
                order_direction=d.order_direction,
            ),
        )

    for query_filter in d.filters:
        if query_filter.field not in FIELD_ALLOWLIST:
            return _policy_violation(
                f"Field '{query_filter.field}' is not allowed",
                build_fallback(
                    table=d.table,
                    limit=d.limit,
                    order_by=d.order_by,
                    order_direction=d.order_direction,
                    joins=d.joins,
                ),
            )

    if d.order_by is not None and d.order_by not in FIELD_ALLOWLIST:
        return _policy_violation(
            f"Order field '{d.order_by}' is not allowed",
            build_fallback(
                table=d.table,
                filters=d.filters,
                limit=d.limit,
                order_direction=d.order_direction,
                joins=d.joins,
            ),
        )

    for join in d.joins:
        if join not in JOIN_ALLOWLIST:
            return _policy_violation(
                f"Join '{join}' is not allowed",
                build_fallback(
                    table=d.table,
                    filters=d.filters,
                    limit=d.limit,
                    order_by=d.order_by,
                    order_direction=d.order_direction,
                ),
            )

    return ParseSuccess(data=d)


def parse_query_params(raw_text: Any) -> ParseResult:
    """
    Parse untrusted model output into a QueryDescriptor that is safe to run.

    Never raises. On failure the returned `fallback` already passes the
    schema and the allow-lists, so callers may use it as-is.

    Example:
        >>> parse_query_params('{"table": "air_quality", "limit": 50}').data.limit
        50
        >>> parse_query_params("not json at all").fallback.table
        'air_quality'
    """
    # Step 1: must be a non-empty string
    if not isinstance(raw_text, str) or not raw_text.strip():
        return _malformed("Input is not a valid string")

    # Step 2: cheap shape check before invoking a parser
    trimmed = raw_text.strip()
    if not (trimmed.startswith("{") and trimmed.endswith("}")):
        return _malformed("Input does not appear to be a JSON object")

    # Step 3: parse
    try:
        candidate = json.loads(trimmed)
    except (ValueError, RecursionError) as parse_error:
        return _malformed(f"JSON parsing failed: {parse_error}")

    # Step 4: shape
    try:
        descriptor = validate_query_descriptor(candidate)
    except DescriptorValidationError as error:
        return _malformed(error.message, error.errors)

    # Step 5: allow-lists on canonical field names
    return enforce_allowlists(normalize_descriptor_fields(descriptor))
