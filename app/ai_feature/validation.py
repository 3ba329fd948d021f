# app/ai_feature/validation.py
"""
VALIDATION MODULE - Is this object shaped like something we can use?

Two shapes are checked here:
    1. QueryDescriptor   - structured query params produced by a language model
    2. RetrievalResponse - the canonical envelope of the context retriever

This module answers "is it well-formed". Whether a well-formed descriptor is
permitted to run (table/field allow-lists) is the parser's job.
"""

from typing import Any, Dict, List, Mapping, Optional

from pydantic import ValidationError

from app.core.schemas import QueryDescriptor, RetrievalResponse


class DescriptorValidationError(ValueError):
    """
    Raised when a candidate does not match the expected shape.

    Carries a readable message plus field-level errors:
        [{"loc": "filters.0.operator", "msg": "Input should be 'eq', ..."}]
    """

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.message = message
        self.errors = errors or []


def _field_errors(error: ValidationError) -> List[Dict[str, Any]]:
    return [
        {
            "loc": ".".join(str(part) for part in item["loc"]),
            "msg": item["msg"],
        }
        for item in error.errors()
    ]


def _summary(errors: List[Dict[str, Any]]) -> str:
    return "; ".join(f"{e['loc'] or '<root>'}: {e['msg']}" for e in errors)


def validate_query_descriptor(candidate: Any) -> QueryDescriptor:
    """
    Check a parsed object against the QueryDescriptor shape.

    Defaults applied:
        filters        → []
        limit          → 100 (numbers outside 1..500 are clamped)
        orderDirection → "desc"
        joins          → []

    Args:
        candidate: Anything, usually the result of json.loads()

    Returns:
        A QueryDescriptor

    Raises:
        DescriptorValidationError: wrong type, missing table, unknown operator...
    """
    if not isinstance(candidate, Mapping):
        raise DescriptorValidationError(
            f"Expected a JSON object, got {type(candidate).__name__}",
            [{"loc": "", "msg": "Input should be an object"}],
        )

    try:
        return QueryDescriptor.model_validate(dict(candidate))
    except ValidationError as error:
        errors = _field_errors(error)
        raise DescriptorValidationError(
            f"Schema validation failed: {_summary(errors)}", errors
        ) from error


def validate_retrieval_response(candidate: Any) -> RetrievalResponse:
    """Check a retrieval envelope; count must match the number of results."""
    if isinstance(candidate, RetrievalResponse):
        candidate = candidate.model_dump(by_alias=True)
    if not isinstance(candidate, Mapping):
        raise DescriptorValidationError(
            f"Expected a JSON object, got {type(candidate).__name__}",
            [{"loc": "", "msg": "Input should be an object"}],
        )

    try:
        response = RetrievalResponse.model_validate(dict(candidate))
    except ValidationError as error:
        errors = _field_errors(error)
        raise DescriptorValidationError(
            f"Schema validation failed: {_summary(errors)}", errors
        ) from error

    if response.count != len(response.results):
        raise DescriptorValidationError(
            "count does not match number of results",
            [{"loc": "count", "msg": f"{response.count} != {len(response.results)}"}],
        )
    return response
