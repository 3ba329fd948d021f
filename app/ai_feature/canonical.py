# app/ai_feature/canonical.py
"""
CANONICAL MODULE - One result shape no matter which tier answered

Every retrieval tier produces slightly different records (knowledge base rows
with a similarity, text search rows with a rank, synthesized data records,
static snippets). canonicalize() maps all of them into RetrievalResult so
downstream code never branches on the retrieval method.

Defaults:
    title      → "Environmental Data"
    content    → ""
    source     → "Unknown"
    category   → "environmental"
    dataType   → "unknown"
    location   → [0, 0]
    timestamp  → now (ISO-8601)
    confidence → 0.5
"""

import logging
import math
from datetime import date, datetime, timezone
from typing import Any, Iterable, List, Mapping, Optional

from app.core.schemas import (
    RetrievalMetadata,
    RetrievalMethod,
    RetrievalResponse,
    RetrievalResult,
)

logger = logging.getLogger(__name__)


DEFAULT_TITLE = "Environmental Data"
DEFAULT_SOURCE = "Unknown"
DEFAULT_CATEGORY = "environmental"
DEFAULT_DATA_TYPE = "unknown"
DEFAULT_CONFIDENCE = 0.5


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _text(value: Any, default: str) -> str:
    if value is None:
        return default
    value = str(value)
    return value if value.strip() else default


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def canonical_location(value: Any) -> List[float]:
    """[lat, lon] when both parse as finite numbers, else [0, 0]."""
    if isinstance(value, (list, tuple)) and len(value) == 2:
        lat, lon = _number(value[0]), _number(value[1])
        if lat is not None and lon is not None:
            return [lat, lon]
    return [0.0, 0.0]


def canonical_timestamp(value: Any) -> str:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, str) and value.strip():
        try:
            return datetime.fromisoformat(value.strip().replace("Z", "+00:00")).isoformat()
        except ValueError:
            logger.warning(f"Unparseable timestamp {value!r}, using now")
    return now_iso()


def canonical_confidence(*candidates: Any) -> float:
    """First usable score, clamped to [0, 1]; 0.5 when none is usable."""
    for candidate in candidates:
        score = _number(candidate)
        if score is not None:
            return min(max(score, 0.0), 1.0)
    return DEFAULT_CONFIDENCE


def canonical_result(item: Mapping[str, Any]) -> RetrievalResult:
    metadata = item.get("metadata")
    if not isinstance(metadata, Mapping):
        metadata = {}

    return RetrievalResult(
        title=_text(item.get("title"), DEFAULT_TITLE),
        content=_text(item.get("content"), ""),
        source=_text(item.get("source"), DEFAULT_SOURCE),
        metadata=RetrievalMetadata(
            category=_text(metadata.get("category"), DEFAULT_CATEGORY),
            data_type=_text(
                metadata.get("dataType") or metadata.get("data_type"),
                DEFAULT_DATA_TYPE,
            ),
            location=canonical_location(metadata.get("location")),
            timestamp=canonical_timestamp(
                metadata.get("timestamp") or metadata.get("datetime")
            ),
            confidence=canonical_confidence(
                item.get("similarity"),
                item.get("rank"),
                metadata.get("confidence"),
            ),
        ),
    )


def canonicalize(
    raw_results: Iterable[Mapping[str, Any]], method: RetrievalMethod
) -> RetrievalResponse:
    """
    Wrap tier records into a RetrievalResponse.

    Never raises: if mapping fails the response is success=False with
    no results and the error message.
    """
    try:
        results = [canonical_result(item) for item in raw_results]
        return RetrievalResponse(
            success=True,
            results=results,
            method=method,
            count=len(results),
            timestamp=now_iso(),
        )
    except Exception as error:
        logger.error(f"Failed to create canonical response: {error}")
        return RetrievalResponse(
            success=False,
            results=[],
            method=method,
            count=0,
            timestamp=now_iso(),
            error=f"Failed to create canonical response: {error}",
        )
