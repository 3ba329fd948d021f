# app/ai_feature/retriever.py
"""
RETRIEVER MODULE - Context for the AI chat, with a fallback chain

Tiers, tried strictly in this order:

    1. pgvector_search        embed the query, nearest neighbours in the knowledge base
    2. text_search            full-text search in the knowledge base
    3. supabase_data_direct   latest uploaded readings, rendered as context text
    4. hardcoded_fallback     static guidance, always available

The first tier that yields at least one record wins; later tiers are never
called. A tier that raises or times out counts as "no records" and the chain
moves on. Each tier has the same signature so the order lives in one list
(TIERS) and one loop (retrieve_context).
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Sequence, Tuple

from app.core.schemas import (
    ContextType,
    RetrievalMethod,
    RetrievalOptions,
    RetrievalResponse,
)
from app.ai_feature.canonical import canonicalize
from app.ai_feature.fields import normalize_row
from app.ai_feature.llm import CompletionClient, Embedder

logger = logging.getLogger(__name__)


class KnowledgeSearch(Protocol):
    async def vector_search(
        self, embedding: Sequence[float], threshold: float, limit: int
    ) -> List[Dict[str, Any]]: ...

    async def text_search(self, query: str, limit: int) -> List[Dict[str, Any]]: ...


class OperationalData(Protocol):
    async def fetch(self, limit: int = 50) -> List[Dict[str, Any]]: ...


@dataclass(frozen=True)
class Capabilities:
    """
    External collaborators, built once at startup.

    embedder / completion are None when no model API key is configured:
    the vector tier is then skipped instead of failing.
    """

    knowledge: KnowledgeSearch
    operational: OperationalData
    embedder: Optional[Embedder] = None
    completion: Optional[CompletionClient] = None
    tier_timeout: Optional[float] = 10.0


class RetrievalExhaustedError(RuntimeError):
    """Even the static tier produced nothing. This is a bug, not a runtime condition."""


Tier = Callable[[str, RetrievalOptions, Capabilities], Awaitable[List[Dict[str, Any]]]]


# ============================================================================
# TIER 1: VECTOR SEARCH
# ============================================================================


async def vector_search_tier(
    query: str, options: RetrievalOptions, capabilities: Capabilities
) -> List[Dict[str, Any]]:
    if capabilities.embedder is None:
        logger.info("Embedding capability unavailable, skipping vector search")
        return []

    embedding = await capabilities.embedder.embed(query)
    rows = await capabilities.knowledge.vector_search(
        embedding, options.threshold, options.limit
    )

    return [
        {
            "title": row.get("title"),
            "content": row.get("content"),
            "source": row.get("source") or "Knowledge Base",
            "metadata": {
                "category": row.get("category"),
                "tags": row.get("tags"),
                "dataType": "vector_search",
            },
            "similarity": row.get("similarity"),
        }
        for row in rows
    ]


# ============================================================================
# TIER 2: TEXT SEARCH
# ============================================================================


async def text_search_tier(
    query: str, options: RetrievalOptions, capabilities: Capabilities
) -> List[Dict[str, Any]]:
    rows = await capabilities.knowledge.text_search(query, options.limit)

    return [
        {
            "title": row.get("title"),
            "content": row.get("content"),
            "source": row.get("source") or "Knowledge Base",
            "metadata": {
                "category": row.get("category"),
                "tags": row.get("tags"),
                "dataType": "text_search",
            },
            "rank": row.get("rank"),
        }
        for row in rows
    ]


# ============================================================================
# TIER 3: LIVE DATA AS CONTEXT
# ============================================================================


def _fmt(value: Any, decimals: Optional[int] = None) -> str:
    if value is None or value == "":
        return "N/A"
    if decimals is not None:
        try:
            return f"{float(value):.{decimals}f}"
        except (TypeError, ValueError):
            return "N/A"
    return str(value)


def describe_record(record: Dict[str, Any], context_type: ContextType) -> Dict[str, Any]:
    """
    Render one operational reading as a context passage.

    Fire context adds PM10 and a note about fire behaviour; everything
    else gets a short generic environmental summary.
    """
    row = normalize_row(record)
    lat, lon = row.get("latitude"), row.get("longitude")
    position = f"{_fmt(lat, 3)}, {_fmt(lon, 3)}"
    label = row.get("device_name") or f"Location {_fmt(lat, 3)}"

    if context_type == ContextType.FIRE:
        content = (
            f"Fire management context: PM2.5 {_fmt(row.get('pm25'))} μg/m³, "
            f"PM10 {_fmt(row.get('pm10'))} μg/m³, "
            f"Temperature {_fmt(row.get('temperature'))}°C, "
            f"Humidity {_fmt(row.get('humidity'))}%. Location: {position}. "
            "These conditions provide insight into fire behavior potential "
            "and air quality impact assessment."
        )
        category = "fire_management"
    else:
        content = (
            f"Environmental reading: PM2.5 {_fmt(row.get('pm25'))} μg/m³, "
            f"Temperature {_fmt(row.get('temperature'))}°C, "
            f"Humidity {_fmt(row.get('humidity'))}% at {position}"
        )
        category = "environmental_conditions"

    source = row.get("source") or "operational_data"
    return {
        "title": f"Environmental Conditions - {label}",
        "content": content,
        "source": f"Real-time Data ({source})",
        "metadata": {
            "category": category,
            "dataType": "real_supabase_data",
            "location": [lat, lon],
            "timestamp": row.get("timestamp") or row.get("datetime"),
        },
    }


async def operational_data_tier(
    query: str, options: RetrievalOptions, capabilities: Capabilities
) -> List[Dict[str, Any]]:
    records = await capabilities.operational.fetch(limit=options.limit)
    return [describe_record(record, options.context_type) for record in records]


# ============================================================================
# TIER 4: STATIC KNOWLEDGE
# ============================================================================


FIRE_KNOWLEDGE: Tuple[Dict[str, Any], ...] = (
    {
        "title": "Prescribed Fire Safety Guidelines",
        "content": "Prescribed fires require careful planning considering weather conditions, fuel moisture, wind patterns, and crew safety. Key factors include temperature, relative humidity, wind speed and direction, and smoke management.",
        "source": "Fire Management Guidelines",
        "metadata": {"category": "safety", "data_type": "hardcoded_fallback"},
    },
    {
        "title": "Air Quality Monitoring During Burns",
        "content": "Monitor PM2.5 and PM10 levels during prescribed burns. Typical thresholds: Good (0-50 μg/m³), Moderate (51-100 μg/m³), Unhealthy for Sensitive Groups (101-150 μg/m³). Consider meteorological conditions for smoke dispersion.",
        "source": "Air Quality Standards",
        "metadata": {"category": "air_quality", "data_type": "hardcoded_fallback"},
    },
    {
        "title": "Weather Conditions for Prescribed Burns",
        "content": "Optimal burning conditions: Temperature 45-85°F, Relative humidity 25-65%, Wind speed 5-15 mph with consistent direction. Avoid burning during temperature inversions or extreme weather events.",
        "source": "Meteorological Guidelines",
        "metadata": {"category": "weather", "data_type": "hardcoded_fallback"},
    },
)

AIR_QUALITY_KNOWLEDGE: Tuple[Dict[str, Any], ...] = (
    {
        "title": "Air Quality Index Standards",
        "content": "AQI categories: Good (0-50), Moderate (51-100), Unhealthy for Sensitive Groups (101-150), Unhealthy (151-200), Very Unhealthy (201-300), Hazardous (301+). PM2.5 and PM10 are key indicators for particulate pollution.",
        "source": "EPA Air Quality Standards",
        "metadata": {"category": "standards", "data_type": "hardcoded_fallback"},
    },
    {
        "title": "Environmental Monitoring Best Practices",
        "content": "Continuous monitoring of temperature, humidity, particulate matter (PM2.5, PM10), and meteorological conditions provides essential data for environmental management and public health protection.",
        "source": "Environmental Monitoring Guidelines",
        "metadata": {"category": "monitoring", "data_type": "hardcoded_fallback"},
    },
)

MAX_STATIC_SNIPPETS = 3


async def static_knowledge_tier(
    query: str, options: RetrievalOptions, capabilities: Capabilities
) -> List[Dict[str, Any]]:
    knowledge = (
        FIRE_KNOWLEDGE if options.context_type == ContextType.FIRE else AIR_QUALITY_KNOWLEDGE
    )
    return [dict(item) for item in knowledge[:MAX_STATIC_SNIPPETS]]


# ============================================================================
# DRIVER
# ============================================================================


TIERS: Tuple[Tuple[RetrievalMethod, Tier], ...] = (
    (RetrievalMethod.PGVECTOR_SEARCH, vector_search_tier),
    (RetrievalMethod.TEXT_SEARCH, text_search_tier),
    (RetrievalMethod.SUPABASE_DATA_DIRECT, operational_data_tier),
    (RetrievalMethod.HARDCODED_FALLBACK, static_knowledge_tier),
)


async def run_tier(
    method: RetrievalMethod,
    tier: Tier,
    query: str,
    options: RetrievalOptions,
    capabilities: Capabilities,
) -> List[Dict[str, Any]]:
    """Run one tier; errors and timeouts become an empty list."""
    try:
        if capabilities.tier_timeout:
            return await asyncio.wait_for(
                tier(query, options, capabilities), timeout=capabilities.tier_timeout
            )
        return await tier(query, options, capabilities)
    except asyncio.TimeoutError:
        logger.warning(
            f"{method.value} timed out after {capabilities.tier_timeout}s, falling through"
        )
    except Exception as error:
        logger.warning(f"{method.value} failed: {error}")
    return []


async def retrieve_context(
    query: str,
    capabilities: Capabilities,
    options: Optional[RetrievalOptions] = None,
    tiers: Sequence[Tuple[RetrievalMethod, Tier]] = TIERS,
) -> RetrievalResponse:
    """
    Retrieve canonical context for a query.

    Args:
        query: Free-text user question
        capabilities: External collaborators (see Capabilities)
        options: limit, threshold, contextType
        tiers: Ordered (method, tier) pairs, TIERS by default

    Returns:
        RetrievalResponse tagged with the method of the tier that answered

    Raises:
        RetrievalExhaustedError: no tier produced a result (the static
            tier is broken)
    """
    options = options or RetrievalOptions()

    for method, tier in tiers:
        logger.info(f"Trying {method.value} for context retrieval...")
        records = await run_tier(method, tier, query, options, capabilities)
        if not records:
            continue

        response = canonicalize(records, method)
        if response.success and response.count > 0:
            logger.info(f"Found {response.count} results via {method.value}")
            return response

        logger.warning(f"{method.value} results could not be canonicalized: {response.error}")

    raise RetrievalExhaustedError(
        f"No retrieval tier produced results for query {query!r}"
    )
