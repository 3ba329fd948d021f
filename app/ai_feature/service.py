"""Orchestration layer for the AI chat.

Flow:
1. Retrieve context (fallback chain in retriever.py)
2. Translate the question into query params (completion capability)
3. Validate the params (parser.py, fails closed to a safe default)
4. Execute the read-only query (executor.py)
5. Combine context and rows into a prompt context for the caller
"""
import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

import httpx
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import Settings
from app.core.schemas import (
    AskResponse,
    ContextType,
    GeneratedQueryResponse,
    OrderDirection,
    QueryDescriptor,
    RetrievalOptions,
)
from app.ai_feature.executor import execute_query
from app.ai_feature.knowledge import KnowledgeStore
from app.ai_feature.llm import (
    OpenAICompletionClient,
    OpenAIEmbedder,
    build_http_client,
)
from app.ai_feature.operational import OperationalDataSource, SessionExpiryPolicy
from app.ai_feature.parser import parse_query_params
from app.ai_feature.retriever import Capabilities, retrieve_context

logger = logging.getLogger(__name__)


def build_capabilities(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    http_client: Optional[httpx.AsyncClient] = None,
) -> Capabilities:
    """
    Decide once, at startup, which collaborators exist.

    Without a model API key there is no embedder and no completion client.
    """
    http_client = http_client or build_http_client(settings)

    embedder = completion = None
    if http_client is not None:
        embedder = OpenAIEmbedder(http_client, settings.EMBEDDING_MODEL)
        completion = OpenAICompletionClient(http_client, settings.COMPLETION_MODEL)

    return Capabilities(
        knowledge=KnowledgeStore(session_factory),
        operational=OperationalDataSource(
            session_factory,
            policy=SessionExpiryPolicy(
                max_age=timedelta(hours=settings.SESSION_MAX_AGE_HOURS)
            ),
        ),
        embedder=embedder,
        completion=completion,
        tier_timeout=settings.RETRIEVAL_TIER_TIMEOUT_SECONDS,
    )


# Dependency: capabilities live on app.state, built in the lifespan
def get_capabilities(request: Request) -> Capabilities:
    return request.app.state.capabilities


# ============================================================================
# QUESTION → QUERY PARAMS
# ============================================================================


SCHEMA_INFO = {
    "normalized": "Schema: devices (id, name, latitude, longitude) and sensor_readings (id, device_id, timestamp, pm25, pm10, temperature, humidity)",
    "legacy": "Schema: air_quality (id, datetime, pm25, pm10, temperature, humidity, latitude, longitude)",
}


def default_params_for(schema: str) -> QueryDescriptor:
    if schema == "normalized":
        return QueryDescriptor(
            table="sensor_readings",
            limit=100,
            order_by="timestamp",
            order_direction=OrderDirection.DESC,
        )
    return QueryDescriptor(
        table="air_quality",
        limit=100,
        order_by="datetime",
        order_direction=OrderDirection.DESC,
    )


def build_query_prompt(query: str, schema: str) -> str:
    return f"""Based on the user query and database schema, generate query parameters in JSON format.

{SCHEMA_INFO[schema]}

User Query: "{query}"

Return a JSON object with:
- table: string (table name from schema only)
- filters: array of {{field, operator, value}} objects (use only fields from schema)
- limit: number (max 500)
- orderBy: string (field name from schema)
- orderDirection: string ('asc' or 'desc')

Allowed operators: eq, neq, gt, gte, lt, lte, like, ilike, is, not_is
Allowed tables: sensor_readings, air_quality, fire_data, weather_data

Example: {{"table": "sensor_readings", "filters": [{{"field": "temperature", "operator": "gt", "value": 20}}], "limit": 100, "orderBy": "timestamp", "orderDirection": "desc"}}

Return ONLY valid JSON, no explanation or markdown."""


async def generate_query_params(
    query: str, capabilities: Capabilities, schema: str = "normalized"
) -> GeneratedQueryResponse:
    """
    Ask the completion model for query params and validate them.

    Always returns a runnable descriptor: the model's if it passes,
    otherwise the parser's fallback (or the schema default when the
    model is unavailable or the call fails).
    """
    defaults = default_params_for(schema)

    if capabilities.completion is None:
        return GeneratedQueryResponse(success=True, data=defaults)

    try:
        content = await capabilities.completion.complete(build_query_prompt(query, schema))
    except Exception as error:
        logger.error(f"Error generating query parameters: {error}")
        return GeneratedQueryResponse(success=False, data=defaults, error=str(error))

    result = parse_query_params(content)
    if result.success:
        return GeneratedQueryResponse(success=True, data=result.data)

    logger.warning(f"LLM query parameter validation failed: {result.error}")
    return GeneratedQueryResponse(success=False, data=result.fallback, error=result.error)


# ============================================================================
# COMBINE
# ============================================================================


MAX_PROMPT_ROWS = 20


def build_prompt_context(context_passages: List[Dict[str, Any]], rows: List[Dict[str, Any]]) -> str:
    """Plain-text block the chat endpoint prepends to the user question."""
    lines = ["Relevant knowledge:"]
    for passage in context_passages:
        lines.append(f"- {passage['title']} ({passage['source']}): {passage['content']}")

    lines.append("")
    lines.append(f"Query results ({len(rows)} rows):")
    for row in rows[:MAX_PROMPT_ROWS]:
        lines.append(f"- {row}")
    return "\n".join(lines)


async def ask(
    query: str,
    capabilities: Capabilities,
    db: AsyncSession,
    context_type: ContextType = ContextType.GENERAL,
    schema: str = "normalized",
    limit: int = 5,
    threshold: float = 0.78,
) -> AskResponse:
    """Context + query rows for one question, ready for a completion prompt."""
    context = await retrieve_context(
        query,
        capabilities,
        RetrievalOptions(limit=limit, threshold=threshold, context_type=context_type),
    )
    params = await generate_query_params(query, capabilities, schema)
    query_result = await execute_query(params.data, db)

    passages = [result.model_dump() for result in context.results]
    return AskResponse(
        query=query,
        context=context,
        query_params=params.data,
        query_result=query_result,
        prompt_context=build_prompt_context(passages, query_result.data),
    )
