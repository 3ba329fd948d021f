# app/ai_feature/knowledge.py
"""
Knowledge base access: vector similarity search and full-text search.

Both go through SQL functions installed next to the knowledge_base table:
    match_knowledge_base(query_embedding vector, match_threshold float, match_count int)
    search_knowledge_base_text(search_term text, limit_count int)
"""

import logging
from typing import Any, Dict, List, Sequence

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)


VECTOR_SEARCH_SQL = text(
    "SELECT id, title, content, category, tags, source, similarity "
    "FROM match_knowledge_base(CAST(:query_embedding AS vector), "
    ":match_threshold, :match_count)"
)

TEXT_SEARCH_SQL = text(
    "SELECT id, title, content, category, tags, source, rank "
    "FROM search_knowledge_base_text(:search_term, :limit_count)"
)


def to_vector_literal(embedding: Sequence[float]) -> str:
    """pgvector text input format: [0.1,0.2,...]"""
    return "[" + ",".join(repr(float(x)) for x in embedding) + "]"


class KnowledgeStore:
    """Read-only access to the knowledge_base search functions."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def _fetch(self, statement, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        async with self.session_factory() as session:
            result = await session.execute(statement, params)
            return [dict(row) for row in result.mappings().all()]

    async def vector_search(
        self, embedding: Sequence[float], threshold: float, limit: int
    ) -> List[Dict[str, Any]]:
        rows = await self._fetch(
            VECTOR_SEARCH_SQL,
            {
                "query_embedding": to_vector_literal(embedding),
                "match_threshold": threshold,
                "match_count": limit,
            },
        )
        logger.info(f"Vector search returned {len(rows)} rows")
        return rows

    async def text_search(self, query: str, limit: int) -> List[Dict[str, Any]]:
        rows = await self._fetch(
            TEXT_SEARCH_SQL, {"search_term": query, "limit_count": limit}
        )
        logger.info(f"Text search returned {len(rows)} rows")
        return rows
