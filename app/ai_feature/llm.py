# app/ai_feature/llm.py
"""
Language model capabilities: embeddings and text completion.

Both talk to an OpenAI-compatible HTTP API through one shared httpx client.
Whether they exist at all is decided once, in build_capabilities(), from
the configured API key.
"""

import logging
from typing import Any, Dict, List, Optional, Protocol

import httpx

from app.core.config import Settings

logger = logging.getLogger(__name__)


class Embedder(Protocol):
    async def embed(self, text: str) -> List[float]: ...


class CompletionClient(Protocol):
    async def complete(self, prompt: str) -> str: ...


class OpenAIEmbedder:
    def __init__(self, client: httpx.AsyncClient, model: str):
        self.client = client
        self.model = model

    async def embed(self, text: str) -> List[float]:
        response = await self.client.post(
            "/embeddings",
            json={"model": self.model, "input": text, "encoding_format": "float"},
        )
        response.raise_for_status()

        data = response.json().get("data") or []
        if not data:
            raise ValueError("Embedding response contained no vectors")
        return data[0]["embedding"]


class OpenAICompletionClient:
    def __init__(
        self,
        client: httpx.AsyncClient,
        model: str,
        max_tokens: int = 500,
        temperature: float = 0.0,
    ):
        self.client = client
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature

    async def complete(self, prompt: str) -> str:
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
        }
        response = await self.client.post("/chat/completions", json=payload)
        response.raise_for_status()

        choices = response.json().get("choices") or []
        if not choices:
            return ""
        return (choices[0].get("message", {}).get("content") or "").strip()


def build_http_client(settings: Settings) -> Optional[httpx.AsyncClient]:
    """Shared client for the model API, or None when no key is configured."""
    if not settings.OPENAI_API_KEY:
        logger.info("OPENAI_API_KEY not set - embedding and completion disabled")
        return None

    return httpx.AsyncClient(
        base_url=settings.OPENAI_BASE_URL,
        headers={"Authorization": f"Bearer {settings.OPENAI_API_KEY}"},
        timeout=settings.LLM_TIMEOUT_SECONDS,
    )
