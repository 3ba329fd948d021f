import logging
from typing import Annotated, Union

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import schemas
from app.core.config import settings
from app.core.database import get_db
from app.ai_feature import service
from app.ai_feature.parser import parse_query_params
from app.ai_feature.retriever import (
    Capabilities,
    RetrievalExhaustedError,
    retrieve_context,
)

router = APIRouter(prefix="/ai", tags=["AI"])

db_dep = Annotated[AsyncSession, Depends(get_db)]
capabilities_dep = Annotated[Capabilities, Depends(service.get_capabilities)]


# Retrieve context for a chat question
@router.post(
    "/context",
    response_model=schemas.RetrievalResponse,
    status_code=status.HTTP_200_OK,
)
async def get_context(payload: schemas.ContextRequest, capabilities: capabilities_dep):
    if not payload.query.strip():
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Query must not be blank")

    options = schemas.RetrievalOptions(
        limit=payload.limit or settings.RETRIEVAL_DEFAULT_LIMIT,
        threshold=(
            payload.threshold
            if payload.threshold is not None
            else settings.RETRIEVAL_DEFAULT_THRESHOLD
        ),
        context_type=payload.context_type,
    )
    try:
        return await retrieve_context(payload.query, capabilities, options)
    except RetrievalExhaustedError as error:
        # The static tier is supposed to always answer; surface it loudly
        logging.error(f"Context retrieval exhausted: {error}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Context retrieval failed",
        )


# Validate raw model output
@router.post(
    "/query-params",
    response_model=Union[schemas.ParseSuccess, schemas.ParseFailure],
)
async def validate_query_params(payload: schemas.ParseRequest):
    """
    Parse model output into a safe query descriptor.
    Always 200: failures carry the fallback descriptor to use instead.
    """
    return parse_query_params(payload.text)


# Natural language → query params
@router.post("/generate-query", response_model=schemas.GeneratedQueryResponse)
async def generate_query(
    payload: schemas.GenerateQueryRequest, capabilities: capabilities_dep
):
    return await service.generate_query_params(
        payload.query, capabilities, payload.schema_variant
    )


# Context + data for one question
@router.post("/ask", response_model=schemas.AskResponse)
async def ask(payload: schemas.AskRequest, capabilities: capabilities_dep, db: db_dep):
    if not payload.query.strip():
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Query must not be blank")

    try:
        return await service.ask(
            payload.query,
            capabilities,
            db,
            context_type=payload.context_type,
            schema=payload.schema_variant,
            limit=settings.RETRIEVAL_DEFAULT_LIMIT,
            threshold=settings.RETRIEVAL_DEFAULT_THRESHOLD,
        )
    except RetrievalExhaustedError as error:
        logging.error(f"Context retrieval exhausted: {error}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Context retrieval failed",
        )
