from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import schemas
from app.core.database import get_db
from app.ai_feature.executor import check_database_status, execute_query
from app.ai_feature.parser import enforce_allowlists, normalize_descriptor_fields

router = APIRouter(prefix="/data", tags=["Data"])

db_dep = Annotated[AsyncSession, Depends(get_db)]


@router.post("/query", response_model=schemas.QueryExecutionResult)
async def run_query(descriptor: schemas.QueryDescriptor, db: db_dep):
    """
    Execute a structured query.
    The body goes through the same allow-lists as model output; a
    disallowed table/field runs the safe fallback instead.
    """
    checked = enforce_allowlists(normalize_descriptor_fields(descriptor))
    to_run = checked.data if checked.success else checked.fallback
    return await execute_query(to_run, db)


@router.get("/status", response_model=schemas.DatabaseStatus)
async def database_status(db: db_dep):
    """Which schemas and search functions are reachable."""
    return await check_database_status(db)
