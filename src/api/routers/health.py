"""Health check endpoints."""
import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from db.schema import CURRENT_SCHEMA_VERSION, STATE_TABLE
from db.session import get_async_session

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    database: str
    schema_version: int | None = None


@router.get("/health", response_model=HealthResponse)
async def health_check(
    db: AsyncSession = Depends(get_async_session),
) -> HealthResponse:
    """Check application and database health, including the schema version."""
    db_status = "healthy"
    schema_version = None
    try:
        result = await db.execute(text(f"SELECT schemaVersion FROM {STATE_TABLE}"))
        schema_version = result.scalar_one_or_none()
        if schema_version != CURRENT_SCHEMA_VERSION:
            db_status = "schema mismatch"
    except Exception:
        logger.exception("Database health check failed")
        db_status = "unhealthy"

    return HealthResponse(
        status="healthy" if db_status == "healthy" else "degraded",
        database=db_status,
        schema_version=schema_version,
    )
