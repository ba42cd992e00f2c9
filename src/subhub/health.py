"""
Liveness endpoint.
"""

from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from .db import check_database_health, get_async_session, utcnow
from .settings import settings

health_router = APIRouter(tags=["Health"])


class HealthResponse(BaseModel):
    status: str
    version: str
    database: str
    timestamp: datetime


@health_router.get("/health", response_model=HealthResponse)
async def health(session: AsyncSession = Depends(get_async_session)) -> HealthResponse:
    database_ok = await check_database_health(session)
    return HealthResponse(
        status="ok" if database_ok else "degraded",
        version=settings.app_version,
        database="connected" if database_ok else "unavailable",
        timestamp=utcnow(),
    )
