"""Dashboard statistics endpoint."""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..schemas.stats import HealthStats
from ..services.stats import get_stats

router = APIRouter(prefix="/api/stats", tags=["stats"])


@router.get("", response_model=HealthStats)
async def health_stats(
    domain: Optional[str] = Query(None, description="Only domains containing this text"),
    db: AsyncSession = Depends(get_db),
):
    """Uptime, SSL and response-time statistics over the latest checks."""
    return await get_stats(db, domain)
