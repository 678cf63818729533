"""Domain registry API endpoints."""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth import require_user
from ..database import get_db
from ..models import Domain
from ..schemas.domain import DomainCreate, DomainResponse
from ..utils.db_utils import retry_on_lock

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/domains", tags=["domains"])


@router.get("", response_model=List[DomainResponse])
async def list_domains(
    search: Optional[str] = Query(None, description="Substring of the domain name"),
    db: AsyncSession = Depends(get_db),
):
    """List registered domains."""
    query = select(Domain).order_by(Domain.name)
    if search:
        query = query.where(Domain.name.contains(search))
    result = await db.execute(query)
    return result.scalars().all()


@router.post("", response_model=DomainResponse, status_code=201)
async def create_domain(
    data: DomainCreate,
    db: AsyncSession = Depends(get_db),
    user: str = Depends(require_user),
):
    """Register a domain as a batch target."""
    name = data.name.strip().lower()
    existing = (await db.execute(select(Domain).where(Domain.name == name))).scalar_one_or_none()
    if existing:
        raise HTTPException(status_code=409, detail=f"Domain {name} already exists")

    domain = Domain(
        name=name,
        client_name=data.client_name,
        tags=data.tags,
        enabled=1 if data.enabled else 0,
    )
    db.add(domain)
    await retry_on_lock(db.commit)
    await db.refresh(domain)
    logger.info(f"Domain {name} registered by {user}")
    return domain


@router.delete("/{domain_id}", status_code=204)
async def delete_domain(
    domain_id: int,
    db: AsyncSession = Depends(get_db),
    user: str = Depends(require_user),
):
    """Remove a domain and its check history."""
    domain = await db.get(Domain, domain_id)
    if not domain:
        raise HTTPException(status_code=404, detail="Domain not found")
    await db.delete(domain)
    await retry_on_lock(db.commit)
    logger.info(f"Domain {domain.name} deleted by {user}")
