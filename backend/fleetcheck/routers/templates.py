"""Health check template API endpoints."""
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth import require_user
from ..database import get_db
from ..models import HealthCheckTemplate
from ..schemas.template import TemplateCreate, TemplateResponse
from ..utils.db_utils import retry_on_lock

router = APIRouter(prefix="/api/templates", tags=["templates"])


@router.get("", response_model=List[TemplateResponse])
async def list_templates(db: AsyncSession = Depends(get_db)):
    """List templates, defaults first."""
    result = await db.execute(
        select(HealthCheckTemplate).order_by(HealthCheckTemplate.is_default.desc(), HealthCheckTemplate.name)
    )
    return result.scalars().all()


@router.post("", response_model=TemplateResponse, status_code=201)
async def create_template(
    data: TemplateCreate,
    db: AsyncSession = Depends(get_db),
    user: str = Depends(require_user),
):
    """Create a reusable check template."""
    existing = await db.execute(select(HealthCheckTemplate).where(HealthCheckTemplate.name == data.name))
    if existing.scalar_one_or_none():
        raise HTTPException(status_code=409, detail="A template with this name already exists")

    if data.is_default:
        # Only one default template
        await db.execute(update(HealthCheckTemplate).values(is_default=0))

    template = HealthCheckTemplate(
        name=data.name,
        description=data.description,
        check_types=data.check_types.model_dump(mode="json"),
        configuration=data.configuration.model_dump(mode="json"),
        schedule=data.schedule.model_dump(mode="json") if data.schedule else None,
        notifications=data.notifications.model_dump(mode="json") if data.notifications else None,
        is_default=1 if data.is_default else 0,
        created_by=user,
    )
    db.add(template)
    await retry_on_lock(db.commit)
    await db.refresh(template)
    return template
