"""Alert, alert rule and notification channel API endpoints."""
import math
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth import require_user
from ..database import get_db
from ..enums import AlertStatus, AlertType, IssueSeverity
from ..errors import AlertNotFoundError, InvalidTransitionError
from ..models import AlertRule, HealthAlert, NotificationChannel
from ..schemas.alert import (
    AlertPage,
    AlertResolve,
    AlertResponse,
    AlertRuleCreate,
    AlertRuleResponse,
    AlertSuppress,
    ChannelCreate,
    ChannelResponse,
    ChannelTestResponse,
)
from ..services.alert_manager import alert_manager
from ..services.notifier import notifier_service
from ..utils.db_utils import retry_on_lock

router = APIRouter(prefix="/api/alerts", tags=["alerts"])


# Rules and channels are declared before /{alert_id} so their paths win


@router.get("/rules", response_model=List[AlertRuleResponse])
async def list_rules(db: AsyncSession = Depends(get_db)):
    """List alert rules."""
    result = await db.execute(select(AlertRule).order_by(AlertRule.name))
    return result.scalars().all()


@router.post("/rules", response_model=AlertRuleResponse, status_code=201)
async def create_rule(
    data: AlertRuleCreate,
    db: AsyncSession = Depends(get_db),
    user: str = Depends(require_user),
):
    """Create an alert rule."""
    rule = AlertRule(
        name=data.name,
        description=data.description,
        enabled=1 if data.enabled else 0,
        alert_type=data.alert_type.value if data.alert_type else None,
        targets=data.targets.model_dump(mode="json"),
        channels=[c.value for c in data.channels],
        recipients=list(data.recipients),
        throttling=data.throttling.model_dump(mode="json"),
        escalation=data.escalation.model_dump(mode="json"),
        created_by=user,
    )
    db.add(rule)
    await retry_on_lock(db.commit)
    await db.refresh(rule)
    return rule


@router.get("/channels", response_model=List[ChannelResponse])
async def list_channels(db: AsyncSession = Depends(get_db)):
    """List notification channels."""
    result = await db.execute(select(NotificationChannel).order_by(NotificationChannel.name))
    return result.scalars().all()


@router.post("/channels", response_model=ChannelResponse, status_code=201)
async def create_channel(
    data: ChannelCreate,
    db: AsyncSession = Depends(get_db),
    user: str = Depends(require_user),
):
    """Create a notification channel."""
    channel = NotificationChannel(
        name=data.name,
        type=data.type.value,
        enabled=1 if data.enabled else 0,
        configuration=data.configuration,
        created_by=user,
    )
    db.add(channel)
    await retry_on_lock(db.commit)
    await db.refresh(channel)
    return channel


@router.post("/channels/{channel_id}/test", response_model=ChannelTestResponse)
async def test_channel(
    channel_id: int,
    db: AsyncSession = Depends(get_db),
    user: str = Depends(require_user),
):
    """Send a test message through a channel."""
    channel = await db.get(NotificationChannel, channel_id)
    if not channel:
        raise HTTPException(status_code=404, detail="Channel not found")
    success, error = await notifier_service.test_channel(db, channel)
    return ChannelTestResponse(success=success, error=error)


@router.get("", response_model=AlertPage)
async def list_alerts(
    status: Optional[List[AlertStatus]] = Query(None),
    severity: Optional[List[IssueSeverity]] = Query(None),
    alert_type: Optional[AlertType] = None,
    domain: Optional[str] = None,
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """List alerts, most recently detected first."""
    items, total = await alert_manager.list_alerts(
        db,
        status=[s.value for s in status] if status else None,
        severity=[s.value for s in severity] if severity else None,
        alert_type=alert_type.value if alert_type else None,
        domain=domain,
        page=page,
        per_page=per_page,
    )
    return AlertPage(
        items=[AlertResponse.model_validate(item) for item in items],
        total=total,
        page=page,
        per_page=per_page,
        total_pages=math.ceil(total / per_page) if total else 0,
    )


@router.get("/{alert_id}", response_model=AlertResponse)
async def get_alert(alert_id: int, db: AsyncSession = Depends(get_db)):
    """Get one alert with its history."""
    try:
        return await alert_manager.get_alert(db, alert_id)
    except AlertNotFoundError:
        raise HTTPException(status_code=404, detail="Alert not found")


async def _transition(call) -> HealthAlert:
    try:
        return await call
    except AlertNotFoundError:
        raise HTTPException(status_code=404, detail="Alert not found")
    except InvalidTransitionError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/{alert_id}/acknowledge", response_model=AlertResponse)
async def acknowledge_alert(alert_id: int, user: str = Depends(require_user)):
    """Acknowledge an active alert."""
    return await _transition(alert_manager.acknowledge(alert_id, user))


@router.post("/{alert_id}/unacknowledge", response_model=AlertResponse)
async def unacknowledge_alert(alert_id: int, user: str = Depends(require_user)):
    """Return an acknowledged alert to active."""
    return await _transition(alert_manager.unacknowledge(alert_id, user))


@router.post("/{alert_id}/resolve", response_model=AlertResponse)
async def resolve_alert(
    alert_id: int,
    data: Optional[AlertResolve] = Body(None),
    user: str = Depends(require_user),
):
    """Resolve an alert; the next detection opens a new incident."""
    note = data.note if data else None
    return await _transition(alert_manager.resolve(alert_id, note, user))


@router.post("/{alert_id}/suppress", response_model=AlertResponse)
async def suppress_alert(
    alert_id: int,
    data: AlertSuppress,
    user: str = Depends(require_user),
):
    """Silence an alert until the given time."""
    return await _transition(alert_manager.suppress(alert_id, data.until, user))
