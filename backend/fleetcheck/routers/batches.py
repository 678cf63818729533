"""Batch health check API endpoints."""
import math
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth import require_user
from ..database import get_db
from ..enums import OperationKind, OperationStatus
from ..errors import InvalidTransitionError, NoTargetsError, OperationNotFoundError, TemplateNotFoundError
from ..schemas.batch import (
    BatchScheduleResponse,
    BatchStartResponse,
    OperationPage,
    OperationResponse,
    ScheduleBatchRequest,
    StartBatchRequest,
)
from ..services.batch_runner import batch_runner

router = APIRouter(prefix="/api/batches", tags=["batches"])


def _client_error(status_code: int, error: Exception) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"success": False, "errors": [str(error)]})


@router.post("", response_model=BatchStartResponse, status_code=202)
async def start_batch(
    request: StartBatchRequest,
    db: AsyncSession = Depends(get_db),
    user: str = Depends(require_user),
):
    """Start an immediate batch health check; it runs in the background."""
    try:
        operation = await batch_runner.start_batch(db, request, performed_by=user)
    except NoTargetsError as e:
        raise _client_error(400, e)
    except TemplateNotFoundError as e:
        raise _client_error(404, e)
    return BatchStartResponse(
        message="Batch health check started",
        operation_id=operation.id,
        target_count=len(operation.targets),
    )


@router.post("/schedule", response_model=BatchScheduleResponse, status_code=201)
async def schedule_batch(
    request: ScheduleBatchRequest,
    db: AsyncSession = Depends(get_db),
    user: str = Depends(require_user),
):
    """Create a recurring batch definition."""
    try:
        operation = await batch_runner.schedule_batch(db, request, performed_by=user)
    except NoTargetsError as e:
        raise _client_error(400, e)
    except TemplateNotFoundError as e:
        raise _client_error(404, e)
    return BatchScheduleResponse(
        message="Batch health check scheduled",
        operation_id=operation.id,
        target_count=len(operation.targets),
        next_run=operation.next_run,
    )


@router.get("", response_model=OperationPage)
async def list_operations(
    status: Optional[OperationStatus] = None,
    kind: Optional[OperationKind] = None,
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """List batch operations, newest first."""
    items, total = await batch_runner.list_operations(
        db,
        status=status.value if status else None,
        kind=kind.value if kind else None,
        page=page,
        per_page=per_page,
    )
    return OperationPage(
        items=[OperationResponse.model_validate(item) for item in items],
        total=total,
        page=page,
        per_page=per_page,
        total_pages=math.ceil(total / per_page) if total else 0,
    )


@router.get("/{operation_id}", response_model=OperationResponse)
async def get_operation(operation_id: int, db: AsyncSession = Depends(get_db)):
    """Get one operation with its results."""
    try:
        return await batch_runner.get_operation(db, operation_id)
    except OperationNotFoundError:
        raise HTTPException(status_code=404, detail="Operation not found")


@router.post("/{operation_id}/cancel", response_model=OperationResponse)
async def cancel_operation(
    operation_id: int,
    db: AsyncSession = Depends(get_db),
    user: str = Depends(require_user),
):
    """Cancel a pending or running operation, or stop a schedule."""
    try:
        return await batch_runner.cancel(db, operation_id)
    except OperationNotFoundError:
        raise HTTPException(status_code=404, detail="Operation not found")
    except InvalidTransitionError as e:
        raise _client_error(400, e)
