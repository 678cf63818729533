"""Scheduler service - fires due recurring batch definitions.

Each tick:
- finds SCHEDULED definitions whose schedule is enabled and next_run has passed
- creates a RECURRING child operation with freshly resolved targets
- runs the child through the batch runner
- advances the definition's last_run/next_run (ONCE schedules are disabled)
"""
import logging
from typing import List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..config import settings
from ..database import async_session
from ..enums import Frequency, OperationKind, OperationStatus
from ..models import BatchOperation
from ..schemas.batch import ScheduleSpec, TargetFilter
from ..utils.db_utils import retry_on_lock
from ..utils.time_utils import utcnow
from .batch_runner import BatchRunner, batch_runner
from .recurrence import next_run

logger = logging.getLogger(__name__)


class SchedulerService:
    """Runs the recurring-batch tick on an APScheduler interval job."""

    def __init__(
        self,
        session_factory: async_sessionmaker = async_session,
        runner: Optional[BatchRunner] = None,
        tick_seconds: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.runner = runner or batch_runner
        self.tick_seconds = tick_seconds or settings.scheduler_tick_seconds
        self.scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    def start(self):
        """Start the scheduler."""
        if self._running:
            return

        self.scheduler = AsyncIOScheduler()
        self.scheduler.add_job(
            self._tick,
            trigger=IntervalTrigger(seconds=self.tick_seconds),
            id="run_due_batches",
            replace_existing=True,
            max_instances=1,
            misfire_grace_time=self.tick_seconds,
        )
        self.scheduler.start()
        self._running = True
        logger.info(f"Scheduler started (tick={self.tick_seconds}s)")

    def stop(self):
        """Stop the scheduler."""
        if self.scheduler and self._running:
            self.scheduler.shutdown(wait=False)
            self._running = False
            logger.info("Scheduler stopped")

    async def _tick(self):
        try:
            await self.run_due()
        except Exception as e:
            logger.error(f"Error running scheduled batches: {e}")

    async def run_due(self) -> List[int]:
        """Fire every due definition; returns the ids of the child operations started."""
        now = utcnow()
        async with self.session_factory() as session:
            result = await session.execute(
                select(BatchOperation.id).where(
                    BatchOperation.kind == OperationKind.SCHEDULED.value,
                    BatchOperation.status == OperationStatus.PENDING.value,
                    BatchOperation.next_run.is_not(None),
                    BatchOperation.next_run <= now,
                )
            )
            due_ids = list(result.scalars().all())

        if not due_ids:
            return []
        logger.debug(f"{len(due_ids)} scheduled batch definition(s) due")

        children = []
        for definition_id in due_ids:
            child_id = await self._fire(definition_id)
            if child_id is not None:
                children.append(child_id)
        return children

    async def _fire(self, definition_id: int) -> Optional[int]:
        """Spawn and launch one RECURRING child, then advance the definition."""
        try:
            async with self.session_factory() as session:
                definition = await session.get(BatchOperation, definition_id)
                schedule = ScheduleSpec.model_validate(definition.schedule)
                if not schedule.enabled:
                    definition.next_run = None
                    await retry_on_lock(session.commit)
                    return None

                filters = TargetFilter.model_validate(definition.filters) if definition.filters else None
                targets = await self.runner.resolve_targets(session, filters=filters)

                now = utcnow()
                child = BatchOperation(
                    kind=OperationKind.RECURRING.value,
                    status=OperationStatus.PENDING.value,
                    parent_id=definition.id,
                    template_id=definition.template_id,
                    targets=targets,
                    filters=definition.filters,
                    check_types=definition.check_types,
                    configuration=definition.configuration,
                    notifications=definition.notifications,
                    performed_by=definition.performed_by,
                )
                session.add(child)

                definition.last_run = now
                if schedule.frequency == Frequency.ONCE:
                    definition.schedule = {**definition.schedule, "enabled": False}
                    definition.next_run = None
                else:
                    definition.next_run = next_run(schedule, now)
                await retry_on_lock(session.commit)
                child_id = child.id
                logger.info(
                    f"Schedule {definition_id} fired: operation {child_id} for {len(targets)} domain(s), "
                    f"next run {definition.next_run}"
                )
        except Exception as e:
            logger.error(f"Error firing schedule {definition_id}: {e}")
            return None

        self.runner.launch(child_id)
        return child_id


# Global instance
scheduler_service = SchedulerService()
