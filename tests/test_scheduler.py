from datetime import timedelta

import pytest
from sqlalchemy import select

from fleetcheck.enums import Frequency, OperationKind, OperationStatus
from fleetcheck.errors import NoTargetsError
from fleetcheck.models import BatchOperation, Domain
from fleetcheck.schemas.batch import ScheduleBatchRequest, ScheduleSpec, TargetFilter
from fleetcheck.services.scheduler import SchedulerService
from fleetcheck.utils.time_utils import utcnow


async def _schedule(runner, session_factory, request: ScheduleBatchRequest) -> BatchOperation:
    async with session_factory() as session:
        return await runner.schedule_batch(session, request, performed_by="alice")


async def _make_due(session_factory, definition_id: int):
    async with session_factory() as session:
        definition = await session.get(BatchOperation, definition_id)
        definition.next_run = utcnow() - timedelta(minutes=1)
        await session.commit()


@pytest.mark.asyncio
async def test_schedule_batch_computes_next_run(runner, session_factory, add_domains) -> None:
    ids = await add_domains("a.example")

    definition = await _schedule(
        runner,
        session_factory,
        ScheduleBatchRequest(domain_ids=ids, schedule=ScheduleSpec(frequency=Frequency.HOURLY)),
    )

    assert definition.kind == OperationKind.SCHEDULED.value
    assert definition.status == OperationStatus.PENDING.value
    assert definition.schedule["frequency"] == "HOURLY"
    assert utcnow() < definition.next_run <= utcnow() + timedelta(hours=1)
    assert not runner.is_running(definition.id)


@pytest.mark.asyncio
async def test_schedule_batch_without_targets_is_rejected(runner, session_factory) -> None:
    async with session_factory() as session:
        with pytest.raises(NoTargetsError):
            await runner.schedule_batch(
                session,
                ScheduleBatchRequest(
                    filters=TargetFilter(domain_patterns=["nothing"]),
                    schedule=ScheduleSpec(frequency=Frequency.DAILY),
                ),
            )


@pytest.mark.asyncio
async def test_due_definition_spawns_recurring_child(runner, session_factory, add_domains) -> None:
    await add_domains("shop.acme.example", "blog.acme.example")
    definition = await _schedule(
        runner,
        session_factory,
        ScheduleBatchRequest(
            filters=TargetFilter(domain_patterns=["acme"]),
            schedule=ScheduleSpec(frequency=Frequency.DAILY, time="03:00"),
        ),
    )
    await _make_due(session_factory, definition.id)
    # Registered after scheduling; the child resolves targets afresh
    await add_domains("api.acme.example")

    scheduler = SchedulerService(session_factory, runner, tick_seconds=1)
    children = await scheduler.run_due()
    assert len(children) == 1
    await runner.wait(children[0])

    async with session_factory() as session:
        child = await session.get(BatchOperation, children[0])
        definition = await session.get(BatchOperation, definition.id)

    assert child.kind == OperationKind.RECURRING.value
    assert child.parent_id == definition.id
    assert child.status == OperationStatus.COMPLETED.value
    assert child.results["total_checked"] == 3
    assert definition.status == OperationStatus.PENDING.value
    assert definition.last_run is not None
    assert definition.next_run > utcnow()
    assert (definition.next_run.hour, definition.next_run.minute) == (3, 0)

    assert await scheduler.run_due() == []


@pytest.mark.asyncio
async def test_child_with_no_remaining_targets_completes_empty(runner, session_factory, add_domains) -> None:
    ids = await add_domains("gone.example")
    definition = await _schedule(
        runner,
        session_factory,
        ScheduleBatchRequest(domain_ids=ids, schedule=ScheduleSpec(frequency=Frequency.WEEKLY, day_of_week=1)),
    )
    await _make_due(session_factory, definition.id)
    async with session_factory() as session:
        domain = await session.get(Domain, ids[0])
        domain.enabled = 0
        await session.commit()

    children = await SchedulerService(session_factory, runner).run_due()
    await runner.wait(children[0])

    async with session_factory() as session:
        child = await session.get(BatchOperation, children[0])
    assert child.status == OperationStatus.COMPLETED.value
    assert child.targets == []
    assert child.results["total_checked"] == 0


@pytest.mark.asyncio
async def test_once_schedule_fires_a_single_time(runner, session_factory, add_domains) -> None:
    ids = await add_domains("a.example")
    definition = await _schedule(
        runner, session_factory, ScheduleBatchRequest(domain_ids=ids, schedule=ScheduleSpec(frequency=Frequency.ONCE))
    )
    await _make_due(session_factory, definition.id)
    scheduler = SchedulerService(session_factory, runner)

    children = await scheduler.run_due()
    await runner.wait(children[0])

    async with session_factory() as session:
        definition = await session.get(BatchOperation, definition.id)
        children_rows = (
            await session.execute(select(BatchOperation).where(BatchOperation.parent_id == definition.id))
        ).scalars().all()
    assert definition.next_run is None
    assert definition.schedule["enabled"] is False
    assert len(children_rows) == 1
    assert await scheduler.run_due() == []


@pytest.mark.asyncio
async def test_cancelled_definition_is_not_fired(runner, session_factory, add_domains) -> None:
    ids = await add_domains("a.example")
    definition = await _schedule(
        runner, session_factory, ScheduleBatchRequest(domain_ids=ids, schedule=ScheduleSpec(frequency=Frequency.HOURLY))
    )
    async with session_factory() as session:
        await runner.cancel(session, definition.id)
    await _make_due(session_factory, definition.id)

    assert await SchedulerService(session_factory, runner).run_due() == []
