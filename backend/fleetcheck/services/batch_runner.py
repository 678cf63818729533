"""Batch runner - executes fleet-wide health check operations.

Concurrency model:
- N worker tasks pull domains from a queue (N = max_concurrent_checks)
- Each domain runs under its own time budget so a hung host never blocks the rest
- Completed results flow over a second queue to one aggregator task,
  the only writer of the run's summary counters
- Cancellation is cooperative: workers check a flag before taking the next
  domain; domains already in flight finish normally
"""
import asyncio
import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import settings
from ..database import async_session
from ..enums import AlertType, HealthStatus, IssueSeverity, IssueType, OperationKind, OperationStatus
from ..errors import (
    InvalidTransitionError,
    NoTargetsError,
    OperationNotFoundError,
    RunError,
    TemplateNotFoundError,
)
from ..models import BatchOperation, Domain, HealthCheckRecord, HealthCheckTemplate
from ..schemas.batch import (
    CheckConfiguration,
    CheckTypes,
    NotificationSettings,
    ScheduleBatchRequest,
    StartBatchRequest,
    TargetFilter,
)
from ..utils.db_utils import retry_on_lock
from ..utils.time_utils import elapsed_ms, to_naive_utc, utcnow
from .alert_manager import AlertManager, alert_manager
from .evaluator import DomainHealthResult, HealthEvaluator, health_evaluator
from .notifier import NotifierService, notifier_service
from .probes import Issue
from .recurrence import next_run

logger = logging.getLogger(__name__)


def failed_result(domain: str, domain_id: Optional[int], error: str) -> DomainHealthResult:
    """Stand-in result for a domain whose evaluation was aborted by the runner."""
    return DomainHealthResult(
        domain=domain,
        domain_id=domain_id,
        status=HealthStatus.CRITICAL,
        issues=[Issue(IssueType.SYSTEM, IssueSeverity.CRITICAL, f"Health check failed: {error}")],
    )


class RunAccumulator:
    """Aggregate of one run. Only the aggregator task calls add()."""

    def __init__(self):
        self._results: Dict[int, DomainHealthResult] = {}
        self.errors: List[dict] = []
        self.status_counts = {status: 0 for status in HealthStatus}
        self.issue_type_counts: Dict[str, int] = {}
        self._response_time_total = 0
        self._response_time_count = 0
        self.cancelled = False

    def add(self, index: int, result: DomainHealthResult, error: Optional[str] = None):
        self._results[index] = result
        self.status_counts[result.status] += 1
        if error is not None:
            self.errors.append({"domain": result.domain, "error": error})
        for issue in result.issues:
            key = issue.type.value
            self.issue_type_counts[key] = self.issue_type_counts.get(key, 0) + 1
        if result.response_time_ms > 0:
            self._response_time_total += result.response_time_ms
            self._response_time_count += 1

    @property
    def results(self) -> List[DomainHealthResult]:
        """Results in target order."""
        return [self._results[index] for index in sorted(self._results)]

    @property
    def total_checked(self) -> int:
        return len(self._results)

    @property
    def average_response_time(self) -> int:
        if not self._response_time_count:
            return 0
        return round(self._response_time_total / self._response_time_count)

    def to_dict(self) -> dict:
        counts = self.status_counts
        return {
            "total_checked": self.total_checked,
            "successful": counts[HealthStatus.HEALTHY],
            "failed": counts[HealthStatus.CRITICAL] + counts[HealthStatus.UNKNOWN],
            "warnings": counts[HealthStatus.WARNING],
            "errors": list(self.errors),
            "health_checks": [result.to_dict() for result in self.results],
            "summary": {
                "healthy_count": counts[HealthStatus.HEALTHY],
                "warning_count": counts[HealthStatus.WARNING],
                "critical_count": counts[HealthStatus.CRITICAL],
                "unknown_count": counts[HealthStatus.UNKNOWN],
                "average_response_time": self.average_response_time,
                "ssl_issues_count": self.issue_type_counts.get(IssueType.SSL.value, 0),
                "dns_issues_count": self.issue_type_counts.get(IssueType.DNS.value, 0),
                "performance_issues_count": self.issue_type_counts.get(IssueType.PERFORMANCE.value, 0),
                "issue_type_counts": dict(self.issue_type_counts),
            },
        }


class BatchRunner:
    """Creates, executes and cancels batch health check operations."""

    def __init__(
        self,
        session_factory: async_sessionmaker = async_session,
        evaluator: Optional[HealthEvaluator] = None,
        alerts: Optional[AlertManager] = None,
        notifier: Optional[NotifierService] = None,
        max_concurrency: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.evaluator = evaluator or health_evaluator
        self.alerts = alerts or alert_manager
        self.notifier = notifier or notifier_service
        self.max_concurrency = max_concurrency or settings.max_concurrent_checks
        self._cancel_events: Dict[int, asyncio.Event] = {}
        self._tasks: Dict[int, asyncio.Task] = {}

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def resolve_targets(
        self,
        session: AsyncSession,
        domain_ids: Optional[Sequence[int]] = None,
        filters: Optional[TargetFilter] = None,
    ) -> List[dict]:
        """Resolve enabled domains from explicit ids or a filter.

        Explicit ids keep the caller's order; filtered targets are ordered by id.
        """
        ids = list(domain_ids or (filters.domain_ids if filters else []))
        query = select(Domain).where(Domain.enabled == 1)

        if ids:
            query = query.where(Domain.id.in_(ids))
        elif filters:
            if filters.domain_patterns:
                query = query.where(or_(*(Domain.name.contains(p) for p in filters.domain_patterns)))
            if filters.health_statuses:
                query = query.where(Domain.last_status.in_([s.value for s in filters.health_statuses]))
            if filters.last_checked_before:
                query = query.where(or_(
                    Domain.last_checked_at.is_(None),
                    Domain.last_checked_at < to_naive_utc(filters.last_checked_before),
                ))

        domains = list((await session.execute(query.order_by(Domain.id))).scalars().all())
        if not ids and filters and filters.tags:
            wanted = set(filters.tags)
            domains = [d for d in domains if wanted.intersection(d.tags or [])]
        if ids:
            position = {domain_id: i for i, domain_id in enumerate(dict.fromkeys(ids))}
            domains.sort(key=lambda d: position[d.id])
        return [{"id": d.id, "domain": d.name} for d in domains]

    async def _apply_template(
        self, session: AsyncSession, request: StartBatchRequest
    ) -> Tuple[CheckTypes, CheckConfiguration, Optional[NotificationSettings], Optional[HealthCheckTemplate]]:
        check_types = request.check_types
        configuration = request.configuration
        notifications = request.notifications
        template = None

        if request.template_id is not None:
            template = await session.get(HealthCheckTemplate, request.template_id)
            if template is None:
                raise TemplateNotFoundError(f"Template {request.template_id} not found")
            check_types = check_types or CheckTypes.model_validate(template.check_types)
            configuration = configuration or CheckConfiguration.model_validate(template.configuration)
            if notifications is None and template.notifications:
                notifications = NotificationSettings.model_validate(template.notifications)
            template.usage_count = (template.usage_count or 0) + 1
            template.last_used = utcnow()

        return check_types or CheckTypes(), configuration or CheckConfiguration(), notifications, template

    def _stored_filters(self, request: StartBatchRequest) -> Optional[dict]:
        if request.domain_ids:
            return {"domain_ids": list(request.domain_ids)}
        if request.filters:
            return request.filters.model_dump(mode="json")
        return None

    async def _create(
        self,
        session: AsyncSession,
        request: StartBatchRequest,
        kind: OperationKind,
        performed_by: Optional[str],
    ) -> BatchOperation:
        check_types, configuration, notifications, template = await self._apply_template(session, request)
        targets = await self.resolve_targets(session, request.domain_ids, request.filters)
        if not targets:
            raise NoTargetsError()

        operation = BatchOperation(
            kind=kind.value,
            status=OperationStatus.PENDING.value,
            template_id=template.id if template else None,
            targets=targets,
            filters=self._stored_filters(request),
            check_types=check_types.model_dump(mode="json"),
            configuration=configuration.model_dump(mode="json"),
            notifications=notifications.model_dump(mode="json") if notifications else None,
            performed_by=performed_by,
        )
        session.add(operation)
        return operation

    async def start_batch(
        self, session: AsyncSession, request: StartBatchRequest, performed_by: Optional[str] = None
    ) -> BatchOperation:
        """Create an IMMEDIATE operation and launch it in the background.

        Raises NoTargetsError when nothing matches.
        """
        operation = await self._create(session, request, OperationKind.IMMEDIATE, performed_by)
        await retry_on_lock(session.commit)
        logger.info(f"Batch operation {operation.id} created for {len(operation.targets)} domain(s)")
        self.launch(operation.id)
        return operation

    async def schedule_batch(
        self, session: AsyncSession, request: ScheduleBatchRequest, performed_by: Optional[str] = None
    ) -> BatchOperation:
        """Create a SCHEDULED definition; the schedule runner fires it."""
        operation = await self._create(session, request, OperationKind.SCHEDULED, performed_by)
        operation.schedule = request.schedule.model_dump(mode="json")
        operation.next_run = next_run(request.schedule, utcnow())
        await retry_on_lock(session.commit)
        logger.info(f"Batch schedule {operation.id} created, next run {operation.next_run}")
        return operation

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def launch(self, operation_id: int) -> asyncio.Task:
        """Run an operation in the background."""
        self._cancel_events.setdefault(operation_id, asyncio.Event())
        task = asyncio.create_task(self.execute(operation_id), name=f"batch-{operation_id}")
        self._tasks[operation_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(operation_id, None))
        return task

    async def wait(self, operation_id: int):
        """Wait for a launched operation to finish."""
        task = self._tasks.get(operation_id)
        if task is not None:
            await task

    def is_running(self, operation_id: int) -> bool:
        return operation_id in self._tasks

    async def execute(self, operation_id: int) -> Optional[BatchOperation]:
        """Run a PENDING operation to a terminal state.

        Per-domain failures are data. Anything failing outside the per-domain
        loop marks the operation FAILED with one synthetic SYSTEM error.
        """
        cancel_event = self._cancel_events.setdefault(operation_id, asyncio.Event())
        try:
            operation, accumulator = await self._run(operation_id, cancel_event)
        except Exception as e:
            logger.error(f"Batch operation {operation_id} failed: {e}")
            operation, accumulator = await self._mark_failed(operation_id, e), None
        finally:
            self._cancel_events.pop(operation_id, None)

        if operation is not None:
            await self._after_run(operation, accumulator)
        return operation

    async def _run(
        self, operation_id: int, cancel_event: asyncio.Event
    ) -> Tuple[Optional[BatchOperation], Optional[RunAccumulator]]:
        async with self.session_factory() as session:
            operation = await session.get(BatchOperation, operation_id)
            if operation is None:
                raise OperationNotFoundError(f"Operation {operation_id} not found")
            if operation.status == OperationStatus.CANCELLED.value:
                logger.info(f"Batch operation {operation_id} was cancelled before it started")
                return None, None
            if operation.status != OperationStatus.PENDING.value:
                logger.warning(f"Batch operation {operation_id} is {operation.status}, not running it again")
                return None, None

            check_types = CheckTypes.model_validate(operation.check_types)
            configuration = CheckConfiguration.model_validate(operation.configuration)
            targets = list(operation.targets or [])

            operation.status = OperationStatus.IN_PROGRESS.value
            operation.started_at = utcnow()
            await retry_on_lock(session.commit)
            started_at = operation.started_at
            logger.info(f"Batch operation {operation_id} started: {len(targets)} domain(s)")

        accumulator = await self.run_domains(targets, check_types, configuration, cancel_event)

        try:
            async with self.session_factory() as session:
                operation = await session.get(BatchOperation, operation_id)
                now = utcnow()
                operation.results = accumulator.to_dict()
                operation.status = (
                    OperationStatus.CANCELLED.value if accumulator.cancelled else OperationStatus.COMPLETED.value
                )
                operation.completed_at = now
                operation.duration_ms = elapsed_ms(started_at, now)
                await self._record_domain_results(session, operation_id, accumulator.results, now)
                await retry_on_lock(session.commit)
        except Exception as e:
            raise RunError(f"Could not record results: {e}") from e

        summary = operation.results["summary"]
        logger.info(
            f"Batch operation {operation_id} {operation.status.lower()}: "
            f"{summary['healthy_count']} healthy, {summary['warning_count']} warning, "
            f"{summary['critical_count']} critical, {summary['unknown_count']} unknown "
            f"in {operation.duration_ms}ms"
        )
        return operation, accumulator

    async def run_domains(
        self,
        targets: List[dict],
        check_types: CheckTypes,
        configuration: CheckConfiguration,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> RunAccumulator:
        """Evaluate targets on a bounded worker pool and aggregate the results."""
        cancel_event = cancel_event or asyncio.Event()
        accumulator = RunAccumulator()
        work: asyncio.Queue = asyncio.Queue()
        for index, target in enumerate(targets):
            work.put_nowait((index, target))
        done: asyncio.Queue = asyncio.Queue()

        async def worker():
            while not cancel_event.is_set():
                try:
                    index, target = work.get_nowait()
                except asyncio.QueueEmpty:
                    return
                result, error = await self._evaluate_target(target, check_types, configuration)
                await done.put((index, result, error))

        async def aggregator():
            while True:
                item = await done.get()
                if item is None:
                    return
                accumulator.add(*item)

        aggregator_task = asyncio.create_task(aggregator())
        try:
            await asyncio.gather(*(worker() for _ in range(min(self.max_concurrency, len(targets)))))
        finally:
            await done.put(None)
            await aggregator_task

        accumulator.cancelled = cancel_event.is_set()
        return accumulator

    async def _evaluate_target(
        self, target: dict, check_types: CheckTypes, configuration: CheckConfiguration
    ) -> Tuple[DomainHealthResult, Optional[str]]:
        domain = target["domain"]
        domain_id = target.get("id")
        try:
            result = await asyncio.wait_for(
                self.evaluator.evaluate(domain, check_types, configuration, domain_id=domain_id),
                timeout=configuration.domain_budget_seconds,
            )
            return result, None
        except asyncio.TimeoutError:
            error = f"Health check exceeded {configuration.domain_budget_seconds:.0f}s budget"
        except Exception as e:
            error = str(e) or type(e).__name__
        logger.warning(f"Health check for {domain} aborted: {error}")
        return failed_result(domain, domain_id, error), error

    async def _record_domain_results(
        self,
        session: AsyncSession,
        operation_id: int,
        results: List[DomainHealthResult],
        now: datetime,
    ):
        for result in results:
            session.add(HealthCheckRecord(
                operation_id=operation_id,
                domain_id=result.domain_id,
                domain=result.domain,
                status=result.status.value,
                response_time_ms=result.response_time_ms,
                http_status=result.http_status,
                ssl_valid=result.ssl_valid,
                ssl_expiry=result.ssl_expiry,
                details={
                    "issues": [issue.to_dict() for issue in result.issues],
                    "performance_metrics": result.performance_metrics.to_dict(),
                    "dns_resolved": result.dns_resolved,
                    "security_score": result.security_score,
                },
                checked_at=result.timestamp,
            ))
        for result in results:
            if result.domain_id is not None:
                await session.execute(
                    update(Domain)
                    .where(Domain.id == result.domain_id)
                    .values(last_status=result.status.value, last_checked_at=now)
                )

    async def _mark_failed(self, operation_id: int, error: Exception) -> Optional[BatchOperation]:
        """Persist FAILED with a single SYSTEM error, in a fresh session."""
        try:
            async with self.session_factory() as session:
                operation = await session.get(BatchOperation, operation_id)
                if operation is None:
                    return None
                if OperationStatus(operation.status).is_terminal:
                    logger.warning(f"Batch operation {operation_id} already {operation.status}, not marking FAILED")
                    return None
                now = utcnow()
                results = dict(operation.results or {})
                results["errors"] = [{"domain": "SYSTEM", "error": str(error) or type(error).__name__}]
                operation.results = results
                operation.status = OperationStatus.FAILED.value
                operation.completed_at = now
                if operation.started_at:
                    operation.duration_ms = elapsed_ms(operation.started_at, now)
                await retry_on_lock(session.commit)
                return operation
        except Exception as e:
            logger.error(f"Could not record failure of operation {operation_id}: {e}")
            return None

    async def _after_run(self, operation: BatchOperation, accumulator: Optional[RunAccumulator]):
        """Raise alerts for failing domains, then send run notifications."""
        if accumulator is not None:
            for result in accumulator.results:
                if result.status not in (HealthStatus.CRITICAL, HealthStatus.UNKNOWN):
                    continue
                issue = result.first_critical_issue
                alert_type = AlertType.for_issue(issue.type) if issue else AlertType.DOWNTIME
                message = issue.message if issue else "No health signal from any probe"
                try:
                    await self.alerts.raise_alert(
                        result.domain,
                        alert_type,
                        IssueSeverity.CRITICAL,
                        message,
                        details={
                            "status": result.status.value,
                            "issues": [i.to_dict() for i in result.issues],
                            "http_status": result.http_status,
                            "response_time_ms": result.response_time_ms,
                        },
                        operation_id=operation.id,
                    )
                except Exception as e:
                    logger.error(f"Failed to raise alert for {result.domain}: {e}")

        try:
            await self.notifier.notify_operation(operation)
        except Exception as e:
            logger.error(f"Failed to send notifications for operation {operation.id}: {e}")

    # ------------------------------------------------------------------
    # Control and queries
    # ------------------------------------------------------------------

    async def cancel(self, session: AsyncSession, operation_id: int) -> BatchOperation:
        """Cancel a pending or running operation, or disable a schedule definition."""
        operation = await self.get_operation(session, operation_id)
        if OperationStatus(operation.status).is_terminal:
            raise InvalidTransitionError(f"Operation {operation_id} is already {operation.status}")

        event = self._cancel_events.get(operation_id)
        if event is not None and operation.status == OperationStatus.IN_PROGRESS.value:
            event.set()
            logger.info(f"Cancellation requested for batch operation {operation_id}")
            return operation

        if event is not None:
            event.set()
        now = utcnow()
        operation.status = OperationStatus.CANCELLED.value
        operation.completed_at = now
        operation.next_run = None
        if operation.schedule:
            operation.schedule = {**operation.schedule, "enabled": False}
        await retry_on_lock(session.commit)
        logger.info(f"Batch operation {operation_id} cancelled")
        return operation

    async def get_operation(self, session: AsyncSession, operation_id: int) -> BatchOperation:
        operation = await session.get(BatchOperation, operation_id)
        if operation is None:
            raise OperationNotFoundError(f"Operation {operation_id} not found")
        return operation

    async def list_operations(
        self,
        session: AsyncSession,
        status: Optional[str] = None,
        kind: Optional[str] = None,
        page: int = 1,
        per_page: int = 20,
    ) -> Tuple[List[BatchOperation], int]:
        conditions = []
        if status:
            conditions.append(BatchOperation.status == status)
        if kind:
            conditions.append(BatchOperation.kind == kind)
        total = (
            await session.execute(select(func.count()).select_from(BatchOperation).where(*conditions))
        ).scalar_one()
        result = await session.execute(
            select(BatchOperation)
            .where(*conditions)
            .order_by(BatchOperation.created_at.desc(), BatchOperation.id.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
        )
        return list(result.scalars().all()), total

    async def shutdown(self):
        """Request cancellation of running operations and wait for them."""
        for event in self._cancel_events.values():
            event.set()
        tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


# Global instance
batch_runner = BatchRunner()
