"""Shared fixtures: an isolated SQLite store per test, scripted probes and recording senders."""
from datetime import timedelta
from typing import Dict, List

import httpx
import pytest
import pytest_asyncio

from fleetcheck.database import build_engine, build_session_factory, create_tables
from fleetcheck.enums import IssueSeverity, IssueType, ProbeKind
from fleetcheck.errors import NotificationError
from fleetcheck.models import Domain
from fleetcheck.services.alert_manager import AlertManager
from fleetcheck.services.batch_runner import BatchRunner
from fleetcheck.services.channels import ChannelSender
from fleetcheck.services.evaluator import HealthEvaluator
from fleetcheck.services.notifier import NotifierService
from fleetcheck.services.probes import Issue, ProbeOutcome, ProbeService
from fleetcheck.utils.time_utils import utcnow


class ScriptedProbes(ProbeService):
    """ProbeService replacement answering from a per-domain script.

    Unscripted probes succeed. A scripted value is a ProbeOutcome
    or an exception to raise.
    """

    def __init__(self):
        self.scripts: Dict[str, Dict[ProbeKind, object]] = {}
        self.calls: List[tuple] = []

    def script(self, domain: str, dns=None, http=None, tls=None):
        entry = self.scripts.setdefault(domain, {})
        for kind, value in ((ProbeKind.DNS, dns), (ProbeKind.HTTP, http), (ProbeKind.TLS, tls)):
            if value is not None:
                entry[kind] = value

    async def run(self, domain, kind, config):
        self.calls.append((domain, kind))
        value = self.scripts.get(domain, {}).get(kind)
        if isinstance(value, BaseException):
            raise value
        return value or self.healthy(kind)

    @staticmethod
    def healthy(kind: ProbeKind) -> ProbeOutcome:
        if kind == ProbeKind.DNS:
            return ProbeOutcome(kind=kind, dns_resolved=True, addresses=["192.0.2.10"], lookup_time_ms=12)
        if kind == ProbeKind.HTTP:
            return ProbeOutcome(
                kind=kind,
                http_status=200,
                response_time_ms=120,
                first_byte_time_ms=80,
                download_time_ms=40,
                headers={"content-type": "text/html"},
                body="<html>Welcome</html>",
                attempts=1,
            )
        return ProbeOutcome(
            kind=kind,
            ssl_valid=True,
            ssl_expiry=utcnow() + timedelta(days=90),
            ssl_days_remaining=90,
        )

    @staticmethod
    def http_timeout() -> ProbeOutcome:
        return ProbeOutcome(
            kind=ProbeKind.HTTP,
            attempts=1,
            issues=[Issue(IssueType.HTTP, IssueSeverity.CRITICAL, "HTTP request failed: Request timeout")],
        )

    @staticmethod
    def dns_failure() -> ProbeOutcome:
        return ProbeOutcome(
            kind=ProbeKind.DNS,
            issues=[Issue(IssueType.DNS, IssueSeverity.CRITICAL, "DNS resolution failed: NXDOMAIN")],
        )

    @staticmethod
    def tls_expiring(days: int) -> ProbeOutcome:
        severity = IssueSeverity.HIGH if days <= 7 else IssueSeverity.MEDIUM
        return ProbeOutcome(
            kind=ProbeKind.TLS,
            ssl_valid=True,
            ssl_expiry=utcnow() + timedelta(days=days),
            ssl_days_remaining=days,
            issues=[Issue(IssueType.SSL, severity, f"SSL certificate expires in {days} days")],
        )


class RecordingSender(ChannelSender):
    def __init__(self, outbox, channel_type, configuration):
        super().__init__(configuration)
        self.outbox = outbox
        self.channel_type = channel_type

    async def send(self, message, recipients=()):
        if self.configuration.get("fail"):
            raise NotificationError("delivery refused")
        self.outbox.sent.append({
            "type": self.channel_type,
            "message": message,
            "recipients": list(recipients),
            "configuration": dict(self.configuration),
        })


class Outbox:
    """Sender factory that records every delivery instead of sending it.

    Channels whose configuration contains `"fail": True` raise NotificationError.
    """

    def __init__(self):
        self.sent: List[dict] = []

    def __call__(self, channel_type, configuration=None):
        return RecordingSender(self, channel_type, configuration or {})

    def of_type(self, channel_type: str) -> List[dict]:
        return [item for item in self.sent if item["type"] == channel_type]


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'fleetcheck.db'}")
    await create_tables(engine)
    yield build_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def probes() -> ScriptedProbes:
    return ScriptedProbes()


@pytest.fixture
def outbox() -> Outbox:
    return Outbox()


@pytest.fixture
def notifier(session_factory, outbox) -> NotifierService:
    return NotifierService(session_factory, sender_factory=outbox)


@pytest.fixture
def alerts(session_factory, notifier) -> AlertManager:
    return AlertManager(session_factory, notifier)


@pytest_asyncio.fixture
async def runner(session_factory, probes, alerts, notifier):
    batch = BatchRunner(session_factory, HealthEvaluator(probes), alerts, notifier, max_concurrency=4)
    yield batch
    await batch.shutdown()


@pytest.fixture
def add_domains(session_factory):
    """Register domains and return their ids in argument order."""

    async def _add(*names, tags=None, enabled=True):
        async with session_factory() as session:
            domains = [
                Domain(name=name, tags=list(tags or []), enabled=1 if enabled else 0)
                for name in names
            ]
            session.add_all(domains)
            await session.commit()
            return [domain.id for domain in domains]

    return _add


@pytest.fixture
def mock_http(monkeypatch):
    """Route every httpx.AsyncClient through a MockTransport handler."""
    real_client = httpx.AsyncClient

    def install(handler):
        def factory(**kwargs):
            kwargs.pop("verify", None)
            return real_client(transport=httpx.MockTransport(handler), **kwargs)

        monkeypatch.setattr(httpx, "AsyncClient", factory)

    return install
