import ssl
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import dns.resolver
import httpx
import pytest

from fleetcheck.enums import IssueSeverity, IssueType, ProbeKind
from fleetcheck.schemas.batch import CheckConfiguration
from fleetcheck.services import probes as probes_module
from fleetcheck.services.probes import ProbeService


def _config(**overrides) -> CheckConfiguration:
    values = {"timeout": 1000, "retry_attempts": 2, "retry_delay": 0}
    values.update(overrides)
    return CheckConfiguration(**values)


def _certificate(expires_in: timedelta):
    return SimpleNamespace(not_valid_after_utc=datetime.now(timezone.utc) + expires_in)


@pytest.mark.asyncio
async def test_http_probe_records_status_headers_and_timings(mock_http) -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, headers={"Strict-Transport-Security": "max-age=63072000"}, text="Welcome")

    mock_http(handler)
    outcome = await ProbeService().check_http("shop.example", _config(custom_headers={"X-Probe": "1"}))

    assert outcome.succeeded
    assert outcome.http_status == 200
    assert outcome.attempts == 1
    assert outcome.issues == []
    assert outcome.body == "Welcome"
    assert "strict-transport-security" in outcome.headers
    assert outcome.response_time_ms >= outcome.first_byte_time_ms >= 0
    assert seen[0].url.scheme == "https"
    assert seen[0].url.host == "shop.example"
    assert seen[0].headers["user-agent"] == CheckConfiguration().user_agent
    assert seen[0].headers["x-probe"] == "1"


@pytest.mark.asyncio
async def test_http_probe_retries_timeouts_then_reports_critical(mock_http) -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        raise httpx.ConnectTimeout("timed out", request=request)

    mock_http(handler)
    outcome = await ProbeService().check_http("slow.example", _config(retry_attempts=2))

    assert len(calls) == 3
    assert outcome.attempts == 3
    assert not outcome.succeeded
    assert [(i.type, i.severity) for i in outcome.issues] == [(IssueType.HTTP, IssueSeverity.CRITICAL)]
    assert "timeout" in outcome.issues[0].message.lower()


@pytest.mark.asyncio
async def test_http_probe_recovers_on_retry(mock_http) -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) == 1:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, text="ok")

    mock_http(handler)
    outcome = await ProbeService().check_http("flaky.example", _config())

    assert outcome.attempts == 2
    assert outcome.http_status == 200
    assert outcome.issues == []


@pytest.mark.asyncio
async def test_unexpected_http_status_is_medium(mock_http) -> None:
    mock_http(lambda request: httpx.Response(503, text="maintenance"))

    outcome = await ProbeService().check_http("down.example", _config())

    assert outcome.succeeded
    assert outcome.http_status == 503
    assert [(i.type, i.severity) for i in outcome.issues] == [(IssueType.HTTP, IssueSeverity.MEDIUM)]
    assert "503" in outcome.issues[0].message


@pytest.mark.asyncio
async def test_dns_probe_success_and_failure(monkeypatch) -> None:
    monkeypatch.setattr(probes_module, "_resolve_sync", lambda domain, timeout: ["192.0.2.7"])
    outcome = await ProbeService().check_dns("ok.example", _config())
    assert outcome.dns_resolved
    assert outcome.addresses == ["192.0.2.7"]
    assert outcome.issues == []

    def nxdomain(domain, timeout):
        raise dns.resolver.NXDOMAIN()

    monkeypatch.setattr(probes_module, "_resolve_sync", nxdomain)
    outcome = await ProbeService().check_dns("missing.example", _config())
    assert not outcome.dns_resolved
    assert [(i.type, i.severity) for i in outcome.issues] == [(IssueType.DNS, IssueSeverity.CRITICAL)]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "expires_in, severity, valid",
    [
        (timedelta(days=90), None, True),
        (timedelta(days=19, hours=12), IssueSeverity.MEDIUM, True),
        (timedelta(days=4, hours=12), IssueSeverity.HIGH, True),
        (timedelta(days=-2), IssueSeverity.HIGH, False),
    ],
)
async def test_tls_expiry_severity(monkeypatch, expires_in, severity, valid) -> None:
    monkeypatch.setattr(
        probes_module, "_peer_certificate_sync", lambda host, port, timeout, verify: _certificate(expires_in)
    )

    outcome = await ProbeService().check_tls("cert.example", _config())

    assert outcome.ssl_valid is valid
    assert outcome.ssl_expiry is not None and outcome.ssl_expiry.tzinfo is None
    if severity is None:
        assert outcome.issues == []
    else:
        assert [(i.type, i.severity) for i in outcome.issues] == [(IssueType.SSL, severity)]


@pytest.mark.asyncio
async def test_tls_handshake_failure_is_invalid_certificate(monkeypatch) -> None:
    def handshake(host, port, timeout, verify):
        raise ssl.SSLCertVerificationError("hostname mismatch")

    monkeypatch.setattr(probes_module, "_peer_certificate_sync", handshake)

    outcome = await ProbeService().check_tls("wrong-host.example", _config())

    assert not outcome.ssl_valid
    assert outcome.issues[0].type == IssueType.SSL
    assert outcome.issues[0].severity == IssueSeverity.HIGH
    assert "invalid" in outcome.issues[0].message


@pytest.mark.asyncio
async def test_run_converts_unexpected_errors_to_issues(monkeypatch) -> None:
    service = ProbeService()

    async def broken(domain, config):
        raise RuntimeError("boom")

    monkeypatch.setattr(service, "check_http", broken)

    outcome = await service.run("any.example", ProbeKind.HTTP, _config())

    assert outcome.kind == ProbeKind.HTTP
    assert outcome.issues[0].severity == IssueSeverity.CRITICAL
    assert "boom" in outcome.issues[0].message
