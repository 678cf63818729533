"""Probe service - performs DNS, HTTPS and TLS certificate checks against one domain."""
import asyncio
import logging
import math
import socket
import ssl
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

import dns.exception
import dns.resolver
import httpx
from cryptography import x509

from ..enums import IssueSeverity, IssueType, ProbeKind
from ..schemas.batch import CheckConfiguration

logger = logging.getLogger(__name__)

TLS_PORT = 443
SSL_EXPIRY_WARNING_DAYS = 30
SSL_EXPIRY_CRITICAL_DAYS = 7


@dataclass(frozen=True)
class Issue:
    """A structured finding attached to a domain evaluation."""
    type: IssueType
    severity: IssueSeverity
    message: str

    def to_dict(self) -> dict:
        return {"type": self.type.value, "severity": self.severity.value, "message": self.message}


@dataclass
class ProbeOutcome:
    """Result of a single probe. Errors are carried as issues, never raised."""
    kind: ProbeKind
    issues: List[Issue] = field(default_factory=list)
    # DNS
    dns_resolved: bool = False
    addresses: List[str] = field(default_factory=list)
    lookup_time_ms: int = 0
    # HTTP
    http_status: int = 0
    response_time_ms: int = 0
    first_byte_time_ms: int = 0
    download_time_ms: int = 0
    headers: Dict[str, str] = field(default_factory=dict)
    body: str = ""
    attempts: int = 0
    # TLS
    ssl_valid: bool = False
    ssl_expiry: Optional[datetime] = None
    ssl_days_remaining: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        """True when the probe produced a usable signal."""
        if self.kind == ProbeKind.DNS:
            return self.dns_resolved
        if self.kind == ProbeKind.HTTP:
            return self.http_status > 0
        return self.ssl_valid


def _ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def _resolve_sync(domain: str, timeout: float) -> List[str]:
    """Resolve A then AAAA records (blocking operation)."""
    resolver = dns.resolver.Resolver(configure=True)
    resolver.timeout = max(0.5, timeout)
    resolver.lifetime = max(0.5, timeout)
    addresses: List[str] = []
    for record_type in ("A", "AAAA"):
        try:
            answer = resolver.resolve(domain, record_type)
        except dns.resolver.NoAnswer:
            continue
        addresses.extend(str(rr) for rr in answer)
        if addresses:
            break
    if not addresses:
        raise dns.resolver.NoAnswer(f"No A or AAAA records for {domain}")
    return addresses


def _peer_certificate_sync(host: str, port: int, timeout: float, verify: bool) -> x509.Certificate:
    """Open a TLS connection and return the peer certificate (blocking operation).

    With verify enabled the handshake fails on an untrusted chain or hostname
    mismatch, which the caller reports as an invalid certificate.
    """
    context = ssl.create_default_context()
    if not verify:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE

    with socket.create_connection((host, port), timeout=timeout) as sock:
        with context.wrap_socket(sock, server_hostname=host) as ssock:
            # binary_form works with CERT_NONE where getpeercert() returns {}
            cert_der = ssock.getpeercert(binary_form=True)
    if not cert_der:
        raise ssl.SSLError("Peer presented no certificate")
    return x509.load_der_x509_certificate(cert_der)


class ProbeService:
    """Runs one network probe against a single domain under a timeout."""

    async def run(self, domain: str, kind: ProbeKind, config: CheckConfiguration) -> ProbeOutcome:
        """Run a probe by kind. Never raises; failures become issues."""
        try:
            if kind == ProbeKind.DNS:
                return await self.check_dns(domain, config)
            elif kind == ProbeKind.HTTP:
                return await self.check_http(domain, config)
            elif kind == ProbeKind.TLS:
                return await self.check_tls(domain, config)
        except Exception as e:
            logger.debug(f"Probe {kind.value} for {domain} failed unexpectedly: {e}")
            return self._unexpected_failure(kind, e)
        raise ValueError(f"Unknown probe kind: {kind}")

    def _unexpected_failure(self, kind: ProbeKind, error: Exception) -> ProbeOutcome:
        if kind == ProbeKind.DNS:
            issue = Issue(IssueType.DNS, IssueSeverity.CRITICAL, f"DNS resolution failed: {error}")
        elif kind == ProbeKind.HTTP:
            issue = Issue(IssueType.HTTP, IssueSeverity.CRITICAL, f"HTTP request failed: {error}")
        else:
            issue = Issue(IssueType.SSL, IssueSeverity.HIGH, f"Unable to check SSL certificate: {error}")
        return ProbeOutcome(kind=kind, issues=[issue])

    async def check_dns(self, domain: str, config: CheckConfiguration) -> ProbeOutcome:
        """Resolve the domain; any resolution error is a CRITICAL DNS issue."""
        outcome = ProbeOutcome(kind=ProbeKind.DNS)
        start = time.perf_counter()
        try:
            outcome.addresses = await asyncio.wait_for(
                asyncio.to_thread(_resolve_sync, domain, config.timeout_seconds),
                timeout=config.timeout_seconds + 1,
            )
            outcome.dns_resolved = True
        except asyncio.TimeoutError:
            outcome.issues.append(Issue(IssueType.DNS, IssueSeverity.CRITICAL, "DNS resolution timed out"))
        except dns.exception.DNSException as e:
            outcome.issues.append(Issue(IssueType.DNS, IssueSeverity.CRITICAL, f"DNS resolution failed: {e}"))
        outcome.lookup_time_ms = _ms(start)
        return outcome

    async def check_http(self, domain: str, config: CheckConfiguration) -> ProbeOutcome:
        """GET https://{domain}, retrying connection and timeout failures.

        Timing:
        - first_byte_time_ms: until response headers arrive
        - download_time_ms: reading the body
        - response_time_ms: the whole successful attempt
        """
        outcome = ProbeOutcome(kind=ProbeKind.HTTP)
        url = f"https://{domain}"
        headers = {"User-Agent": config.user_agent, **config.custom_headers}
        last_error: Optional[str] = None

        async with httpx.AsyncClient(
            timeout=config.timeout_seconds,
            follow_redirects=config.follow_redirects,
            max_redirects=config.max_redirects,
            verify=config.validate_ssl,
            headers=headers,
        ) as client:
            for attempt in range(config.retry_attempts + 1):
                if attempt:
                    await asyncio.sleep(config.retry_delay_seconds)
                outcome.attempts = attempt + 1
                start = time.perf_counter()
                try:
                    async with client.stream("GET", url) as response:
                        outcome.first_byte_time_ms = _ms(start)
                        download_start = time.perf_counter()
                        await response.aread()
                        outcome.download_time_ms = _ms(download_start)
                        outcome.http_status = response.status_code
                        outcome.headers = {k.lower(): v for k, v in response.headers.items()}
                        outcome.body = response.text
                    outcome.response_time_ms = _ms(start)
                    last_error = None
                    break
                except httpx.TimeoutException:
                    last_error = "Request timeout"
                except httpx.TransportError as e:
                    last_error = f"Connection error: {e}"
                except httpx.HTTPError as e:
                    # Redirect loops and protocol errors are not worth retrying
                    last_error = str(e)
                    break
                logger.debug(f"HTTP probe {domain} attempt {attempt + 1} failed: {last_error}")

        if last_error is not None:
            outcome.issues.append(Issue(IssueType.HTTP, IssueSeverity.CRITICAL, f"HTTP request failed: {last_error}"))
            return outcome

        if outcome.http_status not in config.expected_status_codes:
            outcome.issues.append(Issue(
                IssueType.HTTP,
                IssueSeverity.MEDIUM,
                f"Unexpected HTTP status: {outcome.http_status}",
            ))
        return outcome

    async def check_tls(self, domain: str, config: CheckConfiguration) -> ProbeOutcome:
        """Inspect the certificate on port 443.

        Severity:
        - invalid or unreadable certificate: HIGH
        - expires within 7 days: HIGH
        - expires within 30 days: MEDIUM
        """
        outcome = ProbeOutcome(kind=ProbeKind.TLS)
        try:
            # Run in thread pool (socket operations are blocking)
            loop = asyncio.get_running_loop()
            cert = await asyncio.wait_for(
                loop.run_in_executor(
                    None, _peer_certificate_sync, domain, TLS_PORT, config.timeout_seconds, config.validate_ssl
                ),
                timeout=config.timeout_seconds + 1,
            )
        except asyncio.TimeoutError:
            outcome.issues.append(Issue(IssueType.SSL, IssueSeverity.HIGH, "SSL check timeout"))
            return outcome
        except (ssl.SSLError, OSError, ValueError) as e:
            outcome.issues.append(Issue(IssueType.SSL, IssueSeverity.HIGH, f"SSL certificate is invalid: {e}"))
            return outcome

        expiry = cert.not_valid_after_utc
        days = math.ceil((expiry - datetime.now(timezone.utc)).total_seconds() / 86400)
        outcome.ssl_expiry = expiry.replace(tzinfo=None)
        outcome.ssl_days_remaining = days

        if days <= 0:
            outcome.issues.append(Issue(IssueType.SSL, IssueSeverity.HIGH, "SSL certificate has expired"))
            return outcome

        outcome.ssl_valid = True
        if days <= SSL_EXPIRY_WARNING_DAYS:
            severity = IssueSeverity.HIGH if days <= SSL_EXPIRY_CRITICAL_DAYS else IssueSeverity.MEDIUM
            outcome.issues.append(Issue(IssueType.SSL, severity, f"SSL certificate expires in {days} days"))
        return outcome


# Global instance
probe_service = ProbeService()
