"""Health evaluator - runs the enabled probes for one domain and derives its status."""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Sequence

from ..enums import HealthStatus, IssueSeverity, IssueType, ProbeKind
from ..schemas.batch import CheckConfiguration, CheckTypes
from ..utils.time_utils import utcnow
from .probes import Issue, ProbeOutcome, ProbeService, probe_service

logger = logging.getLogger(__name__)

SECURITY_HEADERS = (
    "strict-transport-security",
    "content-security-policy",
    "x-frame-options",
    "x-content-type-options",
    "referrer-policy",
)


@dataclass
class PerformanceMetrics:
    """Timings in milliseconds. Metrics of probes that did not run stay 0."""
    response_time: int = 0
    first_byte_time: int = 0
    domain_lookup_time: int = 0
    download_time: int = 0
    total_time: int = 0

    def to_dict(self) -> dict:
        return {
            "response_time": self.response_time,
            "first_byte_time": self.first_byte_time,
            "domain_lookup_time": self.domain_lookup_time,
            "download_time": self.download_time,
            "total_time": self.total_time,
        }


@dataclass
class DomainHealthResult:
    """Probe outcome set for one domain within a run."""
    domain: str
    domain_id: Optional[int] = None
    status: HealthStatus = HealthStatus.UNKNOWN
    response_time_ms: int = 0
    http_status: int = 0
    ssl_valid: bool = False
    ssl_expiry: Optional[datetime] = None
    dns_resolved: bool = False
    content_valid: bool = False
    security_score: int = 0
    performance_metrics: PerformanceMetrics = field(default_factory=PerformanceMetrics)
    issues: List[Issue] = field(default_factory=list)
    timestamp: datetime = field(default_factory=utcnow)

    @property
    def first_critical_issue(self) -> Optional[Issue]:
        for issue in self.issues:
            if issue.severity == IssueSeverity.CRITICAL:
                return issue
        return None

    def to_dict(self) -> dict:
        return {
            "domain": self.domain,
            "domain_id": self.domain_id,
            "status": self.status.value,
            "response_time_ms": self.response_time_ms,
            "http_status": self.http_status,
            "ssl_valid": self.ssl_valid,
            "ssl_expiry": self.ssl_expiry.isoformat() if self.ssl_expiry else None,
            "dns_resolved": self.dns_resolved,
            "content_valid": self.content_valid,
            "security_score": self.security_score,
            "performance_metrics": self.performance_metrics.to_dict(),
            "issues": [issue.to_dict() for issue in self.issues],
            "timestamp": self.timestamp.isoformat(),
        }


def derive_status(issues: Sequence[Issue], any_probe_succeeded: bool) -> HealthStatus:
    """Map collected issues to a single status.

    CRITICAL issue -> CRITICAL; HIGH issue or an unexpected HTTP status
    (the {HTTP, MEDIUM} issue) -> WARNING; otherwise HEALTHY when at least
    one probe produced a signal, else UNKNOWN. Other MEDIUM issues (a
    certificate expiring within 30 days, a threshold breach) and LOW issues
    are reported without changing the status.
    """
    worst = max((issue.severity.rank for issue in issues), default=-1)
    if worst >= IssueSeverity.CRITICAL.rank:
        return HealthStatus.CRITICAL
    if worst >= IssueSeverity.HIGH.rank:
        return HealthStatus.WARNING
    if any(i.type == IssueType.HTTP and i.severity == IssueSeverity.MEDIUM for i in issues):
        return HealthStatus.WARNING
    if any_probe_succeeded:
        return HealthStatus.HEALTHY
    return HealthStatus.UNKNOWN


class HealthEvaluator:
    """Evaluates one domain against a check-type selection and configuration."""

    def __init__(self, probes: Optional[ProbeService] = None):
        self.probes = probes or probe_service

    async def evaluate(
        self,
        domain: str,
        check_types: CheckTypes,
        config: CheckConfiguration,
        domain_id: Optional[int] = None,
    ) -> DomainHealthResult:
        """Run the enabled probes and derive the domain status.

        Never raises: any unexpected error becomes a SYSTEM/CRITICAL issue.
        """
        result = DomainHealthResult(domain=domain, domain_id=domain_id)
        start = time.perf_counter()
        try:
            outcomes = await self._run_probes(domain, check_types, config)
            self._apply(result, outcomes, check_types, config)
            if outcomes:
                result.performance_metrics.total_time = int((time.perf_counter() - start) * 1000)
            result.status = derive_status(result.issues, any(o.succeeded for o in outcomes))
        except Exception as e:
            logger.error(f"Evaluation of {domain} failed: {e}")
            result.issues.append(Issue(IssueType.SYSTEM, IssueSeverity.CRITICAL, f"Health check failed: {e}"))
            result.status = HealthStatus.CRITICAL
        return result

    async def _run_probes(
        self, domain: str, check_types: CheckTypes, config: CheckConfiguration
    ) -> List[ProbeOutcome]:
        kinds = []
        if check_types.dns_resolution:
            kinds.append(ProbeKind.DNS)
        if check_types.needs_http:
            kinds.append(ProbeKind.HTTP)
        if check_types.ssl_certificate:
            kinds.append(ProbeKind.TLS)
        # Probes are independent; gather keeps issue order DNS, HTTP, TLS
        return list(await asyncio.gather(*(self.probes.run(domain, kind, config) for kind in kinds)))

    def _apply(
        self,
        result: DomainHealthResult,
        outcomes: List[ProbeOutcome],
        check_types: CheckTypes,
        config: CheckConfiguration,
    ):
        metrics = result.performance_metrics
        for outcome in outcomes:
            result.issues.extend(outcome.issues)

            if outcome.kind == ProbeKind.DNS:
                result.dns_resolved = outcome.dns_resolved
                metrics.domain_lookup_time = outcome.lookup_time_ms

            elif outcome.kind == ProbeKind.HTTP:
                result.http_status = outcome.http_status
                result.response_time_ms = outcome.response_time_ms
                metrics.response_time = outcome.response_time_ms
                metrics.first_byte_time = outcome.first_byte_time_ms
                metrics.download_time = outcome.download_time_ms
                if outcome.succeeded:
                    if check_types.content_validation:
                        result.content_valid = self._check_content(result, outcome, config)
                    if check_types.security_headers:
                        result.security_score = self._check_security_headers(result, outcome)

            elif outcome.kind == ProbeKind.TLS:
                result.ssl_valid = outcome.ssl_valid
                result.ssl_expiry = outcome.ssl_expiry

        if check_types.response_time and config.performance_thresholds:
            self._check_thresholds(result, outcomes, config)

    def _check_content(self, result: DomainHealthResult, outcome: ProbeOutcome, config: CheckConfiguration) -> bool:
        valid = True
        for expected in config.expected_content:
            if expected not in outcome.body:
                valid = False
                shown = expected[:50] + ("..." if len(expected) > 50 else "")
                result.issues.append(Issue(
                    IssueType.CONTENT, IssueSeverity.HIGH, f"Expected content not found: '{shown}'"
                ))
        return valid

    def _check_security_headers(self, result: DomainHealthResult, outcome: ProbeOutcome) -> int:
        present = 0
        for header in SECURITY_HEADERS:
            if header in outcome.headers:
                present += 1
            else:
                result.issues.append(Issue(
                    IssueType.SECURITY, IssueSeverity.LOW, f"Missing security header: {header}"
                ))
        return round(present * 100 / len(SECURITY_HEADERS))

    def _check_thresholds(self, result: DomainHealthResult, outcomes: List[ProbeOutcome], config: CheckConfiguration):
        thresholds = config.performance_thresholds
        metrics = result.performance_metrics
        http_ok = any(o.kind == ProbeKind.HTTP and o.succeeded for o in outcomes)
        dns_ok = any(o.kind == ProbeKind.DNS and o.succeeded for o in outcomes)

        checks = []
        if http_ok:
            checks.append(("response time", metrics.response_time, thresholds.response_time))
            checks.append(("time to first byte", metrics.first_byte_time, thresholds.first_byte_time))
        if dns_ok:
            checks.append(("DNS lookup time", metrics.domain_lookup_time, thresholds.domain_lookup_time))

        for label, value, limit in checks:
            if limit is not None and value > limit:
                result.issues.append(Issue(
                    IssueType.PERFORMANCE, IssueSeverity.MEDIUM, f"Slow {label}: {value}ms (limit {limit}ms)"
                ))


# Global instance
health_evaluator = HealthEvaluator()
