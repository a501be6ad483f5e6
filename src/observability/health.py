"""Health and readiness checks.

Combines LRS connectivity with the analytics aggregator's own status into
one report a deployment probe can read. Checks never raise portal errors;
a failing component is reported as unhealthy with a detail string.
"""

from dataclasses import dataclass, field

import structlog

from src.lrs.client import EventLogClient
from src.models.common import utc_now
from src.observability.analytics import AggregatorState, AnalyticsAggregator

logger = structlog.get_logger(__name__)


@dataclass
class ComponentStatus:
    """Status of a single infrastructure component."""

    name: str
    healthy: bool
    detail: str = ""

    def to_dict(self) -> dict:
        return {"name": self.name, "healthy": self.healthy, "detail": self.detail}


@dataclass
class HealthReport:
    """Overall system health report."""

    overall_status: str  # "healthy" | "unhealthy"
    components: list[ComponentStatus] = field(default_factory=list)
    timestamp: str = ""

    def to_dict(self) -> dict:
        return {
            "overall_status": self.overall_status,
            "components": [c.to_dict() for c in self.components],
            "timestamp": self.timestamp,
        }


class HealthChecker:
    """Evaluate LRS reachability and analytics readiness."""

    def __init__(self, client: EventLogClient, aggregator: AnalyticsAggregator | None = None) -> None:
        self._client = client
        self._aggregator = aggregator

    def check(self, deps: dict) -> HealthReport:
        """Build a report from already-gathered component results.

        ``deps`` holds the ``lrs`` health dict from EventLogClient.health_check
        and, optionally, the ``analytics`` dict from AnalyticsAggregator.health_check.
        """
        components: list[ComponentStatus] = []

        lrs = deps.get("lrs") or {}
        lrs_ok = lrs.get("status") == "healthy"
        components.append(ComponentStatus(
            name="lrs",
            healthy=lrs_ok,
            detail="" if lrs_ok else lrs.get("error", "LRS unreachable"),
        ))

        if "analytics" in deps:
            analytics = deps["analytics"] or {}
            analytics_ok = (
                analytics.get("status") == "healthy"
                and analytics.get("state") == AggregatorState.READY
            )
            components.append(ComponentStatus(
                name="analytics",
                healthy=analytics_ok,
                detail="" if analytics_ok else analytics.get("error", "analytics not ready"),
            ))

        overall = "healthy" if all(c.healthy for c in components) else "unhealthy"

        return HealthReport(
            overall_status=overall,
            components=components,
            timestamp=utc_now().isoformat(),
        )

    async def run(self) -> HealthReport:
        """Probe every configured component and build the report."""
        deps: dict = {"lrs": await self._client.health_check()}
        if self._aggregator is not None:
            deps["analytics"] = await self._aggregator.health_check()
        report = self.check(deps)
        if report.overall_status != "healthy":
            logger.warning(
                "health_check_failed",
                failing=[c.name for c in report.components if not c.healthy],
            )
        return report
