"""AnalyticsAggregator — dashboards derived from the statement stream.

Every report is scan-then-reduce: one bounded, time-windowed query against
the LRS, then the pure reducers in :mod:`src.observability.metrics`.
Reports (except realtime) are cached per (metric set, subject, time range).

State machine: ``UNINITIALIZED -> READY`` on the first successful
connectivity check. Nothing else is held between requests but the cache.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta
from enum import StrEnum
from typing import TypeVar

import structlog
from pydantic import BaseModel

from src.config.settings import Settings
from src.errors import PortalError, ScanTimeoutError, ValidationError
from src.lrs.client import EventLogClient
from src.lrs.statements import StatementFactory
from src.models.analytics import (
    CollaborationAnalytics,
    OverviewMetrics,
    ProjectAnalytics,
    RealtimeSnapshot,
    UserAnalytics,
)
from src.models.common import EntityType, ensure_utc, utc_now
from src.models.statement import Statement, StatementQuery
from src.models.vocabulary import VerbName, verb_iri
from src.observability import metrics
from src.observability.cache import AnalyticsCache
from src.observability.time_ranges import TimeWindow, available_presets, resolve_time_range

logger = structlog.get_logger(__name__)

P = TypeVar("P", bound=BaseModel)

# Metric families a dashboard can ask about.
METRIC_SETS: dict[str, dict[str, str]] = {
    "engagement": {
        "name": "User Engagement",
        "description": "Measures user activity and participation levels",
    },
    "learning": {
        "name": "Learning Progress",
        "description": "Tracks learning outcomes and skill development",
    },
    "collaboration": {
        "name": "Collaboration Patterns",
        "description": "Analyzes collaborative activities and team dynamics",
    },
    "content": {
        "name": "Content Usage",
        "description": "Shows how users interact with educational content",
    },
    "assessment": {
        "name": "Assessment Performance",
        "description": "Evaluates assessment results and learning outcomes",
    },
    "research": {
        "name": "Research Activities",
        "description": "Tracks research project progress and outputs",
    },
    "ai": {
        "name": "AI Interaction Analytics",
        "description": "Analyzes human-AI collaboration patterns",
    },
    "platform": {
        "name": "Platform Usage",
        "description": "Overall platform utilization and user behavior",
    },
}

REALTIME_METRICS = ("activity", "users", "errors")
REALTIME_MAX_EVENTS = 1000


class AggregatorState(StrEnum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"


class AnalyticsAggregator:
    """Read-only reporting over EventLogClient with a TTL cache."""

    def __init__(
        self,
        client: EventLogClient,
        statements: StatementFactory,
        *,
        cache: AnalyticsCache | None = None,
        max_events: int = 10_000,
        scan_timeout_s: float = 60.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._client = client
        self._statements = statements
        self._cache = cache if cache is not None else AnalyticsCache()
        self.max_events = max_events
        self.scan_timeout_s = scan_timeout_s
        self._clock = clock
        self._state = AggregatorState.UNINITIALIZED

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        client: EventLogClient,
        statements: StatementFactory,
    ) -> "AnalyticsAggregator":
        return cls(
            client,
            statements,
            cache=AnalyticsCache(settings.ANALYTICS_CACHE_TTL_S),
            max_events=settings.ANALYTICS_MAX_EVENTS,
            scan_timeout_s=settings.ANALYTICS_SCAN_TIMEOUT_S,
        )

    @property
    def state(self) -> AggregatorState:
        return self._state

    async def initialize(self) -> None:
        """Probe the LRS; raises UpstreamError and stays UNINITIALIZED on failure."""
        await self._client.check_connectivity()
        if self._state != AggregatorState.READY:
            self._state = AggregatorState.READY
            logger.info("analytics_ready")

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    async def overview(
        self,
        subject: str | None = None,
        time_range: str = "last30days",
        *,
        now: datetime | None = None,
    ) -> OverviewMetrics:
        """Dashboard overview for everyone, or for one agent when ``subject`` is set."""
        window = resolve_time_range(time_range, now=now or self._clock())
        key = self._cache.key("overview", subject, self._range_key(time_range, now))
        cached = self._cached(key)
        if cached is not None:
            return cached

        statements, partial = await self._scan(StatementQuery(
            agent=subject,
            since=window.since,
            until=window.until,
            limit=self.max_events,
        ))
        payload = OverviewMetrics(
            subject=subject,
            time_range=time_range,
            since=window.since,
            until=window.until,
            total_activities=len(statements),
            unique_users=len({s.actor_email for s in statements}),
            active_projects=len(metrics.project_ids(statements)),
            completion_rate=metrics.completion_rate(statements),
            engagement_score=metrics.engagement_score(statements, now=now or self._clock()),
            collaboration_index=metrics.collaboration_index(statements),
            top_activities=metrics.top_activities(statements),
            recent_activities=metrics.recent_activities(statements),
            time_distribution=metrics.time_distribution(statements),
            user_rankings=None if subject else metrics.user_rankings(statements),
            partial=partial,
        )
        return self._store(key, payload)

    async def user_analytics(
        self,
        email: str,
        time_range: str = "last30days",
        *,
        now: datetime | None = None,
    ) -> UserAnalytics:
        if not email or "@" not in email:
            raise ValidationError("A valid user email is required", email=email)
        window = resolve_time_range(time_range, now=now or self._clock())
        key = self._cache.key("user", email, self._range_key(time_range, now))
        cached = self._cached(key)
        if cached is not None:
            return cached

        statements, partial = await self._scan(StatementQuery(
            agent=email,
            since=window.since,
            until=window.until,
            limit=self.max_events,
        ))
        payload = UserAnalytics(
            user=email.lower(),
            time_range=time_range,
            total_activities=len(statements),
            activity_breakdown=metrics.activity_breakdown(statements),
            completion_rate=metrics.completion_rate(statements),
            engagement_score=metrics.engagement_score(statements, now=now or self._clock()),
            collaboration_metrics=metrics.collaboration_metrics(email, statements),
            content_interaction=metrics.content_interaction(statements),
            assessment_performance=metrics.assessment_performance(statements),
            ai_interaction=metrics.ai_interaction(statements),
            activity_patterns=metrics.activity_patterns(statements),
            achievements=metrics.achievements(statements),
            partial=partial,
        )
        return self._store(key, payload)

    async def project_analytics(
        self,
        project_id: str,
        time_range: str = "all",
        *,
        now: datetime | None = None,
    ) -> ProjectAnalytics:
        """Activity on a project, including statements that name it as context."""
        window = resolve_time_range(time_range, now=now or self._clock())
        key = self._cache.key("project", project_id, self._range_key(time_range, now))
        cached = self._cached(key)
        if cached is not None:
            return cached

        statements, partial = await self._scan(StatementQuery(
            activity=self._statements.iri(EntityType.PROJECT, project_id),
            related_activities=True,
            since=window.since,
            until=window.until,
            limit=self.max_events,
        ))
        network = metrics.collaboration_network(
            s for s in statements if s.verb_name in metrics.COLLABORATION_VERBS
        )
        payload = ProjectAnalytics(
            project_id=project_id,
            time_range=time_range,
            total_activities=len(statements),
            unique_contributors=len({s.actor_email for s in statements}),
            phase_breakdown=metrics.phase_breakdown(statements),
            collaboration_network=network,
            contributor_metrics=metrics.contributor_metrics(statements),
            activity_timeline=metrics.daily_counts(statements),
            project_health=metrics.project_health(statements, now=now or self._clock()),
            partial=partial,
        )
        return self._store(key, payload)

    async def collaboration_analytics(
        self,
        time_range: str = "last30days",
        project_id: str | None = None,
        *,
        now: datetime | None = None,
    ) -> CollaborationAnalytics:
        window = resolve_time_range(time_range, now=now or self._clock())
        key = self._cache.key("collaboration", project_id, self._range_key(time_range, now))
        cached = self._cached(key)
        if cached is not None:
            return cached

        statements, partial = await self._scan(StatementQuery(
            verb=verb_iri(VerbName.COLLABORATED),
            activity=self._statements.iri(EntityType.PROJECT, project_id) if project_id else None,
            since=window.since,
            until=window.until,
            limit=self.max_events,
        ))
        network = metrics.collaboration_network(statements)
        payload = CollaborationAnalytics(
            project_id=project_id,
            time_range=time_range,
            total_collaborations=len(statements),
            unique_collaborators=len({s.actor_email for s in statements}),
            active_projects=len({s.object_id for s in statements}),
            collaboration_frequency=_per_day(statements, window),
            daily=metrics.daily_counts(statements),
            network=network,
            centrality=metrics.degree_centrality(network),
            peak_hours=metrics.peak_hours(statements),
            partial=partial,
        )
        return self._store(key, payload)

    async def realtime(
        self,
        window_minutes: int = 5,
        metric_names: Sequence[str] = REALTIME_METRICS,
        *,
        now: datetime | None = None,
    ) -> RealtimeSnapshot:
        """Sliding-window activity snapshot; never cached."""
        if window_minutes < 1:
            raise ValidationError("window_minutes must be >= 1", window_minutes=window_minutes)
        unknown = sorted(set(metric_names) - set(REALTIME_METRICS))
        if unknown:
            raise ValidationError(f"Unknown realtime metric(s): {', '.join(unknown)}")
        end = ensure_utc(now) if now is not None else self._clock()
        statements, _ = await self._scan(StatementQuery(
            since=end - timedelta(minutes=window_minutes),
            until=end,
            limit=REALTIME_MAX_EVENTS,
        ))
        snapshot = RealtimeSnapshot(window_minutes=window_minutes, timestamp=end)
        if "activity" in metric_names:
            snapshot.activity_total = len(statements)
            snapshot.activity_rate = len(statements) / window_minutes
            snapshot.activity_breakdown = metrics.activity_breakdown(statements)
        if "users" in metric_names:
            snapshot.active_users = sorted({s.actor_email for s in statements})
        if "errors" in metric_names:
            failed = metrics.failed_statements(statements)
            snapshot.error_count = len(failed)
            snapshot.error_rate = len(failed) / len(statements) if statements else 0.0
            snapshot.error_types = metrics.error_types(statements)
        return snapshot

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def available_options(self) -> dict:
        return {
            "metrics": METRIC_SETS,
            "timeRanges": available_presets(),
            "cacheInfo": {
                "cacheSize": len(self._cache),
                "cacheTtlSeconds": self._cache.ttl_seconds,
            },
        }

    def clear_cache(self) -> dict:
        """Purge every cached report. Administrative operation."""
        dropped = self._cache.clear()
        logger.info("analytics_cache_cleared", entries=dropped)
        return {"cleared": dropped, "timestamp": self._clock().isoformat()}

    async def health_check(self) -> dict:
        """Connectivity plus a cheap end-to-end report; never raises portal errors."""
        try:
            await self.initialize()
            lrs = await self._client.health_check()
            await self.overview(None, "today")
        except PortalError as exc:
            logger.warning("analytics_unhealthy", error=type(exc).__name__, detail=exc.message)
            return {
                "status": "unhealthy",
                "state": self._state.value,
                "error": exc.message,
                "timestamp": self._clock().isoformat(),
            }
        return {
            "status": "healthy",
            "state": self._state.value,
            "lrsConnection": lrs["status"],
            "cacheSize": len(self._cache),
            "availableMetrics": len(METRIC_SETS),
            "timestamp": self._clock().isoformat(),
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _scan(self, query: StatementQuery) -> tuple[list[Statement], bool]:
        """Bounded fetch under the scan budget; ``partial`` when the cap was hit."""
        if self._state != AggregatorState.READY:
            await self.initialize()
        try:
            async with asyncio.timeout(self.scan_timeout_s):
                statements = await self._client.collect(query)
        except TimeoutError as exc:
            logger.error("analytics_scan_timeout", timeout_s=self.scan_timeout_s)
            raise ScanTimeoutError(
                f"Analytics scan exceeded {self.scan_timeout_s}s",
                timeout_s=self.scan_timeout_s,
            ) from exc
        partial = len(statements) >= query.limit
        if partial:
            logger.warning("analytics_scan_capped", limit=query.limit)
        return statements, partial

    def _cached(self, key) -> P | None:
        payload = self._cache.get(key)
        if payload is None:
            return None
        logger.debug("analytics_cache_hit", key=key)
        return payload.model_copy(deep=True)

    def _store(self, key, payload: P) -> P:
        self._cache.put(key, payload.model_copy(deep=True))
        return payload

    @staticmethod
    def _range_key(time_range: str, now: datetime | None) -> str:
        return time_range if now is None else f"{time_range}@{ensure_utc(now).isoformat()}"


def _per_day(statements: Sequence[Statement], window: TimeWindow) -> float:
    """Statements per day across the window (or their own span when open-ended)."""
    if not statements:
        return 0.0
    since = window.since
    until = window.until
    if since is None or until is None:
        stamps = [s.timestamp for s in statements if s.timestamp is not None]
        if not stamps:
            return 0.0
        since = since or min(stamps)
        until = until or max(stamps)
    days = max((until - since).total_seconds() / 86_400, 1.0)
    return len(statements) / days
