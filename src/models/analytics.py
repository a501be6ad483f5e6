"""Derived-view payloads: teams, networks and analytics reports.

None of these are persisted; they are recomputed from the statement stream
(and optionally cached by AnalyticsAggregator).
"""

from datetime import datetime

from pydantic import Field

from src.models.common import PortalBase, UTCTimestamp, utc_now
from src.models.statement import Statement


class ActivitySummary(PortalBase):
    """Display-ready digest of one statement."""

    user: str
    action: str
    object: str
    timestamp: datetime | None = None

    @classmethod
    def from_statement(cls, statement: Statement) -> "ActivitySummary":
        return cls(
            user=statement.actor_email,
            action=statement.verb.label,
            object=statement.object_.display_name,
            timestamp=statement.timestamp,
        )


class Team(PortalBase):
    """Agents that co-occur in a ``context.team`` list.

    Identified by member-set equality, not by a stored id.
    """

    id: str
    key: str
    members: list[str]
    project_ids: list[str] = Field(default_factory=list)
    last_activity: datetime | None = None
    recent_activities: list[ActivitySummary] = Field(default_factory=list)

    @property
    def member_count(self) -> int:
        return len(self.members)


# ---------------------------------------------------------------------------
# Collaboration network
# ---------------------------------------------------------------------------


class NetworkNode(PortalBase):
    id: str
    activity_count: int = 0
    degree: int = 0


class NetworkEdge(PortalBase):
    source: str
    target: str
    weight: int = 1


class CollaborationNetwork(PortalBase):
    nodes: list[NetworkNode] = Field(default_factory=list)
    edges: list[NetworkEdge] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Overview
# ---------------------------------------------------------------------------


class CollaborationIndex(PortalBase):
    score: float = 0.0
    interactions: int = 0
    unique_partners: int = 0


class VerbCount(PortalBase):
    verb: str
    count: int


class UserRanking(PortalBase):
    rank: int
    user: str
    activities: int


class OverviewMetrics(PortalBase):
    """Dashboard overview over one time window."""

    subject: str | None = None
    time_range: str
    since: datetime | None = None
    until: datetime | None = None
    total_activities: int = 0
    unique_users: int = 0
    active_projects: int = 0
    completion_rate: float = 0.0
    engagement_score: int = 0
    collaboration_index: CollaborationIndex = Field(default_factory=CollaborationIndex)
    top_activities: list[VerbCount] = Field(default_factory=list)
    recent_activities: list[ActivitySummary] = Field(default_factory=list)
    time_distribution: dict[int, int] = Field(default_factory=dict)
    user_rankings: list[UserRanking] | None = None
    partial: bool = Field(
        default=False,
        description="True when the bounded fetch hit its cap and older events were not scanned.",
    )
    generated_at: UTCTimestamp = Field(default_factory=utc_now)


# ---------------------------------------------------------------------------
# User analytics
# ---------------------------------------------------------------------------


class CollaborationMetrics(PortalBase):
    collaborations: int = 0
    shares: int = 0
    comments: int = 0
    invitations_sent: int = 0
    unique_partners: int = 0
    partners: list[str] = Field(default_factory=list)


class ContentInteraction(PortalBase):
    uploads: int = 0
    downloads: int = 0
    views: int = 0
    unique_objects: int = 0


class AssessmentPerformance(PortalBase):
    attempts: int = 0
    completions: int = 0
    scored: int = 0
    average_score: float | None = None
    best_score: float | None = None
    pass_rate: float | None = None


class AIInteraction(PortalBase):
    queries: int = 0
    sessions: int = 0
    total_tokens: int = 0
    average_rating: float | None = None


class ActivityPatterns(PortalBase):
    hourly: dict[int, int] = Field(default_factory=dict)
    weekday: dict[str, int] = Field(default_factory=dict)
    peak_hour: int | None = None
    peak_weekday: str | None = None
    active_days: int = 0


class Achievement(PortalBase):
    key: str
    label: str
    achieved_at: datetime | None = None


class UserAnalytics(PortalBase):
    user: str
    time_range: str
    total_activities: int = 0
    activity_breakdown: dict[str, int] = Field(default_factory=dict)
    completion_rate: float = 0.0
    engagement_score: int = 0
    collaboration_metrics: CollaborationMetrics = Field(default_factory=CollaborationMetrics)
    content_interaction: ContentInteraction = Field(default_factory=ContentInteraction)
    assessment_performance: AssessmentPerformance = Field(default_factory=AssessmentPerformance)
    ai_interaction: AIInteraction = Field(default_factory=AIInteraction)
    activity_patterns: ActivityPatterns = Field(default_factory=ActivityPatterns)
    achievements: list[Achievement] = Field(default_factory=list)
    partial: bool = False
    generated_at: UTCTimestamp = Field(default_factory=utc_now)


# ---------------------------------------------------------------------------
# Project analytics
# ---------------------------------------------------------------------------


class PhaseTransitionEvent(PortalBase):
    from_phase: str | None = None
    to_phase: str
    actor: str
    timestamp: datetime | None = None


class PhaseBreakdown(PortalBase):
    current_phase: str | None = None
    activity_by_phase: dict[str, int] = Field(default_factory=dict)
    transitions: list[PhaseTransitionEvent] = Field(default_factory=list)


class ContributorMetrics(PortalBase):
    user: str
    activities: int
    share: float
    verbs: dict[str, int] = Field(default_factory=dict)
    first_activity: datetime | None = None
    last_activity: datetime | None = None


class ProjectHealth(PortalBase):
    score: int = 0
    status: str = "inactive"
    days_since_last_activity: int | None = None
    active_contributors_7d: int = 0


class ProjectAnalytics(PortalBase):
    project_id: str
    time_range: str
    total_activities: int = 0
    unique_contributors: int = 0
    phase_breakdown: PhaseBreakdown = Field(default_factory=PhaseBreakdown)
    collaboration_network: CollaborationNetwork = Field(default_factory=CollaborationNetwork)
    contributor_metrics: list[ContributorMetrics] = Field(default_factory=list)
    activity_timeline: dict[str, int] = Field(default_factory=dict)
    project_health: ProjectHealth = Field(default_factory=ProjectHealth)
    partial: bool = False
    generated_at: UTCTimestamp = Field(default_factory=utc_now)


# ---------------------------------------------------------------------------
# Collaboration analytics
# ---------------------------------------------------------------------------


class CollaborationAnalytics(PortalBase):
    project_id: str | None = None
    time_range: str
    total_collaborations: int = 0
    unique_collaborators: int = 0
    active_projects: int = 0
    collaboration_frequency: float = 0.0
    daily: dict[str, int] = Field(default_factory=dict)
    network: CollaborationNetwork = Field(default_factory=CollaborationNetwork)
    centrality: dict[str, float] = Field(default_factory=dict)
    peak_hours: list[int] = Field(default_factory=list)
    partial: bool = False
    generated_at: UTCTimestamp = Field(default_factory=utc_now)


# ---------------------------------------------------------------------------
# Realtime
# ---------------------------------------------------------------------------


class RealtimeSnapshot(PortalBase):
    window_minutes: int
    activity_total: int | None = None
    activity_rate: float | None = None
    activity_breakdown: dict[str, int] | None = None
    active_users: list[str] | None = None
    error_count: int | None = None
    error_rate: float | None = None
    error_types: dict[str, int] | None = None
    timestamp: UTCTimestamp = Field(default_factory=utc_now)
