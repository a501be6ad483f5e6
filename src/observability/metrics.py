"""Analytics reducers — pure functions over a slice of statements.

Every function here is deterministic given its inputs: no I/O, no clock
reads except through an explicit ``now`` argument. AnalyticsAggregator
fetches the slice and composes these into report payloads.

Statements are expected newest first (the LRS default order); functions
that care about chronology sort for themselves.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from collections.abc import Iterable, Sequence
from datetime import datetime
from itertools import combinations

from src.models.analytics import (
    Achievement,
    ActivityPatterns,
    ActivitySummary,
    AIInteraction,
    AssessmentPerformance,
    CollaborationIndex,
    CollaborationMetrics,
    CollaborationNetwork,
    ContentInteraction,
    ContributorMetrics,
    NetworkEdge,
    NetworkNode,
    PhaseBreakdown,
    PhaseTransitionEvent,
    ProjectHealth,
    UserRanking,
    VerbCount,
)
from src.models.common import email_from_mbox
from src.models.statement import Statement
from src.models.vocabulary import VerbName

ATTEMPT_VERBS = frozenset({VerbName.ATTEMPTED, "started"})
COMPLETION_VERBS = frozenset({VerbName.COMPLETED, "finished"})
COLLABORATION_VERBS = frozenset({VerbName.COLLABORATED, VerbName.SHARED, VerbName.COMMENTED})

# Engagement weights: volume, verb diversity, day coverage, completion.
ENGAGEMENT_WEIGHTS = (0.4, 0.3, 0.2, 0.1)
ENGAGEMENT_VOLUME_CAP = 100
ENGAGEMENT_DIVERSITY_CAP = 10

WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")


def _timed(statements: Iterable[Statement]) -> list[Statement]:
    return [s for s in statements if s.timestamp is not None]


def _chronological(statements: Iterable[Statement]) -> list[Statement]:
    return sorted(_timed(statements), key=lambda s: s.timestamp)


def _day(ts: datetime) -> str:
    return ts.strftime("%Y-%m-%d")


# ---------------------------------------------------------------------------
# Overview reducers
# ---------------------------------------------------------------------------


def count_verbs(statements: Iterable[Statement], verbs: frozenset) -> int:
    return sum(1 for s in statements if s.verb_name in verbs)


def completion_rate(statements: Sequence[Statement]) -> float:
    """Completions per attempt as a percentage, capped at 100.

    0 when there are no attempts; 100 when every attempt has a completion.
    """
    attempts = count_verbs(statements, ATTEMPT_VERBS)
    if attempts == 0:
        return 0.0
    completions = count_verbs(statements, COMPLETION_VERBS)
    return min(completions / attempts * 100.0, 100.0)


def consistency(statements: Sequence[Statement], *, now: datetime) -> float:
    """Active days over days elapsed since the oldest statement (inclusive), capped at 1."""
    timed = _timed(statements)
    if not timed:
        return 0.0
    active_days = len({_day(s.timestamp) for s in timed})
    oldest = min(s.timestamp for s in timed)
    elapsed_days = max((now - oldest).days, 0) + 1
    return min(active_days / elapsed_days, 1.0)


def engagement_score(statements: Sequence[Statement], *, now: datetime) -> int:
    """Weighted volume/diversity/consistency/completion blend on a 0–100 scale."""
    if not statements:
        return 0
    w_volume, w_diversity, w_consistency, w_completion = ENGAGEMENT_WEIGHTS
    volume = min(len(statements) / ENGAGEMENT_VOLUME_CAP, 1.0)
    diversity = min(len({s.verb.id for s in statements}) / ENGAGEMENT_DIVERSITY_CAP, 1.0)
    score = (
        w_volume * volume
        + w_diversity * diversity
        + w_consistency * consistency(statements, now=now)
        + w_completion * completion_rate(statements) / 100.0
    )
    return round(score * 100)


def collaboration_index(statements: Sequence[Statement]) -> CollaborationIndex:
    collaborative = [s for s in statements if s.verb_name in COLLABORATION_VERBS]
    partners: set[str] = set()
    for s in collaborative:
        partners.update(m for m in s.team_mboxes if m != s.actor.mbox)
    score = min(len(collaborative) / len(statements) * 100.0, 100.0) if statements else 0.0
    return CollaborationIndex(
        score=score,
        interactions=len(collaborative),
        unique_partners=len(partners),
    )


def activity_breakdown(statements: Iterable[Statement]) -> dict[str, int]:
    """Statement count per verb display label."""
    return dict(Counter(s.verb.label for s in statements))


def top_activities(statements: Iterable[Statement], n: int = 5) -> list[VerbCount]:
    counts = Counter(s.verb.label for s in statements)
    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return [VerbCount(verb=verb, count=count) for verb, count in ranked[:n]]


def time_distribution(statements: Iterable[Statement]) -> dict[int, int]:
    """Hour-of-day (UTC) histogram; only hours with activity appear."""
    return dict(sorted(Counter(s.timestamp.hour for s in _timed(statements)).items()))


def user_rankings(statements: Iterable[Statement], n: int = 10) -> list[UserRanking]:
    counts = Counter(s.actor_email for s in statements)
    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return [
        UserRanking(rank=index + 1, user=user, activities=count)
        for index, (user, count) in enumerate(ranked[:n])
    ]


def recent_activities(statements: Iterable[Statement], n: int = 10) -> list[ActivitySummary]:
    newest = sorted(_timed(statements), key=lambda s: s.timestamp, reverse=True)
    return [ActivitySummary.from_statement(s) for s in newest[:n]]


def project_ids(statements: Iterable[Statement]) -> set[str]:
    """Project IRIs touched either as object or as context parent."""
    found: set[str] = set()
    for s in statements:
        for iri in (s.object_id, *s.context_activity_ids("parent")):
            if "/project/" in iri:
                found.add(iri)
    return found


def daily_counts(statements: Iterable[Statement]) -> dict[str, int]:
    return dict(sorted(Counter(_day(s.timestamp) for s in _timed(statements)).items()))


def peak_hours(statements: Iterable[Statement], n: int = 3) -> list[int]:
    counts = Counter(s.timestamp.hour for s in _timed(statements))
    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return [hour for hour, _ in ranked[:n]]


# ---------------------------------------------------------------------------
# Collaboration network
# ---------------------------------------------------------------------------


def _participants(statement: Statement) -> list[str]:
    members = {email_from_mbox(m) for m in statement.team_mboxes}
    members.add(statement.actor_email)
    return sorted(members)


def collaboration_network(statements: Iterable[Statement]) -> CollaborationNetwork:
    """Agents as nodes; edge weight = statements in which both take part.

    Participants of a statement are its actor plus its ``context.team``.
    """
    activity: Counter[str] = Counter()
    weights: Counter[tuple[str, str]] = Counter()
    for s in statements:
        people = _participants(s)
        activity.update(people)
        weights.update(combinations(people, 2))

    degree: Counter[str] = Counter()
    for source, target in weights:
        degree[source] += 1
        degree[target] += 1

    nodes = [
        NetworkNode(id=person, activity_count=activity[person], degree=degree[person])
        for person in sorted(activity)
    ]
    edges = [
        NetworkEdge(source=source, target=target, weight=weight)
        for (source, target), weight in sorted(weights.items())
    ]
    return CollaborationNetwork(nodes=nodes, edges=edges)


def degree_centrality(network: CollaborationNetwork) -> dict[str, float]:
    """Normalised degree: neighbours / (nodes - 1)."""
    n = len(network.nodes)
    if n <= 1:
        return {node.id: 0.0 for node in network.nodes}
    return {node.id: node.degree / (n - 1) for node in network.nodes}


# ---------------------------------------------------------------------------
# User reducers
# ---------------------------------------------------------------------------


def collaboration_metrics(email: str, statements: Sequence[Statement]) -> CollaborationMetrics:
    me = email.lower()
    partners: set[str] = set()
    for s in statements:
        if s.verb_name in COLLABORATION_VERBS:
            partners.update(p for p in _participants(s) if p != me)
        if s.verb_name == VerbName.SHARED:
            partners.update(r.lower() for r in s.extensions.recipients or [] if r.lower() != me)
        if s.verb_name == VerbName.INVITED and s.extensions.invitee:
            partners.add(s.extensions.invitee.lower())
    return CollaborationMetrics(
        collaborations=count_verbs(statements, frozenset({VerbName.COLLABORATED})),
        shares=count_verbs(statements, frozenset({VerbName.SHARED})),
        comments=count_verbs(statements, frozenset({VerbName.COMMENTED})),
        invitations_sent=count_verbs(statements, frozenset({VerbName.INVITED})),
        unique_partners=len(partners),
        partners=sorted(partners),
    )


def content_interaction(statements: Sequence[Statement]) -> ContentInteraction:
    return ContentInteraction(
        uploads=count_verbs(statements, frozenset({VerbName.UPLOADED})),
        downloads=count_verbs(statements, frozenset({VerbName.DOWNLOADED})),
        views=count_verbs(statements, frozenset({VerbName.EXPERIENCED})),
        unique_objects=len({s.object_id for s in statements}),
    )


def _scaled_score(statement: Statement) -> float | None:
    if statement.result is None or statement.result.score is None:
        return None
    score = statement.result.score
    if score.scaled is not None:
        return score.scaled
    if score.raw is not None and score.max:
        low = score.min or 0.0
        span = score.max - low
        return (score.raw - low) / span if span else None
    return None


def assessment_performance(statements: Sequence[Statement]) -> AssessmentPerformance:
    """Scores are reported on the scaled 0–1 range."""
    assessed = [
        s for s in statements
        if s.verb_name in {VerbName.PASSED, VerbName.FAILED, VerbName.COMPLETED, VerbName.ASSESSED}
    ]
    scores = [score for s in assessed if (score := _scaled_score(s)) is not None]
    passed = count_verbs(statements, frozenset({VerbName.PASSED}))
    failed = count_verbs(statements, frozenset({VerbName.FAILED}))
    return AssessmentPerformance(
        attempts=count_verbs(statements, ATTEMPT_VERBS),
        completions=count_verbs(statements, COMPLETION_VERBS),
        scored=len(scores),
        average_score=sum(scores) / len(scores) if scores else None,
        best_score=max(scores) if scores else None,
        pass_rate=passed / (passed + failed) if passed + failed else None,
    )


def ai_interaction(statements: Sequence[Statement]) -> AIInteraction:
    """``queried`` statements; ratings arrive as a scaled score out of 5."""
    queries = [s for s in statements if s.verb_name == VerbName.QUERIED]
    tokens = 0
    ratings: list[float] = []
    for s in queries:
        result_ext = s.result.extensions if s.result is not None else None
        used = (result_ext.ai_tokens if result_ext is not None else None) or s.extensions.ai_tokens
        tokens += used or 0
        scaled = _scaled_score(s)
        if scaled is not None:
            ratings.append(scaled * 5.0)
    return AIInteraction(
        queries=len(queries),
        sessions=len({s.object_id for s in queries}),
        total_tokens=tokens,
        average_rating=sum(ratings) / len(ratings) if ratings else None,
    )


def activity_patterns(statements: Sequence[Statement]) -> ActivityPatterns:
    timed = _timed(statements)
    hourly = Counter(s.timestamp.hour for s in timed)
    weekday = Counter(WEEKDAYS[s.timestamp.weekday()] for s in timed)
    return ActivityPatterns(
        hourly=dict(sorted(hourly.items())),
        weekday={day: weekday[day] for day in WEEKDAYS if weekday[day]},
        peak_hour=min(hourly, key=lambda h: (-hourly[h], h)) if hourly else None,
        peak_weekday=min(weekday, key=lambda d: (-weekday[d], WEEKDAYS.index(d))) if weekday else None,
        active_days=len({_day(s.timestamp) for s in timed}),
    )


# (key, label, verbs that count or None for any, threshold)
_ACHIEVEMENTS: tuple[tuple[str, str, frozenset | None, int], ...] = (
    ("first_steps", "First activity recorded", None, 1),
    ("active_learner", "10 activities", None, 10),
    ("dedicated_learner", "100 activities", None, 100),
    ("first_completion", "First completion", COMPLETION_VERBS, 1),
    ("team_player", "First collaboration", frozenset({VerbName.COLLABORATED}), 1),
    ("knowledge_sharer", "Shared 5 resources", frozenset({VerbName.SHARED}), 5),
    ("conversationalist", "Posted 10 comments", frozenset({VerbName.COMMENTED}), 10),
    ("researcher", "Advanced a research phase", frozenset({VerbName.ADVANCED}), 1),
    ("ai_explorer", "First AI query", frozenset({VerbName.QUERIED}), 1),
)


def achievements(statements: Sequence[Statement]) -> list[Achievement]:
    """Milestones reached in the slice, stamped with the statement that reached them."""
    ordered = _chronological(statements)
    earned: list[Achievement] = []
    for key, label, verbs, threshold in _ACHIEVEMENTS:
        matching = [s for s in ordered if verbs is None or s.verb_name in verbs]
        if len(matching) >= threshold:
            earned.append(Achievement(
                key=key, label=label, achieved_at=matching[threshold - 1].timestamp,
            ))
    return earned


# ---------------------------------------------------------------------------
# Project reducers
# ---------------------------------------------------------------------------


def phase_breakdown(statements: Sequence[Statement]) -> PhaseBreakdown:
    """Attribute each statement to the RIDE-I phase current when it happened."""
    current: str | None = None
    by_phase: Counter[str] = Counter()
    transitions: list[PhaseTransitionEvent] = []
    for s in _chronological(statements):
        ext = s.extensions
        if s.verb_name == VerbName.ADVANCED and ext.ride_i_phase:
            transitions.append(PhaseTransitionEvent(
                from_phase=ext.previous_phase or current,
                to_phase=ext.ride_i_phase,
                actor=s.actor_email,
                timestamp=s.timestamp,
            ))
            current = ext.ride_i_phase
        elif s.verb_name == VerbName.CREATED and ext.ride_i_phase and current is None:
            current = ext.ride_i_phase
        by_phase[current or "unknown"] += 1
    return PhaseBreakdown(
        current_phase=current,
        activity_by_phase=dict(by_phase),
        transitions=transitions,
    )


def contributor_metrics(statements: Sequence[Statement]) -> list[ContributorMetrics]:
    total = len(statements)
    grouped: dict[str, list[Statement]] = defaultdict(list)
    for s in statements:
        grouped[s.actor_email].append(s)
    metrics = []
    for user, mine in grouped.items():
        stamps = [s.timestamp for s in mine if s.timestamp is not None]
        metrics.append(ContributorMetrics(
            user=user,
            activities=len(mine),
            share=len(mine) / total if total else 0.0,
            verbs=dict(Counter(s.verb_name for s in mine)),
            first_activity=min(stamps) if stamps else None,
            last_activity=max(stamps) if stamps else None,
        ))
    return sorted(metrics, key=lambda m: (-m.activities, m.user))


def project_health(statements: Sequence[Statement], *, now: datetime) -> ProjectHealth:
    """Recency (60%) plus contributors active in the last 7 days (40%, full at 3).

    Status: ``active`` within 7 days of the last statement, ``slowing``
    within 30, ``inactive`` beyond that or with no statements.
    """
    timed = _timed(statements)
    if not timed:
        return ProjectHealth()
    last = max(s.timestamp for s in timed)
    days_idle = max((now - last).days, 0)
    recent = {s.actor_email for s in timed if (now - s.timestamp).days < 7}
    recency = max(0.0, 1.0 - days_idle / 30.0)
    breadth = min(len(recent) / 3.0, 1.0)
    if days_idle <= 7:
        status = "active"
    elif days_idle <= 30:
        status = "slowing"
    else:
        status = "inactive"
    return ProjectHealth(
        score=round((0.6 * recency + 0.4 * breadth) * 100),
        status=status,
        days_since_last_activity=days_idle,
        active_contributors_7d=len(recent),
    )


# ---------------------------------------------------------------------------
# Realtime
# ---------------------------------------------------------------------------


def failed_statements(statements: Iterable[Statement]) -> list[Statement]:
    return [s for s in statements if s.result is not None and s.result.success is False]


def error_types(statements: Iterable[Statement]) -> dict[str, int]:
    return dict(Counter(s.verb.label for s in failed_statements(statements)))
