"""Tests for the analytics reducers.

Covers: completion rate, engagement score, collaboration index, rankings,
histograms, collaboration network and centrality, user reducers, project
phase breakdown and health, realtime error counts.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from src.lrs.statements import StatementFactory
from src.models.statement import Extensions, Result, Score, Statement
from src.models.vocabulary import VerbName
from src.observability import metrics


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

FACTORY = StatementFactory("http://hulab.test")
ALICE = "alice@hulab.edu.hk"
BOB = "bob@hulab.edu.hk"
CAROL = "carol@hulab.edu.hk"
NOW = datetime(2026, 4, 10, 12, tzinfo=timezone.utc)


def _utc(day: int, hour: int = 10) -> datetime:
    return datetime(2026, 4, day, hour, tzinfo=timezone.utc)


def _st(
    verb: VerbName | str,
    *,
    actor: str = ALICE,
    obj: str = "p1",
    kind: str = "project",
    at: datetime | None = None,
    **kwargs,
) -> Statement:
    return FACTORY.build(
        actor,
        verb,
        FACTORY.activity(kind, obj),
        timestamp=at or _utc(9),
        **kwargs,
    )


# ===================================================================
# Overview reducers
# ===================================================================


class TestCompletionRate:
    def test_no_attempts_is_zero(self) -> None:
        assert metrics.completion_rate([_st(VerbName.COMPLETED)]) == 0.0
        assert metrics.completion_rate([]) == 0.0

    def test_attempt_with_completion_is_hundred(self) -> None:
        same_day = [_st(VerbName.ATTEMPTED, at=_utc(9, 9)), _st(VerbName.COMPLETED, at=_utc(9, 11))]
        assert metrics.completion_rate(same_day) == 100.0

    def test_half_completed(self) -> None:
        slice_ = [
            _st(VerbName.ATTEMPTED, obj="a"),
            _st(VerbName.ATTEMPTED, obj="b"),
            _st(VerbName.COMPLETED, obj="a"),
        ]
        assert metrics.completion_rate(slice_) == 50.0

    def test_capped_at_hundred(self) -> None:
        slice_ = [_st(VerbName.ATTEMPTED), _st(VerbName.COMPLETED), _st(VerbName.COMPLETED)]
        assert metrics.completion_rate(slice_) == 100.0


class TestEngagementScore:
    def test_empty_is_zero(self) -> None:
        assert metrics.engagement_score([], now=NOW) == 0

    def test_single_statement(self) -> None:
        # volume 0.01, diversity 0.1, consistency 1/2 (oldest is one day back)
        score = metrics.engagement_score([_st(VerbName.EXPERIENCED, at=_utc(9))], now=NOW)
        expected = round((0.4 * 0.01 + 0.3 * 0.1 + 0.2 * 0.5 + 0.1 * 0.0) * 100)
        assert score == expected

    def test_saturated_score(self) -> None:
        verbs = [
            VerbName.ATTEMPTED, VerbName.COMPLETED, VerbName.EXPERIENCED, VerbName.SHARED,
            VerbName.COMMENTED, VerbName.CREATED, VerbName.UPDATED, VerbName.UPLOADED,
            VerbName.DOWNLOADED, VerbName.QUERIED,
        ]
        slice_ = [_st(verbs[i % 10], at=NOW - timedelta(minutes=i)) for i in range(100)]
        assert metrics.engagement_score(slice_, now=NOW) == 100

    def test_consistency_counts_active_days(self) -> None:
        slice_ = [_st(VerbName.EXPERIENCED, at=_utc(d)) for d in (1, 3, 5)]
        # ten days elapsed since April 1 inclusive, three active
        assert metrics.consistency(slice_, now=NOW) == pytest.approx(0.3)


class TestCollaborationIndex:
    def test_score_and_partners(self) -> None:
        slice_ = [
            _st(VerbName.COLLABORATED, team=[ALICE, BOB]),
            _st(VerbName.COMMENTED, team=[ALICE, CAROL]),
            _st(VerbName.EXPERIENCED),
            _st(VerbName.EXPERIENCED),
        ]
        index = metrics.collaboration_index(slice_)
        assert index.score == 50.0
        assert index.interactions == 2
        assert index.unique_partners == 2

    def test_empty(self) -> None:
        assert metrics.collaboration_index([]).score == 0.0


class TestRankingsAndHistograms:
    def test_top_activities(self) -> None:
        slice_ = [_st(VerbName.EXPERIENCED)] * 3 + [_st(VerbName.COMPLETED)] * 2 + [_st(VerbName.SHARED)]
        top = metrics.top_activities(slice_, n=2)
        assert [(v.verb, v.count) for v in top] == [("experienced", 3), ("completed", 2)]

    def test_user_rankings(self) -> None:
        slice_ = [_st(VerbName.EXPERIENCED, actor=BOB)] * 2 + [_st(VerbName.EXPERIENCED, actor=ALICE)]
        ranking = metrics.user_rankings(slice_)
        assert [(r.rank, r.user, r.activities) for r in ranking] == [(1, BOB, 2), (2, ALICE, 1)]

    def test_time_distribution_and_peaks(self) -> None:
        slice_ = [_st(VerbName.EXPERIENCED, at=_utc(1, h)) for h in (9, 9, 14, 14, 14, 20)]
        assert metrics.time_distribution(slice_) == {9: 2, 14: 3, 20: 1}
        assert metrics.peak_hours(slice_, n=2) == [14, 9]

    def test_recent_activities_newest_first(self) -> None:
        slice_ = [_st(VerbName.EXPERIENCED, at=_utc(d)) for d in (1, 5, 3)]
        recent = metrics.recent_activities(slice_, n=2)
        assert [a.timestamp.day for a in recent] == [5, 3]
        assert recent[0].user == ALICE

    def test_project_ids_from_object_and_parent(self) -> None:
        slice_ = [
            _st(VerbName.UPDATED, obj="p1"),
            _st(VerbName.ACCEPTED, kind="invitation", obj="i1", parent=[FACTORY.activity("project", "p2")]),
            _st(VerbName.EXPERIENCED, kind="lesson", obj="l1"),
        ]
        assert metrics.project_ids(slice_) == {
            FACTORY.iri("project", "p1"), FACTORY.iri("project", "p2"),
        }

    def test_daily_counts(self) -> None:
        slice_ = [_st(VerbName.EXPERIENCED, at=_utc(d)) for d in (2, 2, 3)]
        assert metrics.daily_counts(slice_) == {"2026-04-02": 2, "2026-04-03": 1}


# ===================================================================
# Network
# ===================================================================


class TestCollaborationNetwork:
    def test_edges_weighted_by_co_occurrence(self) -> None:
        slice_ = [
            _st(VerbName.COLLABORATED, team=[ALICE, BOB]),
            _st(VerbName.COLLABORATED, team=[ALICE, BOB, CAROL]),
        ]
        network = metrics.collaboration_network(slice_)
        weights = {(e.source, e.target): e.weight for e in network.edges}
        assert weights == {(ALICE, BOB): 2, (ALICE, CAROL): 1, (BOB, CAROL): 1}
        nodes = {n.id: n for n in network.nodes}
        assert nodes[ALICE].activity_count == 2
        assert nodes[CAROL].degree == 2

    def test_centrality(self) -> None:
        network = metrics.collaboration_network([
            _st(VerbName.COLLABORATED, team=[ALICE, BOB]),
            _st(VerbName.COLLABORATED, actor=CAROL, team=[CAROL, ALICE]),
        ])
        centrality = metrics.degree_centrality(network)
        assert centrality == {ALICE: 1.0, BOB: 0.5, CAROL: 0.5}

    def test_single_node(self) -> None:
        network = metrics.collaboration_network([_st(VerbName.COLLABORATED)])
        assert metrics.degree_centrality(network) == {ALICE: 0.0}
        assert network.edges == []


# ===================================================================
# User reducers
# ===================================================================


class TestUserReducers:
    def test_collaboration_metrics(self) -> None:
        slice_ = [
            _st(VerbName.COLLABORATED, team=[ALICE, BOB]),
            _st(VerbName.SHARED, extensions=Extensions(recipients=[CAROL])),
            _st(VerbName.INVITED, extensions=Extensions(invitee="dave@hulab.edu.hk")),
            _st(VerbName.COMMENTED),
        ]
        result = metrics.collaboration_metrics(ALICE, slice_)
        assert result.collaborations == 1
        assert result.shares == 1
        assert result.comments == 1
        assert result.invitations_sent == 1
        assert result.partners == [BOB, CAROL, "dave@hulab.edu.hk"]

    def test_content_interaction(self) -> None:
        slice_ = [
            _st(VerbName.UPLOADED, kind="file", obj="f1"),
            _st(VerbName.DOWNLOADED, kind="file", obj="f1"),
            _st(VerbName.EXPERIENCED, kind="lesson", obj="l1"),
        ]
        content = metrics.content_interaction(slice_)
        assert (content.uploads, content.downloads, content.views, content.unique_objects) == (1, 1, 1, 2)

    def test_assessment_performance(self) -> None:
        slice_ = [
            _st(VerbName.ATTEMPTED, kind="assessment", obj="q1"),
            _st(VerbName.PASSED, kind="assessment", obj="q1", result=Result(score=Score(scaled=0.8))),
            _st(VerbName.FAILED, kind="assessment", obj="q2", result=Result(score=Score(raw=3, min=0, max=10))),
        ]
        perf = metrics.assessment_performance(slice_)
        assert perf.attempts == 1
        assert perf.scored == 2
        assert perf.average_score == pytest.approx(0.55)
        assert perf.best_score == pytest.approx(0.8)
        assert perf.pass_rate == 0.5

    def test_assessment_without_scores(self) -> None:
        perf = metrics.assessment_performance([_st(VerbName.EXPERIENCED)])
        assert perf.average_score is None
        assert perf.pass_rate is None

    def test_ai_interaction(self) -> None:
        slice_ = [
            _st(
                VerbName.QUERIED, kind="ai-session", obj="s1",
                result=Result(score=Score(scaled=0.8), extensions=Extensions(ai_tokens=120)),
            ),
            _st(VerbName.QUERIED, kind="ai-session", obj="s1", extensions=Extensions(ai_tokens=30)),
            _st(VerbName.QUERIED, kind="ai-session", obj="s2"),
        ]
        ai = metrics.ai_interaction(slice_)
        assert ai.queries == 3
        assert ai.sessions == 2
        assert ai.total_tokens == 150
        assert ai.average_rating == pytest.approx(4.0)

    def test_activity_patterns(self) -> None:
        # 2026-04-06 is a Monday
        slice_ = [
            _st(VerbName.EXPERIENCED, at=datetime(2026, 4, 6, 9, tzinfo=timezone.utc)),
            _st(VerbName.EXPERIENCED, at=datetime(2026, 4, 6, 9, 30, tzinfo=timezone.utc)),
            _st(VerbName.EXPERIENCED, at=datetime(2026, 4, 8, 17, tzinfo=timezone.utc)),
        ]
        patterns = metrics.activity_patterns(slice_)
        assert patterns.hourly == {9: 2, 17: 1}
        assert patterns.weekday == {"Monday": 2, "Wednesday": 1}
        assert patterns.peak_hour == 9
        assert patterns.peak_weekday == "Monday"
        assert patterns.active_days == 2

    def test_achievements(self) -> None:
        slice_ = [
            _st(VerbName.EXPERIENCED, at=_utc(1)),
            _st(VerbName.COMPLETED, at=_utc(2)),
            _st(VerbName.COLLABORATED, at=_utc(3), team=[ALICE, BOB]),
        ]
        earned = {a.key: a for a in metrics.achievements(slice_)}
        assert set(earned) == {"first_steps", "first_completion", "team_player"}
        assert earned["first_steps"].achieved_at == _utc(1)
        assert earned["first_completion"].achieved_at == _utc(2)


# ===================================================================
# Project reducers
# ===================================================================


class TestProjectReducers:
    def test_phase_breakdown(self) -> None:
        slice_ = [
            _st(VerbName.CREATED, at=_utc(1), extensions=Extensions(ride_i_phase="resource")),
            _st(VerbName.UPDATED, at=_utc(2)),
            _st(
                VerbName.ADVANCED, actor=BOB, at=_utc(3),
                extensions=Extensions(ride_i_phase="information", previous_phase="resource"),
            ),
            _st(VerbName.COMMENTED, at=_utc(4)),
        ]
        breakdown = metrics.phase_breakdown(slice_)
        assert breakdown.current_phase == "information"
        assert breakdown.activity_by_phase == {"resource": 2, "information": 2}
        [transition] = breakdown.transitions
        assert (transition.from_phase, transition.to_phase, transition.actor) == (
            "resource", "information", BOB,
        )

    def test_contributor_metrics(self) -> None:
        slice_ = [
            _st(VerbName.UPDATED, actor=BOB, at=_utc(1)),
            _st(VerbName.UPDATED, actor=BOB, at=_utc(2)),
            _st(VerbName.COMMENTED, actor=ALICE, at=_utc(3)),
        ]
        [bob, alice] = metrics.contributor_metrics(slice_)
        assert bob.user == BOB
        assert bob.share == pytest.approx(2 / 3)
        assert bob.verbs == {"updated": 2}
        assert (bob.first_activity, bob.last_activity) == (_utc(1), _utc(2))
        assert alice.activities == 1

    @pytest.mark.parametrize(
        ("idle_days", "status"),
        [(0, "active"), (7, "active"), (8, "slowing"), (30, "slowing"), (31, "inactive")],
    )
    def test_project_health_status(self, idle_days: int, status: str) -> None:
        health = metrics.project_health([_st(VerbName.UPDATED, at=NOW - timedelta(days=idle_days))], now=NOW)
        assert health.status == status
        assert health.days_since_last_activity == idle_days

    def test_project_health_score(self) -> None:
        slice_ = [_st(VerbName.UPDATED, actor=a, at=NOW - timedelta(hours=1)) for a in (ALICE, BOB, CAROL)]
        health = metrics.project_health(slice_, now=NOW)
        assert health.score == 100
        assert health.active_contributors_7d == 3

    def test_project_health_empty(self) -> None:
        health = metrics.project_health([], now=NOW)
        assert health.status == "inactive"
        assert health.score == 0


class TestErrors:
    def test_failed_statements_and_types(self) -> None:
        slice_ = [
            _st(VerbName.FAILED, result=Result(success=False)),
            _st(VerbName.FAILED, result=Result(success=False)),
            _st(VerbName.UPLOADED, result=Result(success=False)),
            _st(VerbName.PASSED, result=Result(success=True)),
        ]
        assert len(metrics.failed_statements(slice_)) == 3
        assert metrics.error_types(slice_) == {"failed": 2, "uploaded": 1}
