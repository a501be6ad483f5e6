"""Tests for EventLogClient against the in-memory LRS.

Covers: append idempotency, query paging and limits, time windows, blob
read/write with ETags, retry of transient failures, error mapping.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from src.errors import ConflictError, NotFoundError, UpstreamError, ValidationError
from src.lrs.client import EventLogClient
from src.lrs.memory import InMemoryLRS
from src.lrs.statements import StatementFactory
from src.models.statement import StatementQuery
from src.models.vocabulary import BlobNamespace, VerbName, verb_iri


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

ALICE = "alice@hulab.edu.hk"
BOB = "bob@hulab.edu.hk"


def _at(day: int, hour: int = 10) -> datetime:
    return datetime(2026, 3, day, hour, tzinfo=timezone.utc)


def _statement(statements: StatementFactory, actor: str = ALICE, verb=VerbName.EXPERIENCED, **kwargs):
    return statements.build(
        actor,
        verb,
        statements.activity("lesson", "intro", name="Intro"),
        **kwargs,
    )


# ===================================================================
# Append
# ===================================================================


class TestAppend:
    """Statements are stamped and stored once."""

    @pytest.mark.anyio
    async def test_append_assigns_id_and_timestamp(
        self, client: EventLogClient, lrs: InMemoryLRS, statements: StatementFactory,
    ) -> None:
        statement_id = await client.append(_statement(statements))
        assert statement_id
        raw = lrs.raw_statements()[0]
        assert raw["id"] == statement_id
        assert raw["timestamp"]

    @pytest.mark.anyio
    async def test_reappend_same_id_is_not_duplicated(
        self, client: EventLogClient, lrs: InMemoryLRS, statements: StatementFactory,
    ) -> None:
        statement = _statement(statements, statement_id="0190f000-0000-7000-8000-000000000001", timestamp=_at(1))
        await client.append(statement)
        await client.append(statement)
        assert lrs.statement_count == 1

    @pytest.mark.anyio
    async def test_conflicting_reuse_of_id_is_conflict(
        self, client: EventLogClient, statements: StatementFactory,
    ) -> None:
        sid = "0190f000-0000-7000-8000-000000000002"
        await client.append(_statement(statements, statement_id=sid, timestamp=_at(1)))
        with pytest.raises(ConflictError):
            await client.append(_statement(statements, actor=BOB, statement_id=sid, timestamp=_at(1)))

    @pytest.mark.anyio
    async def test_append_many(
        self, client: EventLogClient, lrs: InMemoryLRS, statements: StatementFactory,
    ) -> None:
        ids = await client.append_many([_statement(statements) for _ in range(3)])
        assert len(set(ids)) == 3
        assert lrs.statement_count == 3

    @pytest.mark.anyio
    async def test_append_many_empty(self, client: EventLogClient, lrs: InMemoryLRS) -> None:
        assert await client.append_many([]) == []
        assert lrs.requests == []


# ===================================================================
# Query
# ===================================================================


class TestQuery:
    """Lazy, bounded, newest-first iteration."""

    @pytest.mark.anyio
    async def test_newest_first_by_default(
        self, client: EventLogClient, statements: StatementFactory,
    ) -> None:
        for day in (1, 3, 2):
            await client.append(_statement(statements, timestamp=_at(day)))
        found = await client.collect(StatementQuery(limit=10))
        assert [s.timestamp.day for s in found] == [3, 2, 1]

    @pytest.mark.anyio
    async def test_ascending(self, client: EventLogClient, statements: StatementFactory) -> None:
        for day in (2, 1):
            await client.append(_statement(statements, timestamp=_at(day)))
        found = await client.collect(StatementQuery(limit=10, ascending=True))
        assert [s.timestamp.day for s in found] == [1, 2]

    @pytest.mark.anyio
    async def test_follows_more_links_across_pages(
        self, client: EventLogClient, lrs: InMemoryLRS, statements: StatementFactory,
    ) -> None:
        start = _at(1)
        await client.append_many([
            _statement(statements, timestamp=start + timedelta(minutes=i)) for i in range(120)
        ])
        lrs.requests.clear()
        found = await client.collect(StatementQuery(limit=500))
        assert len(found) == 120
        # page size is 50 in the test settings
        assert len(lrs.requests) == 3

    @pytest.mark.anyio
    async def test_limit_stops_iteration(
        self, client: EventLogClient, statements: StatementFactory,
    ) -> None:
        await client.append_many([
            _statement(statements, timestamp=_at(1) + timedelta(minutes=i)) for i in range(30)
        ])
        found = await client.collect(StatementQuery(limit=7))
        assert len(found) == 7

    @pytest.mark.anyio
    async def test_filters_by_agent_and_verb(
        self, client: EventLogClient, statements: StatementFactory,
    ) -> None:
        await client.append(_statement(statements, actor=ALICE, verb=VerbName.COMPLETED))
        await client.append(_statement(statements, actor=ALICE, verb=VerbName.ATTEMPTED))
        await client.append(_statement(statements, actor=BOB, verb=VerbName.COMPLETED))
        found = await client.collect(StatementQuery(
            agent=ALICE, verb=verb_iri(VerbName.COMPLETED), limit=10,
        ))
        assert len(found) == 1
        assert found[0].actor_email == ALICE

    @pytest.mark.anyio
    async def test_agent_filter_is_case_insensitive(
        self, client: EventLogClient, statements: StatementFactory,
    ) -> None:
        await client.append(_statement(statements, actor="Alice@HuLab.edu.hk"))
        found = await client.collect(StatementQuery(agent=ALICE, limit=10))
        assert len(found) == 1

    @pytest.mark.anyio
    async def test_window_is_half_open(
        self, client: EventLogClient, statements: StatementFactory,
    ) -> None:
        for day in (1, 2, 3):
            await client.append(_statement(statements, timestamp=_at(day)))
        found = await client.collect(StatementQuery(since=_at(1), until=_at(3), limit=10))
        assert sorted(s.timestamp.day for s in found) == [1, 2]

    @pytest.mark.anyio
    async def test_empty_result(self, client: EventLogClient) -> None:
        assert await client.collect(StatementQuery(agent=BOB, limit=10)) == []

    @pytest.mark.anyio
    async def test_related_agents_matches_team_members(
        self, client: EventLogClient, statements: StatementFactory,
    ) -> None:
        await client.append(_statement(statements, actor=ALICE, team=[ALICE, BOB]))
        direct = await client.collect(StatementQuery(agent=BOB, limit=10))
        related = await client.collect(StatementQuery(agent=BOB, related_agents=True, limit=10))
        assert direct == []
        assert len(related) == 1


# ===================================================================
# Blobs
# ===================================================================


class TestBlobs:
    """Keyed documents in the two namespaces."""

    @pytest.mark.anyio
    async def test_missing_blob_is_not_found(self, client: EventLogClient) -> None:
        with pytest.raises(NotFoundError):
            await client.get_blob(ALICE, BlobNamespace.AGENT_PROFILE, "user-profile")

    @pytest.mark.anyio
    async def test_profile_round_trip(self, client: EventLogClient) -> None:
        await client.put_blob(ALICE, BlobNamespace.AGENT_PROFILE, "user-profile", b'{"a": 1}')
        blob = await client.get_blob(ALICE, BlobNamespace.AGENT_PROFILE, "user-profile")
        assert blob.json() == {"a": 1}
        assert blob.etag

    @pytest.mark.anyio
    async def test_state_blobs_are_keyed_by_activity(self, client: EventLogClient) -> None:
        await client.put_blob(
            ALICE, BlobNamespace.ACTIVITY_STATE, "doc", b'{"n": 1}', activity_id="http://x/a",
        )
        await client.put_blob(
            ALICE, BlobNamespace.ACTIVITY_STATE, "doc", b'{"n": 2}', activity_id="http://x/b",
        )
        first = await client.get_blob(ALICE, BlobNamespace.ACTIVITY_STATE, "doc", activity_id="http://x/a")
        assert first.json() == {"n": 1}

    @pytest.mark.anyio
    async def test_state_blob_needs_activity(self, client: EventLogClient) -> None:
        with pytest.raises(ValidationError):
            await client.get_blob(ALICE, BlobNamespace.ACTIVITY_STATE, "doc")

    @pytest.mark.anyio
    async def test_stale_etag_is_conflict(self, client: EventLogClient) -> None:
        await client.put_blob(ALICE, BlobNamespace.AGENT_PROFILE, "p", b'{"v": 1}')
        stale = (await client.get_blob(ALICE, BlobNamespace.AGENT_PROFILE, "p")).etag
        await client.put_blob(ALICE, BlobNamespace.AGENT_PROFILE, "p", b'{"v": 2}')
        with pytest.raises(ConflictError):
            await client.put_blob(ALICE, BlobNamespace.AGENT_PROFILE, "p", b'{"v": 3}', if_match=stale)

    @pytest.mark.anyio
    async def test_unconditional_put_overwrites(self, client: EventLogClient) -> None:
        await client.put_blob(ALICE, BlobNamespace.AGENT_PROFILE, "p", b'{"v": 1}')
        await client.put_blob(ALICE, BlobNamespace.AGENT_PROFILE, "p", b'{"v": 2}')
        blob = await client.get_blob(ALICE, BlobNamespace.AGENT_PROFILE, "p")
        assert blob.json() == {"v": 2}


# ===================================================================
# Retry and error mapping
# ===================================================================


class TestRetry:
    """Transient failures are retried; the rest are mapped."""

    @pytest.mark.anyio
    async def test_retries_transient_status(
        self, client: EventLogClient, lrs: InMemoryLRS, statements: StatementFactory,
    ) -> None:
        lrs.fail_next(503, 429)
        await client.append(_statement(statements))
        assert lrs.statement_count == 1

    @pytest.mark.anyio
    async def test_gives_up_after_max_retries(self, client: EventLogClient, lrs: InMemoryLRS) -> None:
        lrs.fail_next(500, 500, 500, 500)
        with pytest.raises(UpstreamError) as exc_info:
            await client.check_connectivity()
        assert exc_info.value.upstream_status == 500
        assert exc_info.value.retryable

    @pytest.mark.anyio
    async def test_auth_failure_is_not_retried(self, client: EventLogClient, lrs: InMemoryLRS) -> None:
        lrs.fail_next(401)
        with pytest.raises(UpstreamError) as exc_info:
            await client.check_connectivity()
        assert exc_info.value.retryable is False
        assert len(lrs.requests) == 1

    @pytest.mark.anyio
    async def test_bad_request_is_validation_error(self, client: EventLogClient, lrs: InMemoryLRS) -> None:
        lrs.fail_next(400)
        with pytest.raises(ValidationError):
            await client.check_connectivity()

    def test_backoff_doubles(self) -> None:
        client = EventLogClient(endpoint="http://lrs.test/xapi", max_retries=3, base_delay=0.5)
        assert client.compute_backoff_delays() == [0.5, 1.0, 2.0]


class TestHealth:
    @pytest.mark.anyio
    async def test_healthy(self, client: EventLogClient) -> None:
        report = await client.health_check()
        assert report["status"] == "healthy"

    @pytest.mark.anyio
    async def test_unhealthy_does_not_raise(self, client: EventLogClient, lrs: InMemoryLRS) -> None:
        lrs.fail_next(503, 503, 503, 503)
        report = await client.health_check()
        assert report["status"] == "unhealthy"
        assert "error" in report
