"""Shared pytest fixtures for the portal data-layer test suite.

Provides:
- lrs: an InMemoryLRS served through httpx.MockTransport
- client: EventLogClient talking to it (no backoff delay)
- statements / projects / invitations / comments / shares / profiles
- resolver: RelationshipResolver over those mappers
- aggregator: AnalyticsAggregator with a manual cache clock
"""

import pytest

from src.config.settings import Settings
from src.lrs.client import EventLogClient
from src.lrs.memory import InMemoryLRS
from src.lrs.statements import StatementFactory
from src.observability.analytics import AnalyticsAggregator
from src.observability.cache import AnalyticsCache
from src.repositories.comments import CommentRepository
from src.repositories.invitations import InvitationRepository
from src.repositories.profiles import UserProfileRepository
from src.repositories.projects import ProjectRepository
from src.repositories.relationships import RelationshipResolver
from src.repositories.shares import ShareRepository

BASE = "http://hulab.test"


class ManualClock:
    """Monotonic stand-in the tests advance by hand."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def settings() -> Settings:
    return Settings(
        LRS_ENDPOINT="http://lrs.test/xapi/",
        BASE_ACTIVITY_ID=BASE,
        LRS_BACKOFF_BASE_S=0.0,
        LRS_PAGE_SIZE=50,
        _env_file=None,
    )


@pytest.fixture
def lrs() -> InMemoryLRS:
    return InMemoryLRS()


@pytest.fixture
def client(settings: Settings, lrs: InMemoryLRS) -> EventLogClient:
    return EventLogClient.from_settings(settings, transport=lrs.transport())


@pytest.fixture
def statements(settings: Settings) -> StatementFactory:
    return StatementFactory.from_settings(settings)


@pytest.fixture
def projects(client: EventLogClient, statements: StatementFactory) -> ProjectRepository:
    return ProjectRepository(client, statements)


@pytest.fixture
def invitations(
    client: EventLogClient,
    statements: StatementFactory,
    projects: ProjectRepository,
) -> InvitationRepository:
    return InvitationRepository(client, statements, projects, ttl_days=7)


@pytest.fixture
def comments(client: EventLogClient, statements: StatementFactory) -> CommentRepository:
    return CommentRepository(client, statements)


@pytest.fixture
def shares(client: EventLogClient, statements: StatementFactory) -> ShareRepository:
    return ShareRepository(client, statements)


@pytest.fixture
def profiles(client: EventLogClient, statements: StatementFactory) -> UserProfileRepository:
    return UserProfileRepository(client, statements)


@pytest.fixture
def resolver(
    client: EventLogClient,
    statements: StatementFactory,
    projects: ProjectRepository,
    invitations: InvitationRepository,
    comments: CommentRepository,
    shares: ShareRepository,
) -> RelationshipResolver:
    return RelationshipResolver(
        client,
        statements,
        projects=projects,
        invitations=invitations,
        comments=comments,
        shares=shares,
    )


@pytest.fixture
def cache_clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def aggregator(
    client: EventLogClient,
    statements: StatementFactory,
    cache_clock: ManualClock,
) -> AnalyticsAggregator:
    return AnalyticsAggregator(
        client,
        statements,
        cache=AnalyticsCache(300.0, clock=cache_clock),
        max_events=10_000,
        scan_timeout_s=5.0,
    )
