"""
rpgf/tests/conftest.py: Shared pytest fixtures for the RPGF test suite.

Every test gets its own in-memory SQLite database, so fixtures can be mutated
freely. Time is controlled through FakeClock; services read "now" from it on
every call, so moving the clock moves the round through its phases.

Fixtures:
    clock            : FakeClock pinned before the application period.
    config           : RPGFConfig with the testing override enabled.
    database         : Fresh schema on an in-memory SQLite engine.
    services         : Every service wired on `database` and `clock`.
    admin            : Identity of the round creator.
    round_           : Draft round with SCHEDULE and VOTING_CONFIG.
    applications     : Three applications registered in round_.
    voters           : Three voters on round_'s roster.
    published_round  : round_ after publishing.
    voting_round     : published_round with the clock inside the voting period.
"""

import uuid
from datetime import datetime, timedelta, timezone

import pytest

from rpgf.config import RPGFConfig
from rpgf.core import build_services
from rpgf.models import Identity, RoundSchedule, VotingConfig
from rpgf.storage.session import Database

UTC = timezone.utc

SCHEDULE = RoundSchedule(
    application_period_start=datetime(2026, 3, 1, tzinfo=UTC),
    application_period_end=datetime(2026, 3, 15, tzinfo=UTC),
    voting_period_start=datetime(2026, 3, 15, tzinfo=UTC),
    voting_period_end=datetime(2026, 3, 29, tzinfo=UTC),
    results_period_start=datetime(2026, 4, 1, tzinfo=UTC),
)

VOTING_CONFIG = VotingConfig(max_votes_per_voter=2, max_votes_per_project_per_voter=10)

BEFORE_INTAKE = datetime(2026, 2, 1, tzinfo=UTC)
DURING_VOTING = datetime(2026, 3, 20, tzinfo=UTC)
DURING_RESULTS = datetime(2026, 4, 5, tzinfo=UTC)

VOTER_WALLETS = ["0xvoter1", "0xvoter2", "0xvoter3"]


class FakeClock:
    """Callable clock whose current instant tests can set or advance."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock(BEFORE_INTAKE)


@pytest.fixture
def config():
    return RPGFConfig(enable_dangerous_test_routes=True)


@pytest.fixture
def database(config):
    db = Database(config)
    db.create_all()
    yield db
    db.drop_all()
    db.engine.dispose()


@pytest.fixture
def services(config, database, clock):
    return build_services(config, database, clock)


@pytest.fixture
def admin():
    return Identity(user_id=str(uuid.uuid4()), wallet_address="0xadmin")


@pytest.fixture
def round_(services, admin):
    return services.rounds.create_round(
        "test-round",
        admin,
        schedule=SCHEDULE,
        voting_config=VOTING_CONFIG,
        name="Test Round",
    )


@pytest.fixture
def applications(services, round_):
    return [
        services.applications.register_application(round_.id, name)
        for name in ("Alpha", "Beta", "Gamma")
    ]


@pytest.fixture
def voters(services, round_, admin):
    return services.roster.set_round_voters(round_.id, VOTER_WALLETS, admin.user_id)


@pytest.fixture
def published_round(services, round_, applications, voters, admin):
    return services.rounds.publish_round(round_.id, admin.user_id)


@pytest.fixture
def voting_round(published_round, clock):
    clock.set(DURING_VOTING)
    return published_round
