"""
Shared pytest fixtures.

Test strategy:
- Every test gets its own in-memory SQLite engine with freshly created tables
- Repositories share one session (unit-of-work) per test
- Nothing is committed; the session is rolled back and closed at teardown
"""

import os

# must be set before datarepo.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest

from datarepo.database import create_all_tables, create_db_engine, create_session_factory
from datarepo.models import Member, Team
from datarepo.repositories.member_repository import MemberRepository
from datarepo.repositories.team_repository import TeamRepository


# ============================================================
# Engine & session
# ============================================================
@pytest.fixture
def engine():
    """Isolated in-memory engine per test."""
    _engine = create_db_engine("sqlite://", echo=False)
    create_all_tables(_engine)
    yield _engine
    _engine.dispose()


@pytest.fixture
def session(engine):
    db = create_session_factory(engine)()
    try:
        yield db
    finally:
        db.rollback()
        db.close()


# ============================================================
# Repositories
# ============================================================
@pytest.fixture
def member_repository(session) -> MemberRepository:
    return MemberRepository(session)


@pytest.fixture
def team_repository(session) -> TeamRepository:
    return TeamRepository(session)


# ============================================================
# Seed data
# ============================================================
@pytest.fixture
def team_a(team_repository) -> Team:
    return team_repository.save(Team("teamA"))


@pytest.fixture
def team_b(team_repository) -> Team:
    return team_repository.save(Team("teamB"))


@pytest.fixture
def five_members(member_repository):
    """member1..member5, all aged 10, no team."""
    return [member_repository.save(Member(f"member{i}", 10)) for i in range(1, 6)]


@pytest.fixture
def team_members(member_repository, team_a, team_b):
    """
    m1 -> teamA, m2 -> teamA, m3 -> teamB; the unit-of-work is cleared
    afterwards so tests start from the database, not the identity map.
    """
    member_repository.save(Member("m1", 0, team_a))
    member_repository.save(Member("m2", 0, team_a))
    member_repository.save(Member("m3", 0, team_b))
    member_repository.clear()
