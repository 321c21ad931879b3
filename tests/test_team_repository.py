"""
TeamRepository tests, plus error translation and unit-of-work behaviour
shared by every repository.
"""

import pytest
from sqlalchemy import text

from datarepo.core.exceptions import ConstraintViolation, DuplicateEntity, OptimisticLockError, RepositoryError
from datarepo.database import create_session_factory, get_db_context
from datarepo.models import Member, Team
from datarepo.repositories import member_spec
from datarepo.repositories.team_repository import TeamRepository


class TestTeamRepository:
    def test_derived_queries(self, team_repository, team_a, team_b):
        assert team_repository.find_one_by_name("teamA") is team_a
        assert team_repository.find_one_by_name("teamC") is None
        assert {t.name for t in team_repository.find_by_name_in(["teamA", "teamB"])} == {"teamA", "teamB"}
        assert team_repository.exists_by_name("teamB")

    def test_load_members(self, team_repository, member_repository, team_a):
        member_repository.save(Member("m1", 10, team_a))
        member_repository.save(Member("m2", 20, team_a))
        member_repository.clear()

        team = team_repository.find_one_by_name("teamA")
        members = team_repository.load(team, "members")

        assert sorted(m.username for m in members) == ["m1", "m2"]
        assert sorted(m.username for m in team.members) == ["m1", "m2"]

    def test_change_team_keeps_both_sides(self):
        team_a, team_b = Team("teamA"), Team("teamB")
        member = Member("m1", 10, team_a)

        member.change_team(team_b)

        assert member.team is team_b
        assert member in team_b.members
        assert member not in team_a.members

    def test_requires_session(self):
        with pytest.raises(ValueError):
            TeamRepository(None)


class TestStreaming:
    def test_stream_with_collection_fetch(self, team_repository, team_members):
        teams = {t.name: t for t in team_repository.stream_by_name_in(["teamA", "teamB"])}

        assert sorted(teams) == ["teamA", "teamB"]
        assert sorted(m.username for m in teams["teamA"].members) == ["m1", "m2"]
        assert [m.username for m in teams["teamB"].members] == ["m3"]

    def test_stream_failure_is_translated(self, session, team_repository):
        session.execute(text("DROP TABLE member"))

        with pytest.raises(RepositoryError):
            list(team_repository.stream_by_name_in(["teamA"]))


class TestErrorTranslation:
    def test_duplicate_name(self, team_repository):
        team_repository.save(Team("teamA"))

        with pytest.raises(DuplicateEntity) as exc_info:
            team_repository.save(Team("teamA"))

        assert isinstance(exc_info.value, ConstraintViolation)
        assert exc_info.value.__cause__ is not None

    def test_not_null_violation(self, team_repository):
        with pytest.raises(ConstraintViolation) as exc_info:
            team_repository.save(Team(None))

        assert not isinstance(exc_info.value, DuplicateEntity)

    def test_stale_version_raises_optimistic_lock_error(self, member_repository):
        member = member_repository.save(Member("member1", 10))
        # another unit-of-work bumped the version behind our back
        member_repository.bulk_update(member_spec.username("member1"), {"version": 5})

        member.age = 11

        with pytest.raises(OptimisticLockError):
            member_repository.save(member)

    def test_version_increments_on_update(self, member_repository):
        member = member_repository.save(Member("member1", 10))

        member.age = 11
        member_repository.save(member)

        assert member.version == 2


class TestUnitOfWork:
    def test_commit_and_rollback(self, engine):
        factory = create_session_factory(engine)

        with get_db_context(factory) as db:
            TeamRepository(db).save(Team("teamA"))

        with pytest.raises(DuplicateEntity):
            with get_db_context(factory) as db:
                repo = TeamRepository(db)
                repo.save(Team("teamB"))
                repo.save(Team("teamA"))

        with get_db_context(factory) as db:
            assert sorted(t.name for t in TeamRepository(db).find_all()) == ["teamA"]
