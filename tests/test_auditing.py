"""Save hooks and audit columns."""

from datetime import datetime, timedelta, UTC

from datarepo.config import settings
from datarepo.models import Member, Team
from datarepo.repositories.auditing import AuditingHook
from datarepo.repositories.member_repository import MemberRepository


class FakeClock:
    def __init__(self):
        self.now = datetime(2024, 1, 1, tzinfo=UTC)

    def __call__(self):
        self.now += timedelta(minutes=1)
        return self.now


class RecordingHook:
    def __init__(self):
        self.calls = []

    def pre_save(self, entity, is_new):
        self.calls.append(("pre", is_new, entity.id))

    def post_save(self, entity, is_new):
        self.calls.append(("post", is_new, entity.id))


class TestAuditingHook:
    def test_new_entity_is_stamped(self, member_repository):
        member = member_repository.save(Member("member1"))

        assert member.created_at is not None
        assert member.updated_at == member.created_at
        assert member.created_by == settings.auditor
        assert member.last_modified_by == settings.auditor

    def test_update_keeps_creation_stamp(self, session):
        clock = FakeClock()
        auditors = iter(["alice", "bob"])
        repo = MemberRepository(session, hooks=[AuditingHook(lambda: next(auditors), clock)])

        member = repo.save(Member("member1", 10))
        created_at = member.created_at

        member.age = 11
        repo.save(member)

        assert member.created_at == created_at
        assert member.updated_at == created_at + timedelta(minutes=1)
        assert member.created_by == "alice"
        assert member.last_modified_by == "bob"

    def test_unchanged_entity_is_not_restamped(self, session):
        clock = FakeClock()
        repo = MemberRepository(session, hooks=[AuditingHook(clock=clock)])
        member = repo.save(Member("member1", 10))
        stamped = member.updated_at

        repo.save(member)

        assert member.updated_at == stamped
        assert member.version == 1

    def test_related_team_is_audited_when_saved(self, team_repository):
        team = team_repository.save(Team("teamA"))

        assert team.created_by == settings.auditor

    def test_to_dict_serializes_audit_columns(self, member_repository):
        member = member_repository.save(Member("member1", 10))

        data = member.to_dict(exclude={"version"})

        assert data["username"] == "member1"
        assert data["created_at"] == member.created_at.isoformat()
        assert "version" not in data


class TestHookOrder:
    def test_pre_and_post_save(self, session):
        hook = RecordingHook()
        repo = MemberRepository(session, hooks=[hook])

        member = repo.save(Member("member1"))
        member.age = 30
        repo.save(member)

        assert hook.calls == [
            ("pre", True, None),
            ("post", True, member.id),
            ("pre", False, member.id),
            ("post", False, member.id),
        ]

    def test_no_hooks(self, session):
        repo = MemberRepository(session, hooks=[])

        member = repo.save(Member("member1"))

        assert member.created_at is None
