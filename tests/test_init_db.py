"""Database initialization CLI helpers (run against the configured in-memory database)."""

from datarepo.database import get_db_context
from datarepo.database.init_db import SAMPLE_MEMBERS, SAMPLE_TEAMS, create_tables, initialize_database, seed_sample_data
from datarepo.repositories.member_repository import MemberRepository
from datarepo.repositories.team_repository import TeamRepository


class TestInitDb:
    def test_seed_is_idempotent(self, capsys):
        create_tables(reset=True)

        seed_sample_data()
        seed_sample_data()

        with get_db_context() as db:
            assert TeamRepository(db).count() == len(SAMPLE_TEAMS)
            assert MemberRepository(db).count() == len(SAMPLE_MEMBERS)
            assert MemberRepository(db).count_by_team_name("teamA") == 2

        assert "already exists" in capsys.readouterr().out

    def test_initialize_prints_status(self, capsys):
        initialize_database(reset=False, sample_data=False)

        out = capsys.readouterr().out
        assert "Database Status" in out
        assert "initialization complete" in out
