"""
Database initialization and seeding.

This script:
- Creates all database tables
- Optionally adds demo teams and members
- Can reset the database (drop and recreate)

Usage:
    # Create tables
    python -m datarepo.database.init_db

    # Reset database (drops all tables and recreates)
    python -m datarepo.database.init_db --reset

    # Add sample data
    python -m datarepo.database.init_db --sample-data
"""

import argparse
import logging

from datarepo.config import configure_logging, print_settings
from datarepo.database.session import engine, get_db_context, create_all_tables, drop_all_tables
from datarepo.models import Member, Team
from datarepo.repositories.member_repository import MemberRepository
from datarepo.repositories.team_repository import TeamRepository

logger = logging.getLogger(__name__)

SAMPLE_TEAMS = ("teamA", "teamB")

SAMPLE_MEMBERS = (
    ("member1", 10, "teamA"),
    ("member2", 20, "teamA"),
    ("member3", 30, "teamB"),
    ("member4", 40, "teamB"),
    ("member5", 50, None),
)


def create_tables(reset: bool = False) -> None:
    """
    Create all database tables.

    Args:
        reset: If True, drop existing tables first
    """
    if reset:
        print("🗑️  Dropping existing tables...")
        drop_all_tables(engine)
        print("✅ Tables dropped")

    print("📊 Creating database tables...")
    create_all_tables(engine)
    print("✅ Tables created")


def seed_sample_data() -> None:
    """
    Seed demo teams and members.

    Existing teams are reused, so running twice does not duplicate teams;
    members are only added when no member with that username exists.
    """
    print("\n🌱 Seeding sample data...")

    with get_db_context() as db:
        teams = TeamRepository(db)
        members = MemberRepository(db)

        by_name = {}
        for name in SAMPLE_TEAMS:
            team = teams.find_one_by_name(name)
            if team:
                print(f"  ⏭️  Team '{name}' already exists (skipping)")
            else:
                team = teams.save(Team(name))
                print(f"  ✅ Created team: {team}")
            by_name[name] = team

        for username, age, team_name in SAMPLE_MEMBERS:
            if members.exists_by_username(username):
                print(f"  ⏭️  Member '{username}' already exists (skipping)")
                continue
            member = members.save(Member(username, age, by_name.get(team_name)))
            print(f"  ✅ Created member: {member}")

    print("✅ Sample data seeded")


def print_database_status() -> None:
    """Print current database status and counts."""
    print("\n" + "=" * 60)
    print("📊 Database Status")
    print("=" * 60)

    with get_db_context() as db:
        teams = TeamRepository(db)
        members = MemberRepository(db)

        print(f"  Teams:   {teams.count()}")
        print(f"  Members: {members.count()}")

        for member in members.find_member_entity_graph():
            team = member.team.name if member.team else "-"
            print(f"    • {member.username} ({member.age}) team={team}")

    print("=" * 60)


def initialize_database(reset: bool = False, sample_data: bool = False) -> None:
    """
    Initialize the database.

    Args:
        reset: Drop existing tables before creating
        sample_data: Add demo teams and members
    """
    print("=" * 60)
    print("🗄️  Database Initialization")
    print("=" * 60)
    print_settings()

    create_tables(reset=reset)

    if sample_data:
        seed_sample_data()

    print_database_status()

    print("\n✅ Database initialization complete!")


def main():
    """Main entry point with CLI argument parsing."""
    parser = argparse.ArgumentParser(
        description="Initialize and seed the datarepo demo database",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Create tables
  python -m datarepo.database.init_db

  # Reset database (drop all tables and recreate)
  python -m datarepo.database.init_db --reset

  # Full reset with sample data
  python -m datarepo.database.init_db --reset --sample-data
        """
    )

    parser.add_argument(
        "--reset",
        action="store_true",
        help="Drop existing tables before creating (WARNING: deletes all data!)"
    )

    parser.add_argument(
        "--sample-data",
        action="store_true",
        help="Add demo teams and members"
    )

    args = parser.parse_args()
    configure_logging()

    if args.reset:
        print("⚠️  WARNING: This will DELETE ALL DATA in the database!")
        response = input("Are you sure? Type 'yes' to continue: ")
        if response.lower() != 'yes':
            print("❌ Aborted")
            return

    initialize_database(reset=args.reset, sample_data=args.sample_data)


if __name__ == "__main__":
    main()
