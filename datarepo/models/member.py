"""
Member model.

A Member optionally belongs to a Team (many-to-one). Rows are versioned:
every UPDATE checks and bumps the version column, so a write based on a
stale read fails instead of silently overwriting.
"""

from typing import Optional, TYPE_CHECKING

from sqlalchemy import ForeignKey, String, Integer, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from datarepo.models.base import Base, BaseModel

if TYPE_CHECKING:
    from datarepo.models.team import Team


class Member(BaseModel, Base):
    """
    Member entity.

    Attributes:
        id: Auto-incrementing primary key
        username: Display name (not unique)
        age: Age in years
        team_id: Foreign key to team
        team: Owning team (many-to-one, explicit load only)
        version: Optimistic lock counter

    Example:
        team = Team("teamA")
        member = Member("member1", 10, team)
    """

    __tablename__ = "member"

    id: Mapped[int] = mapped_column(
        "member_id",
        Integer,
        primary_key=True,
        autoincrement=True
    )

    username: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    age: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    team_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("team.team_id"),
        nullable=True
    )

    team: Mapped[Optional["Team"]] = relationship(
        back_populates="members",
        lazy="raise"
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        Index("ix_member_username_age", "username", "age"),
    )

    __mapper_args__ = {"version_id_col": version}

    def __init__(self, username: Optional[str] = None, age: int = 0, team: Optional["Team"] = None, **kwargs):
        super().__init__(username=username, age=age, **kwargs)
        if team is not None:
            self.change_team(team)

    def change_team(self, team: "Team") -> None:
        """Move the member to another team, keeping both sides in sync."""
        # back_populates appends to team.members as well
        self.team = team

    def __repr__(self) -> str:
        return f"<Member(id={self.id}, username={self.username!r}, age={self.age})>"
