"""
Team model.

A Team groups members; each Member belongs to at most one Team.
"""

from typing import List, TYPE_CHECKING

from sqlalchemy import String, Integer
from sqlalchemy.orm import Mapped, mapped_column, relationship

from datarepo.models.base import Base, BaseModel

if TYPE_CHECKING:
    from datarepo.models.member import Member


class Team(BaseModel, Base):
    """
    Team entity.

    Attributes:
        id: Auto-incrementing primary key
        name: Unique team name
        members: Members of the team (one-to-many, explicit load only)
    """

    __tablename__ = "team"

    id: Mapped[int] = mapped_column(
        "team_id",
        Integer,
        primary_key=True,
        autoincrement=True
    )

    name: Mapped[str] = mapped_column(
        String(100),
        unique=True,
        nullable=False
    )

    # lazy="raise": touching an unloaded collection is an error, use
    # a fetch join or repository.load(team, "members")
    members: Mapped[List["Member"]] = relationship(
        back_populates="team",
        lazy="raise"
    )

    def __init__(self, name: str, **kwargs):
        super().__init__(name=name, **kwargs)

    def __repr__(self) -> str:
        return f"<Team(id={self.id}, name={self.name!r})>"
