"""
Member read models.

DTOs are pydantic models built eagerly per row; the Projection classes
are lazy, read-only views.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from datarepo.repositories.projections import Projection


class MemberDto(BaseModel):
    """
    Member with its team name, built from a joined select.

    Example:
        {"id": 1, "username": "member1", "team_name": "teamA"}
    """

    model_config = ConfigDict(frozen=True)

    id: int = Field(..., description="Member id")
    username: Optional[str] = Field(None, description="Member username")
    team_name: Optional[str] = Field(None, description="Name of the member's team")


class UsernameOnlyDto(BaseModel):
    model_config = ConfigDict(frozen=True)

    username: Optional[str] = None


class UsernameOnly(Projection):
    username: Optional[str]


class UsernameAndAge(Projection):
    """Closed projection plus a computed field."""

    username: Optional[str]
    age: int

    @property
    def label(self) -> str:
        return f"{self.username} ({self.age})"


class TeamInfo(Projection):
    name: str


class NestedClosedProjection(Projection):
    """Member username with a nested view of its team."""

    username: Optional[str]
    team: Optional[TeamInfo]


class MemberProjection(Projection):
    """Flat row from a native query joining member and team."""

    id: int
    username: Optional[str]
    team_name: Optional[str]
