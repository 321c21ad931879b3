"""DTOs and projections returned by repository queries."""

from datarepo.schemas.member import (
    MemberDto,
    UsernameOnlyDto,
    UsernameOnly,
    UsernameAndAge,
    TeamInfo,
    NestedClosedProjection,
    MemberProjection,
)

__all__ = [
    "MemberDto",
    "UsernameOnlyDto",
    "UsernameOnly",
    "UsernameAndAge",
    "TeamInfo",
    "NestedClosedProjection",
    "MemberProjection",
]
