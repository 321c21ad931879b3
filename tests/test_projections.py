"""Projection views, DTO conversion and projection planning."""

from dataclasses import dataclass
from typing import List, Optional

import pytest

from datarepo.core.exceptions import InvalidQueryError
from datarepo.models import Member, Team
from datarepo.repositories.projections import Projection, dto_fields, plan_projection, to_projection
from datarepo.schemas import MemberDto, NestedClosedProjection, TeamInfo, UsernameAndAge, UsernameOnly


class TeamWithMembers(Projection):
    name: str
    members: List[UsernameOnly]


@dataclass
class AgeDto:
    age: int


class TestProjection:
    def test_reads_fields_from_mapping(self):
        view = UsernameAndAge({"username": "m1", "age": 10})

        assert view.username == "m1"
        assert view.age == 10
        assert view.label == "m1 (10)"
        assert view.to_dict() == {"username": "m1", "age": 10}

    def test_reads_lazily(self):
        view = UsernameOnly({})

        with pytest.raises(KeyError):
            view.username

    def test_is_read_only(self):
        view = UsernameOnly({"username": "m1"})

        with pytest.raises(AttributeError):
            view.username = "m2"

    def test_unknown_field(self):
        with pytest.raises(AttributeError):
            UsernameOnly({"username": "m1"}).age

    def test_nested_over_entity(self):
        member = Member("m1", 10, Team("teamA"))

        view = NestedClosedProjection(member)

        assert isinstance(view.team, TeamInfo)
        assert view.team.name == "teamA"
        assert view.to_dict() == {"username": "m1", "team": {"name": "teamA"}}

    def test_nested_none(self):
        assert NestedClosedProjection(Member("m1")).team is None

    def test_nested_collection(self):
        team = Team("teamA")
        Member("m1", team=team)
        Member("m2", team=team)

        view = TeamWithMembers(team)

        assert [m.username for m in view.members] == ["m1", "m2"]

    def test_equality(self):
        assert UsernameOnly({"username": "m1"}) == UsernameOnly({"username": "m1"})
        assert UsernameOnly({"username": "m1"}) != UsernameOnly({"username": "m2"})


class TestDtoConversion:
    def test_field_names(self):
        assert dto_fields(MemberDto) == ("id", "username", "team_name")
        assert dto_fields(AgeDto) == ("age",)

    def test_from_mapping_and_entity(self):
        assert to_projection(AgeDto, {"age": 3, "extra": 1}) == AgeDto(3)
        assert to_projection(AgeDto, Member("m1", 7)) == AgeDto(7)

    def test_no_projection_returns_source(self):
        row = {"age": 3}
        assert to_projection(None, row) is row


class TestPlanProjection:
    def test_entity_by_default(self):
        plan = plan_projection(Member, None)

        assert plan.selects_entity
        assert plan.fetch == ()

    def test_flat_projection_selects_columns(self):
        plan = plan_projection(Member, UsernameAndAge)

        assert plan.columns == ("username", "age")
        assert "member.member_id" not in str(plan.select())

    def test_nested_projection_fetches_relationship(self):
        plan = plan_projection(Member, NestedClosedProjection)

        assert plan.selects_entity
        assert plan.fetch == ("team",)

    def test_nested_field_must_be_relationship(self):
        class Broken(Projection):
            username: TeamInfo

        with pytest.raises(InvalidQueryError):
            plan_projection(Member, Broken)

    def test_dto_fields_must_be_columns(self):
        with pytest.raises(InvalidQueryError):
            plan_projection(Member, MemberDto)

    def test_optional_hint_is_unwrapped(self):
        class MaybeTeam(Projection):
            team: Optional[TeamInfo]

        assert MaybeTeam.nested_fields() == {"team": (TeamInfo, False)}
