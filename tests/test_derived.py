"""Derived query name parsing and class-definition checks."""

import pytest
from sqlalchemy.dialects import postgresql

from datarepo.core.constants import Direction, LockMode, ResultShape
from datarepo.core.exceptions import InvalidQueryError
from datarepo.models import Member
from datarepo.repositories.base_repository import BaseRepository
from datarepo.repositories.derived import derived_query, parse_method_name, resolve_path
from datarepo.repositories.member_repository import MemberRepository
from datarepo.repositories.paging import Order


def _operators(tree):
    return [(part.path, part.operator.name) for part in tree.parts]


class TestParseMethodName:
    def test_and_predicates(self):
        tree = parse_method_name("find_by_username_and_age_greater_than")

        assert tree.shape is ResultShape.LIST
        assert _operators(tree) == [("username", "EQUALS"), ("age", "GREATER_THAN")]
        assert tree.arity == 2

    def test_or_groups_bind_looser_than_and(self):
        tree = parse_method_name("find_by_username_and_age_or_age_less_than_equal")

        assert len(tree.groups) == 2
        assert [len(group) for group in tree.groups] == [2, 1]
        assert tree.groups[1][0].operator.name == "LESS_THAN_EQUAL"

    def test_longest_operator_keyword_wins(self):
        tree = parse_method_name("find_by_age_greater_than_equal")

        assert _operators(tree) == [("age", "GREATER_THAN_EQUAL")]

    def test_between_takes_two_arguments(self):
        assert parse_method_name("find_by_age_between").arity == 2

    def test_null_operators_take_no_argument(self):
        tree = parse_method_name("find_by_username_is_null_and_team_name_is_not_null")

        assert _operators(tree) == [("username", "IS_NULL"), ("team_name", "IS_NOT_NULL")]
        assert tree.arity == 0

    def test_ignore_case_suffix(self):
        part = parse_method_name("find_by_username_starting_with_ignore_case").parts[0]

        assert part.operator.name == "STARTING_WITH"
        assert part.ignore_case

    def test_top_n_limits_a_list(self):
        tree = parse_method_name("find_top3_by")

        assert tree.limit == 3
        assert tree.shape is ResultShape.LIST
        assert tree.groups == ()

    def test_first_without_number_is_single_result(self):
        tree = parse_method_name("find_first_by_order_by_age_desc")

        assert tree.shape is ResultShape.ONE
        assert tree.limit == 1
        assert tree.orders == (Order("age", Direction.DESC),)

    def test_order_by_several_properties(self):
        tree = parse_method_name("find_by_age_order_by_username_asc_and_age_desc")

        assert tree.orders == (Order("username", Direction.ASC), Order("age", Direction.DESC))
        assert _operators(tree) == [("age", "EQUALS")]

    def test_property_ending_in_by(self):
        tree = parse_method_name("find_by_created_by")

        assert tree.shape is ResultShape.LIST
        assert _operators(tree) == [("created_by", "EQUALS")]

    def test_property_ending_in_by_with_modifiers_and_order(self):
        tree = parse_method_name("count_by_last_modified_by")
        assert _operators(tree) == [("last_modified_by", "EQUALS")]

        tree = parse_method_name("find_top2_by_username_order_by_created_by_desc")
        assert tree.limit == 2
        assert tree.orders == (Order("created_by", Direction.DESC),)

    @pytest.mark.parametrize("name,shape", [
        ("find_page_by_age", ResultShape.PAGE),
        ("find_slice_by_age", ResultShape.SLICE),
        ("find_one_by_username", ResultShape.ONE),
        ("stream_by_age", ResultShape.STREAM),
        ("count_by_age", ResultShape.COUNT),
        ("exists_by_username", ResultShape.EXISTS),
        ("remove_by_username", ResultShape.DELETE),
    ])
    def test_result_shapes(self, name, shape):
        assert parse_method_name(name).shape is shape

    def test_subject_modifiers(self):
        tree = parse_method_name("find_distinct_read_only_for_update_by_username")

        assert tree.distinct
        assert tree.read_only
        assert tree.lock is LockMode.PESSIMISTIC_WRITE

    @pytest.mark.parametrize("name", [
        "fetch_by_username",          # unknown verb
        "find_username",              # no _by
        "find_hello_by",              # unknown subject token
        "count_top3_by",              # count takes no modifiers
        "find_page_slice_by_age",     # two result shapes
        "find_by_username_and_",      # empty predicate
        "find_by_in",                 # operator without property
        "find_top0_by",               # non-positive limit
    ])
    def test_rejects_malformed_names(self, name):
        with pytest.raises(InvalidQueryError):
            parse_method_name(name)


class TestResolvePath:
    def test_column(self):
        assert resolve_path(Member, "username") == "username"

    def test_follows_relationship_prefix(self):
        assert resolve_path(Member, "team_name") == "team.name"

    def test_unknown_property(self):
        with pytest.raises(InvalidQueryError, match="nickname"):
            resolve_path(Member, "nickname")


class TestClassDefinition:
    def test_unknown_property_fails_when_class_is_defined(self):
        with pytest.raises(InvalidQueryError, match="nickname"):
            class BrokenRepository(BaseRepository[Member]):
                model = Member

                find_by_nickname = derived_query()

    def test_unknown_token_fails_when_class_is_defined(self):
        with pytest.raises(InvalidQueryError):
            class BrokenRepository(BaseRepository[Member]):
                model = Member

                find_hello_by = derived_query()

    def test_bad_fetch_path_fails_when_class_is_defined(self):
        with pytest.raises(InvalidQueryError):
            class BrokenRepository(BaseRepository[Member]):
                model = Member

                find_by_username = derived_query(fetch=("username",))

    def test_queries_are_precompiled(self):
        sql = str(MemberRepository.find_by_username_and_age_greater_than.statement)

        assert "member.username = :p0" in sql
        assert "member.age > :p1" in sql

    def test_relationship_path_joins(self):
        sql = str(MemberRepository.count_by_team_name.statement)

        assert "JOIN team" in sql

    def test_for_update_renders_row_lock(self):
        stmt = MemberRepository.find_for_update_by_username.statement

        assert "FOR UPDATE" in str(stmt.compile(dialect=postgresql.dialect()))
        assert MemberRepository.find_for_update_by_username.lock is LockMode.PESSIMISTIC_WRITE

    def test_for_share_renders_shared_lock(self):
        class SharedLockRepository(BaseRepository[Member]):
            model = Member

            find_for_share_by_username = derived_query()

        stmt = SharedLockRepository.find_for_share_by_username.statement

        assert "FOR SHARE" in str(stmt.compile(dialect=postgresql.dialect()))

    def test_wrong_argument_count(self, member_repository):
        with pytest.raises(TypeError):
            member_repository.find_by_username_and_age_greater_than("AAA")
