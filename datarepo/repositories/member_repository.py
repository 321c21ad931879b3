"""
Member repository.

Shows every way a query can be declared: derived from the method name,
built explicitly with ``@query``, written as native SQL, or hand-coded
against the session.
"""

import logging
from typing import List, Sequence

from sqlalchemy import select, update
from sqlalchemy.orm import contains_eager, joinedload

from datarepo.core.constants import ResultShape
from datarepo.models import Member, Team
from datarepo.repositories.base_repository import BaseRepository
from datarepo.repositories.declared import native_query, query
from datarepo.repositories.derived import derived_query
from datarepo.schemas import MemberDto, MemberProjection, UsernameOnly

logger = logging.getLogger(__name__)


class MemberRepository(BaseRepository[Member]):
    """Repository for members."""

    model = Member

    # ========================================
    # Derived queries
    # ========================================

    find_by_username_and_age_greater_than = derived_query()
    find_top3_by = derived_query()
    find_distinct_by = derived_query()
    find_by_username = derived_query()
    find_by_username_in = derived_query()
    find_by_age_between = derived_query()
    find_by_username_starting_with = derived_query()
    find_by_username_containing = derived_query()
    find_by_username_not_containing = derived_query()

    # audit columns
    find_by_created_by = derived_query()
    count_by_last_modified_by = derived_query()

    # return shapes
    find_list_by_username = derived_query()
    find_one_by_username = derived_query()
    find_first_by_order_by_age_desc = derived_query()
    stream_by_age_greater_than_equal = derived_query()
    count_by_team_name = derived_query()
    exists_by_username = derived_query()
    delete_by_username = derived_query()

    # paging
    find_by_age = derived_query()
    find_page_by_age = derived_query()
    find_slice_by_age = derived_query()

    # fetch join on team in the same statement
    read_by_username = derived_query(fetch=("team",))

    # hints and locks
    find_read_only_by_username = derived_query()
    find_for_update_by_username = derived_query()

    # default projection, overridable per call with projection=...
    search_by_username = derived_query(projection=UsernameOnly)

    # ========================================
    # Declared queries
    # ========================================

    @query()
    def find_member(self, username: str, age: int):
        return select(Member).where(Member.username == username, Member.age == age)

    @query()
    def find_username_list(self):
        return select(Member.username)

    @query(projection=MemberDto)
    def find_member_dto(self):
        return (
            select(Member.id.label("id"), Member.username.label("username"), Team.name.label("team_name"))
            .join(Member.team)
        )

    @query()
    def find_by_names(self, names: Sequence[str]):
        return select(Member).where(Member.username.in_(list(names)))

    @query(shape=ResultShape.PAGE)
    def find_member_page(self, age: int):
        return select(Member).where(Member.age == age)

    @query(modifying=True, clear_automatically=True)
    def bulk_age_plus(self, age: int):
        return update(Member).where(Member.age >= age).values(age=Member.age + 1)

    @query()
    def find_member_fetch_join(self):
        return select(Member).join(Member.team).options(contains_eager(Member.team))

    @query()
    def find_member_entity_graph(self):
        return select(Member).options(joinedload(Member.team))

    # ========================================
    # Native queries
    # ========================================

    find_by_native_query = native_query(
        "SELECT * FROM member WHERE username = :username",
        shape=ResultShape.ONE,
        entity=True,
    )

    find_by_native_projection = native_query(
        "SELECT m.member_id AS id, m.username, t.name AS team_name "
        "FROM member m LEFT JOIN team t ON m.team_id = t.team_id",
        shape=ResultShape.PAGE,
        projection=MemberProjection,
        count_sql="SELECT count(*) FROM member",
    )

    # ========================================
    # Custom methods
    # ========================================

    def find_member_custom(self) -> List[Member]:
        """Hand-written query against the session."""
        logger.debug("Running custom member query")
        return list(self.session.scalars(select(Member).order_by(Member.id)))
