"""
Data access layer (Repository pattern).

Repositories handle all database queries, isolating callers from SQL.
Concrete repositories live in their own modules::

    from datarepo.repositories.member_repository import MemberRepository
    from datarepo.repositories.team_repository import TeamRepository
"""

from datarepo.repositories.auditing import AuditingHook, EntityHook
from datarepo.repositories.base_repository import BaseRepository
from datarepo.repositories.declared import native_query, query
from datarepo.repositories.derived import derived_query, parse_method_name
from datarepo.repositories.paging import Order, Page, PageRequest, Slice, Sort
from datarepo.repositories.projections import Projection
from datarepo.repositories.query import QueryDescriptor
from datarepo.repositories.specification import Example, ExampleMatcher, Specification

__all__ = [
    "AuditingHook",
    "EntityHook",
    "BaseRepository",
    "native_query",
    "query",
    "derived_query",
    "parse_method_name",
    "Order",
    "Page",
    "PageRequest",
    "Slice",
    "Sort",
    "Projection",
    "QueryDescriptor",
    "Example",
    "ExampleMatcher",
    "Specification",
]
