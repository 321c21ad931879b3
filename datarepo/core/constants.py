"""
Application-wide constants.

Centralize magic strings and enumerations here.
"""

from enum import Enum


# ========================================
# Sorting
# ========================================

class Direction(str, Enum):
    """
    Sort direction of a single order clause.

    Usage:
        Direction.from_string("desc")  # Direction.DESC
    """

    ASC = "ASC"
    DESC = "DESC"

    @classmethod
    def from_string(cls, value: str) -> "Direction":
        try:
            return cls(value.upper())
        except ValueError:
            raise ValueError(f"Invalid sort direction '{value}'; expected 'asc' or 'desc'") from None


# ========================================
# Result Shapes
# ========================================

class ResultShape(str, Enum):
    """How the rows of a query are handed back to the caller."""

    LIST = "LIST"
    """All matching rows as a list."""

    ONE = "ONE"
    """At most one row; None when absent, error when more than one matches."""

    PAGE = "PAGE"
    """A Page: content slice plus total count (extra count query)."""

    SLICE = "SLICE"
    """A Slice: content slice plus has-next flag (size + 1 fetch)."""

    STREAM = "STREAM"
    """Lazily iterated rows."""

    COUNT = "COUNT"
    EXISTS = "EXISTS"
    DELETE = "DELETE"


# ========================================
# Locking
# ========================================

class LockMode(str, Enum):
    """Row lock requested for a read."""

    NONE = "NONE"
    OPTIMISTIC = "OPTIMISTIC"
    """Relies on the entity version column; no lock clause is rendered."""

    PESSIMISTIC_READ = "PESSIMISTIC_READ"
    """Shared row lock (FOR SHARE on dialects that support it)."""

    PESSIMISTIC_WRITE = "PESSIMISTIC_WRITE"
    """Exclusive row lock (FOR UPDATE) held until the unit-of-work ends."""


# ========================================
# Example Matching
# ========================================

class StringMatcher(str, Enum):
    """How string probe values are compared in query-by-example."""

    EXACT = "EXACT"
    STARTING = "STARTING"
    ENDING = "ENDING"
    CONTAINING = "CONTAINING"


# ========================================
# Auditing
# ========================================

AUDIT_CREATED_AT = "created_at"
AUDIT_UPDATED_AT = "updated_at"
AUDIT_CREATED_BY = "created_by"
AUDIT_LAST_MODIFIED_BY = "last_modified_by"
