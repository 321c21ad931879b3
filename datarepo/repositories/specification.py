"""
Typed predicate builder.

A Specification is a function from a QueryRoot to a SQLAlchemy boolean
expression (or None, meaning "no restriction"). Specifications combine with
``&``, ``|`` and ``~``; the QueryRoot resolves dotted property paths such as
``"team.name"`` and records the joins those paths need.

Example:
    def username(name):
        return Specification(lambda root: root.get("username") == name)

    def team_name(name):
        return Specification(lambda root: root.join("team").name == name)

    repo.find_all(username("m1") & team_name("teamA"))

Example (query by example):
    probe = Member("m1", team=Team("teamA"))
    matcher = ExampleMatcher.matching().with_ignore_paths("age")
    repo.find_all(Example.of(probe, matcher))
"""

from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Tuple

from sqlalchemy import Select, and_, func, inspect, not_, or_
from sqlalchemy.orm import RelationshipProperty
from sqlalchemy.sql.elements import ColumnElement

from datarepo.core.constants import StringMatcher
from datarepo.core.exceptions import InvalidQueryError

LIKE_ESCAPE = "\\"


def escape_like(value: Any) -> str:
    """Escape LIKE wildcards so ``value`` matches literally (use with ``escape=LIKE_ESCAPE``)."""
    return str(value).replace(LIKE_ESCAPE, LIKE_ESCAPE * 2).replace("%", LIKE_ESCAPE + "%").replace("_", LIKE_ESCAPE + "_")


class QueryRoot:
    """Root entity of a query plus the joins its predicates require."""

    def __init__(self, model: type):
        self.model = model
        self._joins: Dict[Tuple[str, ...], Tuple[type, bool]] = {}

    def join(self, path: str, outer: bool = False) -> type:
        """Join along a dotted relationship path and return the target entity."""
        current = self.model
        walked: Tuple[str, ...] = ()
        for name in path.split("."):
            prop = _relationship(current, name)
            if prop is None:
                raise InvalidQueryError(f"'{name}' is not a relationship of {current.__name__}")
            walked += (name,)
            target = prop.mapper.class_
            if walked not in self._joins:
                self._joins[walked] = (target, outer)
            current = target
        return current

    def get(self, path: str, outer: bool = False):
        """Resolve a dotted property path to a column attribute, joining as needed."""
        *relations, attribute = path.split(".")
        owner = self.join(".".join(relations), outer) if relations else self.model
        if attribute not in inspect(owner).column_attrs:
            raise InvalidQueryError(f"No property '{attribute}' found on {owner.__name__}")
        return getattr(owner, attribute)

    @property
    def has_joins(self) -> bool:
        return bool(self._joins)

    def apply_joins(self, stmt: Select) -> Select:
        for walked, (_, outer) in self._joins.items():
            owner = self.model
            for name in walked[:-1]:
                owner = _relationship(owner, name).mapper.class_
            stmt = stmt.join(getattr(owner, walked[-1]), isouter=outer)
        return stmt


def _relationship(model: type, name: str) -> Optional[RelationshipProperty]:
    return inspect(model).relationships.get(name)


class Specification:
    """Composable predicate over a QueryRoot."""

    def __init__(self, predicate: Callable[[QueryRoot], Optional[ColumnElement]]):
        self._predicate = predicate

    @classmethod
    def where(cls, spec: Optional["Specification"]) -> "Specification":
        """Null-safe entry point: ``where(None)`` matches everything."""
        return spec if spec is not None else cls(lambda root: None)

    def to_predicate(self, root: QueryRoot) -> Optional[ColumnElement]:
        return self._predicate(root)

    def __and__(self, other: Optional["Specification"]) -> "Specification":
        if other is None:
            return self
        return Specification(lambda root: _combine(and_, self.to_predicate(root), other.to_predicate(root)))

    def __or__(self, other: Optional["Specification"]) -> "Specification":
        if other is None:
            return self
        return Specification(lambda root: _combine(or_, self.to_predicate(root), other.to_predicate(root)))

    def __invert__(self) -> "Specification":
        def negated(root: QueryRoot):
            predicate = self.to_predicate(root)
            return None if predicate is None else not_(predicate)
        return Specification(negated)

    # aliases for readers used to method chaining
    and_ = __and__
    or_ = __or__

    @classmethod
    def not_(cls, spec: "Specification") -> "Specification":
        return ~spec


def _combine(op, left, right):
    if left is None:
        return right
    if right is None:
        return left
    return op(left, right)


# ========================================
# Query by Example
# ========================================

@dataclass(frozen=True)
class ExampleMatcher:
    """
    How a probe's non-null fields turn into predicates.

    Immutable: every ``with_*`` call returns a new matcher.
    """

    match_any: bool = False
    ignored_paths: FrozenSet[str] = frozenset()
    string_matcher: StringMatcher = StringMatcher.EXACT
    ignore_case: bool = False
    include_nulls: bool = False

    @classmethod
    def matching(cls) -> "ExampleMatcher":
        return cls()

    @classmethod
    def matching_all(cls) -> "ExampleMatcher":
        return cls()

    @classmethod
    def matching_any(cls) -> "ExampleMatcher":
        return cls(match_any=True)

    def with_ignore_paths(self, *paths: str) -> "ExampleMatcher":
        return replace(self, ignored_paths=self.ignored_paths | frozenset(paths))

    def with_string_matcher(self, matcher: StringMatcher) -> "ExampleMatcher":
        return replace(self, string_matcher=matcher)

    def with_ignore_case(self, ignore_case: bool = True) -> "ExampleMatcher":
        return replace(self, ignore_case=ignore_case)

    def with_include_nulls(self) -> "ExampleMatcher":
        return replace(self, include_nulls=True)

    def is_ignored(self, path: str) -> bool:
        return path in self.ignored_paths


@dataclass(frozen=True)
class Example:
    """A probe entity together with its matcher."""

    probe: Any
    matcher: ExampleMatcher = field(default_factory=ExampleMatcher.matching)

    @classmethod
    def of(cls, probe: Any, matcher: Optional[ExampleMatcher] = None) -> "Example":
        return cls(probe, matcher or ExampleMatcher.matching())

    @property
    def probe_type(self) -> type:
        return type(self.probe)

    def to_specification(self) -> Specification:
        return Specification(self._predicate)

    def _predicate(self, root: QueryRoot) -> Optional[ColumnElement]:
        predicates: List[ColumnElement] = []
        self._collect(root, self.probe, "", predicates, set())
        if not predicates:
            return None
        if self.matcher.match_any:
            return or_(*predicates)
        return and_(*predicates)

    def _collect(self, root: QueryRoot, probe: Any, prefix: str, out: List[ColumnElement], seen: set) -> None:
        if id(probe) in seen:
            return
        seen.add(id(probe))
        mapper = inspect(type(probe))
        # only attributes the probe actually holds; never triggers loading
        state = probe.__dict__

        for attr in mapper.column_attrs:
            path = prefix + attr.key
            if self.matcher.is_ignored(path) or _is_managed_column(mapper, attr):
                continue
            value = state.get(attr.key)
            if value is None:
                if self.matcher.include_nulls and attr.key in state:
                    out.append(root.get(path).is_(None))
                continue
            out.append(self._match(root.get(path), value))

        for rel in mapper.relationships:
            path = prefix + rel.key
            if rel.uselist or self.matcher.is_ignored(path):
                continue
            related = state.get(rel.key)
            if related is None:
                continue
            self._collect(root, related, path + ".", out, seen)

    def _match(self, column, value) -> ColumnElement:
        if not isinstance(value, str):
            return column == value
        matcher = self.matcher.string_matcher
        pattern = {
            StringMatcher.EXACT: "{}",
            StringMatcher.STARTING: "{}%",
            StringMatcher.ENDING: "%{}",
            StringMatcher.CONTAINING: "%{}%",
        }[matcher].format(escape_like(value))
        if self.matcher.ignore_case:
            if matcher is StringMatcher.EXACT:
                return func.lower(column) == value.lower()
            return column.ilike(pattern, escape=LIKE_ESCAPE)
        if matcher is StringMatcher.EXACT:
            return column == value
        return column.like(pattern, escape=LIKE_ESCAPE)


def _is_managed_column(mapper, attr) -> bool:
    """Foreign keys and the version counter are never probed; relationships cover the former."""
    columns = attr.columns
    if any(c.foreign_keys for c in columns):
        return True
    version_col = mapper.version_id_col
    return version_col is not None and any(c is version_col for c in columns)


def as_specification(criteria: Any) -> Optional[Specification]:
    """Normalise a Specification, an Example, or None."""
    if criteria is None or isinstance(criteria, Specification):
        return criteria
    if isinstance(criteria, Example):
        return criteria.to_specification()
    raise TypeError(f"Unsupported criteria type: {type(criteria).__name__}")
