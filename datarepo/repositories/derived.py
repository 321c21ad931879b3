"""
Derived queries: repository methods whose query is read off their name.

Declare them on a repository class; when the class is created the name is
parsed and every property path is resolved against the repository's model,
so a typo fails at import time rather than on first call::

    class MemberRepository(BaseRepository[Member]):
        model = Member

        find_by_username_and_age_greater_than = derived_query()
        find_top3_by = derived_query()
        find_page_by_age = derived_query()
        count_by_team_name = derived_query()

Grammar (snake_case)::

    <verb>[_<modifier>...]_by[_<predicate>((_and_|_or_)<predicate>)...][_order_by_<path>[_asc|_desc](_and_...)]

``_and_`` binds tighter than ``_or_``. Arguments bind positionally, in
predicate order; ``between`` takes two. ``pageable``, ``sort`` and
``projection`` are keyword-only extras on every derived query.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Tuple

from sqlalchemy import bindparam, func, inspect
from sqlalchemy import and_, or_

from datarepo.core.constants import Direction, LockMode, ResultShape
from datarepo.core.exceptions import InvalidQueryError
from datarepo.repositories.paging import Order, PageRequest, Sort
from datarepo.repositories.query import BuiltQuery, build_select
from datarepo.repositories.specification import LIKE_ESCAPE, QueryRoot, escape_like

logger = logging.getLogger(__name__)


# ========================================
# Vocabulary
# ========================================

VERBS: Dict[str, ResultShape] = {
    "find": ResultShape.LIST,
    "read": ResultShape.LIST,
    "get": ResultShape.LIST,
    "query": ResultShape.LIST,
    "search": ResultShape.LIST,
    "stream": ResultShape.STREAM,
    "count": ResultShape.COUNT,
    "exists": ResultShape.EXISTS,
    "delete": ResultShape.DELETE,
    "remove": ResultShape.DELETE,
}

SHAPE_MODIFIERS: Dict[str, ResultShape] = {
    "list": ResultShape.LIST,
    "one": ResultShape.ONE,
    "page": ResultShape.PAGE,
    "slice": ResultShape.SLICE,
}

_LIMITING = re.compile(r"^(first|top)(\d*)$")


@dataclass(frozen=True)
class Operator:
    name: str
    arity: int
    keywords: Tuple[str, ...]


# longest keywords are tried first, so "greater_than_equal" wins over "greater_than"
OPERATORS: Tuple[Operator, ...] = (
    Operator("IS_NOT_NULL", 0, ("is_not_null", "not_null")),
    Operator("IS_NULL", 0, ("is_null", "null")),
    Operator("GREATER_THAN_EQUAL", 1, ("greater_than_equal",)),
    Operator("GREATER_THAN", 1, ("greater_than", "after")),
    Operator("LESS_THAN_EQUAL", 1, ("less_than_equal",)),
    Operator("LESS_THAN", 1, ("less_than", "before")),
    Operator("BETWEEN", 2, ("between",)),
    Operator("NOT_IN", 1, ("not_in",)),
    Operator("IN", 1, ("in",)),
    Operator("NOT_LIKE", 1, ("not_like",)),
    Operator("LIKE", 1, ("like",)),
    Operator("STARTING_WITH", 1, ("starting_with",)),
    Operator("ENDING_WITH", 1, ("ending_with",)),
    Operator("NOT_CONTAINING", 1, ("not_containing",)),
    Operator("CONTAINING", 1, ("containing",)),
    Operator("TRUE", 0, ("is_true", "true")),
    Operator("FALSE", 0, ("is_false", "false")),
    Operator("NOT", 1, ("is_not", "not")),
    Operator("EQUALS", 1, ("is", "equals")),
)

SIMPLE_PROPERTY = Operator("EQUALS", 1, ())

_KEYWORD_TABLE: List[Tuple[str, Operator]] = sorted(
    ((kw, op) for op in OPERATORS for kw in op.keywords),
    key=lambda item: len(item[0]),
    reverse=True,
)

_IGNORE_CASE_SUFFIXES = ("_ignore_case", "_ignoring_case")

_LIKE_PATTERNS = {
    "STARTING_WITH": "{}%",
    "ENDING_WITH": "%{}",
    "CONTAINING": "%{}%",
    "NOT_CONTAINING": "%{}%",
}


# ========================================
# Parse Tree
# ========================================

@dataclass(frozen=True)
class Part:
    """One predicate: property path (snake or resolved dotted), operator, case mode."""

    path: str
    operator: Operator
    ignore_case: bool = False

    @property
    def arity(self) -> int:
        return self.operator.arity


@dataclass(frozen=True)
class PartTree:
    """Parsed form of a derived method name."""

    method_name: str
    shape: ResultShape
    distinct: bool
    limit: Optional[int]
    lock: LockMode
    read_only: bool
    groups: Tuple[Tuple[Part, ...], ...]
    orders: Tuple[Order, ...]

    @property
    def parts(self) -> Tuple[Part, ...]:
        return tuple(part for group in self.groups for part in group)

    @property
    def arity(self) -> int:
        return sum(part.arity for part in self.parts)


def parse_method_name(name: str) -> PartTree:
    """Parse a derived method name; raise InvalidQueryError on any unknown token."""
    if "_by_" in name:
        subject, remainder = name.split("_by_", 1)
    elif name.endswith("_by"):
        subject, remainder = name[:-len("_by")], ""
    else:
        raise InvalidQueryError(f"'{name}' is not a derived query name: missing '_by'")

    shape, distinct, limit, lock, read_only = _parse_subject(name, subject)

    order_text = ""
    if remainder.startswith("order_by_"):
        remainder, order_text = "", remainder[len("order_by_"):]
    elif "_order_by_" in remainder:
        remainder, order_text = remainder.split("_order_by_", 1)

    groups = tuple(
        tuple(_parse_part(name, text) for text in group.split("_and_"))
        for group in remainder.split("_or_")
    ) if remainder else ()

    return PartTree(name, shape, distinct, limit, lock, read_only, groups, _parse_orders(name, order_text))


def _parse_subject(name: str, subject: str):
    tokens = subject.split("_")
    verb = tokens[0]
    if verb not in VERBS:
        raise InvalidQueryError(
            f"'{name}': unknown query verb '{verb}', expected one of {sorted(VERBS)}"
        )
    shape = VERBS[verb]
    distinct, limit, lock, read_only = False, None, LockMode.NONE, False
    explicit_shape: Optional[ResultShape] = None
    single_result = False

    i = 1
    while i < len(tokens):
        token = tokens[i]
        nxt = tokens[i + 1] if i + 1 < len(tokens) else None
        limiting = _LIMITING.match(token)
        if token == "distinct":
            distinct = True
        elif token == "all":
            pass
        elif limiting:
            limit = int(limiting.group(2) or 1)
            if limit < 1:
                raise InvalidQueryError(f"'{name}': limit must be positive")
            single_result = not limiting.group(2)
        elif token in SHAPE_MODIFIERS:
            if explicit_shape is not None:
                raise InvalidQueryError(f"'{name}': conflicting result modifiers '{explicit_shape.value.lower()}' and '{token}'")
            explicit_shape = SHAPE_MODIFIERS[token]
        elif token == "for" and nxt == "update":
            lock = LockMode.PESSIMISTIC_WRITE
            i += 1
        elif token == "for" and nxt == "share":
            lock = LockMode.PESSIMISTIC_READ
            i += 1
        elif token == "read" and nxt == "only":
            read_only = True
            i += 1
        else:
            raise InvalidQueryError(f"'{name}': unrecognized token '{token}' in query subject")
        i += 1

    if shape in (ResultShape.COUNT, ResultShape.EXISTS, ResultShape.DELETE):
        if explicit_shape is not None or limit is not None or lock is not LockMode.NONE or read_only:
            raise InvalidQueryError(f"'{name}': {verb} queries take no result modifiers")
        return shape, distinct, None, lock, read_only

    if explicit_shape is not None:
        if shape is ResultShape.STREAM:
            raise InvalidQueryError(f"'{name}': stream queries take no result modifiers")
        shape = explicit_shape
    elif single_result and shape is ResultShape.LIST:
        shape = ResultShape.ONE
    return shape, distinct, limit, lock, read_only


def _parse_part(name: str, text: str) -> Part:
    if not text:
        raise InvalidQueryError(f"'{name}': empty predicate")
    ignore_case = False
    for suffix in _IGNORE_CASE_SUFFIXES:
        if text.endswith(suffix):
            text, ignore_case = text[:-len(suffix)], True
            break
    for keyword, operator in _KEYWORD_TABLE:
        if text == keyword:
            raise InvalidQueryError(f"'{name}': operator '{keyword}' has no property")
        if text.endswith("_" + keyword):
            return Part(text[:-len(keyword) - 1], operator, ignore_case)
    return Part(text, SIMPLE_PROPERTY, ignore_case)


def _parse_orders(name: str, text: str) -> Tuple[Order, ...]:
    if not text:
        return ()
    orders = []
    for item in text.split("_and_"):
        direction = Direction.ASC
        for suffix, value in (("_desc", Direction.DESC), ("_asc", Direction.ASC)):
            if item.endswith(suffix):
                item, direction = item[:-len(suffix)], value
                break
        if not item:
            raise InvalidQueryError(f"'{name}': empty order by property")
        orders.append(Order(item, direction))
    return tuple(orders)


def resolve_path(model: type, snake: str) -> str:
    """
    Map a snake_case property reference onto a dotted path.

    Columns win; otherwise a relationship name prefix is followed, so
    ``team_name`` on Member resolves to ``team.name``.
    """
    mapper = inspect(model)
    if snake in mapper.column_attrs:
        return snake
    for rel in mapper.relationships:
        prefix = rel.key + "_"
        if snake.startswith(prefix):
            try:
                return rel.key + "." + resolve_path(rel.mapper.class_, snake[len(prefix):])
            except InvalidQueryError:
                continue
    raise InvalidQueryError(f"No property '{snake}' found on {model.__name__}")


# ========================================
# Predicate Compilation
# ========================================

def _compile_part(column, part: Part, names: List[str], is_null: bool):
    op = part.operator.name
    lower = func.lower if part.ignore_case else (lambda x: x)

    if op == "IS_NULL":
        return column.is_(None)
    if op == "IS_NOT_NULL":
        return column.is_not(None)
    if op == "TRUE":
        return column.is_(True)
    if op == "FALSE":
        return column.is_(False)
    if op in ("EQUALS", "NOT") and is_null:
        return column.is_(None) if op == "EQUALS" else column.is_not(None)

    param = bindparam(names[0], expanding=op in ("IN", "NOT_IN"))
    if op == "EQUALS":
        return lower(column) == lower(param)
    if op == "NOT":
        return lower(column) != lower(param)
    if op == "GREATER_THAN":
        return column > param
    if op == "GREATER_THAN_EQUAL":
        return column >= param
    if op == "LESS_THAN":
        return column < param
    if op == "LESS_THAN_EQUAL":
        return column <= param
    if op == "BETWEEN":
        return column.between(param, bindparam(names[1]))
    if op == "IN":
        return column.in_(param)
    if op == "NOT_IN":
        return column.not_in(param)
    if op == "LIKE":
        return lower(column).like(lower(param))
    if op == "NOT_LIKE":
        return lower(column).not_like(lower(param))
    if op == "NOT_CONTAINING":
        return lower(column).not_like(lower(param), escape=LIKE_ESCAPE)
    if op in _LIKE_PATTERNS:
        return lower(column).like(lower(param), escape=LIKE_ESCAPE)
    raise InvalidQueryError(f"Unsupported operator {op}")


# ========================================
# Descriptor
# ========================================

class DerivedQuery:
    """
    Descriptor for a query derived from the attribute name it is bound to.

    Accessed on the class it is the descriptor itself (``.statement`` shows
    the precompiled SQL); accessed on a repository instance it is a bound
    callable.
    """

    def __init__(self, *, projection: Optional[type] = None, fetch: Tuple[str, ...] = (),
                 lock: Optional[LockMode] = None, read_only: Optional[bool] = None):
        self.projection = projection
        self.fetch = tuple(fetch)
        self._lock = lock
        self._read_only = read_only
        self.name: Optional[str] = None
        self.tree: Optional[PartTree] = None
        self.model: Optional[type] = None
        self._param_names: Tuple[Tuple[str, ...], ...] = ()
        self._orders: Tuple[Order, ...] = ()
        self._compiled: Dict[Tuple[Any, ...], BuiltQuery] = {}

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = name

    def bind(self, model: type) -> None:
        """Parse the name, resolve its property paths against ``model`` and precompile."""
        tree = parse_method_name(self.name)
        self.model = model
        resolved_groups = []
        names: List[Tuple[str, ...]] = []
        counter = 0
        for group in tree.groups:
            resolved = []
            for part in group:
                resolved.append(Part(resolve_path(model, part.path), part.operator, part.ignore_case))
                names.append(tuple(f"p{counter + k}" for k in range(part.arity)))
                counter += part.arity
            resolved_groups.append(tuple(resolved))
        self.tree = PartTree(
            tree.method_name, tree.shape, tree.distinct, tree.limit, tree.lock, tree.read_only,
            tuple(resolved_groups),
            tuple(Order(resolve_path(model, o.property), o.direction) for o in tree.orders),
        )
        self._param_names = tuple(names)
        self._orders = self.tree.orders
        self._compiled.clear()
        # compile eagerly: projection, fetch or lock problems surface at import
        self.compile()
        logger.debug(f"Derived query {model.__name__}.{self.name} bound with {self.tree.arity} parameter(s)")

    @property
    def shape(self) -> ResultShape:
        return self.tree.shape

    @property
    def lock(self) -> LockMode:
        return self._lock if self._lock is not None else self.tree.lock

    @property
    def read_only(self) -> bool:
        return self._read_only if self._read_only is not None else self.tree.read_only

    @property
    def statement(self):
        return self.compile().statement

    def compile(self, projection: Optional[type] = None, sort: Optional[Sort] = None,
                nulls: FrozenSet[int] = frozenset()) -> BuiltQuery:
        """Statement for this projection/sort/null pattern, cached after first build."""
        if self.model is None:
            raise InvalidQueryError(f"Derived query '{self.name}' is not bound to a model")
        projection = projection or self.projection
        effective = Sort(self._orders).and_(sort) if sort else Sort(self._orders)
        key = (projection, effective, nulls)
        built = self._compiled.get(key)
        if built is None:
            built = build_select(
                self.model,
                lambda root: self._criterion(root, nulls),
                sort=effective,
                distinct=self.tree.distinct,
                projection=projection,
                lock=self.lock,
                fetch=self.fetch,
            )
            self._compiled[key] = built
        return built

    def _criterion(self, root: QueryRoot, nulls: FrozenSet[int]):
        index = 0
        disjuncts = []
        for group in self.tree.groups:
            conjuncts = []
            for part in group:
                names = self._param_names[index]
                conjuncts.append(_compile_part(root.get(part.path), part, list(names), index in nulls))
                index += 1
            disjuncts.append(and_(*conjuncts) if len(conjuncts) > 1 else conjuncts[0])
        if not disjuncts:
            return None
        return or_(*disjuncts) if len(disjuncts) > 1 else disjuncts[0]

    def bind_arguments(self, args: Tuple[Any, ...]) -> Tuple[Dict[str, Any], FrozenSet[int]]:
        """Positional arguments -> bind parameter values (plus which equality args were None)."""
        expected = self.tree.arity
        if len(args) != expected:
            raise TypeError(f"{self.name}() takes {expected} argument(s) ({len(args)} given)")
        params: Dict[str, Any] = {}
        nulls = set()
        position = 0
        for index, part in enumerate(self.tree.parts):
            values = args[position:position + part.arity]
            position += part.arity
            op = part.operator.name
            if op in ("EQUALS", "NOT") and values[0] is None:
                nulls.add(index)
                continue
            for name, value in zip(self._param_names[index], values):
                if op in _LIKE_PATTERNS:
                    value = _LIKE_PATTERNS[op].format(escape_like(value))
                elif op in ("IN", "NOT_IN"):
                    value = list(value)
                params[name] = value
        return params, frozenset(nulls)

    def __call__(self, repository, *args: Any, pageable: Optional[PageRequest] = None,
                 sort: Optional[Sort] = None, projection: Optional[type] = None) -> Any:
        params, nulls = self.bind_arguments(args)
        if pageable is not None and pageable.sort:
            sort = sort.and_(pageable.sort) if sort else pageable.sort
        built = self.compile(projection, sort, nulls)
        return repository.executor.run(
            built,
            self.shape,
            params=params,
            pageable=pageable,
            limit=self.tree.limit,
            read_only=self.read_only,
        )

    def __get__(self, instance, owner=None):
        if instance is None:
            return self
        return _BoundQuery(self, instance)

    def __repr__(self) -> str:
        return f"<DerivedQuery {self.name} shape={self.shape.value if self.tree else '?'}>"


class _BoundQuery:
    """A declared query bound to a repository instance."""

    __slots__ = ("_query", "_repository")

    def __init__(self, query: Callable[..., Any], repository: Any):
        self._query = query
        self._repository = repository

    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        return self._query(self._repository, *args, **kwargs)

    def __getattr__(self, name: str) -> Any:
        return getattr(self._query, name)


def derived_query(*, projection: Optional[type] = None, fetch: Tuple[str, ...] = (),
                  lock: Optional[LockMode] = None, read_only: Optional[bool] = None) -> DerivedQuery:
    """
    Declare a derived query on a repository class.

    Args:
        projection: default projection for results (overridable per call)
        fetch: relationships to fetch-join eagerly
        lock: row lock mode (overrides a ``for_update``/``for_share`` subject)
        read_only: detach results from the unit-of-work
    """
    return DerivedQuery(projection=projection, fetch=fetch, lock=lock, read_only=read_only)
