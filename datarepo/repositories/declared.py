"""
Explicitly declared queries.

``@query`` marks a repository method that *builds* a SQLAlchemy statement;
the repository executes it and maps the result shape::

    @query()
    def find_member(self, username: str, age: int):
        return select(Member).where(Member.username == username, Member.age == age)

    @query(modifying=True, clear_automatically=True)
    def bulk_age_plus(self, age: int):
        return update(Member).where(Member.age >= age).values(age=Member.age + 1)

``native_query`` declares raw SQL with ``:name`` placeholders, bound by
keyword or positionally in order of first appearance::

    find_by_native_query = native_query(
        "SELECT * FROM member WHERE username = :username",
        shape=ResultShape.ONE, entity=True,
    )
"""

import functools
import logging
import re
from typing import Any, Callable, Dict, Optional, Tuple

from sqlalchemy import func, inspect, select, text

from datarepo.core.constants import ResultShape
from datarepo.core.exceptions import InvalidQueryError
from datarepo.repositories.derived import _BoundQuery
from datarepo.repositories.paging import Page, PageRequest, Slice, Sort, resolve_total
from datarepo.repositories.query import translated

logger = logging.getLogger(__name__)

# same placeholder rule as sqlalchemy.text(): ":name", but not "::cast" or "\:"
_BIND_PARAM = re.compile(r"(?<![:\w\x5c]):(\w+)(?!:)")
_SORT_PROPERTY = re.compile(r"^\w+(\.\w+)?$")


def _execute_modifying(repository, stmt: Any, params: Dict[str, Any], flush_automatically: bool,
                       clear_automatically: bool) -> int:
    """Bulk DML: bypasses the identity map, returns affected rows."""
    if flush_automatically:
        repository.flush()
    with translated("execute bulk statement"):
        result = repository.session.execute(
            stmt, params, execution_options={"synchronize_session": False}
        )
    affected = result.rowcount
    logger.debug(f"Bulk statement affected {affected} row(s)")
    if clear_automatically:
        repository.clear()
    return affected


def _sort_declared(model: type, stmt: Any, sort: Sort) -> Any:
    """
    Append a page sort to a declared Select.

    A property is a column of ``model``, a labelled column of the statement,
    or ``relation.column`` on a relationship the statement already joins.
    """
    mapper = inspect(model)
    selected = {column.key: column for column in stmt.selected_columns}
    clauses = []
    for order in sort:
        prop = order.property
        relation, _, attribute = prop.rpartition(".")
        if relation in mapper.relationships and attribute:
            column = getattr(mapper.relationships[relation].mapper.class_, attribute, None)
        elif not relation and prop in mapper.column_attrs:
            column = getattr(model, prop)
        else:
            column = selected.get(prop)
        if column is None:
            raise InvalidQueryError(f"Cannot sort by '{prop}': not a property of {model.__name__} or of the query")
        if order.ignore_case:
            column = func.lower(column)
        clauses.append(column.asc() if order.is_ascending else column.desc())
    return stmt.order_by(*clauses)


class DeclaredQuery:
    """Descriptor wrapping a statement-building repository method."""

    def __init__(self, builder: Callable[..., Any], *, shape: ResultShape, projection: Optional[type],
                 modifying: bool, flush_automatically: bool, clear_automatically: bool, read_only: bool):
        self.builder = builder
        self.shape = shape
        self.projection = projection
        self.modifying = modifying
        self.flush_automatically = flush_automatically
        self.clear_automatically = clear_automatically
        self.read_only = read_only
        functools.update_wrapper(self, builder)

    def __call__(self, repository, *args: Any, pageable: Optional[PageRequest] = None,
                 projection: Optional[type] = None, **kwargs: Any) -> Any:
        stmt = self.builder(repository, *args, **kwargs)
        if self.modifying:
            return _execute_modifying(repository, stmt, {}, self.flush_automatically, self.clear_automatically)

        count = None
        if self.shape is ResultShape.PAGE:
            count_stmt = select(func.count()).select_from(stmt.order_by(None).subquery())
            count = lambda: repository.session.scalar(count_stmt)  # noqa: E731
        if pageable is not None and pageable.sort:
            stmt = _sort_declared(repository.model, stmt, pageable.sort)
        return repository.executor.run_rows(
            stmt,
            self.shape,
            projection=projection or self.projection,
            pageable=pageable,
            count=count,
            read_only=self.read_only,
        )

    def __get__(self, instance, owner=None):
        if instance is None:
            return self
        return _BoundQuery(self, instance)


def query(*, shape: ResultShape = ResultShape.LIST, projection: Optional[type] = None,
          modifying: bool = False, flush_automatically: bool = False,
          clear_automatically: bool = False, read_only: bool = False) -> Callable[[Callable[..., Any]], DeclaredQuery]:
    """
    Declare a repository method whose return value is the statement to run.

    Args:
        shape: result shape (LIST, ONE, PAGE, SLICE, STREAM)
        projection: DTO or interface projection applied to each row
        modifying: the statement is bulk DML; the call returns the affected row count
        flush_automatically: flush pending changes before a modifying statement
        clear_automatically: clear the unit-of-work after a modifying statement
        read_only: detach entity results from the unit-of-work
    """
    def decorator(builder: Callable[..., Any]) -> DeclaredQuery:
        return DeclaredQuery(
            builder,
            shape=shape,
            projection=projection,
            modifying=modifying,
            flush_automatically=flush_automatically,
            clear_automatically=clear_automatically,
            read_only=read_only,
        )
    return decorator


class NativeQuery:
    """Descriptor for a raw SQL query."""

    def __init__(self, sql: str, *, shape: ResultShape, entity: bool, projection: Optional[type],
                 count_sql: Optional[str], modifying: bool, clear_automatically: bool):
        self.sql = sql.strip().rstrip(";")
        self.shape = shape
        self.entity = entity
        self.projection = projection
        self.count_sql = count_sql
        self.modifying = modifying
        self.clear_automatically = clear_automatically
        self.param_names: Tuple[str, ...] = tuple(dict.fromkeys(_BIND_PARAM.findall(self.sql)))
        self.name: Optional[str] = None
        if entity and projection is not None:
            raise InvalidQueryError("A native query maps to either the entity or a projection, not both")

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = name

    def bind_arguments(self, args: Tuple[Any, ...], kwargs: Dict[str, Any]) -> Dict[str, Any]:
        if len(args) > len(self.param_names):
            raise TypeError(f"{self.name}() takes {len(self.param_names)} argument(s) ({len(args)} given)")
        params = dict(zip(self.param_names, args))
        for key, value in kwargs.items():
            if key not in self.param_names:
                raise TypeError(f"{self.name}() got an unexpected keyword argument '{key}'")
            if key in params:
                raise TypeError(f"{self.name}() got multiple values for argument '{key}'")
            params[key] = value
        missing = [n for n in self.param_names if n not in params]
        if missing:
            raise TypeError(f"{self.name}() missing argument(s): {', '.join(missing)}")
        return params

    def _ordered_sql(self, repository, pageable: Optional[PageRequest]) -> str:
        if pageable is None or not pageable.sort:
            return self.sql
        preparer = repository.session.get_bind().dialect.identifier_preparer
        items = []
        for order in pageable.sort:
            if not _SORT_PROPERTY.match(order.property):
                raise InvalidQueryError(f"Invalid sort property for native query: {order.property!r}")
            quoted = ".".join(preparer.quote(part) for part in order.property.split("."))
            items.append(f"{quoted} {order.direction.value}")
        return f"{self.sql} ORDER BY {', '.join(items)}"

    def _statement(self, sql: str, repository):
        clause = text(sql)
        if self.entity:
            return select(repository.model).from_statement(clause)
        return clause

    def __call__(self, repository, *args: Any, pageable: Optional[PageRequest] = None, **kwargs: Any) -> Any:
        params = self.bind_arguments(args, kwargs)
        if self.modifying:
            return _execute_modifying(repository, text(self.sql), params, False, self.clear_automatically)

        kind = "entity" if self.entity else "rows"
        sql = self._ordered_sql(repository, pageable)
        if self.shape in (ResultShape.PAGE, ResultShape.SLICE) and pageable is None:
            raise InvalidQueryError(f"{self.name}() requires a PageRequest")

        if pageable is None:
            return repository.executor.run_rows(
                self._statement(sql, repository), self.shape, params=params,
                projection=self.projection, result_kind=kind,
            )

        extra = 1 if self.shape is ResultShape.SLICE else 0
        windowed = f"{sql} LIMIT :native_limit OFFSET :native_offset"
        window_params = dict(params, native_limit=pageable.size + extra, native_offset=pageable.offset)
        items = repository.executor.run_rows(
            self._statement(windowed, repository), ResultShape.LIST, params=window_params,
            projection=self.projection, result_kind=kind,
        )
        if self.shape is ResultShape.SLICE:
            return Slice(items[:pageable.size], pageable, len(items) > pageable.size)
        if self.shape is ResultShape.PAGE:
            return Page(items, pageable, resolve_total(pageable, len(items), lambda: self._count(repository, params)))
        return items

    def _count(self, repository, params: Dict[str, Any]) -> int:
        count_sql = self.count_sql or f"SELECT count(*) FROM ({self.sql}) AS native_count"
        with translated("execute native count query"):
            return repository.session.scalar(text(count_sql), params)

    def __get__(self, instance, owner=None):
        if instance is None:
            return self
        return _BoundQuery(self, instance)


def native_query(sql: str, *, shape: ResultShape = ResultShape.LIST, entity: bool = False,
                 projection: Optional[type] = None, count_sql: Optional[str] = None,
                 modifying: bool = False, clear_automatically: bool = False) -> NativeQuery:
    """
    Declare a raw SQL query on a repository class.

    Args:
        sql: statement with ``:name`` placeholders
        shape: result shape (LIST, ONE, PAGE, SLICE)
        entity: map rows onto the repository's entity
        projection: DTO or interface projection applied to each row
        count_sql: count query for PAGE results (default wraps ``sql``)
        modifying: the statement is DML; the call returns the affected row count
        clear_automatically: clear the unit-of-work after a modifying statement
    """
    return NativeQuery(sql, shape=shape, entity=entity, projection=projection, count_sql=count_sql,
                       modifying=modifying, clear_automatically=clear_automatically)
