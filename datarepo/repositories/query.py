"""
Query descriptors, statement building and execution.

A QueryDescriptor says *what* to fetch (criteria, sort, result shape,
limit, distinct, projection, lock, fetch joins). build_select() turns it
into a SQLAlchemy Select plus the un-ordered base used for COUNT/EXISTS,
and QueryExecutor runs the result in the requested shape against one
session (unit-of-work).
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from sqlalchemy import Select, func, inspect, select
from sqlalchemy.exc import IntegrityError, MultipleResultsFound, SQLAlchemyError
from sqlalchemy.orm import Session, joinedload
from sqlalchemy.orm.exc import StaleDataError

from datarepo.core.constants import LockMode, ResultShape
from datarepo.core.exceptions import (
    ConstraintViolation,
    DuplicateEntity,
    IncorrectResultSize,
    InvalidQueryError,
    OptimisticLockError,
    RepositoryError,
    RepositoryException,
)
from datarepo.repositories.paging import Page, PageRequest, Slice, Sort, resolve_total
from datarepo.repositories.projections import ProjectionPlan, plan_projection, to_projection
from datarepo.repositories.specification import Example, QueryRoot, Specification, as_specification

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueryDescriptor:
    """
    Declarative description of a read.

    Usage:
        QueryDescriptor(
            criteria=Specification(lambda root: root.get("age") > 10),
            sort=Sort.by("username"),
            shape=ResultShape.PAGE,
        )
    """

    criteria: Optional[Any] = None
    sort: Sort = field(default_factory=Sort.unsorted)
    shape: ResultShape = ResultShape.LIST
    limit: Optional[int] = None
    distinct: bool = False
    projection: Optional[type] = None
    lock: LockMode = LockMode.NONE
    read_only: bool = False
    fetch: Tuple[str, ...] = ()

    def __post_init__(self):
        if self.criteria is not None and not isinstance(self.criteria, (Specification, Example)):
            raise TypeError(f"Unsupported criteria type: {type(self.criteria).__name__}")
        if self.limit is not None and self.limit < 1:
            raise InvalidQueryError(f"Limit must be positive, got {self.limit}")


@dataclass(frozen=True)
class BuiltQuery:
    """A ready-to-run statement, its count base and its row converter."""

    statement: Select
    count_base: Select
    plan: ProjectionPlan
    collection_fetch: bool = False

    @property
    def selects_entity(self) -> bool:
        return self.plan.selects_entity

    def count_statement(self) -> Select:
        return select(func.count()).select_from(self.count_base.subquery())


def order_clauses(root: QueryRoot, sort: Sort) -> List[Any]:
    clauses = []
    for order in sort:
        column = root.get(order.property, outer=True)
        if order.ignore_case:
            column = func.lower(column)
        clauses.append(column.asc() if order.is_ascending else column.desc())
    return clauses


def apply_lock(stmt: Select, lock: LockMode) -> Select:
    if lock is LockMode.PESSIMISTIC_WRITE:
        return stmt.with_for_update()
    if lock is LockMode.PESSIMISTIC_READ:
        return stmt.with_for_update(read=True)
    return stmt


def build_select(
    model: type,
    predicate: Optional[Callable[[QueryRoot], Any]] = None,
    *,
    sort: Optional[Sort] = None,
    distinct: bool = False,
    projection: Optional[type] = None,
    lock: LockMode = LockMode.NONE,
    fetch: Tuple[str, ...] = (),
) -> BuiltQuery:
    """Compile predicate/sort/projection over ``model`` into a BuiltQuery."""
    root = QueryRoot(model)
    plan = plan_projection(model, projection)

    where = predicate(root) if predicate is not None else None
    ordering = order_clauses(root, sort) if sort else []

    stmt = root.apply_joins(plan.select())
    if where is not None:
        stmt = stmt.where(where)
    if distinct:
        stmt = stmt.distinct()
    count_base = stmt

    loads = tuple(dict.fromkeys(plan.fetch + tuple(fetch)))
    collection_fetch = False
    if loads:
        if not plan.selects_entity:
            raise InvalidQueryError("Fetch joins require an entity result")
        relationships = inspect(model).relationships
        unknown = [name for name in loads if name not in relationships]
        if unknown:
            raise InvalidQueryError(f"Cannot fetch {unknown}: not relationships of {model.__name__}")
        stmt = stmt.options(*(joinedload(getattr(model, name)) for name in loads))
        collection_fetch = any(relationships[name].uselist for name in loads)
    if ordering:
        stmt = stmt.order_by(*ordering)
    stmt = apply_lock(stmt, lock)
    return BuiltQuery(stmt, count_base, plan, collection_fetch)


def build_descriptor(model: type, descriptor: QueryDescriptor, projection: Optional[type] = None,
                     sort: Optional[Sort] = None) -> BuiltQuery:
    spec = as_specification(descriptor.criteria)
    effective_sort = descriptor.sort.and_(sort) if sort else descriptor.sort
    return build_select(
        model,
        spec.to_predicate if spec is not None else None,
        sort=effective_sort,
        distinct=descriptor.distinct,
        projection=projection or descriptor.projection,
        lock=descriptor.lock,
        fetch=descriptor.fetch,
    )


@contextmanager
def translated(action: str) -> Iterator[None]:
    """Translate SQLAlchemy failures into the repository exception family."""
    try:
        yield
    except RepositoryException:
        raise
    except IntegrityError as e:
        pgcode = getattr(e.orig, "pgcode", None) or getattr(e.orig, "sqlstate", None)
        if pgcode == "23505" or "unique" in str(e).lower():
            logger.warning(f"Duplicate entity detected while trying to {action}: {e.orig}")
            raise DuplicateEntity(f"Failed to {action}: duplicate value ({e.orig})") from e
        logger.error(f"Integrity error while trying to {action}: {e.orig}")
        raise ConstraintViolation(f"Failed to {action}: constraint violated ({e.orig})") from e
    except StaleDataError as e:
        logger.warning(f"Optimistic lock failure while trying to {action}: {e}")
        raise OptimisticLockError(f"Failed to {action}: row was modified concurrently") from e
    except MultipleResultsFound as e:
        raise IncorrectResultSize(1, 2, f"Failed to {action}: {e}") from e
    except SQLAlchemyError as e:
        logger.error(f"Error while trying to {action}: {e}")
        raise RepositoryError(f"Failed to {action}: {e}") from e


class QueryExecutor:
    """Runs built statements in a result shape against one session."""

    def __init__(self, session: Session):
        self.session = session

    def run(
        self,
        built: BuiltQuery,
        shape: ResultShape,
        *,
        params: Optional[Dict[str, Any]] = None,
        pageable: Optional[PageRequest] = None,
        limit: Optional[int] = None,
        read_only: bool = False,
    ) -> Any:
        params = params or {}
        logger.debug(f"Executing {shape.value} query with params {params}")

        with translated(f"execute {shape.value.lower()} query"):
            if shape is ResultShape.COUNT:
                return self.session.scalar(built.count_statement(), params)
            if shape is ResultShape.EXISTS:
                return bool(self.session.scalar(select(built.count_base.exists()), params))
            if shape is ResultShape.DELETE:
                return self._delete(built, params)
            if shape in (ResultShape.PAGE, ResultShape.SLICE) and pageable is None:
                raise InvalidQueryError(f"A {shape.value.lower()} query requires a PageRequest")

            if shape is ResultShape.STREAM:
                return self._stream(built, params, limit, read_only)

            stmt = built.statement
            if shape is ResultShape.SLICE:
                stmt = _window(stmt, pageable, limit, extra=1)
            elif pageable is not None:
                stmt = _window(stmt, pageable, limit)
            elif limit is not None:
                stmt = stmt.limit(limit)

            items = self._fetch(stmt, params, built, read_only)

            if shape is ResultShape.ONE:
                return _single(items)
            if shape is ResultShape.SLICE:
                has_next = len(items) > pageable.size
                return Slice(items[:pageable.size], pageable, has_next)
            if shape is ResultShape.PAGE:
                total = resolve_total(
                    pageable, len(items),
                    lambda: self.session.scalar(built.count_statement(), params),
                )
                return Page(items, pageable, total)
            return items

    def _fetch(self, stmt: Select, params: Dict[str, Any], built: BuiltQuery, read_only: bool) -> List[Any]:
        result = self.session.execute(stmt, params)
        if built.selects_entity:
            # joined eager loads of collections repeat the parent row
            rows = result.unique().scalars().all()
            if read_only:
                for entity in rows:
                    self.session.expunge(entity)
        else:
            rows = result.mappings().all()
        convert = built.plan.converter
        return [convert(row) for row in rows]

    def _stream(self, built: BuiltQuery, params: Dict[str, Any], limit: Optional[int], read_only: bool) -> Iterator[Any]:
        stmt = built.statement if limit is None else built.statement.limit(limit)
        # de-duplicating collection eager loads needs the whole result, so no yield_per
        if not built.collection_fetch:
            stmt = stmt.execution_options(yield_per=100)
        convert = built.plan.converter
        with translated("stream query results"):
            result = self.session.execute(stmt, params)
            if not built.selects_entity:
                rows = result.mappings()
            elif built.collection_fetch:
                rows = result.unique().scalars()
            else:
                rows = result.scalars()
            for row in rows:
                if read_only and built.selects_entity:
                    self.session.expunge(row)
                yield convert(row)

    def _delete(self, built: BuiltQuery, params: Dict[str, Any]) -> int:
        if not built.selects_entity:
            raise InvalidQueryError("Derived delete queries cannot use a projection")
        entities = self.session.execute(built.statement, params).scalars().all()
        for entity in entities:
            self.session.delete(entity)
        self.session.flush()
        return len(entities)

    def run_rows(self, stmt: Any, shape: ResultShape, *, params: Optional[Dict[str, Any]] = None,
                 projection: Optional[type] = None, pageable: Optional[PageRequest] = None,
                 count: Optional[Callable[[], int]] = None, read_only: bool = False,
                 result_kind: Optional[str] = None) -> Any:
        """
        Run a hand-written statement (declared or native query).

        ``result_kind`` is "entity", "scalar" or "rows"; when omitted it is
        read off the statement's column descriptions. Paging wraps the
        statement in LIMIT/OFFSET; ``count`` supplies the page total.
        """
        params = params or {}
        kind = result_kind or result_kind_of(stmt)
        logger.debug(f"Executing declared {shape.value} query ({kind}) with params {params}")

        with translated(f"execute declared {shape.value.lower()} query"):
            if shape in (ResultShape.PAGE, ResultShape.SLICE) and pageable is None:
                raise InvalidQueryError(f"A {shape.value.lower()} query requires a PageRequest")
            if shape is ResultShape.SLICE:
                stmt = _window(stmt, pageable, None, extra=1)
            elif pageable is not None:
                stmt = _window(stmt, pageable, None)

            result = self.session.execute(stmt, params)
            if kind == "entity":
                rows = result.unique().scalars().all()
                if read_only:
                    for entity in rows:
                        self.session.expunge(entity)
            elif kind == "scalar":
                rows = result.scalars().all()
            else:
                rows = result.mappings().all()
            items = [to_projection(projection, row) for row in rows]

            if shape is ResultShape.ONE:
                return _single(items)
            if shape is ResultShape.SLICE:
                return Slice(items[:pageable.size], pageable, len(items) > pageable.size)
            if shape is ResultShape.PAGE:
                if count is None:
                    raise InvalidQueryError("A page query requires a count query")
                return Page(items, pageable, resolve_total(pageable, len(items), count))
            if shape is ResultShape.STREAM:
                return iter(items)
            return items


def result_kind_of(stmt: Any) -> str:
    """'entity' for a single mapped entity, 'scalar' for a single column, else 'rows'."""
    descriptions = getattr(stmt, "column_descriptions", None)
    if not descriptions or len(descriptions) != 1:
        return "rows"
    described = descriptions[0]
    if described.get("entity") is not None and described.get("expr") is described.get("entity"):
        return "entity"
    return "scalar"


def _window(stmt: Any, pageable: PageRequest, limit: Optional[int], extra: int = 0) -> Any:
    size = pageable.size + extra
    if limit is not None:
        # a top-N cap still applies inside a paged window
        size = max(min(size, limit - pageable.offset), 0)
    return stmt.limit(size).offset(pageable.offset)


def _single(items: List[Any]) -> Any:
    if len(items) > 1:
        logger.warning(f"Expected at most one result, got {len(items)}")
        raise IncorrectResultSize(1, len(items))
    return items[0] if items else None
