"""
Generic repository base class.

BaseRepository[T] gives every concrete repository identity lookups,
criteria queries (specifications, examples, descriptors), paging, writes
through the unit-of-work with save hooks, bulk statements and explicit
relationship loading.
"""

import logging
from typing import Any, Dict, Generic, Iterable, List, Optional, Sequence, TypeVar, Union

from sqlalchemy import delete, exists, inspect, select, update
from sqlalchemy.orm import Session, with_parent
from sqlalchemy.orm.attributes import set_committed_value

from datarepo.core.constants import ResultShape
from datarepo.core.exceptions import EntityNotFound, InvalidQueryError
from datarepo.models import Base
from datarepo.repositories.auditing import AuditingHook, EntityHook
from datarepo.repositories.derived import DerivedQuery
from datarepo.repositories.paging import Page, PageRequest, Slice, Sort
from datarepo.repositories.query import QueryDescriptor, QueryExecutor, build_descriptor, translated
from datarepo.repositories.specification import Example, QueryRoot, Specification, as_specification

logger = logging.getLogger(__name__)

# Type variable for model classes
T = TypeVar("T", bound=Base)

Criteria = Union[Specification, Example, QueryDescriptor, None]


class BaseRepository(Generic[T]):
    """
    Typed repository over one entity type, bound to one unit-of-work.

    Subclasses set ``model`` and may declare derived, declared and native
    queries as class attributes; derived query names are parsed and
    checked when the subclass is created.

    Usage:
        class TeamRepository(BaseRepository[Team]):
            model = Team

        with get_db_context() as db:
            repo = TeamRepository(db)
            repo.save(Team("teamA"))
    """

    model: type = None

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        if cls.model is None:
            return
        for attr in vars(cls).values():
            if isinstance(attr, DerivedQuery):
                attr.bind(cls.model)

    def __init__(self, session: Session, hooks: Optional[Sequence[EntityHook]] = None) -> None:
        if self.model is None:
            raise ValueError(f"{self.__class__.__name__} does not declare a model")
        if session is None:
            raise ValueError("Session cannot be None")

        self.session: Session = session
        self.executor = QueryExecutor(session)
        self.hooks: List[EntityHook] = list(hooks) if hooks is not None else [AuditingHook()]
        logger.debug(f"Initialized {self.__class__.__name__} for model {self.model.__name__}")

    # ========================================
    # Lookup by identity
    # ========================================

    @property
    def _id_attribute(self):
        mapper = inspect(self.model)
        return getattr(self.model, mapper.get_property_by_column(mapper.primary_key[0]).key)

    def find_by_id(self, id: Any) -> Optional[T]:
        """Entity with this primary key, served from the identity map when already loaded."""
        with translated(f"get {self.model.__name__} by id {id}"):
            return self.session.get(self.model, id)

    def get_by_id(self, id: Any) -> T:
        entity = self.find_by_id(id)
        if entity is None:
            raise EntityNotFound(f"{self.model.__name__} with id {id} not found")
        return entity

    def exists_by_id(self, id: Any) -> bool:
        with translated(f"check {self.model.__name__} id {id}"):
            return bool(self.session.scalar(select(exists().where(self._id_attribute == id))))

    def find_all_by_id(self, ids: Iterable[Any]) -> List[T]:
        ids = list(ids)
        if not ids:
            return []
        with translated(f"list {self.model.__name__} by ids"):
            return list(self.session.scalars(select(self.model).where(self._id_attribute.in_(ids))))

    # ========================================
    # Criteria queries
    # ========================================

    def _descriptor(self, criteria: Criteria) -> QueryDescriptor:
        if isinstance(criteria, QueryDescriptor):
            return criteria
        return QueryDescriptor(criteria=criteria)

    def execute(self, descriptor: QueryDescriptor, *, pageable: Optional[PageRequest] = None,
                projection: Optional[type] = None) -> Any:
        """Run a QueryDescriptor in its own result shape."""
        sort = pageable.sort if pageable is not None and pageable.sort else None
        built = build_descriptor(self.model, descriptor, projection, sort)
        return self.executor.run(
            built,
            descriptor.shape,
            pageable=pageable,
            limit=descriptor.limit,
            read_only=descriptor.read_only,
        )

    def find_all(self, criteria: Criteria = None, *, sort: Optional[Sort] = None,
                 pageable: Optional[PageRequest] = None, projection: Optional[type] = None) -> Union[List[Any], Page]:
        """
        All entities matching ``criteria``.

        Returns a list, or a Page when ``pageable`` is given. ``sort`` is
        applied before the page's own sort.
        """
        descriptor = self._descriptor(criteria)
        effective = sort
        if pageable is not None and pageable.sort:
            effective = sort.and_(pageable.sort) if sort else pageable.sort
        built = build_descriptor(self.model, descriptor, projection, effective)
        shape = ResultShape.PAGE if pageable is not None else ResultShape.LIST
        return self.executor.run(
            built, shape, pageable=pageable, limit=descriptor.limit, read_only=descriptor.read_only,
        )

    def find_slice(self, criteria: Criteria, pageable: PageRequest, *,
                   projection: Optional[type] = None) -> Slice:
        descriptor = self._descriptor(criteria)
        built = build_descriptor(self.model, descriptor, projection, pageable.sort or None)
        return self.executor.run(
            built, ResultShape.SLICE, pageable=pageable, limit=descriptor.limit, read_only=descriptor.read_only,
        )

    def find_one(self, criteria: Criteria, *, projection: Optional[type] = None) -> Optional[Any]:
        """The single match, None when nothing matches; IncorrectResultSize on more."""
        descriptor = self._descriptor(criteria)
        built = build_descriptor(self.model, descriptor, projection)
        return self.executor.run(built, ResultShape.ONE, read_only=descriptor.read_only)

    def count(self, criteria: Criteria = None) -> int:
        built = build_descriptor(self.model, self._descriptor(criteria))
        return self.executor.run(built, ResultShape.COUNT)

    def exists(self, criteria: Criteria = None) -> bool:
        built = build_descriptor(self.model, self._descriptor(criteria))
        return self.executor.run(built, ResultShape.EXISTS)

    # ========================================
    # Writes
    # ========================================

    def save(self, entity: T) -> T:
        """
        Insert a new entity or flush changes to a managed one.

        Detached entities are merged; the managed copy is returned. Hooks
        run only for new entities and for entities with pending changes.
        """
        state = inspect(entity)
        name = type(entity).__name__
        with translated(f"save {name}"):
            if state.transient or state.pending:
                self._run_hooks("pre_save", entity, True)
                self.session.add(entity)
                self.session.flush()
                self._run_hooks("post_save", entity, True)
                logger.debug(f"Inserted {name} with id {inspect(entity).identity}")
                return entity

            if state.detached:
                entity = self.session.merge(entity)
            changed = self.session.is_modified(entity)
            if changed:
                self._run_hooks("pre_save", entity, False)
            self.session.flush()
            if changed:
                self._run_hooks("post_save", entity, False)
            return entity

    def save_all(self, entities: Iterable[T]) -> List[T]:
        return [self.save(entity) for entity in entities]

    def _run_hooks(self, phase: str, entity: Any, is_new: bool) -> None:
        for hook in self.hooks:
            getattr(hook, phase)(entity, is_new)

    def delete(self, entity: T) -> None:
        with translated(f"delete {type(entity).__name__}"):
            if inspect(entity).detached:
                entity = self.session.merge(entity)
            self.session.delete(entity)
            self.session.flush()

    def delete_by_id(self, id: Any) -> bool:
        """Delete by primary key; False when no such entity exists."""
        entity = self.find_by_id(id)
        if entity is None:
            logger.debug(f"{self.model.__name__} with id {id} not found for deletion")
            return False
        self.delete(entity)
        return True

    def delete_all(self, entities: Optional[Iterable[T]] = None) -> int:
        """Delete the given entities (default: every row) one by one through the unit-of-work."""
        if entities is None:
            entities = self.find_all()
        entities = list(entities)
        with translated(f"delete {self.model.__name__} entities"):
            for entity in entities:
                self.session.delete(entity)
            self.session.flush()
        return len(entities)

    def delete_all_in_batch(self, criteria: Union[Specification, Example, None] = None) -> int:
        """Single DELETE statement; bypasses the identity map. Returns affected rows."""
        stmt = self._filtered(delete(self.model), criteria)
        with translated(f"batch delete {self.model.__name__}"):
            result = self.session.execute(stmt, execution_options={"synchronize_session": False})
        logger.debug(f"Batch deleted {result.rowcount} {self.model.__name__} row(s)")
        return result.rowcount

    def bulk_update(self, criteria: Union[Specification, Example, None], values: Dict[str, Any], *,
                    clear_automatically: bool = False) -> int:
        """
        Single UPDATE statement over all matching rows.

        The identity map is not synchronized: entities already loaded keep
        their old state until ``clear()`` (or ``clear_automatically=True``).

        Returns:
            Number of rows affected
        """
        mapper = inspect(self.model)
        unknown = [key for key in values if key not in mapper.column_attrs]
        if unknown:
            raise InvalidQueryError(f"Cannot bulk update {unknown}: not columns of {self.model.__name__}")

        stmt = self._filtered(update(self.model).values(**values), criteria)
        with translated(f"bulk update {self.model.__name__}"):
            result = self.session.execute(stmt, execution_options={"synchronize_session": False})
        logger.debug(f"Bulk updated {result.rowcount} {self.model.__name__} row(s)")
        if clear_automatically:
            self.clear()
        return result.rowcount

    def _filtered(self, stmt: Any, criteria: Union[Specification, Example, None]) -> Any:
        spec = as_specification(criteria)
        if spec is None:
            return stmt
        root = QueryRoot(self.model)
        predicate = spec.to_predicate(root)
        if predicate is None:
            return stmt
        if not root.has_joins:
            return stmt.where(predicate)
        # UPDATE/DELETE cannot join portably: restrict by id through a subquery
        ids = root.apply_joins(select(self._id_attribute)).where(predicate).correlate(None)
        return stmt.where(self._id_attribute.in_(ids))

    # ========================================
    # Unit-of-work
    # ========================================

    def flush(self) -> None:
        with translated("flush"):
            self.session.flush()

    def clear(self) -> None:
        """Detach every entity; the next read goes to the database."""
        self.session.expunge_all()

    def detach(self, entity: T) -> None:
        self.session.expunge(entity)

    def load(self, entity: Any, relation: str) -> Any:
        """
        Explicitly load a relationship of a managed entity.

        Relationships are declared ``lazy="raise"``; this issues the query
        and attaches the result without marking the entity dirty.
        """
        rel = inspect(type(entity)).relationships.get(relation)
        if rel is None:
            raise InvalidQueryError(f"'{relation}' is not a relationship of {type(entity).__name__}")
        stmt = select(rel.mapper.class_).where(with_parent(entity, getattr(type(entity), relation)))
        with translated(f"load {type(entity).__name__}.{relation}"):
            rows = list(self.session.scalars(stmt))
        value = rows if rel.uselist else (rows[0] if rows else None)
        set_committed_value(entity, relation, value)
        return getattr(entity, relation)
