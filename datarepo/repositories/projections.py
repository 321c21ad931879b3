"""
Result projections.

Two flavours:

* Interface projections subclass ``Projection`` and declare the exposed
  fields as annotations. Instances wrap the underlying row (or entity) and
  read a field only when it is accessed. A field annotated with another
  Projection type is a nested projection over a related entity.

* DTO projections are any pydantic model, dataclass or plain class whose
  constructor takes the field names as keywords. They are built eagerly,
  one instance per row.

Example:
    class UsernameOnly(Projection):
        username: str

    class TeamInfo(Projection):
        name: str

    class MemberWithTeam(Projection):
        username: str
        team: TeamInfo
"""

import dataclasses
import inspect as pyinspect
import types
import typing
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from pydantic import BaseModel as PydanticModel
from sqlalchemy import Select, inspect, select

from datarepo.core.exceptions import InvalidQueryError


class Projection:
    """Read-only, lazily evaluated view over a row or an entity."""

    __slots__ = ("_source",)

    def __init__(self, source: Any):
        object.__setattr__(self, "_source", source)

    @classmethod
    def projected_fields(cls) -> Dict[str, Any]:
        cached = cls.__dict__.get("_projected_fields")
        if cached is None:
            hints = typing.get_type_hints(cls)
            cached = {name: hint for name, hint in hints.items() if not name.startswith("_")}
            setattr(cls, "_projected_fields", cached)
        return cached

    @classmethod
    def nested_fields(cls) -> Dict[str, Tuple[type, bool]]:
        nested = {}
        for name, hint in cls.projected_fields().items():
            target = _nested_projection(hint)
            if target is not None:
                nested[name] = target
        return nested

    @property
    def target(self) -> Any:
        """The wrapped row mapping or entity, for computed properties on subclasses."""
        return self._source

    def __getattr__(self, name: str) -> Any:
        fields = type(self).projected_fields()
        if name not in fields:
            raise AttributeError(f"{type(self).__name__} has no projected field '{name}'")
        value = _read(self._source, name)
        nested = _nested_projection(fields[name])
        if nested is None or value is None:
            return value
        projection, many = nested
        if many:
            return [projection(item) for item in value]
        return projection(value)

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError(f"{type(self).__name__} is read-only")

    def to_dict(self) -> Dict[str, Any]:
        result = {}
        for name in type(self).projected_fields():
            value = getattr(self, name)
            if isinstance(value, Projection):
                value = value.to_dict()
            elif isinstance(value, list):
                value = [v.to_dict() if isinstance(v, Projection) else v for v in value]
            result[name] = value
        return result

    def __eq__(self, other: Any) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    __hash__ = None

    def __repr__(self) -> str:
        fields = ", ".join(f"{k}={v!r}" for k, v in self.to_dict().items())
        return f"{type(self).__name__}({fields})"


def _read(source: Any, name: str) -> Any:
    if isinstance(source, Mapping):
        return source[name]
    return getattr(source, name)


def _nested_projection(hint: Any) -> Optional[Tuple[type, bool]]:
    """(projection type, is_collection) when the hint names a nested projection."""
    if isinstance(hint, type) and issubclass(hint, Projection):
        return hint, False
    origin = typing.get_origin(hint)
    args = typing.get_args(hint)
    if origin in (typing.Union, types.UnionType):
        for arg in args:
            found = _nested_projection(arg)
            if found is not None:
                return found
        return None
    if origin in (list, typing.List) and args:
        found = _nested_projection(args[0])
        if found is not None:
            return found[0], True
    return None


def is_interface_projection(projection: Optional[type]) -> bool:
    return isinstance(projection, type) and issubclass(projection, Projection)


def dto_fields(dto: type) -> Tuple[str, ...]:
    """Constructor field names of a DTO class."""
    if issubclass(dto, PydanticModel):
        return tuple(dto.model_fields)
    if dataclasses.is_dataclass(dto):
        return tuple(f.name for f in dataclasses.fields(dto) if f.init)
    params = pyinspect.signature(dto).parameters.values()
    return tuple(
        p.name for p in params
        if p.kind in (p.POSITIONAL_OR_KEYWORD, p.KEYWORD_ONLY)
    )


def to_projection(projection: Optional[type], source: Any) -> Any:
    """Convert one row (mapping) or entity into the requested projection."""
    if projection is None:
        return source
    if is_interface_projection(projection):
        return projection(source)
    values = {}
    for name in dto_fields(projection):
        if isinstance(source, Mapping):
            if name in source:
                values[name] = source[name]
        elif hasattr(source, name):
            values[name] = getattr(source, name)
    return projection(**values)


# ========================================
# Projection Plans
# ========================================

@dataclass(frozen=True)
class ProjectionPlan:
    """
    What to SELECT for a projection over ``model`` and how to convert rows.

    ``columns`` set: select only those (labelled) columns, rows are mappings.
    ``columns`` None: select the entity, eagerly joining ``fetch`` relationships.
    """

    model: type
    projection: Optional[type] = None
    columns: Optional[Tuple[str, ...]] = None
    fetch: Tuple[str, ...] = ()

    @property
    def selects_entity(self) -> bool:
        return self.columns is None

    def select(self) -> Select:
        if self.columns is None:
            return select(self.model)
        return select(*(getattr(self.model, name).label(name) for name in self.columns))

    @property
    def converter(self) -> Callable[[Any], Any]:
        projection = self.projection
        return lambda source: to_projection(projection, source)


def plan_projection(model: type, projection: Optional[type]) -> ProjectionPlan:
    """Decide the select list for a projection; fails fast on unknown fields."""
    if projection is None:
        return ProjectionPlan(model)

    mapper = inspect(model)
    if is_interface_projection(projection):
        nested = projection.nested_fields()
        for name in nested:
            if name not in mapper.relationships:
                raise InvalidQueryError(
                    f"Nested projection field '{name}' of {projection.__name__} "
                    f"is not a relationship of {model.__name__}"
                )
        fields = tuple(projection.projected_fields())
        if nested or any(name not in mapper.column_attrs for name in fields):
            # nested or computed fields need the whole entity
            return ProjectionPlan(model, projection, None, tuple(nested))
        return ProjectionPlan(model, projection, fields)

    fields = dto_fields(projection)
    missing = [name for name in fields if name not in mapper.column_attrs]
    if missing:
        raise InvalidQueryError(
            f"DTO {projection.__name__} fields {missing} are not columns of {model.__name__}"
        )
    return ProjectionPlan(model, projection, fields)
