"""
Base Model
==========

Provides common functionality for all database models.

Audit columns are plain nullable columns: they are stamped by the
repository's pre-save hooks, not by database defaults or ORM events.
"""

from datetime import datetime
from typing import Any, Dict, Optional
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy import DateTime, String, inspect


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamps."""

    created_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )


class AuditMixin(TimestampMixin):
    """Timestamps plus who created and last modified the row."""

    created_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    last_modified_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)


class SerializationMixin:
    """Mixin that adds to_dict() serialization method."""

    def to_dict(self, exclude: set = None) -> Dict[str, Any]:
        """Convert model instance to dictionary."""
        exclude = exclude or set()
        result = {}
        for attr in inspect(type(self)).column_attrs:
            if attr.key in exclude:
                continue
            value = self.__dict__.get(attr.key)
            if isinstance(value, datetime):
                result[attr.key] = value.isoformat()
            else:
                result[attr.key] = value
        return result


class BaseModel(AuditMixin, SerializationMixin):
    """Base model combining audit columns and serialization."""
    pass
