"""
Database models package.

Contains all SQLAlchemy ORM models.
"""

from datarepo.models.base import Base, BaseModel, AuditMixin, TimestampMixin
from datarepo.models.team import Team
from datarepo.models.member import Member

__all__ = [
    "Base",
    "BaseModel",
    "AuditMixin",
    "TimestampMixin",
    "Team",
    "Member",
]
