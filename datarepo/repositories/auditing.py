"""
Save hooks.

Repositories call ``pre_save`` before an entity is written and
``post_save`` after the write has been flushed. AuditingHook fills the
audit columns of models that carry them.
"""

import logging
from datetime import datetime, UTC
from typing import Any, Callable, Optional, Protocol

from datarepo.config import settings
from datarepo.core.constants import (
    AUDIT_CREATED_AT,
    AUDIT_CREATED_BY,
    AUDIT_LAST_MODIFIED_BY,
    AUDIT_UPDATED_AT,
)

logger = logging.getLogger(__name__)


class EntityHook(Protocol):
    def pre_save(self, entity: Any, is_new: bool) -> None:
        ...

    def post_save(self, entity: Any, is_new: bool) -> None:
        ...


def utc_now() -> datetime:
    return datetime.now(UTC)


class AuditingHook:
    """
    Stamps created/updated time and auditor on save.

    Usage:
        AuditingHook(auditor_provider=lambda: current_user.name)
    """

    def __init__(self, auditor_provider: Optional[Callable[[], Optional[str]]] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.auditor_provider = auditor_provider or (lambda: settings.auditor)
        self.clock = clock or utc_now

    def pre_save(self, entity: Any, is_new: bool) -> None:
        if not hasattr(entity, AUDIT_CREATED_AT):
            return
        now = self.clock()
        auditor = self.auditor_provider()
        if is_new:
            setattr(entity, AUDIT_CREATED_AT, now)
            if hasattr(entity, AUDIT_CREATED_BY):
                setattr(entity, AUDIT_CREATED_BY, auditor)
        setattr(entity, AUDIT_UPDATED_AT, now)
        if hasattr(entity, AUDIT_LAST_MODIFIED_BY):
            setattr(entity, AUDIT_LAST_MODIFIED_BY, auditor)

    def post_save(self, entity: Any, is_new: bool) -> None:
        logger.debug(f"{'Created' if is_new else 'Updated'} {type(entity).__name__} id={getattr(entity, 'id', None)}")
