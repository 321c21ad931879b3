"""
Repository exception hierarchy.

Every error raised by the repository layer derives from RepositoryException,
so callers can catch the whole family or a single kind.
"""


class RepositoryException(Exception):
    """Base exception for repository operations."""

    pass


class EntityNotFound(RepositoryException):
    """Raised when an entity required to exist is not found."""

    pass


class IncorrectResultSize(RepositoryException):
    """Raised when a query expected to return at most one row returns more."""

    def __init__(self, expected: int, actual: int, message: str | None = None):
        self.expected = expected
        self.actual = actual
        super().__init__(message or f"Incorrect result size: expected {expected}, actual {actual}")


class ConstraintViolation(RepositoryException):
    """Raised when the database rejects a write because of a constraint."""

    pass


class DuplicateEntity(ConstraintViolation):
    """Raised when a unique constraint is violated."""

    pass


class OptimisticLockError(RepositoryException):
    """Raised when a versioned row was changed by another unit-of-work."""

    pass


class InvalidQueryError(RepositoryException):
    """Raised when a query declaration or its inputs cannot be translated."""

    pass


class RepositoryError(RepositoryException):
    """Generic repository operation error."""

    pass
