"""Project-wide custom exceptions."""

from __future__ import annotations


class RowbindError(Exception):
    """Base exception for the record-mapping engine."""

    fatal: bool = False


class ConfigurationError(RowbindError):
    """Raised when configuration loading or validation fails."""

    fatal = True


class DatabaseError(RowbindError):
    """Raised for database-related issues."""


class DatabaseConnectionError(DatabaseError):
    """Raised when the database cannot be opened or reached."""

    fatal = True


class SchemaError(DatabaseError):
    """Raised for a missing table or a field bound to a column that does not exist."""

    fatal = True


class QueryError(DatabaseError):
    """Raised for malformed SQL or a bound-parameter count mismatch."""


class ConstraintError(DatabaseError):
    """Raised when a delete is blocked by a restrict rule or the database rejects a write."""


class NotFoundError(RowbindError):
    """Raised when a key lookup returns no row."""


class ValidationError(RowbindError):
    """Raised when a record operation is called in an invalid state."""


class KeyNotPopulatedError(ValidationError):
    """Raised when a CRUD operation needs key fields that are not set."""


class MethodNotFound(ValidationError, AttributeError):
    """Raised when an undeclared relationship accessor is invoked."""


class InvalidOperation(RowbindError, ValueError):
    """Raised when a collection operation cannot be applied to its items."""
