"""Data-access error taxonomy.

The store never recovers from these locally; they propagate to the caller,
which decides how to present them (the HTTP layer maps them to status codes).
"""
from __future__ import annotations

from typing import Any

from sqlalchemy.exc import IntegrityError

# PostgreSQL SQLSTATE codes
_PG_UNIQUE_VIOLATION = "23505"
_PG_FOREIGN_KEY_VIOLATION = "23503"


class DataAccessError(Exception):
    """Base class for failures surfaced by the project store."""

    def __init__(self, entity: str, key: Any = None, message: str | None = None):
        self.entity = entity
        self.key = key
        super().__init__(message or self._default_message())

    def _default_message(self) -> str:
        return f"{self.entity} {self.key!r} failed"


class NotFoundError(DataAccessError):
    def _default_message(self) -> str:
        return f"{self.entity} {self.key!r} not found"


class ConflictError(DataAccessError):
    def _default_message(self) -> str:
        return f"{self.entity} {self.key!r} already exists"


class ReferentialError(DataAccessError):
    def _default_message(self) -> str:
        return f"{self.entity} {self.key!r} references a missing record"


def _sqlstate(exc: IntegrityError) -> str | None:
    orig = exc.orig
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def translate_integrity_error(exc: IntegrityError, entity: str, key: Any = None) -> DataAccessError:
    """Classify a driver integrity error as a conflict or a referential failure."""
    code = _sqlstate(exc)
    text = str(exc.orig).lower()
    if code == _PG_FOREIGN_KEY_VIOLATION or "foreign key" in text:
        return ReferentialError(entity, key, f"{entity} {key!r} references a missing record: {exc.orig}")
    if code == _PG_UNIQUE_VIOLATION or "unique" in text or "duplicate" in text:
        return ConflictError(entity, key)
    return DataAccessError(entity, key, f"{entity} {key!r} violates an integrity constraint: {exc.orig}")
