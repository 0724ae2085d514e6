"""Translation of `sqlite3` exceptions into the migration error taxonomy."""
import sqlite3

from ...errors import MigrationError, QueryError, StorageConnectionError, StorageError, WriteError

_CONNECTION_MESSAGES = (
    "unable to open database",
    "database is locked",
    "disk i/o error",
    "closed database",
    "file is not a database",
)


def translate_error(exc: sqlite3.Error, action: str) -> MigrationError:
    message = f"{action} failed: {exc}"
    lowered = str(exc).lower()
    if isinstance(exc, sqlite3.IntegrityError):
        return WriteError(message)
    if any(fragment in lowered for fragment in _CONNECTION_MESSAGES):
        return StorageConnectionError(message)
    if isinstance(exc, sqlite3.OperationalError):
        return QueryError(message)
    if isinstance(exc, sqlite3.ProgrammingError):
        return StorageConnectionError(message)
    return StorageError(message)
