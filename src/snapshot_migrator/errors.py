"""
Error taxonomy for the migration engine.

Every error is fatal to the run that raised it: the orchestrator aborts, marks
the run as failed and re-raises to the caller.
"""


class MigrationError(Exception):
    """Base class for all migration failures."""


class StorageError(MigrationError):
    """A source or target database operation could not be executed."""


class StorageConnectionError(StorageError):
    """The database could not be opened or the connection is unusable."""


class QueryError(StorageError):
    """The query is malformed or refers to a missing table or column."""


class DeserializationError(MigrationError):
    """A stored payload could not be decoded with the scheme it names."""


class WriteError(MigrationError):
    """The target store rejected a write, e.g. on a duplicate key."""


class SerializationError(WriteError):
    """A payload could not be encoded for the target store."""
