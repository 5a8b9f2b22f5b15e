"""Exception types raised by the schema and migration engine."""

from typing import Optional


class MetadbError(Exception):
    """Base class for all metadb errors."""
    pass


class ConfigurationError(MetadbError):
    """Raised for an unusable connection descriptor or configuration value."""
    pass


class UnsupportedType(MetadbError):
    """Raised when a dialect cannot express a declared column."""
    pass


class SchemaError(MetadbError):
    """Raised when a DDL statement fails.

    Carries the underlying driver message and, when known, the statement
    that was being executed.
    """

    def __init__(self, message: str, statement: Optional[str] = None):
        self.statement = statement
        if statement:
            message = f"{message} (while running: {statement})"
        super().__init__(message)


class MissingMigrationStep(MetadbError):
    """Raised when no registered step bridges two adjacent versions."""

    def __init__(self, from_version: int, to_version: int):
        self.from_version = from_version
        self.to_version = to_version
        super().__init__(
            f"No migration registered for schema version {from_version} -> {to_version}"
        )


class BackupFailed(MetadbError):
    """Raised when the pre-migration snapshot cannot be produced."""
    pass


class DataMigrationError(MetadbError):
    """Raised when a row transform or foreign-key remap fails mid-step."""
    pass


class OrphanedRow(MetadbError):
    """A dependent row references an identity that has no mapping.

    Recovered locally by the migration step (row skipped and counted)
    unless the orphan policy says otherwise.
    """

    def __init__(self, table: str, identity: object):
        self.table = table
        self.identity = identity
        super().__init__(
            f"Row in {table} references unknown identity {identity!r}"
        )


class MigrationFailed(MetadbError):
    """Raised by the runner when a version step was rolled back."""

    def __init__(self, from_version: int, to_version: int, last_good_version: int, cause: BaseException):
        self.from_version = from_version
        self.to_version = to_version
        self.last_good_version = last_good_version
        self.cause = cause
        super().__init__(
            f"Upgrade from schema version {from_version} to {to_version} failed: {cause}. "
            f"Database remains at version {last_good_version}; it is safe to re-run."
        )
