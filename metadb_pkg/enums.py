"""Enums for dialects, column descriptions and CLI type-safe choices."""

from enum import Enum


class DialectName(str, Enum):
    """Supported SQL engines."""
    MYSQL = "mysql"
    SQLITE = "sqlite"


class ColumnKind(str, Enum):
    """Base type of a declared column."""
    INTEGER = "integer"
    VARCHAR = "varchar"
    CHAR = "char"
    BOOLEAN = "boolean"
    TEXT = "text"
    TIMESTAMP = "timestamp"
    DATETIME = "datetime"
    ENUM = "enum"


class Modifier(str, Enum):
    """Constraint modifiers that compose onto a column kind."""
    PRIMARY_KEY = "primary_key"
    AUTO_INCREMENT = "auto_increment"
    NOT_NULL = "not_null"
    UNIQUE = "unique"


class OrphanPolicy(str, Enum):
    """What a data migration does with rows whose owner has no mapping."""
    SKIP = "skip"
    FAIL = "fail"
