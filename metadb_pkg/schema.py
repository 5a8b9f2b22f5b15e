"""Declarative table definitions for the accounts metadata database.

Each schema version is described as data: a table name plus an ordered
mapping of column name to an abstract ColumnType. Dialect-specific DDL is
produced by metadb_pkg.dialects; nothing in this module touches a database.

To change the schema, edit the definitions here, add a migration under
metadb_pkg/migrations/ and bump SCHEMA_VERSION.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Dict, FrozenSet, List, Mapping, Optional, Tuple

from .enums import ColumnKind, Modifier
from .errors import ConfigurationError


# ========== Column types ==========

@dataclass(frozen=True)
class ColumnType:
    """Abstract description of a column: kind, size and modifiers.

    Builder methods return new instances, so definitions compose:

        integer().primary_key().auto_increment()
        enum("private", "public").not_null()
    """

    kind: ColumnKind
    length: Optional[int] = None
    values: Tuple[str, ...] = ()
    modifiers: FrozenSet[Modifier] = field(default_factory=frozenset)

    def _with(self, modifier: Modifier) -> "ColumnType":
        return replace(self, modifiers=self.modifiers | {modifier})

    def not_null(self) -> "ColumnType":
        return self._with(Modifier.NOT_NULL)

    def unique(self) -> "ColumnType":
        return self._with(Modifier.UNIQUE)

    def primary_key(self) -> "ColumnType":
        return self._with(Modifier.PRIMARY_KEY)

    def auto_increment(self) -> "ColumnType":
        return self._with(Modifier.AUTO_INCREMENT)

    def has(self, modifier: Modifier) -> bool:
        return modifier in self.modifiers

    @property
    def is_primary_key(self) -> bool:
        return Modifier.PRIMARY_KEY in self.modifiers


def integer() -> ColumnType:
    return ColumnType(ColumnKind.INTEGER)


def varchar(length: int) -> ColumnType:
    if length <= 0:
        raise ValueError(f"varchar length must be positive, got {length}")
    return ColumnType(ColumnKind.VARCHAR, length=length)


def char(length: int) -> ColumnType:
    if length <= 0:
        raise ValueError(f"char length must be positive, got {length}")
    return ColumnType(ColumnKind.CHAR, length=length)


def boolean() -> ColumnType:
    return ColumnType(ColumnKind.BOOLEAN)


def text() -> ColumnType:
    return ColumnType(ColumnKind.TEXT)


def timestamp() -> ColumnType:
    return ColumnType(ColumnKind.TIMESTAMP)


def datetime_() -> ColumnType:
    return ColumnType(ColumnKind.DATETIME)


def enum(*values: str) -> ColumnType:
    return ColumnType(ColumnKind.ENUM, values=tuple(values))


# ========== Tables ==========

@dataclass(frozen=True)
class TableSchema:
    """A table name and its ordered column definitions.

    Column order is the declaration order used for CREATE TABLE and for
    adding columns one at a time; reconciliation matches columns by
    lower-cased name only.
    """

    name: str
    columns: Mapping[str, ColumnType]

    @property
    def column_names(self) -> List[str]:
        return list(self.columns)

    @property
    def primary_key(self) -> Optional[str]:
        for column_name, column_type in self.columns.items():
            if column_type.is_primary_key:
                return column_name
        return None

    def renamed(self, name: str) -> "TableSchema":
        """Same shape under another table name (e.g. users -> users_new)."""
        return TableSchema(name, self.columns)


def table(name: str, /, **columns: ColumnType) -> TableSchema:
    """Build a TableSchema, keeping keyword order as column order.

    A trailing underscore is stripped from keyword names so that columns
    named after Python keywords (``pass``) can be declared.
    """
    return TableSchema(name, {key.rstrip("_"): value for key, value in columns.items()})


# ========== Version 1 (current) ==========

SCHEMA_VERSION = 1
"""Target schema version.

Version history:
- 0: users keyed by an opaque client-supplied session id; uploads reference
     that user by its opaque uploads id
- 1: users get a database-assigned numeric userid; the opaque ids move to
     the session table and uploads reference the numeric userid
"""

METADATA_TABLE = "dbinfo"
VERSION_COLUMN = "schema_version"

SHARING_POLICIES = ("private", "public", "group", "casual")

USERS = table(
    "users",
    userid=integer().primary_key().auto_increment(),
    email=varchar(64).not_null().unique(),
    pass_=varchar(32).not_null(),
    remember=boolean().not_null(),
    openid_only=boolean().not_null(),
    confirmed=boolean().not_null(),
    cnfrm_code=varchar(32).not_null(),
    last_login=timestamp().not_null(),
    created=datetime_().not_null(),
)

SESSION = table(
    "session",
    userid=integer().primary_key().auto_increment(),
    username=varchar(32),
    sessionid=char(32).not_null().unique(),
    uploadsid=char(32).not_null().unique(),
)

OPENID_USERS = table(
    "openid_users",
    userid=integer().not_null(),
    username=varchar(32).not_null(),
    openid_url=varchar(128).not_null().primary_key(),
)

UPLOADS = table(
    "uploads",
    trackid=varchar(32).not_null().primary_key(),
    userid=integer().not_null(),
    path=text(),
    title=text(),
    description=text(),
    imported=boolean().not_null(),
    creation_date=datetime_().not_null(),
    modification_date=datetime_(),
    sharing_policy=enum(*SHARING_POLICIES).not_null(),
    users=text(),
    public_users=text(),
    public_count=integer(),
    data_source=text(),
)

DBINFO = TableSchema(
    METADATA_TABLE,
    {VERSION_COLUMN: integer().not_null().unique()},
)


# ========== Version 0 (legacy) ==========

LEGACY_USERS = table(
    "users",
    userid=varchar(32).not_null().unique().primary_key(),
    uploadsid=varchar(32).not_null().unique(),
    username=varchar(32).not_null().unique(),
    email=varchar(64).not_null().unique(),
    pass_=varchar(32).not_null(),
    remember=boolean().not_null(),
    openid_only=boolean().not_null(),
    confirmed=boolean().not_null(),
    cnfrm_code=varchar(32).not_null(),
    last_login=timestamp().not_null(),
    created=datetime_().not_null(),
)

LEGACY_UPLOADS = table(
    "uploads",
    uploadid=varchar(32).not_null().primary_key(),
    userid=varchar(32).not_null(),
    path=text(),
    title=text(),
    description=text(),
    imported=boolean().not_null(),
    creation_date=datetime_().not_null(),
    modification_date=datetime_(),
    sharing_policy=enum(*SHARING_POLICIES).not_null(),
    users=text(),
    public_users=text(),
    public_count=integer(),
    data_source=text(),
)


CURRENT_TABLES: Tuple[TableSchema, ...] = (USERS, SESSION, OPENID_USERS, UPLOADS)
"""Tables reconciled after migrations, in setup order."""

SCHEMAS_BY_VERSION: Dict[int, Tuple[TableSchema, ...]] = {
    0: (LEGACY_USERS, LEGACY_UPLOADS),
    1: CURRENT_TABLES,
}


def tables_for_version(version: int) -> Tuple[TableSchema, ...]:
    """Application tables (metadata table excluded) of a schema version."""
    try:
        return SCHEMAS_BY_VERSION[version]
    except KeyError:
        raise ConfigurationError(f"No table definitions for schema version {version}") from None
