"""SQL dialect adapters.

A Dialect turns abstract ColumnType descriptions into DDL for one engine and
owns every engine-specific detail the rest of the package needs: identifier
quoting, parameter placeholders, auto-increment and last-insert-id
functions, "replace into" syntax, catalog probes, explicit transaction
start, connecting and backing up.

Two engines are supported:
- MySQL: native ENUM, ALTER TABLE ... ADD (col, col, ...) in one statement
- SQLite: no ENUM (rewritten to a bounded varchar), one column per ALTER

Select an adapter once with get_dialect() and pass it around.
"""

from __future__ import annotations

import shutil
import sqlite3
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Tuple, Union

from .enums import ColumnKind, DialectName, Modifier
from .errors import BackupFailed, ConfigurationError, UnsupportedType
from .logging_setup import log_debug, log_info
from .schema import ColumnType, TableSchema

if TYPE_CHECKING:
    from .database import ConnectionInfo


_BASE_TYPES = {
    ColumnKind.INTEGER: "integer",
    ColumnKind.BOOLEAN: "boolean",
    ColumnKind.TEXT: "text",
    ColumnKind.TIMESTAMP: "timestamp",
    ColumnKind.DATETIME: "datetime",
}


def _quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


class Dialect(ABC):
    """Base class for engine adapters.

    Subclasses provide the keywords and catalog queries; DDL assembly is
    shared here.
    """

    name: DialectName
    placeholder: str = "?"
    supports_batch_alter: bool = False

    # ========== Keywords ==========

    @abstractmethod
    def autoincrement_clause(self) -> str:
        """Keyword that makes an integer key auto-incrementing."""

    @abstractmethod
    def last_insert_id(self) -> str:
        """SQL expression returning the last auto-increment value."""

    @abstractmethod
    def replace_into(self) -> str:
        """Insert-or-replace statement prefix."""

    @abstractmethod
    def now(self) -> str:
        """SQL expression for the current local date and time."""

    @abstractmethod
    def quote(self, identifier: str) -> str:
        """Quote a table or column name."""

    def create_table_suffix(self) -> str:
        return ""

    def placeholders(self, count: int) -> str:
        return ", ".join([self.placeholder] * count)

    # ========== Column rendering ==========

    def _check(self, column_type: ColumnType) -> None:
        kind = column_type.kind
        if kind == ColumnKind.ENUM and not column_type.values:
            raise UnsupportedType("enum column declared without values")
        if kind in (ColumnKind.VARCHAR, ColumnKind.CHAR) and not column_type.length:
            raise UnsupportedType(f"{kind.value} column declared without a length")

    def _base_type(self, column_type: ColumnType) -> str:
        kind = column_type.kind
        if kind in _BASE_TYPES:
            return _BASE_TYPES[kind]
        if kind in (ColumnKind.VARCHAR, ColumnKind.CHAR):
            return f"{kind.value}({column_type.length})"
        if kind == ColumnKind.ENUM:
            return self._enum_type(column_type.values)
        raise UnsupportedType(f"{self.name.value} has no equivalent for column kind {kind!r}")

    @abstractmethod
    def _enum_type(self, values: Sequence[str]) -> str:
        """Type used for an enumerated column."""

    def _suffix(self, column_type: ColumnType) -> List[str]:
        parts = []
        if column_type.has(Modifier.PRIMARY_KEY):
            parts.append("PRIMARY KEY")
        if column_type.has(Modifier.AUTO_INCREMENT):
            parts.append(self.autoincrement_clause())
        if column_type.has(Modifier.NOT_NULL):
            parts.append("NOT NULL")
        if column_type.has(Modifier.UNIQUE):
            parts.append("UNIQUE")
        return parts

    def render_column(self, column_type: ColumnType) -> str:
        """DDL column definition (type plus constraints) for this engine.

        Raises:
            UnsupportedType: If the engine cannot express the column
        """
        self._check(column_type)
        return " ".join([self._base_type(column_type)] + self._suffix(column_type))

    def render_table(self, schema: TableSchema) -> List[str]:
        """Render every column of a table; used to validate a schema up front."""
        return [self.render_column(column_type) for column_type in schema.columns.values()]

    # ========== Statements ==========

    def create_table(self, schema: TableSchema) -> str:
        columns = ", ".join(
            f"{self.quote(column_name)} {self.render_column(column_type)}"
            for column_name, column_type in schema.columns.items()
        )
        return f"CREATE TABLE {self.quote(schema.name)} ({columns}){self.create_table_suffix()}"

    def drop_column(self, table_name: str, column_name: str) -> str:
        return f"ALTER TABLE {self.quote(table_name)} DROP COLUMN {self.quote(column_name)}"

    def add_column(self, table_name: str, column_name: str, column_type: ColumnType) -> List[str]:
        """Statements that add one column; may be more than one statement."""
        return [
            f"ALTER TABLE {self.quote(table_name)} ADD COLUMN "
            f"{self.quote(column_name)} {self.render_column(column_type)}"
        ]

    def add_columns(self, table_name: str, columns: Sequence[Tuple[str, ColumnType]]) -> str:
        """Single statement adding several columns (batch ALTER engines only)."""
        raise UnsupportedType(f"{self.name.value} cannot add several columns in one statement")

    def drop_table(self, table_name: str) -> str:
        return f"DROP TABLE {self.quote(table_name)}"

    def rename_table(self, old_name: str, new_name: str) -> str:
        return f"ALTER TABLE {self.quote(old_name)} RENAME TO {self.quote(new_name)}"

    def create_index(self, index_name: str, table_name: str, columns: Sequence[str], unique: bool = False) -> str:
        column_list = ", ".join(self.quote(c) for c in columns)
        kind = "UNIQUE INDEX" if unique else "INDEX"
        return f"CREATE {kind} {self.quote(index_name)} ON {self.quote(table_name)} ({column_list})"

    def insert(self, table_name: str, columns: Sequence[str], replace: bool = False) -> str:
        prefix = self.replace_into() if replace else "INSERT INTO"
        column_list = ", ".join(self.quote(c) for c in columns)
        return f"{prefix} {self.quote(table_name)} ({column_list}) VALUES ({self.placeholders(len(columns))})"

    def select(self, table_name: str, columns: Sequence[str]) -> str:
        column_list = ", ".join(self.quote(c) for c in columns)
        return f"SELECT {column_list} FROM {self.quote(table_name)}"

    # ========== Catalog probes ==========

    @abstractmethod
    def table_exists(self, cursor: Any, table_name: str) -> bool:
        """Whether a table of that name exists in the connected database."""

    @abstractmethod
    def live_columns(self, cursor: Any, table_name: str) -> List[str]:
        """Lower-cased column names of an existing table, in table order."""

    @abstractmethod
    def index_exists(self, cursor: Any, table_name: str, index_name: str) -> bool:
        """Whether the named index exists on the table."""

    def fetch_last_insert_id(self, cursor: Any) -> int:
        cursor.execute(f"SELECT {self.last_insert_id()}")
        row = cursor.fetchone()
        return row[0] if row else 0

    # ========== Connections ==========

    @abstractmethod
    def connect(self, info: "ConnectionInfo") -> Any:
        """Open a DB-API connection in autocommit mode."""

    def ensure_database(self, info: "ConnectionInfo", admin: Optional[Tuple[str, str]] = None) -> bool:
        """Create the database if the engine needs it done up front.

        File-based engines create their store on first connect.
        """
        return False

    @abstractmethod
    def begin(self, conn: Any) -> None:
        """Start an explicit transaction on an autocommit connection."""

    def cursor(self, conn: Any) -> Any:
        return conn.cursor()

    @abstractmethod
    def driver_errors(self) -> Tuple[type, ...]:
        """Exception classes raised by the underlying driver."""

    @abstractmethod
    def backup(self, info: "ConnectionInfo", destination: Path) -> None:
        """Write a snapshot of the whole database to destination.

        Raises:
            BackupFailed: If the copy or dump could not be produced
        """


class MySQLDialect(Dialect):
    """MySQL / MariaDB through mysql-connector-python."""

    name = DialectName.MYSQL
    placeholder = "%s"
    supports_batch_alter = True

    def autoincrement_clause(self) -> str:
        return "auto_increment"

    def last_insert_id(self) -> str:
        return "LAST_INSERT_ID()"

    def replace_into(self) -> str:
        return "REPLACE INTO"

    def now(self) -> str:
        return "NOW()"

    def quote(self, identifier: str) -> str:
        return "`" + identifier.replace("`", "``") + "`"

    def create_table_suffix(self) -> str:
        return " ENGINE=InnoDB"

    def _enum_type(self, values: Sequence[str]) -> str:
        return "ENUM(" + ",".join(_quote_literal(v) for v in values) + ")"

    def _check(self, column_type: ColumnType) -> None:
        super()._check(column_type)
        if column_type.has(Modifier.AUTO_INCREMENT):
            if column_type.kind != ColumnKind.INTEGER:
                raise UnsupportedType("MySQL auto_increment requires an integer column")
            if not (column_type.has(Modifier.PRIMARY_KEY) or column_type.has(Modifier.UNIQUE)):
                raise UnsupportedType("MySQL auto_increment requires a key column")
        if column_type.kind == ColumnKind.TEXT and (
            column_type.has(Modifier.UNIQUE) or column_type.has(Modifier.PRIMARY_KEY)
        ):
            raise UnsupportedType("MySQL cannot index an unbounded text column")

    def add_columns(self, table_name: str, columns: Sequence[Tuple[str, ColumnType]]) -> str:
        definitions = ", ".join(
            f"{self.quote(column_name)} {self.render_column(column_type)}"
            for column_name, column_type in columns
        )
        return f"ALTER TABLE {self.quote(table_name)} ADD ({definitions})"

    def table_exists(self, cursor: Any, table_name: str) -> bool:
        cursor.execute(
            "SELECT table_name FROM information_schema.tables "
            "WHERE table_schema = DATABASE() AND table_name = %s",
            (table_name,),
        )
        return cursor.fetchone() is not None

    def live_columns(self, cursor: Any, table_name: str) -> List[str]:
        cursor.execute(
            "SELECT column_name FROM information_schema.columns "
            "WHERE table_schema = DATABASE() AND table_name = %s "
            "ORDER BY ordinal_position",
            (table_name,),
        )
        return [row[0].lower() for row in cursor.fetchall()]

    def index_exists(self, cursor: Any, table_name: str, index_name: str) -> bool:
        cursor.execute(
            "SELECT index_name FROM information_schema.statistics "
            "WHERE table_schema = DATABASE() AND table_name = %s AND index_name = %s",
            (table_name, index_name),
        )
        return cursor.fetchone() is not None

    def connect(self, info: "ConnectionInfo") -> Any:
        try:
            import mysql.connector
        except ImportError as e:
            raise ConfigurationError(
                "MySQL support requires mysql-connector-python (pip install 'metadb[mysql]')"
            ) from e

        kwargs: Dict[str, Any] = {"database": info.database, "autocommit": True}
        if info.host:
            kwargs["host"] = info.host
        if info.port:
            kwargs["port"] = info.port
        if info.user:
            kwargs["user"] = info.user
        if info.password is not None:
            kwargs["password"] = info.password
        return mysql.connector.connect(**kwargs)

    def ensure_database(self, info: "ConnectionInfo", admin: Optional[Tuple[str, str]] = None) -> bool:
        """Create the database on the server if it cannot be opened.

        Returns:
            True if the database was created, False if it already existed
        """
        try:
            import mysql.connector
        except ImportError as e:
            raise ConfigurationError(
                "MySQL support requires mysql-connector-python (pip install 'metadb[mysql]')"
            ) from e

        try:
            self.connect(info).close()
            return False
        except mysql.connector.Error as e:
            if admin is None:
                raise ConfigurationError(
                    f"Could not open MySQL database {info.database} ({e}); "
                    "pass --admin user:password to create it"
                ) from e

        admin_user, admin_password = admin
        log_info(f"Could not find {info.database} database, creating...")
        kwargs: Dict[str, Any] = {"user": admin_user, "password": admin_password, "autocommit": True}
        if info.host:
            kwargs["host"] = info.host
        if info.port:
            kwargs["port"] = info.port
        try:
            server = mysql.connector.connect(**kwargs)
        except mysql.connector.Error as e:
            raise ConfigurationError(f"Could not connect as MySQL administrator {admin_user}: {e}") from e
        try:
            cursor = server.cursor()
            cursor.execute(f"CREATE DATABASE IF NOT EXISTS {self.quote(info.database)}")
        finally:
            server.close()
        return True

    def begin(self, conn: Any) -> None:
        conn.start_transaction()

    def cursor(self, conn: Any) -> Any:
        # buffered so a pending SELECT never blocks the next statement
        return conn.cursor(buffered=True)

    def driver_errors(self) -> Tuple[type, ...]:
        try:
            import mysql.connector
        except ImportError:
            return ()
        return (mysql.connector.Error,)

    def backup(self, info: "ConnectionInfo", destination: Path) -> None:
        cmd = ["mysqldump"]
        if info.user:
            cmd.append(f"--user={info.user}")
        cmd.append(f"--password={info.password or ''}")
        if info.host:
            cmd.append(f"--host={info.host}")
        if info.port:
            cmd.append(f"--port={info.port}")
        cmd.append(info.database)

        log_debug(f"Running mysqldump for database {info.database}")
        try:
            with open(destination, "wb") as out:
                result = subprocess.run(cmd, stdout=out, stderr=subprocess.PIPE)
        except OSError as e:
            raise BackupFailed(f"Could not run mysqldump: {e}") from e

        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", "replace").strip()
            raise BackupFailed(f"mysqldump exited with status {result.returncode}: {stderr}")


_ADD_COLUMN_DEFAULTS = {
    ColumnKind.INTEGER: "0",
    ColumnKind.BOOLEAN: "0",
    ColumnKind.VARCHAR: "''",
    ColumnKind.CHAR: "''",
    ColumnKind.TEXT: "''",
    ColumnKind.ENUM: "''",
    ColumnKind.TIMESTAMP: "'1970-01-01 00:00:00'",
    ColumnKind.DATETIME: "'1970-01-01 00:00:00'",
}


class SQLiteDialect(Dialect):
    """SQLite through the standard library driver."""

    name = DialectName.SQLITE
    placeholder = "?"
    supports_batch_alter = False

    def autoincrement_clause(self) -> str:
        return "AUTOINCREMENT"

    def last_insert_id(self) -> str:
        return "last_insert_rowid()"

    def replace_into(self) -> str:
        return "INSERT OR REPLACE INTO"

    def now(self) -> str:
        return "datetime('now','localtime')"

    def quote(self, identifier: str) -> str:
        return '"' + identifier.replace('"', '""') + '"'

    def _enum_type(self, values: Sequence[str]) -> str:
        return f"varchar({max(len(v) for v in values)})"

    def _check(self, column_type: ColumnType) -> None:
        super()._check(column_type)
        if column_type.has(Modifier.AUTO_INCREMENT) and not (
            column_type.kind == ColumnKind.INTEGER and column_type.has(Modifier.PRIMARY_KEY)
        ):
            raise UnsupportedType("SQLite AUTOINCREMENT is only allowed on an integer primary key")

    def add_column(self, table_name: str, column_name: str, column_type: ColumnType) -> List[str]:
        """Add one column within SQLite's ALTER TABLE limits.

        SQLite refuses PRIMARY KEY and UNIQUE columns in ADD COLUMN and a
        NOT NULL column without a default. UNIQUE becomes a unique index;
        NOT NULL gets the zero value of its type as default.
        """
        if column_type.has(Modifier.PRIMARY_KEY):
            raise UnsupportedType(
                f"SQLite cannot add primary key column {column_name} to existing table {table_name}"
            )
        self._check(column_type)

        definition = self._base_type(column_type)
        if column_type.has(Modifier.NOT_NULL):
            definition += f" NOT NULL DEFAULT {_ADD_COLUMN_DEFAULTS[column_type.kind]}"

        statements = [
            f"ALTER TABLE {self.quote(table_name)} ADD COLUMN {self.quote(column_name)} {definition}"
        ]
        if column_type.has(Modifier.UNIQUE):
            statements.append(
                self.create_index(f"uq_{table_name}_{column_name}", table_name, [column_name], unique=True)
            )
        return statements

    def table_exists(self, cursor: Any, table_name: str) -> bool:
        cursor.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?",
            (table_name,),
        )
        return cursor.fetchone() is not None

    def live_columns(self, cursor: Any, table_name: str) -> List[str]:
        cursor.execute(f"PRAGMA table_info({self.quote(table_name)})")
        return [row[1].lower() for row in cursor.fetchall()]

    def index_exists(self, cursor: Any, table_name: str, index_name: str) -> bool:
        cursor.execute(
            "SELECT name FROM sqlite_master WHERE type='index' AND tbl_name=? AND name=?",
            (table_name, index_name),
        )
        return cursor.fetchone() is not None

    def connect(self, info: "ConnectionInfo") -> sqlite3.Connection:
        # isolation_level=None: no implicit transactions, begin() is explicit
        # so DDL and DML of one step share a single transaction.
        conn = sqlite3.connect(info.path or ":memory:", isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    def begin(self, conn: Any) -> None:
        conn.execute("BEGIN")

    def driver_errors(self) -> Tuple[type, ...]:
        return (sqlite3.Error,)

    def backup(self, info: "ConnectionInfo", destination: Path) -> None:
        if info.is_memory:
            raise BackupFailed("An in-memory SQLite database cannot be backed up")
        source = Path(info.path)
        if not source.exists():
            raise BackupFailed(f"SQLite database file {source} does not exist")
        try:
            shutil.copy2(source, destination)
        except OSError as e:
            raise BackupFailed(f"Could not copy {source} to {destination}: {e}") from e


_DIALECTS: Dict[DialectName, Dialect] = {
    DialectName.MYSQL: MySQLDialect(),
    DialectName.SQLITE: SQLiteDialect(),
}


def get_dialect(name: Union[str, DialectName]) -> Dialect:
    """Look up the adapter for an engine name ('mysql' or 'sqlite').

    Raises:
        ConfigurationError: If the engine is not supported
    """
    if isinstance(name, DialectName):
        return _DIALECTS[name]
    try:
        return _DIALECTS[DialectName(name.lower())]
    except ValueError as e:
        raise ConfigurationError(f"Unsupported database driver: {name}") from e
