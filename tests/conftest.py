"""Pytest configuration and shared fixtures for metadb tests."""

import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Generator, List, Optional, Sequence

import pytest

from metadb_pkg.database import ConnectionInfo, Database, connect
from metadb_pkg.dialects import MySQLDialect
from metadb_pkg.enums import DialectName
from metadb_pkg.reconcile import TableReconciler
from metadb_pkg.schema import LEGACY_UPLOADS, LEGACY_USERS


FIXED_TIME = datetime(2024, 3, 5, 14, 30)


# ========== Environment ==========

@pytest.fixture(autouse=True)
def reset_environment(monkeypatch, tmp_path):
    """Reset environment variables before each test.

    Points the config file and log file at the test's temp directory so
    tests never touch ~/.metadb.
    """
    from metadb_pkg.ansi import reset_console

    monkeypatch.delenv("METADB_DSN", raising=False)
    monkeypatch.delenv("METADB_DEBUG", raising=False)
    monkeypatch.setenv("METADB_CONFIG", str(tmp_path / "config" / "config.yaml"))
    monkeypatch.setenv("METADB_LOG", str(tmp_path / "logs" / "metadb.log"))
    reset_console()
    yield
    reset_console()


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path: Temporary directory path
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


# ========== SQLite databases ==========

@pytest.fixture
def db_path(temp_dir: Path) -> Path:
    return temp_dir / "users.sqlite"


@pytest.fixture
def sqlite_db(db_path: Path) -> Generator[Database, None, None]:
    """File-backed SQLite database, empty.

    Yields:
        Database: Open handle; closed after the test
    """
    db = connect(f"DBI:SQLite:dbname={db_path}")
    yield db
    db.close()


@pytest.fixture
def memory_db() -> Generator[Database, None, None]:
    """In-memory SQLite database (cannot be backed up)."""
    db = connect("sqlite:///:memory:")
    yield db
    db.close()


LEGACY_USER_ROWS = [
    ("sess-alice", "up-alice", "alice", "alice@example.org", "pw1", 1, 0, 1, "code-a",
     "2024-01-01 10:00:00", "2023-06-01 09:00:00"),
    ("sess-bob", "up-bob", "bob", "bob@example.org", "pw2", 0, 0, 1, "code-b",
     "2024-01-02 11:00:00", "2023-07-01 09:00:00"),
]

LEGACY_UPLOAD_ROWS = [
    ("track-a", "up-alice", "/data/a.bed", "Alice track", "first", 1,
     "2024-01-03 00:00:00", None, "private", None, None, 0, "upload"),
    ("track-b", "up-bob", "/data/b.gff", "Bob track", "second", 0,
     "2024-01-04 00:00:00", "2024-01-05 00:00:00", "public", None, None, 3, "url"),
    ("track-orphan", "up-nobody", "/data/c.wig", "Lost track", None, 0,
     "2024-01-06 00:00:00", None, "casual", None, None, 0, "upload"),
]


def build_legacy_database(
    db: Database,
    users: Sequence[tuple] = LEGACY_USER_ROWS,
    uploads: Sequence[tuple] = LEGACY_UPLOAD_ROWS,
) -> None:
    """Lay down a version 0 database: legacy users and uploads, no dbinfo."""
    reconciler = TableReconciler(db)
    reconciler.reconcile(LEGACY_USERS.name, LEGACY_USERS)
    reconciler.reconcile(LEGACY_UPLOADS.name, LEGACY_UPLOADS)
    dialect = db.dialect
    with db.transaction():
        for row in users:
            db.execute(dialect.insert(LEGACY_USERS.name, LEGACY_USERS.column_names), row)
        for row in uploads:
            db.execute(dialect.insert(LEGACY_UPLOADS.name, LEGACY_UPLOADS.column_names), row)


@pytest.fixture
def legacy_db(sqlite_db: Database) -> Database:
    """File-backed SQLite database at schema version 0 with two users and three uploads.

    One upload belongs to an uploads id no user has.
    """
    build_legacy_database(sqlite_db)
    return sqlite_db


@pytest.fixture
def fixed_clock() -> Callable[[], datetime]:
    return lambda: FIXED_TIME


# ========== MySQL stand-in ==========

class RecordingCursor:
    """Cursor that records SQL and answers catalog queries from a table map."""

    def __init__(self, conn: "RecordingConnection"):
        self.conn = conn
        self._rows: List[tuple] = []

    def execute(self, sql: str, params: Sequence[Any] = ()) -> None:
        self.conn.statements.append(sql)
        if "information_schema.tables" in sql:
            name = params[0]
            self._rows = [(name,)] if name in self.conn.tables else []
        elif "information_schema.columns" in sql:
            self._rows = [(column,) for column in self.conn.tables.get(params[0], [])]
        elif sql == "SELECT LAST_INSERT_ID()":
            self.conn.last_id += 1
            self._rows = [(self.conn.last_id,)]
        elif sql.startswith("SELECT ") and " FROM `" in sql:
            name = sql.split(" FROM `", 1)[1].split("`", 1)[0]
            self._rows = list(self.conn.rows.get(name, []))
        else:
            self._rows = []

    def fetchone(self) -> Optional[tuple]:
        return self._rows[0] if self._rows else None

    def fetchall(self) -> List[tuple]:
        return list(self._rows)


class RecordingConnection:
    """Stands in for a mysql.connector connection; no server needed.

    tables maps table name -> live columns; rows maps table name -> the rows
    a plain SELECT from it returns. LAST_INSERT_ID() counts up from 1.
    """

    def __init__(
        self,
        tables: Optional[Dict[str, List[str]]] = None,
        rows: Optional[Dict[str, List[tuple]]] = None,
    ):
        self.tables = dict(tables or {})
        self.rows = dict(rows or {})
        self.statements: List[str] = []
        self.commits = 0
        self.rollbacks = 0
        self.last_id = 0

    def cursor(self, buffered: bool = False) -> RecordingCursor:
        return RecordingCursor(self)

    def start_transaction(self) -> None:
        self.statements.append("START TRANSACTION")

    def commit(self) -> None:
        self.commits += 1

    def rollback(self) -> None:
        self.rollbacks += 1

    def close(self) -> None:
        pass

    @property
    def ddl(self) -> List[str]:
        return [s for s in self.statements if s.startswith(("CREATE", "ALTER", "DROP"))]


@pytest.fixture
def mysql_db() -> Callable[..., Database]:
    """Factory for a Database speaking MySQL to a recording connection.

    Example:
        db = mysql_db({"users": ["userid", "email"]})
    """

    def _make(
        tables: Optional[Dict[str, List[str]]] = None,
        rows: Optional[Dict[str, List[tuple]]] = None,
    ) -> Database:
        info = ConnectionInfo(DialectName.MYSQL, database="gbrowse_login", host="localhost", user="gb")
        return Database(RecordingConnection(tables, rows), MySQLDialect(), info)

    return _make
