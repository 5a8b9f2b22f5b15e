"""Tests for migration 001 (session split and uploads remap)."""

import pytest

from metadb_pkg.enums import OrphanPolicy
from metadb_pkg.errors import DataMigrationError, MigrationFailed, OrphanedRow
from metadb_pkg.migrations import get_all_migrations
from metadb_pkg.migrations.migration_001_session_split import Migration001
from metadb_pkg.migrations.remap import IdentityMap
from metadb_pkg.reconcile import TableReconciler
from metadb_pkg.runner import MigrationRunner
from metadb_pkg.schema import LEGACY_UPLOADS, LEGACY_USERS, SESSION, UPLOADS, USERS

from conftest import LEGACY_UPLOAD_ROWS, LEGACY_USER_ROWS, build_legacy_database


def columns(db, name):
    return db.dialect.live_columns(db.cursor(), name)


def table_exists(db, name):
    return db.dialect.table_exists(db.cursor(), name)


def session_ids(db):
    """username -> (userid, sessionid, uploadsid)"""
    rows = db.query_all("SELECT userid, username, sessionid, uploadsid FROM session")
    return {row["username"]: (row["userid"], row["sessionid"], row["uploadsid"]) for row in rows}


class TestIdentityMap:
    """Tests for the opaque id -> surrogate key map."""

    def test_lookup(self):
        owners = IdentityMap("uploadsid")
        owners.assign("up-a", 7)

        assert owners.lookup("up-a", "uploads") == 7
        assert "up-a" in owners
        assert len(owners) == 1

    def test_miss_is_orphan(self):
        owners = IdentityMap("uploadsid")

        with pytest.raises(OrphanedRow) as exc_info:
            owners.lookup("up-ghost", "uploads")

        assert exc_info.value.table == "uploads"
        assert exc_info.value.identity == "up-ghost"
        assert owners.get("up-ghost") is None


def test_registered_as_first_step():
    migrations = get_all_migrations()
    assert [m.version for m in migrations] == [1]
    assert migrations[0].from_version == 0


class TestSessionSplit:
    """Full 0 -> 1 data migration on a populated legacy database."""

    @pytest.fixture
    def report(self, legacy_db):
        return MigrationRunner(legacy_db).upgrade_to(1)

    def test_version_recorded(self, legacy_db, report):
        assert report.start_version == 0
        assert report.applied == [1]
        assert MigrationRunner(legacy_db).current_version() == 1

    def test_tables_have_current_shape(self, legacy_db, report):
        assert columns(legacy_db, "users") == USERS.column_names
        assert columns(legacy_db, "session") == SESSION.column_names
        assert columns(legacy_db, "uploads") == UPLOADS.column_names
        assert not table_exists(legacy_db, "users_new")
        assert not table_exists(legacy_db, "uploads_new")

    def test_sessions_carry_opaque_ids(self, legacy_db, report):
        sessions = session_ids(legacy_db)

        assert set(sessions) == {"alice", "bob"}
        assert sessions["alice"][1:] == ("sess-alice", "up-alice")
        assert sessions["bob"][1:] == ("sess-bob", "up-bob")
        assert sessions["alice"][0] != sessions["bob"][0]

    def test_users_keyed_by_session_userid(self, legacy_db, report):
        sessions = session_ids(legacy_db)
        rows = legacy_db.query_all("SELECT userid, email, pass, cnfrm_code FROM users")
        by_email = {row["email"]: tuple(row) for row in rows}

        assert by_email["alice@example.org"] == (sessions["alice"][0], "alice@example.org", "pw1", "code-a")
        assert by_email["bob@example.org"][0] == sessions["bob"][0]

    def test_uploads_remapped_to_userid(self, legacy_db, report):
        sessions = session_ids(legacy_db)
        rows = legacy_db.query_all("SELECT trackid, userid, title, sharing_policy FROM uploads")
        uploads = {row["trackid"]: tuple(row) for row in rows}

        assert uploads["track-a"] == ("track-a", sessions["alice"][0], "Alice track", "private")
        assert uploads["track-b"] == ("track-b", sessions["bob"][0], "Bob track", "public")

    def test_orphans_skipped_and_counted(self, legacy_db, report):
        """Migrated uploads = source rows - orphaned rows."""
        step = report.steps[0]
        remaining = legacy_db.query_all("SELECT trackid FROM uploads")

        assert step.orphans == {"uploads": 1}
        assert step.migrated == {"users": len(LEGACY_USER_ROWS), "uploads": len(LEGACY_UPLOAD_ROWS) - 1}
        assert len(remaining) == len(LEGACY_UPLOAD_ROWS) - step.total_orphans
        assert "track-orphan" not in {row["trackid"] for row in remaining}

    def test_session_index_created(self, legacy_db, report):
        assert legacy_db.dialect.index_exists(legacy_db.cursor(), "session", "index_session")

    def test_rerun_is_noop(self, legacy_db, report):
        again = MigrationRunner(legacy_db).upgrade_to(1)

        assert again.applied == []
        assert len(legacy_db.query_all("SELECT trackid FROM uploads")) == 2


class TestOrphanPolicyFail:
    """OrphanPolicy.FAIL turns the first orphan into a rolled-back step."""

    def test_step_rolled_back(self, legacy_db):
        runner = MigrationRunner(legacy_db, orphan_policy=OrphanPolicy.FAIL)

        with pytest.raises(MigrationFailed) as exc_info:
            runner.upgrade_to(1)

        assert isinstance(exc_info.value.cause, DataMigrationError)
        assert exc_info.value.last_good_version == 0
        assert runner.current_version() == 0
        assert columns(legacy_db, "users") == LEGACY_USERS.column_names
        assert not table_exists(legacy_db, "session")
        assert len(legacy_db.query_all("SELECT uploadid FROM uploads")) == len(LEGACY_UPLOAD_ROWS)

    def test_no_orphans_succeeds(self, sqlite_db):
        build_legacy_database(sqlite_db, uploads=LEGACY_UPLOAD_ROWS[:2])

        report = MigrationRunner(sqlite_db, orphan_policy=OrphanPolicy.FAIL).upgrade_to(1)

        assert report.steps[0].total_orphans == 0


class TestEdgeCases:
    """Databases that are not a clean version 0."""

    def test_empty_database(self, sqlite_db):
        """A brand-new database gets every table created empty."""
        report = MigrationRunner(sqlite_db).upgrade_to(1)

        assert report.steps[0].migrated == {"users": 0, "uploads": 0}
        assert columns(sqlite_db, "users") == USERS.column_names
        assert columns(sqlite_db, "uploads") == UPLOADS.column_names

    def test_leftover_temporary_table_dropped(self, legacy_db):
        """A users_new from an interrupted run does not block the step."""
        legacy_db.execute("CREATE TABLE users_new (junk text)")

        MigrationRunner(legacy_db).upgrade_to(1)

        assert columns(legacy_db, "users") == USERS.column_names
        assert "junk" not in columns(legacy_db, "users")

    def test_declares_tables_for_validation(self):
        names = [schema.name for schema in Migration001().tables]
        assert names == ["users", "session", "users", "uploads", "uploads"]


class TestMySQLStatements:
    """Statement sequence of the step on MySQL, against a recording connection."""

    @pytest.fixture
    def db(self, mysql_db):
        return mysql_db(
            tables={"users": LEGACY_USERS.column_names, "uploads": LEGACY_UPLOADS.column_names},
            rows={"users": LEGACY_USER_ROWS, "uploads": LEGACY_UPLOAD_ROWS},
        )

    @pytest.fixture
    def report(self, db):
        return Migration001().upgrade(db, TableReconciler(db))

    def test_row_counts(self, report):
        assert report.migrated == {"users": 2, "uploads": 2}
        assert report.orphans == {"uploads": 1}

    def test_ddl_sequence(self, db, report):
        ddl = db.conn.ddl

        assert ddl[0].startswith("CREATE TABLE `session` (")
        assert ddl[1].startswith("CREATE TABLE `users_new` (")
        assert ddl[1].endswith(") ENGINE=InnoDB")
        assert ddl[2:5] == [
            "DROP TABLE `users`",
            "ALTER TABLE `users_new` RENAME TO `users`",
            "CREATE INDEX `index_session` ON `session` (`username`)",
        ]
        assert ddl[5].startswith("CREATE TABLE `uploads_new` (")
        assert ddl[6:] == [
            "DROP TABLE `uploads`",
            "ALTER TABLE `uploads_new` RENAME TO `uploads`",
        ]

    def test_session_ids_come_from_last_insert_id(self, db, report):
        writes = [
            s.split(" (", 1)[0]
            for s in db.conn.statements
            if s.startswith(("REPLACE INTO", "SELECT LAST_INSERT_ID()"))
        ]

        assert writes == [
            "REPLACE INTO `session`",
            "SELECT LAST_INSERT_ID()",
            "REPLACE INTO `users_new`",
            "REPLACE INTO `session`",
            "SELECT LAST_INSERT_ID()",
            "REPLACE INTO `users_new`",
            "REPLACE INTO `uploads_new`",
            "REPLACE INTO `uploads_new`",
        ]
