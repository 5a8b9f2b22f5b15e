"""Tests for metadb_pkg.setup_db module."""

import pytest

from metadb_pkg.errors import ConfigurationError, MigrationFailed
from metadb_pkg.runner import MigrationRegistry
from metadb_pkg.schema import CURRENT_TABLES, OPENID_USERS, tables_for_version
from metadb_pkg.setup_db import schema_status, setup_database

from test_runner import CreateTableStep


def columns(db, name):
    return db.dialect.live_columns(db.cursor(), name)


def record_version(db, version):
    db.execute("CREATE TABLE dbinfo (schema_version integer not null)")
    db.execute("INSERT INTO dbinfo (schema_version) VALUES (?)", (version,))


def test_unknown_version_has_no_tables():
    with pytest.raises(ConfigurationError):
        tables_for_version(99)


class TestSetupDatabase:
    """Tests for the full setup flow."""

    def test_fresh_database(self, sqlite_db):
        """Every current table exists with exactly its declared columns."""
        report = setup_database(sqlite_db)

        assert report.upgrade.final_version == 1
        for schema in CURRENT_TABLES:
            assert columns(sqlite_db, schema.name) == schema.column_names
        # users, session and uploads come from the migration itself
        assert report.changed_tables == [OPENID_USERS.name]

    def test_second_run_changes_nothing(self, sqlite_db):
        setup_database(sqlite_db)

        report = setup_database(sqlite_db)

        assert report.upgrade.applied == []
        assert report.changed_tables == []

    def test_legacy_database(self, legacy_db):
        report = setup_database(legacy_db)

        assert report.upgrade.applied == [1]
        assert report.upgrade.steps[0].total_orphans == 1
        assert len(legacy_db.query_all("SELECT trackid FROM uploads")) == 2

    def test_extra_column_dropped(self, sqlite_db):
        setup_database(sqlite_db)
        sqlite_db.execute("ALTER TABLE users ADD COLUMN nickname text")

        report = setup_database(sqlite_db)

        users = next(r for r in report.tables if r.table == "users")
        assert users.dropped == 1
        assert "nickname" not in columns(sqlite_db, "users")

    def test_failed_migration_skips_reconcile(self, sqlite_db):
        registry = MigrationRegistry([CreateTableStep(1, fail=True)])

        with pytest.raises(MigrationFailed):
            setup_database(sqlite_db, registry=registry)

        assert not sqlite_db.dialect.table_exists(sqlite_db.cursor(), "openid_users")

    def test_newer_database_refused_before_backup(self, sqlite_db, temp_dir):
        """A version with no known table definitions stops before the snapshot."""
        record_version(sqlite_db, 2)

        with pytest.raises(ConfigurationError, match="newer than this tool"):
            setup_database(sqlite_db)

        assert [p for p in temp_dir.iterdir() if "_" in p.name] == []
        assert not sqlite_db.dialect.table_exists(sqlite_db.cursor(), "users")

    def test_known_newer_version_reconciles_its_own_tables(self, sqlite_db):
        setup_database(sqlite_db)

        report = setup_database(sqlite_db, target=0)

        assert report.upgrade.final_version == 1
        assert report.changed_tables == []
        assert [r.table for r in report.tables] == [s.name for s in CURRENT_TABLES]


class TestSchemaStatus:
    """Tests for the dry-run report."""

    def test_fresh_database_all_absent(self, sqlite_db):
        plans = schema_status(sqlite_db)

        assert [p.table for p in plans] == [s.name for s in CURRENT_TABLES] + ["dbinfo"]
        assert not any(p.exists for p in plans)
        assert not sqlite_db.dialect.table_exists(sqlite_db.cursor(), "users")

    def test_after_setup_all_match(self, sqlite_db):
        setup_database(sqlite_db)

        assert all(p.is_noop for p in schema_status(sqlite_db))

    def test_legacy_database_differs(self, legacy_db):
        plans = {p.table: p for p in schema_status(legacy_db)}

        assert "uploadsid" in plans["users"].extra
        assert "trackid" in plans["uploads"].missing
        assert not plans["session"].exists
