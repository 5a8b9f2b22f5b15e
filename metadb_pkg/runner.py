"""Versioned migration runner.

Reads the schema version recorded in the metadata table, snapshots the
database, and applies the registered steps one version at a time. Each step
runs in its own transaction together with the write of its new version, so
a failure leaves the database at the last version that committed and a
later run resumes from there.

Preconditions: the runner must have exclusive use of the database for the
duration of a run (e.g. a maintenance window); nothing here locks out other
writers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional

from .backup import BackupManager
from .database import Database
from .enums import OrphanPolicy
from .errors import ConfigurationError, MigrationFailed, MissingMigrationStep
from .logging_setup import log_error, log_info, log_timing, log_warning
from .migrations import Migration, StepReport, get_all_migrations
from .reconcile import TableReconciler
from .schema import DBINFO, METADATA_TABLE, SCHEMA_VERSION, VERSION_COLUMN


# ========== Registry ==========

class MigrationRegistry:
    """Ordered lookup table of upgrade steps keyed by the version they start from."""

    def __init__(self, migrations: Iterable[Migration] = ()):
        self._steps: Dict[int, Migration] = {}
        for migration in migrations:
            self.register(migration)

    def register(self, migration: Migration) -> None:
        """Add a step.

        Raises:
            ConfigurationError: If another step already starts from the same version
        """
        if migration.from_version < 0:
            raise ConfigurationError(f"Migration {migration.version} would start below version 0")
        existing = self._steps.get(migration.from_version)
        if existing is not None:
            raise ConfigurationError(
                f"Two migrations start from version {migration.from_version}: "
                f"{existing.description!r} and {migration.description!r}"
            )
        self._steps[migration.from_version] = migration

    def get(self, from_version: int) -> Migration:
        """Step for from_version -> from_version + 1.

        Raises:
            MissingMigrationStep: If none is registered
        """
        try:
            return self._steps[from_version]
        except KeyError:
            raise MissingMigrationStep(from_version, from_version + 1) from None

    def chain(self, current: int, target: int) -> List[Migration]:
        """Steps current -> current+1 -> ... -> target, in order.

        Raises:
            MissingMigrationStep: On the first gap in the sequence
        """
        return [self.get(version) for version in range(current, target)]

    def validate(self, target: int) -> None:
        """Check that every step from 0 up to target is registered."""
        self.chain(0, target)

    @property
    def latest_version(self) -> int:
        return max(self._steps) + 1 if self._steps else 0

    def __iter__(self) -> Iterator[Migration]:
        return iter(self._steps[v] for v in sorted(self._steps))

    def __len__(self) -> int:
        return len(self._steps)


def default_registry(target: int = SCHEMA_VERSION) -> MigrationRegistry:
    """Registry of the built-in migrations, checked to reach target."""
    registry = MigrationRegistry(get_all_migrations())
    registry.validate(target)
    return registry


# ========== Runner ==========

@dataclass
class UpgradeReport:
    start_version: int
    final_version: int
    backup: Optional[Path] = None
    steps: List[StepReport] = field(default_factory=list)

    @property
    def applied(self) -> List[int]:
        return [step.version for step in self.steps]


class MigrationRunner:
    """Brings one database from its recorded schema version to a target.

    Args:
        db: Database to upgrade; used exclusively for the whole run
        registry: Upgrade steps (default: built-in migrations)
        backup_manager: Snapshot taker (default: beside the SQLite file or
            in the current directory for MySQL)
        orphan_policy: Passed to every step
    """

    def __init__(
        self,
        db: Database,
        registry: Optional[MigrationRegistry] = None,
        backup_manager: Optional[BackupManager] = None,
        orphan_policy: OrphanPolicy = OrphanPolicy.SKIP,
    ):
        self.db = db
        self.dialect = db.dialect
        self.registry = registry if registry is not None else default_registry()
        self.backup_manager = backup_manager or BackupManager(db.dialect, db.info)
        self.orphan_policy = orphan_policy
        self.reconciler = TableReconciler(db)

    # ========== Version bookkeeping ==========

    def current_version(self) -> int:
        """Recorded schema version; 0 when the metadata table or its row is absent."""
        if not self.dialect.table_exists(self.db.cursor(), METADATA_TABLE):
            return 0
        row = self.db.query_one(
            f"SELECT MAX({self.dialect.quote(VERSION_COLUMN)}) FROM {self.dialect.quote(METADATA_TABLE)}"
        )
        if row is None or row[0] is None:
            return 0
        return int(row[0])

    def _write_version(self, version: int) -> None:
        # Single-row table: clear, then insert-or-replace the new value
        self.db.execute(f"DELETE FROM {self.dialect.quote(METADATA_TABLE)}")
        self.db.execute(
            self.dialect.insert(METADATA_TABLE, [VERSION_COLUMN], replace=True),
            (version,),
        )

    # ========== Planning ==========

    def plan(self, target: int, current: Optional[int] = None) -> List[Migration]:
        """Steps needed to reach target, checked before anything is changed.

        Every declared table must render as CREATE TABLE. The in-place
        tables of the first step are also planned against the live
        database, since only that step starts from the current state.

        Raises:
            MissingMigrationStep: If the chain has a gap
            UnsupportedType: If a table a step uses cannot be rendered, or
                the first step needs an ALTER the dialect cannot express
            SchemaError: If a live table cannot be inspected
        """
        if current is None:
            current = self.current_version()
        steps = self.registry.chain(current, target) if target > current else []
        self.dialect.render_table(DBINFO)
        for step in steps:
            for schema in step.tables:
                self.dialect.render_table(schema)
        if steps:
            for schema in steps[0].in_place_tables:
                self.reconciler.plan(schema.name, schema)
        return steps

    # ========== Upgrade ==========

    @log_timing
    def upgrade_to(self, target: int = SCHEMA_VERSION) -> UpgradeReport:
        """Apply every step between the recorded version and target.

        Order of work: configuration checks, backup, metadata table, steps.
        A backup is taken even when there is nothing to apply.

        Raises:
            MissingMigrationStep: Before any backup or DDL
            UnsupportedType: Before any backup or DDL
            BackupFailed: Before any DDL
            MigrationFailed: A step was rolled back; earlier steps of this
                run stay committed
        """
        if target < 0:
            raise ConfigurationError(f"Target schema version must not be negative, got {target}")

        start = self.current_version()
        steps = self.plan(target, start)
        log_info(f"Current database schema version: {start} (target {target})")
        if target < start:
            log_warning(
                f"Database schema version {start} is newer than target {target}; "
                "downgrades are not supported, nothing to do"
            )

        report = UpgradeReport(start_version=start, final_version=start)
        report.backup = self.backup_manager.snapshot()

        with self.db.transaction():
            self.reconciler.reconcile(METADATA_TABLE, DBINFO)
            rows = self.db.query_one(f"SELECT COUNT(*) FROM {self.dialect.quote(METADATA_TABLE)}")
            if rows is None or rows[0] != 1:
                self._write_version(start)

        if steps:
            log_info(f"Running {len(steps)} pending database migration(s)...")

        for step in steps:
            log_info(f"  Applying migration {step.version}: {step.description}")
            try:
                with self.db.transaction():
                    step_report = step.upgrade(self.db, self.reconciler, self.orphan_policy)
                    self._write_version(step.version)
            except Exception as e:
                log_error(f"  [FAILED] Migration {step.from_version} -> {step.version} failed: {e}")
                log_error(f"  Rolled back. Current schema version: {report.final_version}")
                raise MigrationFailed(step.from_version, step.version, report.final_version, e) from e

            report.steps.append(step_report)
            report.final_version = step.version
            log_info(f"  [OK] Successfully upgraded schema from {step.from_version} to {step.version}")

        if steps:
            log_info(f"Database schema updated to version {report.final_version}")
        else:
            log_info(f"Database schema is up to date (version {report.final_version})")
        return report
