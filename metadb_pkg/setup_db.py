"""Whole-database setup: migrate, then reconcile every application table.

This is what the `metadb setup` command runs. Table reconciliation only
happens after the migration runner succeeds; a failed migration stops the
whole setup.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from .backup import BackupManager
from .database import Database
from .enums import OrphanPolicy
from .errors import ConfigurationError
from .logging_setup import log_info
from .reconcile import ReconcilePlan, ReconcileResult, TableReconciler
from .runner import MigrationRegistry, MigrationRunner, UpgradeReport
from .schema import (
    DBINFO,
    METADATA_TABLE,
    SCHEMA_VERSION,
    SCHEMAS_BY_VERSION,
    TableSchema,
    tables_for_version,
)


@dataclass
class SetupReport:
    upgrade: UpgradeReport
    tables: List[ReconcileResult] = field(default_factory=list)

    @property
    def changed_tables(self) -> List[str]:
        return [result.table for result in self.tables if result.changed]


def setup_database(
    db: Database,
    target: int = SCHEMA_VERSION,
    registry: Optional[MigrationRegistry] = None,
    backup_manager: Optional[BackupManager] = None,
    orphan_policy: OrphanPolicy = OrphanPolicy.SKIP,
    tables: Optional[Sequence[TableSchema]] = None,
) -> SetupReport:
    """Upgrade the schema to target, then reconcile each table of that version.

    Raises:
        ConfigurationError: Before any backup, if the database records a
            version newer than any this tool has table definitions for
        Any error of MigrationRunner.upgrade_to; no table is reconciled then.
        SchemaError: If reconciling a table fails
    """
    runner = MigrationRunner(db, registry, backup_manager, orphan_policy)
    if tables is None:
        current = runner.current_version()
        if current > target and current not in SCHEMAS_BY_VERSION:
            raise ConfigurationError(
                f"Database is at schema version {current}, newer than this tool "
                f"supports (version {SCHEMA_VERSION}); upgrade metadb"
            )
    report = SetupReport(upgrade=runner.upgrade_to(target))

    if tables is None:
        tables = tables_for_version(report.upgrade.final_version)
    for schema in tables:
        with db.transaction():
            report.tables.append(runner.reconciler.reconcile(schema.name, schema))

    if report.changed_tables:
        log_info(f"Reconciled tables: {', '.join(report.changed_tables)}")
    else:
        log_info("All tables match their schema")
    return report


def schema_status(db: Database, version: int = SCHEMA_VERSION) -> List[ReconcilePlan]:
    """Dry run: what reconciliation would do to each table, without doing it."""
    reconciler = TableReconciler(db)
    plans = [reconciler.plan(schema.name, schema) for schema in tables_for_version(version)]
    plans.append(reconciler.plan(METADATA_TABLE, DBINFO))
    return plans
