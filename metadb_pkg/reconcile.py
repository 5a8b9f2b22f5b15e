"""Table reconciliation: make a live table match its declared schema.

For one table the reconciler either creates it with every declared column,
or compares live and declared column names and issues the DDL to close the
gap: extra columns are dropped first, then missing columns are added (one
statement per column on SQLite, a single batch ALTER on MySQL).

Reconciling a table that already matches issues no DDL at all, so it is
safe to run on every setup.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

from .database import Database
from .errors import SchemaError
from .logging_setup import log_debug, log_info
from .schema import TableSchema


@dataclass
class ReconcilePlan:
    """DDL needed to bring one table in line, computed without applying it."""

    table: str
    exists: bool
    missing: List[str] = field(default_factory=list)
    extra: List[str] = field(default_factory=list)
    statements: List[str] = field(default_factory=list)
    column_count: int = 0

    @property
    def is_noop(self) -> bool:
        return not self.statements


@dataclass
class ReconcileResult:
    """What reconcile() did; informational only."""

    table: str
    created: int = 0
    """Columns created with a new table (0 if the table existed)."""

    added: int = 0
    dropped: int = 0
    statements: List[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.statements)


class TableReconciler:
    """Reconciles tables of one database through its dialect."""

    def __init__(self, db: Database):
        self.db = db
        self.dialect = db.dialect

    def _probe(self, table_name: str) -> tuple:
        cursor = self.db.cursor()
        try:
            if not self.dialect.table_exists(cursor, table_name):
                return False, []
            return True, self.dialect.live_columns(cursor, table_name)
        except self.dialect.driver_errors() as e:
            raise SchemaError(f"Could not inspect table {table_name}: {e}") from e

    def plan(self, table_name: str, desired: TableSchema) -> ReconcilePlan:
        """Work out the DDL for table_name without running it.

        Raises:
            UnsupportedType: If a declared column cannot be rendered
            SchemaError: If the live table cannot be inspected
        """
        exists, live = self._probe(table_name)
        plan = ReconcilePlan(table=table_name, exists=exists, column_count=len(desired.columns))

        if not exists:
            plan.missing = desired.column_names
            plan.statements.append(self.dialect.create_table(desired.renamed(table_name)))
            return plan

        declared = {name.lower() for name in desired.columns}
        live_set = set(live)
        plan.missing = [name for name in desired.columns if name.lower() not in live_set]
        plan.extra = [name for name in live if name not in declared]

        # Drops go first so a re-declared column is never seen as stale
        for column_name in plan.extra:
            plan.statements.append(self.dialect.drop_column(table_name, column_name))

        if plan.missing:
            if self.dialect.supports_batch_alter:
                plan.statements.append(
                    self.dialect.add_columns(
                        table_name, [(name, desired.columns[name]) for name in plan.missing]
                    )
                )
            else:
                for column_name in plan.missing:
                    plan.statements.extend(
                        self.dialect.add_column(table_name, column_name, desired.columns[column_name])
                    )
        return plan

    def apply(self, plan: ReconcilePlan) -> ReconcileResult:
        """Run the statements of a plan in order.

        Raises:
            SchemaError: On the first statement the driver rejects
        """
        result = ReconcileResult(table=plan.table)
        if plan.is_noop:
            log_debug(f"{plan.table} table matches its schema")
            return result

        if not plan.exists:
            log_info(f"{plan.table} table didn't exist, creating...")
        else:
            if plan.extra:
                log_info(f"Dropping the following columns from {plan.table}: {', '.join(plan.extra)}")
            if plan.missing:
                log_info(
                    f"{plan.table} table schema is incorrect, adding {len(plan.missing)} missing "
                    f"column{'s' if len(plan.missing) > 1 else ''}: {', '.join(plan.missing)}"
                )

        for statement in plan.statements:
            try:
                self.db.execute(statement)
            except self.dialect.driver_errors() as e:
                raise SchemaError(str(e), statement) from e
            result.statements.append(statement)

        if plan.exists:
            result.added = len(plan.missing)
            result.dropped = len(plan.extra)
        else:
            result.created = plan.column_count
        return result

    def reconcile(self, table_name: str, desired: TableSchema) -> ReconcileResult:
        """Bring table_name in line with desired, creating it if absent.

        Calling it twice with no schema change in between issues no DDL the
        second time.

        Raises:
            UnsupportedType: If a declared column cannot be rendered
            SchemaError: If any DDL statement fails
        """
        return self.apply(self.plan(table_name, desired))
