"""Schema-version upgrade steps for the accounts database.

Each migration is a separate file that moves the database from version N-1
to version N, restructuring tables and rewriting rows as needed.

## Migration System Architecture

1. **Migration base class**: the interface every step implements
   - `version` property: version the step produces (int)
   - `from_version` property: version the step starts from (version - 1)
   - `description` property: human-readable description (str)
   - `tables` property: every TableSchema the step reconciles, so that
     the runner can check the dialect can render them before touching
     the database
   - `in_place_tables` property: the subset reconciled in place, whose
     ALTER statements the runner plans against the live tables
   - `upgrade()` method: applies the step and returns a StepReport

2. **Migration registry**: `get_all_migrations()` returns one instance of
   each step; metadb_pkg.runner.MigrationRegistry keys them by
   `from_version` and rejects gaps before any backup or DDL.

3. **Execution**: the runner calls `upgrade()` inside one transaction and
   records the new version in that same transaction.

## Creating New Migrations

1. Create `migration_XXX_description.py` with a Migration subclass
2. Add it to `get_all_migrations()`
3. Add the new table definitions and bump SCHEMA_VERSION in schema.py

## Design Decisions

- **One-way migrations**: no downgrade support
- **Contiguous numbering**: 0 -> 1 -> 2 ..., a missing step is a
  configuration error, never skipped
- **Defensive start**: each step first reconciles the tables it reads to
  their last shape for the version being left
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Sequence

from ..enums import OrphanPolicy
from ..schema import TableSchema

if TYPE_CHECKING:
    from ..database import Database
    from ..reconcile import TableReconciler


@dataclass
class StepReport:
    """Row counts from one migration step."""

    version: int
    migrated: Dict[str, int] = field(default_factory=dict)
    """Rows written per target table."""

    orphans: Dict[str, int] = field(default_factory=dict)
    """Rows skipped per target table because their owner had no mapping."""

    @property
    def total_orphans(self) -> int:
        return sum(self.orphans.values())


class Migration(ABC):
    """Base class for schema-version upgrade steps."""

    @property
    @abstractmethod
    def version(self) -> int:
        """Schema version this step produces."""
        pass

    @property
    def from_version(self) -> int:
        return self.version - 1

    @property
    @abstractmethod
    def description(self) -> str:
        """Human-readable description of this migration."""
        pass

    @property
    def tables(self) -> Sequence[TableSchema]:
        """Table definitions this step reconciles."""
        return ()

    @property
    def in_place_tables(self) -> Sequence[TableSchema]:
        """Tables reconciled under their own name against what is already there.

        The runner plans these against the live database before the backup,
        so an ALTER the dialect cannot express is refused up front.
        """
        return self.tables

    @abstractmethod
    def upgrade(
        self,
        db: "Database",
        reconciler: "TableReconciler",
        orphan_policy: OrphanPolicy = OrphanPolicy.SKIP,
    ) -> StepReport:
        """Apply this migration inside the caller's transaction.

        Args:
            db: Database to migrate
            reconciler: Reconciler bound to the same database
            orphan_policy: How to treat dependent rows with no owner

        Returns:
            Row counts for logging
        """
        pass


def get_all_migrations() -> List[Migration]:
    """Get all migrations in version order."""
    from . import migration_001_session_split

    migrations = [
        migration_001_session_split.Migration001(),
    ]

    return sorted(migrations, key=lambda m: m.version)
