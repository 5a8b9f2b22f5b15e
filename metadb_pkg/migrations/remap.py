"""Row copying and foreign-key remapping helpers for migration steps."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, Optional, Sequence, Tuple

from ..database import Database
from ..enums import OrphanPolicy
from ..errors import DataMigrationError, OrphanedRow, SchemaError
from ..logging_setup import log_info, log_warning


class IdentityMap:
    """Opaque identity -> surrogate key, built while a step runs.

    Dependent tables processed later in the same step look their owners up
    here; a miss raises OrphanedRow.
    """

    def __init__(self, name: str):
        self.name = name
        self._keys: Dict[Hashable, int] = {}

    def assign(self, identity: Hashable, key: int) -> None:
        self._keys[identity] = key

    def lookup(self, identity: Hashable, table: str) -> int:
        try:
            return self._keys[identity]
        except KeyError:
            raise OrphanedRow(table, identity) from None

    def get(self, identity: Hashable) -> Optional[int]:
        return self._keys.get(identity)

    def __contains__(self, identity: object) -> bool:
        return identity in self._keys

    def __len__(self) -> int:
        return len(self._keys)


@dataclass
class CopyStats:
    source_rows: int = 0
    migrated: int = 0
    orphans: int = 0


def run_ddl(db: Database, statement: str) -> None:
    """Execute a DDL statement, wrapping driver errors in SchemaError."""
    try:
        db.execute(statement)
    except db.dialect.driver_errors() as e:
        raise SchemaError(str(e), statement) from e


def copy_rows(
    db: Database,
    source_table: str,
    source_columns: Sequence[str],
    target_table: str,
    target_columns: Sequence[str],
    transform: Callable[[Sequence[Any]], Tuple[Any, ...]],
    orphan_policy: OrphanPolicy = OrphanPolicy.SKIP,
) -> CopyStats:
    """Copy every row of source_table into target_table through transform.

    transform receives the source row (in source_columns order) and returns
    the values for target_columns. It may write to other tables itself and
    may raise OrphanedRow, in which case the row is skipped and counted, or
    under OrphanPolicy.FAIL the copy aborts with DataMigrationError.

    Raises:
        DataMigrationError: If a row cannot be read, transformed or written
    """
    dialect = db.dialect
    insert = dialect.insert(target_table, target_columns, replace=True)
    stats = CopyStats()

    try:
        rows = db.query_all(dialect.select(source_table, source_columns))
    except dialect.driver_errors() as e:
        raise DataMigrationError(f"Could not read rows from {source_table}: {e}") from e

    for row in rows:
        stats.source_rows += 1
        try:
            values = transform(row)
            db.execute(insert, values)
        except OrphanedRow as orphan:
            if orphan_policy == OrphanPolicy.FAIL:
                raise DataMigrationError(str(orphan)) from orphan
            log_warning(f"{orphan}; no corresponding user. Skipping...")
            stats.orphans += 1
            continue
        except dialect.driver_errors() as e:
            raise DataMigrationError(
                f"Could not migrate row from {source_table} into {target_table}: {e}"
            ) from e
        stats.migrated += 1

    log_info(
        f"Migrated {stats.migrated} of {stats.source_rows} rows from {source_table} to {target_table}"
        + (f" ({stats.orphans} orphaned rows skipped)" if stats.orphans else "")
    )
    return stats
