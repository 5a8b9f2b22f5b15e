"""Migration 001: Split user identity into numeric users and a session table.

In version 0 a user's primary key is the opaque session id handed out by
the web front end, and uploads point at the user through the opaque uploads
id. Version 1 gives every user a database-assigned numeric userid, moves the
opaque ids into the session table, and makes uploads reference the numeric
userid.

Uploads whose uploads id matches no user cannot be attached to anyone and
are skipped with a warning (or abort the step under OrphanPolicy.FAIL).
"""

from __future__ import annotations

from typing import Any, Sequence, Tuple

from . import Migration, StepReport
from .remap import IdentityMap, copy_rows, run_ddl
from ..database import Database
from ..enums import OrphanPolicy
from ..errors import DataMigrationError
from ..logging_setup import log_info
from ..reconcile import TableReconciler
from ..schema import (
    LEGACY_UPLOADS,
    LEGACY_USERS,
    SESSION,
    TableSchema,
    UPLOADS,
    USERS,
)

USERS_TMP = "users_new"
UPLOADS_TMP = "uploads_new"
SESSION_INDEX = "index_session"

LEGACY_USER_COLUMNS = LEGACY_USERS.column_names
USER_COLUMNS = USERS.column_names
LEGACY_UPLOAD_COLUMNS = LEGACY_UPLOADS.column_names
UPLOAD_COLUMNS = UPLOADS.column_names


class Migration001(Migration):
    """Give users surrogate keys and remap uploads onto them."""

    @property
    def version(self) -> int:
        return 1

    @property
    def description(self) -> str:
        return "Move opaque session ids to a session table and key users by number"

    @property
    def tables(self) -> Sequence[TableSchema]:
        return (LEGACY_USERS, SESSION, USERS, LEGACY_UPLOADS, UPLOADS)

    @property
    def in_place_tables(self) -> Sequence[TableSchema]:
        # users and uploads are rebuilt under temporary names
        return (LEGACY_USERS, SESSION, LEGACY_UPLOADS)

    def upgrade(
        self,
        db: Database,
        reconciler: TableReconciler,
        orphan_policy: OrphanPolicy = OrphanPolicy.SKIP,
    ) -> StepReport:
        """Migrate users, then uploads.

        This migration:
        1. Brings users to its final version 0 shape
        2. Creates session and users_new
        3. Moves each user's opaque ids into session and the rest of the row
           into users_new under the session's new numeric userid
        4. Swaps users_new in for users
        5. Does the same for uploads, translating uploads ids to userids
        """
        dialect = db.dialect
        report = StepReport(self.version)
        owners = IdentityMap("uploadsid")

        # Leftovers of an interrupted run on an engine without transactional DDL
        cursor = db.cursor()
        for leftover in (USERS_TMP, UPLOADS_TMP):
            if dialect.table_exists(cursor, leftover):
                run_ddl(db, dialect.drop_table(leftover))

        # ========== users -> session + users ==========
        reconciler.reconcile(LEGACY_USERS.name, LEGACY_USERS)
        reconciler.reconcile(SESSION.name, SESSION)
        reconciler.reconcile(USERS_TMP, USERS)

        insert_session = dialect.insert(SESSION.name, ["username", "sessionid", "uploadsid"], replace=True)

        def move_user(row: Sequence[Any]) -> Tuple[Any, ...]:
            values = tuple(row)
            sessionid, uploadsid, username = values[0], values[1], values[2]
            cursor = db.execute(insert_session, (username, sessionid, uploadsid))
            userid = dialect.fetch_last_insert_id(cursor)
            if not userid:
                raise DataMigrationError(f"Didn't get an autoincrement ID for session {sessionid}")
            owners.assign(uploadsid, userid)
            return (userid,) + values[3:]

        stats = copy_rows(
            db,
            LEGACY_USERS.name,
            LEGACY_USER_COLUMNS,
            USERS_TMP,
            USER_COLUMNS,
            move_user,
            orphan_policy,
        )
        report.migrated[USERS.name] = stats.migrated

        run_ddl(db, dialect.drop_table(LEGACY_USERS.name))
        run_ddl(db, dialect.rename_table(USERS_TMP, USERS.name))
        if not dialect.index_exists(db.cursor(), SESSION.name, SESSION_INDEX):
            run_ddl(db, dialect.create_index(SESSION_INDEX, SESSION.name, ["username"]))

        # ========== uploads ==========
        reconciler.reconcile(LEGACY_UPLOADS.name, LEGACY_UPLOADS)
        reconciler.reconcile(UPLOADS_TMP, UPLOADS)

        def remap_upload(row: Sequence[Any]) -> Tuple[Any, ...]:
            values = tuple(row)
            trackid, uploadsid = values[0], values[1]
            return (trackid, owners.lookup(uploadsid, LEGACY_UPLOADS.name)) + values[2:]

        stats = copy_rows(
            db,
            LEGACY_UPLOADS.name,
            LEGACY_UPLOAD_COLUMNS,
            UPLOADS_TMP,
            UPLOAD_COLUMNS,
            remap_upload,
            orphan_policy,
        )
        report.migrated[UPLOADS.name] = stats.migrated
        report.orphans[UPLOADS.name] = stats.orphans

        run_ddl(db, dialect.drop_table(LEGACY_UPLOADS.name))
        run_ddl(db, dialect.rename_table(UPLOADS_TMP, UPLOADS.name))

        log_info(
            f"Migration 001 moved {report.migrated[USERS.name]} users and "
            f"{report.migrated[UPLOADS.name]} uploads"
        )
        return report
