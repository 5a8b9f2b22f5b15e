"""Pre-migration database snapshots.

Every migration run starts with a snapshot named after the database and the
local time to the minute, e.g. ``users.sqlite_05Mar2024.14:30``. SQLite
stores are copied beside the original file; MySQL databases are dumped with
mysqldump into the backup directory (default: current directory).
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Union

from .database import ConnectionInfo
from .dialects import Dialect
from .enums import DialectName
from .errors import BackupFailed
from .logging_setup import log_error, log_info, log_warning

BACKUP_TIME_FORMAT = "%d%b%Y.%H:%M"


def backup_name(source_name: str, when: datetime) -> str:
    """File name for a snapshot of source_name taken at when."""
    return f"{source_name}_{when.strftime(BACKUP_TIME_FORMAT)}"


class BackupManager:
    """Takes whole-database snapshots through the dialect's mechanism.

    Args:
        dialect: Adapter for the database engine
        info: Connection descriptor of the database to snapshot
        backup_dir: Where to write snapshots; None means beside the SQLite
            file, or the current directory for MySQL
        clock: Source of the snapshot time
        allow_memory: Treat an in-memory SQLite database as trivially
            backed up instead of failing
    """

    def __init__(
        self,
        dialect: Dialect,
        info: ConnectionInfo,
        backup_dir: Optional[Union[str, Path]] = None,
        clock: Callable[[], datetime] = datetime.now,
        allow_memory: bool = False,
    ):
        self.dialect = dialect
        self.info = info
        self.backup_dir = Path(backup_dir).expanduser() if backup_dir else None
        self.clock = clock
        self.allow_memory = allow_memory

    def destination(self) -> Path:
        """Path the next snapshot will be written to.

        If a snapshot with the same minute stamp already exists, a numeric
        suffix is added rather than overwriting it.
        """
        source = Path(self.info.source_name)
        name = backup_name(source.name, self.clock())

        if self.backup_dir is not None:
            directory = self.backup_dir
        elif self.info.dialect == DialectName.SQLITE:
            directory = source.parent
        else:
            directory = Path.cwd()

        candidate = directory / name
        counter = 1
        while candidate.exists():
            candidate = directory / f"{name}.{counter}"
            counter += 1
        return candidate

    def snapshot(self) -> Optional[Path]:
        """Write a snapshot of the whole database.

        Returns:
            Path of the snapshot, or None for an in-memory database when
            allow_memory is set

        Raises:
            BackupFailed: If the copy or dump could not be produced
        """
        if self.info.is_memory and self.allow_memory:
            log_warning("In-memory database: nothing to back up")
            return None

        try:
            destination = self.destination()
            destination.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise BackupFailed(f"Could not prepare backup location: {e}") from e

        log_info(f"Backing up existing users database to {destination}")
        try:
            self.dialect.backup(self.info, destination)
        except BackupFailed as e:
            log_error(f"Backup failed: {e}")
            if destination.exists():
                destination.unlink()
            raise
        return destination
