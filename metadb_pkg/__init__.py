"""Schema reconciliation and versioned migrations for the accounts metadata database."""
from ._version import __version__
from .enums import ColumnKind, DialectName, Modifier, OrphanPolicy
from .errors import (
    MetadbError, ConfigurationError, UnsupportedType, SchemaError,
    MissingMigrationStep, BackupFailed, DataMigrationError, OrphanedRow,
    MigrationFailed,
)
from .schema import (
    ColumnType, TableSchema, table,
    integer, varchar, char, boolean, text, timestamp, datetime_, enum,
    SCHEMA_VERSION, CURRENT_TABLES, SCHEMAS_BY_VERSION, tables_for_version,
)
from .dialects import Dialect, MySQLDialect, SQLiteDialect, get_dialect
from .database import (
    ConnectionInfo, Database, parse_dsn, connect, ensure_database,
    is_filesystem_backend,
)
from .reconcile import TableReconciler, ReconcilePlan, ReconcileResult
from .backup import BackupManager, backup_name
from .migrations import Migration, StepReport, get_all_migrations
from .runner import MigrationRegistry, MigrationRunner, UpgradeReport, default_registry
from .setup_db import SetupReport, setup_database, schema_status
from .config import MetadbConfig, load_config, save_config, get_config_path
from .logging_setup import setup_logging, log_info, log_error
