#!/usr/bin/env python3
"""
metadb - schema setup and migration tool for the accounts metadata database.

Creates the user, session and uploads tables of a genome browser login
database, brings an existing database of any earlier schema version up to
date, and takes a snapshot before changing anything.
"""

# --- import path shim (supports both `python metadb.py` and `python -m metadb`) ---
import sys
from pathlib import Path

_here = Path(__file__).resolve().parent
if str(_here) not in sys.path:
    sys.path.insert(0, str(_here))

from metadb_pkg import (
    # version
    __version__,
    # schema
    SCHEMA_VERSION,
    # database
    connect,
    ensure_database,
    is_filesystem_backend,
    parse_dsn,
    # engine
    BackupManager,
    MigrationRunner,
    default_registry,
    schema_status,
    setup_database,
    # errors / enums
    MetadbError,
    MigrationFailed,
    OrphanPolicy,
)
from metadb_pkg.ansi import err, get_console, header, info, ok, style_if_enabled, warn
from metadb_pkg.logging_setup import log_error

# === Standard library imports ===
import contextvars
import os
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from metadb_pkg.config import MetadbConfig
    from metadb_pkg.database import Database

# === Third-party imports ===
import typer
from rich.table import Table
from rich.traceback import install as rich_tb_install

# Install pretty tracebacks, but suppress for Typer/Click exit exceptions
rich_tb_install(show_locals=False, suppress=["typer", "click"])

# === Configuration context ===
_config_context = contextvars.ContextVar("config", default=None)


def get_current_config() -> "MetadbConfig":
    """Get config from context or load fresh."""
    from metadb_pkg import load_config
    config = _config_context.get()
    if config is None:
        config = load_config()
    return config


def resolve_dsn(dsn: Optional[str]) -> str:
    """Connection string from --dsn, then METADB_DSN, then config.yaml."""
    resolved = dsn or os.environ.get("METADB_DSN") or get_current_config().dsn
    if not resolved:
        err("No database given. Use --dsn, set METADB_DSN, or set 'dsn' in the config file")
        raise typer.Exit(1)
    return resolved


def exit_if_filesystem(dsn: str) -> None:
    if is_filesystem_backend(dsn):
        info(f"Account store '{dsn}' is not a SQL database; nothing to set up.")
        raise typer.Exit(0)


def make_backup_manager(db: "Database", backup_dir: Optional[Path]) -> BackupManager:
    directory = backup_dir or get_current_config().backup_dir
    return BackupManager(db.dialect, db.info, backup_dir=directory)


def fail(e: MetadbError) -> None:
    """Report an engine error and exit 1."""
    log_error(str(e))
    if isinstance(e, MigrationFailed):
        err(f"Migration {e.from_version} -> {e.to_version} failed: {e.cause}")
        warn(f"Database left at schema version {e.last_good_version}; fix the problem and re-run.")
    else:
        err(str(e))
    raise typer.Exit(1)


# === Typer CLI ===
# Main app + sub-app (config)

app = typer.Typer(
    help="metadb - schema setup and migrations for the accounts database",
    add_completion=True,
)

config_app = typer.Typer(
    help="Configuration management - view and reset settings"
)

app.add_typer(config_app, name="config")


# Shared options
DSN_OPTION = typer.Option(
    None, "--dsn", "-d", help="Connection string, e.g. DBI:SQLite:dbname=/var/www/users.sqlite"
)
TARGET_OPTION = typer.Option(
    SCHEMA_VERSION, "--target", "-t", min=0, help="Schema version to upgrade to."
)
BACKUP_DIR_OPTION = typer.Option(
    None, "--backup-dir", help="Directory for the pre-migration snapshot."
)
ORPHANS_OPTION = typer.Option(
    None,
    "--orphans",
    case_sensitive=False,
    help="Uploads whose owner cannot be found: skip them or fail the migration.",
)


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        print(f"metadb {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    )
):
    """metadb CLI - schema setup and migrations for the accounts database."""
    # Load configuration (auto-creates with defaults if missing)
    from metadb_pkg import load_config
    from metadb_pkg.logging_setup import init_logger

    config = load_config()
    init_logger(config)
    get_console(config)

    # Store config in context for access by commands
    _config_context.set(config)


@app.command(help="Create or upgrade every table of the accounts database.")
def setup(
    dsn: Optional[str] = DSN_OPTION,
    admin: Optional[str] = typer.Option(
        None, "--admin", "-a", help="MySQL administrator credentials (user:password) to create the database."
    ),
    target: int = TARGET_OPTION,
    orphans: Optional[OrphanPolicy] = ORPHANS_OPTION,
    backup_dir: Optional[Path] = BACKUP_DIR_OPTION,
) -> None:
    """
    Bring the database to the target schema version, then reconcile tables.

    Runs the numbered migrations (with a snapshot first), then makes sure
    every table has exactly its declared columns.

    Usage:
        metadb setup --dsn DBI:SQLite:dbname=/var/www/gbrowse2/users.sqlite
        metadb setup --dsn DBI:mysql:gbrowse_login --admin root:secret
    """
    dsn = resolve_dsn(dsn)
    exit_if_filesystem(dsn)
    policy = orphans or OrphanPolicy(get_current_config().orphan_policy)

    try:
        connection = parse_dsn(dsn)
        if ensure_database(connection, admin):
            ok(f"Created database {connection.source_name}")
        with connect(connection) as db:
            report = setup_database(
                db,
                target=target,
                registry=default_registry(target),
                backup_manager=make_backup_manager(db, backup_dir),
                orphan_policy=policy,
            )
    except MetadbError as e:
        fail(e)

    upgrade = report.upgrade
    if upgrade.backup:
        info(f"Backup written to {upgrade.backup}")
    for step in upgrade.steps:
        ok(f"Applied migration {step.version}")
        if step.total_orphans:
            warn(f"{step.total_orphans} orphaned upload(s) skipped; see the log for details")
    for result in report.tables:
        if result.changed:
            ok(f"{result.table}: {len(result.statements)} statement(s) applied")
    ok(f"Database {connection.describe()} is at schema version {upgrade.final_version}")


@app.command(help="Run pending schema migrations only.")
def upgrade(
    dsn: Optional[str] = DSN_OPTION,
    target: int = TARGET_OPTION,
    orphans: Optional[OrphanPolicy] = ORPHANS_OPTION,
    backup_dir: Optional[Path] = BACKUP_DIR_OPTION,
) -> None:
    """Apply migrations up to --target without reconciling the other tables."""
    dsn = resolve_dsn(dsn)
    exit_if_filesystem(dsn)
    policy = orphans or OrphanPolicy(get_current_config().orphan_policy)

    try:
        with connect(dsn) as db:
            runner = MigrationRunner(
                db,
                registry=default_registry(target),
                backup_manager=make_backup_manager(db, backup_dir),
                orphan_policy=policy,
            )
            report = runner.upgrade_to(target)
    except MetadbError as e:
        fail(e)

    if report.backup:
        info(f"Backup written to {report.backup}")
    if report.applied:
        ok(f"Upgraded schema from version {report.start_version} to {report.final_version}")
    else:
        ok(f"Schema is up to date (version {report.final_version})")


@app.command(help="Show schema version and per-table column differences.")
def status(dsn: Optional[str] = DSN_OPTION) -> None:
    """Inspect the database without changing it."""
    dsn = resolve_dsn(dsn)
    exit_if_filesystem(dsn)

    try:
        with connect(dsn) as db:
            current = MigrationRunner(db, registry=default_registry()).current_version()
            plans = schema_status(db)
            location = db.info.describe()
    except MetadbError as e:
        fail(e)

    header(f"Schema status for {location}")
    info(f"Current version: {current}")
    info(f"Target version:  {SCHEMA_VERSION}")
    if current < SCHEMA_VERSION:
        warn("Migrations pending; run 'metadb setup' or 'metadb upgrade'")
        info("Column differences below are against the target schema")

    table = Table(title="Tables", show_header=True, header_style=style_if_enabled("bold cyan"))
    table.add_column("Table", style=style_if_enabled("cyan"), no_wrap=True)
    table.add_column("State", style=style_if_enabled("yellow"))
    table.add_column("Missing columns", style=style_if_enabled("red"))
    table.add_column("Extra columns", style=style_if_enabled("magenta"))

    for plan in plans:
        if not plan.exists:
            state = "absent"
        elif plan.is_noop:
            state = "ok"
        else:
            state = "differs"
        missing = ", ".join(plan.missing) if plan.exists else ""
        table.add_row(plan.table, state, missing or "-", ", ".join(plan.extra) or "-")

    get_console().print(table)


@app.command(help="Take a snapshot of the database now.")
def backup(
    dsn: Optional[str] = DSN_OPTION,
    backup_dir: Optional[Path] = BACKUP_DIR_OPTION,
) -> None:
    """Write a timestamped copy (SQLite) or dump (MySQL) of the database."""
    dsn = resolve_dsn(dsn)
    exit_if_filesystem(dsn)

    try:
        with connect(dsn) as db:
            path = make_backup_manager(db, backup_dir).snapshot()
    except MetadbError as e:
        fail(e)

    ok(f"Backup written to {path}")


# === Config Sub-App Commands ===
# Grouped under 'metadb config'

@config_app.command(name="reset", help="Reset configuration file to defaults")
def config_reset() -> None:
    """Reset the config file to defaults, keeping a copy of the old one."""
    from metadb_pkg.config import create_example_config, get_config_path
    import shutil

    config_path = get_config_path()

    # Backup existing if present
    if config_path.exists():
        backup_path = config_path.with_suffix(".yaml.backup")
        shutil.copy(config_path, backup_path)
        info(f"Backed up existing config to {backup_path}")

    if create_example_config():
        ok(f"Reset config to defaults at {config_path}")
    else:
        err("Failed to reset config file")
        raise typer.Exit(1)


@config_app.command(name="show", help="Display current configuration with all settings and paths")
def config_show() -> None:
    """Display current configuration (merged from file and defaults)."""
    from metadb_pkg.config import MetadbConfig, get_config_path
    from metadb_pkg.logging_setup import default_log_path

    config_path = get_config_path()
    config = get_current_config()
    defaults = MetadbConfig()

    header("Current Configuration")
    info(f"Config file: {config_path}")

    table = Table(title="Configuration Values", show_header=True, header_style=style_if_enabled("bold cyan"))
    table.add_column("Setting", style=style_if_enabled("cyan"), no_wrap=True)
    table.add_column("Value", style=style_if_enabled("yellow"))
    table.add_column("Description", style=style_if_enabled("dim white"))
    table.add_column("Status", style=style_if_enabled("green"))

    rows = [
        ("backup_dir", config.backup_dir or "(beside database)",
         config.backup_dir == defaults.backup_dir, "Where pre-migration snapshots go"),
        ("debug_logging", config.debug_logging,
         config.debug_logging == defaults.debug_logging, "Enable DEBUG logs"),
        ("dsn", config.dsn or "(not set)",
         config.dsn == defaults.dsn, "Database connection string"),
        ("log_path", config.log_path or str(default_log_path()),
         config.log_path == defaults.log_path, "Log file location"),
        ("no_color", config.no_color,
         config.no_color == defaults.no_color, "Disable ANSI colors"),
        ("orphan_policy", config.orphan_policy,
         config.orphan_policy == defaults.orphan_policy, "skip or fail on uploads without an owner"),
    ]

    for key, value, is_default, description in rows:
        status = "Default" if is_default else "Configured"
        table.add_row(key, str(value), description, status)

    get_console().print(table)
    info(f"Edit config: {config_path}")
    info("Reset to defaults: metadb config reset")


if __name__ == "__main__":
    app()
