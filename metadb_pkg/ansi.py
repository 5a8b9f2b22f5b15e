"""Console output utilities.

Status lines go through a shared Rich Console so that the no_color setting
from config.yaml applies everywhere.
"""

from typing import TYPE_CHECKING, Optional

from rich.markup import escape

if TYPE_CHECKING:
    from rich.console import Console

    from .config import MetadbConfig


_console_cache: Optional["Console"] = None


def get_console(config: Optional["MetadbConfig"] = None) -> "Console":
    """Get the cached Rich Console configured with the no_color setting.

    Args:
        config: Configuration object. If None, loads config.
    """
    global _console_cache

    if _console_cache is None:
        from rich.console import Console

        if config is None:
            from .config import load_config
            config = load_config()

        _console_cache = Console(no_color=config.no_color, highlight=False)

    return _console_cache


def reset_console() -> None:
    """Drop the cached console (after a configuration change)."""
    global _console_cache
    _console_cache = None


def style_if_enabled(style_name: str, config: Optional["MetadbConfig"] = None) -> str:
    """Return style name, or an empty string when colors are disabled.

    Example:
        >>> table.add_column("Table", style=style_if_enabled("cyan"))
    """
    if get_console(config).no_color:
        return ""
    return style_name


def header(msg: str) -> None:
    get_console().print(f"\n[bold blue]{escape(msg)}[/]")


def ok(msg: str) -> None:
    """Print a success message in green with checkmark prefix."""
    get_console().print(f"[green]✓ {escape(msg)}[/]")


def warn(msg: str) -> None:
    """Print a warning message in yellow with warning icon prefix."""
    get_console().print(f"[yellow]⚠ {escape(msg)}[/]")


def err(msg: str) -> None:
    """Print an error message in red with error icon prefix."""
    get_console().print(f"[red]✗ {escape(msg)}[/]")


def info(msg: str) -> None:
    get_console().print(escape(msg))
