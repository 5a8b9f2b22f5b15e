"""Version string for the metadb package.

Installed distributions report their metadata version; a source checkout
reads pyproject.toml next to the package. Anything else is "unknown".
"""

from pathlib import Path
from typing import Optional

DISTRIBUTION = "metadb"
PYPROJECT = Path(__file__).resolve().parent.parent / "pyproject.toml"


def _installed_version() -> Optional[str]:
    from importlib.metadata import PackageNotFoundError, version

    try:
        return version(DISTRIBUTION)
    except PackageNotFoundError:
        return None


def _checkout_version(pyproject: Path = PYPROJECT) -> Optional[str]:
    import tomllib

    if not pyproject.exists():
        return None
    try:
        with open(pyproject, "rb") as f:
            return tomllib.load(f).get("project", {}).get("version")
    except (OSError, tomllib.TOMLDecodeError):
        return None


def get_version() -> str:
    """Best available version: installed metadata, then pyproject.toml."""
    return _installed_version() or _checkout_version() or "unknown"


__version__ = get_version()
