"""Project root discovery and config file lookup"""

from pathlib import Path

TASKMASTER_DIR = ".taskmaster"
CONFIG_FILE = "config.json"
LEGACY_CONFIG_FILE = ".taskmasterconfig"

PROJECT_MARKERS = [
    TASKMASTER_DIR,
    LEGACY_CONFIG_FILE,
    "tasks.json",
    "tasks/tasks.json",
    ".git",
]


def find_project_root(start: Path | str | None = None) -> Path | None:
    """Walk upward from start (default cwd) until a project marker is found"""
    current = Path(start or Path.cwd()).resolve()
    for directory in [current, *current.parents]:
        if any((directory / marker).exists() for marker in PROJECT_MARKERS):
            return directory
    return None


def config_path_for(root: Path | str) -> Path:
    return Path(root) / TASKMASTER_DIR / CONFIG_FILE


def find_config_path(root: Path | str) -> tuple[Path | None, bool]:
    """Return (path, is_legacy) for the project's config file, or (None, False)"""
    current = config_path_for(root)
    if current.is_file():
        return current, False
    legacy = Path(root) / LEGACY_CONFIG_FILE
    if legacy.is_file():
        return legacy, True
    return None, False
