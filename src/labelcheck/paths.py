import os
from typing import Optional

from .logging import get_logger

log = get_logger("paths")


def expand_abs(path: str) -> str:
    """Expand env vars and ~ then return absolute path."""
    return os.path.abspath(os.path.expanduser(os.path.expandvars(path or "")))


def find_project_root(start_dir: Optional[str] = None) -> str:
    """Find the repository root by walking upward from start_dir.

    Looks for common markers: .git/, pyproject.toml, kb/.
    Falls back to absolute(start_dir) if nothing found.
    """
    origin = os.path.abspath(start_dir or os.getcwd() or ".")
    d = origin
    while True:
        if os.path.isdir(os.path.join(d, ".git")):
            return d
        if os.path.isfile(os.path.join(d, "pyproject.toml")):
            return d
        if os.path.isdir(os.path.join(d, "kb")):
            return d
        parent = os.path.dirname(d)
        if parent == d:
            log.debug(f"No project marker found above {origin}; using it as root")
            return origin
        d = parent


def kb_dir(root_dir: str) -> str:
    """Return the absolute knowledge-base directory under the project root."""
    return os.path.join(os.path.abspath(root_dir), "kb")
