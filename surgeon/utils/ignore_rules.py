"""
Ignore Rules
============
Directories skipped when enumerating a cloned repository.

Ignored:
    - version control metadata (.git)
    - dependency caches (node_modules, venv, .venv, __pycache__, .cache, .turbo)
    - build output (dist, build, .next, coverage)

These rules keep the fix agent away from generated or third-party code
that should never be modified, and keep the file list small enough to
fit in a prompt.
"""
from typing import FrozenSet

IGNORED_DIRS: FrozenSet[str] = frozenset({
    ".git",
    "node_modules",
    "dist",
    "build",
    ".next",
    "__pycache__",
    "venv",
    ".venv",
    "coverage",
    ".turbo",
    ".cache",
})


def is_ignored_dir(name: str) -> bool:
    """Return True if a directory with this basename must not be traversed."""
    return name in IGNORED_DIRS
