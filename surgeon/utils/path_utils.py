"""
Path Utils
==========
Path normalisation and workspace-relative conversion helpers.

Responsibilities:
    - Normalise path separators to forward slashes
    - Convert absolute paths to repo-relative paths
    - Validate that file paths stay within workspace boundaries
"""
import os
import posixpath

from surgeon.core.errors import UnsafePathError


def normalize_relative_path(path: str) -> str:
    """
    Normalise a repo-relative path coming from an LLM or a listing.

    Strips surrounding whitespace, leading "./" and converts backslashes.
    Rejects absolute paths and any path that climbs above the root.

    Raises
    ------
    UnsafePathError
        If the path is empty, absolute, or escapes the root.
    """
    cleaned = (path or "").strip().replace("\\", "/")
    while cleaned.startswith("./"):
        cleaned = cleaned[2:]
    if not cleaned:
        raise UnsafePathError("Empty file path")
    if cleaned.startswith("/") or (len(cleaned) > 1 and cleaned[1] == ":"):
        raise UnsafePathError(f"Absolute path not allowed: {path}")

    normalized = posixpath.normpath(cleaned)
    if normalized == "." or normalized == ".." or normalized.startswith("../"):
        raise UnsafePathError(f"Path escapes repository root: {path}")
    return normalized


def resolve_within(root: str, relative_path: str) -> str:
    """
    Join *relative_path* onto *root* and return the absolute path.

    Raises UnsafePathError if the result (after symlink-free normalisation)
    is not located under *root*.
    """
    rel = normalize_relative_path(relative_path)
    abs_root = os.path.abspath(root)
    abs_path = os.path.abspath(os.path.join(abs_root, *rel.split("/")))
    if os.path.commonpath([abs_root, abs_path]) != abs_root:
        raise UnsafePathError(f"Path escapes repository root: {relative_path}")
    return abs_path


def to_relative(root: str, abs_path: str) -> str:
    """Convert an absolute path under *root* to a forward-slash relative path."""
    return os.path.relpath(abs_path, root).replace(os.sep, "/")
