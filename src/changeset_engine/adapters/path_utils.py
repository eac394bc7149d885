"""Path helpers shared by the zone, snapshot and instruction adapters.

Virtual and relative paths are always posix-style; absolute paths use the
host OS separator.
"""

import os
from pathlib import Path


def to_posix(value: str) -> str:
    return value.replace("\\", "/")


def normalize_absolute_path(value: str | Path) -> str:
    """Return an absolute, normalized path without resolving symlinks."""
    return os.path.normpath(os.path.abspath(os.path.expanduser(str(value))))


def ensure_within_root(root: str | Path, target: str | Path) -> bool:
    """Return True when target is root itself or lies beneath it."""
    root_abs = normalize_absolute_path(root)
    target_abs = normalize_absolute_path(target)
    try:
        common = os.path.commonpath([root_abs, target_abs])
    except ValueError:
        # Different drives on Windows.
        return False
    return common == root_abs


def relative_to_root(root: str | Path, target: str | Path) -> str:
    """Return target relative to root as a posix path ("" for the root itself)."""
    rel = os.path.relpath(normalize_absolute_path(target), normalize_absolute_path(root))
    if rel == ".":
        return ""
    return to_posix(rel)


def join_root(root: str | Path, relative: str) -> str:
    parts = [part for part in to_posix(relative).split("/") if part]
    return normalize_absolute_path(os.path.join(str(root), *parts))
