"""Path confinement for local and remote roots.

Every user-supplied path is relative to a root directory. Resolution is
lexical first (``..`` collapsed, containment checked with ``commonpath`` so
``/data-evil`` is never accepted for root ``/data``); local paths are then
re-checked after ``realpath`` so symlinks cannot escape the root either.
"""

from __future__ import annotations

import os
import posixpath

from services.errors import BadRequest


INVALID_PATH = "Invalid path"


def _contained(path: str, root: str, mod=os.path) -> bool:
    try:
        return mod.commonpath([path, root]) == root
    except ValueError:
        return False


def resolve_safe_path(root: str, requested: str | None) -> str:
    """Return the absolute local path for ``requested`` inside ``root``.

    Raises :class:`BadRequest` when the path escapes the root.
    """
    root = os.path.realpath(root)
    rel = str(requested or "")
    if "\x00" in rel:
        raise BadRequest(INVALID_PATH)
    candidate = os.path.normpath(os.path.join(root, rel))
    if not _contained(candidate, root):
        raise BadRequest(INVALID_PATH)

    # Parents may be symlinks pointing elsewhere; the final component is
    # checked too unless it does not exist yet (mkdir/touch/rename targets).
    real = os.path.realpath(candidate)
    if not _contained(real, root):
        raise BadRequest(INVALID_PATH)
    return candidate


def relative_to_root(root: str, abs_path: str) -> str:
    rel = os.path.relpath(abs_path, os.path.realpath(root))
    return "" if rel == "." else rel


def resolve_remote_path(remote_root: str, requested: str | None) -> str:
    """POSIX variant for SSH devices (purely lexical, no remote round-trip)."""
    root = posixpath.normpath(remote_root or "/")
    rel = str(requested or "")
    if "\x00" in rel or "\n" in rel:
        raise BadRequest(INVALID_PATH)
    candidate = posixpath.normpath(posixpath.join(root, rel))
    if not _contained(candidate, root, mod=posixpath):
        raise BadRequest(INVALID_PATH)
    return candidate


def remote_relative(remote_root: str, abs_path: str) -> str:
    rel = posixpath.relpath(abs_path, posixpath.normpath(remote_root or "/"))
    return "" if rel == "." else rel


def breadcrumbs(rel_path: str, sep: str = "/") -> list:
    crumbs = [{"name": "Home", "path": ""}]
    if not rel_path:
        return crumbs
    parts = rel_path.split(sep)
    for i, name in enumerate(parts):
        crumbs.append({"name": name, "path": sep.join(parts[: i + 1])})
    return crumbs
