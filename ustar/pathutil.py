from __future__ import annotations

import os


def norm_path(p: str) -> str:
    """Normalize archive member names to a canonical forward-slash form.

    Rules:
    - Convert backslashes to slashes
    - Strip leading/trailing slashes
    - Remove empty and '.' segments
    - Reject '..' segments and names that normalize to nothing
    """
    p = p.replace("\\", "/").strip("/")
    parts = [q for q in p.split("/") if q not in ("", ".")]
    for q in parts:
        if q == "..":
            raise ValueError(f"Member name may not contain '..': {p!r}")
    if not parts:
        raise ValueError("Member name is empty")
    return "/".join(parts)


def is_absolute_name(p: str) -> bool:
    """True for names rooted at '/' or '\\' or carrying a drive letter."""
    if p.startswith(("/", "\\")):
        return True
    return len(p) >= 2 and p[1] == ":" and p[0].isalpha()


def member_path(dest: str, name: str) -> str:
    """Map an archive member name to a path beneath ``dest``.

    Absolute names are rejected rather than re-rooted.
    """
    if is_absolute_name(name):
        raise ValueError(f"Member name may not be absolute: {name!r}")
    return os.path.join(dest, *norm_path(name).split("/"))


def is_within(root: str, path: str) -> bool:
    return path == root or os.path.commonpath([root, path]) == root
