from __future__ import annotations

import os
import stat
from dataclasses import dataclass
from typing import Optional

from .constants import TypeFlag
from .errors import MetadataError

try:
    import grp
except ImportError:  # non-POSIX hosts have no group database
    grp = None  # type: ignore


@dataclass(frozen=True)
class FileMetadata:
    type_flag: TypeFlag
    mode: int  # permission bits only
    uid: int
    gid: int
    size: int
    mtime: int
    link_target: Optional[str] = None
    device: Optional[tuple[int, int]] = None
    group_name: Optional[str] = None


def classify_mode(st_mode: int) -> TypeFlag:
    """Map a ``st_mode`` value to its header type flag.

    Hard links cannot be recognised from a single stat result, so HARDLINK
    is never produced here; anything without a tar equivalent (sockets,
    doors) is UNKNOWN.
    """
    if stat.S_ISREG(st_mode):
        return TypeFlag.NORMAL
    if stat.S_ISDIR(st_mode):
        return TypeFlag.DIRECTORY
    if stat.S_ISLNK(st_mode):
        return TypeFlag.SYMBOLIC
    if stat.S_ISCHR(st_mode):
        return TypeFlag.CHARACTER
    if stat.S_ISBLK(st_mode):
        return TypeFlag.BLOCK
    if stat.S_ISFIFO(st_mode):
        return TypeFlag.FIFO
    return TypeFlag.UNKNOWN


class MetadataProvider:
    """Source of per-path file metadata consumed when building entries."""

    def stat(self, path: str) -> FileMetadata:
        raise NotImplementedError


class OSMetadataProvider(MetadataProvider):
    """Reads metadata from the local filesystem without following symlinks."""

    def stat(self, path: str) -> FileMetadata:
        try:
            st = os.lstat(path)
        except OSError as exc:
            raise MetadataError(f"cannot stat {path}: {exc}") from exc
        kind = classify_mode(st.st_mode)
        link_target = None
        if kind is TypeFlag.SYMBOLIC:
            try:
                link_target = os.readlink(path)
            except OSError as exc:
                raise MetadataError(f"cannot read link {path}: {exc}") from exc
        device = None
        if kind in (TypeFlag.CHARACTER, TypeFlag.BLOCK):
            device = (os.major(st.st_rdev), os.minor(st.st_rdev))
        return FileMetadata(
            type_flag=kind,
            mode=stat.S_IMODE(st.st_mode),
            uid=st.st_uid,
            gid=st.st_gid,
            size=st.st_size,
            mtime=int(st.st_mtime),
            link_target=link_target,
            device=device,
            group_name=_group_name(st.st_gid),
        )


def _group_name(gid: int) -> Optional[str]:
    if grp is None:
        return None
    try:
        return grp.getgrgid(gid).gr_name
    except KeyError:
        return None
