from __future__ import annotations

import os
import sys
from typing import BinaryIO, Iterator, List, Optional, Tuple

from .constants import NAME_LEN, TERMINATOR_BLOCKS, ZERO_BLOCK, TypeFlag
from .entry import Entry, write_bytes
from .errors import ArchiveIOError, EndOfArchive, FieldEncodingError, HeaderFormatError
from .header import format_text
from .metadata import MetadataProvider, OSMetadataProvider
from .pathutil import is_absolute_name, is_within, member_path, norm_path


class Archive:
    """Ordered collection of entries; list order is archive order."""

    def __init__(self, entries: Optional[List[Entry]] = None):
        self.entries: List[Entry] = list(entries or [])

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[Entry]:
        return iter(self.entries)

    # -------- Building --------

    @classmethod
    def new_from_path(
        cls,
        path: str,
        provider: Optional[MetadataProvider] = None,
        *,
        user: Optional[str] = None,
        arcname: Optional[str] = None,
    ) -> "Archive":
        return cls([Entry.from_path(path, provider, user=user, arcname=arcname)])

    def append(
        self,
        path: str,
        provider: Optional[MetadataProvider] = None,
        *,
        user: Optional[str] = None,
        arcname: Optional[str] = None,
    ) -> Entry:
        """Build an entry for ``path`` and add it at the end.

        The archive is left untouched if the entry cannot be built.
        """
        entry = Entry.from_path(path, provider, user=user, arcname=arcname)
        self.entries.append(entry)
        return entry

    def add_tree(
        self,
        path: str,
        provider: Optional[MetadataProvider] = None,
        *,
        user: Optional[str] = None,
    ) -> List[Entry]:
        """Append ``path`` and, for a directory, everything beneath it.

        Archive names are relative to the parent of ``path``; each directory
        precedes its contents and siblings are added in sorted order. Entries
        are only added once the whole walk succeeds.
        """
        provider = provider or OSMetadataProvider()
        root = os.path.abspath(path)
        base = os.path.dirname(root)

        def _arcname(p: str) -> str:
            return norm_path(os.path.relpath(p, base))

        added: List[Entry] = []

        def _visit(p: str) -> None:
            entry = Entry.from_path(p, provider, user=user, arcname=_arcname(p))
            added.append(entry)
            if entry.type_flag is not TypeFlag.DIRECTORY:
                return
            try:
                children = sorted(os.listdir(p))
            except OSError as exc:
                raise ArchiveIOError(f"cannot list {p}: {exc}") from exc
            for name in children:
                _visit(os.path.join(p, name))

        _visit(root)
        self.entries.extend(added)
        return added

    # -------- Reading --------

    @classmethod
    def open_from_stream(cls, f: BinaryIO, *, strict: bool = False) -> "Archive":
        """Collect entries from ``f`` until the end-of-archive marker.

        Args:
            f: Readable binary stream positioned at the first header.
            strict: When False, a malformed header ends the read like the
                end-of-archive marker does (with a warning on stderr). When
                True, it is raised to the caller.

        I/O failures are always raised.
        """
        archive = cls()
        while True:
            try:
                entry = Entry.from_stream(f)
            except EndOfArchive:
                break
            except (HeaderFormatError, FieldEncodingError) as exc:
                if strict:
                    raise
                print(
                    f"Warning: stopped reading after {len(archive.entries)} entries:",
                    str(exc),
                    file=sys.stderr,
                )
                break
            archive.entries.append(entry)
        return archive

    @classmethod
    def load(cls, path: str, *, strict: bool = False) -> "Archive":
        try:
            with open(path, "rb") as f:
                return cls.open_from_stream(f, strict=strict)
        except OSError as exc:
            raise ArchiveIOError(f"cannot open {path}: {exc}") from exc

    # -------- Lookup / removal --------

    def names(self) -> List[str]:
        return [e.name for e in self.entries]

    def find(self, name: str) -> Optional[Entry]:
        key = _name_key(name)
        for e in self.entries:
            if e.header.name == key:
                return e
        return None

    def remove(self, name: str) -> bool:
        """Drop the first entry whose 100-byte name field matches ``name``."""
        key = _name_key(name)
        for i, e in enumerate(self.entries):
            if e.header.name == key:
                del self.entries[i]
                return True
        return False

    # -------- Writing --------

    def write(self, f: BinaryIO) -> int:
        """Serialize all entries followed by the zero-block terminator.

        An empty archive writes nothing, not even the terminator.
        """
        if not self.entries:
            return 0
        written = 0
        for e in self.entries:
            written += e.to_stream(f)
        written += write_bytes(f, ZERO_BLOCK * TERMINATOR_BLOCKS)
        return written

    def save(self, path: str) -> int:
        try:
            with open(path, "wb") as f:
                return self.write(f)
        except OSError as exc:
            raise ArchiveIOError(f"cannot write {path}: {exc}") from exc

    # -------- Extraction --------

    def extract_all(self, dest: str) -> List[Tuple[Entry, Optional[str]]]:
        """Recreate entries under ``dest``.

        Directories, regular files and symlinks are materialized; other types
        are reported with a ``None`` destination. Nothing is written outside
        ``dest``: absolute names, ``..`` segments, symlinks pointing out of
        ``dest`` and members reached through such a symlink raise ValueError.

        Returns:
            (entry, destination path or None) for every entry, in archive order.
        """
        root = os.path.realpath(dest)
        results: List[Tuple[Entry, Optional[str]]] = []
        dir_modes: List[Tuple[str, Entry]] = []
        try:
            for e in self.entries:
                target = member_path(root, e.name)
                kind = e.type_flag
                if kind not in (TypeFlag.DIRECTORY, TypeFlag.NORMAL, TypeFlag.UNKNOWN, TypeFlag.SYMBOLIC):
                    results.append((e, None))
                    continue
                parent = os.path.dirname(target)
                _check_within(root, os.path.realpath(parent), e.name)
                if kind is TypeFlag.DIRECTORY:
                    if os.path.lexists(target):
                        _check_within(root, os.path.realpath(target), e.name)
                    os.makedirs(target, exist_ok=True)
                    dir_modes.append((target, e))
                elif kind is TypeFlag.SYMBOLIC:
                    link = e.header.link_target
                    if is_absolute_name(link):
                        raise ValueError(f"symlink {e.name!r} has absolute target {link!r}")
                    _check_within(root, os.path.realpath(os.path.join(os.path.realpath(parent), link)), e.name)
                    os.makedirs(parent, exist_ok=True)
                    if os.path.lexists(target):
                        os.unlink(target)
                    os.symlink(link, target)
                else:
                    os.makedirs(parent, exist_ok=True)
                    # never write through a link left by an earlier member
                    if os.path.islink(target):
                        os.unlink(target)
                    with open(target, "wb") as wf:
                        wf.write(e.content)
                    os.chmod(target, e.header.file_mode)
                    os.utime(target, (e.header.mod_time, e.header.mod_time))
                results.append((e, target))
            # Directory modes and mtimes are applied once their contents exist
            for target, e in reversed(dir_modes):
                os.chmod(target, e.header.file_mode)
                os.utime(target, (e.header.mod_time, e.header.mod_time))
        except OSError as exc:
            raise ArchiveIOError(f"extraction failed: {exc}") from exc
        return results


def _check_within(root: str, resolved: str, name: str) -> None:
    if not is_within(root, resolved):
        raise ValueError(f"member {name!r} would be written outside {root}")


def _name_key(name: str) -> bytes:
    return format_text(name, NAME_LEN, truncate=True)
