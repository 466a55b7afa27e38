from __future__ import annotations

import os
from dataclasses import dataclass
from typing import BinaryIO, List, Optional, Tuple

from .constants import BLOCK_SIZE, TypeFlag
from .errors import (
    ArchiveIOError,
    EndOfArchive,
    HeaderFormatError,
    InvalidChecksum,
    InvalidMagic,
)
from .header import (
    Header,
    decode,
    encode,
    is_end_of_archive,
    validate_checksum,
    validate_magic,
)
from .metadata import MetadataProvider, OSMetadataProvider


def blocks_for_size(size: int) -> int:
    return (size + BLOCK_SIZE - 1) // BLOCK_SIZE


def read_block(f: BinaryIO) -> bytes:
    """Read up to one block, retrying short reads; returns b"" at end of stream."""
    buf = bytearray()
    try:
        while len(buf) < BLOCK_SIZE:
            chunk = f.read(BLOCK_SIZE - len(buf))
            if not chunk:
                break
            buf += chunk
    except OSError as exc:
        raise ArchiveIOError(f"read failed: {exc}") from exc
    return bytes(buf)


def read_blocks(f: BinaryIO, limit: Optional[int] = None) -> List[bytes]:
    """Collect zero-padded blocks until ``limit`` is reached or the stream runs dry."""
    out: List[bytes] = []
    while limit is None or len(out) < limit:
        raw = read_block(f)
        if not raw:
            break
        # A partial final block keeps only the bytes read; the rest stays zero
        out.append(raw.ljust(BLOCK_SIZE, b"\x00"))
    return out


def write_bytes(f: BinaryIO, data: bytes) -> int:
    try:
        f.write(data)
    except OSError as exc:
        raise ArchiveIOError(f"write failed: {exc}") from exc
    return len(data)


@dataclass(frozen=True)
class Entry:
    """One archive member: a header plus its 512-byte content blocks."""

    header: Header
    blocks: Tuple[bytes, ...] = ()

    @classmethod
    def from_path(
        cls,
        path: str,
        provider: Optional[MetadataProvider] = None,
        *,
        user: Optional[str] = None,
        arcname: Optional[str] = None,
    ) -> "Entry":
        """Build an entry from a filesystem path.

        Args:
            path: Filesystem path to read.
            provider: Metadata source; defaults to the local filesystem.
            user: Owner name for the header. Left zero-filled when None.
            arcname: Name stored in the archive. Defaults to the basename of
                ``path``.
        """
        provider = provider or OSMetadataProvider()
        meta = provider.stat(path)
        if arcname is None:
            arcname = os.path.basename(os.path.normpath(path))
        kind = meta.type_flag
        header = Header.build(
            name=arcname,
            type_flag=kind,
            mode=meta.mode,
            uid=meta.uid,
            gid=meta.gid,
            size=meta.size if kind is TypeFlag.NORMAL else 0,
            mtime=meta.mtime,
            link_target=meta.link_target if kind is TypeFlag.SYMBOLIC else None,
            owner_name=user,
            group_name=meta.group_name,
            device=meta.device if kind in (TypeFlag.CHARACTER, TypeFlag.BLOCK) else None,
        )
        if kind is not TypeFlag.NORMAL:
            return cls(header=header)
        try:
            with open(path, "rb") as rf:
                blocks = read_blocks(rf)
        except OSError as exc:
            raise ArchiveIOError(f"cannot read {path}: {exc}") from exc
        if len(blocks) != blocks_for_size(meta.size):
            raise ArchiveIOError(f"{path}: file changed size while being read")
        return cls(header=header, blocks=tuple(blocks))

    @classmethod
    def from_stream(cls, f: BinaryIO) -> "Entry":
        """Read the next entry from ``f``.

        Raises:
            EndOfArchive: on the all-zero sentinel or a clean end of stream.
            HeaderFormatError: if the stream ends inside a header.
            InvalidMagic: if the magic field is not the ustar literal.
            InvalidChecksum: if the stored checksum does not match.
        """
        raw = read_block(f)
        if not raw:
            raise EndOfArchive("end of stream")
        if len(raw) != BLOCK_SIZE:
            raise HeaderFormatError(f"truncated header: {len(raw)} of {BLOCK_SIZE} bytes")
        header = decode(raw)
        if is_end_of_archive(header):
            raise EndOfArchive("end-of-archive block")
        if not validate_magic(header):
            raise InvalidMagic(f"bad magic {header.magic!r}")
        if not validate_checksum(header):
            raise InvalidChecksum(f"checksum mismatch for {header.name!r}")
        expected = blocks_for_size(header.file_size) if header.type_flag.has_content else 0
        return cls(header=header, blocks=tuple(read_blocks(f, expected)))

    def to_stream(self, f: BinaryIO) -> int:
        written = write_bytes(f, encode(self.header))
        for block in self.blocks:
            written += write_bytes(f, block)
        return written

    @property
    def name(self) -> str:
        return self.header.file_name

    @property
    def size(self) -> int:
        return self.header.file_size

    @property
    def type_flag(self) -> TypeFlag:
        return self.header.type_flag

    @property
    def content(self) -> bytes:
        """Payload bytes trimmed to the declared size."""
        if not self.type_flag.has_content:
            return b""
        return b"".join(self.blocks)[: self.size]
