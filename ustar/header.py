from __future__ import annotations

import dataclasses
import struct
from dataclasses import dataclass
from typing import Optional

from .constants import (
    BLOCK_SIZE,
    CHECKSUM_BLANK,
    CHKSUM_LEN,
    DEVMAJOR_LEN,
    DEVMINOR_LEN,
    GID_LEN,
    GNAME_LEN,
    LINKNAME_LEN,
    MAGIC_LEN,
    MODE_LEN,
    MTIME_LEN,
    NAME_LEN,
    PREFIX_LEN,
    RESERVED_LEN,
    SIZE_LEN,
    TYPEFLAG_LEN,
    UID_LEN,
    UNAME_LEN,
    USTAR_MAGIC,
    USTAR_VERSION,
    VERSION_LEN,
    ZERO_BLOCK,
    TypeFlag,
)
from .errors import FieldEncodingError, HeaderFormatError


# Header record (fixed 512 bytes), every field NUL-padded ASCII:
#  name[100] mode[8] uid[8] gid[8] size[12] mtime[12] chksum[8] typeflag[1]
#  linkname[100] magic[6] version[2] uname[32] gname[32]
#  devmajor[8] devminor[8] prefix[155] reserved[12]
_HEADER_STRUCT = struct.Struct("100s8s8s8s12s12s8s1s100s6s2s32s32s8s8s155s12s")
assert _HEADER_STRUCT.size == BLOCK_SIZE

_OCTAL_DIGITS = frozenset(b"01234567")


def format_octal(value: int, width: int) -> bytes:
    """Render ``value`` as zero-padded octal text filling ``width`` bytes.

    The last byte of the field is the NUL terminator, so ``width - 1``
    digits are available.
    """
    digits = width - 1
    if value < 0:
        raise FieldEncodingError(f"negative value {value} cannot be stored as octal")
    text = "%0*o" % (digits, value)
    if len(text) > digits:
        raise FieldEncodingError(f"value {value} does not fit in a {width}-byte octal field")
    return text.encode("ascii") + b"\x00"


def parse_octal(raw: bytes) -> int:
    """Parse a NUL/space terminated octal field; an empty field reads as 0."""
    text = raw.split(b"\x00", 1)[0].strip(b" ")
    if not text:
        return 0
    if not all(c in _OCTAL_DIGITS for c in text):
        raise FieldEncodingError(f"field is not octal text: {raw!r}")
    return int(text, 8)


def format_text(value: str, width: int, *, truncate: bool = False) -> bytes:
    raw = value.encode("utf-8", "surrogateescape")
    if len(raw) > width:
        if not truncate:
            raise FieldEncodingError(f"{value!r} is longer than {width} bytes")
        # cut on a character boundary, never inside a multi-byte sequence
        cut = width
        while cut > 0 and raw[cut] & 0xC0 == 0x80:
            cut -= 1
        raw = raw[:cut]
    return raw.ljust(width, b"\x00")


def parse_text(raw: bytes) -> str:
    """Decode a NUL-terminated text field.

    Bytes that are not valid UTF-8 are kept as surrogate escapes, so names
    written by other tools still decode and re-encode to the same bytes.
    """
    return raw.split(b"\x00", 1)[0].decode("utf-8", "surrogateescape")


def _zeros(n: int):
    return dataclasses.field(default=b"\x00" * n)


@dataclass(frozen=True)
class Header:
    """Raw field image of one 512-byte header record.

    Fields hold the exact on-disk bytes; use the properties for decoded
    values. Instances are immutable, so checksum updates return a copy
    (see :func:`with_checksum`).
    """

    name: bytes = _zeros(NAME_LEN)
    mode: bytes = _zeros(MODE_LEN)
    uid: bytes = _zeros(UID_LEN)
    gid: bytes = _zeros(GID_LEN)
    size: bytes = _zeros(SIZE_LEN)
    mtime: bytes = _zeros(MTIME_LEN)
    checksum: bytes = _zeros(CHKSUM_LEN)
    typeflag: bytes = _zeros(TYPEFLAG_LEN)
    linkname: bytes = _zeros(LINKNAME_LEN)
    magic: bytes = _zeros(MAGIC_LEN)
    version: bytes = _zeros(VERSION_LEN)
    uname: bytes = _zeros(UNAME_LEN)
    gname: bytes = _zeros(GNAME_LEN)
    devmajor: bytes = _zeros(DEVMAJOR_LEN)
    devminor: bytes = _zeros(DEVMINOR_LEN)
    prefix: bytes = _zeros(PREFIX_LEN)
    reserved: bytes = _zeros(RESERVED_LEN)

    def __post_init__(self) -> None:
        for f in dataclasses.fields(self):
            value = getattr(self, f.name)
            width = len(f.default)
            if not isinstance(value, bytes) or len(value) != width:
                raise FieldEncodingError(f"header field {f.name!r} must be exactly {width} bytes")

    @classmethod
    def build(
        cls,
        *,
        name: str,
        type_flag: TypeFlag,
        mode: int = 0,
        uid: int = 0,
        gid: int = 0,
        size: int = 0,
        mtime: int = 0,
        link_target: Optional[str] = None,
        owner_name: Optional[str] = None,
        group_name: Optional[str] = None,
        device: Optional[tuple[int, int]] = None,
    ) -> "Header":
        """Assemble a header from decoded values with a freshly computed checksum."""
        fields = dict(
            name=format_text(name, NAME_LEN),
            mode=format_octal(mode, MODE_LEN),
            uid=format_octal(uid, UID_LEN),
            gid=format_octal(gid, GID_LEN),
            size=format_octal(size, SIZE_LEN),
            mtime=format_octal(mtime, MTIME_LEN),
            typeflag=type_flag.value,
            magic=USTAR_MAGIC,
            version=USTAR_VERSION,
        )
        if link_target is not None:
            fields["linkname"] = format_text(link_target, LINKNAME_LEN)
        if owner_name:
            fields["uname"] = format_text(owner_name, UNAME_LEN, truncate=True)
        if group_name:
            fields["gname"] = format_text(group_name, GNAME_LEN, truncate=True)
        if device is not None:
            major, minor = device
            fields["devmajor"] = format_octal(major, DEVMAJOR_LEN)
            fields["devminor"] = format_octal(minor, DEVMINOR_LEN)
        return with_checksum(cls(**fields))

    # Decoded views

    @property
    def file_name(self) -> str:
        return parse_text(self.name)

    @property
    def file_mode(self) -> int:
        return parse_octal(self.mode)

    @property
    def owner_uid(self) -> int:
        return parse_octal(self.uid)

    @property
    def owner_gid(self) -> int:
        return parse_octal(self.gid)

    @property
    def file_size(self) -> int:
        return parse_octal(self.size)

    @property
    def mod_time(self) -> int:
        return parse_octal(self.mtime)

    @property
    def type_flag(self) -> TypeFlag:
        return TypeFlag.from_byte(self.typeflag)

    @property
    def link_target(self) -> str:
        return parse_text(self.linkname)

    @property
    def owner_name(self) -> str:
        return parse_text(self.uname)

    @property
    def group_name(self) -> str:
        return parse_text(self.gname)

    @property
    def device(self) -> tuple[int, int]:
        return parse_octal(self.devmajor), parse_octal(self.devminor)

    def with_checksum(self) -> "Header":
        return with_checksum(self)


def encode(header: Header) -> bytes:
    return _HEADER_STRUCT.pack(*dataclasses.astuple(header))


def decode(raw: bytes) -> Header:
    if len(raw) != BLOCK_SIZE:
        raise HeaderFormatError(f"header record must be {BLOCK_SIZE} bytes, got {len(raw)}")
    return Header(*_HEADER_STRUCT.unpack(raw))


def validate_magic(header: Header) -> bool:
    return header.magic == USTAR_MAGIC


def compute_checksum(header: Header) -> int:
    """Unsigned byte sum of the record with the checksum field read as spaces."""
    blanked = dataclasses.replace(header, checksum=CHECKSUM_BLANK)
    return sum(encode(blanked))


def format_checksum(value: int) -> bytes:
    # six digits, NUL, then the trailing space left over from the blank field
    return b"%06o\x00 " % value


def with_checksum(header: Header) -> Header:
    """Return a copy of ``header`` carrying its recomputed checksum."""
    return dataclasses.replace(header, checksum=format_checksum(compute_checksum(header)))


def validate_checksum(header: Header) -> bool:
    return header.checksum == format_checksum(compute_checksum(header))


def is_end_of_archive(header: Header) -> bool:
    return encode(header) == ZERO_BLOCK
