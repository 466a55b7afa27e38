from __future__ import annotations

import enum


# Block geometry
BLOCK_SIZE = 512
ZERO_BLOCK = b"\x00" * BLOCK_SIZE
TERMINATOR_BLOCKS = 18  # 9216 bytes; conformant readers need only two

# Magic and version ("old GNU" spelling of the ustar literals)
USTAR_MAGIC = b"ustar "        # 6 bytes
USTAR_VERSION = b" \x00"       # 2 bytes

# Checksum field is blanked to spaces while it is being computed
CHECKSUM_BLANK = b" " * 8

# Header field widths, in on-disk order
NAME_LEN = 100
MODE_LEN = 8
UID_LEN = 8
GID_LEN = 8
SIZE_LEN = 12
MTIME_LEN = 12
CHKSUM_LEN = 8
TYPEFLAG_LEN = 1
LINKNAME_LEN = 100
MAGIC_LEN = 6
VERSION_LEN = 2
UNAME_LEN = 32
GNAME_LEN = 32
DEVMAJOR_LEN = 8
DEVMINOR_LEN = 8
PREFIX_LEN = 155
RESERVED_LEN = 12

# Environment key the CLI reads for the default owner name
OWNER_ENV_KEY = "USER"


class TypeFlag(enum.Enum):
    NORMAL = b"0"
    HARDLINK = b"1"
    SYMBOLIC = b"2"
    CHARACTER = b"3"
    BLOCK = b"4"
    DIRECTORY = b"5"
    FIFO = b"6"
    UNKNOWN = b"\x00"

    @classmethod
    def from_byte(cls, raw: bytes) -> "TypeFlag":
        try:
            return cls(raw)
        except ValueError:
            return cls.UNKNOWN

    @property
    def has_content(self) -> bool:
        # Unknown covers legacy "\0" regular files and vendor extensions,
        # whose payload length is given by the size field
        return self in (TypeFlag.NORMAL, TypeFlag.UNKNOWN)
