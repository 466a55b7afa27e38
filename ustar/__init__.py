"""
ustar: minimal reader/writer for the USTAR tape-archive format.

- Header codec: fixed 512-byte record of NUL-padded octal/text fields with
  an unsigned byte-sum checksum (ustar.header)
- Entries: one header plus 512-byte content blocks, built from a path via a
  metadata provider or read from a stream (ustar.entry, ustar.metadata)
- Archives: ordered entries with append, remove-by-name, lenient or strict
  reading, and writing with an 18-block zero terminator (ustar.archive)
- Command line: create, append, list, remove, extract (ustar.cli)

Not supported: compression, multi-volume archives, GNU/PAX long names,
sparse files, seeking.
"""

from .archive import Archive
from .constants import TypeFlag
from .entry import Entry
from .errors import (
    ArchiveIOError,
    EndOfArchive,
    FieldEncodingError,
    HeaderFormatError,
    InvalidChecksum,
    InvalidMagic,
    MetadataError,
    UstarError,
)
from .header import Header
from .metadata import FileMetadata, MetadataProvider, OSMetadataProvider

__version__ = "0.1"

__all__ = [
    "Archive",
    "Entry",
    "Header",
    "TypeFlag",
    "FileMetadata",
    "MetadataProvider",
    "OSMetadataProvider",
    "UstarError",
    "EndOfArchive",
    "HeaderFormatError",
    "InvalidMagic",
    "InvalidChecksum",
    "FieldEncodingError",
    "MetadataError",
    "ArchiveIOError",
]
