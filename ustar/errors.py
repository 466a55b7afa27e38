class UstarError(Exception):
    """Base class for ustar-specific errors."""


class EndOfArchive(UstarError):
    """The all-zero sentinel header was reached; not a defect."""


# Header decoding
class HeaderFormatError(UstarError):
    pass


class InvalidMagic(HeaderFormatError):
    pass


class InvalidChecksum(HeaderFormatError):
    pass


class FieldEncodingError(UstarError):
    pass


# Collaborators
class MetadataError(UstarError):
    pass


class ArchiveIOError(UstarError):
    pass
