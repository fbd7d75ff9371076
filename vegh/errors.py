from __future__ import annotations


class VeghError(Exception):
    """Base class for every failure raised by the snapshot core."""


class CorruptContainerError(VeghError):
    """Bytes are structurally invalid: header markers, frame checksum, tar layout or duplicate paths."""


class UnsupportedCompressionError(VeghError):
    """The body is compressed with something other than a zstd frame."""


class UnsupportedFormatVersionError(VeghError):
    """The header is well-formed but declares a format version this reader does not implement."""

    def __init__(self, version: int) -> None:
        super().__init__(f"Unsupported snapshot format version: {version}")
        self.version = version


class EntryNotFoundError(VeghError):
    def __init__(self, path: str) -> None:
        super().__init__(f"File not found: {path}")
        self.path = path


class HashMismatchError(VeghError):
    def __init__(self, expected: str, actual: str) -> None:
        super().__init__(f"Digest mismatch: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class InvalidUsageError(VeghError):
    """The caller broke an API contract, e.g. reused a finalized hasher."""
