from __future__ import annotations

import io
import logging
from typing import BinaryIO

import zstandard as zstd

from vegh.errors import CorruptContainerError, UnsupportedCompressionError
from vegh.header import Buffer, read_header


logger = logging.getLogger(__name__)

ZSTD_MAGIC = b"\x28\xb5\x2f\xfd"
DEFAULT_COMPRESSION_LEVEL = 3
DEFAULT_READ_SIZE = 128 * 1024

_FOREIGN_MAGICS = (
    (b"\x1f\x8b", "gzip"),
    (b"\xfd7zXZ\x00", "xz"),
    (b"BZh", "bzip2"),
    (b"\x04\x22\x4d\x18", "lz4"),
    (b"PK\x03\x04", "zip"),
)


def compress_archive(archive_bytes: Buffer, level: int = DEFAULT_COMPRESSION_LEVEL) -> bytes:
    compressor = zstd.ZstdCompressor(level=level, write_checksum=True)
    return compressor.compress(archive_bytes)


def compress_stream(
    source: BinaryIO,
    destination: BinaryIO,
    *,
    size: int = -1,
    level: int = DEFAULT_COMPRESSION_LEVEL,
) -> int:
    """Compress ``source`` into ``destination`` as one frame; return bytes written."""
    compressor = zstd.ZstdCompressor(level=level, write_checksum=True)
    _, written = compressor.copy_stream(source, destination, size=size)
    return written


def check_body(body: Buffer) -> None:
    """Reject bodies that are not a single well-formed zstd frame header."""
    view = memoryview(body)
    if len(view) == 0:
        raise CorruptContainerError("Snapshot body is empty")
    head = bytes(view[:8])
    if not head.startswith(ZSTD_MAGIC):
        for magic, name in _FOREIGN_MAGICS:
            if head.startswith(magic):
                raise UnsupportedCompressionError(f"Body is {name}-compressed; only zstd is supported")
        if len(view) < len(ZSTD_MAGIC):
            raise CorruptContainerError("Snapshot body is truncated")
        raise UnsupportedCompressionError(f"Unrecognized compression frame magic {head[:4].hex()}")

    try:
        params = zstd.get_frame_parameters(view)
    except zstd.ZstdError as exc:
        raise CorruptContainerError(f"Invalid zstd frame header: {exc}") from exc
    if params.dict_id:
        raise UnsupportedCompressionError(
            f"Frame requires zstd dictionary {params.dict_id}; dictionaries are not supported"
        )


class BodyReader(io.RawIOBase):
    """Decompress a zstd body lazily, only as far as the caller reads.

    Raises ``CorruptContainerError`` when the frame fails its checksum, when
    the compressed bytes run out before the frame ends, or when anything
    follows the frame.
    """

    def __init__(self, body: Buffer, read_size: int = DEFAULT_READ_SIZE) -> None:
        super().__init__()
        self._body = memoryview(body)
        self._read_size = read_size
        self._position = 0
        self._pending = bytearray()
        self._decompressor = zstd.ZstdDecompressor().decompressobj()

    @property
    def compressed_consumed(self) -> int:
        return self._position

    def readable(self) -> bool:
        return True

    def _check_trailing(self) -> None:
        trailing = len(self._decompressor.unused_data) + len(self._body) - self._position
        if trailing:
            raise CorruptContainerError(f"{trailing} unexpected byte(s) after the zstd frame")

    def readinto(self, buffer) -> int:
        while not self._pending:
            if self._decompressor.eof:
                self._check_trailing()
                return 0
            if self._position >= len(self._body):
                raise CorruptContainerError("Compressed body ends before the zstd frame is complete")
            chunk = self._body[self._position:self._position + self._read_size]
            self._position += len(chunk)
            try:
                self._pending += self._decompressor.decompress(chunk)
            except zstd.ZstdError as exc:
                raise CorruptContainerError(f"zstd frame is corrupt: {exc}") from exc

        size = min(len(buffer), len(self._pending))
        buffer[:size] = self._pending[:size]
        del self._pending[:size]
        return size

    def close(self) -> None:
        self._pending.clear()
        super().close()


def open_archive_body(body: Buffer) -> BinaryIO:
    check_body(body)
    return io.BufferedReader(BodyReader(body))


def open_body(container: Buffer) -> BinaryIO:
    header = read_header(container)
    return open_archive_body(memoryview(container)[header.body_offset:])


def decompress_body(container: Buffer, max_output_size: int | None = None) -> bytes:
    """Return the archive bytes, or only the first ``max_output_size`` of them."""
    with open_body(container) as reader:
        if max_output_size is None:
            data = reader.read()
        else:
            data = reader.read(max_output_size)
    logger.debug("Decompressed %d archive bytes", len(data))
    return data
