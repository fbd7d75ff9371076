from __future__ import annotations

import io
import logging
import tarfile
from typing import BinaryIO, Callable, Iterable, Iterator

from vegh.errors import CorruptContainerError, EntryNotFoundError, InvalidUsageError
from vegh.header import Buffer
from vegh.models import SnapEntry


logger = logging.getLogger(__name__)

FILE_MODE = 0o644
DIR_MODE = 0o755
_DRAIN_SIZE = 1024 * 1024


class _StrictTarInfo(tarfile.TarInfo):
    """Header parser that reports a damaged header instead of ending the archive there."""

    @classmethod
    def frombuf(cls, buf, encoding, errors):
        try:
            return super().frombuf(buf, encoding, errors)
        except tarfile.HeaderError as exc:
            # Empty and all-NUL blocks are end-of-archive markers.
            if not buf.strip(tarfile.NUL):
                raise
            raise CorruptContainerError(f"Archive member header is damaged: {exc}") from exc


def _open_tar(stream: BinaryIO) -> tarfile.TarFile:
    try:
        return tarfile.open(fileobj=stream, mode="r|", tarinfo=_StrictTarInfo)
    except tarfile.TarError as exc:
        raise CorruptContainerError(f"Archive is not a valid tar stream: {exc}") from exc


def _iter_members(tar: tarfile.TarFile) -> Iterator[tarfile.TarInfo]:
    iterator = iter(tar)
    while True:
        try:
            member = next(iterator)
        except StopIteration:
            return
        except tarfile.TarError as exc:
            raise CorruptContainerError(f"Archive is not a valid tar stream: {exc}") from exc
        yield member


def _entry_from_member(member: tarfile.TarInfo) -> SnapEntry | None:
    if member.isfile():
        return SnapEntry(path=member.name, size=member.size, offset=member.offset_data, is_file=True)
    if member.isdir():
        return SnapEntry(path=member.name, size=0, offset=member.offset_data, is_file=False)
    logger.debug("Skipping non-regular archive member %s", member.name)
    return None


def iter_entries(stream: BinaryIO) -> Iterator[SnapEntry]:
    """Yield entries in archive order, reading headers and skipping payloads.

    A path seen twice raises ``CorruptContainerError``.
    """
    seen: set[str] = set()
    with _open_tar(stream) as tar:
        for member in _iter_members(tar):
            entry = _entry_from_member(member)
            if entry is None:
                continue
            if entry.path in seen:
                raise CorruptContainerError(f"Duplicate path in archive: {entry.path}")
            seen.add(entry.path)
            yield entry
        _finish(tar)


def _read_padding(read: Callable[[int], bytes]) -> int:
    total = 0
    while True:
        chunk = read(_DRAIN_SIZE)
        if not chunk:
            return total
        if chunk.strip(tarfile.NUL):
            raise CorruptContainerError("Archive holds data after its end-of-archive marker")
        total += len(chunk)


def drain(stream: BinaryIO) -> int:
    """Read ``stream`` to EOF so the compressed frame checksum gets verified.

    Everything left must be NUL padding.
    """
    return _read_padding(stream.read)


def _finish(tar: tarfile.TarFile) -> None:
    # The tar reader buffers ahead of the underlying stream, so read through it.
    _read_padding(tar.fileobj.read)


def find_entry(stream: BinaryIO, path: str) -> bytes:
    """Return the payload of the first member named exactly ``path``.

    Stops reading the stream as soon as the member is found.
    """
    with _open_tar(stream) as tar:
        for member in _iter_members(tar):
            if member.name != path or not member.isfile():
                continue
            fh = tar.extractfile(member)
            if fh is None:
                raise CorruptContainerError(f"Archive member is unreadable: {path}")
            try:
                data = fh.read()
            except tarfile.TarError as exc:
                raise CorruptContainerError(f"Archive member is truncated: {path}") from exc
            if len(data) != member.size:
                raise CorruptContainerError(
                    f"Archive member {path} holds {len(data)} bytes, header says {member.size}"
                )
            return data
        _finish(tar)
    raise EntryNotFoundError(path)


def list_entries(archive_bytes: Buffer) -> list[SnapEntry]:
    return list(iter_entries(io.BytesIO(archive_bytes)))


def read_entry(archive_bytes: Buffer, path: str) -> bytes:
    return find_entry(io.BytesIO(archive_bytes), path)


def _file_info(path: str, size: int, mtime: int) -> tarfile.TarInfo:
    info = tarfile.TarInfo(path)
    info.size = size
    info.mtime = mtime
    info.mode = FILE_MODE
    info.uid = info.gid = 0
    info.uname = info.gname = ""
    return info


def add_file(
    tar: tarfile.TarFile,
    path: str,
    fh: BinaryIO,
    size: int,
    *,
    mtime: int = 0,
) -> None:
    if not path:
        raise InvalidUsageError("Archive paths must not be empty")
    tar.addfile(_file_info(path, size, mtime), fh)


def build_archive(files: Iterable[tuple[str, bytes]], *, mtime: int = 0) -> bytes:
    """Serialize ``(path, content)`` pairs, in order, into an uncompressed tar."""
    buffer = io.BytesIO()
    seen: set[str] = set()
    with tarfile.open(fileobj=buffer, mode="w", format=tarfile.PAX_FORMAT) as tar:
        for path, content in files:
            if path in seen:
                raise InvalidUsageError(f"Duplicate archive path: {path}")
            seen.add(path)
            add_file(tar, path, io.BytesIO(content), len(content), mtime=mtime)
    return buffer.getvalue()
