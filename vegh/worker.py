"""Request/response protocol for running the snapshot core off the caller's thread.

Each request type is its own dataclass and ``handle_request`` dispatches on
the type. Every request produces exactly one terminal response (a result or
``Error``); streaming requests may emit ``Progress`` before it.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Callable, ClassVar

from vegh.cache import cache_from_dict, check_hit
from vegh.errors import InvalidUsageError, VeghError
from vegh.header import read_header_bytes, read_metadata
from vegh.models import SnapEntry, SnapshotMetadata, VeghCache
from vegh.reader import (
    DEFAULT_STREAM_CHUNK_SIZE,
    check_integrity_stream,
    get_file_content,
    list_files,
)


logger = logging.getLogger(__name__)


# --- Requests ---


@dataclass(slots=True, frozen=True)
class CheckIntegrityStream:
    file: Path
    chunk_size: int = DEFAULT_STREAM_CHUNK_SIZE
    expected: str | None = None


@dataclass(slots=True, frozen=True)
class GetMetadata:
    file: Path


@dataclass(slots=True, frozen=True)
class ListFiles:
    file: Path


@dataclass(slots=True, frozen=True)
class CheckCache:
    cache: VeghCache | dict[str, Any]
    path: str
    size: int
    modified: int


@dataclass(slots=True, frozen=True)
class GetFileContent:
    file: Path
    path: str


Request = CheckIntegrityStream | GetMetadata | ListFiles | CheckCache | GetFileContent


# --- Responses ---


@dataclass(slots=True, frozen=True)
class Ready:
    TYPE: ClassVar[str] = "READY"

    def payload(self) -> Any:
        return None


@dataclass(slots=True, frozen=True)
class Progress:
    TYPE: ClassVar[str] = "PROGRESS"
    task: str
    progress: float

    def payload(self) -> Any:
        return {"task": self.task, "progress": self.progress}


@dataclass(slots=True, frozen=True)
class ResultIntegrity:
    TYPE: ClassVar[str] = "RESULT_INTEGRITY"
    digest: str

    def payload(self) -> Any:
        return self.digest


@dataclass(slots=True, frozen=True)
class ResultMetadata:
    TYPE: ClassVar[str] = "RESULT_METADATA"
    metadata: SnapshotMetadata

    def payload(self) -> Any:
        return asdict(self.metadata)


@dataclass(slots=True, frozen=True)
class ResultFiles:
    TYPE: ClassVar[str] = "RESULT_FILES"
    files: tuple[SnapEntry, ...]

    def payload(self) -> Any:
        return [
            {"path": entry.path, "size": entry.size, "is_file": entry.is_file}
            for entry in self.files
        ]


@dataclass(slots=True, frozen=True)
class ResultCacheHit:
    TYPE: ClassVar[str] = "RESULT_CACHE_HIT"
    hit: bool

    def payload(self) -> Any:
        return self.hit


@dataclass(slots=True, frozen=True)
class ResultFileContent:
    TYPE: ClassVar[str] = "RESULT_FILE_CONTENT"
    path: str
    content: bytes

    def payload(self) -> Any:
        return {"path": self.path, "bytes": self.content}


@dataclass(slots=True, frozen=True)
class Error:
    TYPE: ClassVar[str] = "ERROR"
    message: str
    kind: str = "VeghError"

    def payload(self) -> Any:
        return self.message


Response = (
    Ready
    | Progress
    | ResultIntegrity
    | ResultMetadata
    | ResultFiles
    | ResultCacheHit
    | ResultFileContent
    | Error
)
Emit = Callable[[Response], None]

TERMINAL_RESPONSES = (
    ResultIntegrity,
    ResultMetadata,
    ResultFiles,
    ResultCacheHit,
    ResultFileContent,
    Error,
)


def to_message(response: Response) -> dict[str, Any]:
    return {"type": response.TYPE, "payload": response.payload()}


def _discard(_: Response) -> None:
    return None


def _check_integrity(request: CheckIntegrityStream, emit: Emit) -> Response:
    total_bytes = request.file.stat().st_size
    with request.file.open("rb") as fh:
        digest = check_integrity_stream(
            fh,
            total_bytes,
            request.chunk_size,
            on_progress=lambda progress: emit(Progress(task="integrity", progress=progress)),
            expected=request.expected,
        )
    return ResultIntegrity(digest=digest.hex())


def _get_metadata(request: GetMetadata) -> Response:
    with request.file.open("rb") as fh:
        prefix = read_header_bytes(fh)
    return ResultMetadata(metadata=read_metadata(prefix))


def _check_cache(request: CheckCache) -> Response:
    cache = request.cache
    if not isinstance(cache, VeghCache):
        cache = cache_from_dict(cache)
    return ResultCacheHit(hit=check_hit(cache, request.path, request.size, request.modified))


def _execute(request: Request, emit: Emit) -> Response:
    if isinstance(request, CheckIntegrityStream):
        return _check_integrity(request, emit)
    if isinstance(request, GetMetadata):
        return _get_metadata(request)
    if isinstance(request, ListFiles):
        return ResultFiles(files=tuple(list_files(request.file.read_bytes())))
    if isinstance(request, CheckCache):
        return _check_cache(request)
    if isinstance(request, GetFileContent):
        content = get_file_content(request.file.read_bytes(), request.path)
        return ResultFileContent(path=request.path, content=content)
    raise InvalidUsageError(f"Unknown command: {type(request).__name__}")


def handle_request(request: Request, emit: Emit | None = None) -> Response:
    """Run ``request`` and return its terminal response.

    Every failure comes back as ``Error``; nothing is raised.
    """
    try:
        return _execute(request, emit or _discard)
    except (VeghError, OSError) as exc:
        logger.debug("%s failed: %s", type(request).__name__, exc)
        return Error(message=str(exc), kind=type(exc).__name__)
    except Exception as exc:
        logger.exception("%s failed unexpectedly", type(request).__name__)
        return Error(message=f"Internal error: {exc}", kind=type(exc).__name__)


class SnapshotWorker:
    """Runs requests on a background thread and reports every response to ``on_response``.

    ``Ready`` is reported once on construction.
    """

    def __init__(self, on_response: Emit, *, max_workers: int = 1) -> None:
        self._on_response = on_response
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="vegh-worker"
        )
        self._emit(Ready())

    def _emit(self, response: Response) -> None:
        with self._lock:
            self._on_response(response)

    def _run(self, request: Request) -> Response:
        response = handle_request(request, self._emit)
        self._emit(response)
        return response

    def submit(self, request: Request) -> Future[Response]:
        return self._executor.submit(self._run, request)

    def close(self) -> None:
        self._executor.shutdown(wait=True)

    def __enter__(self) -> "SnapshotWorker":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
