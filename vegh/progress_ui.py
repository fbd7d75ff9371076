from __future__ import annotations

import threading
from dataclasses import dataclass

from rich.console import Console
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TaskProgressColumn,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)


def shorten_path(path: str, max_len: int = 64) -> str:
    if len(path) <= max_len:
        return path
    keep = max_len - 3
    if keep <= 0:
        return path[:max_len]
    head = keep // 2
    tail = keep - head
    return f"{path[:head]}...{path[-tail:]}"


@dataclass(slots=True)
class ProgressHandle:
    task_id: TaskID
    total: int


class ByteProgressUI:
    """Rich progress bar for byte-oriented work (hashing, archiving).

    Updates may come from a worker thread, so every call takes a lock.
    """

    def __init__(self, console: Console | None = None, *, transient: bool = False) -> None:
        self._lock = threading.Lock()
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold]{task.fields[action]}"),
            BarColumn(),
            TaskProgressColumn(),
            DownloadColumn(binary_units=True),
            TransferSpeedColumn(),
            TimeRemainingColumn(),
            TextColumn("{task.fields[path]}"),
            console=console,
            transient=transient,
            expand=True,
        )

    def __enter__(self) -> "ByteProgressUI":
        self._progress.__enter__()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self._progress.__exit__(exc_type, exc, tb)

    def add_task(self, *, action: str, path: str, total_bytes: int) -> ProgressHandle:
        with self._lock:
            task_id = self._progress.add_task(
                description=path,
                total=max(total_bytes, 1),
                action=action,
                path=shorten_path(path),
            )
        return ProgressHandle(task_id=task_id, total=max(total_bytes, 1))

    def advance(self, handle: ProgressHandle, delta: int) -> None:
        with self._lock:
            self._progress.update(handle.task_id, advance=max(0, delta))

    def set_percent(self, handle: ProgressHandle, percent: float) -> None:
        completed = min(handle.total, int(handle.total * percent / 100))
        with self._lock:
            self._progress.update(handle.task_id, completed=completed)

    def complete(self, handle: ProgressHandle) -> None:
        with self._lock:
            self._progress.update(handle.task_id, completed=handle.total)

    def set_total(self, handle: ProgressHandle, total_bytes: int) -> None:
        handle.total = max(total_bytes, 1)
        with self._lock:
            self._progress.update(handle.task_id, total=handle.total)
