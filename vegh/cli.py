from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Sequence

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from vegh.cache import check_hit, create_empty_cache
from vegh.cache_db import ensure_db, load_cache, save_cache
from vegh.config import VeghConfig, default_author, load_config, save_config
from vegh.errors import (
    CorruptContainerError,
    EntryNotFoundError,
    HashMismatchError,
    InvalidUsageError,
    UnsupportedCompressionError,
    UnsupportedFormatVersionError,
    VeghError,
)
from vegh.filters import build_path_filter
from vegh.formats import policy_for
from vegh.header import read_header_bytes, read_metadata
from vegh.models import SnapEntry
from vegh.progress_ui import ByteProgressUI
from vegh.reader import get_file_content, get_library_info, list_files
from vegh.scanner import scan_files
from vegh.snapshot import SnapshotOptions, create_snapshot
from vegh.worker import CheckIntegrityStream, Error, Progress, Response, ResultIntegrity, SnapshotWorker


app = typer.Typer(help="Vegh snapshot CLI")
console = Console()

_ERROR_LABELS: tuple[tuple[type[VeghError], str], ...] = (
    (CorruptContainerError, "Snapshot is corrupt"),
    (UnsupportedFormatVersionError, "Format version not supported yet"),
    (UnsupportedCompressionError, "Unsupported compression"),
    (EntryNotFoundError, "Not in snapshot"),
    (HashMismatchError, "Integrity check failed"),
    (InvalidUsageError, "Invalid usage"),
)


def _render_error(exc: Exception) -> int:
    label = "Error"
    for error_type, text in _ERROR_LABELS:
        if isinstance(exc, error_type):
            label = text
            break
    console.print(f"[red]{label}:[/red] {exc}")
    return 1


def _format_timestamp(timestamp: int) -> str:
    if not timestamp:
        return "-"
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def _render_entries(entries: Sequence[SnapEntry]) -> None:
    table = Table(title=f"Files ({len(entries)})")
    table.add_column("Path")
    table.add_column("Size", justify="right")
    for entry in entries:
        path = entry.path if entry.is_file else f"{entry.path}/"
        table.add_row(path, str(entry.size))
    console.print(table)


def _render_path_summary(title: str, paths: list[str], style: str) -> None:
    if not paths:
        return
    console.print(f"[{style}]{title} ({len(paths)}):[/{style}]")
    for path in paths:
        console.print(f"  {path}")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Create, inspect and verify Vegh snapshots."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


@app.command()
def init(
    author: str | None = typer.Option(None, "--author", help="Default snapshot author."),
) -> None:
    """Write a .veghrc.json config and an empty cache in the current directory."""
    root = Path.cwd().resolve()
    config = VeghConfig(author=author or default_author())
    path = save_config(config, root)
    asyncio.run(ensure_db(config.cache_db_path(root)))
    console.print(f"[green]Initialized Vegh[/green] at {root}")
    console.print(f"Config: {path}")
    console.print(f"Cache DB: {config.cache_db_path(root)}")
    if not config.author:
        console.print("[yellow]No author found in VEGH_AUTHOR or USER; author left empty.[/yellow]")


async def _snap_async(
    source: Path,
    output: Path,
    *,
    author: str | None,
    comment: str | None,
    format_version: int | None,
    level: int | None,
    include: tuple[str, ...],
    exclude: tuple[str, ...],
    use_cache: bool,
) -> int:
    try:
        config = load_config()
    except (ValueError, VeghError) as exc:
        return _render_error(exc)

    if not source.is_dir():
        console.print(f"[red]Source is not a directory: {source}[/red]")
        return 1

    options = SnapshotOptions(
        author=author if author is not None else config.author,
        comment=comment if comment is not None else config.comment,
        format_version=format_version or config.format_version,
        compression_level=level or config.compression_level,
        include_patterns=include,
        exclude_patterns=tuple(config.exclude) + exclude,
    )
    db_path = config.cache_db_path()
    cache = await load_cache(db_path) if use_cache else create_empty_cache()

    try:
        with ByteProgressUI(console, transient=True) as progress:
            handle = progress.add_task(action="Snapshot", path=str(source), total_bytes=0)
            result = create_snapshot(
                source,
                output,
                options,
                cache,
                on_chunk=lambda delta: progress.advance(handle, delta),
                on_start=lambda total: progress.set_total(handle, total),
            )
            progress.complete(handle)
    except KeyboardInterrupt:
        console.print("[yellow]Snapshot interrupted.[/yellow] Cache was not updated.")
        return 130
    except (VeghError, OSError) as exc:
        return _render_error(exc)

    if use_cache:
        await save_cache(db_path, cache)

    console.print(f"[green]Snapshot written:[/green] {result.output}")
    console.print(
        f"Files: {result.file_count} | Hashed: {len(result.hashed_paths)} | "
        f"From cache: {len(result.cache_hits)}"
    )
    console.print(f"Format: v{result.metadata.format_version} | Digest: {result.digest.hex()}")
    return 0


@app.command()
def snap(
    source: Path = typer.Argument(Path("."), help="Directory to snapshot."),
    output: Path = typer.Option(Path("snapshot.vegh"), "--output", "-o", help="Snapshot file to write."),
    author: str | None = typer.Option(None, "--author", help="Override the configured author."),
    comment: str | None = typer.Option(None, "--comment", "-m", help="Snapshot comment."),
    format_version: int | None = typer.Option(None, "--format-version", help="Container format version (1 or 2)."),
    level: int | None = typer.Option(None, "--level", help="zstd compression level."),
    include: list[str] | None = typer.Option(
        None,
        "--include",
        help="Include glob pattern(s) for paths to snapshot (repeatable).",
    ),
    exclude: list[str] | None = typer.Option(
        None,
        "--exclude",
        help="Exclude glob pattern(s) for paths to skip (repeatable).",
    ),
    no_cache: bool = typer.Option(False, "--no-cache", help="Hash every file and leave the cache untouched."),
) -> None:
    """Create a snapshot of a directory, reusing cached digests for unchanged files."""
    raise typer.Exit(
        code=asyncio.run(
            _snap_async(
                source,
                output,
                author=author,
                comment=comment,
                format_version=format_version,
                level=level,
                include=tuple(include or ()),
                exclude=tuple(exclude or ()),
                use_cache=not no_cache,
            )
        )
    )


@app.command()
def info(file: Path = typer.Argument(..., help="Snapshot file.")) -> None:
    """Show snapshot metadata (reads only the header)."""
    try:
        with file.open("rb") as fh:
            metadata = read_metadata(read_header_bytes(fh))
        policy = policy_for(metadata.format_version)
    except (VeghError, OSError) as exc:
        raise typer.Exit(code=_render_error(exc))

    table = Table(title=str(file), show_header=False)
    table.add_column("Field")
    table.add_column("Value")
    table.add_row("Author", metadata.author or "-")
    table.add_row("Comment", metadata.comment or "-")
    table.add_row("Created", metadata.timestamp_human or _format_timestamp(metadata.timestamp))
    table.add_row("Format version", str(metadata.format_version))
    table.add_row("Hash algorithm", policy.hash_algorithm.value)
    table.add_row("Tool version", metadata.tool_version or "-")
    if metadata.cache_schema is not None:
        table.add_row("Cache schema", str(metadata.cache_schema))
    console.print(table)


@app.command(name="list")
def list_command(file: Path = typer.Argument(..., help="Snapshot file.")) -> None:
    """List the files stored in a snapshot."""
    try:
        entries = list_files(file.read_bytes())
    except (VeghError, OSError) as exc:
        raise typer.Exit(code=_render_error(exc))
    _render_entries(entries)


@app.command()
def cat(
    file: Path = typer.Argument(..., help="Snapshot file."),
    path: str = typer.Argument(..., help="Path of the entry inside the snapshot."),
    output: Path | None = typer.Option(None, "--output", "-o", help="Write the entry here instead of stdout."),
) -> None:
    """Print one file from a snapshot."""
    try:
        content = get_file_content(file.read_bytes(), path)
    except (VeghError, OSError) as exc:
        raise typer.Exit(code=_render_error(exc))
    if output is None:
        typer.echo(content, nl=False)
        return
    output.write_bytes(content)
    console.print(f"[green]Extracted[/green] {path} -> {output} ({len(content)} bytes)")


@app.command()
def check(
    file: Path = typer.Argument(..., help="Snapshot file."),
    expect: str | None = typer.Option(None, "--expect", help="Expected digest (hex)."),
    chunk_size: int | None = typer.Option(None, "--chunk-size", help="Bytes read per chunk."),
) -> None:
    """Stream the snapshot through its integrity hash on a worker thread."""
    try:
        config = load_config()
        total_bytes = file.stat().st_size
    except (ValueError, VeghError, OSError) as exc:
        raise typer.Exit(code=_render_error(exc))

    with ByteProgressUI(console, transient=True) as progress:
        handle = progress.add_task(action="Verify", path=str(file), total_bytes=total_bytes)

        def _on_response(response: Response) -> None:
            if isinstance(response, Progress):
                progress.set_percent(handle, response.progress)

        with SnapshotWorker(_on_response) as worker:
            future = worker.submit(
                CheckIntegrityStream(file=file, chunk_size=chunk_size or config.chunk_size, expected=expect)
            )
            try:
                result = future.result()
            except KeyboardInterrupt:
                console.print("[yellow]Check interrupted.[/yellow]")
                raise typer.Exit(code=130)

    if isinstance(result, ResultIntegrity):
        console.print(f"[green]OK[/green] {result.digest}")
        return
    message = result.message if isinstance(result, Error) else f"Unexpected response {result.TYPE}"
    console.print(f"[red]Integrity check failed:[/red] {message}")
    raise typer.Exit(code=1)


async def _scan_async(root: Path, include: tuple[str, ...], exclude: tuple[str, ...]) -> int:
    try:
        config = load_config()
        policy = policy_for(config.format_version)
    except (ValueError, VeghError) as exc:
        return _render_error(exc)

    db_path = config.cache_db_path()
    cache = await load_cache(db_path)
    path_filter = build_path_filter(include, tuple(config.exclude) + exclude)
    try:
        result = scan_files(root, cache, policy.hash_algorithm, path_filter=path_filter)
    except KeyboardInterrupt:
        console.print("[yellow]Scan interrupted.[/yellow] Cache was not updated.")
        return 130
    except OSError as exc:
        return _render_error(exc)
    await save_cache(db_path, cache)

    _render_path_summary("Hashed", result.hashed_paths, "yellow")
    console.print(
        f"Files: {len(result.entries)} | Unchanged (cache hit): {len(result.cache_hits)} | "
        f"Hashed: {len(result.hashed_paths)}"
    )
    return 0


@app.command()
def scan(
    root: Path = typer.Argument(Path("."), help="Directory to scan."),
    include: list[str] | None = typer.Option(None, "--include", help="Include glob pattern(s) (repeatable)."),
    exclude: list[str] | None = typer.Option(None, "--exclude", help="Exclude glob pattern(s) (repeatable)."),
) -> None:
    """Refresh the cache, hashing only files whose size or mtime changed."""
    raise typer.Exit(code=asyncio.run(_scan_async(root, tuple(include or ()), tuple(exclude or ()))))


async def _cache_check_async(path: Path) -> int:
    try:
        config = load_config()
        stat = path.stat()
        relative = path.resolve().relative_to(Path.cwd().resolve()).as_posix()
    except (ValueError, VeghError, OSError) as exc:
        return _render_error(exc)

    cache = await load_cache(config.cache_db_path())
    if check_hit(cache, relative, stat.st_size, stat.st_mtime_ns):
        console.print(f"[green]hit[/green] {relative}")
    else:
        console.print(f"[yellow]miss[/yellow] {relative}")
    return 0


@app.command(name="cache-check")
def cache_check(path: Path = typer.Argument(..., help="File to look up in the cache.")) -> None:
    """Report whether a file's size and mtime still match the cache."""
    raise typer.Exit(code=asyncio.run(_cache_check_async(path)))


@app.command()
def about() -> None:
    """Show library and format information."""
    library = get_library_info()
    console.print(f"vegh {library.version} (core {library.core_version})")
    console.print(f"Engine: {library.engine}")
    console.print(f"Supported format: v{library.supported_format}")
    console.print(f"Features: {', '.join(library.features)}")
