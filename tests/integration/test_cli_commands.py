from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from vegh.cli import app
from vegh.header import FIXED_HEADER, MAGIC


runner = CliRunner()


@pytest.fixture()
def workspace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("VEGH_AUTHOR", "cli-tester")
    project = tmp_path / "proj"
    (project / "b").mkdir(parents=True)
    (project / "a.txt").write_bytes(b"hello world")
    (project / "b" / "c.bin").write_bytes(b"")
    return tmp_path


def test_init_writes_config_and_cache(workspace: Path) -> None:
    result = runner.invoke(app, ["init", "--author", "alice"])

    assert result.exit_code == 0, result.output
    config = json.loads((workspace / ".veghrc.json").read_text(encoding="utf-8"))
    assert config["author"] == "alice"
    assert (workspace / ".vegh_cache.db").exists()


def test_snap_then_inspect(workspace: Path) -> None:
    snap = runner.invoke(app, ["snap", "proj", "-o", "out.vegh", "-m", "hi"])
    assert snap.exit_code == 0, snap.output
    assert "Hashed: 2" in snap.output

    again = runner.invoke(app, ["snap", "proj", "-o", "again.vegh"])
    assert again.exit_code == 0, again.output
    assert "From cache: 2" in again.output

    listing = runner.invoke(app, ["list", "out.vegh"])
    assert listing.exit_code == 0, listing.output
    assert "a.txt" in listing.output and "b/c.bin" in listing.output

    cat = runner.invoke(app, ["cat", "out.vegh", "a.txt"])
    assert cat.exit_code == 0
    assert cat.output == "hello world"

    info = runner.invoke(app, ["info", "out.vegh"])
    assert info.exit_code == 0, info.output
    assert "cli-tester" in info.output
    assert "blake3" in info.output


def test_check_verifies_and_detects_mismatch(workspace: Path) -> None:
    runner.invoke(app, ["snap", "proj", "-o", "out.vegh", "--format-version", "1", "--no-cache"])

    ok = runner.invoke(app, ["check", "out.vegh", "--chunk-size", "7"])
    assert ok.exit_code == 0, ok.output
    assert "OK" in ok.output

    bad = runner.invoke(app, ["check", "out.vegh", "--expect", "00" * 32])
    assert bad.exit_code == 1
    assert "Integrity check failed" in bad.output


def test_errors_are_reported_by_kind(workspace: Path) -> None:
    raw = json.dumps({"author": "future"}).encode()
    (workspace / "future.vegh").write_bytes(FIXED_HEADER.pack(MAGIC, 99, len(raw)) + raw)
    (workspace / "junk.vegh").write_bytes(b"definitely not a snapshot")
    runner.invoke(app, ["snap", "proj", "-o", "out.vegh"])

    future = runner.invoke(app, ["info", "future.vegh"])
    junk = runner.invoke(app, ["list", "junk.vegh"])
    missing = runner.invoke(app, ["cat", "out.vegh", "nope.txt"])

    assert future.exit_code == 1 and "Format version not supported yet" in future.output
    assert junk.exit_code == 1 and "Snapshot is corrupt" in junk.output
    assert missing.exit_code == 1 and "Not in snapshot" in missing.output


def test_scan_and_cache_check(workspace: Path) -> None:
    before = runner.invoke(app, ["cache-check", "proj/a.txt"])
    assert before.exit_code == 0 and "miss" in before.output

    scan = runner.invoke(app, ["scan", "."])
    assert scan.exit_code == 0, scan.output

    after = runner.invoke(app, ["cache-check", "proj/a.txt"])
    assert "hit" in after.output


def test_about_lists_features() -> None:
    result = runner.invoke(app, ["about"])

    assert result.exit_code == 0
    assert "streaming_hashing" in result.output
