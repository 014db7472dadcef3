"""Command line behaviour tests."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from vetro.cli import build_parser, main
from vetro.config import Settings
from vetro.errors import StoreWriteError
from vetro.store import DocumentStore


@pytest.fixture
def settings(tmp_path: Path, storage_root: Path) -> Settings:
    return Settings(
        _env_file=None,
        STORAGE_DIR=str(storage_root),
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}",
        OPENROUTER_API_KEY="",
    )


def _film_id(settings: Settings, capsys: pytest.CaptureFixture[str]) -> str:
    assert main(["ls"], config=settings) == 0
    line = next(
        line for line in capsys.readouterr().out.splitlines() if "Heat" in line
    )
    return line.split()[0]


def test_scan_list_and_info(
    settings: Settings, storage_root: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    (storage_root / "Heat.1995.mkv").write_bytes(b"\0" * 1024)
    (storage_root / "Show.S01E01.mkv").write_bytes(b"\0" * 1024)

    assert main(["scan"], config=settings) == 0
    output = capsys.readouterr().out
    assert "Registered 2 new item(s) and 1 new episode(s)." in output

    film_id = _film_id(settings, capsys)
    assert main(["info", film_id], config=settings) == 0
    details = capsys.readouterr().out
    record = json.loads(details[details.index("{") : details.rindex("}") + 1])
    assert record["title"] == "Heat"
    assert record["year"] == 1995

    assert main(["scan"], config=settings) == 0
    assert "No new films found." in capsys.readouterr().out


def test_remove_and_clear(
    settings: Settings, storage_root: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    (storage_root / "Heat.1995.mkv").write_bytes(b"film")
    (storage_root / "Alien.1979.mkv").write_bytes(b"film")
    main(["scan"], config=settings)
    capsys.readouterr()

    film_id = _film_id(settings, capsys)
    assert main(["rm", film_id], config=settings) == 0
    assert 'Removed: "Heat"' in capsys.readouterr().out
    assert not (storage_root / film_id).exists()

    assert main(["clear"], config=settings) == 0
    assert "Removed all 1 film(s)" in capsys.readouterr().out
    assert main(["list"], config=settings) == 0
    assert "No films in database." in capsys.readouterr().out


def test_unknown_ids_exit_with_error(
    settings: Settings, capsys: pytest.CaptureFixture[str]
) -> None:
    assert main(["delete", "missing"], config=settings) == 1
    assert main(["info", "missing"], config=settings) == 1
    assert "Film not found: missing" in capsys.readouterr().out


def test_parser_requires_a_command() -> None:
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_store_failure_exits_with_error(
    settings: Settings,
    storage_root: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    (storage_root / "Heat.1995.mkv").write_bytes(b"film")

    async def _failing_commit(self, transform):
        raise StoreWriteError("database is locked")

    monkeypatch.setattr(DocumentStore, "commit", _failing_commit)

    assert main(["scan"], config=settings) == 1
    assert "Error: database is locked" in capsys.readouterr().err
