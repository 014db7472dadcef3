"""Pytest configuration and test helpers."""

from __future__ import annotations

import sys
from contextlib import asynccontextmanager
from pathlib import Path

import pytest


# Ensure the application package is importable when running tests without an
# editable install. This mirrors the expected runtime layout where ``vetro``
# sits at the project root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from vetro.database import Database  # noqa: E402
from vetro.store import DocumentStore  # noqa: E402


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'vetro.db'}"


@pytest.fixture
def storage_root(tmp_path: Path) -> Path:
    root = tmp_path / "films"
    root.mkdir()
    return root


@pytest.fixture
def open_store(database_url: str):
    """Return a factory opening a store backed by a temporary SQLite file.

    The engine is created and disposed inside the caller's event loop.
    """

    @asynccontextmanager
    async def _open():
        database = Database(database_url)
        await database.create_all()
        try:
            yield DocumentStore(database.session_factory)
        finally:
            await database.dispose()

    return _open
