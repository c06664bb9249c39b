from __future__ import annotations

import sys
from pathlib import Path

import pytest


def pytest_configure() -> None:
    """
    Keep a `src/` layout while allowing `pytest` to run without requiring an editable install.
    """

    project_root = Path(__file__).resolve().parents[1]
    src_path = project_root / "src"
    sys.path.insert(0, str(src_path))


@pytest.fixture
def store(tmp_path):
    # Imported here: `src/` is only on sys.path once `pytest_configure` has run.
    from ridecounts.storage.sqlite_store import SqliteStore

    s = SqliteStore(tmp_path / "ridecounts.db")
    s.ensure_schema()
    return s
