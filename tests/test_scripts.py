from __future__ import annotations

from datetime import datetime, timezone
import importlib.util
import json
import sys
from pathlib import Path
from types import ModuleType

import pytest


SCRIPTS_DIR = Path(__file__).resolve().parents[1] / "scripts"


def _load_script(name: str) -> ModuleType:
    spec = importlib.util.spec_from_file_location(f"ridecounts_script_{name}", SCRIPTS_DIR / f"{name}.py")
    assert spec is not None and spec.loader is not None
    module = importlib.util.module_from_spec(spec)
    sys.modules[spec.name] = module
    spec.loader.exec_module(module)
    return module


@pytest.mark.parametrize("script", ["run_sync", "run_backfill"])
def test_missing_api_key_exits_before_creating_database(monkeypatch, tmp_path, script: str) -> None:
    db_path = tmp_path / "data" / "ridecounts.db"
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"storage": {"db_path": str(db_path)}}), encoding="utf-8")

    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("API_KEY", raising=False)
    monkeypatch.delenv("RIDECOUNTS_DB_PATH", raising=False)
    monkeypatch.setattr("sys.argv", [f"{script}.py", "--config", str(config_path)])

    assert _load_script(script).main() == 2
    assert not db_path.exists()
    assert not db_path.parent.exists()


def test_weekly_rollup_is_due_from_sunday_midnight() -> None:
    scheduler = _load_script("scheduler_loop")

    assert scheduler.should_run_weekly(None, now=datetime(2026, 2, 8, 0, 1, tzinfo=timezone.utc))
    assert not scheduler.should_run_weekly("2026-02-08", now=datetime(2026, 2, 8, 5, 0, tzinfo=timezone.utc))
    assert not scheduler.should_run_weekly(None, now=datetime(2026, 2, 7, 23, 59, tzinfo=timezone.utc))
