from __future__ import annotations

import sys
from pathlib import Path

# Allow running scripts without requiring an editable install (`pip install -e .`).
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
sys.path.insert(0, str(SRC_PATH))

import argparse
from dataclasses import dataclass
from datetime import datetime, timezone
import json
import logging
import os
import signal
import subprocess
import time

from ridecounts.config.loader import load_config
from ridecounts.utils.logging import configure_logging


logger = logging.getLogger(__name__)

# Weekly rollup runs on Sunday from this UTC hour, before that tick's sync and its prune.
WEEKLY_ROLLUP_HOUR_UTC = 0


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _read_json(path: Path) -> dict[str, object] | None:
    if not path.exists():
        return None
    try:
        obj = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.warning("Ignoring unreadable state file %s: %s", path, e)
        return None
    return obj if isinstance(obj, dict) else None


def _write_json(path: Path, payload: dict[str, object]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(".json.tmp")
    tmp.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
    tmp.replace(path)


def _is_pid_running(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def _acquire_lock(lock_path: Path) -> None:
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    if lock_path.exists():
        try:
            existing = int(lock_path.read_text(encoding="utf-8").strip())
        except ValueError:
            existing = None
        if existing and _is_pid_running(existing):
            raise RuntimeError(f"scheduler already running (lock pid={existing})")
        lock_path.unlink(missing_ok=True)
    lock_path.write_text(str(os.getpid()), encoding="utf-8")


def _release_lock(lock_path: Path) -> None:
    lock_path.unlink(missing_ok=True)


def _run(cmd: list[str], *, cwd: Path, timeout_s: float | None = None) -> tuple[int, str]:
    try:
        proc = subprocess.run(
            cmd,
            cwd=str(cwd),
            capture_output=True,
            text=True,
            timeout=(None if timeout_s is None else float(timeout_s)),
        )
        out = (proc.stdout or "") + ("\n" + proc.stderr if proc.stderr else "")
        return int(proc.returncode), out
    except subprocess.TimeoutExpired as e:
        out = (e.stdout or "") + ("\n" + e.stderr if e.stderr else "")
        return 124, str(out)
    except OSError as e:
        return 125, str(e)


def _tail(text: str, *, max_lines: int = 50) -> list[str]:
    lines = [ln.rstrip("\n") for ln in (text or "").splitlines()]
    return lines[-max(int(max_lines), 1) :]


@dataclass
class SchedulerState:
    last_sync_utc: str | None = None
    last_backfill_utc: str | None = None
    last_weekly_date: str | None = None

    @classmethod
    def load(cls, path: Path) -> "SchedulerState":
        obj = _read_json(path) or {}
        return cls(
            last_sync_utc=str(obj.get("last_sync_utc")) if obj.get("last_sync_utc") else None,
            last_backfill_utc=str(obj.get("last_backfill_utc")) if obj.get("last_backfill_utc") else None,
            last_weekly_date=str(obj.get("last_weekly_date")) if obj.get("last_weekly_date") else None,
        )

    def dump(self) -> dict[str, object]:
        return {
            "last_sync_utc": self.last_sync_utc,
            "last_backfill_utc": self.last_backfill_utc,
            "last_weekly_date": self.last_weekly_date,
        }


def should_run_interval(last_ts_utc: str | None, *, every_s: int, now: datetime) -> bool:
    if every_s <= 0:
        return False
    if not last_ts_utc:
        return True
    try:
        last = datetime.fromisoformat(str(last_ts_utc)).astimezone(timezone.utc)
    except ValueError:
        return True
    age_s = max((now - last).total_seconds(), 0.0)
    return age_s >= float(every_s)


def should_run_weekly(last_weekly_date: str | None, *, now: datetime) -> bool:
    # Python weekday(): Monday=0 .. Sunday=6.
    if now.weekday() != 6 or now.hour < WEEKLY_ROLLUP_HOUR_UTC:
        return False
    return last_weekly_date != now.date().isoformat()


def main() -> int:
    p = argparse.ArgumentParser(description="Long-run scheduler loop (forward sync, backfill, weekly rollup).")
    p.add_argument("--repo-root", default=str(PROJECT_ROOT))
    p.add_argument("--tick-seconds", type=int, default=int(os.getenv("SCHEDULER_TICK_SECONDS", "60")))
    p.add_argument("--sync-interval-minutes", type=int, default=int(os.getenv("SCHEDULER_SYNC_INTERVAL_MINUTES", "60")))
    p.add_argument(
        "--backfill-interval-minutes",
        type=int,
        default=int(os.getenv("SCHEDULER_BACKFILL_INTERVAL_MINUTES", "360")),
    )
    p.add_argument("--job-timeout-seconds", type=int, default=int(os.getenv("SCHEDULER_JOB_TIMEOUT_SECONDS", "3300")))
    args = p.parse_args()

    cfg = load_config()
    configure_logging(cfg.logging)

    repo_root = Path(args.repo_root)
    logs_dir = repo_root / "logs"
    state_path = logs_dir / "scheduler_state.json"
    hb_path = logs_dir / "scheduler_heartbeat.json"
    lock_path = logs_dir / "locks" / "scheduler.lock"
    _acquire_lock(lock_path)

    stop = {"flag": False}

    def _handle(_sig: int, _frame: object) -> None:
        stop["flag"] = True

    signal.signal(signal.SIGTERM, _handle)
    signal.signal(signal.SIGINT, _handle)

    state = SchedulerState.load(state_path)
    last_action = "startup"
    last_error: str | None = None
    timeout_s = float(args.job_timeout_seconds)

    try:
        while not stop["flag"]:
            now = _utc_now()

            if should_run_weekly(state.last_weekly_date, now=now):
                rc, out = _run([sys.executable, "scripts/run_weekly_rollup.py"], cwd=repo_root, timeout_s=timeout_s)
                last_action = f"weekly_rollup rc={rc}"
                last_error = None if rc == 0 else "weekly_rollup_failed"
                if rc == 0:
                    state.last_weekly_date = now.date().isoformat()
                else:
                    logger.warning("weekly_rollup failed rc=%s tail=%s", rc, _tail(out, max_lines=10))

            # Forward sync keeps every sensor current; a failed run is retried next interval.
            if should_run_interval(state.last_sync_utc, every_s=int(args.sync_interval_minutes) * 60, now=now):
                rc, out = _run([sys.executable, "scripts/run_sync.py"], cwd=repo_root, timeout_s=timeout_s)
                state.last_sync_utc = now.isoformat()
                last_action = f"sync rc={rc}"
                last_error = None if rc == 0 else "sync_failed"
                if rc != 0:
                    logger.warning("sync failed rc=%s tail=%s", rc, _tail(out, max_lines=10))

            if should_run_interval(state.last_backfill_utc, every_s=int(args.backfill_interval_minutes) * 60, now=now):
                rc, out = _run([sys.executable, "scripts/run_backfill.py"], cwd=repo_root, timeout_s=timeout_s)
                state.last_backfill_utc = now.isoformat()
                last_action = f"backfill rc={rc}"
                last_error = None if rc == 0 else "backfill_failed"
                if rc != 0:
                    logger.warning("backfill failed rc=%s tail=%s", rc, _tail(out, max_lines=10))

            _write_json(state_path, state.dump())
            _write_json(
                hb_path,
                {
                    "ts_utc": now.isoformat(),
                    "last_action": last_action,
                    "last_error": last_error,
                    "state": state.dump(),
                },
            )

            time.sleep(float(max(int(args.tick_seconds), 1)))
    finally:
        _release_lock(lock_path)

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
