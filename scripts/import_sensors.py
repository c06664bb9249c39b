from __future__ import annotations

import sys
from pathlib import Path

# Allow running scripts without requiring an editable install (`pip install -e .`).
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
sys.path.insert(0, str(SRC_PATH))

import argparse
import logging

import pandas as pd

from ridecounts.config.loader import load_config
from ridecounts.pipeline.factory import build_store
from ridecounts.storage.sqlite_store import SENSOR_COLUMNS
from ridecounts.utils.logging import configure_logging


logger = logging.getLogger(__name__)


def load_sensor_rows(path: Path) -> list[dict[str, object]]:
    """
    Read a sensor metadata CSV into rows for `SqliteStore.upsert_sensor_locations`.

    Only known columns are kept; rows without a numeric `segment_id` are skipped.
    """

    df = pd.read_csv(path, dtype=str, keep_default_na=True)
    df.columns = [str(c).strip().lower() for c in df.columns]
    if "segment_id" not in df.columns:
        raise ValueError(f"{path}: missing required column 'segment_id'")

    df["segment_id"] = pd.to_numeric(df["segment_id"], errors="coerce")
    missing = int(df["segment_id"].isna().sum())
    if missing:
        logger.warning("Skipping %s rows without a valid segment_id", missing)
    df = df.dropna(subset=["segment_id"]).copy()
    df["segment_id"] = df["segment_id"].astype(int)

    for col in ("latitude", "longitude"):
        if col in df.columns:
            df[col] = pd.to_numeric(df[col], errors="coerce")

    keep = [c for c in SENSOR_COLUMNS if c in df.columns]
    df = df[keep].drop_duplicates(subset=["segment_id"], keep="last")
    # NaN -> None so SQLite stores NULL.
    df = df.astype(object).where(pd.notna(df), None)
    return df.to_dict(orient="records")


def main() -> int:
    p = argparse.ArgumentParser(description="Import sensor metadata (segment id, timezone, status, county, ...) from CSV.")
    p.add_argument("csv", help="Path to the sensor metadata CSV.")
    p.add_argument("--config", default=None, help="Config JSON path (default: config/default.json).")
    args = p.parse_args()

    cfg = load_config(args.config)
    configure_logging(cfg.logging)

    path = Path(args.csv)
    if not path.exists():
        logger.error("CSV not found: %s", path)
        return 2

    rows = load_sensor_rows(path)
    written = build_store(cfg).upsert_sensor_locations(rows)
    logger.info("Imported %s sensors from %s", written, path)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
