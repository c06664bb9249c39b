from __future__ import annotations

import sys
from pathlib import Path

# Allow running scripts without requiring an editable install (`pip install -e .`).
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
sys.path.insert(0, str(SRC_PATH))

import argparse
from datetime import date
import logging

from ridecounts.config.loader import load_config
from ridecounts.pipeline.factory import build_rollup, build_store
from ridecounts.utils.logging import configure_logging


logger = logging.getLogger(__name__)


def main() -> int:
    p = argparse.ArgumentParser(description="Recompute weekly bike totals for the last completed Sunday-Saturday week.")
    p.add_argument("--config", default=None, help="Config JSON path (default: config/default.json).")
    p.add_argument("--today", default=None, help="Override today's date (YYYY-MM-DD), e.g. to re-run a past week.")
    p.add_argument("--counties", action="store_true", help="Print county totals after aggregating.")
    args = p.parse_args()

    cfg = load_config(args.config)
    configure_logging(cfg.logging)

    today = None
    if args.today:
        try:
            today = date.fromisoformat(args.today)
        except ValueError:
            p.error(f"--today must be YYYY-MM-DD, got {args.today!r}")

    aggregator = build_rollup(build_store(cfg))
    result = aggregator.run(today=today)

    if args.counties:
        df = aggregator.county_totals(result.week_ending)
        if df.empty:
            print("No county totals (no sensors reported data this week).")
        else:
            print(df.to_string(index=False))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
