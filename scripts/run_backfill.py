from __future__ import annotations

import sys
from pathlib import Path

# Allow running scripts without requiring an editable install (`pip install -e .`).
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
sys.path.insert(0, str(SRC_PATH))

import argparse
import json
import logging

from ridecounts.config.loader import load_config
from ridecounts.pipeline.backfill import BackfillRequestError, NoDataError
from ridecounts.pipeline.factory import build_backfill, build_client, build_store
from ridecounts.utils.logging import configure_logging


logger = logging.getLogger(__name__)


def main() -> int:
    p = argparse.ArgumentParser(
        description=(
            "Backfill historical hourly counts. Without arguments, processes the next batch of sensors "
            "with the least history. With --sensor-id/--start-date/--end-date, fetches one explicit range."
        )
    )
    p.add_argument("--config", default=None, help="Config JSON path (default: config/default.json).")
    p.add_argument("--sensor-id", default=None, help="Segment id for a manual range backfill.")
    p.add_argument("--start-date", default=None, help="First day of the manual range (YYYYMMDD).")
    p.add_argument("--end-date", default=None, help="Last day of the manual range (YYYYMMDD).")
    args = p.parse_args()

    manual = [args.sensor_id, args.start_date, args.end_date]
    if any(manual) and not all(manual):
        p.error("--sensor-id, --start-date and --end-date must be given together")

    cfg = load_config(args.config)
    configure_logging(cfg.logging)

    try:
        client = build_client(cfg)
    except ValueError as e:
        logger.error("Cannot start backfill: %s", e)
        return 2

    with client:
        store = build_store(cfg)
        planner = build_backfill(cfg, store=store, client=client)
        if all(manual):
            try:
                inserted = planner.backfill_range(args.sensor_id, args.start_date, args.end_date)
            except BackfillRequestError as e:
                logger.error("Invalid backfill request: %s", e)
                return 2
            except NoDataError as e:
                logger.warning("%s", e)
                return 1
            print(json.dumps({"sensor_id": args.sensor_id, "rows_inserted": inserted}))
            return 0

        summary = planner.run()

    print(json.dumps(summary.as_dict(), ensure_ascii=False))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
