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
from ridecounts.pipeline.factory import build_client, build_store, build_sync
from ridecounts.utils.logging import configure_logging


logger = logging.getLogger(__name__)


def _write_json(path: Path, payload: dict[str, object]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(".json.tmp")
    tmp.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
    tmp.replace(path)


def main() -> int:
    p = argparse.ArgumentParser(description="Forward sync: fetch new hourly counts for every active sensor.")
    p.add_argument("--config", default=None, help="Config JSON path (default: config/default.json).")
    p.add_argument("--summary-out", default=None, help="Optional path to write the run summary as JSON.")
    args = p.parse_args()

    cfg = load_config(args.config)
    configure_logging(cfg.logging)

    try:
        client = build_client(cfg)
    except ValueError as e:
        logger.error("Cannot start sync: %s", e)
        return 2

    with client:
        store = build_store(cfg)
        summary = build_sync(cfg, store=store, client=client).run()

    if args.summary_out:
        _write_json(Path(args.summary_out), summary.as_dict())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
