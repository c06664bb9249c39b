from __future__ import annotations

# Allow running scripts without requiring an editable install (`pip install -e .`).
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
sys.path.insert(0, str(SRC_PATH))

import os

import uvicorn

from ridecounts.api.app import create_app
from ridecounts.config.loader import load_config


def main() -> None:
    config = load_config()
    app = create_app(config)

    # Bind to localhost by default; put a reverse proxy in front for anything public.
    host = os.getenv("RIDECOUNTS_HOST", "127.0.0.1")
    port = int(os.getenv("RIDECOUNTS_PORT", "8000"))
    proxy_headers = os.getenv("RIDECOUNTS_PROXY_HEADERS", "false").strip().lower() in {"1", "true", "yes", "on"}
    forwarded_allow_ips = os.getenv("RIDECOUNTS_FORWARDED_ALLOW_IPS", "127.0.0.1")

    uvicorn.run(
        app,
        host=host,
        port=port,
        proxy_headers=proxy_headers,
        forwarded_allow_ips=forwarded_allow_ips,
    )


if __name__ == "__main__":
    main()
