from __future__ import annotations

from typing import Optional

from fastapi import FastAPI

from ridecounts.api.routes import router
from ridecounts.config.models import AppConfig
from ridecounts.pipeline.health import HealthMonitor
from ridecounts.storage.sqlite_store import SqliteStore
from ridecounts.utils.logging import configure_logging


# App factory: read-only monitoring over the same database the scheduled jobs write to.
def create_app(config: AppConfig, *, store: Optional[SqliteStore] = None) -> FastAPI:
    configure_logging(config.logging)

    app = FastAPI(title=f"{config.app.name} monitoring")

    store = store or SqliteStore(config.storage.db_path)
    # Creating missing tables is idempotent and lets the endpoint answer before the first sync.
    store.ensure_schema()

    app.state.store = store
    app.state.health_monitor = HealthMonitor(store)

    app.include_router(router)
    return app
