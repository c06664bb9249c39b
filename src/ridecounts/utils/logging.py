from __future__ import annotations

import logging
from typing import Iterable, Optional

from ridecounts.config.models import LoggingSettings


# Connection-pool chatter from `requests` drowns the per-sensor progress lines at DEBUG/INFO.
NOISY_LOGGERS = ("urllib3", "urllib3.connectionpool")


def resolve_level(name: str) -> int:
    level = getattr(logging, name.strip().upper(), None)
    if not isinstance(level, int):
        raise ValueError(f"Invalid log level: {name}")
    return level


def configure_logging(settings: LoggingSettings, *, quiet: Iterable[str] = NOISY_LOGGERS) -> None:
    level = resolve_level(settings.level)

    handlers: Optional[list[logging.Handler]] = None
    if settings.file is not None:
        settings.file.parent.mkdir(parents=True, exist_ok=True)
        handlers = [logging.FileHandler(settings.file, encoding="utf-8"), logging.StreamHandler()]

    logging.basicConfig(level=level, format=settings.format, handlers=handlers)
    for name in quiet:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
