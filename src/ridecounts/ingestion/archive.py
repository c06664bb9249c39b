from __future__ import annotations

# Archive keys carry UTC calendar dates so one file covers one requested window.
from datetime import date, datetime
# `json` serializes the raw report list exactly as validated (pretty-printed for manual audits).
import json
import logging
# `Path` keeps key -> file mapping cross-platform (no manual string joins).
from pathlib import Path
import tempfile
from typing import Any, Iterable, Mapping

from ridecounts.ingestion.report_schema import HourlyReport
from ridecounts.utils.dates import format_compact_date


logger = logging.getLogger(__name__)


class ArchiveWriteError(RuntimeError):
    pass


def archive_key(sensor_id: int | str, start: date | datetime, end: date | datetime) -> str:
    """
    Object key for one fetched window, e.g. "9000001435/20250101-20250131.json".
    """

    return f"{sensor_id}/{format_compact_date(start)}-{format_compact_date(end)}.json"


def _as_jsonable(report: HourlyReport | Mapping[str, Any]) -> dict[str, Any]:
    if isinstance(report, HourlyReport):
        # Keep upstream nulls and extra fields; the archive is a reprocessing source.
        return report.model_dump(mode="json")
    return dict(report)


class RawReportArchive:
    """
    Local object store for raw validated report arrays (backfill path only).

    It is an audit trail: nothing in the pipeline reads it back, and rewriting the same key
    simply overwrites the previous object.
    """

    def __init__(self, base_dir: Path) -> None:
        self._base_dir = Path(base_dir)

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def path_for(self, key: str) -> Path:
        return self._base_dir / key

    def write(
        self,
        sensor_id: int | str,
        start: date | datetime,
        end: date | datetime,
        reports: Iterable[HourlyReport | Mapping[str, Any]],
    ) -> Path:
        key = archive_key(sensor_id, start, end)
        out_path = self.path_for(key)
        payload = [_as_jsonable(r) for r in reports]
        try:
            out_path.parent.mkdir(parents=True, exist_ok=True)
            # Write to a temp file in the same directory, then rename, so readers never see half a file.
            with tempfile.NamedTemporaryFile(
                "w", delete=False, encoding="utf-8", dir=out_path.parent, suffix=".tmp"
            ) as tmp:
                tmp.write(json.dumps(payload, ensure_ascii=False, indent=2))
                tmp_path = Path(tmp.name)
            tmp_path.replace(out_path)
        except OSError as e:
            raise ArchiveWriteError(f"Failed to write archive object {key}: {e}") from e
        logger.debug("Archived %s reports to %s", len(payload), out_path)
        return out_path

    def read(self, key: str) -> list[dict[str, Any]]:
        return json.loads(self.path_for(key).read_text(encoding="utf-8"))
