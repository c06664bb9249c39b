__all__ = [
    "BackfillPlanner",
    "HealthMonitor",
    "WatermarkSync",
    "WeeklyRollupAggregator",
    "prune_hourly",
]

from ridecounts.pipeline.backfill import BackfillPlanner
from ridecounts.pipeline.health import HealthMonitor
from ridecounts.pipeline.retention import prune_hourly
from ridecounts.pipeline.rollup import WeeklyRollupAggregator
from ridecounts.pipeline.sync import WatermarkSync
