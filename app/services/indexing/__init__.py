"""
Synchronization engine.

Sync coordinator, batch scheduler, event applier, lifecycle manager
and health monitor for tracked token contracts.
"""

from .batch_scheduler import BatchScheduler, BlockRange, ScheduleResult, split_block_range
from .event_applier import ApplyOutcome, EventApplier, RangeResult
from .health import HealthMonitor, HealthStatus, SystemHealthStatus
from .lifecycle import LifecycleManager
from .sync_coordinator import RunOutcome, RunReport, SyncCoordinator

__all__ = [
    "ApplyOutcome",
    "BatchScheduler",
    "BlockRange",
    "EventApplier",
    "HealthMonitor",
    "HealthStatus",
    "LifecycleManager",
    "RangeResult",
    "RunOutcome",
    "RunReport",
    "ScheduleResult",
    "SyncCoordinator",
    "SystemHealthStatus",
    "split_block_range",
]
