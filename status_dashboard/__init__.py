"""Status dashboard daemon: periodic collector refresh with a cached HTTP view."""

from .config import DashboardConfig, load_config
from .refresh import RefreshCoordinator, RefreshOutcome
from .service import HealthView, StatusService
from .snapshot_store import Snapshot, SnapshotStore

__all__ = [
    "DashboardConfig",
    "HealthView",
    "RefreshCoordinator",
    "RefreshOutcome",
    "Snapshot",
    "SnapshotStore",
    "StatusService",
    "load_config",
]
