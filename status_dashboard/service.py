"""Read-only status views served over HTTP."""

from __future__ import annotations

import time
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

from .refresh import RefreshCoordinator
from .snapshot_store import SnapshotStore


HTML_CONTENT_TYPE = "text/html; charset=utf-8"
NO_CACHE_HEADERS = {"Cache-Control": "no-cache, no-store, must-revalidate"}

# Captured when the package is first imported, i.e. at process start.
PROCESS_STARTED_AT = time.monotonic()


def format_timestamp(value: datetime | None) -> str | None:
    """ISO-8601 UTC with millisecond precision and a ``Z`` suffix."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class HealthView(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    ok: bool = True
    uptime: float
    last_update: str | None = Field(default=None, alias="lastUpdate")
    refresh_interval_minutes: int = Field(..., alias="refreshIntervalMinutes")
    is_refreshing: bool = Field(..., alias="isRefreshing")

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True)


class StatusService:
    """Serves the cached snapshot and health metadata without touching refreshes."""

    def __init__(
        self,
        store: SnapshotStore,
        coordinator: RefreshCoordinator,
        *,
        refresh_interval_minutes: int,
        started_at: float | None = None,
    ) -> None:
        self.store = store
        self.coordinator = coordinator
        self.refresh_interval_minutes = int(refresh_interval_minutes)
        self.started_at = PROCESS_STARTED_AT if started_at is None else started_at

    def uptime(self) -> float:
        return max(0.0, time.monotonic() - self.started_at)

    def get_status_page(self) -> tuple[str, str]:
        return self.store.read().content, HTML_CONTENT_TYPE

    def get_health(self) -> HealthView:
        snapshot = self.store.read()
        return HealthView(
            ok=True,
            uptime=self.uptime(),
            last_update=format_timestamp(snapshot.produced_at),
            refresh_interval_minutes=self.refresh_interval_minutes,
            is_refreshing=self.coordinator.in_progress,
        )
