"""In-memory holder for the most recent rendered status page."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timezone


PLACEHOLDER_CONTENT = "<html><body><p>Initializing...</p></body></html>"


@dataclass(frozen=True)
class Snapshot:
    content: str
    produced_at: datetime | None = None

    @property
    def is_placeholder(self) -> bool:
        return self.produced_at is None


class SnapshotStore:
    """Holds the current snapshot and swaps it atomically on publish.

    Readers get an immutable ``Snapshot`` reference and never wait on a
    refresh; the lock only serialises writers.
    """

    def __init__(self, placeholder: str = PLACEHOLDER_CONTENT) -> None:
        self._lock = threading.Lock()
        self._snapshot = Snapshot(content=placeholder)

    def read(self) -> Snapshot:
        return self._snapshot

    def publish(self, content: str) -> Snapshot:
        if not content:
            raise ValueError("snapshot content must not be empty")
        snapshot = Snapshot(content=content, produced_at=datetime.now(timezone.utc))
        with self._lock:
            self._snapshot = snapshot
        return snapshot
