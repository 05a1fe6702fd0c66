"""In-memory log of state change events, one bounded history per project.

The state machine notifies ``StateEventLog.record`` after every successful
update; the SSE endpoint polls ``get_events`` with the last sequence number
it has sent. Events are kept per project and trimmed to the newest
``EVENT_HISTORY_LIMIT`` entries.
"""

import threading
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone

from config.settings import EVENT_HISTORY_LIMIT


@dataclass
class StateEvent:
    """A progress notification emitted for one applied update."""

    sequence: int         # Monotonic per project, starting at 1
    project_id: str
    event_type: str       # "update" or "deleted"
    message: str          # Human-readable summary
    changes: dict = field(default_factory=dict)
    project_status: str | None = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict:
        return asdict(self)


class StateEventLog:
    """Thread-safe bounded event history keyed by project id."""

    def __init__(self, limit: int = EVENT_HISTORY_LIMIT):
        self.limit = limit
        self._events: dict[str, deque[StateEvent]] = {}
        self._sequences: dict[str, int] = {}
        self._lock = threading.Lock()

    def _append(self, project_id: str, event_type: str, message: str, changes: dict, status: str | None) -> StateEvent:
        with self._lock:
            sequence = self._sequences.get(project_id, 0) + 1
            self._sequences[project_id] = sequence
            event = StateEvent(
                sequence=sequence,
                project_id=project_id,
                event_type=event_type,
                message=message,
                changes=changes,
                project_status=status,
            )
            history = self._events.get(project_id)
            if history is None:
                history = self._events[project_id] = deque(maxlen=self.limit)
            history.append(event)
            return event

    def record(self, summary, project) -> StateEvent:
        """State machine listener: store the change summary of an update."""
        return self._append(
            project.id, "update", summary.describe(), summary.to_dict(), project.status.value
        )

    def record_deleted(self, project_id: str) -> StateEvent:
        return self._append(project_id, "deleted", f"Project {project_id} deleted", {}, None)

    def get_events(self, project_id: str, after: int = 0) -> list[StateEvent]:
        """Return events with a sequence number greater than ``after``."""
        with self._lock:
            return [e for e in self._events.get(project_id, ()) if e.sequence > after]

    def latest_sequence(self, project_id: str) -> int:
        with self._lock:
            return self._sequences.get(project_id, 0)

    def clear(self, project_id: str | None = None) -> None:
        with self._lock:
            if project_id is None:
                self._events.clear()
                self._sequences.clear()
            else:
                self._events.pop(project_id, None)
                self._sequences.pop(project_id, None)
