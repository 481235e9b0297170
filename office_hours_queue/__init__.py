"""Virtual office-hours queue (MQTT-based).

Students join a professor's line, the professor calls them in arrival order,
and everybody watching sees the same live waiting list:

- a Queue Coordinator (Join / Leave / CallNext over a transactional store)
- a Change Feed of versioned queue snapshots
- a Professor Availability tracker (available / busy / ended)
- an MQTT service adapter plus student and professor terminal clients

See README for how to run.
"""

from .coordinator import QueueCoordinator
from .errors import (
    InvariantViolation,
    NotFound,
    ProfessorUnavailable,
    QueueError,
    TransientStoreFailure,
)
from .feed import ChangeFeed, Subscription, watch_entry
from .models import Availability, EntryStatus, Professor, QueueEntry, QueueSnapshot
from .store import DurableStore, MemoryStore

__all__ = [
    "Availability",
    "ChangeFeed",
    "DurableStore",
    "EntryStatus",
    "InvariantViolation",
    "MemoryStore",
    "NotFound",
    "Professor",
    "ProfessorUnavailable",
    "QueueCoordinator",
    "QueueEntry",
    "QueueError",
    "QueueSnapshot",
    "Subscription",
    "TransientStoreFailure",
    "watch_entry",
]
