from __future__ import annotations

# Value records shared by the ledger, the stores and the feed.
#
# Entries and professors are frozen dataclasses: the ledger never mutates an
# entry in place, it builds a renumbered copy with `dataclasses.replace`.

import time
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any


class Availability(str, Enum):
    AVAILABLE = "available"
    BUSY = "busy"
    ENDED = "ended"


class EntryStatus(str, Enum):
    WAITING = "waiting"
    CALLED = "called"


def new_entry_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class Professor:
    professor_id: str
    name: str
    office: str = ""
    availability: Availability = Availability.AVAILABLE
    updated_at: float = field(default_factory=time.time)

    @property
    def is_listed(self) -> bool:
        """Ended professors disappear from the student-visible listing."""
        return self.availability is not Availability.ENDED

    def to_message(self) -> dict[str, Any]:
        return {
            "professor_id": self.professor_id,
            "name": self.name,
            "office": self.office,
            "availability": self.availability.value,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True)
class QueueEntry:
    entry_id: str
    professor_id: str
    student_name: str
    student_contact: str = ""
    position: int = 0  # assigned by the ledger only
    status: EntryStatus = EntryStatus.WAITING
    joined_at: float = 0.0

    def to_message(self) -> dict[str, Any]:
        return {
            "entry_id": self.entry_id,
            "professor_id": self.professor_id,
            "student_name": self.student_name,
            "student_contact": self.student_contact,
            "position": self.position,
            "status": self.status.value,
            "joined_at": self.joined_at,
        }

    def called(self) -> QueueEntry:
        return replace(self, status=EntryStatus.CALLED)


@dataclass(frozen=True)
class SnapshotEntry:
    entry_id: str
    student_name: str
    position: int
    joined_at: float = 0.0


@dataclass(frozen=True)
class QueueSnapshot:
    """Full waiting list of one professor as of commit `version`."""

    professor_id: str
    version: int
    entries: tuple[SnapshotEntry, ...] = ()

    @classmethod
    def from_entries(cls, professor_id: str, version: int, entries: list[QueueEntry]) -> QueueSnapshot:
        return cls(
            professor_id=professor_id,
            version=version,
            entries=tuple(
                SnapshotEntry(e.entry_id, e.student_name, e.position, e.joined_at) for e in entries
            ),
        )

    def __len__(self) -> int:
        return len(self.entries)

    def position_of(self, entry_id: str) -> int | None:
        for e in self.entries:
            if e.entry_id == entry_id:
                return e.position
        return None

    def to_message(self) -> dict[str, Any]:
        return {
            "type": "queue_snapshot",
            "professor_id": self.professor_id,
            "version": self.version,
            "entries": [
                {
                    "entry_id": e.entry_id,
                    "student_name": e.student_name,
                    "position": e.position,
                    "joined_at": e.joined_at,
                }
                for e in self.entries
            ],
        }

    @classmethod
    def from_message(cls, msg: dict[str, Any]) -> QueueSnapshot:
        raw = msg.get("entries") or []
        return cls(
            professor_id=str(msg.get("professor_id", "")),
            version=int(msg.get("version", 0)),
            entries=tuple(
                SnapshotEntry(
                    entry_id=str(e["entry_id"]),
                    student_name=str(e.get("student_name", "")),
                    position=int(e["position"]),
                    joined_at=float(e.get("joined_at", 0.0) or 0.0),
                )
                for e in raw
                if isinstance(e, dict)
            ),
        )
