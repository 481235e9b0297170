from __future__ import annotations

# Professor availability state machine.
#
#   available <-> busy        (toggle, no queue side effects)
#   available|busy -> ended   (terminal for the session)
#
# Ending office hours only hides the professor from the listing; the waiting
# entries stay where they are. Clearing them is a separate coordinator action.

import logging
import time
from dataclasses import replace
from typing import Callable

from .errors import ProfessorUnavailable
from .models import Availability, Professor
from .store import DurableStore

logger = logging.getLogger(__name__)


class AvailabilityTracker:
    def __init__(self, store: DurableStore, *, clock: Callable[[], float] = time.time) -> None:
        self.store = store
        self._clock = clock

    def register(self, professor_id: str, name: str, office: str = "") -> Professor:
        """Create the professor on first login, or refresh identity fields.

        Name and office are last-write-wins. Logging in again after an ended
        session opens a new session as `available`.
        """
        if not professor_id:
            raise ValueError("professor_id required")
        if not name.strip():
            raise ValueError("name required")

        def apply(current: Professor | None) -> Professor:
            if current is None or current.availability is Availability.ENDED:
                return Professor(
                    professor_id=professor_id,
                    name=name.strip(),
                    office=office.strip(),
                    availability=Availability.AVAILABLE,
                    updated_at=self._clock(),
                )
            return replace(current, name=name.strip(), office=office.strip(), updated_at=self._clock())

        prof = self.store.update_professor(professor_id, apply)
        logger.info("professor %s registered (%s)", professor_id, prof.availability.value)
        return prof

    def get(self, professor_id: str) -> Professor:
        prof = self.store.get_professor(professor_id)
        if prof is None:
            raise ProfessorUnavailable(f"unknown professor {professor_id}")
        return prof

    def toggle(self, professor_id: str) -> Professor:
        def apply(current: Professor | None) -> Professor:
            current = _require_open(professor_id, current)
            nxt = Availability.BUSY if current.availability is Availability.AVAILABLE else Availability.AVAILABLE
            return replace(current, availability=nxt, updated_at=self._clock())

        prof = self.store.update_professor(professor_id, apply)
        logger.info("professor %s is now %s", professor_id, prof.availability.value)
        return prof

    def end(self, professor_id: str) -> Professor:
        def apply(current: Professor | None) -> Professor:
            current = _require_open(professor_id, current)
            return replace(current, availability=Availability.ENDED, updated_at=self._clock())

        prof = self.store.update_professor(professor_id, apply)
        logger.info("professor %s ended office hours", professor_id)
        return prof

    def listed(self) -> list[Professor]:
        return [p for p in self.store.list_professors() if p.is_listed]


def _require_open(professor_id: str, prof: Professor | None) -> Professor:
    if prof is None:
        raise ProfessorUnavailable(f"unknown professor {professor_id}")
    if prof.availability is Availability.ENDED:
        raise ProfessorUnavailable(f"{prof.name} has ended office hours")
    return prof
