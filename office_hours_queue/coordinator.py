from __future__ import annotations

# The Queue Coordinator is the *only* entry point that mutates queue state.
#
# It is pure logic over a DurableStore (easy to unit test); the MQTT adapter in
# `service.py` wraps it for remote clients.
#
# Failure policy:
# - NotFound races ("entry already gone") are absorbed: the desired end state
#   already holds.
# - TransientStoreFailure propagates unchanged, with no retry here.
# - InvariantViolation propagates and the transaction is aborted.

import logging
from typing import Callable

from .availability import AvailabilityTracker
from .errors import NotFound, ProfessorUnavailable
from .feed import ChangeFeed, Subscription
from .ledger import PositionLedger
from .models import Availability, Professor, QueueEntry, QueueSnapshot, new_entry_id
from .store import DurableStore, QueueTxn

logger = logging.getLogger(__name__)

CalledNotifier = Callable[[QueueEntry], None]


class QueueCoordinator:
    def __init__(self, store: DurableStore, *, poll_interval: float | None = None) -> None:
        self.store = store
        self.ledger = PositionLedger(store)
        self.availability = AvailabilityTracker(store)
        self.feed = ChangeFeed(store, poll_interval=poll_interval)
        self._called_notifiers: list[CalledNotifier] = []

    def on_called(self, notifier: CalledNotifier) -> None:
        """Register a hook run after a CallNext removal has been committed."""
        self._called_notifiers.append(notifier)

    # -------------------- professor lifecycle --------------------

    def register_professor(self, professor_id: str, name: str, office: str = "") -> Professor:
        return self.availability.register(professor_id, name, office)

    def toggle_availability(self, professor_id: str) -> Availability:
        return self.availability.toggle(professor_id).availability

    def end_office_hours(self, professor_id: str) -> Professor:
        """Hide the professor from the listing. Waiting entries are kept."""
        return self.availability.end(professor_id)

    def list_professors(self) -> list[Professor]:
        return self.availability.listed()

    def get_professor(self, professor_id: str) -> Professor:
        return self.availability.get(professor_id)

    # -------------------- queue operations --------------------

    def join(self, professor_id: str, student_name: str, student_contact: str = "") -> QueueEntry:
        """Append a student to the professor's queue and return the stored entry."""
        if not student_name.strip():
            raise ValueError("student_name required")

        entry = QueueEntry(
            entry_id=new_entry_id(),
            professor_id=professor_id,
            student_name=student_name.strip(),
            student_contact=student_contact.strip(),
        )
        stored = self.ledger.append(professor_id, entry, precondition=_accepting_joins)
        logger.info("%s joined %s at position %d", stored.student_name, professor_id, stored.position)
        return stored

    def leave(self, entry_id: str) -> bool:
        """Remove an entry by id. Returns False if it was already gone."""
        entry = self.store.find_entry(entry_id)
        if entry is None:
            logger.debug("leave %s: not waiting", entry_id)
            return False
        try:
            self.ledger.remove_by_id(entry.professor_id, entry_id)
        except NotFound:
            logger.debug("leave %s: removed concurrently", entry_id)
            return False
        logger.info("%s left %s", entry.student_name, entry.professor_id)
        return True

    def call_next(self, professor_id: str) -> QueueEntry | None:
        """Remove and return the front of the queue, or None if it is empty."""
        try:
            removed = self.ledger.remove_at(professor_id, 1)
        except NotFound:
            return None

        called = removed.called()
        logger.info("%s called %s", professor_id, called.student_name)

        # Committed; only now is it safe to tell anybody.
        for notify in list(self._called_notifiers):
            try:
                notify(called)
            except Exception:
                logger.exception("called-notifier failed for entry %s", called.entry_id)
        return called

    def clear_queue(self, professor_id: str) -> list[QueueEntry]:
        """Bulk Leave: remove every waiting entry in one transaction."""
        removed = self.ledger.remove_all(professor_id)
        if removed:
            logger.info("cleared %d entries from %s", len(removed), professor_id)
        return removed

    # -------------------- observation --------------------

    def snapshot(self, professor_id: str) -> QueueSnapshot:
        return self.ledger.snapshot(professor_id)

    def subscribe(self, professor_id: str) -> Subscription:
        return self.feed.subscribe(professor_id)

    def close(self) -> None:
        """Stop change polling and end every open subscription."""
        self.feed.close()


def _accepting_joins(txn: QueueTxn) -> None:
    prof = txn.professor
    if prof is None:
        raise ProfessorUnavailable(f"unknown professor {txn.professor_id}")
    if prof.availability is Availability.ENDED:
        raise ProfessorUnavailable(f"{prof.name} is not holding office hours")
