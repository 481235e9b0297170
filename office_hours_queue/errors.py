"""Error taxonomy and the shared wire error envelope.

Every coordinator failure is a `QueueError` subclass with a stable `code`, so
the MQTT adapter and the CLIs report the same error names.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


class QueueError(Exception):
    code = "queue_error"


class NotFound(QueueError):
    """The entry (or position) is already gone, usually a benign race."""

    code = "not_found"


class ProfessorUnavailable(QueueError):
    """The professor is unknown or has ended office hours."""

    code = "professor_unavailable"


class TransientStoreFailure(QueueError):
    """The durable store could not complete the transaction. Callers may retry."""

    code = "store_unavailable"


class InvariantViolation(QueueError):
    """Queue state broke a position invariant. This is a defect, never retried."""

    code = "invariant_violation"


@dataclass(frozen=True)
class ErrorResponse:
    code: str
    message: str

    @classmethod
    def from_exception(cls, exc: QueueError) -> ErrorResponse:
        return cls(exc.code, str(exc) or exc.code)

    def to_message(self, *, corr_id: str | None = None) -> dict[str, Any]:
        msg: dict[str, Any] = {"type": "error", "code": self.code, "message": self.message}
        if corr_id is not None:
            msg["corr_id"] = corr_id
        return msg
