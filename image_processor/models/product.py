"""Product processing status models."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from image_processor.core.errors import InvalidStatusTransition


class ProcessingStatus(str, Enum):
    """Image processing state stored on a product."""

    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"

    def can_transition_to(self, target: "ProcessingStatus") -> bool:
        """Return whether ``target`` may follow this status."""

        return target in _ALLOWED_TRANSITIONS[self]


# Redelivery of a task restarts at processing from any status.
_ALLOWED_TRANSITIONS: dict[ProcessingStatus, frozenset[ProcessingStatus]] = {
    ProcessingStatus.pending: frozenset({ProcessingStatus.processing}),
    ProcessingStatus.processing: frozenset(
        {ProcessingStatus.processing, ProcessingStatus.completed, ProcessingStatus.failed}
    ),
    ProcessingStatus.completed: frozenset({ProcessingStatus.processing}),
    ProcessingStatus.failed: frozenset({ProcessingStatus.processing}),
}


def validate_transition(current: Optional[ProcessingStatus], target: ProcessingStatus) -> None:
    """Raise ``InvalidStatusTransition`` when ``current -> target`` is not allowed.

    ``current`` is ``None`` when the prior status is unknown to the caller, in
    which case only a move to ``processing`` is accepted.
    """

    if current is None:
        if target is ProcessingStatus.processing:
            return
        raise InvalidStatusTransition(f"cannot move to {target.value} before processing started")

    if not current.can_transition_to(target):
        raise InvalidStatusTransition(f"cannot move from {current.value} to {target.value}")
