"""Per-upload lifecycle state with transition validation."""

from __future__ import annotations

import logging
from enum import Enum

logger = logging.getLogger(__name__)


class UploadState(str, Enum):
    RECEIVED = "received"
    REJECTED = "rejected"
    TRANSFERRING = "transferring"
    PERSISTING = "persisting"
    COMPLETED = "completed"
    FAILED = "failed"


VALID_TRANSITIONS: dict[UploadState, set[UploadState]] = {
    UploadState.RECEIVED: {UploadState.REJECTED, UploadState.TRANSFERRING, UploadState.FAILED},
    UploadState.TRANSFERRING: {UploadState.PERSISTING, UploadState.FAILED},
    UploadState.PERSISTING: {UploadState.COMPLETED, UploadState.FAILED},
    UploadState.REJECTED: set(),
    UploadState.COMPLETED: set(),
    UploadState.FAILED: set(),
}

TERMINAL_STATES = frozenset({UploadState.REJECTED, UploadState.COMPLETED, UploadState.FAILED})


class UploadTracker:
    """Tracks one upload from receipt to its single terminal outcome.

    Lives only as long as the request; nothing is shared between uploads.
    """

    def __init__(self, upload_id: str):
        self.upload_id = upload_id
        self._state = UploadState.RECEIVED

    @property
    def state(self) -> UploadState:
        return self._state

    @property
    def is_terminal(self) -> bool:
        return self._state in TERMINAL_STATES

    def transition(self, new_state: UploadState) -> bool:
        """Transition to new state. Returns True if valid, False if rejected."""
        valid = VALID_TRANSITIONS.get(self._state, set())
        if new_state not in valid:
            logger.warning(
                "Invalid upload state transition for %s: %s -> %s (valid: %s)",
                self.upload_id, self._state.value, new_state.value,
                sorted(s.value for s in valid),
            )
            return False

        old_state = self._state
        self._state = new_state
        logger.debug("Upload %s: %s -> %s", self.upload_id, old_state.value, new_state.value)
        return True
