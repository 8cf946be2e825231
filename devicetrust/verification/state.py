"""
Verification session states and the allowed transitions between them.
"""

from enum import Enum
from typing import Dict, FrozenSet


class VerificationState(str, Enum):
    REQUESTED = "requested"
    STARTED = "started"
    KEYS_EXCHANGED = "keys_exchanged"
    KEYS_VERIFIED = "keys_verified"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


class CancelCode(str, Enum):
    """Cancellation codes carried alongside the human-readable reason."""
    USER = "m.user"
    TIMEOUT = "m.timeout"
    UNKNOWN_TRANSACTION = "m.unknown_transaction"
    UNKNOWN_METHOD = "m.unknown_method"
    UNEXPECTED_MESSAGE = "m.unexpected_message"
    KEY_MISMATCH = "m.key_mismatch"
    MISMATCHED_COMMITMENT = "m.mismatched_commitment"
    MISMATCHED_SAS = "m.mismatched_sas"
    TRANSPORT = "m.transport_failure"


TERMINAL_STATES: FrozenSet[VerificationState] = frozenset({
    VerificationState.COMPLETED,
    VerificationState.CANCELLED,
})

TRANSITIONS: Dict[VerificationState, FrozenSet[VerificationState]] = {
    VerificationState.REQUESTED: frozenset({VerificationState.STARTED, VerificationState.CANCELLED}),
    VerificationState.STARTED: frozenset({VerificationState.KEYS_EXCHANGED, VerificationState.CANCELLED}),
    VerificationState.KEYS_EXCHANGED: frozenset({VerificationState.KEYS_VERIFIED, VerificationState.CANCELLED}),
    VerificationState.KEYS_VERIFIED: frozenset({VerificationState.COMPLETED, VerificationState.CANCELLED}),
    VerificationState.COMPLETED: frozenset(),
    VerificationState.CANCELLED: frozenset(),
}


def can_transition(current: VerificationState, target: VerificationState) -> bool:
    return target in TRANSITIONS[current]
