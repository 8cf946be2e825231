"""
Interactive device verification (SAS emoji).

- State: session states, cancel codes, allowed transitions
- Emoji: the m.sas.v1 table
- SAS: ephemeral key agreement, commitments, MACs
- Session: one handshake's state machine
- Coordinator: transport contract a session calls into
- Manager: routes peer events to sessions
"""

from .state import VerificationState, CancelCode, TERMINAL_STATES, TRANSITIONS, can_transition
from .emoji import SasEmoji, SAS_EMOJI, SAS_TABLE_VERSION, emoji_from_bytes, emoji_indices
from .sas import SasKeyAgreement, make_commitment, verify_commitment, sas_info, mac_info
from .coordinator import SessionCoordinator
from .session import VerificationSession, build_start_content
from .manager import VerificationManager

__all__ = [
    "VerificationState",
    "CancelCode",
    "TERMINAL_STATES",
    "TRANSITIONS",
    "can_transition",
    "SasEmoji",
    "SAS_EMOJI",
    "SAS_TABLE_VERSION",
    "emoji_from_bytes",
    "emoji_indices",
    "SasKeyAgreement",
    "make_commitment",
    "verify_commitment",
    "sas_info",
    "mac_info",
    "SessionCoordinator",
    "VerificationSession",
    "build_start_content",
    "VerificationManager",
]
