"""
Verification manager.

Owns the sessions of one device, keyed by transaction id, and routes incoming
m.key.verification.* events to them. Messages for unknown transactions are
logged and dropped.
"""

import asyncio
import logging
from typing import Callable, Dict, List, Optional, Set, Tuple

from ..core.config import Settings
from ..core.errors import InvalidArgument, InvalidState
from ..core.ids import new_transaction_id
from .coordinator import SessionCoordinator
from .emoji import MAX_EMOJI, SAS_TABLE_VERSION
from .sas import SasKeyAgreement
from .session import VerificationSession
from .state import CancelCode, VerificationState

logger = logging.getLogger(__name__)

EVENT_REQUEST = "m.key.verification.request"
EVENT_READY = "m.key.verification.ready"
EVENT_START = "m.key.verification.start"
EVENT_ACCEPT = "m.key.verification.accept"
EVENT_KEY = "m.key.verification.key"
EVENT_MAC = "m.key.verification.mac"
EVENT_CANCEL = "m.key.verification.cancel"

ANY_DEVICE = "*"

DeviceKeyLookup = Callable[[str, str], Optional[Dict[str, str]]]


class VerificationManager:
    """
    Creates sessions and dispatches peer events to them.

    Args:
        coordinator: Transport used by every session
        our_user_id / our_device_id: This device
        settings: Emoji count and request timeout come from here
        sas_factory: Builds the ephemeral key agreement for new sessions
        device_keys: Looks up a peer device's published keys {key_id: b64} for
            MAC checks; usually backed by the directory service
    """

    def __init__(
        self,
        coordinator: SessionCoordinator,
        our_user_id: str,
        our_device_id: str,
        settings: Optional[Settings] = None,
        sas_factory: Callable[[], SasKeyAgreement] = SasKeyAgreement,
        device_keys: Optional[DeviceKeyLookup] = None,
    ):
        if not our_user_id or not our_device_id:
            raise InvalidArgument("our_user_id and our_device_id are required")
        self.coordinator = coordinator
        self.our_user_id = our_user_id
        self.our_device_id = our_device_id
        self.settings = settings or Settings()
        self._sas_factory = sas_factory
        self._device_keys = device_keys
        self._sessions: Dict[str, VerificationSession] = {}
        self._verified: Set[Tuple[str, str]] = set()
        self._timeouts: Dict[str, asyncio.TimerHandle] = {}

    # ------------------------------------------------------------------
    # Session creation
    # ------------------------------------------------------------------

    def request_verification(self, their_user_id: str, their_device_id: str) -> VerificationSession:
        """Start an outgoing verification; we are the starting device."""
        if not their_user_id or not their_device_id:
            raise InvalidArgument("their_user_id and their_device_id are required")
        session = self._create(new_transaction_id(), their_user_id, their_device_id, we_started=True)
        logger.info(f"Requested verification {session.transaction_id} with {their_user_id}/{their_device_id}")
        return session

    def on_request(self, their_user_id: str, content: dict) -> VerificationSession:
        """
        Create an incoming session from a request payload.

        Payloads that do not offer m.sas.v1 produce a session that is already
        cancelled with m.unknown_method.
        """
        transaction_id = content.get("transaction_id")
        their_device_id = content.get("from_device")
        if not isinstance(transaction_id, str) or not isinstance(their_device_id, str):
            raise InvalidArgument("Verification request needs string transaction_id and from_device")
        if not transaction_id or not their_device_id:
            raise InvalidArgument("Verification request needs transaction_id and from_device")
        if transaction_id in self._sessions:
            raise InvalidArgument(f"Duplicate transaction id: {transaction_id}")

        session = self._create(transaction_id, their_user_id, their_device_id, we_started=False)
        methods = content.get("methods") or []
        if SAS_TABLE_VERSION not in methods:
            session.cancel(f"No supported verification method in {methods}", CancelCode.UNKNOWN_METHOD)
        else:
            logger.info(f"Incoming verification {transaction_id} from {their_user_id}/{their_device_id}")
        return session

    def _create(self, transaction_id: str, their_user_id: str, their_device_id: str, we_started: bool) -> VerificationSession:
        session = VerificationSession(
            transaction_id=transaction_id,
            our_user_id=self.our_user_id,
            our_device_id=self.our_device_id,
            their_user_id=their_user_id,
            their_device_id=their_device_id,
            coordinator=self.coordinator,
            we_started=we_started,
            sas=self._sas_factory(),
            emoji_count=self.settings.sas_emoji_count or MAX_EMOJI,
        )
        session.subscribe(self._on_state_change)
        self._sessions[transaction_id] = session
        self._schedule_timeout(session)
        return session

    def _schedule_timeout(self, session: VerificationSession) -> None:
        timeout = self.settings.request_timeout_seconds
        if timeout is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No running event loop; request timeout for {session.transaction_id} not scheduled")
            return
        self._timeouts[session.transaction_id] = loop.call_later(timeout, session.expire)

    def _on_state_change(self, session: VerificationSession, state: VerificationState) -> None:
        if state is VerificationState.STARTED or state.is_terminal:
            handle = self._timeouts.pop(session.transaction_id, None)
            if handle is not None:
                handle.cancel()
        if state is VerificationState.COMPLETED:
            self._verified.add((session.their_user_id, session.their_device_id))
            logger.info(f"Device {session.their_user_id}/{session.their_device_id} verified")

    # ------------------------------------------------------------------
    # Event routing
    # ------------------------------------------------------------------

    def dispatch(self, event_type: str, content: dict) -> Optional[VerificationSession]:
        """
        Route a peer event to its session by transaction id.

        Returns:
            The session that handled the event, or None if it was dropped
        """
        transaction_id = content.get("transaction_id") if isinstance(content, dict) else None
        session = self._sessions.get(transaction_id) if isinstance(transaction_id, str) else None
        if session is None:
            logger.warning(f"Dropping {event_type} for unknown transaction {transaction_id}")
            return None

        if event_type == EVENT_CANCEL:
            session.handle_peer_cancel(content.get("reason"), content.get("code"))
        elif session.is_terminal:
            logger.debug(f"Ignoring {event_type} for finished transaction {transaction_id}")
        elif event_type == EVENT_READY:
            if session.state is VerificationState.REQUESTED and session.we_started:
                logger.info(f"Peer ready for {transaction_id}")
            else:
                self._unexpected(session, event_type)
        elif event_type == EVENT_START:
            if not session.we_started and session.state is VerificationState.REQUESTED:
                session.accept(start_content=content)
            else:
                self._unexpected(session, event_type)
        elif event_type == EVENT_ACCEPT:
            if not session.we_started:
                self._unexpected(session, event_type)
            elif session.state is VerificationState.REQUESTED:
                session.accept(commitment=content.get("commitment"))
            elif session.state is VerificationState.STARTED:
                session.set_their_commitment(content.get("commitment"))
            else:
                self._unexpected(session, event_type)
        elif event_type == EVENT_KEY:
            if session.state is VerificationState.STARTED and isinstance(content.get("key"), str):
                session.receive_key(content["key"])
                if session.state is VerificationState.KEYS_EXCHANGED:
                    session.derive_sas()
            else:
                self._unexpected(session, event_type)
        elif event_type == EVENT_MAC:
            if session.state is VerificationState.KEYS_VERIFIED:
                session.receive_mac(content, self._their_device_keys(session))
            else:
                self._unexpected(session, event_type)
        else:
            logger.debug(f"Unhandled verification event {event_type}")
        return session

    def _unexpected(self, session: VerificationSession, event_type: str) -> None:
        session.cancel(f"Unexpected {event_type} in state {session.state.value}", CancelCode.UNEXPECTED_MESSAGE)

    def _their_device_keys(self, session: VerificationSession) -> Dict[str, str]:
        if self._device_keys is None:
            logger.warning(f"No device key lookup configured; cannot check MACs for {session.transaction_id}")
            return {}
        return self._device_keys(session.their_user_id, session.their_device_id) or {}

    # ------------------------------------------------------------------
    # Lookups and user actions
    # ------------------------------------------------------------------

    def get_session(self, transaction_id: str) -> Optional[VerificationSession]:
        return self._sessions.get(transaction_id)

    def find_active(self, user_id: str, device_id: str = ANY_DEVICE) -> Optional[VerificationSession]:
        """First non-terminal session with this peer."""
        for session in self._sessions.values():
            if session.is_terminal or session.their_user_id != user_id:
                continue
            if device_id == ANY_DEVICE or session.their_device_id == device_id:
                return session
        return None

    @property
    def sessions(self) -> List[VerificationSession]:
        return list(self._sessions.values())

    async def confirm(self, transaction_id: str) -> VerificationState:
        return await self._require_session(transaction_id).confirm()

    def cancel(self, transaction_id: str, reason: str = "Cancelled by user") -> Optional[asyncio.Task]:
        return self._require_session(transaction_id).cancel(reason, CancelCode.USER)

    def release(self, transaction_id: str) -> None:
        """Forget a finished session."""
        session = self._require_session(transaction_id)
        if not session.is_terminal:
            raise InvalidState(f"Session {transaction_id} is still {session.state.value}")
        session.unsubscribe(self._on_state_change)
        del self._sessions[transaction_id]

    def _require_session(self, transaction_id: str) -> VerificationSession:
        session = self._sessions.get(transaction_id)
        if session is None:
            raise InvalidArgument(f"Unknown transaction: {transaction_id}")
        return session

    # ------------------------------------------------------------------
    # Verified devices
    # ------------------------------------------------------------------

    def is_device_verified(self, user_id: str, device_id: str) -> bool:
        return (user_id, device_id) in self._verified

    @property
    def verified_devices(self) -> List[Tuple[str, str]]:
        return sorted(self._verified)
