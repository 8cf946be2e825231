"""
Interactive SAS device verification session.

One session drives one handshake between this device and a peer device:

    REQUESTED -> STARTED -> KEYS_EXCHANGED -> KEYS_VERIFIED -> COMPLETED
    any non-terminal state -> CANCELLED

Peer-driven steps (accept, receive_key) and the derivation step are
synchronous. confirm() is async because it waits for the coordinator's
acknowledgement; cancel() changes state immediately and notifies the peer in
the background. Sessions run on one event loop and are not shared between
threads.
"""

import asyncio
import hmac
from typing import Callable, Dict, List, Optional, Set

from ..core import metrics
from ..core.errors import InvalidState, TransportFailure
from ..core.logging_config import get_logger
from .coordinator import SessionCoordinator
from .emoji import MAX_EMOJI, SAS_BYTES, SAS_TABLE_VERSION, SasEmoji, emoji_from_bytes
from .sas import (
    HASH,
    KEY_IDS,
    KEY_AGREEMENT_PROTOCOL,
    MAC_METHOD,
    SasKeyAgreement,
    mac_info,
    make_commitment,
    sas_info,
    verify_commitment,
)
from .state import CancelCode, VerificationState, can_transition

StateCallback = Callable[["VerificationSession", VerificationState], None]


def build_start_content(transaction_id: str, from_device: str) -> dict:
    """
    Parameters the starting device proposes; also the input to the commitment.
    """
    return {
        "from_device": from_device,
        "method": SAS_TABLE_VERSION,
        "key_agreement_protocols": [KEY_AGREEMENT_PROTOCOL],
        "hashes": [HASH],
        "message_authentication_codes": [MAC_METHOD],
        "short_authentication_string": ["emoji"],
        "transaction_id": transaction_id,
    }


class VerificationSession:
    """
    State machine for one verification handshake.

    Fields:
        transaction_id: Correlates every message of the handshake
        state: Current VerificationState
        emojis: Emoji to compare, set on entering KEYS_VERIFIED
        cancellation_reason / cancellation_code: Set on entering CANCELLED
        their_keys_verified: Set once the peer's MAC message checks out
        we_started: True if this device sent the start message (the starter's
            values come first in the SAS derivation)
    """

    def __init__(
        self,
        transaction_id: str,
        our_user_id: str,
        our_device_id: str,
        their_user_id: str,
        their_device_id: str,
        coordinator: SessionCoordinator,
        we_started: bool,
        sas: Optional[SasKeyAgreement] = None,
        emoji_count: int = MAX_EMOJI,
    ) -> None:
        self.transaction_id = transaction_id
        self.our_user_id = our_user_id
        self.our_device_id = our_device_id
        self.their_user_id = their_user_id
        self.their_device_id = their_device_id
        self.we_started = we_started
        self.emoji_count = emoji_count

        self.state = VerificationState.REQUESTED
        self.emojis: Optional[List[SasEmoji]] = None
        self.cancellation_reason: Optional[str] = None
        self.cancellation_code: Optional[CancelCode] = None
        self.their_keys_verified = False

        starter_device = our_device_id if we_started else their_device_id
        self.start_content = build_start_content(transaction_id, starter_device)

        self._coordinator = coordinator
        self._sas = sas or SasKeyAgreement()
        self._their_commitment: Optional[str] = None
        self._confirm_in_flight = False
        self._subscribers: List[StateCallback] = []
        self._notify_tasks: Set[asyncio.Task] = set()
        self._terminal = asyncio.Event()
        self.log = get_logger(__name__, trace_id=transaction_id)

        metrics.track_session_created()

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def subscribe(self, callback: StateCallback) -> Callable[[], None]:
        """
        Register callback(session, new_state) for every transition.

        Callbacks run synchronously at the transition point and should hand
        long work to their own task.

        Returns:
            A function that removes the subscription
        """
        self._subscribers.append(callback)
        return lambda: self.unsubscribe(callback)

    def unsubscribe(self, callback: StateCallback) -> None:
        try:
            self._subscribers.remove(callback)
        except ValueError:
            pass

    # ------------------------------------------------------------------
    # Handshake steps
    # ------------------------------------------------------------------

    @property
    def public_key(self) -> str:
        """Our ephemeral key, sent to the peer in the key message."""
        return self._sas.public_key

    @property
    def commitment(self) -> str:
        """Commitment to our ephemeral key, sent by the accepting side."""
        return make_commitment(self._sas.public_key, self.start_content)

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def accept(self, commitment: Optional[str] = None, start_content: Optional[dict] = None) -> None:
        """
        REQUESTED -> STARTED.

        Args:
            commitment: The accepting peer's commitment (outgoing sessions)
            start_content: The starting peer's proposed parameters (incoming sessions)
        """
        if self._ignore_if_terminal("accept"):
            return
        self._require(VerificationState.REQUESTED, "accept")

        if start_content is not None:
            if self.we_started:
                raise InvalidState("Start content comes from the starting device")
            if start_content.get("method") != SAS_TABLE_VERSION:
                self.cancel(f"Unsupported method: {start_content.get('method')}", CancelCode.UNKNOWN_METHOD)
                return
            protocols = start_content.get("key_agreement_protocols") or []
            if not isinstance(protocols, list) or KEY_AGREEMENT_PROTOCOL not in protocols:
                self.cancel("No supported key agreement protocol", CancelCode.UNKNOWN_METHOD)
                return
            self.start_content = dict(start_content)

        if commitment is not None:
            self.set_their_commitment(commitment)

        self._transition(VerificationState.STARTED)

    def set_their_commitment(self, commitment: str) -> None:
        """Record the accepting peer's commitment before its key arrives."""
        if not self.we_started:
            raise InvalidState("Only the starting device receives a commitment")
        if self.state not in (VerificationState.REQUESTED, VerificationState.STARTED):
            raise InvalidState(f"Commitment not expected in state {self.state.value}")
        self._their_commitment = commitment

    def receive_key(self, their_key: str) -> None:
        """
        STARTED -> KEYS_EXCHANGED.

        Cancels instead when the key does not match the peer's commitment or
        is not a usable X25519 key.
        """
        if self._ignore_if_terminal("receive_key"):
            return
        self._require(VerificationState.STARTED, "receive_key")

        if self.we_started:
            if self._their_commitment is None:
                self.cancel("Key received before commitment", CancelCode.UNEXPECTED_MESSAGE)
                return
            if not verify_commitment(their_key, self.start_content, self._their_commitment):
                self.cancel("Key does not match commitment", CancelCode.MISMATCHED_COMMITMENT)
                return

        try:
            self._sas.set_their_public_key(their_key)
        except ValueError as e:
            self.cancel(f"Invalid ephemeral key: {e}", CancelCode.KEY_MISMATCH)
            return

        self._transition(VerificationState.KEYS_EXCHANGED)

    def derive_sas(self) -> List[SasEmoji]:
        """
        KEYS_EXCHANGED -> KEYS_VERIFIED; derives and returns the emoji.
        """
        self._require(VerificationState.KEYS_EXCHANGED, "derive_sas")

        ours = (self.our_user_id, self.our_device_id, self._sas.public_key)
        theirs = (self.their_user_id, self.their_device_id, self._sas.their_public_key)
        starter, accepter = (ours, theirs) if self.we_started else (theirs, ours)
        info = sas_info(*starter, *accepter, self.transaction_id)

        sas_bytes = self._sas.generate_bytes(info, SAS_BYTES)
        self.emojis = emoji_from_bytes(sas_bytes, self.emoji_count)
        self.log.info("SAS derived: " + " ".join(e.description for e in self.emojis))

        self._transition(VerificationState.KEYS_VERIFIED)
        return self.emojis

    # ------------------------------------------------------------------
    # MACs over identity keys
    # ------------------------------------------------------------------

    def calculate_mac(self, key_id: str, key: str) -> str:
        """MAC we send over one of our own keys (or "KEY_IDS" over the key id list)."""
        self._require_sas("calculate_mac")
        info = mac_info(
            self.our_user_id, self.our_device_id,
            self.their_user_id, self.their_device_id,
            self.transaction_id, key_id,
        )
        return self._sas.calculate_mac(key, info)

    def verify_mac(self, key_id: str, key: str, mac: str) -> bool:
        """Check a MAC the peer sent over one of its keys."""
        self._require_sas("verify_mac")
        info = mac_info(
            self.their_user_id, self.their_device_id,
            self.our_user_id, self.our_device_id,
            self.transaction_id, key_id,
        )
        expected = self._sas.calculate_mac(key, info)
        return hmac.compare_digest(expected.encode("ascii"), str(mac).encode("utf-8"))

    def mac_content(self, our_keys: Dict[str, str]) -> dict:
        """
        Body of our MAC message over our identity keys.

        Args:
            our_keys: {"ed25519:<device>": b64, ...} from our device key bundle
        """
        self._require_sas("mac_content")
        macs = {kid: self.calculate_mac(kid, key) for kid, key in our_keys.items()}
        return {
            "transaction_id": self.transaction_id,
            "mac": macs,
            "keys": self.calculate_mac(KEY_IDS, ",".join(sorted(macs))),
        }

    def receive_mac(self, content: dict, their_keys: Dict[str, str]) -> bool:
        """
        Check the peer's MAC message against the keys we know for its device.

        Every MACed key we know must match and at least one must be known.
        Any mismatch cancels with m.key_mismatch.

        Args:
            content: The peer's MAC message ({"mac": {key_id: mac}, "keys": mac})
            their_keys: The peer device's published keys {key_id: b64}

        Returns:
            True if the peer's keys are attested
        """
        if self._ignore_if_terminal("receive_mac"):
            return False
        self._require_sas("receive_mac")

        macs = content.get("mac")
        keys_mac = content.get("keys")
        if not isinstance(macs, dict) or not macs or not isinstance(keys_mac, str):
            self.cancel("Malformed MAC message", CancelCode.UNEXPECTED_MESSAGE)
            return False
        if not self.verify_mac(KEY_IDS, ",".join(sorted(macs)), keys_mac):
            self.cancel("MAC over key ids does not match", CancelCode.KEY_MISMATCH)
            return False

        checked = 0
        for kid, mac in macs.items():
            key = their_keys.get(kid)
            if not isinstance(key, str):
                self.log.debug(f"Skipping MAC for unknown key {kid}")
                continue
            if not self.verify_mac(kid, key, mac):
                self.cancel(f"MAC mismatch for {kid}", CancelCode.KEY_MISMATCH)
                return False
            checked += 1

        if not checked:
            self.cancel("No known device key covered by MAC", CancelCode.KEY_MISMATCH)
            return False

        self.their_keys_verified = True
        self.log.info(f"Peer MACs verified for {checked} key(s)")
        return True

    def _require_sas(self, operation: str) -> None:
        if self.state is not VerificationState.KEYS_VERIFIED:
            raise InvalidState(f"{operation} requires state keys_verified, not {self.state.value}")

    # ------------------------------------------------------------------
    # Confirm / cancel
    # ------------------------------------------------------------------

    async def confirm(self) -> VerificationState:
        """
        Confirm the emoji matched and wait for the peer's acknowledgement.

        Only one confirmation may be in flight. A cancel() that lands while
        waiting wins; a transport failure cancels the session.

        Returns:
            The state after the attempt

        Raises:
            InvalidState: Outside KEYS_VERIFIED, or while a confirmation is pending
        """
        if self.state.is_terminal:
            return self.state
        self._require(VerificationState.KEYS_VERIFIED, "confirm")
        if self._confirm_in_flight:
            raise InvalidState("A confirmation is already in flight")

        self._confirm_in_flight = True
        self.log.info("Sending confirmation")
        try:
            acknowledged = await self._coordinator.send_confirmation(self.transaction_id)
        except TransportFailure as e:
            if not self.state.is_terminal:
                self.cancel(f"Transport failure while confirming: {e}", CancelCode.TRANSPORT)
            return self.state
        except asyncio.CancelledError:
            if not self.state.is_terminal:
                self.cancel("Confirmation aborted", CancelCode.USER)
            raise
        except Exception as exc:  # noqa: BLE001
            self.log.warning(f"Coordinator failed while confirming: {exc!r}")
            if not self.state.is_terminal:
                self.cancel(f"Transport failure while confirming: {exc}", CancelCode.TRANSPORT)
            return self.state
        finally:
            self._confirm_in_flight = False

        if self.state.is_terminal:
            self.log.info(f"Acknowledgement arrived after session became {self.state.value}")
            return self.state

        if not acknowledged:
            self.cancel("Transport failure: peer did not acknowledge confirmation", CancelCode.TRANSPORT)
            return self.state

        self._transition(VerificationState.COMPLETED)
        return self.state

    def cancel(self, reason: str, code: CancelCode = CancelCode.USER) -> Optional[asyncio.Task]:
        """
        Cancel locally right away and notify the peer in the background.

        No-op in terminal states.

        Returns:
            The notification task, or None if nothing was sent
        """
        if self.state.is_terminal:
            return None
        self._enter_cancelled(reason, code)
        return self._schedule_peer_notification(reason)

    def handle_peer_cancel(self, reason: Optional[str], code: Optional[str] = None) -> None:
        """The peer cancelled; record it without notifying the peer back."""
        if self.state.is_terminal:
            return
        try:
            parsed = CancelCode(code) if code else CancelCode.USER
        except ValueError:
            parsed = CancelCode.USER
        self._enter_cancelled(reason or "Cancelled by the other device", parsed)

    def expire(self) -> None:
        """Cancel an unanswered request."""
        if self.state is VerificationState.REQUESTED:
            self.cancel("Verification request timed out", CancelCode.TIMEOUT)

    async def wait_until_terminal(self) -> VerificationState:
        await self._terminal.wait()
        return self.state

    async def drain_notifications(self) -> None:
        """Wait for pending peer notifications to finish."""
        if self._notify_tasks:
            await asyncio.gather(*list(self._notify_tasks))

    def _enter_cancelled(self, reason: str, code: CancelCode) -> None:
        self.cancellation_reason = reason
        self.cancellation_code = code
        self.log.info(f"Cancelled ({code.value}): {reason}")
        self._transition(VerificationState.CANCELLED)

    def _schedule_peer_notification(self, reason: str) -> Optional[asyncio.Task]:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.log.warning("No running event loop; peer was not notified of cancellation")
            return None
        task = loop.create_task(self._send_cancellation(reason))
        self._notify_tasks.add(task)
        task.add_done_callback(self._notify_tasks.discard)
        return task

    async def _send_cancellation(self, reason: str) -> None:
        try:
            await self._coordinator.send_cancellation(self.transaction_id, reason)
        except Exception as exc:  # noqa: BLE001
            self.log.warning(f"Could not notify peer of cancellation: {exc}")

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _require(self, expected: VerificationState, operation: str) -> None:
        if self.state is not expected:
            raise InvalidState(f"{operation} requires state {expected.value}, not {self.state.value}")

    def _ignore_if_terminal(self, operation: str) -> bool:
        if self.state.is_terminal:
            self.log.debug(f"Ignoring {operation} in terminal state {self.state.value}")
            return True
        return False

    def _transition(self, target: VerificationState) -> None:
        if not can_transition(self.state, target):
            raise InvalidState(f"Cannot move from {self.state.value} to {target.value}")

        previous = self.state
        self.state = target
        self.log.info(f"State {previous.value} -> {target.value}")
        metrics.track_transition(target.value)

        if target.is_terminal:
            self._sas.wipe()
            self._terminal.set()

        for callback in list(self._subscribers):
            try:
                callback(self, target)
            except Exception:  # noqa: BLE001
                self.log.exception("State change subscriber failed")

    def __repr__(self) -> str:
        return (
            f"VerificationSession(transaction_id={self.transaction_id!r}, "
            f"peer={self.their_user_id}/{self.their_device_id}, state={self.state.value})"
        )
