"""
Tests for the verification session state machine.

Critical tests:
1. Both sides of a handshake derive identical emoji
2. Only listed transitions are possible
3. Cancel wins a race with an outstanding confirmation
4. Transport failures end in CANCELLED with a reason
5. Observers see every transition and cannot break it
"""

import asyncio

import pytest

from devicetrust.core.errors import InvalidState, TransportFailure
from devicetrust.verification import (
    CancelCode,
    SasKeyAgreement,
    SessionCoordinator,
    VerificationSession,
    VerificationState,
    make_commitment,
)
from devicetrust.verification.state import TRANSITIONS

ALICE = "@alice:example.org"
BOB = "@bob:example.org"
TXN = "txn-1"


class FakeCoordinator(SessionCoordinator):
    """Records calls; confirmation outcome and timing are controllable."""

    def __init__(self, result=True):
        self.result = result
        self.gate = None
        self.confirmations = []
        self.cancellations = []

    async def send_confirmation(self, transaction_id):
        self.confirmations.append(transaction_id)
        if self.gate is not None:
            await self.gate.wait()
        if isinstance(self.result, Exception):
            raise self.result
        return self.result

    async def send_cancellation(self, transaction_id, reason):
        self.cancellations.append((transaction_id, reason))
        if isinstance(self.result, Exception):
            raise self.result


def make_sessions(coordinator=None, alice_sas=None, bob_sas=None):
    coordinator = coordinator or FakeCoordinator()
    alice = VerificationSession(TXN, ALICE, "ALICEDEV", BOB, "BOBDEV", coordinator, we_started=True, sas=alice_sas)
    bob = VerificationSession(TXN, BOB, "BOBDEV", ALICE, "ALICEDEV", coordinator, we_started=False, sas=bob_sas)
    return alice, bob


def exchange_keys(alice, bob):
    bob.accept(start_content=alice.start_content)
    alice.accept(commitment=bob.commitment)
    alice.receive_key(bob.public_key)
    bob.receive_key(alice.public_key)


def verified_pair(coordinator=None):
    alice, bob = make_sessions(coordinator)
    exchange_keys(alice, bob)
    alice.derive_sas()
    bob.derive_sas()
    return alice, bob


def test_full_handshake_states():
    alice, bob = make_sessions()

    assert alice.state is VerificationState.REQUESTED
    bob.accept(start_content=alice.start_content)
    alice.accept(commitment=bob.commitment)
    assert alice.state is VerificationState.STARTED

    alice.receive_key(bob.public_key)
    bob.receive_key(alice.public_key)
    assert alice.state is VerificationState.KEYS_EXCHANGED
    assert bob.state is VerificationState.KEYS_EXCHANGED

    alice.derive_sas()
    assert alice.state is VerificationState.KEYS_VERIFIED

    assert asyncio.run(alice.confirm()) is VerificationState.COMPLETED
    assert alice.is_terminal


def test_both_sides_derive_same_emoji():
    alice, bob = verified_pair()

    assert alice.emojis is not None
    assert len(alice.emojis) == 7
    assert alice.emojis == bob.emojis


def test_identical_key_material_gives_identical_emoji():
    """Sessions rebuilt from the same ephemeral keys derive the same sequence."""
    a_priv, b_priv = bytes(range(32)), bytes(range(1, 33))

    runs = []
    for _ in range(2):
        alice, bob = make_sessions(alice_sas=SasKeyAgreement(a_priv), bob_sas=SasKeyAgreement(b_priv))
        exchange_keys(alice, bob)
        runs.append(alice.derive_sas())

    assert runs[0] == runs[1]


def test_different_key_material_gives_different_emoji():
    first, _ = verified_pair()
    second, _ = verified_pair()

    assert first.emojis != second.emojis


def test_emoji_count_is_configurable():
    coordinator = FakeCoordinator()
    alice = VerificationSession(TXN, ALICE, "A", BOB, "B", coordinator, we_started=True, emoji_count=5)
    bob = VerificationSession(TXN, BOB, "B", ALICE, "A", coordinator, we_started=False, emoji_count=5)
    exchange_keys(alice, bob)

    assert len(alice.derive_sas()) == 5


def test_transition_table_is_linear_with_cancel():
    for state, targets in TRANSITIONS.items():
        if state.is_terminal:
            assert not targets
        else:
            assert VerificationState.CANCELLED in targets
            assert len(targets) == 2


def test_out_of_order_operations_raise():
    alice, _ = make_sessions()

    with pytest.raises(InvalidState):
        alice.derive_sas()
    with pytest.raises(InvalidState):
        alice.receive_key(SasKeyAgreement().public_key)
    with pytest.raises(InvalidState):
        asyncio.run(alice.confirm())
    assert alice.state is VerificationState.REQUESTED


def test_commitment_mismatch_cancels():
    alice, bob = make_sessions()
    bob.accept(start_content=alice.start_content)
    alice.accept(commitment=make_commitment(SasKeyAgreement().public_key, alice.start_content))

    alice.receive_key(bob.public_key)

    assert alice.state is VerificationState.CANCELLED
    assert alice.cancellation_code is CancelCode.MISMATCHED_COMMITMENT


def test_key_before_commitment_cancels():
    alice, bob = make_sessions()
    alice.accept()

    alice.receive_key(bob.public_key)

    assert alice.cancellation_code is CancelCode.UNEXPECTED_MESSAGE


def test_undecodable_key_cancels():
    alice, bob = make_sessions()
    bob.accept(start_content=alice.start_content)

    bob.receive_key("AAAA")

    assert bob.state is VerificationState.CANCELLED
    assert bob.cancellation_code is CancelCode.KEY_MISMATCH


def test_unsupported_start_method_cancels():
    alice, bob = make_sessions()
    start = dict(alice.start_content, method="m.reciprocate.v1")

    bob.accept(start_content=start)

    assert bob.cancellation_code is CancelCode.UNKNOWN_METHOD


def test_confirm_unacknowledged_cancels_with_reason():
    alice, _ = verified_pair(FakeCoordinator(result=False))

    state = asyncio.run(alice.confirm())

    assert state is VerificationState.CANCELLED
    assert alice.cancellation_code is CancelCode.TRANSPORT
    assert "Transport failure" in alice.cancellation_reason


def test_confirm_transport_error_cancels():
    alice, _ = verified_pair(FakeCoordinator(result=TransportFailure("connection reset")))

    state = asyncio.run(alice.confirm())

    assert state is VerificationState.CANCELLED
    assert alice.cancellation_code is CancelCode.TRANSPORT
    assert "connection reset" in alice.cancellation_reason


def test_confirm_unexpected_coordinator_error_cancels():
    """Errors outside TransportFailure still end the session instead of leaving it stuck."""
    coordinator = FakeCoordinator(result=ConnectionError("socket closed"))
    alice, _ = verified_pair(coordinator)

    state = asyncio.run(alice.confirm())

    assert state is VerificationState.CANCELLED
    assert alice.cancellation_code is CancelCode.TRANSPORT
    assert "socket closed" in alice.cancellation_reason

    # The in-flight flag was released; a terminal session just reports its state
    assert asyncio.run(alice.confirm()) is VerificationState.CANCELLED


def test_cancel_wins_race_with_confirm():
    """A cancel landing while the acknowledgement is outstanding wins."""
    coordinator = FakeCoordinator(result=True)
    alice, _ = verified_pair(coordinator)

    async def scenario():
        coordinator.gate = asyncio.Event()
        confirm_task = asyncio.create_task(alice.confirm())
        await asyncio.sleep(0)
        assert coordinator.confirmations == [TXN]

        alice.cancel("User changed their mind")
        assert alice.state is VerificationState.CANCELLED

        coordinator.gate.set()
        state = await confirm_task
        await alice.drain_notifications()
        return state

    assert asyncio.run(scenario()) is VerificationState.CANCELLED
    assert alice.cancellation_reason == "User changed their mind"
    assert coordinator.cancellations == [(TXN, "User changed their mind")]


def test_second_confirm_while_pending_raises():
    coordinator = FakeCoordinator(result=True)
    alice, _ = verified_pair(coordinator)

    async def scenario():
        coordinator.gate = asyncio.Event()
        first = asyncio.create_task(alice.confirm())
        await asyncio.sleep(0)
        with pytest.raises(InvalidState):
            await alice.confirm()
        coordinator.gate.set()
        return await first

    assert asyncio.run(scenario()) is VerificationState.COMPLETED
    assert coordinator.confirmations == [TXN]


def test_terminal_operations_are_noops():
    coordinator = FakeCoordinator()
    alice, bob = verified_pair(coordinator)
    asyncio.run(alice.confirm())

    assert alice.cancel("too late") is None
    assert alice.state is VerificationState.COMPLETED
    assert asyncio.run(alice.confirm()) is VerificationState.COMPLETED

    bob.cancel("no")
    bob.accept()
    bob.receive_key(alice.public_key)
    assert asyncio.run(bob.confirm()) is VerificationState.CANCELLED
    assert bob.cancellation_reason == "no"


def test_cancel_without_loop_skips_notification():
    coordinator = FakeCoordinator()
    alice, _ = make_sessions(coordinator)

    task = alice.cancel("bye")

    assert task is None
    assert alice.state is VerificationState.CANCELLED
    assert alice.cancellation_code is CancelCode.USER
    assert coordinator.cancellations == []


def test_cancel_notifies_peer_in_background():
    coordinator = FakeCoordinator()
    alice, _ = make_sessions(coordinator)

    async def scenario():
        task = alice.cancel("bye", CancelCode.MISMATCHED_SAS)
        assert alice.state is VerificationState.CANCELLED
        await task

    asyncio.run(scenario())

    assert coordinator.cancellations == [(TXN, "bye")]
    assert alice.cancellation_code is CancelCode.MISMATCHED_SAS


def test_cancel_notification_failure_is_swallowed():
    coordinator = FakeCoordinator(result=TransportFailure("offline"))
    alice, _ = make_sessions(coordinator)

    async def scenario():
        alice.cancel("bye")
        await alice.drain_notifications()

    asyncio.run(scenario())

    assert alice.state is VerificationState.CANCELLED
    assert coordinator.cancellations == [(TXN, "bye")]


def test_peer_cancel_does_not_notify_back():
    coordinator = FakeCoordinator()
    alice, _ = make_sessions(coordinator)

    alice.handle_peer_cancel("Bob declined", "m.user")

    assert alice.state is VerificationState.CANCELLED
    assert alice.cancellation_reason == "Bob declined"
    assert coordinator.cancellations == []


def test_peer_cancel_with_unknown_code():
    alice, _ = make_sessions()

    alice.handle_peer_cancel(None, "org.example.custom")

    assert alice.cancellation_code is CancelCode.USER
    assert alice.cancellation_reason


def test_expire_only_affects_requested_sessions():
    alice, bob = make_sessions()
    bob.accept(start_content=alice.start_content)

    alice.expire()
    bob.expire()

    assert alice.cancellation_code is CancelCode.TIMEOUT
    assert bob.state is VerificationState.STARTED


def test_observers_see_every_transition():
    alice, bob = make_sessions()
    seen = []
    alice.subscribe(lambda session, state: seen.append((session.transaction_id, state)))

    exchange_keys(alice, bob)
    alice.derive_sas()
    asyncio.run(alice.confirm())

    assert [s for _, s in seen] == [
        VerificationState.STARTED,
        VerificationState.KEYS_EXCHANGED,
        VerificationState.KEYS_VERIFIED,
        VerificationState.COMPLETED,
    ]
    assert all(txn == TXN for txn, _ in seen)


def test_observer_sees_emoji_on_keys_verified():
    alice, bob = make_sessions()
    captured = []
    alice.subscribe(
        lambda session, state: captured.append(session.emojis) if state is VerificationState.KEYS_VERIFIED else None
    )
    exchange_keys(alice, bob)

    emojis = alice.derive_sas()

    assert captured == [emojis]


def test_failing_observer_does_not_abort_transition(caplog):
    alice, _ = make_sessions()
    seen = []

    def broken(session, state):
        raise RuntimeError("observer bug")

    alice.subscribe(broken)
    alice.subscribe(lambda session, state: seen.append(state))

    alice.accept()

    assert alice.state is VerificationState.STARTED
    assert seen == [VerificationState.STARTED]
    assert any("subscriber failed" in r.getMessage() for r in caplog.records)


def test_unsubscribe_stops_notifications():
    alice, _ = make_sessions()
    seen = []
    remove = alice.subscribe(lambda session, state: seen.append(state))

    remove()
    alice.accept()

    assert seen == []


def test_macs_verify_across_devices():
    alice, bob = verified_pair()
    key = "base64identitykey"

    mac = alice.calculate_mac("ed25519:ALICEDEV", key)

    assert bob.verify_mac("ed25519:ALICEDEV", key, mac)
    assert not bob.verify_mac("ed25519:ALICEDEV", "other", mac)
    assert not alice.verify_mac("ed25519:ALICEDEV", key, mac)


def test_mac_requires_keys_verified():
    alice, _ = make_sessions()

    with pytest.raises(InvalidState):
        alice.calculate_mac("ed25519:ALICEDEV", "key")


def test_mac_content_checked_by_peer():
    alice, bob = verified_pair()
    alice_keys = {"ed25519:ALICEDEV": "YWxpY2Ugc2lnbmluZyBrZXk", "curve25519:ALICEDEV": "YWxpY2UgY3VydmUga2V5"}

    content = alice.mac_content(alice_keys)

    assert content["transaction_id"] == TXN
    assert sorted(content["mac"]) == ["curve25519:ALICEDEV", "ed25519:ALICEDEV"]
    assert bob.receive_mac(content, alice_keys)
    assert bob.their_keys_verified
    assert bob.state is VerificationState.KEYS_VERIFIED


def test_mac_for_unlisted_keys_is_skipped():
    """Keys we have never seen are ignored as long as one known key matches."""
    alice, bob = verified_pair()
    content = alice.mac_content({"ed25519:ALICEDEV": "c2lnbmluZw", "ed25519:NEWKEY": "bmV3"})

    assert bob.receive_mac(content, {"ed25519:ALICEDEV": "c2lnbmluZw"})


def test_mac_with_wrong_key_cancels():
    alice, bob = verified_pair()
    content = alice.mac_content({"ed25519:ALICEDEV": "c2lnbmluZw"})

    assert not bob.receive_mac(content, {"ed25519:ALICEDEV": "c29tZXRoaW5nIGVsc2U"})
    assert bob.cancellation_code is CancelCode.KEY_MISMATCH
    assert not bob.their_keys_verified
    assert not bob.receive_mac(content, {"ed25519:ALICEDEV": "c2lnbmluZw"})


def test_wait_until_terminal():
    alice, _ = verified_pair()

    async def scenario():
        waiter = asyncio.create_task(alice.wait_until_terminal())
        await asyncio.sleep(0)
        assert not waiter.done()
        await alice.confirm()
        return await waiter

    assert asyncio.run(scenario()) is VerificationState.COMPLETED
