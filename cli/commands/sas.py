"""
SAS commands: table, demo
"""

import asyncio
import json
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from devicetrust.core.config import Settings
from devicetrust.keys import IdentityKeyStore
from devicetrust.verification import (
    SAS_EMOJI,
    SAS_TABLE_VERSION,
    CancelCode,
    SasKeyAgreement,
    SessionCoordinator,
    VerificationManager,
    VerificationState,
)
from devicetrust.verification.manager import (
    EVENT_ACCEPT,
    EVENT_CANCEL,
    EVENT_KEY,
    EVENT_MAC,
    EVENT_READY,
    EVENT_START,
)

app = typer.Typer()
console = Console()

ALICE = ("@alice:example.org", "ALICEDEV")
BOB = ("@bob:example.org", "BOBDEV")


class LoopbackCoordinator(SessionCoordinator):
    """
    Delivers messages straight to another in-process manager.
    """

    def __init__(self):
        self.peer: Optional[VerificationManager] = None

    async def send_confirmation(self, transaction_id: str) -> bool:
        await asyncio.sleep(0)
        session = self.peer.get_session(transaction_id) if self.peer else None
        return session is not None and session.state is not VerificationState.CANCELLED

    async def send_cancellation(self, transaction_id: str, reason: str) -> None:
        await asyncio.sleep(0)
        if self.peer is not None:
            self.peer.dispatch(EVENT_CANCEL, {"transaction_id": transaction_id, "reason": reason, "code": CancelCode.USER.value})


async def run_demo(emoji_count: int = 7, interloper: bool = False) -> dict:
    """
    Run one handshake between two local devices.

    With interloper=True, Bob receives a key that did not come from Alice, so
    the emoji differ and Alice cancels.
    """
    settings = Settings(sas_emoji_count=emoji_count)
    directory = {}
    for user_id, device_id in (ALICE, BOB):
        with IdentityKeyStore() as store:
            store.generate_identity_keys()
            directory[(user_id, device_id)] = store.build_device_key_bundle(user_id, device_id).keys

    def lookup(user_id, device_id):
        return directory.get((user_id, device_id))

    alice_link, bob_link = LoopbackCoordinator(), LoopbackCoordinator()
    alice = VerificationManager(alice_link, *ALICE, settings=settings, device_keys=lookup)
    bob = VerificationManager(bob_link, *BOB, settings=settings, device_keys=lookup)
    alice_link.peer, bob_link.peer = bob, alice

    outgoing = alice.request_verification(*BOB)
    txn = outgoing.transaction_id
    incoming = bob.on_request(ALICE[0], {"from_device": ALICE[1], "methods": [SAS_TABLE_VERSION], "transaction_id": txn})
    alice.dispatch(EVENT_READY, {"transaction_id": txn, "from_device": BOB[1], "methods": [SAS_TABLE_VERSION]})
    bob.dispatch(EVENT_START, outgoing.start_content)
    alice.dispatch(EVENT_ACCEPT, {"transaction_id": txn, "commitment": incoming.commitment})

    key_for_bob = SasKeyAgreement().public_key if interloper else outgoing.public_key
    bob.dispatch(EVENT_KEY, {"transaction_id": txn, "key": key_for_bob})
    alice.dispatch(EVENT_KEY, {"transaction_id": txn, "key": incoming.public_key})

    match = outgoing.emojis == incoming.emojis
    if match:
        bob.dispatch(EVENT_MAC, outgoing.mac_content(directory[ALICE]))
        alice.dispatch(EVENT_MAC, incoming.mac_content(directory[BOB]))
        await alice.confirm(txn)
        await bob.confirm(txn)
    else:
        outgoing.cancel("Emoji did not match", CancelCode.MISMATCHED_SAS)
        await outgoing.drain_notifications()

    return {
        "transaction_id": txn,
        "match": match,
        "alice": {"emoji": [e.description for e in outgoing.emojis or []], "state": outgoing.state.value},
        "bob": {"emoji": [e.description for e in incoming.emojis or []], "state": incoming.state.value},
        "symbols": {
            "alice": [e.symbol for e in outgoing.emojis or []],
            "bob": [e.symbol for e in incoming.emojis or []],
        },
        "cancellation": outgoing.cancellation_reason,
        "keys_verified": outgoing.their_keys_verified and incoming.their_keys_verified,
        "verified": alice.is_device_verified(*BOB) and bob.is_device_verified(*ALICE),
    }


@app.command()
def table(
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Show the SAS emoji table."""
    if json_output:
        print(json.dumps({
            "version": SAS_TABLE_VERSION,
            "emoji": [{"index": i, "symbol": e.symbol, "description": e.description} for i, e in enumerate(SAS_EMOJI)],
        }, ensure_ascii=False, indent=2))
        return

    t = Table(title=f"SAS emoji ({SAS_TABLE_VERSION})")
    t.add_column("#", justify="right", style="dim")
    t.add_column("Emoji")
    t.add_column("Description", style="cyan")
    for i, e in enumerate(SAS_EMOJI):
        t.add_row(str(i), e.symbol, e.description)
    console.print(t)


@app.command()
def demo(
    emoji_count: int = typer.Option(7, "--emoji", "-e", min=1, max=7, help="Emoji per side"),
    interloper: bool = typer.Option(False, "--interloper", help="Swap Alice's key in transit"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """
    Verify two in-process devices against each other.

    Examples:
        devicetrust sas demo
        devicetrust sas demo --interloper
    """
    result = asyncio.run(run_demo(emoji_count=emoji_count, interloper=interloper))

    if json_output:
        print(json.dumps(result, ensure_ascii=False, indent=2))
        return

    t = Table(title=f"Transaction {result['transaction_id']}")
    t.add_column("Device", style="cyan")
    t.add_column("Emoji")
    t.add_column("State")
    for side in ("alice", "bob"):
        emoji = "  ".join(f"{s} {d}" for s, d in zip(result["symbols"][side], result[side]["emoji"]))
        state = result[side]["state"]
        colour = "green" if state == VerificationState.COMPLETED.value else "red"
        t.add_row(side, emoji, f"[{colour}]{state}[/{colour}]")
    console.print(t)

    if result["match"]:
        console.print("[green]✓ Emoji match; devices verified[/green]")
    else:
        console.print(f"[red]✗ Emoji differ; verification cancelled ({result['cancellation']})[/red]")
