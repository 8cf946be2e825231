"""
Tests for SAS key agreement, commitments and emoji mapping.
"""

import pytest

from devicetrust.verification.emoji import SAS_EMOJI, emoji_from_bytes, emoji_indices
from devicetrust.verification.sas import (
    SasKeyAgreement,
    mac_info,
    make_commitment,
    sas_info,
    verify_commitment,
)
from devicetrust.verification.session import build_start_content


def test_emoji_table_has_64_distinct_entries():
    assert len(SAS_EMOJI) == 64
    assert len({e.symbol for e in SAS_EMOJI}) == 64
    assert len({e.description for e in SAS_EMOJI}) == 64
    assert SAS_EMOJI[0].description == "Dog"
    assert SAS_EMOJI[63].description == "Pin"


def test_emoji_indices_bit_layout():
    """Indices come from consecutive 6-bit groups, most significant first."""
    assert emoji_indices(b"\x00" * 6) == [0] * 7
    assert emoji_indices(b"\xff" * 6) == [63] * 7
    # 0b000001 000010 000011 ... packed into the first 42 bits
    value = 0
    for i in range(1, 8):
        value = (value << 6) | i
    sas_bytes = (value << 6).to_bytes(6, "big")
    assert emoji_indices(sas_bytes) == [1, 2, 3, 4, 5, 6, 7]


def test_emoji_count_and_validation():
    assert len(emoji_from_bytes(b"\x12" * 6, count=4)) == 4
    with pytest.raises(ValueError):
        emoji_indices(b"\x00" * 5)
    with pytest.raises(ValueError):
        emoji_indices(b"\x00" * 6, count=8)


def test_shared_bytes_match_on_both_sides():
    alice = SasKeyAgreement()
    bob = SasKeyAgreement()
    alice.set_their_public_key(bob.public_key)
    bob.set_their_public_key(alice.public_key)

    info = sas_info("@a:x", "A", alice.public_key, "@b:x", "B", bob.public_key, "txn")

    assert alice.generate_bytes(info, 6) == bob.generate_bytes(info, 6)


def test_different_peers_give_different_bytes():
    alice = SasKeyAgreement()
    bob = SasKeyAgreement()
    mallory = SasKeyAgreement()
    alice.set_their_public_key(bob.public_key)
    mallory.set_their_public_key(bob.public_key)

    info = "MATRIX_KEY_VERIFICATION_SAS|fixed"

    assert alice.generate_bytes(info, 6) != mallory.generate_bytes(info, 6)


def test_info_binds_output():
    alice = SasKeyAgreement()
    bob = SasKeyAgreement()
    alice.set_their_public_key(bob.public_key)

    assert alice.generate_bytes("info-1", 6) != alice.generate_bytes("info-2", 6)


def test_fixed_private_keys_are_deterministic():
    a_priv = bytes(range(32))
    b_priv = bytes(range(32, 64))

    first = SasKeyAgreement(a_priv)
    first.set_their_public_key(SasKeyAgreement(b_priv).public_key)
    second = SasKeyAgreement(a_priv)
    second.set_their_public_key(SasKeyAgreement(b_priv).public_key)

    assert first.generate_bytes("info", 6) == second.generate_bytes("info", 6)


def test_bad_peer_keys_rejected():
    sas = SasKeyAgreement()

    with pytest.raises(ValueError):
        sas.set_their_public_key("AAAA")
    with pytest.raises(ValueError):
        sas.set_their_public_key("!!not base64!!")
    with pytest.raises(ValueError):
        sas.set_their_public_key(sas.public_key)
    assert not sas.has_their_key


def test_generate_bytes_requires_peer_key():
    with pytest.raises(ValueError):
        SasKeyAgreement().generate_bytes("info", 6)


def test_commitment_binds_key_and_start_content():
    key = SasKeyAgreement().public_key
    other_key = SasKeyAgreement().public_key
    start = build_start_content("txn1", "ALICEDEV")

    commitment = make_commitment(key, start)

    assert verify_commitment(key, start, commitment)
    assert not verify_commitment(other_key, start, commitment)
    assert not verify_commitment(key, build_start_content("txn2", "ALICEDEV"), commitment)
    assert not verify_commitment(key, {"bad": 1.5}, commitment)


def test_mac_matches_between_sender_and_receiver():
    alice = SasKeyAgreement()
    bob = SasKeyAgreement()
    alice.set_their_public_key(bob.public_key)
    bob.set_their_public_key(alice.public_key)
    info = mac_info("@a:x", "A", "@b:x", "B", "txn", "ed25519:A")

    assert alice.calculate_mac("KEY", info) == bob.calculate_mac("KEY", info)
    assert alice.calculate_mac("KEY", info) != alice.calculate_mac("OTHER", info)


def test_wipe_clears_secret_state():
    alice = SasKeyAgreement()
    alice.set_their_public_key(SasKeyAgreement().public_key)

    alice.wipe()

    assert not alice.has_their_key
    with pytest.raises(ValueError):
        alice.generate_bytes("info", 6)
