"""
Tests for the Commitment Codec

Tests:
  - Commitment normalization and word conversion
  - Deposit / withdrawal commitment determinism and input validation
  - Reversible foreign address packing
"""

import os
import sys

import pytest

# ── Path setup ────────────────────────────────────────────────────────
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from zkbridge.bridge.codec import (
    CommitmentCodec,
    commitment_from_words,
    commitment_to_words,
    decode_foreign_address,
    deposit_commitment,
    encode_foreign_address,
    generate_secret,
    is_commitment,
    normalize_commitment,
    withdrawal_commitment,
)
from zkbridge.constants import (
    ADDRESS_FIELD_COUNT,
    ADDRESS_MAX_BYTES,
    FIELD_MODULUS,
)
from zkbridge.exceptions import (
    InvalidCommitment,
    InvalidIdentity,
    InvalidSecret,
    MalformedInputError,
    UndecodableAddress,
)

IDENTITY = "0x8a3c5e1f2b4d6a7c9e0f1a2b3c4d5e"
SECRET = "11" * 32
OTHER_SECRET = "22" * 32
ORCHARD_ADDRESS = (
    "utest1qz3k6x7w5v8cn0l9sj2d4f6g8h0j2k4l6m8n0p2q4r6s8t0u2v4w6x8y0z"
    "2a4c6e8g0i2k4m6o8q0s2u4w6y8a0c2e4g6i8k0m2o4q6s8u0w2y4a6c8e0"
)
SAPLING_ADDRESS = "ztestsapling1c8k2w5n9r3t6y8u1i4o7p0a3s6d9f2g5h8j1k4l7z0x3c6v9b2n5m8"


# ═══════════════════════════════════════════════════════════════════════
#  1. COMMITMENT HELPERS
# ═══════════════════════════════════════════════════════════════════════

class TestNormalizeCommitment:

    def test_canonical_form_unchanged(self):
        c = "0x" + "ab" * 32
        assert normalize_commitment(c) == c

    def test_adds_prefix_and_lowercases(self):
        assert normalize_commitment("AB" * 32) == "0x" + "ab" * 32
        assert normalize_commitment("0XAB" + "cd" * 31) == "0xab" + "cd" * 31

    def test_strips_whitespace(self):
        assert normalize_commitment("  0x" + "01" * 32 + "\n") == "0x" + "01" * 32

    @pytest.mark.parametrize("value", [
        "",
        "0x",
        "0x" + "ab" * 31,
        "0x" + "ab" * 33,
        "0x" + "zz" * 32,
        "0x" + "ab" * 31 + "a ",
    ])
    def test_rejects_malformed(self, value):
        with pytest.raises(InvalidCommitment):
            normalize_commitment(value)

    def test_rejects_non_string(self):
        with pytest.raises(InvalidCommitment):
            normalize_commitment(1234)

    def test_invalid_commitment_is_malformed_input(self):
        assert issubclass(InvalidCommitment, MalformedInputError)

    def test_is_commitment(self):
        assert is_commitment("0x" + "00" * 32)
        assert not is_commitment("hello")


class TestCommitmentWords:

    def test_split_into_four_limbs(self):
        c = "0x" + "0000000000000001" + "0000000000000002" + "0000000000000003" + "0000000000000004"
        assert commitment_to_words(c) == (1, 2, 3, 4)

    def test_words_roundtrip(self):
        c = "0x" + "ab" * 32
        assert commitment_from_words(commitment_to_words(c)) == c

    def test_limb_above_modulus_rejected(self):
        with pytest.raises(InvalidCommitment):
            commitment_to_words("0x" + "ff" * 32)

    def test_from_words_wrong_count(self):
        with pytest.raises(InvalidCommitment):
            commitment_from_words([1, 2, 3])

    def test_from_words_out_of_range(self):
        with pytest.raises(InvalidCommitment):
            commitment_from_words([1, 2, 3, FIELD_MODULUS])
        with pytest.raises(InvalidCommitment):
            commitment_from_words([1, 2, 3, -1])


# ═══════════════════════════════════════════════════════════════════════
#  2. DEPOSIT COMMITMENTS
# ═══════════════════════════════════════════════════════════════════════

class TestDepositCommitment:

    def test_deterministic(self):
        assert deposit_commitment(IDENTITY, SECRET) == deposit_commitment(IDENTITY, SECRET)

    def test_canonical_and_field_representable(self):
        c = deposit_commitment(IDENTITY, SECRET)
        assert c == normalize_commitment(c)
        assert all(w < FIELD_MODULUS for w in commitment_to_words(c))

    def test_different_secret_differs(self):
        assert deposit_commitment(IDENTITY, SECRET) != deposit_commitment(IDENTITY, OTHER_SECRET)

    def test_different_identity_differs(self):
        other = "0x" + "9" * 30
        assert deposit_commitment(IDENTITY, SECRET) != deposit_commitment(other, SECRET)

    def test_identity_spelling_is_normalized(self):
        upper = IDENTITY.upper().replace("0X", "0x")
        bare = IDENTITY[2:]
        c = deposit_commitment(IDENTITY, SECRET)
        assert deposit_commitment(upper, SECRET) == c
        assert deposit_commitment(bare, SECRET) == c

    def test_secret_prefix_optional(self):
        assert deposit_commitment(IDENTITY, "0x" + SECRET) == deposit_commitment(IDENTITY, SECRET)

    def test_bech32_identity_accepted(self):
        c = deposit_commitment("mtst1qrkd5wd8zfyvqgqzq6hy3w3a6u8ndlq0", SECRET)
        assert is_commitment(c)

    @pytest.mark.parametrize("secret", ["", "11" * 31, "11" * 33, "zz" * 32, "0x"])
    def test_rejects_bad_secret(self, secret):
        with pytest.raises(InvalidSecret):
            deposit_commitment(IDENTITY, secret)

    @pytest.mark.parametrize("identity", ["", "   "])
    def test_rejects_empty_identity(self, identity):
        with pytest.raises(InvalidIdentity):
            deposit_commitment(identity, SECRET)

    def test_rejects_prefixed_non_hex_identity(self):
        with pytest.raises(InvalidIdentity):
            deposit_commitment("0xnothex", SECRET)

    def test_injectable_hash(self):
        codec = CommitmentCodec(hash_fn=lambda data: b"\x00" * 32)
        assert codec.deposit_commitment(IDENTITY, SECRET) == "0x" + "0" * 64

    def test_short_hash_rejected(self):
        codec = CommitmentCodec(hash_fn=lambda data: b"\x00" * 16)
        with pytest.raises(ValueError):
            codec.deposit_commitment(IDENTITY, SECRET)

    def test_generate_secret_is_usable(self):
        secret = generate_secret()
        assert secret.startswith("0x") and len(secret) == 66
        assert generate_secret() != secret
        assert is_commitment(deposit_commitment(IDENTITY, secret))


# ═══════════════════════════════════════════════════════════════════════
#  3. WITHDRAWAL COMMITMENTS
# ═══════════════════════════════════════════════════════════════════════

class TestWithdrawalCommitment:

    def test_deterministic(self):
        a = withdrawal_commitment(ORCHARD_ADDRESS, 500_000_000, "nonce-1")
        assert a == withdrawal_commitment(ORCHARD_ADDRESS, 500_000_000, "nonce-1")

    def test_binds_every_input(self):
        base = withdrawal_commitment(ORCHARD_ADDRESS, 500_000_000, "nonce-1")
        assert withdrawal_commitment(SAPLING_ADDRESS, 500_000_000, "nonce-1") != base
        assert withdrawal_commitment(ORCHARD_ADDRESS, 500_000_001, "nonce-1") != base
        assert withdrawal_commitment(ORCHARD_ADDRESS, 500_000_000, "nonce-2") != base

    def test_differs_from_deposit_domain(self):
        assert withdrawal_commitment(IDENTITY, 1, SECRET) != deposit_commitment(IDENTITY, SECRET)

    @pytest.mark.parametrize("amount", [0, -1, 2**64])
    def test_rejects_amount_out_of_range(self, amount):
        with pytest.raises(ValueError):
            withdrawal_commitment(ORCHARD_ADDRESS, amount, "n")

    def test_rejects_empty_destination(self):
        with pytest.raises(UndecodableAddress):
            withdrawal_commitment("", 1, "n")


# ═══════════════════════════════════════════════════════════════════════
#  4. FOREIGN ADDRESS PACKING
# ═══════════════════════════════════════════════════════════════════════

class TestForeignAddress:

    @pytest.mark.parametrize("address", [
        ORCHARD_ADDRESS,
        SAPLING_ADDRESS,
        "tmBsTi2xWTjUdEXnuTceL7fecEQKeWaPDJd",
        "a",
        "abcdefg",
        "abcdefgh",
        "x" * ADDRESS_MAX_BYTES,
    ])
    def test_roundtrip(self, address):
        assert decode_foreign_address(encode_foreign_address(address)) == address

    def test_fixed_width_and_in_field(self):
        packed = encode_foreign_address(ORCHARD_ADDRESS)
        assert len(packed) == ADDRESS_FIELD_COUNT
        assert packed[0] == len(ORCHARD_ADDRESS)
        assert all(0 <= e < FIELD_MODULUS for e in packed)

    def test_distinct_addresses_pack_differently(self):
        assert encode_foreign_address("abc") != encode_foreign_address("abd")
        assert encode_foreign_address("abc") != encode_foreign_address("abcd")

    @pytest.mark.parametrize("address", [
        "",
        "x" * (ADDRESS_MAX_BYTES + 1),
        "utest1 with space",
        "tab\there",
        "ünïcode",
        "ctrl\x01",
    ])
    def test_rejects_unpackable(self, address):
        with pytest.raises(UndecodableAddress):
            encode_foreign_address(address)

    def test_decode_wrong_width(self):
        packed = list(encode_foreign_address("abc"))
        with pytest.raises(UndecodableAddress):
            decode_foreign_address(packed[:-1])

    def test_decode_zero_length(self):
        with pytest.raises(UndecodableAddress):
            decode_foreign_address([0] * ADDRESS_FIELD_COUNT)

    def test_decode_length_too_large(self):
        packed = list(encode_foreign_address("abc"))
        packed[0] = ADDRESS_MAX_BYTES + 1
        with pytest.raises(UndecodableAddress):
            decode_foreign_address(packed)

    def test_decode_nonzero_trailing_padding(self):
        packed = list(encode_foreign_address("abc"))
        packed[-1] = 1
        with pytest.raises(UndecodableAddress):
            decode_foreign_address(packed)

    def test_decode_nonzero_padding_inside_chunk(self):
        packed = list(encode_foreign_address("abc"))
        packed[1] |= 0x41
        with pytest.raises(UndecodableAddress):
            decode_foreign_address(packed)

    def test_decode_element_out_of_range(self):
        packed = list(encode_foreign_address("abc"))
        packed[1] = 1 << 56
        with pytest.raises(UndecodableAddress):
            decode_foreign_address(packed)

    def test_decode_non_printable_bytes(self):
        packed = list(encode_foreign_address("abc"))
        # 'a' 'b' '\x07' followed by zero padding
        packed[1] = int.from_bytes(b"ab\x07" + b"\x00" * 4, "big")
        with pytest.raises(UndecodableAddress):
            decode_foreign_address(packed)
