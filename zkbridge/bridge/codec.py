"""
zkbridge Commitment Codec

Pure functions binding the two sides of the bridge together:

  - deposit commitments: hash(identity, secret), the only key the ledger and
    the source-chain memo ever carry for a deposit
  - withdrawal commitments: hash(destination, amount, nonce)
  - commitment <-> word conversion (four field elements, as carried in note inputs)
  - reversible packing of a foreign-chain address into a fixed-width tuple of
    field elements

No I/O happens here. The hash primitive is injectable so deployments can swap
in the rollup's native hash without touching callers.
"""

import hashlib
import re
import secrets
from typing import Callable, Iterable, Optional, Sequence

from ..constants import (
    ADDRESS_BYTES_PER_ELEMENT,
    ADDRESS_FIELD_COUNT,
    ADDRESS_MAX_BYTES,
    COMMITMENT_BYTES,
    COMMITMENT_HEX_LENGTH,
    FIELD_MODULUS,
    SECRET_BYTES,
    WORD_SIZE,
)
from ..exceptions import (
    InvalidCommitment,
    InvalidIdentity,
    InvalidSecret,
    UndecodableAddress,
)
from .types import FieldTuple

HashFn = Callable[[bytes], bytes]

DEPOSIT_DOMAIN = b"zkbridge/deposit/v1"
WITHDRAWAL_DOMAIN = b"zkbridge/withdrawal/v1"

_HEX_RE = re.compile(r"^[0-9a-f]+$")
_ELEMENT_LIMIT = 1 << (8 * ADDRESS_BYTES_PER_ELEMENT)


def sha256_digest(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def _length_prefixed(data: bytes) -> bytes:
    return len(data).to_bytes(4, 'big') + data


def _strip_hex_prefix(value: str) -> str:
    value = value.strip().lower()
    return value[2:] if value.startswith("0x") else value


# ══════════════════════════════════════════════════════════════════════
#  COMMITMENT HELPERS
# ══════════════════════════════════════════════════════════════════════

def normalize_commitment(value: str) -> str:
    """
    Canonicalize a commitment to ``0x`` + 64 lowercase hex characters.

    Raises:
        InvalidCommitment: if the value is not a 32-byte hex digest
    """
    if not isinstance(value, str):
        raise InvalidCommitment(f"commitment must be a string, got {type(value).__name__}")
    body = _strip_hex_prefix(value)
    if len(body) != COMMITMENT_HEX_LENGTH or not _HEX_RE.match(body):
        raise InvalidCommitment(
            f"expected 0x + {COMMITMENT_HEX_LENGTH} hex chars, got {len(body)} chars"
        )
    return "0x" + body


def is_commitment(value: str) -> bool:
    try:
        normalize_commitment(value)
    except InvalidCommitment:
        return False
    return True


def commitment_to_words(commitment: str) -> FieldTuple:
    """Split a commitment into its four big-endian 64-bit field elements."""
    body = normalize_commitment(commitment)[2:]
    limb = COMMITMENT_HEX_LENGTH // WORD_SIZE
    words = tuple(int(body[i:i + limb], 16) for i in range(0, COMMITMENT_HEX_LENGTH, limb))
    for w in words:
        if w >= FIELD_MODULUS:
            raise InvalidCommitment("commitment limb exceeds the field modulus")
    return words


def commitment_from_words(words: Sequence[int]) -> str:
    """Inverse of :func:`commitment_to_words`."""
    if len(words) != WORD_SIZE:
        raise InvalidCommitment(f"expected {WORD_SIZE} field elements, got {len(words)}")
    for w in words:
        if not isinstance(w, int) or not 0 <= w < FIELD_MODULUS:
            raise InvalidCommitment(f"field element out of range: {w!r}")
    return "0x" + "".join(f"{w:016x}" for w in words)


def generate_secret() -> str:
    """Fresh 32-byte secret (or withdrawal nonce) as 0x-prefixed hex."""
    return "0x" + secrets.token_hex(SECRET_BYTES)


# ══════════════════════════════════════════════════════════════════════
#  COMMITMENT CODEC
# ══════════════════════════════════════════════════════════════════════

class CommitmentCodec:
    """
    Derives blinding commitments and packs foreign addresses.

    Every digest is reduced limb-wise into the field so that the resulting
    commitment is always representable as a rollup word.
    """

    def __init__(self, hash_fn: Optional[HashFn] = None):
        self._hash = hash_fn or sha256_digest

    def _digest_to_commitment(self, digest: bytes) -> str:
        if len(digest) < COMMITMENT_BYTES:
            raise ValueError("hash primitive must return at least 32 bytes")
        limb = COMMITMENT_BYTES // WORD_SIZE
        words = [
            int.from_bytes(digest[i:i + limb], 'big') % FIELD_MODULUS
            for i in range(0, COMMITMENT_BYTES, limb)
        ]
        return commitment_from_words(words)

    # ── Identity / secret parsing ───────────────────────────────────

    @staticmethod
    def normalize_identity(identity: str) -> str:
        """
        Canonical text form of a rollup account identity.

        Hex ids are lowercased and given a ``0x`` prefix; bech32 ids are
        lowercased. Both spellings of the same hex id hash identically.
        """
        if not isinstance(identity, str) or not identity.strip():
            raise InvalidIdentity("destination identity cannot be empty")
        ident = identity.strip().lower()
        body = ident[2:] if ident.startswith("0x") else ident
        if body and _HEX_RE.match(body):
            return "0x" + body
        if ident.startswith("0x"):
            raise InvalidIdentity(f"identity has 0x prefix but is not hex: {identity!r}")
        return ident

    @staticmethod
    def parse_secret(secret: str) -> bytes:
        """
        Decode a 32-byte hex secret (``0x`` prefix optional).

        Raises:
            InvalidSecret: on wrong width or non-hex characters
        """
        if not isinstance(secret, str):
            raise InvalidSecret("secret must be a hex string")
        body = _strip_hex_prefix(secret)
        if len(body) != SECRET_BYTES * 2 or not _HEX_RE.match(body):
            raise InvalidSecret(
                f"secret must be {SECRET_BYTES * 2} hex chars, got {len(body)}"
            )
        return bytes.fromhex(body)

    # ── Commitments ─────────────────────────────────────────────────

    def deposit_commitment(self, destination_identity: str, secret: str) -> str:
        """
        Commitment a depositor puts in the source-chain memo.

        Args:
            destination_identity: Rollup account id (hex or bech32)
            secret: 32-byte hex secret known only to the depositor

        Returns:
            Canonical commitment string
        """
        identity = self.normalize_identity(destination_identity)
        secret_bytes = self.parse_secret(secret)
        data = (
            DEPOSIT_DOMAIN +
            _length_prefixed(identity.encode('utf-8')) +
            secret_bytes
        )
        return self._digest_to_commitment(self._hash(data))

    def withdrawal_commitment(self, destination: str, amount: int, nonce: str) -> str:
        """Commitment binding a burn to its payout destination and amount."""
        if not isinstance(amount, int) or not 0 < amount < 2**64:
            raise ValueError(f"withdrawal amount out of range: {amount!r}")
        if not destination:
            raise UndecodableAddress("withdrawal destination cannot be empty")
        data = (
            WITHDRAWAL_DOMAIN +
            _length_prefixed(destination.encode('utf-8')) +
            amount.to_bytes(8, 'big') +
            _length_prefixed(nonce.encode('utf-8'))
        )
        return self._digest_to_commitment(self._hash(data))

    # ── Foreign addresses ───────────────────────────────────────────

    @staticmethod
    def encode_foreign_address(address: str) -> FieldTuple:
        """
        Pack an address into ``ADDRESS_FIELD_COUNT`` field elements.

        Layout: ``[byte_length, chunk_0, chunk_1, ..., 0, 0]`` where each chunk
        holds 7 big-endian bytes of the ASCII address, the last chunk
        right-padded with zero bytes.

        Raises:
            UndecodableAddress: for empty, non-printable-ASCII or over-long input
        """
        if not isinstance(address, str) or not address:
            raise UndecodableAddress("address cannot be empty")
        if not (address.isascii() and address.isprintable()) or any(c.isspace() for c in address):
            raise UndecodableAddress("address must be printable ASCII without whitespace")
        raw = address.encode('ascii')
        if len(raw) > ADDRESS_MAX_BYTES:
            raise UndecodableAddress(
                f"address is {len(raw)} bytes, at most {ADDRESS_MAX_BYTES} fit"
            )

        step = ADDRESS_BYTES_PER_ELEMENT
        padded = raw + b"\x00" * (-len(raw) % step)
        chunks = [int.from_bytes(padded[i:i + step], 'big') for i in range(0, len(padded), step)]
        elements = [len(raw)] + chunks
        elements += [0] * (ADDRESS_FIELD_COUNT - len(elements))
        return tuple(elements)

    @staticmethod
    def decode_foreign_address(elements: Iterable[int]) -> str:
        """
        Exact inverse of :meth:`encode_foreign_address`.

        Raises:
            UndecodableAddress: if the tuple was not produced by the encoder
        """
        values = list(elements)
        if len(values) != ADDRESS_FIELD_COUNT:
            raise UndecodableAddress(
                f"expected {ADDRESS_FIELD_COUNT} field elements, got {len(values)}"
            )
        if any(not isinstance(v, int) or not 0 <= v < _ELEMENT_LIMIT for v in values):
            raise UndecodableAddress("field element outside the packing range")

        length = values[0]
        if not 0 < length <= ADDRESS_MAX_BYTES:
            raise UndecodableAddress(f"invalid address length {length}")

        step = ADDRESS_BYTES_PER_ELEMENT
        n_chunks = -(-length // step)
        chunks, padding = values[1:1 + n_chunks], values[1 + n_chunks:]
        if any(padding):
            raise UndecodableAddress("non-zero padding after address data")

        raw = b"".join(c.to_bytes(step, 'big') for c in chunks)
        data, tail = raw[:length], raw[length:]
        if any(tail):
            raise UndecodableAddress("non-zero padding inside the last chunk")
        try:
            address = data.decode('ascii')
        except UnicodeDecodeError as e:
            raise UndecodableAddress(f"address bytes are not ASCII: {e}") from e
        if not address.isprintable() or any(c.isspace() for c in address):
            raise UndecodableAddress("decoded address contains non-printable characters")
        return address


_default_codec = CommitmentCodec()

deposit_commitment = _default_codec.deposit_commitment
withdrawal_commitment = _default_codec.withdrawal_commitment
encode_foreign_address = CommitmentCodec.encode_foreign_address
decode_foreign_address = CommitmentCodec.decode_foreign_address
