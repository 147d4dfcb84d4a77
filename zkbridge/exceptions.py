"""
zkbridge Exceptions

Custom exception classes for the bridge relayers.

Malformed input errors cause the offending candidate to be skipped; transient
errors leave it unprocessed for the next cycle; ConfigurationError is the
only error that stops the process, and only at startup.
"""


class BridgeException(Exception):
    """Base exception for zkbridge."""
    pass


# ── Malformed input ─────────────────────────────────────────────────

class MalformedInputError(BridgeException):
    """Chain or user supplied data that can never be processed."""
    pass


class InvalidCommitment(MalformedInputError):
    """Commitment is not a 32-byte hex digest."""
    pass


class InvalidSecret(MalformedInputError):
    """Secret is not a well-formed 32-byte value."""
    pass


class InvalidIdentity(MalformedInputError):
    """Destination identity is empty or unparseable."""
    pass


class UndecodableAddress(MalformedInputError):
    """Field tuple does not decode to a foreign-chain address."""
    pass


class MalformedMemo(MalformedInputError):
    """Memo matches neither accepted deposit memo grammar."""
    pass


# ── Transient infrastructure ────────────────────────────────────────

class TransientError(BridgeException):
    """Failure that is retried on the next relayer cycle."""
    pass


class RollupError(TransientError):
    """Rollup client RPC or proving failure."""
    pass


class MintError(RollupError):
    """Minting a deposit note failed."""
    pass


class WalletError(TransientError):
    """
    Source-chain wallet command failed.

    ``definite`` is False when the command may have taken effect anyway
    (timeout, unreadable output), e.g. a send that might have broadcast.
    """

    def __init__(self, message: str = "", definite: bool = True):
        super().__init__(message)
        self.definite = definite


class PayoutError(WalletError):
    """Sending a withdrawal payout failed."""
    pass


# ── Fatal ───────────────────────────────────────────────────────────

class ConfigurationError(BridgeException):
    """Configuration error."""
    pass
