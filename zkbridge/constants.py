"""
zkbridge Constants

Protocol constants shared by both relayers, the note scripts and the
frontend, plus the fixed parts of the log layout. Everything an operator may
change per deployment lives in config.toml instead (see ``zkbridge.config``).
"""
import re
from decimal import Decimal

# =============================================================================
# LOG LAYOUT
# =============================================================================
LOG_FORMAT = '%(asctime)s - %(levelname)s - %(name)s - %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%dT%H:%M:%S'
LOG_MAX_FILE_SIZE = 10 * 1024 * 1024 # 10MB
LOG_BACKUP_COUNT = 5


# WARNING: THE PROTOCOL VALUES BELOW ARE SHARED WITH THE NOTE SCRIPTS AND THE
# FRONTEND. CHANGING THEM ON A RUNNING BRIDGE ORPHANS EVERY NOTE AND MEMO
# PRODUCED UNDER THE OLD VALUES.

# ==================================================================================
# NOTE TAGGING
# ==================================================================================
# Local use case id for every note the bridge mints or watches
BRIDGE_USECASE = 14594
DEPOSIT_SUBTAG = 0
WITHDRAWAL_SUBTAG = 1

# Local-use-case tags carry the 0b11 prefix in the two high bits
NOTE_TAG_LOCAL_PREFIX = 0b11 << 30
NOTE_TAG_MAX_USECASE = (1 << 14) - 1
NOTE_TAG_MAX_PAYLOAD = (1 << 16) - 1


# ==================================================================================
# FIELD ARITHMETIC
# ==================================================================================
# Goldilocks prime used by the rollup's field elements
FIELD_MODULUS = 2**64 - 2**32 + 1
WORD_SIZE = 4  # field elements per word (commitments, secrets)

COMMITMENT_BYTES = 32
COMMITMENT_HEX_LENGTH = COMMITMENT_BYTES * 2
SECRET_BYTES = 32

# Reversible address packing: element 0 is the byte length, then 7 bytes per
# element so that every element stays far below FIELD_MODULUS.
ADDRESS_BYTES_PER_ELEMENT = 7
ADDRESS_FIELD_COUNT = 40
ADDRESS_MAX_BYTES = (ADDRESS_FIELD_COUNT - 1) * ADDRESS_BYTES_PER_ELEMENT

# Withdrawal note input layout
WITHDRAWAL_INPUT_COMMITMENT = slice(0, WORD_SIZE)
WITHDRAWAL_INPUT_CHAIN_ID = WORD_SIZE
WITHDRAWAL_INPUT_ADDRESS = slice(WORD_SIZE + 1, WORD_SIZE + 1 + ADDRESS_FIELD_COUNT)
WITHDRAWAL_INPUT_MIN_LENGTH = WORD_SIZE + 1 + ADDRESS_FIELD_COUNT


# ==================================================================================
# CHAINS
# ==================================================================================
SOURCE_CHAIN_NAME = "zcash_testnet"
ROLLUP_CHAIN_NAME = "miden_testnet"
SOURCE_CHAIN_ID = 2  # destination chain id carried in withdrawal notes

SOURCE_DECIMALS = 8
SOURCE_UNIT = Decimal(10) ** SOURCE_DECIMALS
SOURCE_TICKER = "TAZ"

# Payouts consolidate into a single output note to keep the bridge wallet's
# shielded note graph from fragmenting
PAYOUT_TARGET_NOTE_COUNT = 1

# Memo placeholders emitted by the wallet when a transfer carries no memo
EMPTY_MEMO_MARKERS = ("", "Empty", "Memo::Empty")

VALID_TXID_PATTERN = re.compile(r'\b([0-9a-fA-F]{64})\b')
