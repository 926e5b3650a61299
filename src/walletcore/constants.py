"""
Wallet core constants.

Derivation follows SLIP-10 over Ed25519 with the BIP44 layout:
m/44'/4218'/{account}'/{internal}'/{address}'
4218 is the registered SLIP-44 coin type for IOTA.
"""

from __future__ import annotations

# BIP44 purpose and SLIP-44 coin type
BIP44_PURPOSE = 44
COIN_TYPE = 4218

# Hardened derivation offset; every SLIP-10 Ed25519 index is hardened
HARDENED_OFFSET = 0x80000000
MAX_DERIVATION_INDEX = HARDENED_OFFSET - 1

# Blake2b-256 of the Ed25519 public key
ADDRESS_PAYLOAD_LENGTH = 32
ED25519_ADDRESS_TYPE = 0x00
ED25519_PUBLIC_KEY_LENGTH = 32
ED25519_SIGNATURE_LENGTH = 64

# Essence hash signed for every input
SIGNING_DIGEST_LENGTH = 32

# Bech32 human readable parts per network
HRP_MAINNET = "iota"
HRP_DEVNET = "atoi"
HRP_PRIVATE = "tst"

TRANSACTION_ID_LENGTH = 32
OUTPUT_INDEX_MAX = 126

# Amounts are encoded as u64 on the device
MAX_AMOUNT = (1 << 64) - 1

# Output consolidation is suggested once an address holds this many outputs.
# Ledger devices can only fit a few inputs per signing flow, so the threshold is lower.
DEFAULT_OUTPUT_CONSOLIDATION_THRESHOLD = 100
DEFAULT_LEDGER_OUTPUT_CONSOLIDATION_THRESHOLD = 15

# Mnemonic word counts accepted by BIP39
BIP39_WORD_COUNTS = (12, 15, 18, 21, 24)
BIP39_PBKDF2_ROUNDS = 2048

ACCOUNT_ID_PREFIX = "wallet-account://"
