"""
Wallet data models.

Ledger-facing entities use Pydantic for validation and a stable JSON encoding
(``model_dump_json``) that external stores can persist as-is.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from walletcore.address import Address, Network
from walletcore.constants import ACCOUNT_ID_PREFIX, OUTPUT_INDEX_MAX, TRANSACTION_ID_LENGTH
from walletcore.errors import AddressError, InvalidOutputKindError

__all__ = [
    "AccountBalance",
    "AccountIdentifier",
    "AccountIdentifierKind",
    "Address",
    "InclusionState",
    "LedgerReport",
    "Network",
    "OutputData",
    "OutputId",
    "OutputKind",
    "ReportedTransaction",
    "Transaction",
    "TransactionDirection",
]

_HEX_TX_ID = re.compile(rf"^[0-9a-f]{{{TRANSACTION_ID_LENGTH * 2}}}$")


def _normalize_transaction_id(v: str) -> str:
    v = v.lower()
    if not _HEX_TX_ID.match(v):
        raise ValueError(f"Invalid transaction id: {v}")
    return v


class InclusionState(str, Enum):
    """Ledger confirmation status of the transaction that created an output."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    CONFLICTING = "conflicting"

    def can_advance_to(self, other: InclusionState) -> bool:
        """State only moves forward: pending -> confirmed | conflicting."""
        return self == InclusionState.PENDING and other != InclusionState.PENDING


class OutputKind(str, Enum):
    SIGNATURE_LOCKED_SINGLE = "SignatureLockedSingle"
    SIGNATURE_LOCKED_DUST_ALLOWANCE = "SignatureLockedDustAllowance"
    TREASURY = "Treasury"

    @classmethod
    def from_str(cls, value: str) -> OutputKind:
        try:
            return cls(value)
        except ValueError as e:
            raise InvalidOutputKindError(f"Invalid output kind: {value}") from e


class TransactionDirection(str, Enum):
    INCOMING = "incoming"
    OUTGOING = "outgoing"


class OutputId(BaseModel):
    """Ledger-assigned unique output identifier: transaction id + output index."""

    model_config = ConfigDict(frozen=True)

    transaction_id: str
    index: int = Field(..., ge=0, le=OUTPUT_INDEX_MAX)

    @field_validator("transaction_id")
    @classmethod
    def validate_transaction_id(cls, v: str) -> str:
        return _normalize_transaction_id(v)

    def __str__(self) -> str:
        return self.transaction_id + self.index.to_bytes(2, "little").hex()

    @classmethod
    def from_str(cls, value: str) -> OutputId:
        if len(value) != TRANSACTION_ID_LENGTH * 2 + 4:
            raise ValueError(f"Invalid output id length: {len(value)}")
        index = int.from_bytes(bytes.fromhex(value[-4:]), "little")
        return cls(transaction_id=value[:-4], index=index)


class OutputData(BaseModel):
    """One ledger output plus wallet metadata. Immutable between sync passes."""

    model_config = ConfigDict(frozen=True)

    output_id: OutputId
    amount: int = Field(..., gt=0)
    address: Address
    is_spent: bool = False
    kind: OutputKind = OutputKind.SIGNATURE_LOCKED_SINGLE
    inclusion_state: InclusionState = InclusionState.PENDING
    message_id: str | None = None
    network_id: str | None = None
    timestamp: datetime | None = None

    @property
    def transaction_id(self) -> str:
        return self.output_id.transaction_id

    def is_counted(self) -> bool:
        """Whether the output contributes to the total balance."""
        return not self.is_spent and self.inclusion_state in (
            InclusionState.CONFIRMED,
            InclusionState.PENDING,
        )


class AccountBalance(BaseModel):
    model_config = ConfigDict(frozen=True)

    total: int = Field(default=0, ge=0)
    available: int = Field(default=0, ge=0)


class ReportedTransaction(BaseModel):
    """Transaction data as reported by the ledger sync collaborator."""

    model_config = ConfigDict(frozen=True)

    transaction_id: str
    inclusion_state: InclusionState = InclusionState.PENDING
    inputs: list[OutputId] = Field(default_factory=list)
    outputs: list[OutputId] = Field(default_factory=list)
    timestamp: datetime | None = None
    message_id: str | None = None

    @field_validator("transaction_id")
    @classmethod
    def validate_transaction_id(cls, v: str) -> str:
        return _normalize_transaction_id(v)


class Transaction(BaseModel):
    """
    A ledger transaction plus wallet metadata.

    Created when first observed during sync, replaced by id in the account's
    transaction arena when its inclusion state advances, never deleted.
    """

    model_config = ConfigDict(frozen=True)

    transaction_id: str
    direction: TransactionDirection
    inclusion_state: InclusionState
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    inputs: list[OutputId] = Field(default_factory=list)
    outputs: list[OutputId] = Field(default_factory=list)
    amount: int = 0
    message_id: str | None = None
    network_id: str | None = None


class LedgerReport(BaseModel):
    """Raw output and inclusion-state data for one sync pass."""

    model_config = ConfigDict(frozen=True)

    outputs: list[OutputData] = Field(default_factory=list)
    transactions: list[ReportedTransaction] = Field(default_factory=list)
    network_id: str | None = None


class AccountIdentifierKind(str, Enum):
    INDEX = "index"
    ALIAS = "alias"
    ID = "id"
    ADDRESS = "address"


@dataclass(frozen=True)
class AccountIdentifier:
    """Identifies an account by index, alias, storage id or one of its addresses."""

    kind: AccountIdentifierKind
    value: int | str | Address

    @classmethod
    def index(cls, index: int) -> AccountIdentifier:
        if index < 0:
            raise ValueError(f"Invalid account index: {index}")
        return cls(AccountIdentifierKind.INDEX, index)

    @classmethod
    def alias(cls, alias: str) -> AccountIdentifier:
        return cls(AccountIdentifierKind.ALIAS, alias)

    @classmethod
    def address(cls, address: Address) -> AccountIdentifier:
        return cls(AccountIdentifierKind.ADDRESS, address)

    @classmethod
    def parse(cls, value: int | str | Address | AccountIdentifier) -> AccountIdentifier:
        if isinstance(value, AccountIdentifier):
            return value
        if isinstance(value, Address):
            return cls.address(value)
        if isinstance(value, int):
            return cls.index(value)
        try:
            return cls.address(Address.from_bech32(value))
        except AddressError:
            pass
        if value.startswith(ACCOUNT_ID_PREFIX):
            return cls(AccountIdentifierKind.ID, value)
        return cls.alias(value)

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.value}"
