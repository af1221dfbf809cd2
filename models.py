from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator, model_validator
from enum import Enum
from typing import Literal, Optional, Union
from decimal import Decimal, InvalidOperation, ROUND_HALF_EVEN


MAX_CLIENT_ID = 2**16 - 1
MAX_TX_ID = 2**32 - 1

AMOUNT_QUANTUM = Decimal("0.0001")
ZERO = Decimal("0")


class TransactionKind(str, Enum):
    deposit = "deposit"
    withdrawal = "withdrawal"
    dispute = "dispute"
    resolve = "resolve"
    chargeback = "chargeback"


class DisputeState(str, Enum):
    undisputed = "undisputed"
    disputed = "disputed"
    resolved = "resolved"
    charged_back = "charged_back"


class _TransactionBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    client_id: int = Field(..., ge=0, le=MAX_CLIENT_ID, description="Owning client")
    tx_id: int = Field(..., ge=0, le=MAX_TX_ID, description="Transaction identifier")


class _FundsTransaction(_TransactionBase):
    amount: Decimal = Field(..., ge=0, description="Amount moved, 4 decimal places")


class Deposit(_FundsTransaction):
    kind: Literal[TransactionKind.deposit] = TransactionKind.deposit


class Withdrawal(_FundsTransaction):
    kind: Literal[TransactionKind.withdrawal] = TransactionKind.withdrawal


class Dispute(_TransactionBase):
    kind: Literal[TransactionKind.dispute] = TransactionKind.dispute


class Resolve(_TransactionBase):
    kind: Literal[TransactionKind.resolve] = TransactionKind.resolve


class Chargeback(_TransactionBase):
    kind: Literal[TransactionKind.chargeback] = TransactionKind.chargeback


Transaction = Union[Deposit, Withdrawal, Dispute, Resolve, Chargeback]
FundsTransaction = Union[Deposit, Withdrawal]

_VARIANTS = {
    TransactionKind.deposit: Deposit,
    TransactionKind.withdrawal: Withdrawal,
    TransactionKind.dispute: Dispute,
    TransactionKind.resolve: Resolve,
    TransactionKind.chargeback: Chargeback,
}


def round_amount(value: Decimal) -> Decimal:
    return value.quantize(AMOUNT_QUANTUM, rounding=ROUND_HALF_EVEN)


class TransactionRecord(BaseModel):
    """One raw row of a transaction source: ``type,client,tx,amount``."""

    type: TransactionKind = Field(..., description="Transaction kind")
    client: int = Field(..., ge=0, le=MAX_CLIENT_ID, description="Client identifier")
    tx: int = Field(..., ge=0, le=MAX_TX_ID, description="Transaction identifier")
    amount: Optional[Decimal] = Field(None, ge=0, description="Only for deposit/withdrawal")

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("amount", mode="before")
    @classmethod
    def blank_amount(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("amount")
    @classmethod
    def validate_amount_precision(cls, v):
        if v is None:
            return v
        if not v.is_finite():
            raise ValueError("Amount must be a finite number")
        try:
            return round_amount(v)
        except InvalidOperation:
            raise ValueError("Amount is too large to represent with 4 decimal places")

    @model_validator(mode="after")
    def validate_amount_presence(self):
        if self.type in (TransactionKind.deposit, TransactionKind.withdrawal) and self.amount is None:
            raise ValueError(f"{self.type.value} requires an amount")
        return self

    def to_transaction(self) -> Transaction:
        variant = _VARIANTS[self.type]
        if self.type in (TransactionKind.deposit, TransactionKind.withdrawal):
            return variant(client_id=self.client, tx_id=self.tx, amount=self.amount)
        # dispute-lifecycle rows reference a prior transaction; any amount is dropped
        return variant(client_id=self.client, tx_id=self.tx)

    @classmethod
    def from_transaction(cls, transaction: Transaction) -> "TransactionRecord":
        return cls(
            type=transaction.kind,
            client=transaction.client_id,
            tx=transaction.tx_id,
            amount=getattr(transaction, "amount", None),
        )


class Account(BaseModel):
    client_id: int = Field(..., ge=0, le=MAX_CLIENT_ID)
    available: Decimal = ZERO
    held: Decimal = ZERO
    locked: bool = False

    @property
    def total(self) -> Decimal:
        return self.available + self.held


class StoredTransaction(BaseModel):
    """A recorded deposit or withdrawal and where it is in the dispute lifecycle."""

    transaction: FundsTransaction
    state: DisputeState = DisputeState.undisputed

    @property
    def client_id(self) -> int:
        return self.transaction.client_id

    @property
    def amount(self) -> Decimal:
        return self.transaction.amount


class AccountRecord(BaseModel):
    client: int = Field(..., description="Client identifier")
    available: Decimal = Field(..., description="Funds available for withdrawal")
    held: Decimal = Field(..., description="Funds held by open disputes")
    total: Decimal = Field(..., description="available + held")
    locked: bool = Field(..., description="Whether a chargeback froze the account")

    @field_serializer("available", "held", "total")
    def serialize_money(self, value: Decimal) -> str:
        return f"{round_amount(value):f}"

    @field_serializer("locked")
    def serialize_locked(self, value: bool) -> str:
        return "true" if value else "false"

    @classmethod
    def from_account(cls, account: Account) -> "AccountRecord":
        return cls(
            client=account.client_id,
            available=account.available,
            held=account.held,
            total=account.total,
            locked=account.locked,
        )
