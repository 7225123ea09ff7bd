"""
Data models for Bitcoin wallet tracking.

This module defines the canonical transaction model, the cache entries
persisted by the cache store, the strict raw indexer record types consumed
by the classifier, and the wallet snapshot returned to callers.
"""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional


SATS_PER_BTC = Decimal(100_000_000)

DIRECTION_SEND = "send"
DIRECTION_RECEIVE = "receive"
STATUS_CONFIRMED = "confirmed"
STATUS_PENDING = "pending"

UNKNOWN_ADDRESS = "Unknown"

SUPPORTED_CURRENCIES = ["USD", "EUR", "GBP", "JPY", "INR", "AUD", "CAD", "CNY"]

# CSV column order for transaction output
CSV_COLUMNS = [
    "wallet",
    "txid",
    "direction",
    "amount_btc",
    "counterparty",
    "timestamp",
    "status",
    "fee_btc",
]


def sats_to_btc(sats: int) -> Decimal:
    """Convert an integer satoshi value to BTC."""
    return Decimal(sats) / SATS_PER_BTC


def to_decimal(value: Any) -> Decimal:
    """
    Parse a persisted decimal value.

    Raises:
        ValueError: If the value cannot be represented as a Decimal
    """
    if isinstance(value, float):
        value = repr(value)
    try:
        return Decimal(value)
    except (InvalidOperation, TypeError) as e:
        raise ValueError(f"Invalid decimal value: {value!r}") from e


@dataclass
class TrackedWallet:
    """A Bitcoin address the user has asked to track."""

    id: str
    nickname: str
    address: str
    created_at: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "nickname": self.nickname,
            "address": self.address,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TrackedWallet":
        return cls(
            id=str(data["id"]),
            nickname=str(data["nickname"]),
            address=str(data["address"]),
            created_at=float(data["created_at"]),
        )


@dataclass(frozen=True)
class Transaction:
    """
    Canonical transaction record relative to one watched address.

    Amounts are always non-negative BTC values. For sends, ``amount`` is the
    value paid to the first external output; change back to the watched
    address is excluded. ``fee`` is only set for sends.
    """

    id: str
    direction: str  # send or receive
    amount: Decimal
    counterparty: str  # "Unknown" when the indexer does not expose it
    timestamp: float
    status: str  # confirmed or pending
    fee: Optional[Decimal] = None

    @property
    def is_pending(self) -> bool:
        return self.status == STATUS_PENDING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "direction": self.direction,
            "amount": str(self.amount),
            "counterparty": self.counterparty,
            "timestamp": self.timestamp,
            "status": self.status,
            "fee": str(self.fee) if self.fee is not None else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Transaction":
        direction = data["direction"]
        status = data["status"]
        if direction not in (DIRECTION_SEND, DIRECTION_RECEIVE):
            raise ValueError(f"Invalid direction: {direction!r}")
        if status not in (STATUS_CONFIRMED, STATUS_PENDING):
            raise ValueError(f"Invalid status: {status!r}")
        fee = data.get("fee")
        return cls(
            id=str(data["id"]),
            direction=direction,
            amount=to_decimal(data["amount"]),
            counterparty=str(data["counterparty"]),
            timestamp=float(data["timestamp"]),
            status=status,
            fee=to_decimal(fee) if fee is not None else None,
        )


@dataclass
class BalanceCacheEntry:
    """Cached balance for one address, in BTC and in the quote currency."""

    balance: Decimal
    balance_quote: Decimal
    written_at: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "balance": str(self.balance),
            "balance_quote": str(self.balance_quote),
            "written_at": self.written_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BalanceCacheEntry":
        return cls(
            balance=to_decimal(data["balance"]),
            balance_quote=to_decimal(data["balance_quote"]),
            written_at=float(data["written_at"]),
        )


@dataclass
class TransactionCacheEntry:
    """
    Cached transaction history for one address.

    ``transactions`` is most-recent-first with pending records at the head.
    ``cursor`` is the txid of the oldest confirmed transaction fetched so far.
    """

    transactions: List[Transaction]
    cursor: Optional[str] = None
    has_more: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transactions": [tx.to_dict() for tx in self.transactions],
            "cursor": self.cursor,
            "has_more": self.has_more,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TransactionCacheEntry":
        cursor = data.get("cursor")
        return cls(
            transactions=[Transaction.from_dict(tx) for tx in data["transactions"]],
            cursor=str(cursor) if cursor is not None else None,
            has_more=bool(data.get("has_more", False)),
        )


@dataclass(frozen=True)
class RawInput:
    """A transaction input as reported by the indexer."""

    prev_address: Optional[str]  # None for coinbase or non-standard scripts
    prev_value: Optional[int]


@dataclass(frozen=True)
class RawOutput:
    """A transaction output as reported by the indexer."""

    address: Optional[str]  # None for OP_RETURN and non-standard scripts
    value: int


@dataclass(frozen=True)
class RawTransaction:
    """Validated indexer transaction. All values are in satoshis."""

    txid: str
    inputs: List[RawInput]
    outputs: List[RawOutput]
    fee: int
    confirmed: bool
    block_time: Optional[int] = None


@dataclass
class WalletSnapshot:
    """
    Fully populated view of one tracked wallet, assembled on every sync.

    Never persisted directly; only its balance and transaction parts are
    cached. ``error`` is set when the snapshot degraded to fallback values.
    """

    id: str
    nickname: str
    address: str
    created_at: float
    balance: Decimal = Decimal(0)
    balance_quote: Decimal = Decimal(0)
    transactions: List[Transaction] = field(default_factory=list)
    cursor: Optional[str] = None
    has_more: bool = False
    last_updated: float = 0.0
    error: Optional[str] = None

    @classmethod
    def for_wallet(cls, wallet: TrackedWallet, **kwargs: Any) -> "WalletSnapshot":
        return cls(
            id=wallet.id,
            nickname=wallet.nickname,
            address=wallet.address,
            created_at=wallet.created_at,
            **kwargs,
        )


@dataclass
class LoadMoreResult:
    """Result of an explicit pagination continuation."""

    transactions: List[Transaction]
    has_more: bool
    cursor: Optional[str]
    error: Optional[str] = None


@dataclass
class UserSettings:
    """User preferences persisted alongside the tracked wallet list."""

    preferred_currency: str = "USD"
    auto_refresh: bool = False
    refresh_interval: float = 60.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "preferred_currency": self.preferred_currency,
            "auto_refresh": self.auto_refresh,
            "refresh_interval": self.refresh_interval,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserSettings":
        defaults = cls()
        currency = str(data.get("preferred_currency", defaults.preferred_currency)).upper()
        if currency not in SUPPORTED_CURRENCIES:
            currency = defaults.preferred_currency
        return cls(
            preferred_currency=currency,
            auto_refresh=bool(data.get("auto_refresh", defaults.auto_refresh)),
            refresh_interval=float(data.get("refresh_interval", defaults.refresh_interval)),
        )
