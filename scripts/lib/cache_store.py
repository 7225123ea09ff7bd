"""
Two-table cache over the key-value store: balances and transaction history.

Balances expire after ``BALANCE_TTL`` seconds. Transaction history has no
TTL; it is refreshed incrementally through the merge operations. Missing or
malformed data always reads as an empty cache.
"""

import json
import sys
import threading
import time
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional, Type, TypeVar

from .models import (
    STATUS_CONFIRMED,
    BalanceCacheEntry,
    Transaction,
    TransactionCacheEntry,
)
from .storage import STORAGE_KEYS, KeyValueStore


BALANCE_TTL = 3600.0  # seconds

E = TypeVar("E", BalanceCacheEntry, TransactionCacheEntry)


def _pending_first(transactions: List[Transaction]) -> List[Transaction]:
    """Stable partition: pending records ahead of confirmed ones."""
    pending = [tx for tx in transactions if tx.is_pending]
    confirmed = [tx for tx in transactions if not tx.is_pending]
    return pending + confirmed


def _prefer(existing: Optional[Transaction], incoming: Transaction) -> Transaction:
    """
    Pick the copy to keep when two records share an id.

    The incoming copy wins, except that a pending copy never replaces a
    confirmed one.
    """
    if existing is not None and existing.status == STATUS_CONFIRMED and incoming.is_pending:
        return existing
    return incoming


class CacheStore:
    """
    Balance and transaction caches keyed by address.

    A single re-entrant lock serializes every read-modify-write, so concurrent
    syncs of different wallets cannot lose each other's updates.
    """

    def __init__(
        self,
        store: KeyValueStore,
        balance_ttl: float = BALANCE_TTL,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.balance_ttl = balance_ttl
        self.clock = clock
        self._lock = threading.RLock()

    # -- persistence helpers -------------------------------------------------

    def _load(self, key: str, entry_cls: Type[E]) -> Dict[str, E]:
        blob = self.store.get(key)
        if blob is None:
            return {}
        try:
            data = json.loads(blob)
        except ValueError:
            print(f"[cache] Discarding unreadable {key}", file=sys.stderr)
            return {}
        if not isinstance(data, dict):
            print(f"[cache] Discarding malformed {key}", file=sys.stderr)
            return {}

        entries: Dict[str, E] = {}
        for address, raw in data.items():
            try:
                entries[address] = entry_cls.from_dict(raw)
            except (KeyError, TypeError, ValueError, AttributeError):
                print(f"[cache] Dropping malformed {key} entry for {address}", file=sys.stderr)
        return entries

    def _save(self, key: str, entries: Dict[str, Any]) -> None:
        self.store.set(key, json.dumps({a: e.to_dict() for a, e in entries.items()}))

    def _load_balances(self) -> Dict[str, BalanceCacheEntry]:
        return self._load(STORAGE_KEYS["balance_cache"], BalanceCacheEntry)

    def _load_transactions(self) -> Dict[str, TransactionCacheEntry]:
        return self._load(STORAGE_KEYS["transaction_cache"], TransactionCacheEntry)

    # -- balance table -------------------------------------------------------

    def get_balance(self, address: str) -> Optional[BalanceCacheEntry]:
        """Return the balance entry, or None if absent or at/after its TTL."""
        with self._lock:
            entry = self._load_balances().get(address)
        if entry is None:
            return None
        if self.clock() - entry.written_at >= self.balance_ttl:
            return None
        return entry

    def put_balance(self, address: str, balance: Decimal, balance_quote: Decimal) -> BalanceCacheEntry:
        """Overwrite the balance entry with a fresh timestamp."""
        entry = BalanceCacheEntry(
            balance=balance,
            balance_quote=balance_quote,
            written_at=self.clock(),
        )
        with self._lock:
            balances = self._load_balances()
            balances[address] = entry
            self._save(STORAGE_KEYS["balance_cache"], balances)
        return entry

    # -- transaction table ---------------------------------------------------

    def get_transactions(self, address: str) -> Optional[TransactionCacheEntry]:
        """Return the cached history for ``address``, or None."""
        with self._lock:
            return self._load_transactions().get(address)

    def put_transactions(
        self,
        address: str,
        transactions: List[Transaction],
        cursor: Optional[str],
        has_more: bool,
    ) -> TransactionCacheEntry:
        """Replace the history for ``address`` with a brand-new entry."""
        with self._lock:
            entries = self._load_transactions()
            entry = TransactionCacheEntry(
                transactions=self._merge_head([], transactions),
                cursor=cursor,
                has_more=has_more,
            )
            entries[address] = entry
            self._save(STORAGE_KEYS["transaction_cache"], entries)
            return entry

    def merge_newer(self, address: str, new_txs: List[Transaction]) -> TransactionCacheEntry:
        """
        Prepend newer or pending records.

        On an id collision the newly merged copy replaces the cached one, so
        a transaction confirmed since the last sync supersedes its pending
        record.
        """
        with self._lock:
            entries = self._load_transactions()
            entry = entries.get(address) or TransactionCacheEntry(transactions=[])
            entry.transactions = self._merge_head(entry.transactions, new_txs)
            entries[address] = entry
            self._save(STORAGE_KEYS["transaction_cache"], entries)
            return entry

    def merge_older(
        self,
        address: str,
        more_txs: List[Transaction],
        has_more: bool,
        cursor: Optional[str],
    ) -> TransactionCacheEntry:
        """
        Append a pagination continuation.

        ``has_more`` and ``cursor`` are stored as given; the caller is the
        pagination frontier.
        """
        with self._lock:
            entries = self._load_transactions()
            entry = entries.get(address) or TransactionCacheEntry(transactions=[])
            merged = list(entry.transactions)
            index = {tx.id: i for i, tx in enumerate(merged)}
            for tx in more_txs:
                if tx.id in index:
                    merged[index[tx.id]] = _prefer(merged[index[tx.id]], tx)
                    continue
                index[tx.id] = len(merged)
                merged.append(tx)
            entry.transactions = _pending_first(merged)
            entry.has_more = has_more
            entry.cursor = cursor
            entries[address] = entry
            self._save(STORAGE_KEYS["transaction_cache"], entries)
            return entry

    def prune_pending(self, address: str, live_ids: Iterable[str]) -> Optional[TransactionCacheEntry]:
        """Drop pending records whose id is no longer in the indexer's pending set."""
        live = set(live_ids)
        with self._lock:
            entries = self._load_transactions()
            entry = entries.get(address)
            if entry is None:
                return None
            kept = [tx for tx in entry.transactions if not tx.is_pending or tx.id in live]
            if len(kept) != len(entry.transactions):
                entry.transactions = kept
                self._save(STORAGE_KEYS["transaction_cache"], entries)
            return entry

    @staticmethod
    def _merge_head(existing: List[Transaction], new_txs: List[Transaction]) -> List[Transaction]:
        current = {tx.id: tx for tx in existing}
        head: List[Transaction] = []
        positions: Dict[str, int] = {}
        for tx in new_txs:
            if tx.id in positions:
                i = positions[tx.id]
                head[i] = _prefer(head[i], tx)
                continue
            positions[tx.id] = len(head)
            head.append(_prefer(current.get(tx.id), tx))
        tail = [tx for tx in existing if tx.id not in positions]
        return _pending_first(head + tail)

    # -- eviction ------------------------------------------------------------

    def evict(self, address: str) -> None:
        """Remove both cache entries for one address."""
        with self._lock:
            balances = self._load_balances()
            if balances.pop(address, None) is not None:
                self._save(STORAGE_KEYS["balance_cache"], balances)
            entries = self._load_transactions()
            if entries.pop(address, None) is not None:
                self._save(STORAGE_KEYS["transaction_cache"], entries)

    def clear(self) -> None:
        """Remove all cached balances and histories."""
        with self._lock:
            self.store.delete(STORAGE_KEYS["balance_cache"])
            self.store.delete(STORAGE_KEYS["transaction_cache"])
