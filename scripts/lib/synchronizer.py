"""
Wallet synchronization: cache first, fetch what is stale, merge back.

``WalletSynchronizer`` turns a ``TrackedWallet`` into a ``WalletSnapshot``
using the cache store, the transaction pager, a balance source and the price
oracle. It never raises to its caller; failures degrade step by step down
to an all-zero snapshot carrying an ``error`` message.
"""

import sys
import time
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from typing import Any, Callable, List, Optional, Tuple

from .cache_store import CacheStore
from .classifier import classify_many
from .http_client import IndexerAPIError
from .models import (
    LoadMoreResult,
    TrackedWallet,
    Transaction,
    TransactionCacheEntry,
    WalletSnapshot,
)
from .pagination import ConfirmedPage, TransactionPager


INTER_WALLET_DELAY = 0.2  # seconds between wallets in a batch

# Sentinel: price not supplied by the caller, fetch it alongside the balance
_UNSET: Any = object()


def distrust_zero_balance(balance: Decimal) -> bool:
    """
    Return True when a balance must be re-fetched before it is believed.

    A zero can be a transient empty response from the indexer rather than an
    empty wallet, so zero is never served from cache and is re-checked once
    at the end of a batch.
    """
    return balance == 0


def log(address: str, message: str) -> None:
    """Log a message with address prefix."""
    print(f"[{address}] {message}", file=sys.stderr)


def _quote(balance: Decimal, price: Optional[Decimal]) -> Decimal:
    return balance * price if price else Decimal(0)


class WalletSynchronizer:
    """
    Orchestrates balance and history refresh for one or many wallets.

    Fetches inside a single wallet's sync (balance + price, or confirmed page
    + pending set) run concurrently; wallets in a batch are processed one at a
    time with ``inter_wallet_delay`` between them.
    """

    def __init__(
        self,
        pager: TransactionPager,
        balance_source: Any,
        price_oracle: Any,
        cache: CacheStore,
        inter_wallet_delay: float = INTER_WALLET_DELAY,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the synchronizer.

        Args:
            pager: TransactionPager for confirmed pages and the pending set
            balance_source: Object with ``get_balance(address) -> Decimal``
            price_oracle: Object with ``get_price() -> Decimal``
            cache: CacheStore shared by all syncs
            inter_wallet_delay: Seconds to wait between wallets in a batch
            sleep: Sleep function, replaced in tests
            clock: Time source, replaced in tests
        """
        self.pager = pager
        self.balance_source = balance_source
        self.price_oracle = price_oracle
        self.cache = cache
        self.inter_wallet_delay = inter_wallet_delay
        self.sleep = sleep
        self.clock = clock

    # -- fetch helpers -------------------------------------------------------

    def _fetch_price(self) -> Optional[Decimal]:
        """Fetch the quote price; None when the feed fails."""
        try:
            return self.price_oracle.get_price()
        except IndexerAPIError as e:
            print(f"[price] Price fetch failed, using 0: {e}", file=sys.stderr)
            return None

    def _fetch_balance_and_price(
        self, address: str, price: Any
    ) -> Tuple[Decimal, Optional[Decimal]]:
        """
        Fetch a fresh balance, and the price too unless one was supplied.

        Raises:
            IndexerAPIError: If the balance fetch fails
        """
        if price is not _UNSET:
            return self.balance_source.get_balance(address), price

        with ThreadPoolExecutor(max_workers=2) as pool:
            balance_future = pool.submit(self.balance_source.get_balance, address)
            price_future = pool.submit(self._fetch_price)
        return balance_future.result(), price_future.result()

    def _fetch_page(self, address: str, after_id: Optional[str] = None) -> Optional[ConfirmedPage]:
        try:
            return self.pager.fetch_confirmed_page(address, after_id)
        except IndexerAPIError as e:
            log(address, f"Confirmed page fetch failed: {e}")
            return None

    def _fetch_pending(self, address: str) -> Optional[List[Any]]:
        try:
            return self.pager.fetch_pending(address)
        except IndexerAPIError as e:
            log(address, f"Pending fetch failed: {e}")
            return None

    # -- balance -------------------------------------------------------------

    def _resolve_balance(self, address: str, price: Any) -> Tuple[Decimal, Decimal]:
        """
        Return (balance, quote balance), preferring a valid non-zero cache entry.

        The balance cache is only written when both balance and price were
        fetched successfully.
        """
        cached = self.cache.get_balance(address)
        if cached is not None and not distrust_zero_balance(cached.balance):
            return cached.balance, cached.balance_quote

        balance, fetched_price = self._fetch_balance_and_price(address, price)
        balance_quote = _quote(balance, fetched_price)
        if fetched_price is not None:
            self.cache.put_balance(address, balance, balance_quote)
        return balance, balance_quote

    # -- history -------------------------------------------------------------

    def _resolve_transactions(self, address: str) -> Tuple[List[Transaction], Optional[str], bool]:
        entry = self.cache.get_transactions(address)
        if entry is not None and entry.transactions:
            return self._refresh_history(address, entry)
        return self._initial_history(address)

    def _initial_history(self, address: str) -> Tuple[List[Transaction], Optional[str], bool]:
        """Fetch the first confirmed page and the pending set for an uncached address."""
        with ThreadPoolExecutor(max_workers=2) as pool:
            page_future = pool.submit(self._fetch_page, address)
            pending_future = pool.submit(self._fetch_pending, address)
        page = page_future.result()
        pending = pending_future.result() or []

        now = self.clock()
        pending_txs = classify_many(pending, address, now)
        if page is None:
            # No cursor without the confirmed page; leave the cache empty
            return pending_txs, None, False

        confirmed_txs = classify_many(page.records, address, now)
        entry = self.cache.put_transactions(
            address, pending_txs + confirmed_txs, page.cursor, page.has_more
        )
        return entry.transactions, entry.cursor, entry.has_more

    def _refresh_history(
        self, address: str, entry: TransactionCacheEntry
    ) -> Tuple[List[Transaction], Optional[str], bool]:
        """
        Merge the current pending set into cached history.

        When a cached pending transaction has left the pending set, the newest
        confirmed page is merged too so its confirmed copy supersedes the
        pending one, and pending records that vanished without confirming are
        pruned.
        """
        pending = self._fetch_pending(address)
        if pending is None:
            return entry.transactions, entry.cursor, entry.has_more

        now = self.clock()
        fresh = classify_many(pending, address, now)
        live_ids = {tx.id for tx in fresh}
        vanished = [tx for tx in entry.transactions if tx.is_pending and tx.id not in live_ids]

        newer = fresh
        page = None
        if vanished:
            page = self._fetch_page(address)
            if page is not None:
                newer = fresh + classify_many(page.records, address, now)

        entry = self.cache.merge_newer(address, newer)
        if page is not None:
            entry = self.cache.prune_pending(address, live_ids) or entry
        return entry.transactions, entry.cursor, entry.has_more

    # -- strategies ----------------------------------------------------------

    def _full_sync(self, wallet: TrackedWallet, price: Any) -> WalletSnapshot:
        balance, balance_quote = self._resolve_balance(wallet.address, price)
        transactions, cursor, has_more = self._resolve_transactions(wallet.address)
        return WalletSnapshot.for_wallet(
            wallet,
            balance=balance,
            balance_quote=balance_quote,
            transactions=transactions,
            cursor=cursor,
            has_more=has_more,
            last_updated=self.clock(),
        )

    def _minimal_sync(self, wallet: TrackedWallet, price: Any) -> WalletSnapshot:
        balance, fetched_price = self._fetch_balance_and_price(wallet.address, price)
        return WalletSnapshot.for_wallet(
            wallet,
            balance=balance,
            balance_quote=_quote(balance, fetched_price),
            last_updated=self.clock(),
        )

    def _zero_snapshot(self, wallet: TrackedWallet, error: Optional[str]) -> WalletSnapshot:
        return WalletSnapshot.for_wallet(
            wallet,
            last_updated=self.clock(),
            error=error or "Failed to load wallet data",
        )

    # -- public API ----------------------------------------------------------

    def sync_wallet(self, wallet: TrackedWallet, price: Any = _UNSET) -> WalletSnapshot:
        """
        Produce a snapshot for one wallet. Never raises.

        Strategies are tried in order and the first success is returned:
        full sync (cache-aware balance and history), then a minimal fetch of
        balance and price only, then an all-zero snapshot.

        Args:
            wallet: Wallet to sync
            price: Quote price shared by a batch; None means the batch price
                fetch failed. Omit to fetch the price with the balance.
        """
        strategies = [
            ("full", self._full_sync),
            ("minimal", self._minimal_sync),
        ]
        error: Optional[str] = None
        for name, strategy in strategies:
            try:
                snapshot = strategy(wallet, price)
            except Exception as e:
                error = f"{name} sync failed: {e}"
                log(wallet.address, error)
                continue
            snapshot.error = error
            return snapshot

        return self._zero_snapshot(wallet, error)

    def sync_all(self, wallets: List[TrackedWallet]) -> List[WalletSnapshot]:
        """
        Sync wallets sequentially with one shared price fetch.

        Waits ``inter_wallet_delay`` between consecutive wallets, never
        before the first. A zero balance gets one extra balance fetch before
        it is accepted.
        """
        if not wallets:
            return []

        price = self._fetch_price()
        snapshots: List[WalletSnapshot] = []
        for i, wallet in enumerate(wallets):
            if i > 0 and self.inter_wallet_delay > 0:
                self.sleep(self.inter_wallet_delay)

            snapshot = self.sync_wallet(wallet, price)
            if distrust_zero_balance(snapshot.balance):
                snapshot = self._recheck_zero_balance(snapshot, price)
            snapshots.append(snapshot)

        return snapshots

    def _recheck_zero_balance(self, snapshot: WalletSnapshot, price: Optional[Decimal]) -> WalletSnapshot:
        try:
            balance = self.balance_source.get_balance(snapshot.address)
        except IndexerAPIError as e:
            log(snapshot.address, f"Zero balance re-check failed: {e}")
            return snapshot

        if balance > 0:
            log(snapshot.address, "Zero balance was transient, using re-fetched balance")
            snapshot.balance = balance
            snapshot.balance_quote = _quote(balance, price)
            if price is not None:
                self.cache.put_balance(snapshot.address, balance, snapshot.balance_quote)
        return snapshot

    def load_more(self, address: str, after_id: str) -> LoadMoreResult:
        """
        Fetch the next confirmed page after ``after_id`` and append it to the cache.

        Returns:
            Only the newly fetched transactions, plus the new pagination state.
            On fetch failure: no records, ``has_more`` False, cursor unchanged.
        """
        page = self._fetch_page(address, after_id)
        if page is None:
            return LoadMoreResult(
                transactions=[],
                has_more=False,
                cursor=after_id,
                error="Failed to load more transactions",
            )

        transactions = classify_many(page.records, address, self.clock())
        self.cache.merge_older(address, transactions, page.has_more, page.cursor)
        return LoadMoreResult(
            transactions=transactions,
            has_more=page.has_more,
            cursor=page.cursor,
        )
