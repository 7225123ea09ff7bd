"""
Pytest configuration and shared fixtures for btc-wallet-tracker tests.
"""

from decimal import Decimal

import pytest

from scripts.lib.cache_store import CacheStore
from scripts.lib.http_client import IndexerAPIError
from scripts.lib.mempool_client import CONFIRMED_PAGE_SIZE
from scripts.lib.models import TrackedWallet
from scripts.lib.pagination import TransactionPager
from scripts.lib.price_oracle import PriceFeedError
from scripts.lib.storage import MemoryStore
from scripts.lib.synchronizer import WalletSynchronizer


WATCHED = "bc1qxy2kgdygjrsqtzq2n0yrf2493p83kkfjhx0wlh"
EXTERNAL = "bc1qar0srrr7xfkvy5l643lydnw9re59gtzzwf5mdq"
SENDER = "1A1zP1eP5QGefi2DMPTfTL5SLmv7DivfNa"
OTHER = "3J98t1WpEZ73CNmQviecrnyiWrnqRhWNLy"

START_TIME = 1_700_000_000.0


def make_raw_tx(txid, inputs=(), outputs=(), fee=0, confirmed=True, block_time=1_690_000_000):
    """
    Build an indexer transaction object.

    inputs: iterable of (prev_address, prev_value); outputs: (address, value).
    """
    status = {"confirmed": confirmed}
    if confirmed and block_time is not None:
        status["block_time"] = block_time
    return {
        "txid": txid,
        "vin": [
            {"prevout": {"scriptpubkey_address": addr, "value": value}}
            for addr, value in inputs
        ],
        "vout": [{"scriptpubkey_address": addr, "value": value} for addr, value in outputs],
        "fee": fee,
        "status": status,
    }


def make_receive(txid, address=WATCHED, value=10_000, confirmed=True):
    return make_raw_tx(
        txid,
        inputs=[(SENDER, value + 500)],
        outputs=[(address, value)],
        fee=500,
        confirmed=confirmed,
    )


class FakeClock:
    """Controllable time source."""

    def __init__(self, now=START_TIME):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeBalanceSource:
    """Stands in for MempoolClient.get_balance."""

    def __init__(self, balances=None):
        self.balances = dict(balances or {})
        self.failing = set()
        self.calls = []

    def get_balance(self, address):
        self.calls.append(address)
        if address in self.failing:
            raise IndexerAPIError("balance unavailable", status_code=503)
        return self.balances.get(address, Decimal(0))


class FakePriceOracle:
    """Stands in for PriceOracle.get_price."""

    def __init__(self, price=Decimal("50000")):
        self.price = price
        self.fail = False
        self.calls = 0

    def get_price(self):
        self.calls += 1
        if self.fail:
            raise PriceFeedError("price feed down")
        return self.price


class FakeIndexer:
    """
    Stands in for MempoolClient's transaction endpoints.

    ``confirmed`` holds raw records newest first; pages follow the indexer's
    contract of returning the records after a given txid.
    """

    def __init__(self, page_size=CONFIRMED_PAGE_SIZE):
        self.page_size = page_size
        self.confirmed = {}
        self.pending = {}
        self.failing = set()
        self.page_calls = []
        self.pending_calls = []

    def get_confirmed_transactions(self, address, after_txid=None):
        self.page_calls.append((address, after_txid))
        if address in self.failing:
            raise IndexerAPIError("indexer down", status_code=502)
        records = self.confirmed.get(address, [])
        start = 0
        if after_txid is not None:
            ids = [r["txid"] for r in records]
            start = ids.index(after_txid) + 1
        return records[start:start + self.page_size]

    def get_mempool_transactions(self, address):
        self.pending_calls.append(address)
        if address in self.failing:
            raise IndexerAPIError("indexer down", status_code=502)
        return list(self.pending.get(address, []))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def cache(memory_store, clock):
    return CacheStore(memory_store, clock=clock)


@pytest.fixture
def indexer():
    return FakeIndexer()


@pytest.fixture
def balance_source():
    return FakeBalanceSource()


@pytest.fixture
def price_oracle():
    return FakePriceOracle()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def synchronizer(indexer, balance_source, price_oracle, cache, clock, sleeps):
    return WalletSynchronizer(
        pager=TransactionPager(indexer),
        balance_source=balance_source,
        price_oracle=price_oracle,
        cache=cache,
        sleep=sleeps.append,
        clock=clock,
    )


@pytest.fixture
def wallet():
    return TrackedWallet(id="wallet_1", nickname="savings", address=WATCHED, created_at=START_TIME)


@pytest.fixture
def sample_wallet_address():
    """Sample bech32 address for testing."""
    return WATCHED


@pytest.fixture
def sample_legacy_address():
    """Sample legacy (P2PKH) address for testing."""
    return SENDER
