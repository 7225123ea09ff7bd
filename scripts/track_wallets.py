#!/usr/bin/env python3
"""
Track Bitcoin wallet balances and transaction history from the command line.

Wallets are stored in a local data directory together with the balance and
transaction caches. Balances come from the mempool.space indexer and prices
from CoinGecko.
"""

import argparse
import json
import sys
import time
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import List, Optional

from scripts.lib.auto_refresh import AutoRefresher
from scripts.lib.cache_store import CacheStore
from scripts.lib.formatters import format_fiat, format_snapshot, write_csv
from scripts.lib.http_client import IndexerAPIError
from scripts.lib.mempool_client import MempoolClient
from scripts.lib.models import SUPPORTED_CURRENCIES, WalletSnapshot
from scripts.lib.pagination import TransactionPager
from scripts.lib.price_oracle import ExchangeRateCache, ExchangeRateFeed, PriceOracle
from scripts.lib.storage import JsonFileStore
from scripts.lib.synchronizer import INTER_WALLET_DELAY, WalletSynchronizer
from scripts.lib.wallet_registry import WalletRegistry


DEFAULT_DATA_DIR = "~/.btc_wallet_tracker"


def log(scope: str, message: str) -> None:
    """Log a message with scope prefix."""
    print(f"[{scope}] {message}", file=sys.stderr)


@dataclass
class Engine:
    """Wired-up collaborators for one CLI run."""

    registry: WalletRegistry
    cache: CacheStore
    client: MempoolClient
    synchronizer: WalletSynchronizer
    rates: ExchangeRateCache


def build_engine(data_dir: str, delay: float = INTER_WALLET_DELAY) -> Engine:
    store = JsonFileStore(data_dir)
    cache = CacheStore(store)
    client = MempoolClient()
    synchronizer = WalletSynchronizer(
        pager=TransactionPager(client),
        balance_source=client,
        price_oracle=PriceOracle(),
        cache=cache,
        inter_wallet_delay=delay,
    )
    return Engine(
        registry=WalletRegistry(store, cache),
        cache=cache,
        client=client,
        synchronizer=synchronizer,
        rates=ExchangeRateCache(ExchangeRateFeed()),
    )


def validate_currency(currency: str) -> str:
    """
    Normalize a display currency code.

    Raises:
        ValueError: If the currency is not supported
    """
    code = currency.upper()
    if code not in SUPPORTED_CURRENCIES:
        raise ValueError(
            f"Unsupported currency: {currency}. Supported: {', '.join(SUPPORTED_CURRENCIES)}"
        )
    return code


def print_snapshots(engine: Engine, snapshots: List[WalletSnapshot], currency: str) -> None:
    total = Decimal(0)
    for snapshot in snapshots:
        quote = engine.rates.convert(snapshot.balance_quote, "USD", currency)
        total += quote
        print(format_snapshot(snapshot, quote, currency))
    print(f"Total: {format_fiat(total, currency)} across {len(snapshots)} wallet(s)")


def cmd_add(engine: Engine, args: argparse.Namespace) -> int:
    wallet = engine.registry.add_wallet(args.nickname or "", args.address)
    log("wallets", f"Tracking {wallet.nickname} ({wallet.address}) as {wallet.id}")
    snapshot = engine.synchronizer.sync_wallet(wallet)
    print_snapshots(engine, [snapshot], args.currency)
    return 0


def cmd_list(engine: Engine, args: argparse.Namespace) -> int:
    wallets = engine.registry.search_wallets(args.query) if args.query else engine.registry.list_wallets()
    for wallet in wallets:
        print(f"{wallet.id}  {wallet.nickname:<16} {wallet.address}")
    return 0


def cmd_sync(engine: Engine, args: argparse.Namespace) -> int:
    wallets = engine.registry.list_wallets()
    if args.wallet_id:
        wallets = [w for w in wallets if w.id == args.wallet_id]
        if not wallets:
            log("wallets", f"No wallet with id {args.wallet_id}")
            return 1
    if not wallets:
        log("wallets", "No wallets tracked. Use 'add' first.")
        return 0

    log("sync", f"Syncing {len(wallets)} wallet(s)...")
    snapshots = engine.synchronizer.sync_all(wallets)
    print_snapshots(engine, snapshots, args.currency)

    if args.output:
        filename = write_csv(snapshots, args.output)
        log("sync", f"Transactions written to: {filename}")
    return 0


def cmd_history(engine: Engine, args: argparse.Namespace) -> int:
    wallet = engine.registry.get_wallet(args.wallet_id)
    if wallet is None:
        log("wallets", f"No wallet with id {args.wallet_id}")
        return 1

    entry = engine.cache.get_transactions(wallet.address)
    if entry is None:
        snapshot = engine.synchronizer.sync_wallet(wallet)
        cursor, has_more = snapshot.cursor, snapshot.has_more
    else:
        cursor, has_more = entry.cursor, entry.has_more

    for _ in range(args.pages):
        if not has_more or not cursor:
            break
        result = engine.synchronizer.load_more(wallet.address, cursor)
        if result.error:
            log(wallet.address, result.error)
            break
        log(wallet.address, f"Loaded {len(result.transactions)} older transaction(s)")
        cursor, has_more = result.cursor, result.has_more

    entry = engine.cache.get_transactions(wallet.address)
    snapshot = WalletSnapshot.for_wallet(
        wallet,
        transactions=entry.transactions if entry else [],
        cursor=cursor,
        has_more=has_more,
    )
    write_csv([snapshot], args.output)
    return 0


def cmd_rename(engine: Engine, args: argparse.Namespace) -> int:
    wallet = engine.registry.rename_wallet(args.wallet_id, args.nickname)
    if wallet is None:
        log("wallets", f"No wallet with id {args.wallet_id}")
        return 1
    log("wallets", f"Renamed {wallet.id} to {wallet.nickname}")
    return 0


def cmd_remove(engine: Engine, args: argparse.Namespace) -> int:
    if not engine.registry.delete_wallet(args.wallet_id):
        log("wallets", f"No wallet with id {args.wallet_id}")
        return 1
    log("wallets", f"Removed {args.wallet_id}")
    return 0


def cmd_verify(engine: Engine, args: argparse.Namespace) -> int:
    info = engine.client.verify_address(args.address)
    stats = info.get("chain_stats") or {}
    print(f"{args.address}: valid, {stats.get('tx_count', 0)} confirmed transaction(s)")
    return 0


def cmd_clear_cache(engine: Engine, args: argparse.Namespace) -> int:
    engine.cache.clear()
    log("cache", "Cleared balance and transaction caches")
    return 0


def cmd_export(engine: Engine, args: argparse.Namespace) -> int:
    backup = json.dumps(engine.registry.export_backup(), indent=2)
    if args.file:
        Path(args.file).write_text(backup, encoding="utf-8")
        log("backup", f"Backup written to: {args.file}")
    else:
        print(backup)
    return 0


def cmd_import(engine: Engine, args: argparse.Namespace) -> int:
    try:
        data = json.loads(Path(args.file).read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        log("backup", f"Failed to read backup file: {e}")
        return 1
    success, message = engine.registry.import_backup(data)
    log("backup", message)
    return 0 if success else 1


def cmd_watch(engine: Engine, args: argparse.Namespace) -> int:
    interval = args.interval or engine.registry.get_settings().refresh_interval

    def show(snapshot: WalletSnapshot) -> None:
        quote = engine.rates.convert(snapshot.balance_quote, "USD", args.currency)
        print(format_snapshot(snapshot, quote, args.currency), flush=True)

    refresher = AutoRefresher(
        engine.synchronizer,
        engine.registry.list_wallets,
        interval=interval,
        on_snapshot=show,
    )
    log("watch", f"Refreshing every {interval:g}s, Ctrl-C to stop")
    refresher.run_once()
    refresher.start()
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        refresher.stop()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Track Bitcoin wallet balances and transactions.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s add bc1q... --nickname savings
  %(prog)s sync --currency EUR --output history.csv
  %(prog)s history WALLET_ID --pages 2
        """,
    )
    parser.add_argument(
        "--data-dir",
        default=DEFAULT_DATA_DIR,
        help=f"Directory for wallets and caches (default: {DEFAULT_DATA_DIR})",
    )
    parser.add_argument(
        "--currency",
        default=None,
        help=f"Display currency. Supported: {', '.join(SUPPORTED_CURRENCIES)}",
    )
    parser.add_argument(
        "--delay",
        type=float,
        default=INTER_WALLET_DELAY,
        help="Seconds to wait between wallets when syncing several",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("add", help="Track a new address")
    p.add_argument("address")
    p.add_argument("--nickname", help="Display name")
    p.set_defaults(func=cmd_add)

    p = sub.add_parser("list", help="List tracked wallets")
    p.add_argument("--query", help="Filter by nickname or address")
    p.set_defaults(func=cmd_list)

    p = sub.add_parser("sync", help="Refresh and show all (or one) wallets")
    p.add_argument("wallet_id", nargs="?")
    p.add_argument("--output", help="Write transactions to CSV (timestamp auto-appended)")
    p.set_defaults(func=cmd_sync)

    p = sub.add_parser("history", help="Show transaction history, loading older pages")
    p.add_argument("wallet_id")
    p.add_argument("--pages", type=int, default=1, help="Older pages to load")
    p.add_argument("--output", help="Output file path (timestamp auto-appended)")
    p.set_defaults(func=cmd_history)

    p = sub.add_parser("rename", help="Rename a wallet")
    p.add_argument("wallet_id")
    p.add_argument("nickname")
    p.set_defaults(func=cmd_rename)

    p = sub.add_parser("remove", help="Stop tracking a wallet")
    p.add_argument("wallet_id")
    p.set_defaults(func=cmd_remove)

    p = sub.add_parser("verify", help="Check an address against the indexer")
    p.add_argument("address")
    p.set_defaults(func=cmd_verify)

    p = sub.add_parser("clear-cache", help="Drop cached balances and histories")
    p.set_defaults(func=cmd_clear_cache)

    p = sub.add_parser("export", help="Export wallets and settings")
    p.add_argument("--file", help="Backup file (stdout if omitted)")
    p.set_defaults(func=cmd_export)

    p = sub.add_parser("import", help="Import wallets and settings from a backup")
    p.add_argument("file")
    p.set_defaults(func=cmd_import)

    p = sub.add_parser("watch", help="Re-sync periodically until interrupted")
    p.add_argument("--interval", type=float, help="Seconds between refreshes")
    p.set_defaults(func=cmd_watch)

    return parser


def main(args: Optional[List[str]] = None) -> int:
    """
    Main entry point for the CLI.

    Args:
        args: Command line arguments (uses sys.argv if None)

    Returns:
        Exit code (0 for success, 1 for error)
    """
    parsed_args = build_parser().parse_args(args)
    engine = build_engine(parsed_args.data_dir, parsed_args.delay)

    try:
        currency = parsed_args.currency or engine.registry.get_settings().preferred_currency
        parsed_args.currency = validate_currency(currency)
        return parsed_args.func(engine, parsed_args)
    except (ValueError, IndexerAPIError) as e:
        # InvalidAddressError is a ValueError
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
