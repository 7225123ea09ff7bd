"""
Output formatters for wallet snapshots.

This module renders snapshot summaries as text and writes transaction
histories to timestamped CSV files.
"""

import csv
import sys
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path
from typing import List, Optional, TextIO

from .models import CSV_COLUMNS, Transaction, WalletSnapshot


CURRENCY_SYMBOLS = {
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "JPY": "¥",
    "INR": "₹",
    "AUD": "A$",
    "CAD": "C$",
    "CNY": "¥",
}


def generate_timestamp() -> str:
    """
    Generate a timestamp string for filenames.

    Returns:
        Timestamp in YYYYMMDD_HHMMSS format
    """
    return datetime.now().strftime("%Y%m%d_%H%M%S")


def generate_filename(base_path: str, timestamp: Optional[str] = None) -> str:
    """
    Generate a timestamped filename for a CSV report.

    Examples:
        generate_filename("history.csv", "20241214_153022")
        -> "history_20241214_153022.csv"
    """
    if timestamp is None:
        timestamp = generate_timestamp()

    path = Path(base_path)
    suffix = path.suffix or ".csv"
    return str(path.parent / f"{path.stem}_{timestamp}{suffix}")


def format_btc(amount: Decimal) -> str:
    """
    Format a BTC amount with up to 8 decimals, trimming trailing zeros.

    Examples:
        format_btc(Decimal("1.50000000")) -> "1.5"
        format_btc(Decimal("0")) -> "0"
    """
    if amount == 0:
        return "0"
    formatted = format(amount.quantize(Decimal("0.00000001")), "f")
    if "." in formatted:
        formatted = formatted.rstrip("0").rstrip(".")
    return formatted


def format_fiat(amount: Decimal, currency: str = "USD") -> str:
    """Format a fiat amount with symbol and two decimals, e.g. "$1,234.50"."""
    symbol = CURRENCY_SYMBOLS.get(currency.upper(), "")
    rounded = amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return f"{symbol}{rounded:,.2f}"


def shorten_address(address: str, chars: int = 4) -> str:
    """Shorten an address for display: first chars+2 and last chars."""
    if not address or len(address) <= chars * 2 + 2:
        return address
    return f"{address[:chars + 2]}...{address[-chars:]}"


def format_timestamp(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def transaction_csv_row(address: str, tx: Transaction) -> List[str]:
    """Convert a transaction to a CSV row (list of strings)."""
    return [
        address,
        tx.id,
        tx.direction,
        format_btc(tx.amount),
        tx.counterparty,
        format_timestamp(tx.timestamp),
        tx.status,
        format_btc(tx.fee) if tx.fee is not None else "",
    ]


def format_snapshot(snapshot: WalletSnapshot, quote: Decimal, currency: str = "USD") -> str:
    """
    One summary line per wallet.

    Args:
        snapshot: Wallet snapshot
        quote: Balance already converted into ``currency``
        currency: Display currency code
    """
    line = (
        f"{snapshot.nickname:<16} {shorten_address(snapshot.address, 6):<20} "
        f"{format_btc(snapshot.balance):>14} BTC  {format_fiat(quote, currency):>16}  "
        f"{len(snapshot.transactions)} txs"
    )
    if snapshot.has_more:
        line += " (more available)"
    if snapshot.error:
        line += f"  [error: {snapshot.error}]"
    return line


def write_csv_to_stream(snapshots: List[WalletSnapshot], stream: TextIO) -> None:
    """
    Write the transactions of all snapshots to a CSV stream.

    Args:
        snapshots: Wallet snapshots to write
        stream: File-like object to write to
    """
    writer = csv.writer(stream)
    writer.writerow(CSV_COLUMNS)

    for snapshot in snapshots:
        for tx in snapshot.transactions:
            writer.writerow(transaction_csv_row(snapshot.address, tx))


def write_csv(snapshots: List[WalletSnapshot], output_path: Optional[str] = None) -> Optional[str]:
    """
    Write transaction history to a timestamped CSV file or stdout.

    Returns:
        The file path written, or None when writing to stdout
    """
    if output_path is None:
        write_csv_to_stream(snapshots, sys.stdout)
        return None

    filename = generate_filename(output_path)
    with open(filename, "w", newline="", encoding="utf-8") as f:
        write_csv_to_stream(snapshots, f)
    return filename
