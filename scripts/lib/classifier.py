"""
Transaction classification relative to a watched address.

Raw indexer JSON is validated into ``RawTransaction`` at this boundary, then
reduced to one canonical ``Transaction`` (send or receive) per record.
"""

import sys
import time
from typing import Any, Dict, Iterable, List, Optional

from .models import (
    DIRECTION_RECEIVE,
    DIRECTION_SEND,
    STATUS_CONFIRMED,
    STATUS_PENDING,
    UNKNOWN_ADDRESS,
    RawInput,
    RawOutput,
    RawTransaction,
    Transaction,
    sats_to_btc,
)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _optional_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


def _parse_input(vin: Any) -> Optional[RawInput]:
    if not isinstance(vin, dict):
        return None
    prevout = vin.get("prevout")
    if prevout is None:
        # Coinbase input
        return RawInput(prev_address=None, prev_value=None)
    if not isinstance(prevout, dict):
        return None
    value = prevout.get("value")
    return RawInput(
        prev_address=_optional_str(prevout.get("scriptpubkey_address")),
        prev_value=value if _is_int(value) else None,
    )


def _parse_output(vout: Any) -> Optional[RawOutput]:
    if not isinstance(vout, dict) or not _is_int(vout.get("value")):
        return None
    return RawOutput(
        address=_optional_str(vout.get("scriptpubkey_address")),
        value=vout["value"],
    )


def parse_raw_transaction(data: Any) -> Optional[RawTransaction]:
    """
    Validate one indexer transaction object.

    Args:
        data: Decoded JSON from the indexer

    Returns:
        RawTransaction, or None if a required field is missing or mistyped
    """
    if not isinstance(data, dict):
        return None

    txid = _optional_str(data.get("txid"))
    vin = data.get("vin")
    vout = data.get("vout")
    status = data.get("status")
    if txid is None or not isinstance(vin, list) or not isinstance(vout, list):
        return None
    if not isinstance(status, dict) or not isinstance(status.get("confirmed"), bool):
        return None

    inputs = [_parse_input(i) for i in vin]
    outputs = [_parse_output(o) for o in vout]
    if any(i is None for i in inputs) or any(o is None for o in outputs):
        return None

    fee = data.get("fee", 0)
    if not _is_int(fee) or fee < 0:
        return None

    block_time = status.get("block_time")
    return RawTransaction(
        txid=txid,
        inputs=inputs,
        outputs=outputs,
        fee=fee,
        confirmed=status["confirmed"],
        block_time=block_time if _is_int(block_time) else None,
    )


def classify_transaction(
    raw: RawTransaction, address: str, now: Optional[float] = None
) -> Optional[Transaction]:
    """
    Classify a validated transaction as a send or receive for ``address``.

    Sends report only the first output not paying ``address``. A batched
    payment to several recipients is therefore under-reported; this is the
    established reporting rule and downstream totals rely on it.

    Args:
        raw: Validated indexer transaction
        address: Watched address
        now: Timestamp used for pending transactions without a block time

    Returns:
        Transaction, or None if ``address`` is not involved
    """
    as_source = any(i.prev_address == address for i in raw.inputs)
    as_destination = any(o.address == address for o in raw.outputs)

    if not as_source and not as_destination:
        return None

    fee = None
    if as_source:
        # Covers both plain spends and spends returning change to address.
        direction = DIRECTION_SEND
        recipient = next((o for o in raw.outputs if o.address != address), None)
        amount_sats = recipient.value if recipient else 0
        counterparty = (recipient.address if recipient else None) or UNKNOWN_ADDRESS
        fee = sats_to_btc(raw.fee)
    else:
        direction = DIRECTION_RECEIVE
        received = next(o for o in raw.outputs if o.address == address)
        amount_sats = received.value
        first_input = raw.inputs[0] if raw.inputs else None
        counterparty = (first_input.prev_address if first_input else None) or UNKNOWN_ADDRESS

    if raw.block_time is not None:
        timestamp = float(raw.block_time)
    else:
        timestamp = now if now is not None else time.time()

    return Transaction(
        id=raw.txid,
        direction=direction,
        amount=sats_to_btc(amount_sats),
        counterparty=counterparty,
        timestamp=timestamp,
        status=STATUS_CONFIRMED if raw.confirmed else STATUS_PENDING,
        fee=fee,
    )


def classify_many(
    records: Iterable[Dict[str, Any]], address: str, now: Optional[float] = None
) -> List[Transaction]:
    """
    Parse and classify a batch of raw indexer records, keeping their order.

    Malformed records are skipped and reported on stderr; records that do not
    involve ``address`` are dropped silently.
    """
    transactions: List[Transaction] = []
    skipped = 0
    for record in records:
        raw = parse_raw_transaction(record)
        if raw is None:
            skipped += 1
            continue
        tx = classify_transaction(raw, address, now)
        if tx is not None:
            transactions.append(tx)

    if skipped > 0:
        print(
            f"[{address}] Skipped {skipped} malformed transaction record(s)",
            file=sys.stderr,
        )
    return transactions
