"""
Pagination over the indexer's confirmed and pending transaction endpoints.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .mempool_client import CONFIRMED_PAGE_SIZE, MempoolClient


@dataclass
class ConfirmedPage:
    """One page of raw confirmed transactions."""

    records: List[Dict[str, Any]]
    has_more: bool
    cursor: Optional[str]  # txid to resume after


class TransactionPager:
    """
    Abstracts the indexer's fixed page-size contract.

    The indexer does not say whether another page exists. A full page is
    taken to mean there may be more; an exact multiple of the page size
    therefore costs one extra, empty request at the end.
    """

    def __init__(self, client: MempoolClient, page_size: int = CONFIRMED_PAGE_SIZE):
        self.client = client
        self.page_size = page_size

    def fetch_confirmed_page(self, address: str, after_id: Optional[str] = None) -> ConfirmedPage:
        """
        Fetch one page of confirmed transactions after ``after_id``.

        Raises:
            IndexerAPIError: If the indexer call fails
        """
        records = self.client.get_confirmed_transactions(address, after_id)
        cursor = after_id
        if records:
            last = records[-1]
            if isinstance(last, dict) and last.get("txid"):
                cursor = str(last["txid"])
        return ConfirmedPage(
            records=records,
            has_more=len(records) >= self.page_size,
            cursor=cursor,
        )

    def fetch_pending(self, address: str) -> List[Dict[str, Any]]:
        """
        Fetch the full unconfirmed set for an address.

        Raises:
            IndexerAPIError: If the indexer call fails
        """
        return self.client.get_mempool_transactions(address)
