"""
mempool.space indexer client.

Wraps the Esplora-style REST endpoints used for balances, confirmed
transaction pages and the unconfirmed (mempool) transaction set.
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional

from .http_client import IndexerAPIError, RetryingHTTPClient
from .models import sats_to_btc
from .validators import validate_address


MEMPOOL_API = "https://mempool.space/api"

MEMPOOL_HEADERS = {
    "Accept": "application/json",
    "User-Agent": "btc-wallet-tracker",
}

# Fixed page size of the /txs/chain endpoint
CONFIRMED_PAGE_SIZE = 25


class MempoolClient(RetryingHTTPClient):
    """Read-only client for the mempool.space address API."""

    def __init__(self, base_url: str = MEMPOOL_API, **kwargs: Any):
        headers = dict(MEMPOOL_HEADERS)
        headers.update(kwargs.pop("headers", None) or {})
        super().__init__(base_url, headers=headers, **kwargs)

    def get_address_info(self, address: str) -> Dict[str, Any]:
        """
        Get address statistics (chain_stats and mempool_stats).

        Args:
            address: Bitcoin address

        Returns:
            The decoded JSON object
        """
        data = self._get_json(f"/address/{address}")
        if not isinstance(data, dict):
            raise IndexerAPIError(f"Unexpected address info for {address}")
        return data

    def get_balance(self, address: str) -> Decimal:
        """
        Get the confirmed balance of an address.

        Computed as funded minus spent outputs from ``chain_stats``.

        Returns:
            Balance in BTC
        """
        stats = self.get_address_info(address).get("chain_stats") or {}
        funded = stats.get("funded_txo_sum", 0)
        spent = stats.get("spent_txo_sum", 0)
        if not isinstance(funded, int) or not isinstance(spent, int):
            raise IndexerAPIError(f"Malformed chain_stats for {address}")
        return sats_to_btc(max(funded - spent, 0))

    def get_confirmed_transactions(
        self, address: str, after_txid: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """
        Get one page of confirmed transactions, newest first.

        Args:
            address: Bitcoin address
            after_txid: Last txid seen on the previous page

        Returns:
            Up to CONFIRMED_PAGE_SIZE raw transaction objects
        """
        path = f"/address/{address}/txs/chain"
        if after_txid:
            path = f"{path}/{after_txid}"
        return self._get_list(path)

    def get_mempool_transactions(self, address: str) -> List[Dict[str, Any]]:
        """Get all unconfirmed transactions touching an address."""
        return self._get_list(f"/address/{address}/txs/mempool")

    def verify_address(self, address: str) -> Dict[str, Any]:
        """
        Check the address format, then confirm the indexer knows it.

        Returns:
            Address info from the indexer

        Raises:
            InvalidAddressError: If the format check fails
            IndexerAPIError: 400 for an address the indexer rejects,
                404 when it is not found on chain
        """
        address = validate_address(address)
        try:
            return self.get_address_info(address)
        except IndexerAPIError as e:
            if e.status_code == 400:
                raise IndexerAPIError("Invalid Bitcoin address", status_code=400) from e
            if e.status_code == 404:
                raise IndexerAPIError("Address not found on blockchain", status_code=404) from e
            raise

    def _get_list(self, path: str) -> List[Dict[str, Any]]:
        data = self._get_json(path)
        if not isinstance(data, list):
            raise IndexerAPIError(f"Expected a list from {path}")
        return data
