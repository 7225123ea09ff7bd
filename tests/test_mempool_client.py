"""
Unit tests for the mempool.space client and its retry handling.

Tests follow the Given/When/Then pattern for clarity.
"""

from decimal import Decimal

import pytest
import requests
import responses

from scripts.lib.http_client import IndexerAPIError, IndexerRateLimitError
from scripts.lib.mempool_client import MEMPOOL_API, MempoolClient
from scripts.lib.validators import InvalidAddressError


def fast_client(**kwargs):
    """Client with negligible backoff for tests."""
    kwargs.setdefault("initial_delay", 0.001)
    kwargs.setdefault("jitter", 0)
    return MempoolClient(**kwargs)


class TestRateLimitHandling:
    """Tests for 429 and server error retry behavior."""

    @responses.activate
    def test_retries_on_429_with_exponential_backoff(self, sample_wallet_address):
        """
        Given a client configured with retry settings
        When a 429 response is received
        Then the client should retry until it succeeds
        """
        # Given
        client = fast_client(max_retries=3)
        url = f"{MEMPOOL_API}/address/{sample_wallet_address}/txs/mempool"

        responses.add(responses.GET, url, status=429)
        responses.add(responses.GET, url, status=429)
        responses.add(responses.GET, url, json=[], status=200)

        # When
        result = client.get_mempool_transactions(sample_wallet_address)

        # Then
        assert result == []
        assert len(responses.calls) == 3

    @responses.activate
    def test_raises_rate_limit_error_after_max_retries(self, sample_wallet_address):
        """
        Given a client with limited retries
        When 429 responses persist beyond max retries
        Then IndexerRateLimitError should be raised
        """
        # Given
        client = fast_client(max_retries=2)
        url = f"{MEMPOOL_API}/address/{sample_wallet_address}/txs/mempool"
        for _ in range(4):
            responses.add(responses.GET, url, status=429)

        # When / Then
        with pytest.raises(IndexerRateLimitError) as exc_info:
            client.get_mempool_transactions(sample_wallet_address)

        assert exc_info.value.status_code == 429
        assert len(responses.calls) == 3  # Initial + 2 retries

    @responses.activate
    def test_retries_on_server_error(self, sample_wallet_address):
        """
        Given a client
        When a 502 server error is received
        Then the client should retry with backoff
        """
        # Given
        client = fast_client(max_retries=2)
        url = f"{MEMPOOL_API}/address/{sample_wallet_address}/txs/mempool"
        responses.add(responses.GET, url, status=502)
        responses.add(responses.GET, url, json=[], status=200)

        # When
        client.get_mempool_transactions(sample_wallet_address)

        # Then
        assert len(responses.calls) == 2

    @responses.activate
    def test_retries_on_connection_error(self, sample_wallet_address):
        """
        Given a transport error followed by a success
        When making a request
        Then the request should be retried
        """
        # Given
        client = fast_client(max_retries=1)
        url = f"{MEMPOOL_API}/address/{sample_wallet_address}/txs/mempool"
        responses.add(responses.GET, url, body=requests.ConnectionError("reset"))
        responses.add(responses.GET, url, json=[], status=200)

        # When
        result = client.get_mempool_transactions(sample_wallet_address)

        # Then
        assert result == []
        assert len(responses.calls) == 2

    @responses.activate
    def test_client_error_is_not_retried(self, sample_wallet_address):
        """
        Given a 400 response
        When making a request
        Then IndexerAPIError should be raised without retrying
        """
        # Given
        client = fast_client(max_retries=3)
        url = f"{MEMPOOL_API}/address/{sample_wallet_address}/txs/mempool"
        responses.add(responses.GET, url, body="Invalid Bitcoin address", status=400)

        # When / Then
        with pytest.raises(IndexerAPIError) as exc_info:
            client.get_mempool_transactions(sample_wallet_address)

        assert exc_info.value.status_code == 400
        assert len(responses.calls) == 1

    def test_jitter_applies_randomization_to_delay(self):
        """
        Given a client with jitter enabled
        When calculating delay with jitter
        Then the delay should be within the expected range
        """
        # Given
        client = MempoolClient(jitter=0.1)

        # When
        jittered_delays = [client._apply_jitter(1.0) for _ in range(100)]

        # Then
        for delay in jittered_delays:
            assert 0.9 <= delay <= 1.1


class TestGetBalance:
    """Tests for get_balance."""

    @responses.activate
    def test_balance_is_funded_minus_spent_in_btc(self, sample_wallet_address):
        """
        Given address stats with funded and spent totals in satoshis
        When getting the balance
        Then the difference should be returned in BTC
        """
        # Given
        client = fast_client()
        responses.add(
            responses.GET,
            f"{MEMPOOL_API}/address/{sample_wallet_address}",
            json={
                "address": sample_wallet_address,
                "chain_stats": {"funded_txo_sum": 150_000_000, "spent_txo_sum": 25_000_000},
                "mempool_stats": {"funded_txo_sum": 0, "spent_txo_sum": 0},
            },
            status=200,
        )

        # When
        balance = client.get_balance(sample_wallet_address)

        # Then
        assert balance == Decimal("1.25")

    @responses.activate
    def test_malformed_stats_raise(self, sample_wallet_address):
        """
        Given address stats with non-integer totals
        When getting the balance
        Then IndexerAPIError should be raised
        """
        # Given
        client = fast_client()
        responses.add(
            responses.GET,
            f"{MEMPOOL_API}/address/{sample_wallet_address}",
            json={"chain_stats": {"funded_txo_sum": "lots", "spent_txo_sum": 0}},
            status=200,
        )

        # When / Then
        with pytest.raises(IndexerAPIError, match="Malformed"):
            client.get_balance(sample_wallet_address)


class TestTransactionEndpoints:
    """Tests for the confirmed and mempool transaction endpoints."""

    @responses.activate
    def test_first_page_has_no_cursor_in_path(self, sample_wallet_address):
        """
        Given no cursor
        When fetching confirmed transactions
        Then the chain endpoint without a txid should be called
        """
        # Given
        client = fast_client()
        url = f"{MEMPOOL_API}/address/{sample_wallet_address}/txs/chain"
        responses.add(responses.GET, url, json=[{"txid": "a"}], status=200)

        # When
        records = client.get_confirmed_transactions(sample_wallet_address)

        # Then
        assert records == [{"txid": "a"}]
        assert responses.calls[0].request.url == url

    @responses.activate
    def test_cursor_is_appended_to_path(self, sample_wallet_address):
        """
        Given a cursor txid
        When fetching confirmed transactions
        Then the txid should be appended to the chain endpoint
        """
        # Given
        client = fast_client()
        url = f"{MEMPOOL_API}/address/{sample_wallet_address}/txs/chain/abc123"
        responses.add(responses.GET, url, json=[], status=200)

        # When
        records = client.get_confirmed_transactions(sample_wallet_address, "abc123")

        # Then
        assert records == []
        assert responses.calls[0].request.url == url

    @responses.activate
    def test_non_list_response_raises(self, sample_wallet_address):
        """
        Given an endpoint that returns an object instead of a list
        When fetching mempool transactions
        Then IndexerAPIError should be raised
        """
        # Given
        client = fast_client()
        responses.add(
            responses.GET,
            f"{MEMPOOL_API}/address/{sample_wallet_address}/txs/mempool",
            json={"error": "nope"},
            status=200,
        )

        # When / Then
        with pytest.raises(IndexerAPIError, match="Expected a list"):
            client.get_mempool_transactions(sample_wallet_address)


class TestVerifyAddress:
    """Tests for verify_address."""

    def test_rejects_bad_format_before_any_request(self):
        """
        Given a string that is not a Bitcoin address
        When verifying it
        Then InvalidAddressError should be raised without a network call
        """
        # Given
        client = fast_client()

        # When / Then
        with pytest.raises(InvalidAddressError, match="Invalid Bitcoin address format"):
            client.verify_address("0xd8dA6BF26964aF9D7eEd9e03E53415D37aA96045")

    @responses.activate
    def test_not_found_address(self, sample_wallet_address):
        """
        Given an address unknown to the indexer
        When verifying it
        Then a 404 IndexerAPIError with a readable message should be raised
        """
        # Given
        client = fast_client()
        responses.add(
            responses.GET, f"{MEMPOOL_API}/address/{sample_wallet_address}", status=404
        )

        # When / Then
        with pytest.raises(IndexerAPIError, match="not found") as exc_info:
            client.verify_address(sample_wallet_address)
        assert exc_info.value.status_code == 404

    @responses.activate
    def test_known_address_returns_info(self, sample_wallet_address):
        """
        Given an address known to the indexer
        When verifying it
        Then its info should be returned
        """
        # Given
        client = fast_client()
        responses.add(
            responses.GET,
            f"{MEMPOOL_API}/address/{sample_wallet_address}",
            json={"address": sample_wallet_address, "chain_stats": {"tx_count": 3}},
            status=200,
        )

        # When
        info = client.verify_address(f"  {sample_wallet_address} ")

        # Then
        assert info["chain_stats"]["tx_count"] == 3
