"""
Unit tests for the formatters module.

Tests follow the Given/When/Then pattern for clarity.
"""

import io
import os
import tempfile
from decimal import Decimal
from unittest.mock import patch

from conftest import EXTERNAL, WATCHED
from scripts.lib.formatters import (
    format_btc,
    format_fiat,
    format_snapshot,
    format_timestamp,
    generate_filename,
    generate_timestamp,
    shorten_address,
    transaction_csv_row,
    write_csv,
    write_csv_to_stream,
)
from scripts.lib.models import CSV_COLUMNS, Transaction, WalletSnapshot


def make_snapshot(transactions=(), **kwargs):
    return WalletSnapshot(
        id="wallet_1",
        nickname="savings",
        address=WATCHED,
        created_at=0.0,
        transactions=list(transactions),
        **kwargs,
    )


SEND = Transaction(
    id="abc",
    direction="send",
    amount=Decimal("0.0015"),
    counterparty=EXTERNAL,
    timestamp=1_700_000_000.0,
    status="confirmed",
    fee=Decimal("0.00002"),
)

RECEIVE = Transaction(
    id="def",
    direction="receive",
    amount=Decimal("1"),
    counterparty="Unknown",
    timestamp=1_700_000_100.0,
    status="pending",
)


class TestGenerateTimestamp:
    """Tests for generate_timestamp function."""

    def test_returns_string_in_correct_format(self):
        """
        Given the current time
        When generating a timestamp
        Then it should be in YYYYMMDD_HHMMSS format
        """
        # When
        timestamp = generate_timestamp()

        # Then
        assert len(timestamp) == 15  # YYYYMMDD_HHMMSS
        assert timestamp[8] == "_"
        assert timestamp[:8].isdigit()
        assert timestamp[9:].isdigit()

    @patch("scripts.lib.formatters.datetime")
    def test_uses_current_time(self, mock_datetime):
        """
        Given a specific datetime
        When generating a timestamp
        Then it should format that datetime
        """
        # Given
        mock_datetime.now.return_value.strftime.return_value = "20241214_153022"

        # When
        timestamp = generate_timestamp()

        # Then
        assert timestamp == "20241214_153022"


class TestGenerateFilename:
    """Tests for generate_filename function."""

    def test_appends_timestamp(self):
        """
        Given a base path and timestamp
        When generating the filename
        Then the timestamp should precede the extension
        """
        # When / Then
        assert generate_filename("history.csv", "20241214_153022") == "history_20241214_153022.csv"

    def test_handles_path_with_directory(self):
        """
        Given a base path with directory
        When generating the filename
        Then directory should be preserved
        """
        # When
        filename = generate_filename("/path/to/history.csv", "20241214_153022")

        # Then
        assert filename == "/path/to/history_20241214_153022.csv"

    def test_handles_no_extension(self):
        """
        Given a base path without extension
        When generating the filename
        Then .csv should be used as default
        """
        # When / Then
        assert generate_filename("report", "20241214_153022") == "report_20241214_153022.csv"


class TestAmountFormatting:
    """Tests for BTC, fiat, address and time formatting."""

    def test_format_btc_trims_trailing_zeros(self):
        """
        Given BTC amounts with trailing zeros
        When formatting
        Then zeros should be trimmed up to 8 decimals
        """
        # When / Then
        assert format_btc(Decimal("1.50000000")) == "1.5"
        assert format_btc(Decimal("0.00000001")) == "0.00000001"
        assert format_btc(Decimal("2")) == "2"
        assert format_btc(Decimal("0")) == "0"

    def test_format_fiat_uses_symbol_and_grouping(self):
        """
        Given fiat amounts
        When formatting
        Then the currency symbol, grouping and two decimals should be used
        """
        # When / Then
        assert format_fiat(Decimal("1234.5")) == "$1,234.50"
        assert format_fiat(Decimal("0.005"), "EUR") == "€0.01"

    def test_shorten_address(self):
        """
        Given a long and a short address
        When shortening
        Then only the long one should be abbreviated
        """
        # When / Then
        assert shorten_address(WATCHED) == "bc1qxy...0wlh"
        assert shorten_address("short") == "short"

    def test_format_timestamp_is_utc(self):
        """
        Given a unix timestamp
        When formatting
        Then it should render in UTC
        """
        # When / Then
        assert format_timestamp(0) == "1970-01-01 00:00:00"


class TestSnapshotFormatting:
    """Tests for snapshot rows and summary lines."""

    def test_send_row_includes_fee(self):
        """
        Given a send transaction
        When converting to a CSV row
        Then the fee column should be filled
        """
        # When
        row = transaction_csv_row(WATCHED, SEND)

        # Then
        assert row == [
            WATCHED, "abc", "send", "0.0015", EXTERNAL, "2023-11-14 22:13:20", "confirmed", "0.00002",
        ]

    def test_receive_row_has_empty_fee(self):
        """
        Given a receive transaction
        When converting to a CSV row
        Then the fee column should be empty
        """
        # When
        row = transaction_csv_row(WATCHED, RECEIVE)

        # Then
        assert row[-1] == ""
        assert row[6] == "pending"

    def test_summary_line_flags_more_and_errors(self):
        """
        Given a snapshot with more pages and an error
        When formatting the summary line
        Then both should be indicated
        """
        # Given
        snapshot = make_snapshot(
            [SEND], balance=Decimal("0.5"), has_more=True, error="minimal sync"
        )

        # When
        line = format_snapshot(snapshot, Decimal("25000"), "USD")

        # Then
        assert "savings" in line
        assert "0.5 BTC" in line
        assert "$25,000.00" in line
        assert "1 txs (more available)" in line
        assert line.endswith("[error: minimal sync]")


class TestWriteCsvToStream:
    """Tests for write_csv_to_stream function."""

    def test_writes_header_row(self):
        """
        Given no snapshots
        When writing to stream
        Then only the header should be written
        """
        # Given
        stream = io.StringIO()

        # When
        write_csv_to_stream([], stream)

        # Then
        lines = stream.getvalue().strip().split("\n")
        assert len(lines) == 1
        assert lines[0] == ",".join(CSV_COLUMNS)

    def test_writes_one_row_per_transaction(self):
        """
        Given two snapshots with three transactions in total
        When writing to stream
        Then three data rows should follow the header
        """
        # Given
        snapshots = [make_snapshot([SEND, RECEIVE]), make_snapshot([RECEIVE])]
        stream = io.StringIO()

        # When
        write_csv_to_stream(snapshots, stream)

        # Then
        lines = stream.getvalue().strip().split("\n")
        assert len(lines) == 4
        assert lines[1].startswith(f"{WATCHED},abc,send,0.0015,")


class TestWriteCsv:
    """Tests for write_csv function."""

    def test_writes_to_stdout_when_no_path(self, capsys):
        """
        Given no output path
        When writing CSV
        Then output should go to stdout
        """
        # When
        result = write_csv([make_snapshot([SEND])])

        # Then
        assert result is None
        assert ",".join(CSV_COLUMNS) in capsys.readouterr().out

    def test_writes_timestamped_file(self):
        """
        Given an output path
        When writing CSV
        Then a timestamped file should be created
        """
        # Given
        with tempfile.TemporaryDirectory() as tmpdir:
            output_path = os.path.join(tmpdir, "history.csv")

            # When
            filename = write_csv([make_snapshot([SEND])], output_path)

            # Then
            assert filename.startswith(os.path.join(tmpdir, "history_"))
            with open(filename, encoding="utf-8") as f:
                content = f.read()
            assert "abc" in content
