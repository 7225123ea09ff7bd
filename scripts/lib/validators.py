"""
Bitcoin address format validation.

This is a format check only; it runs before any sync is attempted so that
malformed input never reaches the indexer.
"""

import re


LEGACY_ADDRESS_RE = re.compile(r"^[13][a-km-zA-HJ-NP-Z1-9]{25,34}$")  # P2PKH / P2SH
BECH32_ADDRESS_RE = re.compile(r"^bc1[a-zA-HJ-NP-Z0-9]{39,59}$")


class InvalidAddressError(ValueError):
    """Raised when user input is not a Bitcoin address."""

    pass


def is_valid_address(address: str) -> bool:
    """Return True if ``address`` looks like a legacy, P2SH or bech32 address."""
    if not address:
        return False
    return bool(LEGACY_ADDRESS_RE.match(address) or BECH32_ADDRESS_RE.match(address))


def validate_address(address: str) -> str:
    """
    Normalize and validate a user-supplied address.

    Args:
        address: Raw user input

    Returns:
        The address with surrounding whitespace removed

    Raises:
        InvalidAddressError: With a message suitable for display
    """
    cleaned = (address or "").strip()
    if not cleaned:
        raise InvalidAddressError("Address is required")
    if not is_valid_address(cleaned):
        raise InvalidAddressError("Invalid Bitcoin address format")
    return cleaned
