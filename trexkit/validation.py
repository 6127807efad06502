"""
Input validators.

All operator input (addresses, salts, decimals, key material) passes through
these helpers at the boundary where it is first needed, so that malformed input
fails before any transaction is submitted.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

import re
from typing import Any, Iterable, List, Optional

from eth_utils import is_checksum_address, to_checksum_address

from trexkit.errors import InputValidationError

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

MAX_DECIMALS = 18

PRIVATE_KEY_PATTERN = re.compile(r"^(0x)?[0-9a-fA-F]{64}$")
INTEGER_PATTERN = re.compile(r"^-?\d+$")
ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")


def is_zero_address(value: Optional[str]) -> bool:
    """True for empty values, ``0x`` and the all-zero address."""
    if not value or value == "0x":
        return True
    return value.lower() == ZERO_ADDRESS


def is_valid_address(value: str) -> bool:
    """
    20-byte hex address. Single-case input carries no checksum; mixed case
    must be the EIP-55 checksum.
    """
    if not ADDRESS_PATTERN.match(value):
        return False
    body = value[2:]
    if body == body.lower() or body == body.upper():
        return True
    return is_checksum_address(value)


def require_address(label: str, value: Any) -> str:
    """
    Validate an address and return its checksummed form.

    Accepts lower-case, upper-case and correctly checksummed hex. Mixed case
    with a wrong checksum, wrong length, non-hex and the zero address are
    rejected.
    """
    if isinstance(value, bytes) and len(value) == 20:
        value = "0x" + value.hex()
    if not isinstance(value, str):
        raise InputValidationError(label, "must be a valid Ethereum address", value)
    candidate = value.strip()
    if not is_valid_address(candidate):
        raise InputValidationError(label, "must be a valid Ethereum address", value)
    if is_zero_address(candidate):
        raise InputValidationError(label, "must not be the zero address", value)
    return to_checksum_address(candidate)


def optional_address(label: str, value: Any) -> Optional[str]:
    """Like require_address but blank input yields None."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return require_address(label, value)


def require_salt(value: Any) -> str:
    """Deployment salts are non-empty after trimming."""
    salt = str(value or "").strip()
    if not salt:
        raise InputValidationError("salt", "deployment salt cannot be empty", value)
    return salt


def parse_decimals(raw: Any, fallback: int = 0) -> int:
    """Parse token decimals, which must be an integer between 0 and 18."""
    message = f"token decimals must be an integer between 0 and {MAX_DECIMALS}"
    source = fallback if raw is None or (isinstance(raw, str) and not raw.strip()) else raw
    if isinstance(source, bool):
        raise InputValidationError("decimals", message, raw)
    if isinstance(source, int):
        parsed = source
    elif isinstance(source, str) and INTEGER_PATTERN.match(source.strip()):
        parsed = int(source.strip())
    else:
        raise InputValidationError("decimals", message, raw)
    if parsed < 0 or parsed > MAX_DECIMALS:
        raise InputValidationError("decimals", message, raw)
    return parsed


def parse_amount(label: str, raw: Any, fallback: int = 0) -> int:
    """Parse a non-negative integer token amount."""
    source = fallback if raw is None or (isinstance(raw, str) and not raw.strip()) else raw
    if isinstance(source, bool) or not (
        isinstance(source, int) or (isinstance(source, str) and INTEGER_PATTERN.match(source.strip()))
    ):
        raise InputValidationError(label, "must be a non-negative integer", raw)
    amount = int(source)
    if amount < 0:
        raise InputValidationError(label, "must be a non-negative integer", raw)
    return amount


def require_private_key(label: str, value: Any) -> str:
    """Validate hex private key material; returns it 0x-prefixed."""
    if not isinstance(value, str) or not PRIVATE_KEY_PATTERN.match(value.strip()):
        # never echo key material back
        raise InputValidationError(label, "must be a 32-byte hex private key")
    key = value.strip()
    return key if key.startswith("0x") else "0x" + key


def require_text(label: str, value: Any, fallback: str) -> str:
    """Trimmed text with a fallback for blank input."""
    text = str(value or "").strip()
    return text or fallback


def unique_addresses(addresses: Iterable[str]) -> List[str]:
    """Checksummed addresses with duplicates removed, first occurrence kept."""
    seen: List[str] = []
    for address in addresses:
        normalized = to_checksum_address(address)
        if normalized not in seen:
            seen.append(normalized)
    return seen
