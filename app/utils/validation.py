"""Validation utilities for addresses, hashes and chain ids."""

import re

from eth_utils import is_hex_address

from app.utils.exceptions import ValidationError

TX_HASH_PATTERN = re.compile(r"^0x[0-9a-fA-F]{64}$")


def is_valid_address(address: str | None) -> bool:
    """
    Check 0x-prefixed, 40 hex character address format.

    Checksum casing is not enforced; addresses are stored lower-case.
    """
    if not address or not isinstance(address, str):
        return False
    return address.startswith("0x") and is_hex_address(address)


def validate_contract_address(address: str | None) -> str:
    """
    Validate and normalize a contract address.

    Args:
        address: Address to validate

    Returns:
        Lower-cased address

    Raises:
        ValidationError: If address is malformed
    """
    if not is_valid_address(address):
        raise ValidationError(f"Invalid contract address: {address!r}")
    return address.lower()


def validate_chain_id(chain_id: int | str | None) -> int:
    """
    Validate a chain id.

    Args:
        chain_id: Chain id as int or decimal string

    Returns:
        Chain id as int

    Raises:
        ValidationError: If chain id is not a positive integer
    """
    try:
        value = int(chain_id)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid chain id: {chain_id!r}") from exc
    if isinstance(chain_id, bool) or value <= 0:
        raise ValidationError(f"Invalid chain id: {chain_id!r}")
    return value


def validate_transaction_hash(tx_hash: str) -> bool:
    """
    Validate transaction hash format.

    Args:
        tx_hash: Transaction hash to validate

    Returns:
        True if hash is 0x followed by 64 hex characters
    """
    return bool(tx_hash and TX_HASH_PATTERN.match(tx_hash))
