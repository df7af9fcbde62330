"""
Input validators shared by schemas
"""
import re

PIN_PATTERN = re.compile(r"^\d{4}$")


def validate_pin(pin: str) -> bool:
    """A PIN is exactly four digits."""
    return bool(pin) and PIN_PATTERN.match(pin) is not None


def normalize_sku(sku: str) -> str:
    """
    SKUs are matched across outlets, so surrounding whitespace and
    letter case must not make two codes differ.
    """
    return re.sub(r"\s+", "", sku or "").upper()
