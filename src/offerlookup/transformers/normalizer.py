"""
Address Normalization

Canonicalizes raw address fields into the form used for dedup comparison.
All functions are best-effort: they never raise, and missing values
normalize to an empty string.
"""
import re
from typing import Any

_WHITESPACE = re.compile(r'\s+')
_NON_DIGIT = re.compile(r'\D')


def _as_text(value: Any) -> str:
    if value is None:
        return ''
    return str(value)


def collapse_whitespace(value: Any) -> str:
    """Trim and collapse runs of whitespace to a single space."""
    return _WHITESPACE.sub(' ', _as_text(value)).strip()


def normalize_address(address: Any) -> str:
    """
    Normalize a street address.

    Whitespace only. Case is preserved, so "Main St" and "main st"
    are different addresses.

    Args:
        address: Raw street address

    Returns:
        Normalized address
    """
    return collapse_whitespace(address)


def normalize_city(city: Any) -> str:
    """Normalize a city name (same rule as addresses)."""
    return collapse_whitespace(city)


def normalize_state(state: Any) -> str:
    """Trim and upper-case a state code."""
    return _as_text(state).strip().upper()


def normalize_zip(zip_code: Any) -> str:
    """
    Normalize a ZIP code to its first 5 digits.

    Non-digits are stripped first, so ZIP+4 values lose their extension
    ("12345-6789" -> "12345") and short values are returned as-is
    ("abc123-4" -> "1234").

    Args:
        zip_code: Raw ZIP code

    Returns:
        At most 5 digits
    """
    return _NON_DIGIT.sub('', _as_text(zip_code))[:5]
