"""
Address Text Normalization

Aggressive folding used for fuzzy address matching and cache keys.
Never use the output for display.
"""
import re
from typing import Any, Optional

_NON_ALPHANUMERIC = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")


def normalize_address_text(value: Any) -> str:
    """
    Fold an address for comparison.

    Lower-cases, turns every character that is not a letter, digit or
    whitespace into a space, collapses runs of whitespace and trims.

    Examples:
        >>> normalize_address_text("  12 Main St., Apt #4 ")
        '12 main st apt 4'
        >>> normalize_address_text(None)
        ''
    """
    if value is None:
        return ""
    text = _NON_ALPHANUMERIC.sub(" ", str(value).lower())
    return _WHITESPACE.sub(" ", text).strip()


def address_contains(candidate: Optional[str], target: str) -> bool:
    """Loose match: the folded candidate contains the folded target."""
    if not target:
        return False
    return normalize_address_text(target) in normalize_address_text(candidate)
