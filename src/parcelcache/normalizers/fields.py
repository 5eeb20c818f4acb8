"""
Field Accessors

Candidate-path lookups and strict coercion helpers shared by the parcel
and snapshot normalizers. Upstream records spell the same field several
ways, so each logical field is read from an ordered list of dotted paths
and the first usable value wins.
"""
import math
from typing import Any, Iterable, List, Optional


def get_path(obj: Any, path: str) -> Any:
    """
    Walk a dotted path through nested dicts.

    Returns None as soon as a segment is missing or a non-dict is reached.
    """
    value = obj
    for segment in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(segment)
        if value is None:
            return None
    return value


def first_non_null(obj: Any, *paths: str) -> Any:
    """Value of the first path that resolves to something other than None."""
    for path in paths:
        value = get_path(obj, path)
        if value is not None:
            return value
    return None


def to_number(value: Any) -> Optional[float]:
    """
    Strict finite-number coercion.

    Numeric strings are parsed; booleans, blanks, containers, NaN and
    infinities become None rather than zero.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, str):
        text = value.strip().replace(",", "")
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
        return number if math.isfinite(number) else None
    return None


def to_text(value: Any) -> Optional[str]:
    """Scalar to string; None, blanks and containers become None."""
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value)
    return text if text.strip() else None


def first_number(obj: Any, *paths: str) -> Optional[float]:
    """First path whose value coerces to a finite number."""
    for path in paths:
        number = to_number(get_path(obj, path))
        if number is not None:
            return number
    return None


def first_text(obj: Any, *paths: str) -> Optional[str]:
    """First path whose value is a non-blank scalar."""
    for path in paths:
        text = to_text(get_path(obj, path))
        if text is not None:
            return text
    return None


def number_or_text(obj: Any, *paths: str) -> Any:
    """Number when the first populated path is numeric, its text otherwise."""
    number = first_number(obj, *paths)
    if number is not None:
        return number
    return first_text(obj, *paths)


def first_dict(obj: Any, *paths: str) -> dict:
    """First path that resolves to a non-empty dict, or an empty dict."""
    for path in paths:
        value = get_path(obj, path)
        if isinstance(value, dict) and value:
            return value
    return {}


def as_list(value: Any) -> List[Any]:
    """Wrap a scalar in a list; None becomes an empty list."""
    if value is None:
        return []
    if isinstance(value, list):
        return [item for item in value if item is not None]
    return [value]


def dicts(values: Iterable[Any]) -> List[dict]:
    return [value for value in values if isinstance(value, dict)]


def all_empty(*values: Any) -> bool:
    """True when every value is None or an empty container."""
    for value in values:
        if value is None:
            continue
        if isinstance(value, (list, dict, str)) and not value:
            continue
        return False
    return True
