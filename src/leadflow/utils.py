"""Small parsing helpers shared by discovery and enrichment."""

import re
from typing import Any, Optional

EMAIL_REGEX = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")

_COUNT_RE = re.compile(r"^([0-9][0-9,]*(?:\.[0-9]+)?)\s*([kmb])?$", re.IGNORECASE)
_COUNT_SUFFIXES = {"k": 1_000, "m": 1_000_000, "b": 1_000_000_000}


def is_valid_email(email: Any) -> bool:
    """Check email address format.

    Args:
        email: Candidate value.

    Returns:
        True if ``email`` is a string that looks like an address.
    """
    if not email or not isinstance(email, str):
        return False
    return bool(EMAIL_REGEX.match(email.strip()))


def clean_email(email: Any) -> Optional[str]:
    """Return the lower-cased address when valid, else None."""
    if not is_valid_email(email):
        return None
    return email.strip().lower()


def parse_count(value: Any) -> Optional[int]:
    """Parse an audience count such as ``12,400``, ``"1.2k"`` or ``3.5M``.

    Returns:
        The count as an int, or None when the value is not a count.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value) if value >= 0 else None
    if isinstance(value, dict):
        return parse_count(value.get("value") or value.get("result"))
    if isinstance(value, list):
        return parse_count(value[0]) if value else None

    text = str(value).strip().replace(" ", "")
    text = re.sub(r"(followers|subscribers)$", "", text, flags=re.IGNORECASE)
    match = _COUNT_RE.match(text)
    if not match:
        return None
    number = float(match.group(1).replace(",", ""))
    suffix = (match.group(2) or "").lower()
    return int(number * _COUNT_SUFFIXES.get(suffix, 1))
