"""
Literal keyword matching for chat replies.

Replies are compared after trimming, lowercasing and removing accents so
that "Sí", "si" and "SI" all match.
"""

import unicodedata
from datetime import date, timedelta
from typing import Optional

YES_WORDS = frozenset({"si"})
NO_WORDS = frozenset({"no"})

RELATIVE_DAYS = {
    "hoy": 0,
    "manana": 1,
    "pasado manana": 2,
}


def strip_accents(value: str) -> str:
    """Remove combining accents ("mañana" -> "manana")."""
    decomposed = unicodedata.normalize("NFKD", value)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize(value: str) -> str:
    """Trim, lowercase, drop accents and collapse inner whitespace."""
    return " ".join(strip_accents(value).lower().split())


def is_yes(value: str) -> bool:
    return normalize(value) in YES_WORDS


def is_no(value: str) -> bool:
    return normalize(value) in NO_WORDS


def contains_any(value: str, words: tuple[str, ...]) -> bool:
    """Substring match of any keyword in the normalized reply."""
    text = normalize(value)
    return any(word in text for word in words)


def parse_option(value: str, upper: int) -> Optional[int]:
    """Parse a 1-based menu choice, None when not an integer in [1, upper]."""
    text = value.strip()
    if not text.isdecimal():
        return None
    option = int(text)
    if 1 <= option <= upper:
        return option
    return None


def resolve_relative_date(value: str, today: date) -> Optional[date]:
    """Map "hoy" / "mañana" / "pasado mañana" to a calendar date."""
    offset = RELATIVE_DAYS.get(normalize(value))
    if offset is None:
        return None
    return today + timedelta(days=offset)


def is_full_name(value: str) -> bool:
    """A full name has at least two whitespace-separated words."""
    return len(value.split()) >= 2
