# normalize.py
"""Text normalization shared by extractors, reconciliation and storage."""

import re
from typing import Optional

_SIZE_WITH_UNIT = re.compile(
    r"(\d+(?:\.\d+)?)\s*(?:-\s*)?(?:inch(?:es)?\b|in\b\.?|\"|''|”)",
    re.IGNORECASE,
)
_BARE_SIZE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*$")
_LEADING_INT = re.compile(r"^\s*(\d+)")

_IRREGULAR_PLURALS = {
    "boxes": "box",
    "crosses": "cross",
    "couplings": "coupling",
    "assemblies": "assembly",
    "tees": "tee",
}


def normalize_size(size: Optional[str]) -> Optional[str]:
    """Canonical pipe size, e.g. ``12 inch`` / ``12-in`` / ``12"`` -> ``12-IN``."""
    if size is None:
        return None
    text = str(size).strip()
    if not text:
        return None

    match = _SIZE_WITH_UNIT.search(text) or _BARE_SIZE.match(text)
    if match:
        number = match.group(1)
        if "." in number:
            number = number.rstrip("0").rstrip(".")
        return f"{number}-IN"
    return re.sub(r"\s+", "", text.upper())


def size_leading_integer(size: Optional[str]) -> Optional[int]:
    """Leading integer of a size string (``12-IN`` -> 12, ``12X8`` -> 12)."""
    if not size:
        return None
    match = _LEADING_INT.match(str(size))
    return int(match.group(1)) if match else None


def singularize(word: str) -> str:
    lowered = word.lower()
    if lowered in _IRREGULAR_PLURALS:
        return _IRREGULAR_PLURALS[lowered]
    if lowered.endswith("ies") and len(lowered) > 4:
        return lowered[:-3] + "y"
    if lowered.endswith(("sses", "xes", "ches", "shes")):
        return lowered[:-2]
    if lowered.endswith("s") and not lowered.endswith("ss") and len(lowered) > 3:
        return lowered[:-1]
    return lowered


def normalize_name(name: Optional[str]) -> str:
    """Lowercase, punctuation-free, singular form of an item name."""
    if not name:
        return ""
    words = re.sub(r"[^a-z0-9]+", " ", str(name).lower()).split()
    return " ".join(singularize(word) for word in words)


def normalize_utility_name(name: Optional[str]) -> str:
    """Comparable utility/alignment name (``Waterline 'A'`` -> ``water line a``)."""
    if not name:
        return ""
    text = str(name).lower()
    text = re.sub(r"['\"]", "", text)
    text = re.sub(r"\bwaterline\b", "water line", text)
    text = re.sub(r"\bstormdrain\b", "storm drain", text)
    text = re.sub(r"[^a-z0-9]+", " ", text)
    return " ".join(text.split())
