# stations.py
"""Station parsing, validation and comparison.

Stations are linear-distance markers along an alignment written as
``major+minor`` feet, e.g. ``12+34.56`` is 1234.56 ft from the origin.
Upstream text extraction frequently yields station-like strings that are
really offsets, road references or match-line labels; those are rejected
instead of being mis-parsed.
"""

import logging
import re
from typing import Optional

from .config import Config

logger = logging.getLogger(__name__)

STATION_PATTERN = re.compile(r"^(\d{1,3})\+(\d{2}(?:\.\d{1,2})?)$")

_PREFIX_PATTERN = re.compile(r"^(?:STATION|STA)\.?\s*", re.IGNORECASE)

# Markers that identify a string as something other than a plain station
_REJECT_PATTERNS = [
    re.compile(r"\b(?:RT|LT)\b", re.IGNORECASE),  # offset side
    re.compile(r"\d(?:RT|LT)\b", re.IGNORECASE),
    re.compile(r"[QO]\s*/\s*S", re.IGNORECASE),  # quarter / offset section
    re.compile(r"\bOFFSET\b", re.IGNORECASE),
    re.compile(r"\bDEFL", re.IGNORECASE),
    re.compile(r"-\d+-"),
    re.compile(r"\+\d{2}(?:\.\d+)?-\d"),  # 2+16-27
    re.compile(r"\bROAD\b", re.IGNORECASE),
    re.compile(r"\bMATCH\s*LINE\b", re.IGNORECASE),
]


def _rejection_reason(text: str) -> Optional[str]:
    for pattern in _REJECT_PATTERNS:
        if pattern.search(text):
            return pattern.pattern
    return None


def parse_station(station: Optional[str]) -> Optional[float]:
    """Parse a station string into feet.

    Returns ``None`` for anything that is not a plain station, including
    offsets (``2+16-27 RT``), road references and match-line text.
    """
    if station is None:
        return None
    text = str(station).strip()
    if not text:
        return None

    reason = _rejection_reason(text)
    if reason:
        logger.debug(f"Rejected station '{station}' (matched {reason})")
        return None

    text = _PREFIX_PATTERN.sub("", text)
    text = re.sub(r"\s+", "", text)

    match = STATION_PATTERN.match(text)
    if not match:
        return None

    major = int(match.group(1))
    minor = float(match.group(2))
    return round(major * 100 + minor, 2)


def is_valid_station(station: Optional[str]) -> bool:
    return parse_station(station) is not None


def format_station(value: float) -> str:
    """Format feet as a canonical station string (``24+93.06``)."""
    value = round(value, 2)
    major = int(value // 100)
    minor = round(value - major * 100, 2)
    if minor >= 100:
        major += 1
        minor = 0.0
    return f"{major}+{minor:05.2f}"


def normalize_station(station: Optional[str]) -> Optional[str]:
    """Canonical form of a station for comparison and dedup keys.

    ``"STA 024+93.1"`` and ``"24 + 93.10"`` normalize to the same value.
    Invalid stations normalize to ``None``.
    """
    value = parse_station(station)
    if value is None:
        return None
    return format_station(value)


def stations_approximately_equal(
    station_a: Optional[str],
    station_b: Optional[str],
    tolerance_ft: float = Config.STATION_TOLERANCE_FT,
) -> bool:
    """Whether two stations refer to the same point within a tolerance.

    Two missing stations are equal; one missing station never is. Stations
    that cannot be parsed only match on identical text.
    """
    blank_a = station_a is None or not str(station_a).strip()
    blank_b = station_b is None or not str(station_b).strip()
    if blank_a and blank_b:
        return True
    if blank_a or blank_b:
        return False

    value_a = parse_station(station_a)
    value_b = parse_station(station_b)
    if value_a is None or value_b is None:
        return str(station_a).strip().upper() == str(station_b).strip().upper()

    return abs(value_a - value_b) <= tolerance_ft


def station_distance(station_a: str, station_b: str) -> Optional[float]:
    """Signed distance in feet from ``station_a`` to ``station_b``."""
    value_a = parse_station(station_a)
    value_b = parse_station(station_b)
    if value_a is None or value_b is None:
        return None
    return round(value_b - value_a, 2)
