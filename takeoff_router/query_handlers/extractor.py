# extractor.py
"""Entity extraction functionality for query routing.

Every extractor returns ``None`` when nothing is found; none of them raise.
Pattern lists are ordered most specific first.
"""

import re
from typing import List, Optional

from takeoff_router.core import UtilityCrossing
from takeoff_router.core.normalize import singularize
from takeoff_router.core.entity_config import STATUS_PREFIXES, EntityConfigLoader, get_entity_config
from .types import EntityExtraction

_SYSTEM_PATTERNS = [
    # Water Line A, Storm Drain 'B', Sewer Line 2
    re.compile(
        r"\b(water\s*line|waterline|storm\s*drain|stormdrain|sewer\s*line|"
        r"sanitary\s*sewer|fire\s*line)\s+['\"]?([A-Z](?:-?\d+)?|\d+)['\"]?(?![\w-])",
        re.IGNORECASE,
    ),
    # WL-A, SD-1
    re.compile(r"\b(WL|SD|SS|FL|FP)-([A-Z\d]+)\b", re.IGNORECASE),
    # Line A (designator must be written in capitals)
    re.compile(r"\b((?i:line|drain))\s+['\"]?([A-Z])['\"]?(?![\w-])"),
]

_SIZE_PATTERNS = [
    re.compile(r"(?<![\w+.-])(\d+(?:\.\d+)?)\s*-?\s*inch", re.IGNORECASE),
    re.compile(r"(?<![\w+.-])(\d+(?:\.\d+)?)\s*-?\s*in\b", re.IGNORECASE),
    re.compile(r"(?<![\w+.-])(\d+(?:\.\d+)?)\s*(?:\"|”|'')"),
]

_STATION_PATTERNS = [
    re.compile(r"\b(?:station|sta)\.?\s+(\d{1,3}\s*\+\s*\d{2}(?:\.\d{1,2})?)", re.IGNORECASE),
    re.compile(r"\b(?:station|sta)\.?\s+(\d+(?:\.\d+)?)", re.IGNORECASE),
    re.compile(r"\b(?:at|near|around)\s+(\d{1,3}\+\d{2}(?:\.\d{1,2})?)", re.IGNORECASE),
]

_SHEET_PATTERNS = [
    re.compile(r"\b(?:sheet|drawing|dwg|page)\s+(?:no\.?\s*|#\s*)?([A-Z]{0,3}-?\d[\w.-]*)", re.IGNORECASE),
    re.compile(r"\b([A-Z]{1,2}-?\d{2,3}(?:\.\d+)?)\b"),
]

_DETAIL_PATTERN = re.compile(r"\bdetail\s+(?:no\.?\s*|#\s*)?([A-Z]?\d+[A-Z]?(?:/[\w-]+)?)", re.IGNORECASE)

_DESIGNATOR_SUFFIX = re.compile(r"^(.*?)\s+['\"]?([A-Z](?:-?\d+)?|\d+)['\"]?$", re.IGNORECASE)

# Patterns whose first group names the item being counted or measured
_ITEM_PATTERNS = [
    re.compile(r"how\s+many\s+(.+?)(?:\?|$)", re.IGNORECASE),
    re.compile(r"(?:give|provide)\s+(?:me\s+)?a\s+takeoff\s+(?:of|for)?\s*(.+?)(?:\?|$)", re.IGNORECASE),
    re.compile(r"\b(?:count\s+all|list\s+all|enumerate)\s+(.+?)(?:\?|$)", re.IGNORECASE),
    re.compile(r"(?:total|entire|complete)\s+(?:length|amount|quantity|footage|number)\s+(?:of|for)\s+(.+?)(?:\?|$)", re.IGNORECASE),
    re.compile(r"how\s+long\s+(?:is|are)?\s*(?:the)?\s*(.+?)(?:\?|$)", re.IGNORECASE),
    re.compile(r"(?:what|what's)\s+(?:is)?\s*(?:the)?\s*length\s+(?:of|for)\s+(.+?)(?:\?|$)", re.IGNORECASE),
    re.compile(r"(?:linear\s+feet|lf|footage)\s+(?:of|for|in)\s+(.+?)(?:\?|$)", re.IGNORECASE),
    re.compile(r"\b(?:count|total|quantity|takeoff)\b\s+(?:of\s+)?(.+?)(?:\?|$)", re.IGNORECASE),
    re.compile(r"(?:length|footage|amount|sum)\s+of\s+(.+?)(?:\?|$)", re.IGNORECASE),
]

_LOCATION_ITEM_PATTERNS = [
    re.compile(r"(?:where|location|position)\s+(?:is|are|of)\s+(?:the\s+)?(.+?)(?:\?|$)", re.IGNORECASE),
    re.compile(r"(?:show|find)\s+(?:me\s+)?(?:the\s+)?(?:location|position)\s+of\s+(?:the\s+)?(.+?)(?:\?|$)", re.IGNORECASE),
]

_TRAILING_PHRASES = re.compile(
    r"\s+(?:are\s+there|is\s+there|do\s+we\s+have|do\s+i\s+need|in\s+the\s+project|"
    r"on\s+the\s+plans?|in\s+total|(?:on|along|for|in)\s+(?:the\s+)?(?:project|plans?|drawings?))$",
    re.IGNORECASE,
)
_LEADING_WORDS = re.compile(r"^(?:(?:the|all|of|for|total|number|length|footage|amount|quantity)\s+)+", re.IGNORECASE)
_TRAILING_STOPWORD = re.compile(r"\s+\b(?:the|a|an|is|are|in|of|for|at|on|to|there)\b$", re.IGNORECASE)

_MATERIALS = [
    "ductile iron", "pvc", "hdpe", "concrete", "steel", "copper", "aggregate",
    "asphalt", "class 2", "class 3", "bedding", "backfill",
]

_CROSSING_PRIMARY = ["cross", "intersect", "conflict", "interfere"]
_CROSSING_QUESTIONS = [
    "what utilities cross",
    "which utilities cross",
    "utility crossing",
    "utilities crossing",
    "crossing utilities",
    "existing utilities",
]
_CROSSING_UTILITY_TYPES = [
    "utilit", "elec", "sewer", "storm", "gas", "tel", "fiber", "water",
    "line", "ss", "stm", "fo",
]

_CROSSING_LABEL = re.compile(
    r"^\s*(?:(EXIST(?:ING)?|EX|PROP(?:OSED)?|PR|NEW)\s+)?"
    r"(?:(\d+)\s*-?\s*(?:IN|INCH|\")\s+)?"
    r"([A-Z]{1,4})\b"
    r"(?:.*?\b(?:INV\s+)?(?:ELEV\s*=?\s*)?(\d+(?:\.\d+)?)\s*±?)?",
    re.IGNORECASE,
)


def _canonical_system(family: str, designator: str) -> str:
    family = re.sub(r"\s+", " ", family.strip().lower())
    family = family.replace("waterline", "water line").replace("stormdrain", "storm drain")
    return f"{family.title()} {designator.upper()}"


def clean_item_name(raw: Optional[str]) -> Optional[str]:
    """Trim question filler around an item name ("the gate valves are there" -> "gate valves")"""
    if not raw:
        return None
    name = raw.strip().strip("?.!,")
    previous = None
    while previous != name:
        previous = name
        name = _TRAILING_PHRASES.sub("", name)
        name = _TRAILING_STOPWORD.sub("", name)
        name = _LEADING_WORDS.sub("", name)
        name = name.strip().strip("?.!,")
    return name or None


def normalize_plural(name: Optional[str]) -> Optional[str]:
    """Singular form of every word in an item name"""
    if not name:
        return None
    return " ".join(singularize(word) for word in name.split())


class EntityExtractor:
    """Extracts entities from questions using configurable patterns"""

    def __init__(self, entity_config: Optional[EntityConfigLoader] = None):
        self.entity_config = entity_config or get_entity_config()

    def extract_entities(self, query: str) -> EntityExtraction:
        """Extract every supported entity from a question"""
        return EntityExtraction(
            system_name=self.extract_system_name(query),
            item_name=self.extract_item_name(query),
            size=self.extract_size(query),
            station=self.extract_station(query),
            sheet_number=self.extract_sheet_number(query),
            component_type=self.extract_component_type(query),
            detail_number=self.extract_detail_number(query),
            material=self.extract_material(query),
        )

    def extract_system_name(self, query: str) -> Optional[str]:
        """Named alignment such as "Water Line A", or a bare family like "WATER LINE"."""
        if not query:
            return None

        match = _SYSTEM_PATTERNS[0].search(query)
        if match:
            return _canonical_system(match.group(1), match.group(2))

        match = _SYSTEM_PATTERNS[1].search(query)
        if match:
            return f"{match.group(1).upper()}-{match.group(2).upper()}"

        match = _SYSTEM_PATTERNS[2].search(query)
        if match:
            return _canonical_system(match.group(1), match.group(2))

        system = self.entity_config.find_system(query)
        return system.name if system else None

    def extract_item_name(self, query: str) -> Optional[str]:
        """Item being counted or measured, with question filler removed"""
        if not query:
            return None
        for pattern in _ITEM_PATTERNS:
            match = pattern.search(query)
            if match and match.group(1):
                name = clean_item_name(match.group(1))
                if name:
                    return name

        quoted = re.search(r"\"([^\"]+)\"|'([^']{3,})'", query)
        if quoted:
            return (quoted.group(1) or quoted.group(2)).strip()
        return None

    def extract_location_item(self, query: str) -> Optional[str]:
        if not query:
            return None
        for pattern in _LOCATION_ITEM_PATTERNS:
            match = pattern.search(query)
            if match and match.group(1) and not match.group(1)[0].isdigit():
                return clean_item_name(match.group(1))
        return None

    def extract_size(self, query: str) -> Optional[str]:
        """Pipe size normalized to the ``12-IN`` form"""
        if not query:
            return None
        for pattern in _SIZE_PATTERNS:
            match = pattern.search(query)
            if match:
                number = match.group(1)
                if "." in number:
                    number = number.rstrip("0").rstrip(".")
                return f"{number}-IN"
        return None

    def extract_station(self, query: str) -> Optional[str]:
        if not query:
            return None
        for pattern in _STATION_PATTERNS:
            match = pattern.search(query)
            if match:
                return re.sub(r"\s+", "", match.group(1)).rstrip(".")
        return None

    def extract_sheet_number(self, query: str) -> Optional[str]:
        if not query:
            return None
        for pattern in _SHEET_PATTERNS:
            match = pattern.search(query)
            if match:
                return match.group(1).upper().rstrip(".")
        return None

    def extract_component_type(self, query: str) -> Optional[str]:
        """Most specific component type named in the question"""
        if not query:
            return None
        for component_type in self.entity_config.component_types:
            if component_type.compiled.search(query):
                return component_type.name
        return None

    def extract_component_category(self, query: str) -> Optional[str]:
        if not query:
            return None
        return self.entity_config.detect_category(query)

    def extract_detail_number(self, query: str) -> Optional[str]:
        if not query:
            return None
        match = _DETAIL_PATTERN.search(query)
        return match.group(1).upper() if match else None

    def extract_material(self, query: str) -> Optional[str]:
        if not query:
            return None
        lowered = query.lower()
        for material in _MATERIALS:
            if re.search(rf"\b{re.escape(material)}\b", lowered):
                return material
        return None

    def contains_crossing_keywords(self, text: str) -> bool:
        """Crossing wording plus a utility mention, or an explicit crossing question"""
        if not text:
            return False
        lowered = text.lower()
        if any(question in lowered for question in _CROSSING_QUESTIONS):
            return True
        has_primary = any(keyword in lowered for keyword in _CROSSING_PRIMARY)
        has_utility = any(
            re.search(rf"\b{utility}", lowered) for utility in _CROSSING_UTILITY_TYPES
        )
        return has_primary and has_utility

    def system_name_variations(self, system_name: str) -> List[str]:
        """Ways a system name is written on drawings (Water Line A, WATERLINE A, WL-A)"""
        if not system_name:
            return []
        variations = [system_name, system_name.upper()]

        # A bare family such as "Water Line" has no designator to split off
        match = _DESIGNATOR_SUFFIX.match(system_name.strip())
        if not match:
            variations.append(system_name.upper().replace(" ", ""))
        else:
            family, designator = match.group(1), match.group(2).upper()
            family_upper = family.upper()
            variations.append(f"{family_upper.replace(' ', '')} {designator}")
            variations.append(f"{family_upper} '{designator}'")
            system = self.entity_config.find_system(family)
            if system and system.abbreviation:
                variations.append(f"{system.abbreviation}-{designator}")
                variations.append(f"{system.abbreviation} {designator}")

        seen = set()
        unique = []
        for variation in variations:
            if variation.upper() not in seen:
                seen.add(variation.upper())
                unique.append(variation)
        return unique

    def parse_crossing_label(self, label: str, **extra) -> Optional[UtilityCrossing]:
        """Parse a profile-view label such as ``EXIST 12-IN W`` or ``SS INV ELEV 28.5``"""
        if not label:
            return None
        match = _CROSSING_LABEL.match(label.strip())
        if not match:
            return None
        code_config = self.entity_config.lookup_utility_code(match.group(3))
        if code_config is None:
            return None

        prefix = (match.group(1) or "").upper()
        status = STATUS_PREFIXES.get(prefix[:5]) or STATUS_PREFIXES.get(prefix[:4]) or STATUS_PREFIXES.get(prefix[:2])
        if prefix == "NEW":
            status = "proposed"
        elevation = match.group(4)
        return UtilityCrossing(
            crossing_utility_code=code_config.code,
            full_name=code_config.full_name,
            elevation=float(elevation) if elevation else None,
            is_existing=status == "existing",
            is_proposed=status == "proposed",
            size=f"{match.group(2)}-IN" if match.group(2) else None,
            **extra,
        )
