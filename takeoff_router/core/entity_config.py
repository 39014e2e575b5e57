# entity_config.py
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import yaml

from .settings import settings

logger = logging.getLogger(__name__)


@dataclass
class ComponentCategoryConfig:
    """A family of component names matched by regex patterns"""

    name: str
    patterns: List[str]
    compiled: List[re.Pattern] = field(default_factory=list, repr=False)

    def __post_init__(self):
        self.compiled = [re.compile(p, re.IGNORECASE) for p in self.patterns]

    def matches(self, text: str) -> bool:
        return any(pattern.search(text) for pattern in self.compiled)


@dataclass
class ComponentTypeConfig:
    """A specific component type recognised in questions (gate valve, tee...)"""

    name: str
    pattern: str
    compiled: Optional[re.Pattern] = field(default=None, repr=False)

    def __post_init__(self):
        self.compiled = re.compile(self.pattern, re.IGNORECASE)


@dataclass
class UtilityCodeConfig:
    """Crossing label abbreviation and its full utility name"""

    code: str
    full_name: str
    category: str = "utility"


@dataclass
class SystemConfig:
    """Alignment family such as WATER LINE with its written variants"""

    name: str
    aliases: List[str]
    abbreviation: Optional[str] = None


_DEFAULT_CATEGORIES = [
    ("hydrant", [r"hydrant", r"\bfh\b"]),
    ("box", [r"valve\s*box", r"meter\s*box", r"\bbox(?:es)?\b"]),
    ("valve", [r"valve", r"\bprv\b", r"\barv\b", r"blow.?off"]),
    ("fitting", [r"fitting", r"\btees?\b", r"elbow", r"\bbends?\b", r"reducer", r"\bcaps?\b", r"\bplugs?\b"]),
    ("manhole", [r"manhole", r"\bmh\b", r"junction\s*structure"]),
    ("cleanout", [r"clean\s*out", r"\bc\.o\.?(?=\s|$)"]),
    ("meter", [r"\bmeters?\b", r"metering"]),
    ("coupling", [r"coupling", r"adaptor", r"adapter", r"tapping\s*sleeve"]),
    ("pipe", [r"\bpipe", r"\bmain\b", r"lateral", r"\bservice\b", r"\bline\b"]),
]

_DEFAULT_COMPONENT_TYPES = [
    ("gate valve", r"gate\s*valve"),
    ("butterfly valve", r"butterfly\s*valve"),
    ("check valve", r"check\s*valve"),
    ("air release valve", r"air\s*release\s*valve|\barv\b(?!\s*tee)"),
    ("blow-off", r"blow.?off"),
    ("fire hydrant", r"fire\s*hydrant|\bfh\b"),
    ("valve box", r"valve\s*box"),
    ("manhole", r"manhole|\bmh\b|m\.h\."),
    ("catch basin", r"catch\s*basin|\bcb\b|storm\s*inlet|drain\s*inlet"),
    ("arv tee", r"arv\s*tee|air\s*release\s*(?:valve\s*)?tee"),
    ("tee", r"\btees?\b"),
    ("90 bend", r"90\s*[°º]?\s*bend"),
    ("45 bend", r"45\s*[°º]?\s*bend"),
    ("22.5 bend", r"22\.?5\s*[°º]?\s*bend"),
    ("11.25 bend", r"11\.?25\s*[°º]?\s*bend"),
    ("bend", r"\bbends?\b|elbow"),
    ("tapping sleeve", r"tapp?(?:ing)?\s*sleeve|hot\s*tap"),
    ("coupling", r"coupling"),
    ("reducer", r"reducer"),
    ("cap", r"\bcaps?\b"),
    ("plug", r"\bplugs?\b"),
    ("cleanout", r"clean\s*out"),
    ("meter", r"\bmeters?\b"),
    ("valve", r"valve"),
    ("hydrant", r"hydrant"),
]

_DEFAULT_UTILITY_CODES = [
    ("ELEC", "Electrical", "electric"),
    ("E", "Electrical", "electric"),
    ("OHE", "Overhead Electrical", "electric"),
    ("UGE", "Underground Electrical", "electric"),
    ("SS", "Sanitary Sewer", "sewer"),
    ("SD", "Storm Drain", "storm"),
    ("STM", "Storm Drain", "storm"),
    ("W", "Water", "water"),
    ("WL", "Water Line", "water"),
    ("GAS", "Gas", "gas"),
    ("G", "Gas", "gas"),
    ("TEL", "Telephone", "telecom"),
    ("T", "Telephone", "telecom"),
    ("FO", "Fiber Optic", "telecom"),
    ("CATV", "Cable TV", "telecom"),
    ("IRR", "Irrigation", "water"),
    ("RW", "Reclaimed Water", "water"),
    ("FM", "Force Main", "sewer"),
]

_DEFAULT_SYSTEMS = [
    ("WATER LINE", ["water line", "waterline", "water main"], "WL"),
    ("STORM DRAIN", ["storm drain", "storm line", "stormdrain"], "SD"),
    ("SEWER", ["sewer", "sanitary sewer", "sewer line"], "SS"),
    ("FIRE LINE", ["fire line", "fire service", "fireline"], "FL"),
]

STATUS_PREFIXES = {"EXIST": "existing", "EX": "existing", "PROP": "proposed", "PR": "proposed"}


class EntityConfigLoader:
    """Loads component, utility and system vocabularies from YAML files"""

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path or settings.ENTITIES_CONFIG_PATH
        self.categories: List[ComponentCategoryConfig] = []
        self.component_types: List[ComponentTypeConfig] = []
        self.utility_codes: Dict[str, UtilityCodeConfig] = {}
        self.systems: List[SystemConfig] = []

        self._load_config()

    def _load_config(self) -> None:
        """Load configuration from YAML file"""
        self._load_defaults()

        if not os.path.exists(self.config_path):
            logger.debug(
                f"Entity config file not found at {self.config_path}, using defaults"
            )
            return

        try:
            with open(self.config_path, encoding="utf-8") as file:
                config = yaml.safe_load(file) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Error loading entity config: {str(e)}")
            return

        # Categories listed in the file replace the defaults wholesale
        if config.get("component_categories"):
            self.categories = [
                ComponentCategoryConfig(name=c["name"], patterns=c.get("patterns", []))
                for c in config["component_categories"]
            ]

        if config.get("component_types"):
            self.component_types = [
                ComponentTypeConfig(name=t["name"], pattern=t["pattern"])
                for t in config["component_types"]
            ]

        # Utility codes and systems extend the defaults
        for entry in config.get("utility_codes", []):
            code = str(entry["code"]).upper()
            self.utility_codes[code] = UtilityCodeConfig(
                code=code,
                full_name=entry["full_name"],
                category=entry.get("category", "utility"),
            )

        for entry in config.get("systems", []):
            self.systems.append(
                SystemConfig(
                    name=str(entry["name"]).upper(),
                    aliases=[a.lower() for a in entry.get("aliases", [])],
                    abbreviation=entry.get("abbreviation"),
                )
            )

        logger.info(
            f"Loaded entity config: {len(self.categories)} categories, "
            f"{len(self.utility_codes)} utility codes, {len(self.systems)} systems"
        )

    def _load_defaults(self) -> None:
        """Load the built-in vocabularies"""
        self.categories = [
            ComponentCategoryConfig(name, patterns) for name, patterns in _DEFAULT_CATEGORIES
        ]
        self.component_types = [
            ComponentTypeConfig(name, pattern) for name, pattern in _DEFAULT_COMPONENT_TYPES
        ]
        self.utility_codes = {
            code: UtilityCodeConfig(code, full_name, category)
            for code, full_name, category in _DEFAULT_UTILITY_CODES
        }
        self.systems = [
            SystemConfig(name, aliases, abbreviation)
            for name, aliases, abbreviation in _DEFAULT_SYSTEMS
        ]

    def get_category(self, name: str) -> Optional[ComponentCategoryConfig]:
        for category in self.categories:
            if category.name == name.lower():
                return category
        return None

    def detect_category(self, text: str) -> Optional[str]:
        """First component category whose pattern appears in the text"""
        for category in self.categories:
            if category.matches(text):
                return category.name
        return None

    def category_for_type(self, component_type: str) -> Optional[str]:
        """Category a specific component type belongs to (gate valve -> valve)"""
        return self.detect_category(component_type)

    def lookup_utility_code(self, code: str) -> Optional[UtilityCodeConfig]:
        return self.utility_codes.get(code.strip().upper())

    def find_system(self, text: str) -> Optional[SystemConfig]:
        lowered = text.lower()
        for system in self.systems:
            if system.name.lower() in lowered or any(a in lowered for a in system.aliases):
                return system
        return None

    def reload_config(self) -> None:
        """Reload configuration from file"""
        logger.info("Reloading entity configuration...")
        self._load_config()


# Read-only vocabulary shared by extractors; replaced only via initialize_entity_config
entity_config: Optional[EntityConfigLoader] = None


def get_entity_config() -> EntityConfigLoader:
    """Get the shared entity configuration instance"""
    global entity_config
    if entity_config is None:
        entity_config = EntityConfigLoader()
    return entity_config


def initialize_entity_config(config_path: Optional[str] = None) -> EntityConfigLoader:
    """Initialize the shared entity configuration"""
    global entity_config
    entity_config = EntityConfigLoader(config_path)
    return entity_config
