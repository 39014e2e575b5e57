# quantity_reconciler.py
"""Reconciliation of vision-extracted quantity records.

Raw records arrive from several sheets and several extraction passes. The
reconciler validates them, filters them to what a question asks for,
removes duplicates and rolls them up into counts, sums and lengths.
Records are never mutated; every result is a new aggregate.
"""

import logging
import re
from collections import Counter, OrderedDict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from takeoff_router.core import (
    Config,
    ExtractedComponent,
    LengthResult,
    TerminationPoint,
    TerminationType,
)
from takeoff_router.core.exceptions import ValidationRejected
from takeoff_router.core.normalize import (
    normalize_name,
    normalize_size,
    normalize_utility_name,
    size_leading_integer,
)
from takeoff_router.core.stations import parse_station, stations_approximately_equal
from takeoff_router.core.entity_config import EntityConfigLoader, get_entity_config

logger = logging.getLogger(__name__)

LENGTH_UNITS = {"LF", "FT", "L.F.", "FEET", "LINEAR FEET"}
COUNT_UNITS = {None, "", "EA", "EACH"}
UNKNOWN_SIZE = "Unknown"


@dataclass(frozen=True)
class ReconcileFilters:
    """What a question asks for"""

    component_type: Optional[str] = None
    size: Optional[str] = None
    utility: Optional[str] = None
    min_confidence: float = 0.0


@dataclass
class SizeGroup:
    size: str
    quantity: float
    avg_confidence: float
    items: List[ExtractedComponent] = field(default_factory=list)


@dataclass
class ReconciliationResult:
    """Counts per size with the component-level audit trail"""

    total_count: float
    by_size: Dict[str, float]
    items: List[ExtractedComponent]
    groups: List[SizeGroup] = field(default_factory=list)
    excluded: List[Tuple[ExtractedComponent, str]] = field(default_factory=list)
    duplicates_removed: int = 0

    @property
    def confidence(self) -> float:
        return _weighted_confidence(self.items)

    @property
    def sheet_numbers(self) -> List[str]:
        return _sheet_numbers(self.items)


@dataclass
class AggregationResult:
    """Summed quantities for total/sum questions"""

    total: float
    unit: Optional[str]
    item_count: int
    breakdown: List[str]
    summary_line: str
    confidence: float
    items: List[ExtractedComponent] = field(default_factory=list)
    index_sourced: bool = False

    @property
    def sheet_numbers(self) -> List[str]:
        return _sheet_numbers(self.items)


@dataclass
class MergeResult:
    """Outcome of merging new extractions against stored records"""

    to_insert: List[ExtractedComponent] = field(default_factory=list)
    replacements: List[Tuple[ExtractedComponent, ExtractedComponent]] = field(default_factory=list)
    skipped: List[ExtractedComponent] = field(default_factory=list)


@dataclass
class TerminationStatus:
    utility_name: str
    has_begin: bool
    has_end: bool

    @property
    def status(self) -> str:
        if self.has_begin and self.has_end:
            return "complete"
        if not self.has_begin:
            return "missing_begin"
        return "missing_end"

    @property
    def warning(self) -> Optional[str]:
        if self.status == "complete":
            return None
        found = "BEGIN" if self.has_begin else "no BEGIN"
        found_end = "END" if self.has_end else "no END"
        return (
            f"Found partial termination data for {self.utility_name} "
            f"({found}, {found_end}). Full length calculation not possible."
        )


@dataclass
class LengthResolution:
    """Length answer with the source it came from"""

    utility_name: str
    length_lf: Optional[float]
    method: str  # termination_points | structured_quantity | index_quantity | not_found
    confidence: float
    cautions: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    length_result: Optional[LengthResult] = None
    records: List[ExtractedComponent] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return self.length_lf is not None


def _weighted_confidence(items: List[ExtractedComponent]) -> float:
    weight = sum(item.quantity for item in items)
    if not items or weight <= 0:
        return 0.0
    return round(sum(item.confidence * item.quantity for item in items) / weight, 3)


def _sheet_numbers(items: Iterable[ExtractedComponent]) -> List[str]:
    seen = OrderedDict()
    for item in items:
        if item.sheet_number:
            seen[item.sheet_number] = True
    return list(seen)


def _format_quantity(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return f"{value:,.2f}"


class QuantityReconciler:
    """Validates, filters, deduplicates and aggregates extracted quantities"""

    def __init__(self, entity_config: Optional[EntityConfigLoader] = None):
        self.entity_config = entity_config or get_entity_config()

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_component(self, component: ExtractedComponent) -> ExtractedComponent:
        """Structural and range checks on a vision-extracted record"""
        if not component.name or not component.name.strip():
            raise ValidationRejected("Component has no name", component)
        if component.station and parse_station(component.station) is None:
            raise ValidationRejected(f"Invalid station '{component.station}'", component)
        if not 0.0 <= component.confidence <= 1.0:
            raise ValidationRejected(f"Confidence {component.confidence} out of range", component)
        if component.quantity is None or component.quantity <= 0:
            raise ValidationRejected(f"Quantity {component.quantity} must be positive", component)
        unit = (component.unit or "").upper()
        if unit in COUNT_UNITS and (component.quantity < 1 or not float(component.quantity).is_integer()):
            raise ValidationRejected(
                f"Counted item quantity {component.quantity} must be a whole number >= 1", component
            )
        return component

    def filter_valid(
        self, records: Iterable[ExtractedComponent]
    ) -> Tuple[List[ExtractedComponent], List[Tuple[ExtractedComponent, str]]]:
        valid = []
        excluded = []
        for record in records:
            try:
                valid.append(self.validate_component(record))
            except ValidationRejected as e:
                logger.warning(f"Excluding '{record.name}' on sheet {record.sheet_number}: {e}")
                excluded.append((record, str(e)))
        return valid, excluded

    # ------------------------------------------------------------------
    # Predicates
    # ------------------------------------------------------------------

    def matches_component_type(self, component: ExtractedComponent, component_type: str) -> bool:
        """Category patterns for family names (valve), phrase match for specific types"""
        category = self.entity_config.get_category(component_type)
        text = " ".join(filter(None, [component.name, component.item_type]))
        if category is not None:
            return category.matches(text)

        wanted = normalize_name(component_type)
        return bool(wanted) and re.search(rf"\b{re.escape(wanted)}\b", normalize_name(text)) is not None

    @staticmethod
    def matches_size(component: ExtractedComponent, size: str) -> bool:
        """Exact match on the leading integer; a missing size never matches"""
        wanted = size_leading_integer(normalize_size(size))
        actual = size_leading_integer(normalize_size(component.size))
        return wanted is not None and actual is not None and wanted == actual

    @staticmethod
    def matches_utility(component: ExtractedComponent, utility: str) -> bool:
        wanted = normalize_utility_name(utility)
        if not wanted:
            return True
        haystack = normalize_utility_name(component.system_name or component.name)
        return wanted in haystack

    def apply_filters(
        self, records: Iterable[ExtractedComponent], filters: ReconcileFilters
    ) -> List[ExtractedComponent]:
        kept = []
        for record in records:
            if record.confidence < filters.min_confidence:
                continue
            if filters.component_type and not self.matches_component_type(record, filters.component_type):
                continue
            if filters.size and not self.matches_size(record, filters.size):
                continue
            if filters.utility and not self.matches_utility(record, filters.utility):
                continue
            kept.append(record)
        return kept

    # ------------------------------------------------------------------
    # Deduplication
    # ------------------------------------------------------------------

    @staticmethod
    def deduplicate(records: Iterable[ExtractedComponent]) -> Tuple[List[ExtractedComponent], int]:
        """One record per identity key, keeping the higher confidence"""
        best: "OrderedDict[tuple, ExtractedComponent]" = OrderedDict()
        removed = 0
        for record in records:
            key = record.identity_key()
            current = best.get(key)
            if current is None:
                best[key] = record
                continue
            removed += 1
            if record.confidence > current.confidence:
                best[key] = record
        return list(best.values()), removed

    def merge(
        self,
        new_records: Iterable[ExtractedComponent],
        existing: Iterable[ExtractedComponent],
        tolerance_ft: float = Config.STATION_TOLERANCE_FT,
    ) -> MergeResult:
        """Plan the writes needed to add new records without duplicating stored ones"""
        result = MergeResult()
        unique_new, _ = self.deduplicate(new_records)
        stored = list(existing)

        for record in unique_new:
            name, size, _ = record.identity_key()
            match = next(
                (
                    other for other in stored
                    if other.identity_key()[:2] == (name, size)
                    and stations_approximately_equal(record.station, other.station, tolerance_ft)
                ),
                None,
            )
            if match is None:
                result.to_insert.append(record)
                stored.append(record)
            elif record.confidence > match.confidence:
                result.replacements.append((match, record))
                stored[stored.index(match)] = record
            else:
                result.skipped.append(record)

        logger.info(
            f"Merge plan: {len(result.to_insert)} new, {len(result.replacements)} replacements, "
            f"{len(result.skipped)} duplicates skipped"
        )
        return result

    # ------------------------------------------------------------------
    # Counting and summing
    # ------------------------------------------------------------------

    def _prepare(
        self, records: Iterable[ExtractedComponent], filters: ReconcileFilters
    ) -> Tuple[List[ExtractedComponent], List[Tuple[ExtractedComponent, str]], int]:
        valid, excluded = self.filter_valid(records)
        kept = self.apply_filters(valid, filters)
        unique, removed = self.deduplicate(kept)
        return unique, excluded, removed

    def reconcile(
        self,
        records: Iterable[ExtractedComponent],
        filters: Optional[ReconcileFilters] = None,
    ) -> ReconciliationResult:
        """Count matching components grouped by normalized size"""
        filters = filters or ReconcileFilters()
        items, excluded, removed = self._prepare(records, filters)

        grouped: "OrderedDict[str, List[ExtractedComponent]]" = OrderedDict()
        for item in items:
            grouped.setdefault(normalize_size(item.size) or UNKNOWN_SIZE, []).append(item)

        groups = [
            SizeGroup(
                size=size,
                quantity=sum(item.quantity for item in members),
                avg_confidence=_weighted_confidence(members),
                items=members,
            )
            for size, members in grouped.items()
        ]
        groups.sort(key=lambda g: (size_leading_integer(g.size) is None, -(size_leading_integer(g.size) or 0)))

        return ReconciliationResult(
            total_count=sum(group.quantity for group in groups),
            by_size={group.size: group.quantity for group in groups},
            items=items,
            groups=groups,
            excluded=excluded,
            duplicates_removed=removed,
        )

    def aggregate(
        self,
        records: Iterable[ExtractedComponent],
        filters: Optional[ReconcileFilters] = None,
        label: Optional[str] = None,
    ) -> AggregationResult:
        """Sum quantities directly; itemize only small result sets"""
        filters = filters or ReconcileFilters()
        items, _, _ = self._prepare(records, filters)
        total = round(sum(item.quantity for item in items), 2)

        units = Counter((item.unit or "EA").upper() for item in items)
        unit = units.most_common(1)[0][0] if units else None
        sheets = _sheet_numbers(items)
        label = label or filters.component_type or filters.utility or "matching items"

        breakdown = []
        if len(items) <= Config.AGGREGATION_BREAKDOWN_LIMIT:
            for item in items:
                line = f"- {item.name}"
                if item.size:
                    line += f" ({normalize_size(item.size)})"
                line += f": {_format_quantity(item.quantity)} {(item.unit or 'EA').upper()}"
                if item.sheet_number:
                    line += f" (Sheet {item.sheet_number})"
                breakdown.append(line)

        summary_line = (
            f"Total {label}: {_format_quantity(total)} {unit or ''}".rstrip()
            + f" from {len(items)} items across {len(sheets)} sheets"
        )

        index_sourced = bool(items) and all(item.is_index_sourced for item in items)
        confidence = _weighted_confidence(items)
        if index_sourced:
            confidence = round(confidence * Config.INDEX_CONFIDENCE_PENALTY, 3)

        return AggregationResult(
            total=total,
            unit=unit,
            item_count=len(items),
            breakdown=breakdown,
            summary_line=summary_line,
            confidence=confidence,
            items=items,
            index_sourced=index_sourced,
        )

    # ------------------------------------------------------------------
    # Lengths
    # ------------------------------------------------------------------

    @staticmethod
    def _points_for(points: Iterable[TerminationPoint], utility_name: str) -> List[TerminationPoint]:
        wanted = normalize_utility_name(utility_name)
        return [p for p in points if p.normalized_utility == wanted]

    def validate_terminations(self, points: Iterable[TerminationPoint]) -> List[TerminationStatus]:
        """Completeness of BEGIN/END pairs per utility"""
        by_utility: "OrderedDict[str, TerminationStatus]" = OrderedDict()
        for point in points:
            status = by_utility.setdefault(
                point.normalized_utility,
                TerminationStatus(point.utility_name, has_begin=False, has_end=False),
            )
            if point.termination_type == TerminationType.BEGIN:
                status.has_begin = True
            elif point.termination_type == TerminationType.END:
                status.has_end = True
        return list(by_utility.values())

    def derive_length(
        self, points: Iterable[TerminationPoint], utility_name: str
    ) -> Tuple[Optional[LengthResult], List[str]]:
        """Length from the BEGIN/END pair of one utility, plus any warnings"""
        matching = self._points_for(points, utility_name)
        warnings: List[str] = []

        def best(kind: TerminationType) -> Optional[TerminationPoint]:
            candidates = [
                p for p in matching if p.termination_type == kind and p.numeric is not None
            ]
            for p in matching:
                if p.termination_type == kind and p.numeric is None:
                    warnings.append(f"Ignoring {kind.value} at invalid station '{p.station}'")
            return max(candidates, key=lambda p: p.confidence) if candidates else None

        begin = best(TerminationType.BEGIN)
        end = best(TerminationType.END)

        if begin is None or end is None:
            if matching:
                status = TerminationStatus(utility_name, begin is not None, end is not None)
                warnings.append(status.warning)
            return None, warnings

        length = round(end.numeric - begin.numeric, 2)
        if length < 0:
            warnings.append(
                f"END station {end.station} precedes BEGIN station {begin.station}; using absolute length"
            )
            length = abs(length)

        return (
            LengthResult(
                utility_name=utility_name,
                begin_station=begin.station,
                end_station=end.station,
                length_lf=length,
                confidence=min(begin.confidence, end.confidence),
                begin_sheet=begin.sheet_number,
                end_sheet=end.sheet_number,
            ),
            warnings,
        )

    def resolve_length(
        self,
        utility_name: str,
        termination_points: Iterable[TerminationPoint],
        records: Iterable[ExtractedComponent],
    ) -> LengthResolution:
        """Termination pair, then stored run quantities, then index-sheet quantities"""
        length_result, warnings = self.derive_length(termination_points, utility_name)
        if length_result is not None:
            return LengthResolution(
                utility_name=utility_name,
                length_lf=length_result.length_lf,
                method="termination_points",
                confidence=length_result.confidence,
                warnings=warnings,
                length_result=length_result,
            )

        length_records = [
            r for r in records
            if (r.unit or "").upper() in LENGTH_UNITS and self.matches_utility(r, utility_name)
        ]
        drawing_records = [r for r in length_records if not r.is_index_sourced]
        index_records = [r for r in length_records if r.is_index_sourced]

        if drawing_records:
            aggregation = self.aggregate(drawing_records, label=utility_name)
            if aggregation.item_count:
                return LengthResolution(
                    utility_name=utility_name,
                    length_lf=aggregation.total,
                    method="structured_quantity",
                    confidence=aggregation.confidence,
                    warnings=warnings,
                    records=aggregation.items,
                )

        if index_records:
            aggregation = self.aggregate(index_records, label=utility_name)
            if aggregation.item_count:
                return LengthResolution(
                    utility_name=utility_name,
                    length_lf=aggregation.total,
                    method="index_quantity",
                    confidence=aggregation.confidence,
                    cautions=[f"This length {Config.INDEX_CAUTION}."],
                    warnings=warnings,
                    records=aggregation.items,
                )

        return LengthResolution(
            utility_name=utility_name,
            length_lf=None,
            method="not_found",
            confidence=0.0,
            warnings=warnings,
        )
