"""
Biomarker Standards Catalog.

Immutable reference data for lab measurements: codes, aliases, categories,
standard units, unit conversion factors and gender-scoped reference ranges.

The catalog is built once (from the YAML seed file or from database rows)
and passed explicitly to the matcher, converter and range evaluator. It is
never mutated during a pipeline run, so it needs no synchronization.
"""

import logging
import yaml
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

logger = logging.getLogger(__name__)


# Display labels for known categories, in catalog display order
CATEGORY_LABELS: Dict[str, str] = {
    "metabolic": "Metabolic Panel",
    "lipid_panel": "Lipid Panel",
    "cbc": "Complete Blood Count",
    "liver": "Liver Function",
    "kidney": "Kidney Function",
    "thyroid": "Thyroid Panel",
    "vitamin": "Vitamins & Nutrients",
    "hormone": "Hormones",
    "electrolyte": "Electrolytes",
    "inflammation": "Inflammation Markers",
    "cardiac": "Cardiac Markers",
    "iron": "Iron Studies",
    "other": "Other",
}


@dataclass(frozen=True)
class ReferenceRange:
    """Clinically normal interval, in the standard unit."""
    low: float
    high: float


@dataclass(frozen=True)
class BiomarkerStandard:
    """Canonical reference record for one lab measurement type."""
    code: str
    name: str
    category: str
    standard_unit: str
    aliases: Tuple[str, ...] = ()
    unit_conversions: Dict[str, float] = field(default_factory=dict)
    reference_ranges: Dict[str, ReferenceRange] = field(default_factory=dict)
    decimal_places: int = 1
    display_order: int = 1000
    description: Optional[str] = None

    def reference_range_for(self, gender: Optional[str]) -> Optional[ReferenceRange]:
        """Range for ``gender`` ('male'/'female'), or None if not defined."""
        if not gender:
            return None
        return self.reference_ranges.get(gender.strip().lower())


def standard_from_dict(code: str, data: Dict[str, Any]) -> BiomarkerStandard:
    """
    Build a BiomarkerStandard from a mapping (YAML entry or DB row dict).

    Aliases equal to the code or name are dropped as redundant; the
    remaining aliases keep their first-seen order without duplicates.
    """
    code = code.strip().lower()
    name = data.get("name", code)

    redundant = {code, name.lower()}
    aliases: List[str] = []
    seen = set()
    for alias in data.get("aliases") or []:
        alias = str(alias).strip()
        key = alias.lower()
        if not alias or key in redundant or key in seen:
            continue
        seen.add(key)
        aliases.append(alias)

    ranges = {
        gender.lower(): ReferenceRange(low=float(r["low"]), high=float(r["high"]))
        for gender, r in (data.get("reference_ranges") or {}).items()
    }
    conversions = {
        str(unit): float(factor)
        for unit, factor in (data.get("unit_conversions") or {}).items()
    }

    return BiomarkerStandard(
        code=code,
        name=name,
        category=data.get("category") or "other",
        standard_unit=data.get("standard_unit", ""),
        aliases=tuple(aliases),
        unit_conversions=conversions,
        reference_ranges=ranges,
        decimal_places=int(data.get("decimal_places", 1)),
        display_order=int(data.get("display_order", 1000)),
        description=data.get("description"),
    )


class BiomarkerCatalog:
    """
    Read-only, queryable collection of BiomarkerStandard entries.

    Lookups never raise for missing entries: absent results are returned
    as None (or an empty list) and callers treat them as unmatched.
    """

    def __init__(self, standards: Iterable[BiomarkerStandard]):
        ordered = sorted(standards, key=lambda s: s.display_order)

        self._by_code: Dict[str, BiomarkerStandard] = {}
        for standard in ordered:
            if standard.code in self._by_code:
                raise ValueError(f"Duplicate biomarker code in catalog: {standard.code}")
            self._by_code[standard.code] = standard

        self._standards: Tuple[BiomarkerStandard, ...] = tuple(ordered)
        self.alias_collisions = self._detect_alias_collisions()

        logger.info(
            f"Loaded biomarker catalog: {len(self._standards)} standards, "
            f"{len(self.all_categories())} categories"
        )

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_yaml(cls, path: Path) -> "BiomarkerCatalog":
        """Load the catalog from a seed YAML file (``standards:`` mapping)."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        entries = data.get("standards", {})
        return cls(standard_from_dict(code, entry) for code, entry in entries.items())

    @classmethod
    def from_records(cls, records: Iterable[Any]) -> "BiomarkerCatalog":
        """Build the catalog from BiomarkerStandardRecord rows."""
        return cls(
            standard_from_dict(record.code, {
                "name": record.name,
                "aliases": record.aliases,
                "category": record.category,
                "standard_unit": record.standard_unit,
                "unit_conversions": record.unit_conversions,
                "reference_ranges": record.reference_ranges,
                "decimal_places": record.decimal_places,
                "display_order": record.display_order,
                "description": record.description,
            })
            for record in records
        )

    def _detect_alias_collisions(self) -> Dict[str, List[str]]:
        """
        Find identifiers (alias, name or code) claimed by more than one entry.

        Collisions are not resolved here; matching keeps its priority order
        and the first entry in display order wins within a rule.
        """
        owners: Dict[str, List[str]] = defaultdict(list)
        for standard in self._standards:
            keys = {standard.code, standard.name.lower()}
            keys.update(alias.lower() for alias in standard.aliases)
            for key in keys:
                owners[key].append(standard.code)

        collisions = {key: codes for key, codes in owners.items() if len(codes) > 1}
        for key, codes in sorted(collisions.items()):
            logger.warning(f"Alias collision in catalog: '{key}' is claimed by {codes}")
        return collisions

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def standards(self) -> Tuple[BiomarkerStandard, ...]:
        return self._standards

    def __len__(self) -> int:
        return len(self._standards)

    def __iter__(self) -> Iterator[BiomarkerStandard]:
        return iter(self._standards)

    def lookup_by_code(self, code: str) -> Optional[BiomarkerStandard]:
        if not code:
            return None
        return self._by_code.get(code.strip().lower())

    def lookup_by_category(self, category: str) -> List[BiomarkerStandard]:
        return [s for s in self._standards if s.category == category]

    def search(self, query: str) -> List[BiomarkerStandard]:
        """Case-insensitive substring search over name, code and aliases."""
        term = (query or "").strip().lower()
        if not term:
            return list(self._standards)

        results = []
        for standard in self._standards:
            if term in standard.name.lower() or term in standard.code:
                results.append(standard)
            elif any(term in alias.lower() for alias in standard.aliases):
                results.append(standard)
        return results

    def all_categories(self) -> List[str]:
        """Distinct categories, in order of first appearance by display order."""
        categories: List[str] = []
        for standard in self._standards:
            if standard.category not in categories:
                categories.append(standard.category)
        return categories
