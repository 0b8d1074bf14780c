"""
Merge stage for chunked documents.

Per-page biomarker lists are folded into one list in page order. Two
readings are duplicates when an exact code, name or alias match resolves
them to the same catalog code, or, for names the catalog does not know
exactly, when their normalized name and unit agree. Duplicates whose
values differ by more than ``tolerance`` (compared in the standard unit
where a factor is known) are conflicts, settled by a pluggable
ConflictPolicy.
"""

import logging
import re
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional

from workers.biomarker_pipeline.catalog import BiomarkerCatalog, BiomarkerStandard
from workers.biomarker_pipeline.exceptions import MergeConflictError
from workers.biomarker_pipeline.matcher import BiomarkerMatcher, MatchRule
from workers.biomarker_pipeline.models import (
    ExtractedBiomarker,
    MergeStageDebug,
    PageResult,
    VerificationStatus,
)
from workers.biomarker_pipeline.units import find_conversion_factor, units_equal

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE = 0.01

EXACT_RULES = frozenset({MatchRule.EXACT_CODE, MatchRule.EXACT_NAME, MatchRule.EXACT_ALIAS})

# Applied in order after stripping non-alphanumerics
_NAME_FOLDS = (
    ("cholesterol", "chol"),
    ("haemoglobin", "hgb"),
    ("hemoglobin", "hgb"),
    ("triglyceride", "trig"),
    ("glucose", "gluc"),
    ("creatinine", "creat"),
    ("bilirubin", "bili"),
)


def normalize_biomarker_key(name: str, unit: Optional[str]) -> str:
    normalized_name = re.sub(r"[^a-z0-9]", "", (name or "").lower())
    for long_form, short_form in _NAME_FOLDS:
        normalized_name = normalized_name.replace(long_form, short_form)
    normalized_unit = re.sub(r"[^a-z0-9/]", "", (unit or "").lower())
    return f"{normalized_name}:{normalized_unit}"


# =============================================================================
# Conflict policies
# =============================================================================

class ConflictPolicy:
    """Chooses which of two conflicting readings survives the merge."""

    name = "base"

    def choose(self, existing: ExtractedBiomarker, candidate: ExtractedBiomarker) -> ExtractedBiomarker:
        raise NotImplementedError


class LatestPageWinsPolicy(ConflictPolicy):
    """The reading from the later page wins; same page keeps the later entry."""

    name = "latest_page"

    def choose(self, existing, candidate):
        if (candidate.page_number or 0) >= (existing.page_number or 0):
            return candidate
        return existing


class HighestConfidencePolicy(ConflictPolicy):
    """
    Highest stage 1 confidence wins.

    Falls back to latest-page-wins when either confidence is missing or
    the two are equal.
    """

    name = "highest_confidence"

    def __init__(self):
        self._fallback = LatestPageWinsPolicy()

    def choose(self, existing, candidate):
        if existing.confidence is not None and candidate.confidence is not None:
            if candidate.confidence > existing.confidence:
                return candidate
            if existing.confidence > candidate.confidence:
                return existing
        return self._fallback.choose(existing, candidate)


POLICIES = {
    LatestPageWinsPolicy.name: LatestPageWinsPolicy,
    HighestConfidencePolicy.name: HighestConfidencePolicy,
}


def get_policy(name: Optional[str] = None) -> ConflictPolicy:
    if not name:
        return HighestConfidencePolicy()
    try:
        return POLICIES[name]()
    except KeyError:
        raise ValueError(f"Unknown merge policy '{name}'. Available: {sorted(POLICIES)}")


# =============================================================================
# Merge
# =============================================================================

@dataclass
class BiomarkerConflict:
    biomarker_name: str
    source_pages: List[int]
    values: List[float]
    kept_value: float
    kept_page: Optional[int]
    policy: str

    def describe(self) -> str:
        pages = ", ".join(str(p) for p in self.source_pages)
        values = " vs ".join(f"{v:g}" for v in self.values)
        return (
            f'Biomarker "{self.biomarker_name}" has different values on pages {pages}: {values} '
            f"- kept {self.kept_value:g} from page {self.kept_page} ({self.policy})"
        )


@dataclass
class MergeResult:
    biomarkers: List[ExtractedBiomarker]
    total_before: int
    duplicates_removed: int
    conflicts: List[BiomarkerConflict] = field(default_factory=list)
    source_pages: Dict[str, List[int]] = field(default_factory=dict)

    @property
    def total_after(self) -> int:
        return len(self.biomarkers)

    @property
    def warnings(self) -> List[str]:
        return [c.describe() for c in self.conflicts]


@dataclass
class _MergeEntry:
    biomarker: ExtractedBiomarker
    standard: Optional[BiomarkerStandard]
    pages: List[int]
    values: List[float]
    conflicted: bool = False


class MergeStage:

    def __init__(
        self,
        catalog: Optional[BiomarkerCatalog] = None,
        policy: Optional[ConflictPolicy] = None,
        tolerance: float = DEFAULT_TOLERANCE,
    ):
        self.matcher = BiomarkerMatcher(catalog) if catalog is not None else None
        self.policy = policy or HighestConfidencePolicy()
        self.tolerance = tolerance

    def _resolve(self, biomarker: ExtractedBiomarker):
        # Partial matches are too loose to decide that two readings are the same test
        match = self.matcher.match_with_rule(biomarker.name) if self.matcher else None
        if match is not None and match.rule in EXACT_RULES:
            return f"code:{match.standard.code}", match.standard
        return normalize_biomarker_key(biomarker.name, biomarker.unit), None

    @staticmethod
    def _comparable_value(biomarker: ExtractedBiomarker, standard: Optional[BiomarkerStandard]) -> float:
        if standard is None or units_equal(biomarker.unit, standard.standard_unit):
            return biomarker.value
        factor = find_conversion_factor(biomarker.unit, standard.unit_conversions)
        return biomarker.value * factor if factor is not None else biomarker.value

    def _values_conflict(self, a: ExtractedBiomarker, b: ExtractedBiomarker, standard) -> bool:
        return abs(self._comparable_value(a, standard) - self._comparable_value(b, standard)) > self.tolerance

    def merge(self, page_results: List[PageResult]) -> MergeResult:
        entries: Dict[str, _MergeEntry] = {}
        total_before = 0

        for result in sorted(page_results, key=lambda r: r.page_number):
            for biomarker in result.data.biomarkers:
                total_before += 1
                candidate = replace(biomarker, page_number=biomarker.page_number or result.page_number)
                key, standard = self._resolve(candidate)

                entry = entries.get(key)
                if entry is None:
                    entries[key] = _MergeEntry(
                        biomarker=candidate,
                        standard=standard,
                        pages=[result.page_number],
                        values=[candidate.value],
                    )
                    continue

                entry.pages.append(result.page_number)
                entry.values.append(candidate.value)
                existing = entry.biomarker

                if self._values_conflict(existing, candidate, entry.standard):
                    entry.conflicted = True
                    kept = self.policy.choose(existing, candidate)
                    if kept is not existing and kept is not candidate:
                        raise MergeConflictError(
                            f"Merge policy '{self.policy.name}' returned neither reading for '{existing.name}'"
                        )
                elif existing.reference_min is None and candidate.reference_min is not None:
                    kept = candidate
                else:
                    kept = existing

                other = candidate if kept is existing else existing
                entry.biomarker = self._fill_missing(kept, other)

        merged: List[ExtractedBiomarker] = []
        conflicts: List[BiomarkerConflict] = []
        for entry in entries.values():
            merged.append(entry.biomarker)
            if entry.conflicted:
                conflicts.append(BiomarkerConflict(
                    biomarker_name=entry.biomarker.name,
                    source_pages=list(entry.pages),
                    values=list(entry.values),
                    kept_value=entry.biomarker.value,
                    kept_page=entry.biomarker.page_number,
                    policy=self.policy.name,
                ))

        result = MergeResult(
            biomarkers=merged,
            total_before=total_before,
            duplicates_removed=total_before - len(merged),
            conflicts=conflicts,
            source_pages={key: list(entry.pages) for key, entry in entries.items()},
        )
        logger.info(
            f"Merged {result.total_before} biomarkers into {result.total_after} "
            f"({result.duplicates_removed} duplicates, {len(conflicts)} conflicts)"
        )
        for conflict in conflicts:
            logger.warning(conflict.describe())
        return result

    @staticmethod
    def _fill_missing(kept: ExtractedBiomarker, other: ExtractedBiomarker) -> ExtractedBiomarker:
        """Copy a reference range and flag onto the kept reading when it has none."""
        updates = {}
        if kept.reference_min is None and kept.reference_max is None:
            if other.reference_min is not None or other.reference_max is not None:
                updates["reference_min"] = other.reference_min
                updates["reference_max"] = other.reference_max
        if not kept.flag and other.flag:
            updates["flag"] = other.flag
        return replace(kept, **updates) if updates else kept

    def build_debug(self, result: MergeResult) -> MergeStageDebug:
        return MergeStageDebug(
            total_biomarkers_before_merge=result.total_before,
            total_biomarkers_after_merge=result.total_after,
            duplicates_removed=result.duplicates_removed,
            conflicts_resolved=len(result.conflicts),
            policy=self.policy.name,
        )


def merge_corrections(page_results: List[PageResult]) -> List[str]:
    """All page corrections, each prefixed with its page number."""
    corrections = []
    for result in sorted(page_results, key=lambda r: r.page_number):
        corrections.extend(f"[Page {result.page_number}] {c}" for c in result.corrections)
    return corrections


def overall_verification_status(page_results: List[PageResult]) -> VerificationStatus:
    if any(r.verification_status == VerificationStatus.FAILED for r in page_results):
        return VerificationStatus.FAILED
    if any(r.verification_status == VerificationStatus.CORRECTED for r in page_results):
        return VerificationStatus.CORRECTED
    return VerificationStatus.CLEAN
