"""
Matching stage: catalog match, unit conversion and range evaluation.

Every input biomarker yields exactly one BiomarkerMatchDetail and one
ProcessedBiomarker. Unmatched readings are kept with no code so they can
be reconciled by hand.
"""

import logging
import time
import warnings
from dataclasses import dataclass
from typing import List, Optional, Tuple

from workers.biomarker_pipeline.catalog import BiomarkerCatalog, BiomarkerStandard
from workers.biomarker_pipeline.exceptions import CatalogUnavailableError, UnitConversionWarning
from workers.biomarker_pipeline.matcher import BiomarkerMatcher, MatchRule
from workers.biomarker_pipeline.models import (
    BiomarkerMatchDetail,
    ConversionApplied,
    ExtractedBiomarker,
    ProcessedBiomarker,
    Stage3Debug,
)
from workers.biomarker_pipeline.ranges import (
    SUPPORTED_GENDERS,
    flag_for_status,
    get_biomarker_status,
    normalize_gender,
    select_reference_range,
)
from workers.biomarker_pipeline.units import convert_to_standard_unit, units_equal

logger = logging.getLogger(__name__)

UNSPECIFIED_GENDER = "unspecified"


@dataclass
class MatchingOutcome:
    details: List[BiomarkerMatchDetail]
    processed: List[ProcessedBiomarker]
    debug: Stage3Debug

    @property
    def unmatched_count(self) -> int:
        return self.debug.unmatched_count


def resolve_gender(subject_gender: Optional[str], extracted_gender: Optional[str]) -> Optional[str]:
    """Profile gender when known, otherwise whatever the report says."""
    return normalize_gender(subject_gender) or normalize_gender(extracted_gender)


class MatchingStage:

    def __init__(self, catalog: BiomarkerCatalog):
        if catalog is None or len(catalog) == 0:
            raise CatalogUnavailableError("Biomarker catalog is empty; cannot match biomarkers")
        self.catalog = catalog
        self.matcher = BiomarkerMatcher(catalog)

    def run(self, biomarkers: List[ExtractedBiomarker], gender: Optional[str]) -> MatchingOutcome:
        start = time.perf_counter()
        gender = normalize_gender(gender)

        details: List[BiomarkerMatchDetail] = []
        processed: List[ProcessedBiomarker] = []
        for biomarker in biomarkers:
            detail, item = self.process_one(biomarker, gender)
            details.append(detail)
            processed.append(item)

        debug = Stage3Debug(
            standards_count=len(self.catalog),
            user_gender=gender or UNSPECIFIED_GENDER,
            duration_ms=(time.perf_counter() - start) * 1000,
            match_details=details,
        )
        logger.info(
            f"Matching: {debug.matched_count} matched, {debug.unmatched_count} unmatched "
            f"against {debug.standards_count} standards (gender={debug.user_gender})"
        )
        return MatchingOutcome(details=details, processed=processed, debug=debug)

    def process_one(
        self,
        biomarker: ExtractedBiomarker,
        gender: Optional[str],
    ) -> Tuple[BiomarkerMatchDetail, ProcessedBiomarker]:
        match = self.matcher.match_with_rule(biomarker.name)
        if match is None:
            detail = BiomarkerMatchDetail(original_name=biomarker.name)
            item = ProcessedBiomarker(
                original_name=biomarker.name,
                original_value=biomarker.value,
                original_unit=biomarker.unit,
                flag=biomarker.flag,
            )
            return detail, item

        standard = match.standard
        issues: List[str] = []
        if match.rule == MatchRule.PARTIAL:
            issues.append(f"Matched to '{standard.name}' by partial name only - review suggested")

        standard_value, conversion, converted = self._convert(biomarker, standard, issues)

        reference_range = select_reference_range(standard, gender)
        status = flag = None
        if gender not in SUPPORTED_GENDERS:
            issues.append(f"No reference range available for gender '{gender or UNSPECIFIED_GENDER}'")
        elif reference_range is None:
            issues.append(f"No reference range defined for {standard.name} ({gender})")
        elif converted:
            status = get_biomarker_status(standard_value, reference_range)
            flag = flag_for_status(status, standard_value, reference_range)

        detail = BiomarkerMatchDetail(
            original_name=biomarker.name,
            matched_code=standard.code,
            matched_name=standard.name,
            match_rule=match.rule.value,
            confidence=match.confidence,
            conversion_applied=conversion,
            validation_issues=issues,
        )
        item = ProcessedBiomarker(
            original_name=biomarker.name,
            original_value=biomarker.value,
            original_unit=biomarker.unit,
            standard_code=standard.code,
            standard_name=standard.name,
            standard_value=round(standard_value, standard.decimal_places) if converted else None,
            standard_unit=standard.standard_unit,
            reference_min=reference_range.low if reference_range else None,
            reference_max=reference_range.high if reference_range else None,
            flag=flag or biomarker.flag,
            status=status.value if status else None,
            matched=True,
            validation_issues=list(issues),
        )
        return detail, item

    @staticmethod
    def _convert(
        biomarker: ExtractedBiomarker,
        standard: BiomarkerStandard,
        issues: List[str],
    ) -> Tuple[float, Optional[ConversionApplied], bool]:
        """Returns (value in standard unit, conversion record, whether the value is usable)."""
        if units_equal(biomarker.unit, standard.standard_unit):
            return biomarker.value, None, True

        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always", UnitConversionWarning)
            value = convert_to_standard_unit(
                biomarker.value,
                biomarker.unit,
                standard.standard_unit,
                standard.unit_conversions,
            )

        if any(issubclass(w.category, UnitConversionWarning) for w in caught):
            issues.append(
                f"No conversion from '{biomarker.unit or '(none)'}' to '{standard.standard_unit}' "
                f"- value left unconverted, status not evaluated"
            )
            return value, None, False

        conversion = ConversionApplied(
            from_value=biomarker.value,
            from_unit=biomarker.unit,
            to_value=round(value, standard.decimal_places),
            to_unit=standard.standard_unit,
        )
        return value, conversion, True
