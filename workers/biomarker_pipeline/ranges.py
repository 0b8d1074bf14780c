"""
Reference range evaluation.

Status is classified against a gender-scoped range with a 20% critical
margin on either side:

    margin = (high - low) * 0.2
    value <  low - margin  -> critical
    value <  low           -> low
    value >  high + margin -> critical
    value >  high          -> high
    otherwise              -> normal

Boundaries are strict: exactly ``low - margin`` is "low", exactly
``high + margin`` is "high".
"""

from enum import Enum
from typing import Optional

from workers.biomarker_pipeline.catalog import BiomarkerStandard, ReferenceRange

CRITICAL_MARGIN_RATIO = 0.2

SUPPORTED_GENDERS = ("male", "female")


class BiomarkerStatus(str, Enum):
    NORMAL = "normal"
    LOW = "low"
    HIGH = "high"
    CRITICAL = "critical"


def get_biomarker_status(value: float, reference_range: ReferenceRange) -> BiomarkerStatus:
    low, high = reference_range.low, reference_range.high
    margin = (high - low) * CRITICAL_MARGIN_RATIO

    if value < low - margin:
        return BiomarkerStatus.CRITICAL
    if value < low:
        return BiomarkerStatus.LOW
    if value > high + margin:
        return BiomarkerStatus.CRITICAL
    if value > high:
        return BiomarkerStatus.HIGH
    return BiomarkerStatus.NORMAL


def flag_for_status(status: BiomarkerStatus, value: float, reference_range: ReferenceRange) -> str:
    """Collapse a status to the high/low/normal flag stored on results."""
    if status == BiomarkerStatus.CRITICAL:
        return "low" if value < reference_range.low else "high"
    return status.value


def normalize_gender(gender: Optional[str]) -> Optional[str]:
    if gender is None:
        return None
    gender = gender.strip().lower()
    return gender or None


def select_reference_range(
    standard: BiomarkerStandard,
    gender: Optional[str]
) -> Optional[ReferenceRange]:
    """
    Range for the subject's gender.

    Genders outside male/female (or missing) have no range; there is no
    averaging or fallback.
    """
    gender = normalize_gender(gender)
    if gender not in SUPPORTED_GENDERS:
        return None
    return standard.reference_range_for(gender)
