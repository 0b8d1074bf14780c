"""
Linear unit normalization against a biomarker's standard unit.

value_in_standard_unit = value * factor
"""

import logging
import warnings
from typing import Mapping, Optional

from workers.biomarker_pipeline.exceptions import UnitConversionWarning

logger = logging.getLogger(__name__)


def units_equal(unit_a: Optional[str], unit_b: Optional[str]) -> bool:
    return (unit_a or "").strip().lower() == (unit_b or "").strip().lower()


def find_conversion_factor(
    from_unit: str,
    conversions: Mapping[str, float]
) -> Optional[float]:
    """Look up a factor for ``from_unit``: exact key first, then lowercase."""
    if not from_unit:
        return None
    unit = from_unit.strip()
    if unit in conversions:
        return conversions[unit]
    return conversions.get(unit.lower())


def convert_to_standard_unit(
    value: float,
    from_unit: str,
    standard_unit: str,
    conversions: Mapping[str, float]
) -> float:
    """
    Convert ``value`` from ``from_unit`` into ``standard_unit``.

    Same unit (case-insensitive) is a no-op. When no factor is known the
    value is returned unchanged and an UnitConversionWarning is issued;
    callers must surface that as a validation issue.
    """
    if units_equal(from_unit, standard_unit):
        return value

    factor = find_conversion_factor(from_unit, conversions)
    if factor is not None:
        return value * factor

    message = f"No conversion factor from '{from_unit}' to '{standard_unit}'"
    logger.warning(message)
    warnings.warn(message, UnitConversionWarning, stacklevel=2)
    return value
