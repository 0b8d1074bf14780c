"""
Unit tests for linear unit conversion.
"""

import warnings

import pytest

from workers.biomarker_pipeline.exceptions import UnitConversionWarning
from workers.biomarker_pipeline.units import (
    convert_to_standard_unit,
    find_conversion_factor,
    units_equal,
)

pytestmark = pytest.mark.unit

GLUCOSE_CONVERSIONS = {"mmol/L": 18.0}


class TestConvertToStandardUnit:
    """Tests for convert_to_standard_unit."""

    @pytest.mark.parametrize("value", [0.0, 5.5, 92.0, 1234.5])
    def test_same_unit_is_identity(self, value):
        assert convert_to_standard_unit(value, "mg/dL", "mg/dL", GLUCOSE_CONVERSIONS) == value

    def test_same_unit_ignores_case(self):
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            assert convert_to_standard_unit(92.0, "MG/DL", "mg/dL", {}) == 92.0

    def test_factor_applied(self):
        assert convert_to_standard_unit(5.0, "mmol/L", "mg/dL", GLUCOSE_CONVERSIONS) == pytest.approx(90.0)

    def test_lowercase_fallback(self):
        assert convert_to_standard_unit(2.0, "G/L", "g/dL", {"g/l": 0.1}) == pytest.approx(0.2)

    def test_round_trip_with_inverse_factor(self):
        forward = convert_to_standard_unit(5.0, "mmol/L", "mg/dL", GLUCOSE_CONVERSIONS)
        back = convert_to_standard_unit(forward, "mg/dL", "mmol/L", {"mg/dL": 1 / 18.0})
        assert back == pytest.approx(5.0)

    def test_missing_factor_warns_and_returns_value(self):
        with pytest.warns(UnitConversionWarning, match="No conversion factor"):
            result = convert_to_standard_unit(7.0, "furlongs", "mg/dL", GLUCOSE_CONVERSIONS)
        assert result == 7.0


class TestHelpers:
    """Tests for unit lookup helpers."""

    def test_units_equal_handles_none(self):
        assert units_equal(None, "")
        assert not units_equal("mg/dL", None)

    def test_find_conversion_factor_prefers_exact(self):
        assert find_conversion_factor("mmol/L", {"mmol/L": 18.0, "mmol/l": 99.0}) == 18.0

    def test_find_conversion_factor_missing(self):
        assert find_conversion_factor("", GLUCOSE_CONVERSIONS) is None
        assert find_conversion_factor("ng/mL", GLUCOSE_CONVERSIONS) is None
