"""
Unit tests for BiomarkerMatcher.

Each rule of the chain is exercised on its own, then the priority order
between rules is checked.
"""

import pytest

from workers.biomarker_pipeline.catalog import BiomarkerCatalog, BiomarkerStandard
from workers.biomarker_pipeline.matcher import BiomarkerMatcher, MatchRule

pytestmark = pytest.mark.unit


@pytest.fixture
def matcher(catalog):
    return BiomarkerMatcher(catalog)


class TestDeterminism:
    """Case and whitespace never change the result."""

    @pytest.mark.parametrize("name", ["LDL", "ldl", " LDL ", "Ldl\t"])
    def test_ldl_variants_resolve_identically(self, matcher, name):
        result = matcher.match_with_rule(name)
        assert result.standard.code == "ldl"
        assert result.rule == MatchRule.EXACT_CODE

    def test_empty_name_is_unmatched(self, matcher):
        assert matcher.match("") is None
        assert matcher.match("   ") is None
        assert matcher.match(None) is None


class TestIndividualRules:
    """Tests for each rule in isolation."""

    def test_exact_code(self, matcher):
        assert matcher.match_with_rule("vitamin_d").rule == MatchRule.EXACT_CODE

    def test_exact_name(self, matcher):
        result = matcher.match_with_rule("thyroid stimulating hormone")
        assert result.standard.code == "tsh"
        assert result.rule == MatchRule.EXACT_NAME

    def test_exact_alias(self, matcher):
        result = matcher.match_with_rule("SGPT")
        assert result.standard.code == "alt"
        assert result.rule == MatchRule.EXACT_ALIAS

    def test_partial_name_inside_catalog_name(self, matcher):
        result = matcher.match_with_rule("Aminotransferase")
        assert result.standard.code == "alt"
        assert result.rule == MatchRule.PARTIAL

    def test_partial_catalog_name_inside_input(self, matcher):
        result = matcher.match_with_rule("Serum Sodium level")
        assert result.standard.code == "sodium"
        assert result.rule == MatchRule.PARTIAL

    def test_no_match(self, matcher):
        assert matcher.match_with_rule("Zinc Protoporphyrin") is None

    def test_rules_can_be_restricted(self, catalog):
        exact_only = BiomarkerMatcher(catalog, rules=[MatchRule.EXACT_CODE, MatchRule.EXACT_NAME])
        assert exact_only.match("SGPT") is None
        assert exact_only.match("alt").code == "alt"

    def test_confidence_reflects_rule(self, matcher):
        assert matcher.match_with_rule("ldl").confidence == 1.0
        assert matcher.match_with_rule("Aminotransferase").confidence < matcher.match_with_rule("SGPT").confidence


class TestRulePriority:
    """Earlier rules win even when a later rule would pick another entry."""

    @pytest.fixture
    def tricky_catalog(self):
        return BiomarkerCatalog([
            # Display order puts the alias owner first
            BiomarkerStandard(code="iron_panel", name="Iron Panel", category="iron",
                              standard_unit="ug/dL", aliases=("iron",), display_order=1),
            BiomarkerStandard(code="iron", name="Serum Iron", category="iron",
                              standard_unit="ug/dL", display_order=2),
            BiomarkerStandard(code="cholesterol_total", name="Cholesterol", category="lipid_panel",
                              standard_unit="mg/dL", display_order=3),
            BiomarkerStandard(code="ldl", name="LDL Cholesterol", category="lipid_panel",
                              standard_unit="mg/dL", display_order=4),
        ])

    def test_code_beats_earlier_alias(self, tricky_catalog):
        result = BiomarkerMatcher(tricky_catalog).match_with_rule("Iron")
        assert result.standard.code == "iron"
        assert result.rule == MatchRule.EXACT_CODE

    def test_exact_name_beats_partial(self, tricky_catalog):
        # "cholesterol" is also a substring of "LDL Cholesterol"
        result = BiomarkerMatcher(tricky_catalog).match_with_rule("cholesterol")
        assert result.standard.code == "cholesterol_total"
        assert result.rule == MatchRule.EXACT_NAME

    def test_partial_takes_first_in_display_order(self, tricky_catalog):
        result = BiomarkerMatcher(tricky_catalog).match_with_rule("Fasting LDL Cholesterol, calculated")
        # Both "Cholesterol" and "LDL Cholesterol" are inside the input; display order decides
        assert result.standard.code == "cholesterol_total"
        assert result.rule == MatchRule.PARTIAL
