"""
Biomarker name matching against the catalog.

Rules are applied in strict priority order, case-insensitively, and the
first rule that produces a hit wins:

1. exact_code    - name equals a catalog code
2. exact_name    - name equals a catalog display name
3. exact_alias   - name equals one of a catalog entry's aliases
4. partial       - name is a substring of a catalog name, or vice versa

Within one rule, entries are tried in catalog display order. Partial
matching is permissive and the least trusted tier.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Tuple

from workers.biomarker_pipeline.catalog import BiomarkerCatalog, BiomarkerStandard

logger = logging.getLogger(__name__)


class MatchRule(str, Enum):
    EXACT_CODE = "exact_code"
    EXACT_NAME = "exact_name"
    EXACT_ALIAS = "exact_alias"
    PARTIAL = "partial"


# Reported on match details so reviewers can tell strong matches from weak ones
RULE_CONFIDENCE = {
    MatchRule.EXACT_CODE: 1.0,
    MatchRule.EXACT_NAME: 1.0,
    MatchRule.EXACT_ALIAS: 0.95,
    MatchRule.PARTIAL: 0.6,
}


@dataclass(frozen=True)
class MatchResult:
    standard: BiomarkerStandard
    rule: MatchRule

    @property
    def confidence(self) -> float:
        return RULE_CONFIDENCE[self.rule]


def normalize_name(name: Optional[str]) -> str:
    return (name or "").strip().lower()


def _exact_code(name: str, standard: BiomarkerStandard) -> bool:
    return name == standard.code


def _exact_name(name: str, standard: BiomarkerStandard) -> bool:
    return name == standard.name.lower()


def _exact_alias(name: str, standard: BiomarkerStandard) -> bool:
    return any(name == alias.lower() for alias in standard.aliases)


def _partial(name: str, standard: BiomarkerStandard) -> bool:
    standard_name = standard.name.lower()
    return name in standard_name or standard_name in name


RULE_CHAIN: Tuple[Tuple[MatchRule, Callable[[str, BiomarkerStandard], bool]], ...] = (
    (MatchRule.EXACT_CODE, _exact_code),
    (MatchRule.EXACT_NAME, _exact_name),
    (MatchRule.EXACT_ALIAS, _exact_alias),
    (MatchRule.PARTIAL, _partial),
)


class BiomarkerMatcher:
    """
    Resolves extracted biomarker names to catalog entries.

    Usage:
        matcher = BiomarkerMatcher(catalog)
        result = matcher.match_with_rule("LDL")
        if result:
            print(result.standard.code, result.rule)
    """

    def __init__(
        self,
        catalog: BiomarkerCatalog,
        rules: Optional[List[MatchRule]] = None
    ):
        self.catalog = catalog
        enabled = set(rules) if rules is not None else {rule for rule, _ in RULE_CHAIN}
        self._chain = [(rule, check) for rule, check in RULE_CHAIN if rule in enabled]

    def match_with_rule(self, original_name: str) -> Optional[MatchResult]:
        name = normalize_name(original_name)
        if not name:
            return None

        for rule, check in self._chain:
            for standard in self.catalog:
                if check(name, standard):
                    logger.debug(f"Matched '{original_name}' -> {standard.code} ({rule.value})")
                    return MatchResult(standard=standard, rule=rule)

        logger.debug(f"No catalog match for '{original_name}'")
        return None

    def match(self, original_name: str) -> Optional[BiomarkerStandard]:
        result = self.match_with_rule(original_name)
        return result.standard if result else None
