"""
ReturnReady - Heuristic Confidence Scorer
=========================================
Turns a rule's base confidence into a 0-1 score by adding bonuses for
supporting evidence, ledger volume, consistency with last year's claim
and how far the taxpayer sits below their industry benchmark.

The score is pure: identical inputs always give an identical result.
"""

import logging
from typing import Dict, List, Optional

from models import ConfidenceLevel, ExpenseHistory, HeuristicScore, UserProfile
from tax_constants import INDUSTRY_BENCHMARKS

logger = logging.getLogger(__name__)

# Assumed prior-year income relative to this year's
PRIOR_YEAR_INCOME_FACTOR = 0.95

HIGH_CONFIDENCE_THRESHOLD = 0.75
MEDIUM_CONFIDENCE_THRESHOLD = 0.5


def get_confidence_level(final_score: float) -> ConfidenceLevel:
    if final_score >= HIGH_CONFIDENCE_THRESHOLD:
        return ConfidenceLevel.HIGH
    elif final_score >= MEDIUM_CONFIDENCE_THRESHOLD:
        return ConfidenceLevel.MEDIUM
    return ConfidenceLevel.LOW


def deduction_ratio(total_deductions: float, taxable_income: float) -> float:
    """Deductions as a share of income; 0 when there is no income."""
    if taxable_income <= 0:
        return 0.0
    return total_deductions / taxable_income


def calculate_heuristic_score(
    profile: UserProfile,
    history: ExpenseHistory,
    evidence: List[str],
    base_confidence: float,
    rule_id: str,
    benchmarks: Optional[Dict[str, float]] = None
) -> HeuristicScore:
    """
    Score a detection.

    Args:
        profile: Taxpayer profile
        history: Current-year ledger
        evidence: Supporting observations gathered by the rule
        base_confidence: The rule's own starting confidence
        rule_id: Rule being scored (logged only)
        benchmarks: Industry deduction ratios; defaults to INDUSTRY_BENCHMARKS

    Returns:
        HeuristicScore with each component and the clamped final score
    """
    benchmarks = benchmarks if benchmarks is not None else INDUSTRY_BENCHMARKS

    evidence_bonus = min(len(evidence) * 0.1, 0.3)

    # Ledger volume: 50+ expenses gives the full 0.3
    pattern_strength = min(len(history.expenses) / 50, 1.0) * 0.3

    current_ratio = deduction_ratio(history.total_deductions, profile.taxable_income)

    historical_consistency = 0.0
    if profile.previous_year_deductions and profile.previous_year_deductions > 0:
        previous_ratio = deduction_ratio(
            profile.previous_year_deductions,
            profile.taxable_income * PRIOR_YEAR_INCOME_FACTOR
        )
        historical_consistency = max(0.0, 0.2 - abs(current_ratio - previous_ratio))

    industry_relevance = 0.1
    benchmark = benchmarks.get(profile.industry.lower()) if profile.industry else None
    if benchmark:
        if current_ratio < benchmark * 0.5:
            industry_relevance = 0.3
        elif current_ratio < benchmark:
            industry_relevance = 0.2

    final_score = min(
        base_confidence + evidence_bonus + pattern_strength + historical_consistency + industry_relevance,
        1.0
    )

    logger.debug(f"[{rule_id}] heuristic score {final_score:.3f} from {len(evidence)} evidence items")

    return HeuristicScore(
        base_score=base_confidence,
        evidence_bonus=evidence_bonus,
        pattern_strength=pattern_strength,
        historical_consistency=historical_consistency,
        industry_relevance=industry_relevance,
        final_score=final_score,
        confidence_level=get_confidence_level(final_score)
    )
