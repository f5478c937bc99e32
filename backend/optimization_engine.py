"""
ReturnReady - Optimization Engine
=================================
Runs every detection rule against a profile and ledger, ranks the rules
by relevance, and assembles the OptimizationResult report.

A rule that raises is logged and treated as not triggered. It never
aborts the run or affects other rules.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from models import (
    ExpenseHistory,
    OpportunityPriority,
    OpportunityType,
    OptimizationOpportunity,
    OptimizationResult,
    OptimizationSummary,
    PatternMatch,
    RankedRule,
    RuleContext,
    UserProfile,
)
from tax_constants import INDUSTRY_BENCHMARKS, OCCUPATION_DEDUCTIONS
from heuristics import calculate_heuristic_score
from detection_rules import ALL_DETECTION_RULES, DetectionRule
from year_over_year import build_yoy_comparisons

logger = logging.getLogger(__name__)


PRIORITY_ORDER: Dict[OpportunityPriority, int] = {
    OpportunityPriority.CRITICAL: 0,
    OpportunityPriority.HIGH: 1,
    OpportunityPriority.MEDIUM: 2,
    OpportunityPriority.LOW: 3,
}

PRIORITY_BONUS: Dict[OpportunityPriority, float] = {
    OpportunityPriority.CRITICAL: 20,
    OpportunityPriority.HIGH: 15,
    OpportunityPriority.MEDIUM: 10,
    OpportunityPriority.LOW: 5,
}


# =============================================================================
# RULE RANKING
# =============================================================================

def calculate_rule_rankings(
    profile: UserProfile,
    history: ExpenseHistory,
    rules: Optional[List[DetectionRule]] = None
) -> List[RankedRule]:
    """
    Score each rule 0-100 for how relevant it is to this taxpayer.

    Ranking never decides whether a rule runs; it only orders the
    report and breaks ties between opportunities of equal priority.
    """
    rules = rules if rules is not None else ALL_DETECTION_RULES
    industry = profile.industry.lower() if profile.industry else None

    ranked = []
    for rule in rules:
        if rule.relevance_score is not None:
            relevance = rule.relevance_score(profile, history) * 40
        else:
            relevance = 20

        if industry and industry in rule.industry_relevance:
            relevance += 25

        relevance += PRIORITY_BONUS[rule.priority]

        if profile.previous_year_deductions and profile.previous_year_deductions > 0:
            relevance += 5

        ranked.append(RankedRule(
            rule_id=rule.id,
            rule_name=rule.name,
            relevance_score=min(relevance, 100),
            priority=rule.priority
        ))

    ranked.sort(key=lambda r: r.relevance_score, reverse=True)
    return ranked


# =============================================================================
# ENGINE
# =============================================================================

class OptimizationEngine:
    """
    Evaluate the detection rule set and build the optimization report.

    The rule list, benchmark tables and clock are injected so callers can
    run against alternative configuration or pin the run instant in tests.
    """

    def __init__(
        self,
        rules: Optional[List[DetectionRule]] = None,
        industry_benchmarks: Optional[Dict[str, float]] = None,
        occupation_deductions: Optional[Dict[str, List[str]]] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.rules = list(rules) if rules is not None else list(ALL_DETECTION_RULES)
        self.industry_benchmarks = dict(
            industry_benchmarks if industry_benchmarks is not None else INDUSTRY_BENCHMARKS
        )
        self.occupation_deductions = dict(
            occupation_deductions if occupation_deductions is not None else OCCUPATION_DEDUCTIONS
        )
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def build_context(self, all_history: Optional[List[ExpenseHistory]]) -> RuleContext:
        return RuleContext(
            yoy_comparisons=build_yoy_comparisons(all_history or []),
            industry_averages=self.industry_benchmarks,
            occupation_benchmarks=self.occupation_deductions,
            as_of=self.clock()
        )

    def run(
        self,
        profile: UserProfile,
        history: ExpenseHistory,
        all_history: Optional[List[ExpenseHistory]] = None
    ) -> OptimizationResult:
        """
        Run every rule and assemble the report.

        Args:
            profile: Taxpayer profile
            history: Current-year ledger
            all_history: Ledgers for every known year, current included

        Returns:
            OptimizationResult with opportunities sorted by priority then relevance
        """
        context = self.build_context(all_history)
        ranked_rules = calculate_rule_rankings(profile, history, self.rules)
        ranked_by_id = {r.rule_id: r for r in ranked_rules}

        opportunities: List[OptimizationOpportunity] = []
        patterns: List[PatternMatch] = []

        for rule in self.rules:
            try:
                opportunity = rule.check(profile, history, all_history, context)
            except Exception as e:
                logger.error(f"Error running rule {rule.id}: {e}")
                continue

            if opportunity is None:
                continue

            ranked = ranked_by_id.get(rule.id)
            if ranked is not None:
                opportunity = opportunity.model_copy(update={"relevance_score": ranked.relevance_score})
                ranked_by_id[rule.id] = ranked.model_copy(update={
                    "triggered": True,
                    "estimated_impact": opportunity.estimated_savings
                })

            heuristic = opportunity.heuristic_score or calculate_heuristic_score(
                profile, history, [], 0.5, rule.id, self.industry_benchmarks
            )
            opportunities.append(opportunity)
            patterns.append(PatternMatch(
                pattern=rule.name,
                detected=True,
                evidence=[opportunity.description],
                confidence=opportunity.heuristic_score.final_score if opportunity.heuristic_score else 0.5,
                heuristic_score=heuristic
            ))

        opportunities.sort(key=lambda o: (PRIORITY_ORDER[o.priority], -(o.relevance_score or 0)))

        total_savings = round(sum(o.estimated_savings for o in opportunities), 2)
        logger.info(
            f"Optimization run for {history.tax_year}: {len(opportunities)} of "
            f"{len(self.rules)} rules triggered, ${total_savings:,.2f} potential savings"
        )

        return OptimizationResult(
            opportunities=opportunities,
            total_potential_savings=total_savings,
            patterns=patterns,
            summary=self._summarize(opportunities, patterns),
            yoy_comparisons=context.yoy_comparisons,
            ranked_rules=[ranked_by_id[r.rule_id] for r in ranked_rules]
        )

    @staticmethod
    def _summarize(
        opportunities: List[OptimizationOpportunity],
        patterns: List[PatternMatch]
    ) -> OptimizationSummary:
        by_category: Dict[str, int] = {}
        by_type: Dict[str, int] = {}
        for opp in opportunities:
            by_category[opp.category] = by_category.get(opp.category, 0) + 1
            by_type[opp.type.value] = by_type.get(opp.type.value, 0) + 1

        average_confidence = (
            sum(p.confidence for p in patterns) / len(patterns) if patterns else 0.0
        )

        def count(priority: OpportunityPriority) -> int:
            return sum(1 for o in opportunities if o.priority == priority)

        return OptimizationSummary(
            critical_count=count(OpportunityPriority.CRITICAL),
            high_count=count(OpportunityPriority.HIGH),
            medium_count=count(OpportunityPriority.MEDIUM),
            low_count=count(OpportunityPriority.LOW),
            by_category=by_category,
            by_type=by_type,
            average_confidence=average_confidence,
            yoy_anomalies_detected=sum(1 for o in opportunities if o.type == OpportunityType.YOY_ANOMALY)
        )


def run_optimization_engine(
    profile: UserProfile,
    history: ExpenseHistory,
    all_history: Optional[List[ExpenseHistory]] = None,
    as_of: Optional[datetime] = None
) -> OptimizationResult:
    """Run the default rule set, optionally pinned to a given instant."""
    clock = (lambda: as_of) if as_of is not None else None
    return OptimizationEngine(clock=clock).run(profile, history, all_history)


# =============================================================================
# QUERIES & EXPORT
# =============================================================================

def check_opportunity_type(
    opportunity_type: OpportunityType,
    profile: UserProfile,
    history: ExpenseHistory,
    all_history: Optional[List[ExpenseHistory]] = None,
    as_of: Optional[datetime] = None
) -> List[OptimizationOpportunity]:
    result = run_optimization_engine(profile, history, all_history, as_of)
    return [o for o in result.opportunities if o.type == opportunity_type]


def get_top_opportunities(
    profile: UserProfile,
    history: ExpenseHistory,
    all_history: Optional[List[ExpenseHistory]] = None,
    limit: int = 5,
    as_of: Optional[datetime] = None
) -> List[OptimizationOpportunity]:
    result = run_optimization_engine(profile, history, all_history, as_of)
    return result.opportunities[:limit]


def export_opportunities_for_accountant(result: OptimizationResult) -> str:
    """Render the report as plain text for an accountant."""
    lines = [
        "TAX OPTIMIZATION OPPORTUNITIES REPORT",
        "=" * 60,
        "",
        f"Total Potential Tax Savings: ${result.total_potential_savings:,.2f}",
        f"Opportunities Found: {len(result.opportunities)}",
        f"Average Confidence: {result.summary.average_confidence * 100:.1f}%",
        f"YoY Anomalies Detected: {result.summary.yoy_anomalies_detected}",
        (f"Priority Breakdown: {result.summary.critical_count} critical, {result.summary.high_count} high, "
         f"{result.summary.medium_count} medium, {result.summary.low_count} low"),
        "",
        "RULE RELEVANCE RANKINGS:",
        "-" * 60,
    ]

    for rule in result.ranked_rules[:10]:
        status = "TRIGGERED" if rule.triggered else "Not triggered"
        lines.append(f"{rule.rule_name} (Relevance: {rule.relevance_score:.0f}%) - {status}")

    lines += ["", "DETECTED OPPORTUNITIES:", "-" * 60, ""]

    for opp in result.opportunities:
        confidence = opp.confidence.value
        if opp.heuristic_score:
            confidence += f" (Heuristic Score: {opp.heuristic_score.final_score * 100:.1f}%)"

        lines.append(f"[{opp.priority.value.upper()}] {opp.title}")
        lines.append(f"Category: {opp.category} | Type: {opp.type.value}")
        lines.append(f"Estimated Savings: ${opp.estimated_savings:,.2f}")
        lines.append(f"Confidence: {confidence}")
        if opp.relevance_score:
            lines.append(f"Relevance Score: {opp.relevance_score:.1f}")
        lines.append(f"Tax Impact: {opp.tax_impact}")
        lines.append(f"Description: {opp.description}")
        lines.append(f"ATO Reference: {opp.ato_reference or 'N/A'}")
        lines.append("Action Items:")
        for i, action in enumerate(opp.action_items, 1):
            lines.append(f"  {i}. {action}")
        lines.append("")

    return "\n".join(lines)
