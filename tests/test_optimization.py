"""
ReturnReady - Optimization Engine Tests
=======================================
Tax arithmetic, ledger queries, heuristic scoring, year-over-year
comparison, the detection rules and the engine that runs them.
"""

import pytest
from datetime import date, datetime, timezone

from tax_constants import (
    TAX_BRACKETS_2024_25,
    calculate_income_tax,
    calculate_medicare_levy,
    calculate_medicare_levy_surcharge,
    calculate_tax_savings,
    get_bracket_table,
    get_effective_rate,
    get_marginal_rate,
    round_half_up,
)
from models import (
    AnomalySeverity,
    ConfidenceLevel,
    ExpenseHistory,
    ExpenseRecord,
    InvestmentType,
    OpportunityPriority,
    OpportunityType,
    UserProfile,
    WorkArrangement,
)
from expense_queries import (
    count_expenses_in_categories,
    get_category_total,
    get_expenses_by_keyword,
    get_monthly_distribution,
    get_quarterly_pattern,
    has_expenses_in_categories,
)
from heuristics import calculate_heuristic_score, deduction_ratio
from year_over_year import build_yoy_comparisons, detect_yoy_anomalies, generate_yoy_report
from detection_rules import ALL_DETECTION_RULES, DetectionRule
from optimization_engine import (
    PRIORITY_ORDER,
    OptimizationEngine,
    calculate_rule_rankings,
    check_opportunity_type,
    export_opportunities_for_accountant,
    get_top_opportunities,
    run_optimization_engine,
)


AS_OF = datetime(2025, 3, 1, 9, 30, tzinfo=timezone.utc)
AS_OF_MS = int(AS_OF.timestamp() * 1000)


def expense(category, amount, incurred_on=date(2024, 9, 15), description=""):
    return ExpenseRecord(category=category, amount=amount, incurred_on=incurred_on, description=description)


def ledger(tax_year, *expenses, total_deductions=None):
    if total_deductions is None:
        total_deductions = sum(e.amount for e in expenses)
    return ExpenseHistory(tax_year=tax_year, expenses=list(expenses), total_deductions=total_deductions)


def find(result, rule_id):
    return [o for o in result.opportunities if o.id.startswith(f"{rule_id}-")]


# =============================================================================
# TAX CONSTANTS TESTS
# =============================================================================

class TestTaxConstants:
    """Test bracket arithmetic and levies."""

    def test_brackets_ascending(self):
        """Bracket limits and rates should both increase."""
        limits = [b[0] for b in TAX_BRACKETS_2024_25]
        rates = [b[1] for b in TAX_BRACKETS_2024_25]
        assert limits == sorted(limits)
        assert rates == sorted(rates)
        assert limits[-1] == float('inf')

    def test_marginal_rate_boundaries(self):
        """Bracket limits are inclusive."""
        assert get_marginal_rate(0) == 0.0
        assert get_marginal_rate(18200) == 0.0
        assert get_marginal_rate(18201) == 0.16
        assert get_marginal_rate(80000) == 0.30
        assert get_marginal_rate(135000) == 0.30
        assert get_marginal_rate(135001) == 0.37
        assert get_marginal_rate(250000) == 0.45

    def test_marginal_rate_monotonic(self):
        """Marginal rate never falls as income rises."""
        incomes = range(0, 300001, 2500)
        rates = [get_marginal_rate(i) for i in incomes]
        assert all(a <= b for a, b in zip(rates, rates[1:]))

    def test_income_tax_bracket_bases(self):
        """Tax at each bracket limit matches the published base amounts."""
        assert calculate_income_tax(18200) == 0.0
        assert calculate_income_tax(45000) == 4288.0
        assert calculate_income_tax(135000) == 31288.0
        assert calculate_income_tax(190000) == 51638.0

    def test_income_tax_zero_and_negative(self):
        """No tax on zero or negative income."""
        assert calculate_income_tax(0) == 0.0
        assert calculate_income_tax(-5000) == 0.0

    def test_income_tax_monotonic(self):
        """More income never means less tax."""
        incomes = range(0, 300001, 1750)
        taxes = [calculate_income_tax(i) for i in incomes]
        assert all(a <= b for a, b in zip(taxes, taxes[1:]))

    def test_tax_savings_uses_marginal_rate(self):
        """Savings are deduction times marginal rate."""
        assert calculate_tax_savings(1500, 80000) == 450.0
        assert calculate_tax_savings(1000, 15000) == 0.0

    def test_round_half_up(self):
        """Halves round up rather than to the nearest even digit."""
        assert round_half_up(12.5) == 13
        assert round_half_up(82.5) == 83
        assert round_half_up(2.5) == 3
        assert round_half_up(2.4) == 2
        assert round_half_up(0.125, 2) == 0.13
        assert isinstance(round_half_up(7.0), int)

    def test_medicare_levy_and_surcharge(self):
        """Levy is 2%; surcharge only applies without cover above the threshold."""
        assert calculate_medicare_levy(80000) == 1600.0
        assert calculate_medicare_levy_surcharge(100000, has_private_health=False) == 1000.0
        assert calculate_medicare_levy_surcharge(100000, has_private_health=True) == 0.0
        assert calculate_medicare_levy_surcharge(90000, has_private_health=False) == 0.0

    def test_effective_rate(self):
        """Effective rate is a percentage and zero for no income."""
        assert get_effective_rate(0) == 0.0
        assert get_effective_rate(45000) == pytest.approx(9.53, abs=0.01)

    def test_bracket_table(self):
        """Bracket table carries lower bound and base tax."""
        table = get_bracket_table()
        assert len(table) == len(TAX_BRACKETS_2024_25)
        assert table[0]["from"] == 0
        assert table[2]["base_tax"] == 4288.0
        assert table[-1]["to"] is None


# =============================================================================
# EXPENSE QUERY TESTS
# =============================================================================

class TestExpenseQueries:
    """Test loose category matching and aggregation."""

    def test_substring_category_match(self):
        """Category keywords match case-insensitively as substrings."""
        history = ledger(2025, expense("D5 Home Office", 200), expense("travel-work", 300))
        assert has_expenses_in_categories(history, ["d5"])
        assert get_category_total(history, ["TRAVEL"]) == 300
        assert not has_expenses_in_categories(history, ["vehicle"])

    def test_subcategory_match(self):
        """Subcategory is searched as well as category."""
        record = ExpenseRecord(category="Other", subcategory="uniform", amount=80, incurred_on=date(2024, 8, 1))
        history = ledger(2025, record)
        assert count_expenses_in_categories(history, ["uniform"]) == 1

    def test_keyword_search(self):
        """Keyword search looks at description and category."""
        history = ledger(
            2025,
            expense("D5", 900, description="Standing desk"),
            expense("crypto-fees", 50),
            expense("D1", 40, description="Parking"),
        )
        assert len(get_expenses_by_keyword(history, ["desk", "crypto"])) == 2

    def test_monthly_distribution_zero_based(self):
        """Months are keyed 0-11."""
        history = ledger(
            2025,
            expense("D5", 100, date(2025, 1, 10)),
            expense("D5", 50, date(2025, 1, 20)),
            expense("D5", 25, date(2024, 12, 1)),
        )
        assert get_monthly_distribution(history) == {0: 150, 11: 25}

    def test_quarterly_pattern_has_all_quarters(self):
        """Quarters with no spend are present as zero."""
        history = ledger(2025, expense("D5", 100, date(2025, 5, 1)))
        assert get_quarterly_pattern(history) == {0: 0.0, 1: 100.0, 2: 0.0, 3: 0.0}


# =============================================================================
# HEURISTIC SCORER TESTS
# =============================================================================

class TestHeuristics:
    """Test the composite confidence score."""

    def test_score_clamped_to_one(self):
        """Final score never exceeds 1."""
        profile = UserProfile(taxable_income=100000, industry="mining")
        history = ledger(2025, *[expense("D5", 10) for _ in range(60)], total_deductions=100)
        score = calculate_heuristic_score(profile, history, ["a", "b", "c", "d"], 0.9, "TEST-001")
        assert score.final_score == 1.0
        assert score.confidence_level == ConfidenceLevel.HIGH

    def test_components(self):
        """Each component follows its own formula."""
        profile = UserProfile(taxable_income=100000)
        history = ledger(2025, *[expense("D5", 10) for _ in range(25)])
        score = calculate_heuristic_score(profile, history, ["one", "two"], 0.3, "TEST-002")
        assert score.evidence_bonus == pytest.approx(0.2)
        assert score.pattern_strength == pytest.approx(0.15)
        assert score.historical_consistency == 0.0
        assert score.industry_relevance == pytest.approx(0.1)
        assert score.final_score == pytest.approx(0.75)

    def test_industry_far_below_benchmark(self):
        """Less than half the benchmark ratio earns the top industry bonus."""
        profile = UserProfile(taxable_income=100000, industry="Construction")
        score = calculate_heuristic_score(profile, ledger(2025, total_deductions=1000), [], 0.5, "TEST-003")
        assert score.industry_relevance == pytest.approx(0.3)

    def test_zero_income_guarded(self):
        """Zero income yields a zero ratio instead of dividing by zero."""
        assert deduction_ratio(5000, 0) == 0.0
        profile = UserProfile(taxable_income=0, previous_year_deductions=2000)
        score = calculate_heuristic_score(profile, ledger(2025, total_deductions=500), [], 0.5, "TEST-004")
        assert 0.0 <= score.final_score <= 1.0


# =============================================================================
# YEAR-OVER-YEAR TESTS
# =============================================================================

class TestYearOverYear:
    """Test comparisons and anomaly detection."""

    @pytest.fixture
    def histories(self):
        previous = ledger(2024, expense("D2", 600, date(2023, 9, 1)), expense("D2", 400, date(2024, 2, 1)))
        current = ledger(2025, expense("D2", 100, date(2024, 9, 1)))
        return previous, current

    def test_comparisons_most_recent_first(self, histories):
        """Comparisons are ordered newest year first."""
        previous, current = histories
        comparisons = build_yoy_comparisons([previous, current])
        assert [c.tax_year for c in comparisons] == [2025, 2024]
        assert comparisons[1].category_totals == {"D2": 1000}
        assert build_yoy_comparisons(None) == []

    def test_detects_collapsed_category(self, histories):
        """D2 falling from $1000 to $100 is a high severity anomaly."""
        previous, current = histories
        anomalies = detect_yoy_anomalies(current, build_yoy_comparisons([previous, current]))
        assert len(anomalies) == 1
        assert anomalies[0].category == "D2"
        assert anomalies[0].change == pytest.approx(-0.9)
        assert anomalies[0].severity == AnomalySeverity.HIGH

    def test_small_prior_categories_ignored(self):
        """Prior-year categories of $500 or less are not compared."""
        previous = ledger(2024, expense("D3", 500))
        current = ledger(2025)
        assert detect_yoy_anomalies(current, build_yoy_comparisons([previous, current])) == []

    def test_only_immediately_preceding_year(self):
        """A gap year means there is nothing to compare against."""
        older = ledger(2023, expense("D2", 5000))
        current = ledger(2025)
        assert detect_yoy_anomalies(current, build_yoy_comparisons([older, current])) == []

    def test_report_lists_categories_by_total(self, histories):
        """Report includes each year and its categories."""
        report = generate_yoy_report(build_yoy_comparisons(list(histories)))
        assert "Tax Year 2025:" in report
        assert "D2: $1,000.00" in report


# =============================================================================
# DETECTION RULE TESTS
# =============================================================================

class TestDetectionRules:
    """Test individual rule triggers through the engine."""

    def test_twenty_rules_with_unique_ids(self):
        """The rule set holds twenty uniquely identified rules."""
        ids = [r.id for r in ALL_DETECTION_RULES]
        assert len(ids) == 20
        assert len(set(ids)) == 20

    def test_wfh_missing_for_remote_worker(self):
        """A remote worker with no WFH expenses gets one critical WFH opportunity."""
        profile = UserProfile(taxable_income=80000, work_arrangement=WorkArrangement.REMOTE)
        result = run_optimization_engine(profile, ledger(2025), as_of=AS_OF)

        wfh = find(result, "WFH-001")
        assert len(wfh) == 1
        assert wfh[0].id == f"WFH-001-{AS_OF_MS}"
        assert wfh[0].priority == OpportunityPriority.CRITICAL
        assert wfh[0].estimated_savings == round(1500 * get_marginal_rate(80000))
        assert wfh[0].tax_impact == "Potential deduction: $1,500 → Tax savings: $450"

    def test_wfh_not_flagged_for_office_worker(self):
        """Office workers are not prompted for WFH deductions."""
        profile = UserProfile(taxable_income=80000)
        result = run_optimization_engine(profile, ledger(2025), as_of=AS_OF)
        assert find(result, "WFH-001") == []

    def test_wfh_satisfied_by_existing_claim(self):
        """Any expense in a WFH category suppresses the rule."""
        profile = UserProfile(taxable_income=80000, work_arrangement=WorkArrangement.HYBRID)
        result = run_optimization_engine(profile, ledger(2025, expense("work-from-home", 300)), as_of=AS_OF)
        assert find(result, "WFH-001") == []

    def test_vehicle_logbook_gap(self):
        """$2500 of vehicle costs over three entries suggests a logbook."""
        profile = UserProfile(taxable_income=80000, has_vehicle=True)
        history = ledger(2025, expense("D1", 1000), expense("D1", 800), expense("D1", 700))
        result = run_optimization_engine(profile, history, as_of=AS_OF)

        vehicle = find(result, "VEH-001")
        assert len(vehicle) == 1
        assert vehicle[0].type == OpportunityType.BETTER_METHOD
        assert vehicle[0].estimated_savings == round(750 * get_marginal_rate(80000))

    def test_vehicle_well_documented(self):
        """Five or more vehicle entries count as documented."""
        profile = UserProfile(taxable_income=80000)
        history = ledger(2025, *[expense("vehicle", 500) for _ in range(5)])
        result = run_optimization_engine(profile, history, as_of=AS_OF)
        assert find(result, "VEH-001") == []

    def test_yoy_drop_rule(self):
        """A collapsed category becomes a YOY-001 opportunity."""
        profile = UserProfile(taxable_income=80000)
        previous = ledger(2024, expense("D2", 1000, date(2023, 10, 1)))
        current = ledger(2025, expense("D2", 100, date(2024, 10, 1)))
        result = run_optimization_engine(profile, current, [previous, current], as_of=AS_OF)

        yoy = find(result, "YOY-001")
        assert len(yoy) == 1
        assert yoy[0].estimated_savings == 150.0
        assert yoy[0].yoy_comparison.tax_year == 2024
        assert result.summary.yoy_anomalies_detected == 1

    def test_eofy_timing_follows_run_month(self):
        """The timing rule fires in May and June only."""
        profile = UserProfile(taxable_income=80000)
        history = ledger(2025, expense("D5", 200))
        march = run_optimization_engine(profile, history, as_of=AS_OF)
        may = run_optimization_engine(profile, history, as_of=datetime(2025, 5, 20, tzinfo=timezone.utc))
        assert find(march, "TIME-001") == []
        assert len(find(may, "TIME-001")) == 1

    def test_crypto_records(self):
        """Crypto investors without crypto records are prompted."""
        profile = UserProfile(
            taxable_income=60000, has_investments=True, investment_types=[InvestmentType.CRYPTO]
        )
        result = run_optimization_engine(profile, ledger(2025), as_of=AS_OF)
        assert len(find(result, "CRYPTO-001")) == 1

    def test_savings_never_negative(self):
        """Estimated savings are non-negative for a busy profile."""
        result = run_optimization_engine(self._busy_profile(), ledger(2025, expense("D5", 50)), as_of=AS_OF)
        assert result.opportunities
        assert all(o.estimated_savings >= 0 for o in result.opportunities)
        assert all(0 <= o.heuristic_score.final_score <= 1 for o in result.opportunities)

    @staticmethod
    def _busy_profile():
        return UserProfile(
            taxable_income=150000,
            occupation="Nurse",
            industry="healthcare",
            work_arrangement=WorkArrangement.REMOTE,
            has_investments=True,
            investment_types=[InvestmentType.SHARES, InvestmentType.CRYPTO, InvestmentType.PROPERTY],
            is_studying=True,
            previous_year_deductions=4000,
        )


# =============================================================================
# OPTIMIZATION ENGINE TESTS
# =============================================================================

class TestOptimizationEngine:
    """Test orchestration, ranking and reporting."""

    @pytest.fixture
    def profile(self):
        return UserProfile(
            taxable_income=150000,
            occupation="Nurse",
            industry="healthcare",
            work_arrangement=WorkArrangement.REMOTE,
            has_investments=True,
            investment_types=[InvestmentType.SHARES, InvestmentType.CRYPTO, InvestmentType.PROPERTY],
            previous_year_deductions=4000,
        )

    @pytest.fixture
    def history(self):
        return ledger(2025, expense("stationery", 120), expense("misc", 950, description="Laptop"))

    def test_sorted_by_priority_then_relevance(self, profile, history):
        """Opportunities are ordered by priority rank, then relevance descending."""
        result = run_optimization_engine(profile, history, as_of=AS_OF)
        assert len(result.opportunities) > 3
        for a, b in zip(result.opportunities, result.opportunities[1:]):
            assert PRIORITY_ORDER[a.priority] <= PRIORITY_ORDER[b.priority]
            if a.priority == b.priority:
                assert a.relevance_score >= b.relevance_score

    def test_deterministic_with_pinned_clock(self, profile, history):
        """Two runs at the same instant are identical."""
        first = run_optimization_engine(profile, history, as_of=AS_OF)
        second = run_optimization_engine(profile, history, as_of=AS_OF)
        assert first.model_dump() == second.model_dump()

    def test_total_and_summary(self, profile, history):
        """Totals and counts agree with the opportunity list."""
        result = run_optimization_engine(profile, history, as_of=AS_OF)
        summary = result.summary
        assert result.total_potential_savings == pytest.approx(sum(o.estimated_savings for o in result.opportunities))
        assert (summary.critical_count + summary.high_count + summary.medium_count + summary.low_count
                == len(result.opportunities))
        assert len(result.patterns) == len(result.opportunities)
        assert sum(summary.by_category.values()) == len(result.opportunities)

    def test_rule_ranking_scores(self, profile, history):
        """Relevance blends rule fit, industry, priority and history bonuses."""
        ranked = {r.rule_id: r for r in calculate_rule_rankings(profile, history)}
        # remote: 1.0 * 40 + critical 20 + history 5
        assert ranked["WFH-001"].relevance_score == 65
        # nurse: 0.9 * 40 + industry 25 + high 15 + history 5
        assert ranked["TRAV-001"].relevance_score == 81
        # no relevance function: 20 + low 5 + history 5
        assert ranked["TIME-001"].relevance_score == 30

    def test_ranking_sorted_and_capped(self, profile, history):
        """Rankings are sorted descending and never exceed 100."""
        ranked = calculate_rule_rankings(profile, history)
        scores = [r.relevance_score for r in ranked]
        assert scores == sorted(scores, reverse=True)
        assert max(scores) <= 100

    def test_opportunity_carries_rule_relevance(self, profile, history):
        """Each opportunity is stamped with its rule's ranked relevance."""
        result = run_optimization_engine(profile, history, as_of=AS_OF)
        ranked = {r.rule_id: r for r in result.ranked_rules}
        for opp in result.opportunities:
            rule_id = opp.id.rsplit("-", 1)[0]
            assert opp.relevance_score == ranked[rule_id].relevance_score
            assert ranked[rule_id].triggered
            assert ranked[rule_id].estimated_impact == opp.estimated_savings

    def test_failing_rule_is_skipped(self, caplog):
        """A rule that raises is logged and does not affect the others."""
        def explode(profile, history, all_history=None, context=None):
            raise ValueError("boom")

        broken = DetectionRule(
            id="BAD-001", name="Broken Rule", category="test",
            priority=OpportunityPriority.CRITICAL, check=explode
        )
        engine = OptimizationEngine(rules=[broken, ALL_DETECTION_RULES[0]], clock=lambda: AS_OF)
        profile = UserProfile(taxable_income=80000, work_arrangement=WorkArrangement.REMOTE)

        with caplog.at_level("ERROR"):
            result = engine.run(profile, ledger(2025))

        assert [o.id for o in result.opportunities] == [f"WFH-001-{AS_OF_MS}"]
        assert "BAD-001" in caplog.text
        assert not next(r for r in result.ranked_rules if r.rule_id == "BAD-001").triggered

    def test_injected_benchmarks(self):
        """Engine reads industry benchmarks from its own configuration."""
        profile = UserProfile(taxable_income=100000, industry="astronomy")
        history = ledger(2025, expense("D5", 100))
        default = OptimizationEngine(clock=lambda: AS_OF).run(profile, history)
        custom = OptimizationEngine(industry_benchmarks={"astronomy": 0.2}, clock=lambda: AS_OF).run(profile, history)

        default_bench = find(default, "BENCH-001")
        custom_bench = find(custom, "BENCH-001")
        assert len(custom_bench) == 1
        assert not default_bench or custom_bench[0].estimated_savings > default_bench[0].estimated_savings

    def test_empty_overrides_kept(self):
        """Explicitly empty tables replace the defaults instead of falling back."""
        engine = OptimizationEngine(industry_benchmarks={}, occupation_deductions={}, clock=lambda: AS_OF)
        context = engine.build_context(None)
        assert context.industry_averages == {}
        assert context.occupation_benchmarks == {}

    def test_opportunity_id_from_run_timestamp(self, profile, history):
        """Opportunity ids carry the context's run timestamp."""
        engine = OptimizationEngine(clock=lambda: AS_OF)
        assert engine.build_context(None).run_timestamp == AS_OF_MS
        result = engine.run(profile, history)
        assert all(o.id.endswith(f"-{AS_OF_MS}") for o in result.opportunities)

    def test_empty_inputs(self):
        """Default profile and empty ledger still give a complete result."""
        result = run_optimization_engine(UserProfile(), ledger(2025), as_of=AS_OF)
        assert result.total_potential_savings >= 0
        assert len(result.ranked_rules) == 20
        assert result.yoy_comparisons == []

    def test_check_opportunity_type(self, profile, history):
        """Filtering by type returns only that type."""
        missing = check_opportunity_type(OpportunityType.MISSING_DEDUCTION, profile, history)
        assert missing
        assert all(o.type == OpportunityType.MISSING_DEDUCTION for o in missing)

    def test_check_opportunity_type_pinned(self, profile):
        """The timing rule follows the pinned instant, not the wall clock."""
        june = datetime(2025, 6, 10, tzinfo=timezone.utc)
        history = ledger(2025, expense("D3", 50))

        timing = check_opportunity_type(OpportunityType.TIMING, profile, history, as_of=june)
        assert [o.id for o in timing] == [f"TIME-001-{int(june.timestamp() * 1000)}"]
        assert check_opportunity_type(OpportunityType.TIMING, profile, history, as_of=AS_OF) == []

    def test_top_opportunities(self, profile, history):
        """Top opportunities respects the limit and sort order."""
        top = get_top_opportunities(profile, history, limit=2)
        assert len(top) == 2
        assert top[0].priority == OpportunityPriority.CRITICAL

    def test_top_opportunities_pinned(self, profile, history):
        """Pinned runs give the same ids."""
        first = get_top_opportunities(profile, history, limit=3, as_of=AS_OF)
        second = get_top_opportunities(profile, history, limit=3, as_of=AS_OF)
        assert [o.id for o in first] == [o.id for o in second]
        assert all(o.id.endswith(f"-{AS_OF_MS}") for o in first)

    def test_accountant_export(self, profile, history):
        """Export lists totals, rule rankings and each opportunity."""
        result = run_optimization_engine(profile, history, as_of=AS_OF)
        text = export_opportunities_for_accountant(result)
        assert text.startswith("TAX OPTIMIZATION OPPORTUNITIES REPORT")
        assert f"Opportunities Found: {len(result.opportunities)}" in text
        assert "RULE RELEVANCE RANKINGS:" in text
        assert "TRIGGERED" in text
        for opp in result.opportunities:
            assert opp.title in text
