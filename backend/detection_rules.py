"""
ReturnReady - Detection Rules
=============================
Twenty independent checks that each look for one missed deduction,
weaker claim method or anomaly in a taxpayer's ledger.

Every rule has the same shape: a check function
``(profile, history, all_history, context) -> Optional[OptimizationOpportunity]``
and an optional relevance function ``(profile, history) -> float`` that is
used for ranking only. Rules never gate each other and every rule runs on
every analysis, so a rule can be added or removed by editing
ALL_DETECTION_RULES alone.

Thresholds and estimates are tuned values. Change them deliberately.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

from models import (
    AnomalySeverity,
    EmploymentType,
    ExpenseHistory,
    HeuristicScore,
    InvestmentType,
    OpportunityPriority,
    OpportunityType,
    OptimizationOpportunity,
    RuleContext,
    UserProfile,
    WorkArrangement,
    YearOverYearComparison,
)
from tax_constants import (
    CLOTHING_CATEGORIES,
    DEFAULT_INDUSTRY_BENCHMARK,
    DEPRECIATION_CATEGORIES,
    DIVIDEND_CATEGORIES,
    EDUCATION_CATEGORIES,
    INDUSTRY_BENCHMARKS,
    PROFESSIONAL_CATEGORIES,
    TRAVEL_CATEGORIES,
    VEHICLE_CATEGORIES,
    WFH_CATEGORIES,
    calculate_tax_savings,
    round_half_up,
)
from expense_queries import (
    count_expenses_in_categories,
    description_contains,
    get_category_total,
    get_monthly_distribution,
    get_quarterly_pattern,
    has_expenses_in_categories,
)
from heuristics import calculate_heuristic_score, deduction_ratio
from year_over_year import build_yoy_comparisons, detect_yoy_anomalies, find_previous_year


CheckFunction = Callable[
    [UserProfile, ExpenseHistory, Optional[List[ExpenseHistory]], Optional[RuleContext]],
    Optional[OptimizationOpportunity]
]
RelevanceFunction = Callable[[UserProfile, ExpenseHistory], float]


@dataclass(frozen=True)
class DetectionRule:
    """A single detection rule."""

    id: str
    name: str
    category: str
    priority: OpportunityPriority
    check: CheckFunction
    relevance_score: Optional[RelevanceFunction] = None
    industry_relevance: Tuple[str, ...] = ()


# =============================================================================
# SHARED HELPERS
# =============================================================================

def _money(amount: float) -> str:
    """$1,500 for whole amounts, $1,512.50 otherwise."""
    if amount == int(amount):
        return f"${amount:,.0f}"
    return f"${amount:,.2f}"


def _occupation_matches(profile: UserProfile, keywords: List[str]) -> bool:
    occupation = profile.occupation.lower()
    return bool(occupation) and any(keyword in occupation for keyword in keywords)


def _works_from_home(profile: UserProfile) -> bool:
    return profile.work_arrangement in (WorkArrangement.REMOTE, WorkArrangement.HYBRID)


def _by_arrangement(profile: UserProfile, remote: float, hybrid: float, other: float) -> float:
    if profile.work_arrangement == WorkArrangement.REMOTE:
        return remote
    if profile.work_arrangement == WorkArrangement.HYBRID:
        return hybrid
    return other


def _has_investment(profile: UserProfile, investment_type: InvestmentType) -> bool:
    return investment_type in profile.investment_types


def _previous_year(history: ExpenseHistory, context: Optional[RuleContext]) -> Optional[YearOverYearComparison]:
    if context is None:
        return None
    return find_previous_year(history, context.yoy_comparisons)


def _score(
    profile: UserProfile,
    history: ExpenseHistory,
    evidence: List[str],
    base_confidence: float,
    rule_id: str,
    context: Optional[RuleContext]
) -> HeuristicScore:
    benchmarks = context.industry_averages if context is not None else None
    return calculate_heuristic_score(profile, history, evidence, base_confidence, rule_id, benchmarks)


def _run_instant(context: Optional[RuleContext]) -> datetime:
    return context.as_of if context is not None else datetime.now(timezone.utc)


def _build_opportunity(
    rule_id: str,
    context: Optional[RuleContext],
    opportunity_type: OpportunityType,
    category: str,
    priority: OpportunityPriority,
    title: str,
    description: str,
    savings: float,
    heuristic_score: HeuristicScore,
    action_items: List[str],
    tax_impact: str,
    ato_reference: str,
    yoy_comparison: Optional[YearOverYearComparison] = None
) -> OptimizationOpportunity:
    if context is None:
        context = RuleContext()
    return OptimizationOpportunity(
        id=f"{rule_id}-{context.run_timestamp}",
        type=opportunity_type,
        category=category,
        title=title,
        description=description,
        estimated_savings=savings,
        confidence=heuristic_score.confidence_level,
        priority=priority,
        action_items=action_items,
        tax_impact=tax_impact,
        ato_reference=ato_reference,
        heuristic_score=heuristic_score,
        yoy_comparison=yoy_comparison
    )


def _deduction_impact(amount: float, savings: float, label: str = "Potential deduction") -> str:
    return f"{label}: {_money(amount)} → Tax savings: {_money(savings)}"


# =============================================================================
# WORK FROM HOME, VEHICLE, INVESTMENT, EDUCATION
# =============================================================================

def check_wfh_missing(profile, history, all_history=None, context=None):
    if not _works_from_home(profile) or has_expenses_in_categories(history, WFH_CATEGORIES):
        return None

    estimated = 1500 if profile.work_arrangement == WorkArrangement.REMOTE else 800
    savings = calculate_tax_savings(estimated, profile.taxable_income)
    evidence = [f"Work arrangement: {profile.work_arrangement.value}", "No WFH expenses detected"]

    previous = _previous_year(history, context)
    if previous and previous.category_totals.get("D5", 0) > 0:
        evidence.append(f"Previous year WFH deductions: {_money(previous.category_totals['D5'])}")

    score = _score(profile, history, evidence, 0.8, "WFH-001", context)
    return _build_opportunity(
        "WFH-001", context, OpportunityType.MISSING_DEDUCTION, "work-from-home",
        OpportunityPriority.CRITICAL,
        "Missing Work From Home Deductions",
        f"You work {profile.work_arrangement.value} but have no WFH deductions claimed. "
        f"Remote workers typically claim $1,000-$3,000 in home office expenses.",
        savings, score,
        [
            "Gather utility bills (electricity, gas, internet)",
            "Calculate home office space percentage",
            "Choose method: Fixed rate ($0.67/hour) or Actual cost",
            "Consider depreciation on office furniture/equipment",
        ],
        _deduction_impact(estimated, savings),
        "TR 93/30, PCG 2023/1"
    )


def check_vehicle_logbook_gap(profile, history, all_history=None, context=None):
    vehicle_total = get_category_total(history, VEHICLE_CATEGORIES)
    entry_count = count_expenses_in_categories(history, VEHICLE_CATEGORIES)

    if vehicle_total <= 2000 or entry_count >= 5:
        return None

    potential = vehicle_total * 0.3
    savings = calculate_tax_savings(potential, profile.taxable_income)
    evidence = [f"Vehicle expenses: {_money(vehicle_total)}", f"Entry count: {entry_count}"]
    score = _score(profile, history, evidence, 0.6, "VEH-001", context)
    return _build_opportunity(
        "VEH-001", context, OpportunityType.BETTER_METHOD, "vehicle-expenses",
        OpportunityPriority.HIGH,
        "Vehicle Logbook Method Opportunity",
        f"You have {_money(vehicle_total)} in vehicle expenses but limited documentation. "
        f"A 12-week logbook could significantly increase your claim.",
        savings, score,
        [
            "Start 12-week continuous logbook immediately",
            "Record all trips: date, purpose, kilometers",
            "Track all vehicle expenses (fuel, rego, insurance, maintenance)",
            "Compare cents-per-km vs logbook method at EOFY",
        ],
        _deduction_impact(potential, savings, "Potential additional deduction"),
        "IT 2346, Logbook Method"
    )


# Zero-based months in which ASX companies typically pay
DIVIDEND_MONTHS = [1, 2, 4, 5, 7, 8, 10, 11]


def check_dividend_pattern_gap(profile, history, all_history=None, context=None):
    if not profile.has_investments or not _has_investment(profile, InvestmentType.SHARES):
        return None

    monthly = get_monthly_distribution(history)
    has_dividend_months = any(monthly.get(month, 0) > 0 for month in DIVIDEND_MONTHS)
    if has_expenses_in_categories(history, DIVIDEND_CATEGORIES) or has_dividend_months:
        return None

    estimated_dividends = profile.taxable_income * 0.05
    savings = round_half_up(estimated_dividends * 0.30, 2)
    evidence = ["Share investments declared", "No dividend income recorded", "Missing typical dividend months"]
    score = _score(profile, history, evidence, 0.6, "DIV-001", context)
    return _build_opportunity(
        "DIV-001", context, OpportunityType.PATTERN_GAP, "investment-income",
        OpportunityPriority.HIGH,
        "Missing Dividend Statements",
        "You have share investments but no dividend income recorded. "
        "Most ASX companies pay dividends twice yearly.",
        savings, score,
        [
            "Check Computershare and Link Market Services accounts",
            "Review bank statements for dividend deposits",
            "Request duplicate statements if needed",
            "Don't forget franking credits - they reduce your tax",
        ],
        f"Estimated franking credits: {_money(savings)} → Direct tax reduction",
        "DIVIDEND: Item 11"
    )


EDUCATION_INTENSIVE_FIELDS = ["accounting", "law", "medical", "engineering", "it", "teaching", "finance"]


def check_self_education(profile, history, all_history=None, context=None):
    field_matches = _occupation_matches(profile, EDUCATION_INTENSIVE_FIELDS)
    if not (profile.is_studying or field_matches) or has_expenses_in_categories(history, EDUCATION_CATEGORIES):
        return None

    estimated = 2000 if profile.is_studying else 1000
    savings = calculate_tax_savings(estimated, profile.taxable_income)
    evidence = ["Currently studying"] if profile.is_studying else [f"Occupation: {profile.occupation}"]
    score = _score(profile, history, evidence, 0.6, "EDU-001", context)

    if profile.is_studying:
        description = ("You're currently studying but have no education expenses claimed. "
                       "Course fees, textbooks, and travel to campus may be deductible.")
    else:
        description = f"Your occupation ({profile.occupation}) typically requires ongoing professional development."

    return _build_opportunity(
        "EDU-001", context, OpportunityType.MISSING_DEDUCTION, "self-education",
        OpportunityPriority.MEDIUM,
        "Self-Education Deduction Opportunity",
        description,
        savings, score,
        [
            "Gather course fee receipts and invoices",
            "Collect textbook and material receipts",
            "Track travel costs to educational activities",
            "Check if course relates to current employment",
        ],
        _deduction_impact(estimated, savings),
        "TR 98/9, D4 Self-education"
    )


def check_depreciation_overlooked(profile, history, all_history=None, context=None):
    if has_expenses_in_categories(history, DEPRECIATION_CATEGORIES):
        return None

    # Category only: a depreciation subcategory does not exclude a purchase here
    large_purchases = [
        e for e in history.expenses
        if e.amount > 300 and not any(cat.lower() in e.category.lower() for cat in DEPRECIATION_CATEGORIES)
    ]
    if not large_purchases:
        return None

    estimated = sum(e.amount for e in large_purchases) * 0.20
    savings = calculate_tax_savings(estimated, profile.taxable_income)
    evidence = [f"{len(large_purchases)} purchases over $300"]
    score = _score(profile, history, evidence, 0.5, "DEP-001", context)
    return _build_opportunity(
        "DEP-001", context, OpportunityType.CATEGORIZATION, "depreciation",
        OpportunityPriority.MEDIUM,
        "Asset Depreciation Opportunity",
        f"You have {len(large_purchases)} purchases over $300 that might be depreciable assets.",
        savings, score,
        [
            "Review purchases over $300 for work-related assets",
            "Identify items with multi-year use",
            "Consider low-value pool for assets <$1,000",
            "Use simplified depreciation rules if eligible",
        ],
        _deduction_impact(estimated, savings, "Estimated annual depreciation"),
        "D6 Low-value pool, TR 2017/2"
    )


def check_internet_phone_gap(profile, history, all_history=None, context=None):
    if not _works_from_home(profile):
        return None

    has_internet_phone = any(
        description_contains(e, ["internet", "phone", "mobile"]) or "utilities" in e.category.lower()
        for e in history.expenses
    )
    if has_internet_phone:
        return None

    estimated = 600
    savings = calculate_tax_savings(estimated, profile.taxable_income)
    evidence = ["Work from home confirmed", "No internet/phone expenses"]
    score = _score(profile, history, evidence, 0.8, "UTIL-001", context)
    return _build_opportunity(
        "UTIL-001", context, OpportunityType.MISSING_DEDUCTION, "work-from-home",
        OpportunityPriority.MEDIUM,
        "Missing Internet & Phone Deductions",
        "You work from home but have no internet or phone expenses claimed. "
        "Work-related portion is deductible.",
        savings, score,
        [
            "Gather 12 months of internet bills",
            "Collect phone bills and identify work calls",
            "Calculate work-use percentage (typically 20-50%)",
            "Keep a 4-week representative diary",
        ],
        _deduction_impact(estimated, savings),
        "PCG 2023/1, D5 Other work-related"
    )


# =============================================================================
# TIMING & DONATIONS
# =============================================================================

# May and June, the run-up to 30 June
EOFY_MONTHS = (5, 6)


def check_eofy_timing(profile, history, all_history=None, context=None):
    if _run_instant(context).month not in EOFY_MONTHS:
        return None

    has_work_expenses = any(
        e.category.startswith("D") or "work" in e.category.lower()
        for e in history.expenses
    )
    if not has_work_expenses:
        return None

    estimated = 500
    savings = calculate_tax_savings(estimated, profile.taxable_income)
    evidence = ["Work expenses detected", "EOFY timing"]
    score = _score(profile, history, evidence, 0.4, "TIME-001", context)
    return _build_opportunity(
        "TIME-001", context, OpportunityType.TIMING, "timing",
        OpportunityPriority.LOW,
        "EOFY Purchase Timing Opportunity",
        "Consider bringing forward work-related purchases to before June 30.",
        savings, score,
        [
            "Identify needed work equipment or supplies",
            "Make purchases before June 30",
            "Keep all receipts",
            "Consider instant asset write-off if eligible",
        ],
        _deduction_impact(estimated, savings, "Immediate deduction"),
        "Timing of deductions"
    )


def check_donations_missing(profile, history, all_history=None, context=None):
    has_donations = any(
        "donation" in e.category.lower() or "charity" in e.category.lower() or e.category == "D8"
        for e in history.expenses
    )
    if has_donations or profile.taxable_income <= 100000:
        return None

    estimated = 500
    savings = calculate_tax_savings(estimated, profile.taxable_income)
    evidence = ["High income bracket", "No donations recorded"]
    score = _score(profile, history, evidence, 0.3, "DON-001", context)
    return _build_opportunity(
        "DON-001", context, OpportunityType.MISSING_DEDUCTION, "donations",
        OpportunityPriority.LOW,
        "Charitable Donation Records",
        "You may have charitable donations that qualify for tax deductions.",
        savings, score,
        [
            "Review bank statements for charitable payments",
            "Gather receipts from DGR-registered charities",
            "Check workplace giving programs",
            "Consider bunching donations for greater impact",
        ],
        _deduction_impact(estimated, savings),
        "D8 Gifts and donations"
    )


# =============================================================================
# OCCUPATION-DRIVEN RULES
# =============================================================================

TRAVEL_INTENSIVE_OCCUPATIONS = ["sales", "consultant", "representative", "tradesperson", "nurse", "carer"]


def check_travel_gap(profile, history, all_history=None, context=None):
    if not _occupation_matches(profile, TRAVEL_INTENSIVE_OCCUPATIONS):
        return None
    if has_expenses_in_categories(history, TRAVEL_CATEGORIES):
        return None

    estimated = 1500
    savings = calculate_tax_savings(estimated, profile.taxable_income)
    evidence = [f"Occupation: {profile.occupation}", "No travel expenses recorded"]

    previous = _previous_year(history, context)
    if previous:
        previous_travel = previous.category_totals.get("D2", 0) or previous.category_totals.get("travel", 0)
        if previous_travel > 0:
            evidence.append(f"Previous year travel: {_money(previous_travel)}")

    score = _score(profile, history, evidence, 0.75, "TRAV-001", context)
    return _build_opportunity(
        "TRAV-001", context, OpportunityType.MISSING_DEDUCTION, "travel",
        OpportunityPriority.HIGH,
        "Missing Work-Related Travel Deductions",
        f"Your occupation ({profile.occupation}) typically involves significant travel. "
        f"No travel expenses have been recorded.",
        savings, score,
        [
            "Review calendar for work trips and client visits",
            "Gather receipts for accommodation, flights, fuel",
            "Calculate vehicle expenses using logbook or cents/km",
            "Check for overnight travel allowances",
        ],
        _deduction_impact(estimated, savings),
        "D2 Work-related travel"
    )


PROFESSIONAL_OCCUPATIONS = ["accountant", "lawyer", "engineer", "architect", "medical", "nurse", "teacher"]


def check_professional_subscriptions(profile, history, all_history=None, context=None):
    if not _occupation_matches(profile, PROFESSIONAL_OCCUPATIONS):
        return None
    if has_expenses_in_categories(history, PROFESSIONAL_CATEGORIES):
        return None

    estimated = 400
    savings = calculate_tax_savings(estimated, profile.taxable_income)
    evidence = [f"Professional occupation: {profile.occupation}", "No subscriptions/memberships recorded"]
    score = _score(profile, history, evidence, 0.7, "PROF-001", context)
    return _build_opportunity(
        "PROF-001", context, OpportunityType.MISSING_DEDUCTION, "professional",
        OpportunityPriority.MEDIUM,
        "Missing Professional Subscriptions",
        "Professionals typically have deductible subscriptions, memberships, and licenses.",
        savings, score,
        [
            "Check professional body membership fees",
            "Review industry magazine/journal subscriptions",
            "Gather professional license renewal receipts",
            "Check union or association fees",
        ],
        _deduction_impact(estimated, savings),
        "D3 Professional subscriptions"
    )


def check_yoy_deduction_drop(profile, history, all_history=None, context=None):
    if not all_history or len(all_history) < 2:
        return None

    comparisons = build_yoy_comparisons(all_history)
    severe = [a for a in detect_yoy_anomalies(history, comparisons) if a.severity == AnomalySeverity.HIGH]
    if not severe:
        return None

    recoverable = sum(a.previous for a in severe) * 0.5
    savings = calculate_tax_savings(recoverable, profile.taxable_income)
    evidence = [f"{a.category}: dropped {round_half_up(a.change * 100)}%" for a in severe]
    score = _score(profile, history, evidence, 0.8, "YOY-001", context)
    return _build_opportunity(
        "YOY-001", context, OpportunityType.YOY_ANOMALY, "yoy-anomaly",
        OpportunityPriority.HIGH,
        "Significant Deduction Drop Detected",
        f"Your deductions in {len(severe)} categories dropped significantly compared to last year. "
        f"You may be missing expenses.",
        savings, score,
        [
            "Review previous year deductions for comparison",
            "Check if any regular expenses were missed",
            "Verify all receipts were captured",
            "Consider if work circumstances changed",
        ],
        _deduction_impact(recoverable, savings, "Potential missing deductions"),
        "Record keeping requirements",
        yoy_comparison=find_previous_year(history, comparisons)
    )


UNIFORM_OCCUPATIONS = ["nurse", "chef", "cook", "tradesperson", "electrician", "plumber", "retail", "police", "security"]


def check_uniform_gap(profile, history, all_history=None, context=None):
    if not _occupation_matches(profile, UNIFORM_OCCUPATIONS):
        return None
    if has_expenses_in_categories(history, CLOTHING_CATEGORIES):
        return None

    estimated = 350
    savings = calculate_tax_savings(estimated, profile.taxable_income)
    evidence = [f"Occupation requires uniform: {profile.occupation}", "No clothing expenses recorded"]
    score = _score(profile, history, evidence, 0.75, "UNI-001", context)
    return _build_opportunity(
        "UNI-001", context, OpportunityType.MISSING_DEDUCTION, "clothing",
        OpportunityPriority.MEDIUM,
        "Missing Uniform & Protective Clothing",
        "Your occupation typically requires deductible uniform or protective clothing.",
        savings, score,
        [
            "Gather receipts for compulsory uniform purchases",
            "Include protective clothing and safety equipment",
            "Track laundry expenses (up to $150 without receipts)",
            "Check occupation-specific clothing requirements",
        ],
        _deduction_impact(estimated, savings),
        "D3 Uniforms and protective clothing"
    )


def check_industry_benchmark(profile, history, all_history=None, context=None):
    if not profile.industry:
        return None

    benchmarks = context.industry_averages if context is not None else INDUSTRY_BENCHMARKS
    benchmark = benchmarks.get(profile.industry.lower()) or DEFAULT_INDUSTRY_BENCHMARK
    actual_ratio = deduction_ratio(history.total_deductions, profile.taxable_income)
    expected = profile.taxable_income * benchmark

    if actual_ratio >= benchmark * 0.5 or expected <= 1000:
        return None

    recoverable = (expected - history.total_deductions) * 0.5
    savings = calculate_tax_savings(recoverable, profile.taxable_income)
    evidence = [
        f"Industry: {profile.industry}",
        f"Current ratio: {actual_ratio * 100:.1f}%",
        f"Benchmark: {benchmark * 100:.1f}%",
    ]
    score = _score(profile, history, evidence, 0.6, "BENCH-001", context)
    return _build_opportunity(
        "BENCH-001", context, OpportunityType.PATTERN_GAP, "benchmark",
        OpportunityPriority.MEDIUM,
        "Deductions Below Industry Average",
        f"Your deductions are significantly below the typical range for {profile.industry} workers. "
        f"You may be missing claimable expenses.",
        savings, score,
        [
            f"Research typical deductions for {profile.industry} workers",
            "Review all work-related expenses thoroughly",
            "Check for commonly missed deductions in your field",
            "Consider a consultation with a tax professional",
        ],
        _deduction_impact(recoverable, savings, "Potential additional deductions"),
        "Record keeping and reasonable claims"
    )


SHIFT_WORK_OCCUPATIONS = ["nurse", "doctor", "paramedic", "police", "security", "hospitality", "chef"]


def check_meal_expense_gap(profile, history, all_history=None, context=None):
    if not _occupation_matches(profile, SHIFT_WORK_OCCUPATIONS):
        return None

    has_meals = any(
        description_contains(e, ["meal", "lunch", "dinner"]) or "meal" in e.category.lower()
        for e in history.expenses
    )
    if has_meals:
        return None

    estimated = 300
    savings = calculate_tax_savings(estimated, profile.taxable_income)
    evidence = ["Shift worker occupation", "No meal expenses recorded"]
    score = _score(profile, history, evidence, 0.5, "MEAL-001", context)
    return _build_opportunity(
        "MEAL-001", context, OpportunityType.MISSING_DEDUCTION, "meals",
        OpportunityPriority.LOW,
        "Missing Meal Expense Deductions",
        "Shift workers may claim meal expenses during overtime or when working away from usual workplace.",
        savings, score,
        [
            "Review timesheets for overtime hours",
            "Check if you received overtime meal allowances",
            "Gather receipts for meals during extended shifts",
            "Verify meal break policies at your workplace",
        ],
        _deduction_impact(estimated, savings),
        "Meal expenses and allowances"
    )


# =============================================================================
# PROPERTY, EQUIPMENT & PATTERNS
# =============================================================================

def check_capital_works(profile, history, all_history=None, context=None):
    if not _has_investment(profile, InvestmentType.PROPERTY):
        return None

    has_property_expenses = any(
        "property" in e.category.lower() or "rental" in e.category.lower()
        or description_contains(e, ["investment property"])
        for e in history.expenses
    )
    has_capital_works = any(
        "capital-works" in e.category.lower()
        or description_contains(e, ["depreciation schedule", "division 43"])
        for e in history.expenses
    )
    if not has_property_expenses or has_capital_works:
        return None

    estimated = 2500
    savings = calculate_tax_savings(estimated, profile.taxable_income)
    evidence = ["Property investment detected", "No capital works deductions"]
    score = _score(profile, history, evidence, 0.7, "PROP-001", context)
    return _build_opportunity(
        "PROP-001", context, OpportunityType.MISSING_DEDUCTION, "property",
        OpportunityPriority.HIGH,
        "Missing Capital Works Deductions",
        "Investment property owners can claim capital works deductions (building depreciation) "
        "at 2.5% per year for 40 years.",
        savings, score,
        [
            "Order a tax depreciation schedule from a quantity surveyor",
            "Gather property purchase documents and construction costs",
            "Claim Division 43 capital works deductions",
            "Consider Division 40 plant and equipment depreciation",
        ],
        _deduction_impact(estimated, savings),
        "Division 43 Capital works deductions"
    )


HOME_OFFICE_EQUIPMENT = ["laptop", "monitor", "desk", "chair", "printer"]


def check_home_office_equipment(profile, history, all_history=None, context=None):
    if not _works_from_home(profile) or not has_expenses_in_categories(history, WFH_CATEGORIES):
        return None

    equipment = [
        e for e in history.expenses
        if e.amount > 300 and description_contains(e, HOME_OFFICE_EQUIPMENT)
    ]
    if not equipment:
        return None

    estimated = sum(e.amount for e in equipment) * 0.15
    savings = calculate_tax_savings(estimated, profile.taxable_income)
    evidence = [f"{e.description}: {_money(e.amount)}" for e in equipment]
    score = _score(profile, history, evidence, 0.65, "WFH-002", context)
    return _build_opportunity(
        "WFH-002", context, OpportunityType.CATEGORIZATION, "work-from-home",
        OpportunityPriority.MEDIUM,
        "Home Office Equipment Depreciation",
        f"You have {len(equipment)} work-related equipment purchases that should be "
        f"depreciated over their useful life.",
        savings, score,
        [
            "Identify work-use percentage for each item",
            "Set up depreciation schedule for equipment",
            "Consider instant asset write-off if under threshold",
            "Keep purchase receipts and usage records",
        ],
        _deduction_impact(estimated, savings, "Annual depreciation claim"),
        "PCG 2023/1, Depreciation of home office equipment"
    )


def check_quarterly_pattern_gap(profile, history, all_history=None, context=None):
    quarters = list(get_quarterly_pattern(history).values())
    average = sum(quarters) / 4
    gaps = [q for q in quarters if q < average * 0.1]

    if not gaps or average <= 500:
        return None

    estimated = average * len(gaps) * 0.5
    savings = calculate_tax_savings(estimated, profile.taxable_income)
    evidence = [f"Average quarterly: ${average:,.0f}", f"{len(gaps)} quarters below 10% of average"]
    score = _score(profile, history, evidence, 0.55, "PATT-001", context)
    return _build_opportunity(
        "PATT-001", context, OpportunityType.PATTERN_GAP, "pattern_gap",
        OpportunityPriority.MEDIUM,
        "Quarterly Expense Pattern Gap",
        f"Your expenses show unusual gaps in {len(gaps)} quarter(s). You may have unrecorded deductions.",
        savings, score,
        [
            "Review credit card and bank statements for the quiet quarters",
            "Check for missing recurring expenses",
            "Verify all receipts were captured",
            "Consider using expense tracking apps",
        ],
        _deduction_impact(estimated, savings, "Potential missing deductions"),
        "Record keeping requirements"
    )


def _is_income_protection(description: str) -> bool:
    description = description.lower()
    return (
        "income protection" in description
        or "disability insurance" in description
        or ("insurance" in description and "income" in description)
    )


def check_income_protection(profile, history, all_history=None, context=None):
    should_consider = (
        profile.taxable_income > 80000
        or profile.employment_type in (EmploymentType.SELF_EMPLOYED, EmploymentType.CONTRACTOR)
    )
    if not should_consider or any(_is_income_protection(e.description) for e in history.expenses):
        return None

    estimated = 1500
    savings = calculate_tax_savings(estimated, profile.taxable_income)
    evidence = [f"Income: {_money(profile.taxable_income)}", f"Employment: {profile.employment_type.value}"]
    score = _score(profile, history, evidence, 0.5, "INS-001", context)
    return _build_opportunity(
        "INS-001", context, OpportunityType.MISSING_DEDUCTION, "insurance",
        OpportunityPriority.MEDIUM,
        "Income Protection Insurance",
        "Premiums for income protection insurance are tax deductible. "
        "This is especially valuable for high earners and self-employed.",
        savings, score,
        [
            "Check if you have income protection insurance",
            "Review superannuation for insurance coverage",
            "Gather premium payment statements",
            "Note: Life insurance is NOT deductible, only income protection",
        ],
        _deduction_impact(estimated, savings),
        "Income protection insurance premiums"
    )


def check_crypto_records(profile, history, all_history=None, context=None):
    if not _has_investment(profile, InvestmentType.CRYPTO):
        return None

    has_crypto = any(
        description_contains(e, ["crypto", "bitcoin", "exchange"]) or "crypto" in e.category.lower()
        for e in history.expenses
    )
    if has_crypto:
        return None

    estimated = 500
    savings = calculate_tax_savings(estimated, profile.taxable_income)
    evidence = ["Cryptocurrency investments declared", "No transaction fees or expenses recorded"]
    score = _score(profile, history, evidence, 0.7, "CRYPTO-001", context)
    return _build_opportunity(
        "CRYPTO-001", context, OpportunityType.MISSING_DEDUCTION, "investment-income",
        OpportunityPriority.HIGH,
        "Missing Cryptocurrency Transaction Records",
        "Crypto investors can claim transaction fees, exchange fees, and costs related to managing investments.",
        savings, score,
        [
            "Export transaction history from all exchanges",
            "Calculate total trading fees paid",
            "Record costs of wallets, hardware devices, software",
            "Track fees for transferring between wallets",
        ],
        _deduction_impact(estimated, savings),
        "Crypto asset taxation"
    )


TRADE_OCCUPATIONS = ["electrician", "plumber", "carpenter", "mechanic", "builder", "welder", "painter"]


def check_tools_equipment(profile, history, all_history=None, context=None):
    if not _occupation_matches(profile, TRADE_OCCUPATIONS):
        return None

    has_tools = any(
        description_contains(e, ["tool", "equipment"]) or "tools" in e.category.lower()
        for e in history.expenses
    )
    if has_tools:
        return None

    estimated = 1200
    savings = calculate_tax_savings(estimated, profile.taxable_income)
    evidence = [f"Tradesperson: {profile.occupation}", "No tool expenses recorded"]
    score = _score(profile, history, evidence, 0.85, "TOOLS-001", context)
    return _build_opportunity(
        "TOOLS-001", context, OpportunityType.MISSING_DEDUCTION, "tools",
        OpportunityPriority.HIGH,
        "Missing Tools and Equipment Deductions",
        "Tradespersons typically have significant tool and equipment expenses. "
        "These are fully deductible if work-related.",
        savings, score,
        [
            "Gather receipts for all tool purchases",
            "Include safety equipment and protective gear",
            "Track tool repairs and maintenance",
            "Consider tool insurance premiums",
        ],
        _deduction_impact(estimated, savings),
        "Tools and equipment deductions"
    )


# =============================================================================
# RELEVANCE FUNCTIONS (ranking only)
# =============================================================================

def _occupation_relevance(keywords: List[str], matched: float, unmatched: float) -> RelevanceFunction:
    return lambda profile, history: matched if _occupation_matches(profile, keywords) else unmatched


def _self_education_relevance(profile: UserProfile, history: ExpenseHistory) -> float:
    if profile.is_studying:
        return 1.0
    return 0.7 if _occupation_matches(profile, EDUCATION_INTENSIVE_FIELDS) else 0.2


def _shares_relevance(profile: UserProfile, history: ExpenseHistory) -> float:
    return 1.0 if profile.has_investments and _has_investment(profile, InvestmentType.SHARES) else 0.1


# =============================================================================
# ALL 20 RULES
# =============================================================================

ALL_DETECTION_RULES: List[DetectionRule] = [
    DetectionRule(
        id="WFH-001", name="Missing Work From Home Deductions", category="work-from-home",
        priority=OpportunityPriority.CRITICAL, check=check_wfh_missing,
        relevance_score=lambda p, h: _by_arrangement(p, 1.0, 0.7, 0.1)
    ),
    DetectionRule(
        id="VEH-001", name="Vehicle Logbook Gap", category="vehicle-expenses",
        priority=OpportunityPriority.HIGH, check=check_vehicle_logbook_gap,
        relevance_score=lambda p, h: 0.9 if p.has_vehicle else 0.2
    ),
    DetectionRule(
        id="DIV-001", name="Missing Dividend Statements", category="investment-income",
        priority=OpportunityPriority.HIGH, check=check_dividend_pattern_gap,
        relevance_score=_shares_relevance
    ),
    DetectionRule(
        id="EDU-001", name="Self-Education Opportunity", category="self-education",
        priority=OpportunityPriority.MEDIUM, check=check_self_education,
        relevance_score=_self_education_relevance
    ),
    DetectionRule(
        id="DEP-001", name="Depreciation Opportunities", category="depreciation",
        priority=OpportunityPriority.MEDIUM, check=check_depreciation_overlooked
    ),
    DetectionRule(
        id="UTIL-001", name="Missing Internet/Phone Deductions", category="work-from-home",
        priority=OpportunityPriority.MEDIUM, check=check_internet_phone_gap,
        relevance_score=lambda p, h: _by_arrangement(p, 0.9, 0.7, 0.3)
    ),
    DetectionRule(
        id="TIME-001", name="EOFY Purchase Timing", category="timing",
        priority=OpportunityPriority.LOW, check=check_eofy_timing
    ),
    DetectionRule(
        id="DON-001", name="Charitable Donations", category="donations",
        priority=OpportunityPriority.LOW, check=check_donations_missing,
        relevance_score=lambda p, h: 0.6 if p.taxable_income > 100000 else 0.3
    ),
    DetectionRule(
        id="TRAV-001", name="Missing Travel Deductions", category="travel",
        priority=OpportunityPriority.HIGH, check=check_travel_gap,
        relevance_score=_occupation_relevance(["sales", "consultant", "tradesperson", "nurse", "teacher"], 0.9, 0.3),
        industry_relevance=("sales", "consulting", "trades", "healthcare", "education")
    ),
    DetectionRule(
        id="PROF-001", name="Missing Professional Subscriptions", category="professional",
        priority=OpportunityPriority.MEDIUM, check=check_professional_subscriptions,
        relevance_score=_occupation_relevance(
            ["accountant", "lawyer", "engineer", "architect", "medical", "teacher"], 0.85, 0.3
        )
    ),
    DetectionRule(
        id="YOY-001", name="Year-over-Year Deduction Drop", category="yoy-anomaly",
        priority=OpportunityPriority.HIGH, check=check_yoy_deduction_drop
    ),
    DetectionRule(
        id="UNI-001", name="Missing Uniform Deductions", category="clothing",
        priority=OpportunityPriority.MEDIUM, check=check_uniform_gap,
        relevance_score=_occupation_relevance(["nurse", "chef", "tradesperson", "retail", "police", "security"], 0.9, 0.2),
        industry_relevance=("healthcare", "hospitality", "construction", "retail", "manufacturing")
    ),
    DetectionRule(
        id="BENCH-001", name="Below Industry Deduction Benchmark", category="benchmark",
        priority=OpportunityPriority.MEDIUM, check=check_industry_benchmark
    ),
    DetectionRule(
        id="MEAL-001", name="Missing Meal Expense Deductions", category="meals",
        priority=OpportunityPriority.LOW, check=check_meal_expense_gap,
        relevance_score=lambda p, h: 0.7 if p.work_arrangement == WorkArrangement.MIXED else 0.3
    ),
    DetectionRule(
        id="PROP-001", name="Capital Works Deduction Opportunity", category="property",
        priority=OpportunityPriority.HIGH, check=check_capital_works,
        relevance_score=lambda p, h: 1.0 if _has_investment(p, InvestmentType.PROPERTY) else 0.1
    ),
    DetectionRule(
        id="WFH-002", name="Home Office Equipment Depreciation", category="work-from-home",
        priority=OpportunityPriority.MEDIUM, check=check_home_office_equipment,
        relevance_score=lambda p, h: _by_arrangement(p, 0.85, 0.6, 0.2)
    ),
    DetectionRule(
        id="PATT-001", name="Quarterly Expense Pattern Gap", category="pattern_gap",
        priority=OpportunityPriority.MEDIUM, check=check_quarterly_pattern_gap
    ),
    DetectionRule(
        id="INS-001", name="Income Protection Insurance Deduction", category="insurance",
        priority=OpportunityPriority.MEDIUM, check=check_income_protection
    ),
    DetectionRule(
        id="CRYPTO-001", name="Cryptocurrency Record Gap", category="investment-income",
        priority=OpportunityPriority.HIGH, check=check_crypto_records,
        relevance_score=lambda p, h: 1.0 if _has_investment(p, InvestmentType.CRYPTO) else 0.1
    ),
    DetectionRule(
        id="TOOLS-001", name="Tools and Equipment Deduction", category="tools",
        priority=OpportunityPriority.HIGH, check=check_tools_equipment,
        relevance_score=_occupation_relevance(
            ["electrician", "plumber", "carpenter", "mechanic", "builder", "tradesperson"], 1.0, 0.2
        ),
        industry_relevance=("construction", "manufacturing", "automotive", "electrical", "plumbing")
    ),
]
