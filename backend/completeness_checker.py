"""
ReturnReady - Completeness Checker
==================================
Pre-lodgment review: checks every income source and D1-D15 deduction
category, spots documents that are probably missing, estimates the
refund, and scores how likely the return is to attract an ATO review.

This module consumes an already computed list of optimization
opportunities. It does not run the detection rules itself.
"""

import logging
import math
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from models import InvestmentType, OptimizationOpportunity, WorkArrangement
from completeness_models import (
    AtoCategoryCode,
    ChecklistStatus,
    ColorStatus,
    CompletenessReport,
    CompletenessScore,
    DeductionCategoryCheck,
    DeductionDataMap,
    DocumentPriority,
    ExportData,
    IncomeCategoryCode,
    IncomeDataMap,
    IncomeSourceCheck,
    MissingDocument,
    OptimizationSuggestion,
    PrefillStatus,
    RiskAssessment,
    RiskFactor,
    RiskImpact,
    RiskLevel,
    TaxEstimate,
    TaxOffset,
    TypicalRange,
    UserTaxProfile,
)
from tax_constants import (
    DEDUCTION_CATEGORIES,
    INCOME_SOURCES,
    PREFILL_INCOME_CODES,
    calculate_income_tax,
    calculate_medicare_levy,
    calculate_medicare_levy_surcharge,
    round_half_up,
)

logger = logging.getLogger(__name__)

MINUTES_PER_OPEN_ITEM = 5

INCOME_ICONS = {
    "SALARY": "briefcase",
    "DIVIDENDS": "trending-up",
    "INTEREST": "landmark",
    "RENTAL": "building",
    "CAPITAL_GAINS": "line-chart",
    "FREELANCE": "user",
    "TRUST_DISTRIBUTIONS": "users",
    "FOREIGN_INCOME": "globe",
    "GOVERNMENT_PAYMENTS": "heart",
    "SUPER_PENSION": "wallet",
    "SUPER_LUMPSUM": "wallet",
    "EMPLOYMENT_TERMINATION": "file-text",
    "ROYALTIES": "pen-tool",
    "OTHER": "help-circle",
}

DEDUCTION_ICONS = {
    "D1": "car", "D2": "plane", "D3": "shirt", "D4": "book-open", "D5": "home",
    "D6": "package", "D7": "trending-up", "D8": "heart", "D9": "file-text",
    "D10": "wallet", "D11": "globe", "D12": "building", "D13": "briefcase",
    "D14": "rocket", "D15": "mountain",
}

ATO_INCOME_GUIDE = "https://www.ato.gov.au/individuals/income-deductions-offsets-and-records/income-you-must-declare"
INCOME_REFERENCES = {
    "SALARY": f"{ATO_INCOME_GUIDE}/salary-and-wages",
    "DIVIDENDS": f"{ATO_INCOME_GUIDE}/dividends",
    "INTEREST": f"{ATO_INCOME_GUIDE}/interest",
    "RENTAL": f"{ATO_INCOME_GUIDE}/rental-income",
    "CAPITAL_GAINS": f"{ATO_INCOME_GUIDE}/capital-gains",
}


# =============================================================================
# SCORING
# =============================================================================

def _percentage(part: int, whole: int) -> float:
    """part/whole as 0-100; an empty component counts as fully complete."""
    if whole <= 0:
        return 100.0
    return min(100.0, max(0.0, part / whole * 100))


def calculate_completeness_score(
    income_checks: List[IncomeSourceCheck],
    deduction_checks: List[DeductionCategoryCheck],
    missing_documents: List[MissingDocument],
    optimization_suggestions: List[OptimizationSuggestion]
) -> CompletenessScore:
    """Blend four equally weighted completion ratios into a 0-100 score."""
    required_income = [i for i in income_checks if i.required]
    income_score = round_half_up(_percentage(
        sum(1 for i in required_income if i.status == ChecklistStatus.COMPLETE),
        len(required_income)
    ))

    deductions_score = round_half_up(_percentage(
        sum(1 for d in deduction_checks
            if d.status in (ChecklistStatus.COMPLETE, ChecklistStatus.NOT_APPLICABLE)),
        len(deduction_checks)
    ))

    checks = list(income_checks) + list(deduction_checks)
    documents_score = round_half_up(_percentage(
        sum(c.receipts_attached for c in checks),
        sum(c.receipts_required for c in checks)
    ))

    optimization_score = round_half_up(_percentage(
        sum(1 for o in optimization_suggestions if o.implemented),
        len(optimization_suggestions)
    ))

    overall = round_half_up(0.25 * (income_score + deductions_score + documents_score + optimization_score))

    if overall < 50:
        color_status = ColorStatus.RED
    elif overall < 80:
        color_status = ColorStatus.AMBER
    else:
        color_status = ColorStatus.GREEN

    open_statuses = (ChecklistStatus.MISSING, ChecklistStatus.PARTIAL)
    return CompletenessScore(
        overall=overall,
        income_score=income_score,
        deductions_score=deductions_score,
        documents_score=documents_score,
        optimization_score=optimization_score,
        color_status=color_status,
        missing_items_count=sum(1 for c in checks if c.status in open_statuses) + len(missing_documents),
        required_items_count=sum(1 for c in checks if c.required),
        completed_items_count=sum(1 for c in checks if c.status == ChecklistStatus.COMPLETE)
    )


def calculate_tax_estimate(
    taxable_income: float,
    total_deductions: float,
    tax_withheld: float,
    offsets: Optional[List[TaxOffset]] = None,
    has_private_health_insurance: bool = False
) -> TaxEstimate:
    """
    Estimate the refund or amount owing.

    Tax is calculated on taxable income less deductions (clamped at zero),
    plus the Medicare levy and, without private cover, the surcharge.
    """
    offsets = offsets or []
    net_income = max(0.0, taxable_income - total_deductions)

    tax_payable = calculate_income_tax(net_income)
    medicare_levy = calculate_medicare_levy(net_income)
    surcharge = calculate_medicare_levy_surcharge(net_income, has_private_health_insurance)

    total_tax = tax_payable + medicare_levy + surcharge - sum(o.amount for o in offsets)

    return TaxEstimate(
        taxable_income=taxable_income,
        total_deductions=total_deductions,
        tax_payable=tax_payable,
        tax_withheld=tax_withheld,
        estimated_refund=round(max(0.0, tax_withheld - total_tax), 2),
        estimated_tax_owing=round(max(0.0, total_tax - tax_withheld), 2),
        medicare_levy=medicare_levy,
        medicare_levy_surcharge=surcharge if surcharge > 0 else None,
        offsets=offsets
    )


def assess_risk(
    profile: UserTaxProfile,
    income_checks: List[IncomeSourceCheck],
    deduction_checks: List[DeductionCategoryCheck],
    missing_documents: List[MissingDocument]
) -> RiskAssessment:
    """Score ATO review risk from a base of 50 using named factors."""
    factors: List[RiskFactor] = []
    score = 50

    if profile.taxable_income > 180000:
        factors.append(RiskFactor(
            factor="High Income", impact=RiskImpact.NEGATIVE,
            description="Income over $180k has higher scrutiny"
        ))
        score += 10

    missing_income = [i for i in income_checks if i.required and i.status == ChecklistStatus.MISSING]
    if missing_income:
        factors.append(RiskFactor(
            factor="Missing Income", impact=RiskImpact.NEGATIVE,
            description=f"{len(missing_income)} required income sources not reported"
        ))
        score += 15

    total_claimed = sum(d.claimed_amount for d in deduction_checks)
    ratio = total_claimed / profile.taxable_income if profile.taxable_income > 0 else 0.0

    if ratio > 0.15:
        factors.append(RiskFactor(
            factor="High Deduction Ratio", impact=RiskImpact.NEGATIVE,
            description=f"Deductions are {ratio * 100:.1f}% of income"
        ))
        score += 10

    wfh = next((d for d in deduction_checks if d.deduction_code == AtoCategoryCode.D5), None)
    if wfh is not None and wfh.claimed_amount > 1000 and wfh.receipts_attached < 3:
        factors.append(RiskFactor(
            factor="Limited WFH Documentation", impact=RiskImpact.NEGATIVE,
            description="High WFH claim with limited receipts"
        ))
        score += 10

    if len(missing_documents) > 3:
        factors.append(RiskFactor(
            factor="Missing Documents", impact=RiskImpact.NEGATIVE,
            description=f"{len(missing_documents)} documents not provided"
        ))
        score += 10

    if profile.has_investments and InvestmentType.CRYPTO in profile.investment_types:
        factors.append(RiskFactor(
            factor="Crypto Investments", impact=RiskImpact.NEUTRAL,
            description="Cryptocurrency requires accurate record keeping"
        ))
        score += 5

    if profile.has_rental_property:
        factors.append(RiskFactor(
            factor="Rental Property", impact=RiskImpact.NEUTRAL,
            description="Rental properties are commonly reviewed"
        ))
        score += 5

    if profile.previous_year_lodged:
        factors.append(RiskFactor(
            factor="Previous Lodgment", impact=RiskImpact.POSITIVE,
            description="Previous tax return lodged on time"
        ))
        score -= 10

    if ratio < 0.05:
        factors.append(RiskFactor(
            factor="Conservative Claims", impact=RiskImpact.POSITIVE,
            description="Deduction ratio is conservative"
        ))
        score -= 5

    if score >= 70:
        level = RiskLevel.HIGH
        likelihood = "Elevated - Review documentation carefully"
    elif score >= 40:
        level = RiskLevel.MEDIUM
        likelihood = "Standard - Normal review probability"
    else:
        level = RiskLevel.LOW
        likelihood = "Low - Unlikely to be reviewed"

    recommendations = []
    if missing_documents:
        recommendations.append("Upload all missing documents before lodging")
    if ratio > 0.15:
        recommendations.append("Ensure high deduction claims are well documented")
    if missing_income:
        recommendations.append("Verify all income sources are reported")
    if not recommendations:
        recommendations.append("Your return appears ready for lodgment")

    return RiskAssessment(
        level=level,
        score=max(0, min(100, score)),
        factors=factors,
        ato_review_likelihood=likelihood,
        recommendations=recommendations
    )


# =============================================================================
# CHECKLIST GENERATION
# =============================================================================

def generate_income_checks(profile: UserTaxProfile, income_data: IncomeDataMap) -> List[IncomeSourceCheck]:
    """One check per income source in the catalog."""
    checks = []
    for source in INCOME_SOURCES:
        code = IncomeCategoryCode(source["code"])
        data = income_data.get(code)
        has_amount = data is not None and data.amount > 0
        has_documents = data is not None and data.documents > 0

        if not source["required"] and not has_amount:
            status = ChecklistStatus.NOT_APPLICABLE
        elif has_amount and has_documents:
            status = ChecklistStatus.COMPLETE
        elif has_amount:
            status = ChecklistStatus.PARTIAL
        else:
            status = ChecklistStatus.MISSING

        action = None
        if status == ChecklistStatus.MISSING:
            action = "Add income details"
        elif status == ChecklistStatus.PARTIAL:
            action = "Upload supporting documents"

        checks.append(IncomeSourceCheck(
            id=f"income-{code.value}",
            title=source["name"],
            description=f"Check {source['name'].lower()} documentation",
            status=status,
            required=source["required"],
            category="Income",
            income_code=code,
            prefill_available=code.value in PREFILL_INCOME_CODES,
            prefill_status=PrefillStatus.IMPORTED if has_amount else None,
            document_types=source["document_types"],
            receipts_attached=data.documents if data else 0,
            receipts_required=1 if source["required"] else 0,
            claimed_amount=data.amount if data else 0.0,
            action_needed=action,
            action_link="/income",
            icon=INCOME_ICONS.get(code.value, "help-circle"),
            help_text=f"You need {', '.join(source['document_types'])} for {source['name']}",
            ato_reference=INCOME_REFERENCES.get(code.value, "")
        ))
    return checks


def generate_deduction_checks(profile: UserTaxProfile, deduction_data: DeductionDataMap) -> List[DeductionCategoryCheck]:
    """
    One check per D1-D15 category.

    D1 becomes required when the taxpayer has a vehicle and D4 when they
    are studying.
    """
    checks = []
    for category in DEDUCTION_CATEGORIES:
        code = AtoCategoryCode(category["code"])
        data = deduction_data.get(code)
        amount = data.amount if data else 0.0
        receipts = data.receipts if data else 0
        has_workpaper = bool(data and data.workpaper_complete)

        if amount <= 0:
            status = ChecklistStatus.NOT_APPLICABLE
        elif has_workpaper and receipts > 0:
            status = ChecklistStatus.COMPLETE
        elif not has_workpaper:
            status = ChecklistStatus.PARTIAL
        else:
            status = ChecklistStatus.MISSING

        required = (
            (code == AtoCategoryCode.D1 and profile.has_vehicle)
            or (code == AtoCategoryCode.D4 and profile.is_studying)
        )

        low, high = category["typical_range"]
        checks.append(DeductionCategoryCheck(
            id=f"deduction-{code.value}",
            title=f"{code.value}: {category['name']}",
            description=f"Check {category['name'].lower()} deductions",
            status=status,
            required=required,
            category="Deductions",
            deduction_code=code,
            has_workpaper=has_workpaper,
            workpaper_complete=has_workpaper,
            typical_range=TypicalRange(min=low, max=high),
            claimed_amount=amount,
            receipts_attached=receipts,
            receipts_required=min(3, math.ceil(amount / 500)) if amount > 0 else 0,
            action_needed="Complete workpaper" if status == ChecklistStatus.PARTIAL else None,
            action_link=f"/deductions/{code.value.lower()}",
            icon=DEDUCTION_ICONS.get(code.value, "receipt"),
            help_text=f"Typical range: ${low:,}-${high:,}",
            ato_reference=f"https://www.ato.gov.au/individuals-and-families/deductions-you-can-claim/{code.value.lower()}"
        ))
    return checks


def detect_missing_documents(
    profile: UserTaxProfile,
    income_data: IncomeDataMap,
    deduction_data: DeductionDataMap
) -> List[MissingDocument]:
    """Documents the return probably needs, inferred from profile and history."""
    missing = []

    dividends = income_data.get(IncomeCategoryCode.DIVIDENDS)
    if dividends and dividends.last_year_amount and dividends.last_year_amount > 0 and not dividends.amount:
        missing.append(MissingDocument(
            id="missing-dividends",
            document_type="Dividend Statements",
            description="Expected dividend income based on previous year",
            expected_source="Computershare, Link Market Services",
            priority=DocumentPriority.HIGH,
            pattern_based=True,
            detection_reason=f"Last year you reported ${dividends.last_year_amount:,.2f} in dividends",
            icon="trending-up"
        ))

    interest = income_data.get(IncomeCategoryCode.INTEREST)
    if interest and interest.last_year_amount and interest.last_year_amount > 100 and not interest.amount:
        missing.append(MissingDocument(
            id="missing-interest",
            document_type="Bank Interest Summaries",
            description="Expected interest income based on previous year",
            expected_source="Your banks",
            priority=DocumentPriority.MEDIUM,
            pattern_based=True,
            detection_reason=f"Last year you earned ${interest.last_year_amount:,.2f} in interest",
            icon="landmark"
        ))

    vehicle = deduction_data.get(AtoCategoryCode.D1)
    if vehicle and vehicle.amount > 2000 and vehicle.receipts < 2:
        missing.append(MissingDocument(
            id="missing-logbook",
            document_type="Vehicle Logbook",
            description="Logbook required for vehicle expense claims over $2,000",
            expected_source="Your records",
            priority=DocumentPriority.HIGH,
            pattern_based=True,
            detection_reason="Vehicle expenses over $2,000 require logbook documentation",
            icon="car"
        ))

    if profile.work_arrangement in (WorkArrangement.REMOTE, WorkArrangement.HYBRID):
        wfh = deduction_data.get(AtoCategoryCode.D5)
        if (wfh.receipts if wfh else 0) < 3:
            missing.append(MissingDocument(
                id="missing-wfh",
                document_type="WFH Expense Records",
                description="Work from home expense documentation",
                expected_source="Utility bills, internet receipts",
                priority=DocumentPriority.MEDIUM,
                pattern_based=True,
                detection_reason="You work from home but have limited WFH documentation",
                icon="home"
            ))

    rental = income_data.get(IncomeCategoryCode.RENTAL)
    if profile.has_rental_property and not (rental and rental.amount):
        missing.append(MissingDocument(
            id="missing-rental",
            document_type="Rental Property Statements",
            description="Rental income and expense documentation",
            expected_source="Property manager",
            priority=DocumentPriority.HIGH,
            pattern_based=False,
            detection_reason="Rental property owner needs to report rental income",
            icon="building"
        ))

    if InvestmentType.CRYPTO in profile.investment_types:
        missing.append(MissingDocument(
            id="missing-crypto",
            document_type="Cryptocurrency Transaction Records",
            description="All crypto buy/sell/trade transactions",
            expected_source="Exchanges, wallets",
            priority=DocumentPriority.HIGH,
            pattern_based=False,
            detection_reason="Crypto investments require complete transaction history",
            icon="bitcoin"
        ))

    return missing


def generate_optimization_suggestions(
    opportunities: List[OptimizationOpportunity],
    implemented_ids: Optional[Iterable[str]] = None
) -> List[OptimizationSuggestion]:
    implemented = set(implemented_ids or [])
    return [
        OptimizationSuggestion(
            id=f"opt-{opp.id}",
            opportunity_id=opp.id,
            title=opp.title,
            description=opp.description,
            estimated_tax_savings=opp.estimated_savings,
            priority=opp.priority,
            category=opp.category,
            action_text=opp.action_items[0] if opp.action_items else "Review opportunity",
            action_link=f"/optimization/{opp.id}",
            implemented=opp.id in implemented
        )
        for opp in opportunities
    ]


# =============================================================================
# EXPORTS
# =============================================================================

def generate_checklist_export(report: CompletenessReport) -> str:
    """Plain-text checklist of every item in the report."""
    lines = [
        f"TAX RETURN COMPLETENESS CHECKLIST - FY {report.tax_year}",
        f"Generated: {report.generated_at:%Y-%m-%d %H:%M}",
        "",
        f"OVERALL SCORE: {report.score.overall}% ({report.score.color_status.value.upper()})",
        f"Missing Items: {report.score.missing_items_count}",
        "",
        "=== INCOME SOURCES ===",
    ]
    for check in report.income_checks:
        docs = f" ({check.receipts_attached} docs)" if check.receipts_attached > 0 else ""
        lines.append(f"[{check.status.value.upper()}] {check.title} - ${check.claimed_amount:,.2f}{docs}")

    lines += ["", "=== DEDUCTION CATEGORIES ==="]
    for check in report.deduction_checks:
        lines.append(f"[{check.status.value.upper()}] {check.title} - ${check.claimed_amount:,.2f}")

    lines += ["", "=== MISSING DOCUMENTS ==="]
    for doc in report.missing_documents:
        lines.append(f"[{doc.priority.value.upper()}] {doc.document_type}: {doc.description}")

    estimate = report.tax_estimate
    lines += [
        "",
        "=== TAX ESTIMATE ===",
        f"Taxable Income: ${estimate.taxable_income:,.2f}",
        f"Total Deductions: ${estimate.total_deductions:,.2f}",
        f"Tax Payable: ${estimate.tax_payable:,.2f}",
        f"Medicare Levy: ${estimate.medicare_levy:,.2f}",
        f"Estimated Refund: ${estimate.estimated_refund:,.2f}",
        f"Estimated Tax Owing: ${estimate.estimated_tax_owing:,.2f}",
        "",
        "=== RISK ASSESSMENT ===",
        f"Risk Level: {report.risk_assessment.level.value.upper()}",
        f"ATO Review Likelihood: {report.risk_assessment.ato_review_likelihood}",
        "",
        "Recommendations:",
    ]
    lines += [f"- {r}" for r in report.risk_assessment.recommendations]

    return "\n".join(lines)


def generate_accountant_summary(report: CompletenessReport) -> str:
    """Short review summary for the accountant."""
    estimate = report.tax_estimate
    lines = [
        f"TAX RETURN SUMMARY - FY {report.tax_year}",
        f"Client Review Ready: {'YES' if report.score.overall >= 80 else 'NO'}",
        "",
        "KEY METRICS:",
        f"- Completeness Score: {report.score.overall}%",
        f"- Taxable Income: ${estimate.taxable_income:,.2f}",
        f"- Total Deductions: ${estimate.total_deductions:,.2f}",
        f"- Estimated Refund: ${estimate.estimated_refund:,.2f}",
        "",
        "AREAS REQUIRING ATTENTION:",
    ]
    if report.score.missing_items_count > 0 and report.missing_documents:
        lines += [f"- {m.document_type} ({m.priority.value})" for m in report.missing_documents]
    elif report.score.missing_items_count > 0:
        lines.append(f"- {report.score.missing_items_count} checklist items incomplete")
    else:
        lines.append("- None - all critical items complete")

    lines += ["", "OPTIMIZATION OPPORTUNITIES:"]
    pending = [o for o in report.optimization_suggestions if not o.implemented][:5]
    lines += [f"- {o.title}: ${o.estimated_tax_savings:,.2f} savings" for o in pending]

    lines += ["", f"RISK LEVEL: {report.risk_assessment.level.value.upper()}"]
    lines += [f"- {r}" for r in report.risk_assessment.recommendations]

    return "\n".join(lines)


# =============================================================================
# MAIN GENERATION FUNCTION
# =============================================================================

def generate_completeness_report(
    profile: UserTaxProfile,
    income_data: IncomeDataMap,
    deduction_data: DeductionDataMap,
    opportunities: List[OptimizationOpportunity],
    tax_withheld: float,
    offsets: Optional[List[TaxOffset]] = None,
    implemented_opportunity_ids: Optional[Iterable[str]] = None,
    generated_at: Optional[datetime] = None
) -> CompletenessReport:
    """
    Build the full pre-lodgment review.

    Args:
        profile: Taxpayer answers
        income_data: Entered amounts and document counts per income category
        deduction_data: Entered amounts, workpaper state and receipts per D-category
        opportunities: Output of the optimization engine
        tax_withheld: PAYG withheld for the year
        offsets: Tax offsets to subtract from tax payable
        implemented_opportunity_ids: Opportunities the taxpayer has already acted on
        generated_at: Report timestamp (defaults to now)

    Returns:
        CompletenessReport with both text exports filled in
    """
    income_checks = generate_income_checks(profile, income_data)
    deduction_checks = generate_deduction_checks(profile, deduction_data)
    missing_documents = detect_missing_documents(profile, income_data, deduction_data)
    suggestions = generate_optimization_suggestions(opportunities, implemented_opportunity_ids)

    score = calculate_completeness_score(income_checks, deduction_checks, missing_documents, suggestions)

    total_deductions = sum(d.amount for d in deduction_data.values())
    tax_estimate = calculate_tax_estimate(
        profile.taxable_income,
        total_deductions,
        tax_withheld,
        offsets,
        profile.has_private_health_insurance
    )

    risk = assess_risk(profile, income_checks, deduction_checks, missing_documents)

    closed = (ChecklistStatus.COMPLETE, ChecklistStatus.NOT_APPLICABLE)
    open_items = sum(1 for c in list(income_checks) + list(deduction_checks) if c.status not in closed)
    completion_minutes = (open_items + len(missing_documents)) * MINUTES_PER_OPEN_ITEM

    report = CompletenessReport(
        tax_year=profile.tax_year,
        generated_at=generated_at or datetime.now(timezone.utc),
        score=score,
        income_checks=income_checks,
        deduction_checks=deduction_checks,
        missing_documents=missing_documents,
        optimization_suggestions=suggestions,
        tax_estimate=tax_estimate,
        risk_assessment=risk,
        estimated_completion_time=completion_minutes
    )
    report.export_data = ExportData(
        checklist_data=generate_checklist_export(report),
        summary_data=generate_accountant_summary(report)
    )

    logger.info(
        f"Completeness report FY{profile.tax_year}: score {score.overall} ({score.color_status.value}), "
        f"risk {risk.level.value}, {len(missing_documents)} missing documents"
    )
    return report
