"""
ReturnReady - Year-over-Year Comparison
=======================================
Aligns per-category deduction totals across tax years and flags
categories whose spend collapsed against the immediately preceding year.
"""

from typing import Dict, List, Optional

from models import AnomalySeverity, ExpenseHistory, YearOverYearComparison, YoYAnomaly

# A prior-year category must exceed this to be considered
MIN_PRIOR_CATEGORY_TOTAL = 500
# Flag when this year is below this share of last year
COLLAPSE_RATIO = 0.3


def build_yoy_comparisons(all_history: Optional[List[ExpenseHistory]]) -> List[YearOverYearComparison]:
    """One comparison per supplied year, most recent first."""
    if not all_history:
        return []

    comparisons = []
    for history in sorted(all_history, key=lambda h: h.tax_year, reverse=True):
        category_totals: Dict[str, float] = {}
        for expense in history.expenses:
            category_totals[expense.category] = category_totals.get(expense.category, 0.0) + expense.amount

        comparisons.append(YearOverYearComparison(
            tax_year=history.tax_year,
            total_deductions=history.total_deductions,
            category_totals=category_totals,
            expense_count=len(history.expenses),
            has_data=True
        ))

    return comparisons


def find_previous_year(
    current_history: ExpenseHistory,
    comparisons: List[YearOverYearComparison]
) -> Optional[YearOverYearComparison]:
    for comparison in comparisons:
        if comparison.tax_year == current_history.tax_year - 1:
            return comparison
    return None


def get_anomaly_severity(change: float) -> AnomalySeverity:
    if change < -0.7:
        return AnomalySeverity.HIGH
    elif change < -0.5:
        return AnomalySeverity.MEDIUM
    return AnomalySeverity.LOW


def detect_yoy_anomalies(
    current_history: ExpenseHistory,
    comparisons: List[YearOverYearComparison]
) -> List[YoYAnomaly]:
    """
    Compare this year's category totals against last year's.

    Only the year immediately before current_history.tax_year is
    consulted, even when older years are present. Categories are keyed
    by their exact category string here, not by substring.
    """
    previous_year = find_previous_year(current_history, comparisons)
    if previous_year is None or not previous_year.has_data:
        return []

    current_totals: Dict[str, float] = {}
    for expense in current_history.expenses:
        current_totals[expense.category] = current_totals.get(expense.category, 0.0) + expense.amount

    anomalies = []
    for category, previous_amount in previous_year.category_totals.items():
        current_amount = current_totals.get(category, 0.0)

        if previous_amount > MIN_PRIOR_CATEGORY_TOTAL and current_amount < previous_amount * COLLAPSE_RATIO:
            change = (current_amount - previous_amount) / previous_amount
            anomalies.append(YoYAnomaly(
                category=category,
                current=current_amount,
                previous=previous_amount,
                change=change,
                severity=get_anomaly_severity(change)
            ))

    return anomalies


def generate_yoy_report(comparisons: List[YearOverYearComparison]) -> str:
    """Plain-text summary of each year, largest categories first."""
    lines = ["YEAR-OVER-YEAR COMPARISON REPORT", "=" * 50, ""]

    for comparison in comparisons:
        lines.append(f"Tax Year {comparison.tax_year}:")
        lines.append(f"  Total Deductions: ${comparison.total_deductions:,.2f}")
        lines.append(f"  Expense Count: {comparison.expense_count}")
        lines.append(f"  Categories: {len(comparison.category_totals)}")
        ranked = sorted(comparison.category_totals.items(), key=lambda item: item[1], reverse=True)
        for category, total in ranked:
            lines.append(f"    {category}: ${total:,.2f}")
        lines.append("")

    return "\n".join(lines)
