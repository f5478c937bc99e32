"""
ReturnReady - Expense Queries
=============================
Filters and aggregates over an expense ledger.

Category matching is a loose, case-insensitive substring test against the
category and subcategory. "D3" matches both clothing and professional
rules, for example. The detection rules are tuned against this behaviour,
so do not tighten it to exact matches.
"""

from typing import Dict, Iterable, List

from models import ExpenseHistory, ExpenseRecord


def matches_categories(expense: ExpenseRecord, categories: Iterable[str]) -> bool:
    """True if the expense's category or subcategory contains any keyword."""
    category = expense.category.lower()
    subcategory = (expense.subcategory or "").lower()
    for keyword in categories:
        keyword = keyword.lower()
        if keyword in category or (subcategory and keyword in subcategory):
            return True
    return False


def description_contains(expense: ExpenseRecord, keywords: Iterable[str]) -> bool:
    """True if the description mentions any of the keywords."""
    description = expense.description.lower()
    return any(keyword.lower() in description for keyword in keywords)


def has_expenses_in_categories(history: ExpenseHistory, categories: List[str]) -> bool:
    return any(matches_categories(e, categories) for e in history.expenses)


def get_category_total(history: ExpenseHistory, categories: List[str]) -> float:
    return sum(e.amount for e in history.expenses if matches_categories(e, categories))


def count_expenses_in_categories(history: ExpenseHistory, categories: List[str]) -> int:
    return sum(1 for e in history.expenses if matches_categories(e, categories))


def get_expenses_in_categories(history: ExpenseHistory, categories: List[str]) -> List[ExpenseRecord]:
    return [e for e in history.expenses if matches_categories(e, categories)]


def get_expenses_by_keyword(history: ExpenseHistory, keywords: List[str]) -> List[ExpenseRecord]:
    """Expenses whose description or category mentions any keyword."""
    return [
        e for e in history.expenses
        if description_contains(e, keywords) or any(k.lower() in e.category.lower() for k in keywords)
    ]


def get_monthly_distribution(history: ExpenseHistory) -> Dict[int, float]:
    """
    Total spend per calendar month.

    Keys are zero-based month indexes (0 = January) so quarter
    arithmetic stays a plain integer division.
    """
    distribution: Dict[int, float] = {}
    for expense in history.expenses:
        month = expense.incurred_on.month - 1
        distribution[month] = distribution.get(month, 0.0) + expense.amount
    return distribution


def get_quarterly_pattern(history: ExpenseHistory) -> Dict[int, float]:
    """Total spend per calendar quarter, always with all four keys (0-3)."""
    quarters = {0: 0.0, 1: 0.0, 2: 0.0, 3: 0.0}
    for expense in history.expenses:
        quarter = (expense.incurred_on.month - 1) // 3
        quarters[quarter] += expense.amount
    return quarters
