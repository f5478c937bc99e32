"""
ReturnReady - Tax Constants
===========================
Hardcoded 2024-25 Australian resident tax brackets, levies and the
reference tables the detection rules and completeness checker read.

These are the ONLY source of truth for tax arithmetic in this service.
Every rate and threshold below is configuration data: treat the tables
as read-only and pass overrides into the engines instead of editing
them at runtime.

Last Updated: 2024-25 Financial Year
"""

import math
from typing import Dict, List, Tuple, Union

# =============================================================================
# 2024-25 RESIDENT TAX BRACKETS
# Format: List of (upper_limit, marginal_rate) tuples
# The last tuple uses float('inf') for unlimited income
# =============================================================================

TAX_BRACKETS_2024_25: List[Tuple[float, float]] = [
    (18200, 0.0),           # Tax-free threshold
    (45000, 0.16),          # 16c per $1 over $18,200
    (135000, 0.30),         # $4,288 plus 30c per $1 over $45,000
    (190000, 0.37),         # $31,288 plus 37c per $1 over $135,000
    (float('inf'), 0.45),   # $51,638 plus 45c per $1 over $190,000
]


# =============================================================================
# MEDICARE
# =============================================================================

MEDICARE_LEVY_RATE = 0.02

# Simplified single-tier surcharge for people without private hospital cover
MEDICARE_LEVY_SURCHARGE = {
    "threshold": 93000,
    "rate": 0.01,
}


# =============================================================================
# INDUSTRY BENCHMARKS
# Typical total work-related deductions as a share of taxable income
# =============================================================================

INDUSTRY_BENCHMARKS: Dict[str, float] = {
    "construction": 0.08,
    "healthcare": 0.05,
    "education": 0.04,
    "finance": 0.06,
    "it": 0.07,
    "legal": 0.06,
    "hospitality": 0.04,
    "retail": 0.03,
    "transport": 0.09,
    "mining": 0.10,
    "professional": 0.06,
    "other": 0.05,
}

DEFAULT_INDUSTRY_BENCHMARK = 0.05


# =============================================================================
# OCCUPATION DEDUCTION HINTS
# Deductions commonly claimed by each occupation group
# =============================================================================

OCCUPATION_DEDUCTIONS: Dict[str, List[str]] = {
    "tradesperson": ["tools", "vehicle", "protective-clothing", "laundry"],
    "teacher": ["self-education", "stationery", "travel", "home-office"],
    "nurse": ["uniform", "education", "travel", "professional"],
    "office-worker": ["home-office", "stationery", "professional"],
    "sales": ["vehicle", "travel", "entertainment", "phone"],
    "it": ["home-office", "equipment", "self-education", "subscriptions"],
    "driver": ["vehicle", "meals", "travel", "phone"],
    "chef": ["knives", "uniform", "travel"],
    "lawyer": ["professional", "self-education", "home-office"],
    "accountant": ["professional", "self-education", "software"],
}


# =============================================================================
# CATEGORY KEYWORDS
# Matched as case-insensitive substrings of an expense category/subcategory
# =============================================================================

WFH_CATEGORIES = ["D5", "work-from-home", "home-office", "utilities-work"]
VEHICLE_CATEGORIES = ["D1", "car-expenses", "vehicle", "motor-vehicle", "transport-work"]
DIVIDEND_CATEGORIES = ["dividend", "investment-income", "shares", "D7"]
EDUCATION_CATEGORIES = ["D4", "self-education", "course-fees", "study", "training"]
DEPRECIATION_CATEGORIES = ["D6", "low-value-pool", "depreciation", "asset-write-off"]
TRAVEL_CATEGORIES = ["D2", "travel", "accommodation", "flights", "transport"]
PROFESSIONAL_CATEGORIES = ["D3", "professional", "subscriptions", "memberships", "licenses"]
HEALTH_CATEGORIES = ["medical", "health", "insurance-health", "D10"]
CLOTHING_CATEGORIES = ["D3", "uniform", "protective", "laundry"]


# =============================================================================
# INCOME SOURCE CATALOG
# =============================================================================

INCOME_SOURCES: List[Dict] = [
    {"code": "SALARY", "name": "Salary/Wages", "required": True,
     "document_types": ["PAYG Payment Summary", "Income Statement (myGov)"]},
    {"code": "DIVIDENDS", "name": "Dividends", "required": False,
     "document_types": ["Dividend Statements", "Computershare Statements", "Link Market Services"]},
    {"code": "INTEREST", "name": "Interest Income", "required": False,
     "document_types": ["Bank Interest Summaries", "Term Deposit Statements"]},
    {"code": "RENTAL", "name": "Rental Income", "required": False,
     "document_types": ["Property Manager Statements", "Lease Agreements"]},
    {"code": "CAPITAL_GAINS", "name": "Capital Gains", "required": False,
     "document_types": ["Contract Notes", "Settlement Statements", "Broker Statements"]},
    {"code": "FREELANCE", "name": "Freelance/Business Income", "required": False,
     "document_types": ["Invoices", "Payment Summaries", "Business Statements"]},
    {"code": "TRUST_DISTRIBUTIONS", "name": "Trust Distributions", "required": False,
     "document_types": ["Trust Distribution Statements", "AMIT Statements"]},
    {"code": "FOREIGN_INCOME", "name": "Foreign Income", "required": False,
     "document_types": ["Foreign Income Statements", "Foreign Tax Documents"]},
    {"code": "GOVERNMENT_PAYMENTS", "name": "Government Payments", "required": False,
     "document_types": ["Centrelink Payment Summaries", "myGov Statements"]},
    {"code": "SUPER_PENSION", "name": "Superannuation Pension", "required": False,
     "document_types": ["Super Fund Payment Summaries"]},
    {"code": "SUPER_LUMPSUM", "name": "Superannuation Lump Sum", "required": False,
     "document_types": ["Super Fund Benefit Statements"]},
    {"code": "EMPLOYMENT_TERMINATION", "name": "Employment Termination", "required": False,
     "document_types": ["ETP Payment Summary", "Redundancy Letter"]},
    {"code": "ROYALTIES", "name": "Royalties", "required": False,
     "document_types": ["Royalty Statements", "License Agreements"]},
    {"code": "OTHER", "name": "Other Income", "required": False,
     "document_types": ["Documentation"]},
]

# Income types the ATO pre-fills from third-party reports
PREFILL_INCOME_CODES = {"SALARY", "DIVIDENDS", "INTEREST", "TRUST_DISTRIBUTIONS", "GOVERNMENT_PAYMENTS"}


# =============================================================================
# DEDUCTION CATEGORY CATALOG (D1-D15)
# =============================================================================

DEDUCTION_CATEGORIES: List[Dict] = [
    {"code": "D1", "name": "Car Expenses", "typical_range": (500, 5000)},
    {"code": "D2", "name": "Travel Expenses", "typical_range": (200, 3000)},
    {"code": "D3", "name": "Clothing & Laundry", "typical_range": (100, 800)},
    {"code": "D4", "name": "Self-Education", "typical_range": (500, 3000)},
    {"code": "D5", "name": "Other Work Expenses", "typical_range": (200, 2000)},
    {"code": "D6", "name": "Low Value Pool", "typical_range": (0, 1500)},
    {"code": "D7", "name": "Investment Deductions", "typical_range": (100, 2000)},
    {"code": "D8", "name": "Gifts & Donations", "typical_range": (50, 1000)},
    {"code": "D9", "name": "Cost of Managing Tax", "typical_range": (100, 500)},
    {"code": "D10", "name": "Personal Super Contributions", "typical_range": (1000, 30000)},
    {"code": "D11", "name": "Foreign Tax Offset", "typical_range": (0, 5000)},
    {"code": "D12", "name": "NRAS Offset", "typical_range": (0, 10000)},
    {"code": "D13", "name": "ESVCLP Offset", "typical_range": (0, 200000)},
    {"code": "D14", "name": "Early Stage Investor Offset", "typical_range": (0, 200000)},
    {"code": "D15", "name": "Exploration Credit Offset", "typical_range": (0, 50000)},
]


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def round_half_up(value: float, digits: int = 0) -> Union[int, float]:
    """
    Round with halves going up (12.5 -> 13), unlike round() which goes
    to the nearest even digit. Returns an int when digits is 0.
    """
    factor = 10 ** digits
    rounded = math.floor(value * factor + 0.5)
    if digits == 0:
        return rounded
    return rounded / factor


def get_marginal_rate(
    taxable_income: float,
    brackets: List[Tuple[float, float]] = TAX_BRACKETS_2024_25
) -> float:
    """Get the marginal tax rate for a given income level."""
    for limit, rate in brackets:
        if taxable_income <= limit:
            return rate

    return brackets[-1][1]  # Return highest rate


def calculate_tax_savings(deduction_amount: float, taxable_income: float) -> float:
    """Tax saved by claiming a deduction, at the taxpayer's marginal rate."""
    return round_half_up(deduction_amount * get_marginal_rate(taxable_income), 2)


def calculate_income_tax(
    taxable_income: float,
    brackets: List[Tuple[float, float]] = TAX_BRACKETS_2024_25
) -> float:
    """
    Calculate resident income tax using the progressive brackets.
    This is the AUTHORITATIVE calculation.

    Args:
        taxable_income: Income after deductions
        brackets: (upper_limit, rate) pairs in ascending order

    Returns:
        Total income tax payable, before levies and offsets
    """
    if taxable_income <= 0:
        return 0.0

    total_tax = 0.0
    remaining_income = taxable_income
    prev_limit = 0

    for limit, rate in brackets:
        bracket_size = limit - prev_limit if limit != float('inf') else remaining_income
        taxable_in_bracket = min(remaining_income, bracket_size)

        if taxable_in_bracket <= 0:
            break

        total_tax += taxable_in_bracket * rate
        remaining_income -= taxable_in_bracket
        prev_limit = limit

        if remaining_income <= 0:
            break

    return round(total_tax, 2)


def calculate_medicare_levy(taxable_income: float) -> float:
    """Flat Medicare levy on taxable income."""
    return round(max(0, taxable_income) * MEDICARE_LEVY_RATE, 2)


def calculate_medicare_levy_surcharge(taxable_income: float, has_private_health: bool) -> float:
    """One-tier surcharge applied when there is no private cover above the threshold."""
    if has_private_health or taxable_income <= MEDICARE_LEVY_SURCHARGE["threshold"]:
        return 0.0
    return round(taxable_income * MEDICARE_LEVY_SURCHARGE["rate"], 2)


def get_effective_rate(taxable_income: float) -> float:
    """Calculate the effective tax rate as a percentage."""
    if taxable_income <= 0:
        return 0.0

    tax = calculate_income_tax(taxable_income)
    return round((tax / taxable_income) * 100, 2)


def get_bracket_table() -> List[Dict]:
    """Brackets with their lower bound and the tax accumulated below it."""
    table = []
    prev_limit = 0
    for limit, rate in TAX_BRACKETS_2024_25:
        table.append({
            "from": prev_limit,
            "to": None if limit == float('inf') else limit,
            "rate": rate,
            "base_tax": calculate_income_tax(prev_limit),
        })
        if limit != float('inf'):
            prev_limit = limit
    return table
