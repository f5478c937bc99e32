"""
ReturnReady - Data Models
=========================
Pydantic models for the deduction optimization engine.

These models serve as the contract between:
- Expense ledgers supplied by the caller
- Detection rules and the heuristic scorer
- The optimization report returned to the API
"""

from datetime import date, datetime, timezone
from enum import Enum
from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, computed_field
import uuid

from tax_constants import INDUSTRY_BENCHMARKS, OCCUPATION_DEDUCTIONS


# =============================================================================
# ENUMS
# =============================================================================

class WorkArrangement(str, Enum):
    OFFICE = "office"
    HYBRID = "hybrid"
    REMOTE = "remote"
    MIXED = "mixed"


class EmploymentType(str, Enum):
    FULL_TIME = "full-time"
    PART_TIME = "part-time"
    CASUAL = "casual"
    CONTRACTOR = "contractor"
    SELF_EMPLOYED = "self-employed"


class InvestmentType(str, Enum):
    SHARES = "shares"
    PROPERTY = "property"
    CRYPTO = "crypto"
    BONDS = "bonds"
    OTHER = "other"


class AustralianState(str, Enum):
    NSW = "NSW"
    VIC = "VIC"
    QLD = "QLD"
    WA = "WA"
    SA = "SA"
    TAS = "TAS"
    ACT = "ACT"
    NT = "NT"


class OpportunityType(str, Enum):
    MISSING_DEDUCTION = "missing_deduction"
    BETTER_METHOD = "better_method"
    TIMING = "timing"
    CATEGORIZATION = "categorization"
    PATTERN_GAP = "pattern_gap"
    YOY_ANOMALY = "yoy_anomaly"
    INDUSTRY_SPECIFIC = "industry_specific"


class ConfidenceLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class OpportunityPriority(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class AnomalySeverity(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# =============================================================================
# PROFILE & LEDGER
# =============================================================================

class UserProfile(BaseModel):
    """
    Taxpayer profile for one analysis run.
    Occupation and industry are free text; rules match them by substring.
    """
    taxable_income: float = Field(default=0.0, ge=0)
    occupation: str = ""
    age: int = Field(default=35, ge=0, le=120)
    has_vehicle: bool = False
    work_arrangement: WorkArrangement = WorkArrangement.OFFICE

    # Investments
    has_investments: bool = False
    investment_types: List[InvestmentType] = Field(default_factory=list)

    is_studying: bool = False
    study_field: Optional[str] = None
    has_home_office: bool = False
    employment_type: EmploymentType = EmploymentType.FULL_TIME
    years_with_accountant: int = Field(default=0, ge=0)
    industry: Optional[str] = None
    years_in_current_role: Optional[int] = Field(default=None, ge=0)
    previous_year_deductions: Optional[float] = Field(default=None, ge=0)
    state: Optional[AustralianState] = None


class ExpenseRecord(BaseModel):
    """A single categorized expense from the ledger."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    category: str
    subcategory: Optional[str] = None
    amount: float = Field(ge=0)
    incurred_on: date
    description: str = ""
    has_receipt: bool = False
    tags: List[str] = Field(default_factory=list)
    is_recurring: Optional[bool] = None


class ExpenseHistory(BaseModel):
    """
    One tax year's expense ledger.
    total_deductions is trusted as supplied; it is not recomputed from expenses.
    """
    tax_year: int
    expenses: List[ExpenseRecord] = Field(default_factory=list)
    total_deductions: float = Field(default=0.0, ge=0)
    last_updated: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# =============================================================================
# SCORING MODELS
# =============================================================================

class HeuristicScore(BaseModel):
    """Composite confidence for a single detection."""
    base_score: float
    evidence_bonus: float
    pattern_strength: float
    historical_consistency: float
    industry_relevance: float
    final_score: float = Field(ge=0, le=1)
    confidence_level: ConfidenceLevel


class YearOverYearComparison(BaseModel):
    """Per-category deduction totals for one tax year."""
    tax_year: int
    total_deductions: float
    category_totals: Dict[str, float] = Field(default_factory=dict)
    expense_count: int = 0
    has_data: bool = True


class YoYAnomaly(BaseModel):
    """A category whose spend collapsed against the prior year."""
    category: str
    current: float
    previous: float
    change: float
    severity: AnomalySeverity


class RuleContext(BaseModel):
    """
    Shared data built once per engine run and handed to every rule.
    Frozen so a rule cannot change what the next rule sees.
    """
    model_config = ConfigDict(frozen=True)

    yoy_comparisons: List[YearOverYearComparison] = Field(default_factory=list)
    industry_averages: Dict[str, float] = Field(default_factory=lambda: dict(INDUSTRY_BENCHMARKS))
    occupation_benchmarks: Dict[str, List[str]] = Field(default_factory=lambda: dict(OCCUPATION_DEDUCTIONS))
    as_of: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @computed_field
    @property
    def run_timestamp(self) -> int:
        """Epoch milliseconds of the run, used in opportunity ids."""
        return int(self.as_of.timestamp() * 1000)


# =============================================================================
# OPPORTUNITY MODELS
# =============================================================================

class OptimizationOpportunity(BaseModel):
    """A single suspected missing deduction, better method or anomaly."""

    id: str
    type: OpportunityType
    category: str

    title: str
    description: str

    # Impact
    estimated_savings: float = Field(default=0.0, ge=0)
    confidence: ConfidenceLevel
    priority: OpportunityPriority

    action_items: List[str] = Field(default_factory=list)
    tax_impact: str
    ato_reference: Optional[str] = None

    heuristic_score: Optional[HeuristicScore] = None
    relevance_score: Optional[float] = None
    yoy_comparison: Optional[YearOverYearComparison] = None


class PatternMatch(BaseModel):
    """Informational record of a triggered rule."""
    pattern: str
    detected: bool
    evidence: List[str] = Field(default_factory=list)
    confidence: float
    heuristic_score: Optional[HeuristicScore] = None


class RankedRule(BaseModel):
    """Ranking metadata for one rule, whether or not it triggered."""
    rule_id: str
    rule_name: str
    relevance_score: float
    priority: OpportunityPriority
    triggered: bool = False
    estimated_impact: float = 0.0


class OptimizationSummary(BaseModel):
    critical_count: int = 0
    high_count: int = 0
    medium_count: int = 0
    low_count: int = 0
    by_category: Dict[str, int] = Field(default_factory=dict)
    by_type: Dict[str, int] = Field(default_factory=dict)
    average_confidence: float = 0.0
    yoy_anomalies_detected: int = 0


class OptimizationResult(BaseModel):
    """Complete optimization report for one profile and tax year."""

    opportunities: List[OptimizationOpportunity] = Field(default_factory=list)
    total_potential_savings: float = 0.0
    patterns: List[PatternMatch] = Field(default_factory=list)
    summary: OptimizationSummary = Field(default_factory=OptimizationSummary)
    yoy_comparisons: List[YearOverYearComparison] = Field(default_factory=list)
    ranked_rules: List[RankedRule] = Field(default_factory=list)
