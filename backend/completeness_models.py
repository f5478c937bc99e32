"""
ReturnReady - Completeness Models
=================================
Models for the pre-lodgment completeness checker:
- Taxpayer profile and per-category income/deduction inputs
- Checklist items for income sources and D1-D15 deductions
- Score, tax estimate and review-risk assessment
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional
from pydantic import BaseModel, Field, computed_field

from models import (
    AustralianState,
    EmploymentType,
    InvestmentType,
    OpportunityPriority,
    WorkArrangement,
)


# =============================================================================
# ENUMS
# =============================================================================

class ChecklistStatus(str, Enum):
    COMPLETE = "complete"
    MISSING = "missing"
    PARTIAL = "partial"
    NOT_APPLICABLE = "not_applicable"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RiskImpact(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


class ColorStatus(str, Enum):
    RED = "red"
    AMBER = "amber"
    GREEN = "green"


class DocumentPriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class PrefillStatus(str, Enum):
    AVAILABLE = "available"
    NOT_AVAILABLE = "not_available"
    IMPORTED = "imported"
    PENDING = "pending"


class IncomeCategoryCode(str, Enum):
    SALARY = "SALARY"
    DIVIDENDS = "DIVIDENDS"
    INTEREST = "INTEREST"
    RENTAL = "RENTAL"
    CAPITAL_GAINS = "CAPITAL_GAINS"
    FREELANCE = "FREELANCE"
    TRUST_DISTRIBUTIONS = "TRUST_DISTRIBUTIONS"
    FOREIGN_INCOME = "FOREIGN_INCOME"
    GOVERNMENT_PAYMENTS = "GOVERNMENT_PAYMENTS"
    SUPER_PENSION = "SUPER_PENSION"
    SUPER_LUMPSUM = "SUPER_LUMPSUM"
    EMPLOYMENT_TERMINATION = "EMPLOYMENT_TERMINATION"
    ROYALTIES = "ROYALTIES"
    OTHER = "OTHER"


class AtoCategoryCode(str, Enum):
    D1 = "D1"
    D2 = "D2"
    D3 = "D3"
    D4 = "D4"
    D5 = "D5"
    D6 = "D6"
    D7 = "D7"
    D8 = "D8"
    D9 = "D9"
    D10 = "D10"
    D11 = "D11"
    D12 = "D12"
    D13 = "D13"
    D14 = "D14"
    D15 = "D15"


# =============================================================================
# INPUTS
# =============================================================================

class UserTaxProfile(BaseModel):
    """Taxpayer answers that drive the completeness checks."""
    tax_year: int
    taxable_income: float = Field(default=0.0, ge=0)
    occupation: str = ""
    employment_type: EmploymentType = EmploymentType.FULL_TIME
    has_investments: bool = False
    investment_types: List[InvestmentType] = Field(default_factory=list)
    has_rental_property: bool = False
    work_arrangement: WorkArrangement = WorkArrangement.OFFICE
    has_vehicle: bool = False
    is_studying: bool = False
    industry: Optional[str] = None
    state: AustralianState = AustralianState.NSW
    age: int = Field(default=35, ge=0, le=120)
    has_private_health_insurance: bool = False
    previous_year_lodged: bool = False


class IncomeData(BaseModel):
    """What has been entered for one income category."""
    amount: float = Field(default=0.0, ge=0)
    documents: int = Field(default=0, ge=0)
    last_year_amount: Optional[float] = Field(default=None, ge=0)


class DeductionData(BaseModel):
    """What has been entered for one D1-D15 category."""
    amount: float = Field(default=0.0, ge=0)
    workpaper_complete: bool = False
    receipts: int = Field(default=0, ge=0)


class TaxOffset(BaseModel):
    name: str
    amount: float = Field(ge=0)


# =============================================================================
# CHECKLIST
# =============================================================================

class ChecklistItem(BaseModel):
    """Common fields for every checklist row."""
    id: str
    title: str
    description: str
    status: ChecklistStatus
    required: bool
    category: str
    subcategory: Optional[str] = None
    action_needed: Optional[str] = None
    action_link: Optional[str] = None
    estimated_amount: Optional[float] = None
    claimed_amount: float = 0.0
    potential_amount: Optional[float] = None
    receipts_attached: int = 0
    receipts_required: int = 0
    icon: Optional[str] = None
    help_text: Optional[str] = None
    ato_reference: Optional[str] = None


class IncomeSourceCheck(ChecklistItem):
    income_code: IncomeCategoryCode
    prefill_available: bool = False
    prefill_status: Optional[PrefillStatus] = None
    document_types: List[str] = Field(default_factory=list)


class TypicalRange(BaseModel):
    min: float
    max: float


class DeductionCategoryCheck(ChecklistItem):
    deduction_code: AtoCategoryCode
    has_workpaper: bool = False
    workpaper_complete: bool = False
    typical_range: TypicalRange
    industry_average: Optional[float] = None


class MissingDocument(BaseModel):
    """A document the return probably needs but has not been supplied."""
    id: str
    document_type: str
    description: str
    expected_source: str
    priority: DocumentPriority
    pattern_based: bool
    detection_reason: str
    due_date: Optional[str] = None
    icon: str


class OptimizationSuggestion(BaseModel):
    """An optimization opportunity as it appears on the checklist."""
    id: str
    opportunity_id: str
    title: str
    description: str
    estimated_tax_savings: float = Field(default=0.0, ge=0)
    priority: OpportunityPriority
    category: str
    action_text: str
    action_link: Optional[str] = None
    implemented: bool = False


# =============================================================================
# SCORES & ESTIMATES
# =============================================================================

class CompletenessScore(BaseModel):
    overall: int = Field(ge=0, le=100)
    income_score: int = Field(ge=0, le=100)
    deductions_score: int = Field(ge=0, le=100)
    documents_score: int = Field(ge=0, le=100)
    optimization_score: int = Field(ge=0, le=100)
    color_status: ColorStatus
    missing_items_count: int = 0
    required_items_count: int = 0
    completed_items_count: int = 0


class TaxEstimate(BaseModel):
    taxable_income: float
    total_deductions: float
    tax_payable: float
    tax_withheld: float
    estimated_refund: float = 0.0
    estimated_tax_owing: float = 0.0
    medicare_levy: float = 0.0
    medicare_levy_surcharge: Optional[float] = None
    offsets: List[TaxOffset] = Field(default_factory=list)

    @computed_field
    @property
    def net_taxable_income(self) -> float:
        """Taxable income after deductions, never below zero."""
        return max(0.0, self.taxable_income - self.total_deductions)


class RiskFactor(BaseModel):
    factor: str
    impact: RiskImpact
    description: str


class RiskAssessment(BaseModel):
    level: RiskLevel
    score: int = Field(ge=0, le=100)
    factors: List[RiskFactor] = Field(default_factory=list)
    ato_review_likelihood: str
    recommendations: List[str] = Field(default_factory=list)


class ExportData(BaseModel):
    checklist_data: str = ""
    summary_data: str = ""


class CompletenessReport(BaseModel):
    """Complete pre-lodgment review for one tax year."""

    tax_year: int
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    score: CompletenessScore
    income_checks: List[IncomeSourceCheck]
    deduction_checks: List[DeductionCategoryCheck]
    missing_documents: List[MissingDocument]
    optimization_suggestions: List[OptimizationSuggestion]

    tax_estimate: TaxEstimate
    risk_assessment: RiskAssessment

    # Minutes
    estimated_completion_time: int = 0
    export_data: ExportData = Field(default_factory=ExportData)


# Convenience aliases for the per-category input maps
IncomeDataMap = Dict[IncomeCategoryCode, IncomeData]
DeductionDataMap = Dict[AtoCategoryCode, DeductionData]
