"""
ReturnReady - Upload Pattern Models
===================================
Models for recurring-document detection: upload records, the pattern
inferred per (document type, source), and the missing / expected
document predictions derived from those patterns.
"""

from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


class DocumentType(str, Enum):
    BANK_STATEMENT = "bank_statement"
    DIVIDEND_STATEMENT = "dividend_statement"
    PAYG_SUMMARY = "payg_summary"
    OTHER = "other"


class PatternFrequency(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    HALF_YEARLY = "half_yearly"
    YEARLY = "yearly"
    IRREGULAR = "irregular"
    UNKNOWN = "unknown"


class PatternConfidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    UNCERTAIN = "uncertain"


class PatternStability(str, Enum):
    STABLE = "stable"
    CHANGING = "changing"
    VOLATILE = "volatile"


class DocumentUploadRecord(BaseModel):
    """A single uploaded document."""
    id: str
    document_type: DocumentType
    source: str  # bank, share registry, employer
    upload_date: date
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    tax_year: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class PatternChange(BaseModel):
    id: str
    change_date: date
    from_frequency: PatternFrequency
    to_frequency: PatternFrequency
    reason: Optional[str] = None


class PatternStatistics(BaseModel):
    average_interval_days: int = 0
    interval_std_dev: float = 0.0
    min_interval_days: int = 0
    max_interval_days: int = 0
    coefficient_of_variation: float = 0.0
    consistency_score: float = Field(default=0.0, ge=0, le=1)


class DateRange(BaseModel):
    start: date
    end: date


class DocumentPattern(BaseModel):
    """Upload pattern detected for one document source."""

    id: str
    document_type: DocumentType
    source: str
    source_id: Optional[str] = None

    frequency: PatternFrequency
    confidence: PatternConfidence
    confidence_score: int = Field(ge=0, le=100)

    # 1-31
    expected_day_of_month: Optional[int] = Field(default=None, ge=1, le=31)
    # 0-11, only for quarterly / half-yearly / yearly patterns
    expected_months: Optional[List[int]] = None

    analysis_date: date
    uploads_analyzed: int
    date_range: DateRange

    pattern_stability: PatternStability
    pattern_changes: List[PatternChange] = Field(default_factory=list)
    statistics: PatternStatistics

    next_expected_date: Optional[date] = None
    grace_period_days: int


class PatternAnalysisResult(BaseModel):
    patterns: List[DocumentPattern] = Field(default_factory=list)
    analyzed_at: datetime
    total_sources: int = 0
    total_uploads_analyzed: int = 0
    patterns_detected: int = 0
    errors: List[str] = Field(default_factory=list)


class MissingDocument(BaseModel):
    """A recurring document whose expected date has passed."""
    id: str
    document_type: DocumentType
    source: str
    pattern_id: str
    expected_date: date
    grace_period_end: date
    days_overdue: int = Field(ge=0)
    is_missing: bool  # past the grace period
    confidence: PatternConfidence
    last_upload_date: Optional[date] = None
    historical_uploads: int = 0


class ExpectedDocumentBasis(BaseModel):
    pattern_type: PatternFrequency
    last_upload_date: date
    uploads_count: int


class ExpectedDocument(BaseModel):
    """A recurring document due within the look-ahead window."""
    id: str
    document_type: DocumentType
    source: str
    pattern_id: str
    estimated_arrival_date: date
    grace_period_end: date
    confidence: PatternConfidence
    based_on: ExpectedDocumentBasis
    days_until_expected: int = Field(ge=0)
