"""
ReturnReady - FastAPI Backend
=============================
Stateless JSON API over the three review engines:
1. Optimization engine - missed deductions and year-over-year anomalies
2. Completeness checker - checklist, refund estimate and review risk
3. Upload patterns - recurring documents that are overdue or due soon

Nothing is stored server-side; every request carries its own data.
"""

import os
import logging
from datetime import date, datetime, timezone
from typing import Dict, List, Optional
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field

# Local imports
from tax_constants import (
    DEFAULT_INDUSTRY_BENCHMARK,
    INDUSTRY_BENCHMARKS,
    MEDICARE_LEVY_RATE,
    MEDICARE_LEVY_SURCHARGE,
    OCCUPATION_DEDUCTIONS,
    get_bracket_table,
)
from models import ExpenseHistory, OptimizationOpportunity, OptimizationResult, UserProfile
from completeness_models import (
    CompletenessReport,
    DeductionData,
    IncomeData,
    TaxOffset,
    UserTaxProfile,
    AtoCategoryCode,
    IncomeCategoryCode,
)
from upload_models import (
    DocumentPattern,
    DocumentUploadRecord,
    ExpectedDocument,
    MissingDocument,
    PatternAnalysisResult,
)
from optimization_engine import export_opportunities_for_accountant, run_optimization_engine
from year_over_year import build_yoy_comparisons, generate_yoy_report
from completeness_checker import (
    generate_accountant_summary,
    generate_checklist_export,
    generate_completeness_report,
)
from upload_patterns import analyze_upload_patterns, detect_missing_documents, get_expected_documents

# Configure logging
logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)

SERVICE_NAME = "ReturnReady"
SERVICE_VERSION = "1.0.0"

DEFAULT_ALLOWED_ORIGINS = "http://localhost:3000,http://localhost:5173"


# =============================================================================
# APPLICATION SETUP
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info(f"{SERVICE_NAME} starting up...")
    yield
    logger.info(f"{SERVICE_NAME} shutting down...")


app = FastAPI(
    title=SERVICE_NAME,
    description="Tax return optimization, completeness and document tracking API",
    version=SERVICE_VERSION,
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in os.getenv("ALLOWED_ORIGINS", DEFAULT_ALLOWED_ORIGINS).split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# REQUEST MODELS
# =============================================================================

class OptimizationRequest(BaseModel):
    profile: UserProfile
    history: ExpenseHistory
    all_history: Optional[List[ExpenseHistory]] = None
    limit: Optional[int] = Field(default=None, ge=1)


class YoYRequest(BaseModel):
    all_history: List[ExpenseHistory]


class CompletenessRequest(BaseModel):
    profile: UserTaxProfile
    # Overrides profile.taxable_income when supplied
    taxable_income: Optional[float] = Field(default=None, ge=0)
    income_data: Dict[IncomeCategoryCode, IncomeData] = Field(default_factory=dict)
    deduction_data: Dict[AtoCategoryCode, DeductionData] = Field(default_factory=dict)
    opportunities: List[OptimizationOpportunity] = Field(default_factory=list)
    tax_withheld: float = Field(default=0.0, ge=0)
    offsets: Optional[List[TaxOffset]] = None
    implemented_opportunity_ids: List[str] = Field(default_factory=list)


class UploadAnalysisRequest(BaseModel):
    uploads: List[DocumentUploadRecord]
    as_of: Optional[date] = None


class MissingDocumentsRequest(BaseModel):
    patterns: List[DocumentPattern]
    recent_uploads: List[DocumentUploadRecord] = Field(default_factory=list)
    as_of: Optional[date] = None


class ExpectedDocumentsRequest(BaseModel):
    patterns: List[DocumentPattern]
    days_ahead: int = Field(default=30, ge=0)
    as_of: Optional[date] = None


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def run_analysis(request: OptimizationRequest) -> OptimizationResult:
    result = run_optimization_engine(request.profile, request.history, request.all_history)
    if request.limit is not None:
        result = result.model_copy(update={"opportunities": result.opportunities[:request.limit]})
    return result


def build_report(request: CompletenessRequest) -> CompletenessReport:
    profile = request.profile
    if request.taxable_income is not None:
        profile = profile.model_copy(update={"taxable_income": request.taxable_income})

    return generate_completeness_report(
        profile,
        request.income_data,
        request.deduction_data,
        request.opportunities,
        request.tax_withheld,
        offsets=request.offsets,
        implemented_opportunity_ids=request.implemented_opportunity_ids
    )


# =============================================================================
# API ENDPOINTS
# =============================================================================

@app.get("/")
async def root():
    """API health check."""
    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "status": "healthy"
    }


@app.get("/api/health")
async def health_check():
    """Detailed health check."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "components": {
            "optimization_engine": "ready",
            "completeness_checker": "ready",
            "upload_patterns": "ready"
        }
    }


# --- OPTIMIZATION ENDPOINTS ---

@app.post("/api/optimization/analyze", response_model=OptimizationResult)
async def analyze_optimization(request: OptimizationRequest):
    """Run every detection rule against the profile and ledger."""
    return run_analysis(request)


@app.post("/api/optimization/export", response_class=PlainTextResponse)
async def export_optimization(request: OptimizationRequest):
    """Plain-text opportunities report for an accountant."""
    return export_opportunities_for_accountant(run_analysis(request))


@app.post("/api/optimization/yoy")
async def year_over_year(request: YoYRequest):
    comparisons = build_yoy_comparisons(request.all_history)
    return {
        "comparisons": [c.model_dump() for c in comparisons],
        "report": generate_yoy_report(comparisons)
    }


# --- COMPLETENESS ENDPOINTS ---

@app.post("/api/completeness/report", response_model=CompletenessReport)
async def completeness_report(request: CompletenessRequest):
    """Full pre-lodgment review."""
    return build_report(request)


@app.post("/api/completeness/export", response_class=PlainTextResponse)
async def export_completeness(request: CompletenessRequest, format: str = "checklist"):
    """Checklist or accountant summary as plain text."""
    if format not in ("checklist", "summary"):
        raise HTTPException(status_code=400, detail=f"Unknown export format: {format}")

    report = build_report(request)
    if format == "summary":
        return generate_accountant_summary(report)
    return generate_checklist_export(report)


# --- UPLOAD PATTERN ENDPOINTS ---

@app.post("/api/upload-patterns/analysis", response_model=PatternAnalysisResult)
async def upload_pattern_analysis(request: UploadAnalysisRequest):
    """Detect the upload pattern of every document source."""
    return analyze_upload_patterns(request.uploads, request.as_of)


@app.post("/api/missing-documents", response_model=List[MissingDocument])
async def missing_documents(request: MissingDocumentsRequest):
    return detect_missing_documents(request.patterns, request.recent_uploads, request.as_of)


@app.post("/api/expected-documents", response_model=List[ExpectedDocument])
async def expected_documents(request: ExpectedDocumentsRequest):
    return get_expected_documents(request.patterns, request.days_ahead, request.as_of)


# --- TAX REFERENCE DATA ---

@app.get("/api/reference/brackets")
async def get_tax_brackets():
    """2024-25 resident tax brackets and Medicare levy settings."""
    return {
        "tax_year": "2024-25",
        "brackets": get_bracket_table(),
        "medicare_levy_rate": MEDICARE_LEVY_RATE,
        "medicare_levy_surcharge": MEDICARE_LEVY_SURCHARGE
    }


@app.get("/api/reference/benchmarks")
async def get_benchmarks():
    """Industry deduction ratios and occupation deduction hints."""
    return {
        "industry_benchmarks": INDUSTRY_BENCHMARKS,
        "default_industry_benchmark": DEFAULT_INDUSTRY_BENCHMARK,
        "occupation_deductions": OCCUPATION_DEDUCTIONS
    }


# --- ERROR HANDLERS ---

@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    logger.error(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": str(exc) if os.getenv("DEBUG") else "An error occurred"
        }
    )


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "8000")))
