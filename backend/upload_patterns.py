"""
ReturnReady - Upload Pattern Detection
======================================
Learns how often each document source is uploaded and predicts when the
next document is due:
- Bank statements (usually monthly)
- Dividend statements (quarterly, half-yearly or yearly)
- PAYG summaries (yearly)

Every time-dependent function takes an ``as_of`` date so results can be
reproduced. It defaults to today.
"""

import calendar
import logging
import re
import statistics
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, List, Optional, Tuple

from upload_models import (
    DateRange,
    DocumentPattern,
    DocumentType,
    DocumentUploadRecord,
    ExpectedDocument,
    ExpectedDocumentBasis,
    MissingDocument,
    PatternAnalysisResult,
    PatternChange,
    PatternConfidence,
    PatternFrequency,
    PatternStability,
    PatternStatistics,
)
from tax_constants import round_half_up

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

# Inclusive (min, max) mean interval in days, checked in this order
FREQUENCY_THRESHOLDS: Dict[PatternFrequency, Tuple[int, int]] = {
    PatternFrequency.MONTHLY: (25, 40),
    PatternFrequency.QUARTERLY: (80, 100),
    PatternFrequency.HALF_YEARLY: (170, 200),
    PatternFrequency.YEARLY: (350, 380),
}

MIN_UPLOADS_FOR_DETECTION: Dict[PatternFrequency, int] = {
    PatternFrequency.MONTHLY: 3,
    PatternFrequency.QUARTERLY: 3,
    PatternFrequency.HALF_YEARLY: 2,
    PatternFrequency.YEARLY: 2,
    PatternFrequency.IRREGULAR: 3,
    PatternFrequency.UNKNOWN: 0,
}

# Days after the expected date before a document counts as missing
FREQUENCY_GRACE_PERIODS: Dict[PatternFrequency, int] = {
    PatternFrequency.MONTHLY: 5,
    PatternFrequency.QUARTERLY: 10,
    PatternFrequency.HALF_YEARLY: 14,
    PatternFrequency.YEARLY: 21,
    PatternFrequency.IRREGULAR: 14,
    PatternFrequency.UNKNOWN: 7,
}

PERIOD_MONTHS: Dict[PatternFrequency, int] = {
    PatternFrequency.MONTHLY: 1,
    PatternFrequency.QUARTERLY: 3,
    PatternFrequency.HALF_YEARLY: 6,
    PatternFrequency.YEARLY: 12,
}

IRREGULAR_INTERVAL_DAYS = 30
IRREGULAR_CV_THRESHOLD = 0.5
PATTERN_CHANGE_THRESHOLD = 0.3

FREQUENCY_LABELS = {
    PatternFrequency.MONTHLY: "Monthly",
    PatternFrequency.QUARTERLY: "Quarterly",
    PatternFrequency.HALF_YEARLY: "Half-Yearly",
    PatternFrequency.YEARLY: "Yearly",
    PatternFrequency.IRREGULAR: "Irregular",
    PatternFrequency.UNKNOWN: "Unknown",
}

DOCUMENT_TYPE_LABELS = {
    DocumentType.BANK_STATEMENT: "Bank Statement",
    DocumentType.DIVIDEND_STATEMENT: "Dividend Statement",
    DocumentType.PAYG_SUMMARY: "PAYG Summary",
    DocumentType.OTHER: "Other",
}


# =============================================================================
# DATE HELPERS
# =============================================================================

def _days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def add_months(d: date, months: int) -> date:
    """Add calendar months, clamping to the last day of a shorter month."""
    index = d.month - 1 + months
    year = d.year + index // 12
    month = index % 12 + 1
    return date(year, month, min(d.day, _days_in_month(year, month)))


def _snap_to_day(d: date, day_of_month: int) -> date:
    return d.replace(day=min(day_of_month, _days_in_month(d.year, d.month)))


def _advance(d: date, frequency: PatternFrequency) -> date:
    if frequency in PERIOD_MONTHS:
        return add_months(d, PERIOD_MONTHS[frequency])
    return d + timedelta(days=IRREGULAR_INTERVAL_DAYS)


def _slug(source: str) -> str:
    return re.sub(r"[^a-z0-9]", "-", source.lower())


# =============================================================================
# INTERVAL ANALYSIS
# =============================================================================

def calculate_intervals(dates: List[date]) -> List[int]:
    """Days between consecutive (sorted) dates."""
    return [(later - earlier).days for earlier, later in zip(dates, dates[1:])]


def _std_dev(values: List[int]) -> float:
    if len(values) < 2:
        return 0.0
    return statistics.pstdev(values)


def _coefficient_of_variation(values: List[int]) -> float:
    if not values:
        return 0.0
    mean = statistics.mean(values)
    return _std_dev(values) / mean if mean > 0 else 0.0


def categorize_interval(interval: float) -> PatternFrequency:
    """Frequency band containing an interval, or irregular if none does."""
    for frequency, (low, high) in FREQUENCY_THRESHOLDS.items():
        if low <= interval <= high:
            return frequency
    return PatternFrequency.IRREGULAR


def detect_frequency(intervals: List[int], upload_count: int, document_type: DocumentType) -> PatternFrequency:
    """
    Classify the mean interval into a frequency band.

    A band only counts once enough uploads back it. Otherwise high
    variability means irregular, and failing that the document type
    supplies a hint.
    """
    if not intervals:
        return PatternFrequency.UNKNOWN

    average = statistics.mean(intervals)
    for frequency, (low, high) in FREQUENCY_THRESHOLDS.items():
        if low <= average <= high and upload_count >= MIN_UPLOADS_FOR_DETECTION[frequency]:
            return frequency

    cv = _coefficient_of_variation(intervals)
    if cv > IRREGULAR_CV_THRESHOLD and upload_count >= MIN_UPLOADS_FOR_DETECTION[PatternFrequency.IRREGULAR]:
        return PatternFrequency.IRREGULAR

    if document_type == DocumentType.BANK_STATEMENT and upload_count >= 3:
        return PatternFrequency.MONTHLY
    if document_type == DocumentType.PAYG_SUMMARY and upload_count >= 1:
        return PatternFrequency.YEARLY

    return PatternFrequency.UNKNOWN


def detect_timing(dates: List[date], frequency: PatternFrequency) -> Tuple[Optional[int], Optional[List[int]]]:
    """
    Dominant day of month, plus the months seen for non-monthly patterns.

    Ties on the day of month go to the earliest day. Months are 0-11.
    """
    if not dates:
        return None, None

    day_counts: Dict[int, int] = {}
    for d in dates:
        day_counts[d.day] = day_counts.get(d.day, 0) + 1
    day_of_month = min(day_counts, key=lambda day: (-day_counts[day], day))

    months = None
    if frequency != PatternFrequency.MONTHLY:
        months = sorted({d.month - 1 for d in dates})

    return day_of_month, months


def calculate_statistics(intervals: List[int]) -> PatternStatistics:
    if not intervals:
        return PatternStatistics()

    average = statistics.mean(intervals)
    std_dev = _std_dev(intervals)
    cv = std_dev / average if average > 0 else 0.0
    consistency = max(0.0, min(1.0, 1 - cv))

    return PatternStatistics(
        average_interval_days=round_half_up(average),
        interval_std_dev=round(std_dev, 2),
        min_interval_days=min(intervals),
        max_interval_days=max(intervals),
        coefficient_of_variation=round(cv, 2),
        consistency_score=round(consistency, 2)
    )


def detect_pattern_changes(
    document_type: DocumentType,
    source: str,
    uploads: List[DocumentUploadRecord],
    intervals: List[int]
) -> List[PatternChange]:
    """
    Compare the first and second half of the interval sequence.

    A shift of more than 30% that also moves the mean into a different
    frequency band is recorded, dated at the middle upload.
    """
    if len(intervals) < 4:
        return []

    half = len(intervals) // 2
    first_avg = statistics.mean(intervals[:half])
    second_avg = statistics.mean(intervals[half:])
    if first_avg <= 0 or abs(second_avg - first_avg) / first_avg <= PATTERN_CHANGE_THRESHOLD:
        return []

    from_frequency = categorize_interval(first_avg)
    to_frequency = categorize_interval(second_avg)
    if from_frequency == to_frequency:
        return []

    change_date = uploads[len(uploads) // 2].upload_date
    return [PatternChange(
        id=f"change-{document_type.value}-{_slug(source)}-{change_date.isoformat()}",
        change_date=change_date,
        from_frequency=from_frequency,
        to_frequency=to_frequency,
        reason=f"Interval changed from {round_half_up(first_avg)} to {round_half_up(second_avg)} days"
    )]


def determine_stability(intervals: List[int], changes: List[PatternChange]) -> PatternStability:
    if changes:
        return PatternStability.CHANGING
    if len(intervals) < 3:
        return PatternStability.VOLATILE

    cv = _coefficient_of_variation(intervals)
    if cv < 0.2:
        return PatternStability.STABLE
    if cv < 0.5:
        return PatternStability.CHANGING
    return PatternStability.VOLATILE


def calculate_confidence_score(
    frequency: PatternFrequency,
    upload_count: int,
    stats: PatternStatistics
) -> int:
    """0-100 from upload volume, interval consistency and periodicity."""
    min_uploads = MIN_UPLOADS_FOR_DETECTION[frequency] or 3

    score = min(30.0, upload_count / min_uploads * 30)
    score += stats.consistency_score * 40
    if frequency not in (PatternFrequency.UNKNOWN, PatternFrequency.IRREGULAR):
        score += 20
    if stats.coefficient_of_variation > 0.5:
        score -= 15

    return max(0, min(100, round_half_up(score)))


def get_pattern_confidence(score: int) -> PatternConfidence:
    if score >= 80:
        return PatternConfidence.HIGH
    if score >= 60:
        return PatternConfidence.MEDIUM
    if score >= 40:
        return PatternConfidence.LOW
    return PatternConfidence.UNCERTAIN


def predict_next_upload_date(
    last_upload: date,
    frequency: PatternFrequency,
    day_of_month: Optional[int],
    as_of: date
) -> Optional[date]:
    """
    Advance one period from the last upload, snapped to the usual day.

    Keeps advancing while the prediction is still before ``as_of``.
    Unknown patterns have no prediction.
    """
    if frequency == PatternFrequency.UNKNOWN:
        return None

    snap = day_of_month if frequency != PatternFrequency.IRREGULAR else None

    next_date = _advance(last_upload, frequency)
    if snap:
        next_date = _snap_to_day(next_date, snap)

    while next_date < as_of:
        next_date = _advance(next_date, frequency)
        if snap:
            next_date = _snap_to_day(next_date, snap)

    return next_date


# =============================================================================
# PATTERN DETECTION
# =============================================================================

def detect_pattern(
    document_type: DocumentType,
    source: str,
    uploads: List[DocumentUploadRecord],
    as_of: Optional[date] = None
) -> Optional[DocumentPattern]:
    """
    Infer the upload pattern for one document source.

    Args:
        document_type: Type shared by all uploads
        source: Bank, registry or employer name
        uploads: Upload records in any order
        as_of: Reference date for the next-date prediction

    Returns:
        DocumentPattern, or None when there are no uploads
    """
    if not uploads:
        return None

    as_of = as_of or date.today()
    ordered = sorted(uploads, key=lambda u: u.upload_date)
    dates = [u.upload_date for u in ordered]

    intervals = calculate_intervals(dates)
    frequency = detect_frequency(intervals, len(ordered), document_type)
    day_of_month, months = detect_timing(dates, frequency)
    stats = calculate_statistics(intervals)
    changes = detect_pattern_changes(document_type, source, ordered, intervals)
    confidence_score = calculate_confidence_score(frequency, len(ordered), stats)

    logger.debug(
        f"Pattern for {document_type.value}:{source}: {frequency.value} "
        f"over {len(ordered)} uploads, confidence {confidence_score}"
    )

    return DocumentPattern(
        id=f"pattern-{document_type.value}-{_slug(source)}",
        document_type=document_type,
        source=source,
        frequency=frequency,
        confidence=get_pattern_confidence(confidence_score),
        confidence_score=confidence_score,
        expected_day_of_month=day_of_month,
        expected_months=months,
        analysis_date=as_of,
        uploads_analyzed=len(ordered),
        date_range=DateRange(start=dates[0], end=dates[-1]),
        pattern_stability=determine_stability(intervals, changes),
        pattern_changes=changes,
        statistics=stats,
        next_expected_date=predict_next_upload_date(dates[-1], frequency, day_of_month, as_of),
        grace_period_days=FREQUENCY_GRACE_PERIODS[frequency]
    )


def group_uploads_by_source(uploads: List[DocumentUploadRecord]) -> Dict[str, List[DocumentUploadRecord]]:
    """Group uploads under ``"{document_type}:{source}"`` keys."""
    groups: Dict[str, List[DocumentUploadRecord]] = {}
    for upload in uploads:
        groups.setdefault(f"{upload.document_type.value}:{upload.source}", []).append(upload)
    return groups


def analyze_upload_patterns(
    uploads: List[DocumentUploadRecord],
    as_of: Optional[date] = None
) -> PatternAnalysisResult:
    """Detect a pattern per source. A failing group is reported, not raised."""
    groups = group_uploads_by_source(uploads)
    patterns: List[DocumentPattern] = []
    errors: List[str] = []

    for key, group in groups.items():
        document_type, _, source = key.partition(":")
        try:
            pattern = detect_pattern(DocumentType(document_type), source, group, as_of)
        except Exception as e:
            logger.warning(f"Error analyzing {key}: {e}")
            errors.append(f"Error analyzing {key}: {e}")
            continue
        if pattern is not None:
            patterns.append(pattern)

    # A pinned day is stamped at its start, UTC
    if as_of is not None:
        analyzed_at = datetime.combine(as_of, time.min, tzinfo=timezone.utc)
    else:
        analyzed_at = datetime.now(timezone.utc)

    return PatternAnalysisResult(
        patterns=patterns,
        analyzed_at=analyzed_at,
        total_sources=len(groups),
        total_uploads_analyzed=len(uploads),
        patterns_detected=len(patterns),
        errors=errors
    )


# =============================================================================
# MISSING & EXPECTED DOCUMENTS
# =============================================================================

def detect_missing_documents(
    patterns: List[DocumentPattern],
    recent_uploads: List[DocumentUploadRecord],
    as_of: Optional[date] = None
) -> List[MissingDocument]:
    """
    Documents whose expected date has passed without a matching upload.

    Everything past its expected date is returned; ``is_missing`` is set
    once the grace period has also run out. Uncertain patterns are
    ignored. Most overdue first.
    """
    as_of = as_of or date.today()
    missing = []

    for pattern in patterns:
        if pattern.confidence == PatternConfidence.UNCERTAIN or pattern.next_expected_date is None:
            continue

        expected = pattern.next_expected_date
        already_uploaded = any(
            u.document_type == pattern.document_type
            and u.source == pattern.source
            and u.upload_date >= expected
            for u in recent_uploads
        )
        if already_uploaded or as_of < expected:
            continue

        grace_end = expected + timedelta(days=pattern.grace_period_days)
        missing.append(MissingDocument(
            id=f"missing-{pattern.id}-{expected.isoformat()}",
            document_type=pattern.document_type,
            source=pattern.source,
            pattern_id=pattern.id,
            expected_date=expected,
            grace_period_end=grace_end,
            days_overdue=max(0, (as_of - expected).days),
            is_missing=as_of > grace_end,
            confidence=pattern.confidence,
            last_upload_date=pattern.date_range.end,
            historical_uploads=pattern.uploads_analyzed
        ))

    missing.sort(key=lambda m: m.days_overdue, reverse=True)
    return missing


def get_expected_documents(
    patterns: List[DocumentPattern],
    days_ahead: int = 30,
    as_of: Optional[date] = None
) -> List[ExpectedDocument]:
    """
    Documents due on or before ``as_of + days_ahead``, soonest first.

    Dates already in the past are included with zero days to go.
    """
    as_of = as_of or date.today()
    cutoff = as_of + timedelta(days=days_ahead)
    expected_documents = []

    for pattern in patterns:
        expected = pattern.next_expected_date
        if expected is None or pattern.confidence == PatternConfidence.UNCERTAIN:
            continue
        if expected > cutoff:
            continue

        expected_documents.append(ExpectedDocument(
            id=f"expected-{pattern.id}-{expected.isoformat()}",
            document_type=pattern.document_type,
            source=pattern.source,
            pattern_id=pattern.id,
            estimated_arrival_date=expected,
            grace_period_end=expected + timedelta(days=pattern.grace_period_days),
            confidence=pattern.confidence,
            based_on=ExpectedDocumentBasis(
                pattern_type=pattern.frequency,
                last_upload_date=pattern.date_range.end,
                uploads_count=pattern.uploads_analyzed
            ),
            days_until_expected=max(0, (expected - as_of).days)
        ))

    expected_documents.sort(key=lambda e: e.days_until_expected)
    return expected_documents


# =============================================================================
# DISPLAY
# =============================================================================

def get_frequency_label(frequency: PatternFrequency) -> str:
    return FREQUENCY_LABELS[frequency]


def get_document_type_label(document_type: DocumentType) -> str:
    return DOCUMENT_TYPE_LABELS[document_type]


def format_expected_date(expected: date, as_of: Optional[date] = None) -> str:
    """Relative wording for dates within a week, otherwise e.g. "5 Apr"."""
    as_of = as_of or date.today()
    days = (expected - as_of).days

    if days == 0:
        return "Today"
    if days == 1:
        return "Tomorrow"
    if days == -1:
        return "Yesterday"
    if days < 0:
        return f"{abs(days)} days ago"
    if days <= 7:
        return f"In {days} days"
    return f"{expected.day} {expected:%b}"
