"""
ReturnReady - Upload Pattern Tests
==================================
Frequency detection, next-date prediction and the missing / expected
document checks built on top of them.
"""

import pytest
from datetime import date, datetime, timedelta, timezone

import upload_patterns
from upload_models import (
    DocumentType,
    DocumentUploadRecord,
    PatternConfidence,
    PatternFrequency,
    PatternStability,
)
from upload_patterns import (
    add_months,
    analyze_upload_patterns,
    calculate_statistics,
    detect_missing_documents,
    detect_pattern,
    format_expected_date,
    get_document_type_label,
    get_expected_documents,
    get_frequency_label,
    get_pattern_confidence,
    group_uploads_by_source,
    predict_next_upload_date,
)


def upload(document_type, source, upload_date):
    return DocumentUploadRecord(
        id=f"{source}-{upload_date.isoformat()}",
        document_type=document_type,
        source=source,
        upload_date=upload_date,
    )


def uploads_at(document_type, source, day_offsets, start=date(2024, 1, 1)):
    return [upload(document_type, source, start + timedelta(days=d)) for d in day_offsets]


@pytest.fixture
def bank_uploads():
    return [
        upload(DocumentType.BANK_STATEMENT, "Commonwealth Bank", date(2025, 3, 2)),
        upload(DocumentType.BANK_STATEMENT, "Commonwealth Bank", date(2025, 1, 1)),
        upload(DocumentType.BANK_STATEMENT, "Commonwealth Bank", date(2025, 1, 31)),
    ]


@pytest.fixture
def bank_pattern(bank_uploads):
    return detect_pattern(DocumentType.BANK_STATEMENT, "Commonwealth Bank", bank_uploads, as_of=date(2025, 3, 2))


# =============================================================================
# DETECTION TESTS
# =============================================================================

class TestDetectPattern:
    """Test frequency classification and pattern fields."""

    def test_no_uploads(self):
        """No uploads means no pattern."""
        assert detect_pattern(DocumentType.BANK_STATEMENT, "ANZ", []) is None

    def test_monthly_bank_statements(self, bank_pattern):
        """Thirty-day spacing is monthly with high confidence."""
        assert bank_pattern.frequency == PatternFrequency.MONTHLY
        assert bank_pattern.confidence == PatternConfidence.HIGH
        assert bank_pattern.confidence_score == 90
        assert bank_pattern.expected_day_of_month == 1
        assert bank_pattern.expected_months is None
        assert bank_pattern.next_expected_date == date(2025, 4, 1)
        assert bank_pattern.grace_period_days == 5

    def test_sorted_and_described(self, bank_pattern):
        """Uploads are sorted before analysis and the id is reproducible."""
        assert bank_pattern.id == "pattern-bank_statement-commonwealth-bank"
        assert bank_pattern.date_range.start == date(2025, 1, 1)
        assert bank_pattern.date_range.end == date(2025, 3, 2)
        assert bank_pattern.uploads_analyzed == 3
        assert bank_pattern.statistics.average_interval_days == 30
        assert bank_pattern.statistics.consistency_score == 1.0
        assert bank_pattern.pattern_stability == PatternStability.VOLATILE

    def test_next_date_rolls_forward(self, bank_uploads):
        """A stale prediction keeps advancing until it reaches as_of."""
        pattern = detect_pattern(
            DocumentType.BANK_STATEMENT, "Commonwealth Bank", bank_uploads, as_of=date(2025, 6, 10)
        )
        assert pattern.next_expected_date == date(2025, 7, 1)

    def test_quarterly_dividends(self):
        """Ninety-one day spacing is quarterly with the months recorded."""
        uploads = [
            upload(DocumentType.DIVIDEND_STATEMENT, "Computershare", date(2024, m, 15))
            for m in (1, 4, 7, 10)
        ]
        pattern = detect_pattern(DocumentType.DIVIDEND_STATEMENT, "Computershare", uploads, as_of=date(2024, 11, 1))
        assert pattern.frequency == PatternFrequency.QUARTERLY
        assert pattern.expected_months == [0, 3, 6, 9]
        assert pattern.expected_day_of_month == 15
        assert pattern.next_expected_date == date(2025, 1, 15)
        assert pattern.confidence == PatternConfidence.HIGH
        assert pattern.grace_period_days == 10

    def test_half_yearly_needs_two_uploads(self):
        """Two uploads six months apart are half-yearly."""
        uploads = uploads_at(DocumentType.DIVIDEND_STATEMENT, "Link", [0, 182])
        pattern = detect_pattern(DocumentType.DIVIDEND_STATEMENT, "Link", uploads, as_of=date(2024, 7, 2))
        assert pattern.frequency == PatternFrequency.HALF_YEARLY
        assert pattern.expected_months == [0, 6]

    def test_monthly_band_needs_three_uploads(self):
        """Two uploads a month apart are not enough for monthly."""
        uploads = uploads_at(DocumentType.OTHER, "Telstra", [0, 30])
        pattern = detect_pattern(DocumentType.OTHER, "Telstra", uploads, as_of=date(2024, 2, 1))
        assert pattern.frequency == PatternFrequency.UNKNOWN
        assert pattern.next_expected_date is None
        assert pattern.grace_period_days == 7

    def test_irregular(self):
        """Highly variable spacing is irregular and predicted 30 days out."""
        uploads = uploads_at(DocumentType.OTHER, "Broker", [0, 5, 125, 135])
        pattern = detect_pattern(DocumentType.OTHER, "Broker", uploads, as_of=date(2024, 5, 1))
        assert pattern.frequency == PatternFrequency.IRREGULAR
        assert pattern.confidence == PatternConfidence.UNCERTAIN
        assert pattern.next_expected_date == date(2024, 1, 1) + timedelta(days=165)
        assert pattern.grace_period_days == 14

    def test_bank_statement_hint(self):
        """Bank statements default to monthly when no band fits."""
        uploads = uploads_at(DocumentType.BANK_STATEMENT, "NAB", [0, 10, 22])
        pattern = detect_pattern(DocumentType.BANK_STATEMENT, "NAB", uploads, as_of=date(2024, 1, 23))
        assert pattern.frequency == PatternFrequency.MONTHLY

    def test_payg_summary_hint(self):
        """PAYG summaries default to yearly when no band fits."""
        uploads = uploads_at(DocumentType.PAYG_SUMMARY, "Employer", [0, 300])
        pattern = detect_pattern(DocumentType.PAYG_SUMMARY, "Employer", uploads, as_of=date(2024, 10, 27))
        assert pattern.frequency == PatternFrequency.YEARLY

    def test_single_upload_unknown(self):
        """One upload has no intervals and stays unknown."""
        uploads = uploads_at(DocumentType.PAYG_SUMMARY, "Employer", [0])
        pattern = detect_pattern(DocumentType.PAYG_SUMMARY, "Employer", uploads, as_of=date(2024, 2, 1))
        assert pattern.frequency == PatternFrequency.UNKNOWN
        assert pattern.confidence_score == 10
        assert pattern.confidence == PatternConfidence.UNCERTAIN

    def test_pattern_change(self):
        """A shift from monthly to quarterly spacing is recorded."""
        uploads = uploads_at(DocumentType.BANK_STATEMENT, "Westpac", [0, 30, 60, 150, 240])
        pattern = detect_pattern(DocumentType.BANK_STATEMENT, "Westpac", uploads, as_of=date(2024, 9, 1))
        assert len(pattern.pattern_changes) == 1
        change = pattern.pattern_changes[0]
        assert change.from_frequency == PatternFrequency.MONTHLY
        assert change.to_frequency == PatternFrequency.QUARTERLY
        assert change.change_date == date(2024, 1, 1) + timedelta(days=60)
        assert change.reason == "Interval changed from 30 to 90 days"
        assert pattern.pattern_stability == PatternStability.CHANGING


# =============================================================================
# HELPER TESTS
# =============================================================================

class TestPatternHelpers:
    """Test statistics, confidence tiers and date arithmetic."""

    def test_statistics(self):
        """Population standard deviation and derived scores."""
        stats = calculate_statistics([30, 30, 31, 29])
        assert stats.average_interval_days == 30
        assert stats.interval_std_dev == 0.71
        assert stats.min_interval_days == 29
        assert stats.max_interval_days == 31
        assert stats.coefficient_of_variation == 0.02
        assert stats.consistency_score == 0.98

    def test_statistics_empty(self):
        """No intervals gives zeroed statistics."""
        stats = calculate_statistics([])
        assert stats.average_interval_days == 0
        assert stats.consistency_score == 0.0

    def test_confidence_tiers(self):
        """Tier thresholds are 80, 60 and 40."""
        assert get_pattern_confidence(80) == PatternConfidence.HIGH
        assert get_pattern_confidence(79) == PatternConfidence.MEDIUM
        assert get_pattern_confidence(60) == PatternConfidence.MEDIUM
        assert get_pattern_confidence(40) == PatternConfidence.LOW
        assert get_pattern_confidence(39) == PatternConfidence.UNCERTAIN

    def test_add_months_clamps(self):
        """Adding months clamps to the end of shorter months."""
        assert add_months(date(2025, 1, 31), 1) == date(2025, 2, 28)
        assert add_months(date(2024, 2, 29), 12) == date(2025, 2, 28)
        assert add_months(date(2024, 11, 15), 3) == date(2025, 2, 15)

    def test_prediction_resnaps_to_usual_day(self):
        """A clamped month-end date returns to the usual day next month."""
        predicted = predict_next_upload_date(date(2025, 3, 31), PatternFrequency.MONTHLY, 31, date(2025, 5, 15))
        assert predicted == date(2025, 5, 31)

    def test_labels(self):
        """Display labels."""
        assert get_frequency_label(PatternFrequency.HALF_YEARLY) == "Half-Yearly"
        assert get_document_type_label(DocumentType.PAYG_SUMMARY) == "PAYG Summary"

    def test_format_expected_date(self):
        """Relative wording within a week, day and month otherwise."""
        today = date(2025, 3, 2)
        assert format_expected_date(today, today) == "Today"
        assert format_expected_date(date(2025, 3, 3), today) == "Tomorrow"
        assert format_expected_date(date(2025, 3, 1), today) == "Yesterday"
        assert format_expected_date(date(2025, 2, 25), today) == "5 days ago"
        assert format_expected_date(date(2025, 3, 7), today) == "In 5 days"
        assert format_expected_date(date(2025, 4, 1), today) == "1 Apr"


# =============================================================================
# BATCH ANALYSIS TESTS
# =============================================================================

class TestAnalyzeUploadPatterns:
    """Test grouping and batch analysis."""

    def test_grouping(self, bank_uploads):
        """Uploads group by document type and source."""
        other = upload(DocumentType.DIVIDEND_STATEMENT, "Commonwealth Bank", date(2025, 2, 1))
        groups = group_uploads_by_source(bank_uploads + [other])
        assert set(groups) == {"bank_statement:Commonwealth Bank", "dividend_statement:Commonwealth Bank"}
        assert len(groups["bank_statement:Commonwealth Bank"]) == 3

    def test_batch(self, bank_uploads):
        """Each source gets its own pattern."""
        dividends = [
            upload(DocumentType.DIVIDEND_STATEMENT, "Computershare", date(2024, m, 15))
            for m in (1, 4, 7, 10)
        ]
        result = analyze_upload_patterns(bank_uploads + dividends, as_of=date(2025, 3, 2))
        assert result.total_sources == 2
        assert result.patterns_detected == 2
        assert result.total_uploads_analyzed == 7
        assert result.errors == []

    def test_pinned_runs_identical(self, bank_uploads):
        """A pinned date stamps the analysis at its start, so reruns match."""
        first = analyze_upload_patterns(bank_uploads, as_of=date(2025, 3, 2))
        second = analyze_upload_patterns(bank_uploads, as_of=date(2025, 3, 2))
        assert first.analyzed_at == datetime(2025, 3, 2, tzinfo=timezone.utc)
        assert first == second

    def test_source_with_colon(self):
        """Sources containing a colon survive the group key."""
        uploads = uploads_at(DocumentType.OTHER, "ACME: Payroll", [0, 30, 60])
        result = analyze_upload_patterns(uploads, as_of=date(2024, 3, 1))
        assert result.patterns[0].source == "ACME: Payroll"

    def test_failures_collected(self, bank_uploads, monkeypatch):
        """A failing group is reported in errors instead of raising."""
        def explode(*args, **kwargs):
            raise RuntimeError("bad data")

        monkeypatch.setattr(upload_patterns, "detect_pattern", explode)
        result = analyze_upload_patterns(bank_uploads, as_of=date(2025, 3, 2))
        assert result.patterns == []
        assert result.errors == ["Error analyzing bank_statement:Commonwealth Bank: bad data"]


# =============================================================================
# MISSING & EXPECTED DOCUMENT TESTS
# =============================================================================

class TestMissingDocuments:
    """Test overdue detection."""

    def test_overdue_past_grace(self, bank_pattern):
        """Twenty days past the expected date with a 5-day grace is missing."""
        missing = detect_missing_documents([bank_pattern], [], as_of=date(2025, 4, 21))
        assert len(missing) == 1
        assert missing[0].is_missing
        assert missing[0].days_overdue == 20
        assert missing[0].grace_period_end == date(2025, 4, 6)
        assert missing[0].last_upload_date == date(2025, 3, 2)
        assert missing[0].historical_uploads == 3

    def test_within_grace(self, bank_pattern):
        """Past the expected date but inside the grace period is listed, not missing."""
        missing = detect_missing_documents([bank_pattern], [], as_of=date(2025, 4, 3))
        assert len(missing) == 1
        assert not missing[0].is_missing
        assert missing[0].days_overdue == 2

    def test_not_yet_due(self, bank_pattern):
        """Nothing is returned before the expected date."""
        assert detect_missing_documents([bank_pattern], [], as_of=date(2025, 3, 31)) == []

    def test_already_uploaded(self, bank_pattern):
        """A matching upload on or after the expected date clears it."""
        recent = [upload(DocumentType.BANK_STATEMENT, "Commonwealth Bank", date(2025, 4, 2))]
        assert detect_missing_documents([bank_pattern], recent, as_of=date(2025, 4, 21)) == []

    def test_other_source_does_not_clear(self, bank_pattern):
        """Uploads from a different source do not count."""
        recent = [upload(DocumentType.BANK_STATEMENT, "ANZ", date(2025, 4, 2))]
        assert len(detect_missing_documents([bank_pattern], recent, as_of=date(2025, 4, 21))) == 1

    def test_uncertain_ignored(self, bank_pattern):
        """Uncertain patterns are never reported."""
        uncertain = bank_pattern.model_copy(update={"confidence": PatternConfidence.UNCERTAIN})
        assert detect_missing_documents([uncertain], [], as_of=date(2025, 4, 21)) == []

    def test_most_overdue_first(self, bank_pattern):
        """Results are ordered by days overdue."""
        older = bank_pattern.model_copy(update={
            "id": "pattern-bank_statement-anz", "source": "ANZ", "next_expected_date": date(2025, 3, 15)
        })
        missing = detect_missing_documents([bank_pattern, older], [], as_of=date(2025, 4, 21))
        assert [m.source for m in missing] == ["ANZ", "Commonwealth Bank"]


class TestExpectedDocuments:
    """Test the look-ahead window."""

    def test_within_window(self, bank_pattern):
        """A date exactly at the window edge is included."""
        expected = get_expected_documents([bank_pattern], days_ahead=30, as_of=date(2025, 3, 2))
        assert len(expected) == 1
        assert expected[0].days_until_expected == 30
        assert expected[0].estimated_arrival_date == date(2025, 4, 1)
        assert expected[0].grace_period_end == date(2025, 4, 6)
        assert expected[0].based_on.pattern_type == PatternFrequency.MONTHLY
        assert expected[0].based_on.uploads_count == 3

    def test_outside_window(self, bank_pattern):
        """Dates beyond the window are left out."""
        assert get_expected_documents([bank_pattern], days_ahead=29, as_of=date(2025, 3, 2)) == []

    def test_past_dates_have_zero_days(self, bank_pattern):
        """Already-passed dates are included with zero days to go."""
        expected = get_expected_documents([bank_pattern], as_of=date(2025, 4, 10))
        assert expected[0].days_until_expected == 0

    def test_soonest_first(self, bank_pattern):
        """Results are ordered soonest first."""
        later = bank_pattern.model_copy(update={"source": "ANZ", "next_expected_date": date(2025, 4, 20)})
        sooner = bank_pattern.model_copy(update={"source": "NAB", "next_expected_date": date(2025, 3, 10)})
        expected = get_expected_documents([later, bank_pattern, sooner], days_ahead=60, as_of=date(2025, 3, 2))
        assert [e.source for e in expected] == ["NAB", "Commonwealth Bank", "ANZ"]
