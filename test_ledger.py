"""
Unit tests for the assumption ledger.

Run: python -m pytest test_ledger.py -v
"""

from datetime import timedelta

import pytest

from conftest import FIXED_NOW
from ledger import (
    AssumptionEntry,
    AssumptionLedger,
    AssumptionTracker,
    ImpactLevel,
    SourceStatistics,
    WarningSeverity,
    format_duration,
)
from provenance import InputValue, ValueSource
from validation import Severity, ValidationIssue


def _entry(key, source, impact=ImpactLevel.MEDIUM):
    return AssumptionEntry(key, f"ledger.assumptions.{key}", 1, source, FIXED_NOW, impact)


# =====================================================================
# AssumptionLedger
# =====================================================================

class TestAssumptionLedger:

    def test_clock_stamps_analysis(self, fixed_clock):
        assert AssumptionLedger(fixed_clock).analysis_timestamp == FIXED_NOW

    def test_statistics_recomputed_on_every_insert(self, fixed_clock):
        ledger = AssumptionLedger(fixed_clock)
        ledger.add_assumption(_entry("a", ValueSource.EXPLICIT))
        assert ledger.source_statistics.explicit_count == 1
        ledger.add_assumption(_entry("b", ValueSource.DEFAULT))
        ledger.add_assumption(_entry("c", ValueSource.INFERRED))
        ledger.add_assumption(_entry("d", ValueSource.EXPLICIT))
        stats = ledger.source_statistics
        assert (stats.explicit_count, stats.inferred_count, stats.default_count) == (2, 1, 1)
        assert abs(stats.explicit_percentage - 50.0) < 0.001
        assert abs(stats.default_percentage - 25.0) < 0.001

    def test_sealed_ledger_rejects_entries(self, fixed_clock):
        ledger = AssumptionLedger(fixed_clock).seal()
        assert ledger.is_sealed
        with pytest.raises(RuntimeError):
            ledger.add_assumption(_entry("a", ValueSource.EXPLICIT))
        with pytest.raises(RuntimeError):
            ledger.add_metadata("machine_id", "M-1")

    def test_queries(self, fixed_clock):
        ledger = AssumptionLedger(fixed_clock)
        ledger.add_assumption(_entry("a", ValueSource.EXPLICIT, ImpactLevel.CRITICAL))
        ledger.add_assumption(_entry("b", ValueSource.DEFAULT))
        assert [a.key for a in ledger.critical_assumptions()] == ["a"]
        assert [a.key for a in ledger.default_values_used()] == ["b"]
        assert ledger.assumption("b").source is ValueSource.DEFAULT
        assert ledger.assumption("missing") is None

    def test_frame_has_fixed_columns_when_empty(self, fixed_clock):
        df = AssumptionLedger(fixed_clock).to_frame()
        assert df.empty
        assert "source" in df.columns


class TestSourceStatistics:

    def test_empty_percentages(self):
        stats = SourceStatistics()
        assert stats.total_count == 0
        assert stats.explicit_percentage == 0.0

    def test_from_sources(self):
        stats = SourceStatistics.from_sources([ValueSource.INFERRED, ValueSource.INFERRED])
        assert stats.inferred_count == 2
        assert stats.to_record()["inferred_percentage"] == 100.0


# =====================================================================
# AssumptionTracker
# =====================================================================

class TestAssumptionTracker:

    def test_track_duration(self, fixed_clock):
        tracker = AssumptionTracker(fixed_clock)
        tracker.track_duration("planned_production_time", "ledger.assumptions.planned_time",
                               InputValue.explicit(timedelta(hours=8)), ImpactLevel.CRITICAL)
        entry = tracker.finish().assumption("planned_production_time")
        assert entry.value == {"seconds": 28800.0, "formatted": "8h 0m 0s"}
        assert entry.timestamp == FIXED_NOW
        assert entry.impact is ImpactLevel.CRITICAL

    def test_track_count_keeps_source(self, fixed_clock):
        tracker = AssumptionTracker(fixed_clock)
        tracker.track_count("good_units", "ledger.assumptions.good_units",
                            InputValue.inferred(950), ImpactLevel.CRITICAL)
        entry = tracker.finish().assumption("good_units")
        assert entry.value == 950
        assert entry.source is ValueSource.INFERRED

    def test_track_band(self, fixed_clock):
        tracker = AssumptionTracker(fixed_clock)
        tracker.track_band("economics.material_cost", "economics.assumptions.material_cost",
                           (2.7, 3.0, 3.3), ValueSource.EXPLICIT, ImpactLevel.HIGH)
        assert tracker.finish().assumption("economics.material_cost").value["central"] == 3.0

    def test_threshold(self, fixed_clock):
        tracker = AssumptionTracker(fixed_clock)
        tracker.track_threshold("small_stop_threshold", 300.0, "units.seconds",
                                "ledger.thresholds.small_stop_rationale")
        ledger = tracker.finish()
        assert ledger.thresholds[0].value == 300.0
        assert ledger.source_statistics.total_count == 0

    def test_warning_severity_mapping(self, fixed_clock):
        tracker = AssumptionTracker(fixed_clock)
        tracker.add_warning(ValidationIssue.make(Severity.FATAL, "PRODUCTION_COUNT_MISMATCH"),
                            ["total_units"])
        tracker.add_warning(ValidationIssue.make(Severity.INFO, "ZERO_PRODUCTION"))
        ledger = tracker.finish()
        assert [w.severity for w in ledger.warnings] == [WarningSeverity.HIGH, WarningSeverity.LOW]
        assert ledger.warnings[0].related_assumptions == ("total_units",)
        assert len(ledger.high_severity_warnings()) == 1


class TestFormatDuration:

    def test_formats(self):
        assert format_duration(timedelta(hours=1)) == "1h 0m 0s"
        assert format_duration(timedelta(minutes=5)) == "5m 0s"
        assert format_duration(timedelta(seconds=30)) == "30s"
        assert format_duration(timedelta(hours=2, minutes=3, seconds=4)) == "2h 3m 4s"
        assert format_duration(timedelta(0)) == "0s"
