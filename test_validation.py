"""
Unit tests for the validation pipeline.

Run: python -m pytest test_validation.py -v
"""

from datetime import timedelta

from assumptions import MachineState, ThresholdConfiguration
from validation import (
    Severity,
    ValidationIssue,
    ValidationResult,
    check_high_scrap_rate,
    check_input_source_quality,
    check_low_utilization,
    check_missing_reason_codes,
    check_unusual_shift_duration,
    validate_capacity_constraints,
    validate_cycle_times,
    validate_downtime_records,
    validate_input,
    validate_non_negative_duration,
    validate_non_negative_count,
    validate_percentage,
    validate_positive_duration,
    validate_production_counts,
    validate_range,
    validate_time_allocations,
)

H = timedelta(hours=1)
S = timedelta(seconds=1)


# =====================================================================
# Issue / result plumbing
# =====================================================================

class TestValidationResult:

    def test_message_key_from_severity_and_code(self):
        assert ValidationIssue.make(Severity.FATAL, "ZERO_CYCLE_TIME").message_key == \
            "validation.error.zero_cycle_time"
        assert ValidationIssue.make(Severity.WARNING, "HIGH_SCRAP_RATE").message_key == \
            "validation.warning.high_scrap_rate"
        assert ValidationIssue.make(Severity.INFO, "ZERO_PRODUCTION").message_key == \
            "validation.info.zero_production"

    def test_empty_is_valid(self):
        r = ValidationResult()
        assert r.is_valid
        assert not r.has_warnings()

    def test_merge_keeps_order(self):
        a = ValidationResult([ValidationIssue.make(Severity.INFO, "A")])
        b = ValidationResult([ValidationIssue.make(Severity.FATAL, "B")])
        merged = a.merge(b)
        assert merged.codes() == ["A", "B"]
        assert not merged.is_valid
        assert len(merged.by_severity(Severity.FATAL)) == 1


# =====================================================================
# Logical checks
# =====================================================================

class TestTimeAllocations:

    def test_exact_fit_is_clean(self):
        assert validate_time_allocations(8 * H, [7 * H, 1 * H]).issues == []

    def test_overflow_is_fatal(self):
        r = validate_time_allocations(8 * H, [7 * H, 2 * H])
        issue = r.by_code("TIME_ALLOCATION_EXCEEDS_PLANNED")[0]
        assert issue.severity is Severity.FATAL
        assert issue.params["excess_seconds"] == 3600

    def test_gap_below_95_percent_warns(self):
        r = validate_time_allocations(8 * H, [7 * H])
        issue = r.by_code("TIME_ALLOCATION_GAP")[0]
        assert issue.severity is Severity.WARNING
        assert issue.params["gap_percentage"] == 12

    def test_small_gap_is_tolerated(self):
        # 7.8 / 8 = 97.5%
        assert validate_time_allocations(8 * H, [timedelta(hours=7.8)]).issues == []


class TestProductionCounts:

    def test_conserved_counts_never_mismatch(self):
        for total, good, scrap, rework in [(100, 90, 10, 0), (0, 0, 0, 0), (50, 20, 20, 10)]:
            r = validate_production_counts(total, good, scrap, rework)
            assert "PRODUCTION_COUNT_MISMATCH" not in r.codes()

    def test_mismatch_is_fatal(self):
        r = validate_production_counts(100, 95, 10, 0)
        issue = r.by_code("PRODUCTION_COUNT_MISMATCH")[0]
        assert issue.severity is Severity.FATAL
        assert issue.params["difference"] == 5

    def test_zero_production_info(self):
        r = validate_production_counts(0, 0, 0, 0)
        assert r.codes() == ["ZERO_PRODUCTION"]
        assert r.is_valid


class TestCycleTimes:

    def test_no_average_is_clean(self):
        assert validate_cycle_times(25 * S, None).issues == []

    def test_below_ideal_warns(self):
        assert validate_cycle_times(25 * S, 20 * S).codes() == ["CYCLE_TIME_BELOW_IDEAL"]

    def test_far_above_ideal_warns(self):
        r = validate_cycle_times(20 * S, 40 * S)
        assert r.codes() == ["CYCLE_TIME_SIGNIFICANTLY_HIGHER"]
        assert r.issues[0].params["ratio"] == 200

    def test_within_band(self):
        assert validate_cycle_times(20 * S, 25 * S).issues == []


class TestCapacity:

    def test_excess_production_is_fatal(self):
        r = validate_capacity_constraints(100, 1 * H, 60 * S)
        issue = r.by_code("PRODUCTION_EXCEEDS_CAPACITY")[0]
        assert issue.severity is Severity.FATAL
        assert issue.params["theoretical_max"] == 60
        assert issue.params["excess_units"] == 40

    def test_at_capacity_is_clean(self):
        assert validate_capacity_constraints(60, 1 * H, 60 * S).issues == []

    def test_zero_ideal_short_circuits(self):
        r = validate_capacity_constraints(100, 1 * H, timedelta(0))
        assert r.codes() == ["ZERO_CYCLE_TIME"]
        assert not r.is_valid


class TestDowntimeRecords:

    def test_within_tolerance(self):
        assert validate_downtime_records([30 * timedelta(minutes=1), 29 * timedelta(minutes=1)],
                                         1 * H).issues == []

    def test_mismatch_warns(self):
        r = validate_downtime_records([timedelta(minutes=30)], 1 * H)
        issue = r.by_code("DOWNTIME_RECORD_MISMATCH")[0]
        assert issue.severity is Severity.WARNING
        assert issue.params["difference_seconds"] == -1800


# =====================================================================
# Range checks
# =====================================================================

class TestRangeChecks:

    def test_percentage(self):
        assert validate_percentage(0.5, "x").is_valid
        assert validate_percentage(1.0, "x").is_valid
        assert validate_percentage(1.2, "x").codes() == ["PERCENTAGE_OUT_OF_RANGE"]
        assert validate_percentage(-0.1, "x").codes() == ["PERCENTAGE_OUT_OF_RANGE"]

    def test_zero_duration_is_warning(self):
        r = validate_positive_duration(timedelta(0), "planned_production_time")
        assert r.codes() == ["ZERO_DURATION"]
        assert r.is_valid

    def test_negative_duration_is_fatal(self):
        r = validate_non_negative_duration(-H, "downtimes[0]")
        assert r.codes() == ["NEGATIVE_DURATION"]
        assert r.issues[0].severity is Severity.FATAL
        assert r.issues[0].params["value_seconds"] == -3600
        assert validate_non_negative_duration(timedelta(0), "x").is_valid

    def test_negative_planned_time_is_fatal(self):
        r = validate_positive_duration(-H, "planned_production_time")
        assert r.codes() == ["NEGATIVE_DURATION"]
        assert not r.is_valid

    def test_negative_count(self):
        r = validate_non_negative_count(-1, "production.scrap_units")
        assert r.codes() == ["NEGATIVE_COUNT"]
        assert r.issues[0].field_path == "production.scrap_units"

    def test_range(self):
        assert validate_range(5, 0, 10, "x").is_valid
        assert validate_range(11, 0, 10, "x").codes() == ["VALUE_OUT_OF_RANGE"]


# =====================================================================
# Data-quality warnings
# =====================================================================

class TestDataQuality:

    def test_high_scrap(self):
        r = check_high_scrap_rate(30, 100, 0.20)
        assert r.codes() == ["HIGH_SCRAP_RATE"]
        assert r.issues[0].params["scrap_rate"] == 30
        assert check_high_scrap_rate(10, 100, 0.20).issues == []
        assert check_high_scrap_rate(0, 0, 0.20).issues == []

    def test_low_utilization(self):
        assert check_low_utilization(2 * H, 8 * H, 0.30).codes() == ["LOW_UTILIZATION"]
        assert check_low_utilization(4 * H, 8 * H, 0.30).issues == []

    def test_missing_reason_codes(self):
        r = check_missing_reason_codes(3, 4)
        assert r.codes() == ["MISSING_REASON_CODES"]
        assert r.issues[0].severity is Severity.INFO
        assert r.issues[0].params["missing_percentage"] == 25
        assert check_missing_reason_codes(0, 0).issues == []

    def test_source_quality(self):
        r = check_input_source_quality(2, 1, 3)
        assert r.codes() == ["HIGH_DEFAULT_USAGE", "INPUT_SOURCE_DISTRIBUTION"]
        assert check_input_source_quality(8, 0, 0).codes() == ["INPUT_SOURCE_DISTRIBUTION"]

    def test_shift_duration(self):
        assert check_unusual_shift_duration(timedelta(hours=1)).codes() == ["SHORT_ANALYSIS_WINDOW"]
        assert check_unusual_shift_duration(timedelta(hours=30)).codes() == ["LONG_ANALYSIS_WINDOW"]
        assert check_unusual_shift_duration(8 * H).issues == []


# =====================================================================
# validate_input: full pipeline
# =====================================================================

class TestValidateInput:

    def test_basic_input_is_valid(self, basic_input):
        r = validate_input(basic_input)
        assert r.is_valid
        # 1h stopped with no records to back it
        assert "DOWNTIME_RECORD_MISMATCH" in r.codes()
        assert "INPUT_SOURCE_DISTRIBUTION" in r.codes()

    def test_reconciled_records_clear_mismatch(self, builder):
        oee_input = builder.with_downtime(1800).with_downtime(1800, ("Changeover",), False).build()
        assert "DOWNTIME_RECORD_MISMATCH" not in validate_input(oee_input).codes()

    def test_count_mismatch_detected(self, builder):
        r = validate_input(builder.with_production(1000, 960, 50, 0).build())
        assert "PRODUCTION_COUNT_MISMATCH" in r.codes()
        assert not r.is_valid

    def test_capacity_detected(self, builder):
        # 7h running at 25s ideal holds 1008 units
        r = validate_input(builder.with_production(1100, 1050, 50, 0).build())
        assert "PRODUCTION_EXCEEDS_CAPACITY" in r.codes()

    def test_overallocation_detected(self, builder):
        r = validate_input(builder.with_allocation(MachineState.SETUP, 1).build())
        assert "TIME_ALLOCATION_EXCEEDS_PLANNED" in r.codes()

    def test_threshold_percentages_checked(self, builder):
        bad = ThresholdConfiguration(high_scrap_rate_threshold=1.5)
        r = validate_input(builder.with_thresholds(bad).build())
        issue = r.by_code("PERCENTAGE_OUT_OF_RANGE")[0]
        assert issue.field_path == "thresholds.high_scrap_rate_threshold"

    def test_negative_allocation_and_record_are_fatal(self, builder):
        # a negative stopped slot would otherwise hide an hour of downtime
        r = validate_input(builder.with_time_allocations(9, -1).with_downtime(-3600).build())
        paths = [i.field_path for i in r.by_code("NEGATIVE_DURATION")]
        assert paths == ["time_allocations[1]", "downtimes[0]"]
        assert not r.is_valid

    def test_zero_planned_time_does_not_raise(self, builder):
        r = validate_input(builder.with_planned_hours(0).with_time_allocations(0, 0).build())
        assert "ZERO_DURATION" in r.codes()
