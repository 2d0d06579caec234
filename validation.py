"""
Validation pipeline
===================
Pure checks of the internal mathematical coherence of an OeeInput. Each check
returns a ValidationResult; results compose with merge(). Nothing here judges
whether a plant is "realistic" beyond the configured thresholds.

Severity:
  FATAL    the result must not be trusted (still computed, clamped)
  WARNING  calculation proceeds, result is suspect
  INFO     advisory only
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Any, Optional

from assumptions import OeeInput
from provenance import ValueSource

ALLOCATION_GAP_RATIO = 0.95
CYCLE_TIME_HIGH_RATIO = 1.5
DOWNTIME_TOLERANCE_SECONDS = 60
HIGH_DEFAULT_PERCENT = 30.0
SHORT_WINDOW_HOURS = 2.0
LONG_WINDOW_HOURS = 24.0


class Severity(str, Enum):
    FATAL = "fatal"
    WARNING = "warning"
    INFO = "info"


_KEY_PREFIX = {Severity.FATAL: "error", Severity.WARNING: "warning", Severity.INFO: "info"}


@dataclass(frozen=True)
class ValidationIssue:
    code: str
    message_key: str
    severity: Severity
    params: dict[str, Any] = field(default_factory=dict)
    field_path: Optional[str] = None

    @classmethod
    def make(cls, severity: Severity, code: str, params: Optional[dict] = None,
             field_path: Optional[str] = None) -> "ValidationIssue":
        key = f"validation.{_KEY_PREFIX[severity]}.{code.lower()}"
        return cls(code, key, severity, dict(params or {}), field_path)

    def to_record(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "severity": self.severity.value,
            "message_key": self.message_key,
            "field": self.field_path or "",
            "params": dict(self.params),
        }


@dataclass
class ValidationResult:
    issues: list = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.has_fatal_errors()

    def add(self, issue: ValidationIssue) -> None:
        self.issues.append(issue)

    def merge(self, other: "ValidationResult") -> "ValidationResult":
        self.issues.extend(other.issues)
        return self

    def has_fatal_errors(self) -> bool:
        return any(i.severity is Severity.FATAL for i in self.issues)

    def has_warnings(self) -> bool:
        return any(i.severity is Severity.WARNING for i in self.issues)

    def by_severity(self, severity: Severity) -> list:
        return [i for i in self.issues if i.severity is severity]

    def by_code(self, code: str) -> list:
        return [i for i in self.issues if i.code == code]

    def codes(self) -> list:
        return [i.code for i in self.issues]


def _single(severity, code, params=None, field_path=None) -> ValidationResult:
    return ValidationResult([ValidationIssue.make(severity, code, params, field_path)])


def _secs(d: timedelta) -> float:
    return d.total_seconds()


# ---------------------------------------------------------------------------
# Logical checks
# ---------------------------------------------------------------------------

def validate_time_allocations(planned_time: timedelta, allocations: list) -> ValidationResult:
    result = ValidationResult()
    allocated = sum(allocations, timedelta(0))
    planned = _secs(planned_time)

    if allocated > planned_time:
        result.add(ValidationIssue.make(Severity.FATAL, "TIME_ALLOCATION_EXCEEDS_PLANNED", {
            "allocated_seconds": _secs(allocated),
            "planned_seconds": planned,
            "excess_seconds": _secs(allocated - planned_time),
        }, "time_allocations"))

    if allocations and planned > 0:
        ratio = _secs(allocated) / planned
        if ratio < ALLOCATION_GAP_RATIO:
            result.add(ValidationIssue.make(Severity.WARNING, "TIME_ALLOCATION_GAP", {
                "allocated_seconds": _secs(allocated),
                "planned_seconds": planned,
                "gap_seconds": _secs(planned_time - allocated),
                "gap_percentage": round((1.0 - ratio) * 100.0),
            }, "time_allocations"))
    return result


def validate_production_counts(total: int, good: int, scrap: int, rework: int) -> ValidationResult:
    result = ValidationResult()
    parts_sum = good + scrap + rework
    if parts_sum != total:
        result.add(ValidationIssue.make(Severity.FATAL, "PRODUCTION_COUNT_MISMATCH", {
            "total_units": total,
            "good_units": good,
            "scrap_units": scrap,
            "reworked_units": rework,
            "parts_sum": parts_sum,
            "difference": parts_sum - total,
        }, "production"))
    if total == 0:
        result.add(ValidationIssue.make(Severity.INFO, "ZERO_PRODUCTION",
                                        field_path="production.total_units"))
    return result


def validate_cycle_times(ideal: timedelta, average: Optional[timedelta]) -> ValidationResult:
    result = ValidationResult()
    if average is None:
        return result

    if average < ideal:
        result.add(ValidationIssue.make(Severity.WARNING, "CYCLE_TIME_BELOW_IDEAL", {
            "ideal_seconds": _secs(ideal),
            "average_seconds": _secs(average),
            "difference_seconds": _secs(ideal - average),
        }, "cycle_time.average_cycle_time"))

    if _secs(ideal) > 0:
        ratio = _secs(average) / _secs(ideal)
        if ratio > CYCLE_TIME_HIGH_RATIO:
            result.add(ValidationIssue.make(Severity.WARNING, "CYCLE_TIME_SIGNIFICANTLY_HIGHER", {
                "ideal_seconds": _secs(ideal),
                "average_seconds": _secs(average),
                "ratio": round(ratio * 100.0),
            }, "cycle_time.average_cycle_time"))
    return result


def validate_capacity_constraints(total: int, running_time: timedelta,
                                  ideal: timedelta) -> ValidationResult:
    """Production cannot exceed floor(running / ideal); a zero ideal short-circuits."""
    if _secs(ideal) <= 0:
        return _single(Severity.FATAL, "ZERO_CYCLE_TIME",
                       field_path="cycle_time.ideal_cycle_time")

    theoretical_max = math.floor(_secs(running_time) / _secs(ideal))
    if total > theoretical_max:
        return _single(Severity.FATAL, "PRODUCTION_EXCEEDS_CAPACITY", {
            "total_units": total,
            "theoretical_max": theoretical_max,
            "running_seconds": _secs(running_time),
            "ideal_cycle_seconds": _secs(ideal),
            "excess_units": total - theoretical_max,
        }, "production.total_units")
    return ValidationResult()


def validate_downtime_records(record_durations: list, stopped_time: timedelta) -> ValidationResult:
    records_sum = sum(record_durations, timedelta(0))
    diff = _secs(records_sum) - _secs(stopped_time)
    if abs(diff) > DOWNTIME_TOLERANCE_SECONDS:
        return _single(Severity.WARNING, "DOWNTIME_RECORD_MISMATCH", {
            "records_sum_seconds": _secs(records_sum),
            "stopped_time_seconds": _secs(stopped_time),
            "difference_seconds": diff,
        }, "downtimes")
    return ValidationResult()


# ---------------------------------------------------------------------------
# Range checks
# ---------------------------------------------------------------------------

def validate_percentage(value: float, field_name: str) -> ValidationResult:
    if not 0.0 <= value <= 1.0:
        return _single(Severity.FATAL, "PERCENTAGE_OUT_OF_RANGE", {
            "field": field_name, "value": value, "min": 0.0, "max": 1.0,
        }, field_name)
    return ValidationResult()


def validate_positive_duration(value: timedelta, field_name: str) -> ValidationResult:
    if value < timedelta(0):
        return validate_non_negative_duration(value, field_name)
    if value == timedelta(0):
        return _single(Severity.WARNING, "ZERO_DURATION", {"field": field_name}, field_name)
    return ValidationResult()


def validate_non_negative_duration(value: timedelta, field_name: str) -> ValidationResult:
    if value < timedelta(0):
        return _single(Severity.FATAL, "NEGATIVE_DURATION",
                       {"field": field_name, "value_seconds": _secs(value)}, field_name)
    return ValidationResult()


def validate_non_negative_count(value: int, field_name: str) -> ValidationResult:
    if value < 0:
        return _single(Severity.FATAL, "NEGATIVE_COUNT",
                       {"field": field_name, "value": value}, field_name)
    return ValidationResult()


def validate_range(value, min_value, max_value, field_name: str) -> ValidationResult:
    if value < min_value or value > max_value:
        return _single(Severity.FATAL, "VALUE_OUT_OF_RANGE", {
            "field": field_name, "value": value, "min": min_value, "max": max_value,
        }, field_name)
    return ValidationResult()


# ---------------------------------------------------------------------------
# Data-quality warnings (never fatal)
# ---------------------------------------------------------------------------

def check_high_scrap_rate(scrap: int, total: int, threshold: float) -> ValidationResult:
    if total > 0:
        rate = scrap / total
        if rate > threshold:
            return _single(Severity.WARNING, "HIGH_SCRAP_RATE", {
                "scrap_units": scrap,
                "total_units": total,
                "scrap_rate": round(rate * 100.0),
                "threshold": round(threshold * 100.0),
            }, "production.scrap_units")
    return ValidationResult()


def check_low_utilization(running_time: timedelta, planned_time: timedelta,
                          threshold: float) -> ValidationResult:
    if _secs(planned_time) > 0:
        utilization = _secs(running_time) / _secs(planned_time)
        if utilization < threshold:
            return _single(Severity.WARNING, "LOW_UTILIZATION", {
                "running_seconds": _secs(running_time),
                "planned_seconds": _secs(planned_time),
                "utilization": round(utilization * 100.0),
                "threshold": round(threshold * 100.0),
            }, "time_allocations")
    return ValidationResult()


def check_missing_reason_codes(with_reasons: int, total_records: int) -> ValidationResult:
    if total_records > 0 and with_reasons < total_records:
        missing = total_records - with_reasons
        return _single(Severity.INFO, "MISSING_REASON_CODES", {
            "missing_count": missing,
            "total_records": total_records,
            "missing_percentage": round(missing / total_records * 100.0),
        }, "downtimes")
    return ValidationResult()


def check_input_source_quality(explicit: int, inferred: int, default: int) -> ValidationResult:
    result = ValidationResult()
    total = explicit + inferred + default
    if total == 0:
        return result

    default_pct = default / total * 100.0
    if default_pct > HIGH_DEFAULT_PERCENT:
        result.add(ValidationIssue.make(Severity.WARNING, "HIGH_DEFAULT_USAGE", {
            "default_count": default,
            "total_inputs": total,
            "default_percentage": round(default_pct),
        }))
    result.add(ValidationIssue.make(Severity.INFO, "INPUT_SOURCE_DISTRIBUTION", {
        "explicit_count": explicit,
        "inferred_count": inferred,
        "default_count": default,
        "explicit_percentage": round(explicit / total * 100.0),
    }))
    return result


def check_unusual_shift_duration(planned_time: timedelta) -> ValidationResult:
    result = ValidationResult()
    hours = _secs(planned_time) / 3600.0
    if hours < SHORT_WINDOW_HOURS:
        result.add(ValidationIssue.make(Severity.INFO, "SHORT_ANALYSIS_WINDOW",
                                        {"duration_hours": round(hours, 2)},
                                        "planned_production_time"))
    if hours > LONG_WINDOW_HOURS:
        result.add(ValidationIssue.make(Severity.INFO, "LONG_ANALYSIS_WINDOW",
                                        {"duration_hours": round(hours, 2)},
                                        "planned_production_time"))
    return result


# ---------------------------------------------------------------------------
# Composition
# ---------------------------------------------------------------------------

def validate_input(oee_input: OeeInput) -> ValidationResult:
    """Run every check against one input, in a fixed order."""
    tm = oee_input.time_model
    prod = oee_input.production
    cycle = oee_input.cycle_time
    thresholds = oee_input.thresholds
    planned = tm.planned_production_time.value
    running = tm.running_time()

    result = ValidationResult()
    result.merge(validate_positive_duration(planned, "planned_production_time"))
    for i, alloc in enumerate(tm.allocations):
        result.merge(validate_non_negative_duration(alloc.duration.value, f"time_allocations[{i}]"))
    for i, record in enumerate(oee_input.downtimes):
        result.merge(validate_non_negative_duration(record.duration.value, f"downtimes[{i}]"))
    for name, value in prod.values().items():
        result.merge(validate_non_negative_count(value.value, f"production.{name}"))
    for name in ("speed_loss_threshold", "high_scrap_rate_threshold", "low_utilization_threshold"):
        result.merge(validate_percentage(getattr(thresholds, name), f"thresholds.{name}"))

    result.merge(validate_time_allocations(planned, [a.duration.value for a in tm.allocations]))
    result.merge(validate_production_counts(prod.total_units.value, prod.good_units.value,
                                            prod.scrap_units.value, prod.reworked_units.value))
    avg = cycle.average_cycle_time.value if cycle.average_cycle_time is not None else None
    result.merge(validate_cycle_times(cycle.ideal_cycle_time.value, avg))
    result.merge(validate_capacity_constraints(prod.total_units.value, running,
                                               cycle.ideal_cycle_time.value))
    result.merge(validate_downtime_records([r.duration.value for r in oee_input.downtimes],
                                           tm.total_downtime()))

    result.merge(check_high_scrap_rate(prod.scrap_units.value, prod.total_units.value,
                                       thresholds.high_scrap_rate_threshold))
    result.merge(check_low_utilization(running, planned, thresholds.low_utilization_threshold))
    result.merge(check_missing_reason_codes(oee_input.downtimes.count_with_reasons(),
                                            len(oee_input.downtimes)))
    sources = [v.source for v in oee_input.tracked_values()]
    result.merge(check_input_source_quality(sources.count(ValueSource.EXPLICIT),
                                            sources.count(ValueSource.INFERRED),
                                            sources.count(ValueSource.DEFAULT)))
    result.merge(check_unusual_shift_duration(planned))
    return result

