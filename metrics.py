"""
Core and extended OEE metrics
=============================
Availability x Performance x Quality = OEE, plus TEEP, utilization,
MTBF/MTTR and scrap/rework rates. Every number is emitted as a
TrackedMetric carrying its formula inputs and a confidence derived from
the provenance of those inputs.

Ratios are clamped to [0, 1]; a zero denominator yields 0.0.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Optional

from assumptions import OeeInput
from provenance import Confidence, TrackedMetric, confidence_of, weakest

PERCENT = "units.percentage"
SECONDS = "units.seconds"


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def safe_ratio(numerator: float, denominator: float) -> float:
    if denominator == 0:
        return 0.0
    return numerator / denominator


def _metric(name, value, unit, params, confidence) -> TrackedMetric:
    return TrackedMetric(
        name_key=f"metrics.{name}",
        value=value,
        unit_key=unit,
        formula_key=f"formulas.{name}",
        formula_params=params,
        confidence=confidence,
    )


# ---------------------------------------------------------------------------
# Core metrics
# ---------------------------------------------------------------------------

def calculate_availability(planned: timedelta, downtime: timedelta,
                           confidence: Confidence) -> TrackedMetric:
    planned_s, downtime_s = planned.total_seconds(), downtime.total_seconds()
    value = clamp(safe_ratio(planned_s - downtime_s, planned_s))
    return _metric("availability", value, PERCENT, {
        "planned_time_seconds": planned_s,
        "downtime_seconds": downtime_s,
        "operating_time_seconds": planned_s - downtime_s,
    }, confidence)


def calculate_performance(ideal_cycle: timedelta, total_count: int, operating: timedelta,
                          confidence: Confidence) -> TrackedMetric:
    ideal_s, operating_s = ideal_cycle.total_seconds(), operating.total_seconds()
    ideal_production = ideal_s * total_count
    value = clamp(safe_ratio(ideal_production, operating_s))
    return _metric("performance", value, PERCENT, {
        "ideal_cycle_time_seconds": ideal_s,
        "total_count": float(total_count),
        "operating_time_seconds": operating_s,
        "ideal_production_time": ideal_production,
    }, confidence)


def calculate_quality(good_count: int, total_count: int, confidence: Confidence) -> TrackedMetric:
    value = clamp(safe_ratio(good_count, total_count))
    return _metric("quality", value, PERCENT, {
        "good_count": float(good_count),
        "total_count": float(total_count),
    }, confidence)


def calculate_oee(availability: TrackedMetric, performance: TrackedMetric,
                  quality: TrackedMetric) -> TrackedMetric:
    value = availability.value * performance.value * quality.value
    return _metric("oee", value, PERCENT, {
        "availability": availability.value,
        "performance": performance.value,
        "quality": quality.value,
    }, weakest(availability.confidence, performance.confidence, quality.confidence))


@dataclass(frozen=True)
class CoreMetrics:
    availability: TrackedMetric
    performance: TrackedMetric
    quality: TrackedMetric
    oee: TrackedMetric

    def as_dict(self) -> dict[str, TrackedMetric]:
        return {"availability": self.availability, "performance": self.performance,
                "quality": self.quality, "oee": self.oee}

    def to_record(self) -> dict[str, Any]:
        return {name: m.to_record() for name, m in self.as_dict().items()}


def calculate_core_metrics(oee_input: OeeInput) -> CoreMetrics:
    tm = oee_input.time_model
    prod = oee_input.production
    ideal = oee_input.cycle_time.ideal_cycle_time

    planned = tm.planned_production_time.value
    downtime = tm.total_downtime()
    operating = planned - downtime
    time_conf = weakest(tm.planned_production_time.confidence, tm.allocation_confidence())

    availability = calculate_availability(planned, downtime, time_conf)
    performance = calculate_performance(
        ideal.value, prod.total_units.value, operating,
        weakest(time_conf, confidence_of(ideal, prod.total_units)),
    )
    quality = calculate_quality(prod.good_units.value, prod.total_units.value,
                                confidence_of(prod.good_units, prod.total_units))
    return CoreMetrics(availability, performance, quality,
                       calculate_oee(availability, performance, quality))


# ---------------------------------------------------------------------------
# Extended metrics
# ---------------------------------------------------------------------------
# Time-based extended metrics use the running-state time as operating time.

def calculate_teep(operating: timedelta, all_time: timedelta, performance: TrackedMetric,
                   quality: TrackedMetric, confidence: Confidence) -> TrackedMetric:
    operating_s, all_s = operating.total_seconds(), all_time.total_seconds()
    loading = clamp(safe_ratio(operating_s, all_s))
    value = clamp(loading * performance.value * quality.value)
    return _metric("teep", value, PERCENT, {
        "operating_time_seconds": operating_s,
        "all_time_seconds": all_s,
        "loading_factor": loading,
        "performance": performance.value,
        "quality": quality.value,
    }, weakest(confidence, performance.confidence, quality.confidence))


def calculate_utilization(operating: timedelta, planned: timedelta,
                          confidence: Confidence) -> TrackedMetric:
    operating_s, planned_s = operating.total_seconds(), planned.total_seconds()
    return _metric("utilization", clamp(safe_ratio(operating_s, planned_s)), PERCENT, {
        "operating_time_seconds": operating_s,
        "planned_time_seconds": planned_s,
    }, confidence)


def calculate_mtbf(operating: timedelta, failure_count: int,
                   confidence: Confidence) -> Optional[TrackedMetric]:
    if failure_count == 0:
        return None
    operating_s = operating.total_seconds()
    return _metric("mtbf", operating_s / failure_count, SECONDS, {
        "operating_time_seconds": operating_s,
        "failure_count": float(failure_count),
    }, confidence)


def calculate_mttr(total_repair_time: timedelta, failure_count: int,
                   confidence: Confidence) -> Optional[TrackedMetric]:
    if failure_count == 0:
        return None
    repair_s = total_repair_time.total_seconds()
    return _metric("mttr", repair_s / failure_count, SECONDS, {
        "total_repair_time_seconds": repair_s,
        "failure_count": float(failure_count),
    }, confidence)


def calculate_scrap_rate(scrap: int, total: int, confidence: Confidence) -> TrackedMetric:
    return _metric("scrap_rate", clamp(safe_ratio(scrap, total)), PERCENT, {
        "scrap_count": float(scrap),
        "total_count": float(total),
    }, confidence)


def calculate_rework_rate(rework: int, total: int, confidence: Confidence) -> TrackedMetric:
    return _metric("rework_rate", clamp(safe_ratio(rework, total)), PERCENT, {
        "rework_count": float(rework),
        "total_count": float(total),
    }, confidence)


def calculate_net_operating_time(operating: timedelta, confidence: Confidence) -> TrackedMetric:
    return _metric("net_operating_time", operating.total_seconds(), SECONDS, {
        "operating_time_seconds": operating.total_seconds(),
    }, confidence)


@dataclass(frozen=True)
class ExtendedMetrics:
    teep: Optional[TrackedMetric]
    utilization: TrackedMetric
    mtbf: Optional[TrackedMetric]
    mttr: Optional[TrackedMetric]
    scrap_rate: TrackedMetric
    rework_rate: TrackedMetric
    net_operating_time: TrackedMetric

    def as_dict(self) -> dict[str, Optional[TrackedMetric]]:
        return {
            "teep": self.teep,
            "utilization": self.utilization,
            "mtbf": self.mtbf,
            "mttr": self.mttr,
            "scrap_rate": self.scrap_rate,
            "rework_rate": self.rework_rate,
            "net_operating_time": self.net_operating_time,
        }

    def to_record(self) -> dict[str, Any]:
        return {name: (m.to_record() if m is not None else None)
                for name, m in self.as_dict().items()}


def calculate_extended_metrics(oee_input: OeeInput, core: CoreMetrics) -> ExtendedMetrics:
    tm = oee_input.time_model
    prod = oee_input.production
    downtimes = oee_input.downtimes

    running = tm.running_time()
    time_conf = weakest(tm.planned_production_time.confidence, tm.allocation_confidence())
    failures = downtimes.failures()
    failure_conf = weakest(*(r.duration.confidence for r in failures))

    teep = None
    if tm.all_time is not None and tm.all_time.value > timedelta(0):
        teep = calculate_teep(running, tm.all_time.value, core.performance, core.quality,
                              weakest(time_conf, tm.all_time.confidence))

    return ExtendedMetrics(
        teep=teep,
        utilization=calculate_utilization(running, tm.planned_production_time.value, time_conf),
        mtbf=calculate_mtbf(running, len(failures), weakest(time_conf, failure_conf)),
        mttr=calculate_mttr(downtimes.failure_duration(), len(failures), failure_conf),
        scrap_rate=calculate_scrap_rate(prod.scrap_units.value, prod.total_units.value,
                                        confidence_of(prod.scrap_units, prod.total_units)),
        rework_rate=calculate_rework_rate(prod.reworked_units.value, prod.total_units.value,
                                          confidence_of(prod.reworked_units, prod.total_units)),
        net_operating_time=calculate_net_operating_time(running, tm.allocation_confidence()),
    )
