"""
One-at-a-time sensitivity analysis
==================================
Re-runs the core metrics with a single parameter nudged by a fixed
percentage and reports how far OEE moves. Deterministic: no sampling.

Each variation is applied in the improving direction:
  planned_time      +v  (extra time runs at the current rate)
  downtime          -v  (freed time runs at the current rate)
  cycle_time        +v  on the ideal cycle time
  production_count  +v  (good units absorb the change)
  good_units        +v  (total follows)
  scrap_units       -v  (removed scrap becomes good)
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any

import pandas as pd

from assumptions import MachineState, OeeInput, ProductionSummary, TimeAllocation, ZERO
from metrics import CoreMetrics, calculate_core_metrics
from provenance import InputValue

DEFAULT_VARIATION_PERCENT = 10.0


class SensitivityImpact(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @classmethod
    def classify(cls, oee_delta_points: float) -> "SensitivityImpact":
        swing = abs(oee_delta_points)
        if swing > 5.0:
            return cls.CRITICAL
        if swing > 2.0:
            return cls.HIGH
        if swing > 0.5:
            return cls.MEDIUM
        return cls.LOW


@dataclass(frozen=True)
class MetricChanges:
    availability_delta: float
    performance_delta: float
    quality_delta: float


@dataclass(frozen=True)
class SensitivityResult:
    parameter_key: str
    baseline_value: float
    varied_value: float
    variation_percent: float
    baseline_oee: float
    oee_delta: float
    metric_changes: MetricChanges
    impact_level: SensitivityImpact

    def to_record(self) -> dict[str, Any]:
        return {
            "parameter": self.parameter_key,
            "baseline_value": self.baseline_value,
            "varied_value": self.varied_value,
            "variation_pct": self.variation_percent,
            "baseline_oee": round(self.baseline_oee, 3),
            "oee_delta": round(self.oee_delta, 3),
            "availability_delta": round(self.metric_changes.availability_delta, 3),
            "performance_delta": round(self.metric_changes.performance_delta, 3),
            "quality_delta": round(self.metric_changes.quality_delta, 3),
            "impact": self.impact_level.value,
        }


@dataclass(frozen=True)
class SensitivityAnalysis:
    results: list
    most_sensitive_parameter: str
    least_sensitive_parameter: str
    variation_percent: float

    def result(self, parameter_key: str):
        for r in self.results:
            if r.parameter_key == parameter_key:
                return r
        return None

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame([r.to_record() for r in self.results])


# ---------------------------------------------------------------------------
# Input perturbations
# ---------------------------------------------------------------------------

def _scale_counts(production: ProductionSummary, factor: float) -> ProductionSummary:
    total = round(production.total_units.value * factor)
    scrap = round(production.scrap_units.value * factor)
    rework = round(production.reworked_units.value * factor)
    return ProductionSummary.from_counts(
        total=InputValue.inferred(total),
        good=InputValue.inferred(max(0, total - scrap - rework)),
        scrap=InputValue.inferred(scrap),
        rework=InputValue.inferred(rework),
    )


def _add_running_time(oee_input: OeeInput, allocations: list, extra: timedelta,
                      planned: InputValue) -> OeeInput:
    """Give `extra` running time to the machine, producing at its current rate."""
    running_before = oee_input.time_model.running_time()
    allocations = list(allocations)
    for i, alloc in enumerate(allocations):
        if alloc.state is MachineState.RUNNING:
            allocations[i] = dataclasses.replace(
                alloc, duration=InputValue.inferred(alloc.duration.value + extra))
            break
    else:
        allocations.append(TimeAllocation(MachineState.RUNNING, InputValue.inferred(extra)))

    production = oee_input.production
    if running_before > ZERO:
        production = _scale_counts(production, (running_before + extra) / running_before)

    time_model = dataclasses.replace(oee_input.time_model, planned_production_time=planned,
                                     allocations=allocations)
    return dataclasses.replace(oee_input, time_model=time_model, production=production)


def vary_planned_time(oee_input: OeeInput, v: float) -> OeeInput:
    planned = oee_input.time_model.planned_production_time.value
    extra = planned * v
    return _add_running_time(oee_input, oee_input.time_model.allocations, extra,
                             InputValue.inferred(planned + extra))


def vary_downtime(oee_input: OeeInput, v: float) -> OeeInput:
    freed = ZERO
    allocations = []
    for alloc in oee_input.time_model.allocations:
        if alloc.state is MachineState.RUNNING:
            allocations.append(alloc)
            continue
        cut = alloc.duration.value * v
        freed += cut
        allocations.append(dataclasses.replace(
            alloc, duration=InputValue.inferred(alloc.duration.value - cut)))
    return _add_running_time(oee_input, allocations, freed,
                             oee_input.time_model.planned_production_time)


def vary_cycle_time(oee_input: OeeInput, v: float) -> OeeInput:
    cycle = oee_input.cycle_time
    ideal = cycle.ideal_cycle_time.map(lambda d: d * (1.0 + v))
    return dataclasses.replace(oee_input, cycle_time=dataclasses.replace(cycle, ideal_cycle_time=ideal))


def vary_production_count(oee_input: OeeInput, v: float) -> OeeInput:
    prod = oee_input.production
    total = round(prod.total_units.value * (1.0 + v))
    good = max(0, total - prod.scrap_units.value - prod.reworked_units.value)
    varied = dataclasses.replace(prod, total_units=InputValue.inferred(total),
                                 good_units=InputValue.inferred(good))
    return dataclasses.replace(oee_input, production=varied)


def vary_good_units(oee_input: OeeInput, v: float) -> OeeInput:
    prod = oee_input.production
    good = round(prod.good_units.value * (1.0 + v))
    total = good + prod.scrap_units.value + prod.reworked_units.value
    varied = dataclasses.replace(prod, total_units=InputValue.inferred(total),
                                 good_units=InputValue.inferred(good))
    return dataclasses.replace(oee_input, production=varied)


def vary_scrap_units(oee_input: OeeInput, v: float) -> OeeInput:
    prod = oee_input.production
    removed = round(prod.scrap_units.value * v)
    varied = dataclasses.replace(
        prod,
        scrap_units=InputValue.inferred(prod.scrap_units.value - removed),
        good_units=InputValue.inferred(prod.good_units.value + removed),
    )
    return dataclasses.replace(oee_input, production=varied)


# key -> (perturbation, sign of the variation, baseline value getter)
PARAMETERS = {
    "sensitivity.planned_time": (
        vary_planned_time, 1.0,
        lambda i: i.time_model.planned_production_time.value.total_seconds()),
    "sensitivity.downtime": (
        vary_downtime, -1.0,
        lambda i: i.time_model.total_downtime().total_seconds()),
    "sensitivity.cycle_time": (
        vary_cycle_time, 1.0,
        lambda i: i.cycle_time.ideal_cycle_time.value.total_seconds()),
    "sensitivity.production_count": (
        vary_production_count, 1.0,
        lambda i: float(i.production.total_units.value)),
    "sensitivity.good_units": (
        vary_good_units, 1.0,
        lambda i: float(i.production.good_units.value)),
    "sensitivity.scrap_units": (
        vary_scrap_units, -1.0,
        lambda i: float(i.production.scrap_units.value)),
}


# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------

def analyze_sensitivity(oee_input: OeeInput, baseline: CoreMetrics,
                        variation_percent: float = DEFAULT_VARIATION_PERCENT) -> SensitivityAnalysis:
    v = abs(variation_percent) / 100.0
    baseline_oee = baseline.oee.value * 100.0
    results = []

    for key, (vary, sign, getter) in PARAMETERS.items():
        varied_input = vary(oee_input, v)
        varied = calculate_core_metrics(varied_input)
        delta = varied.oee.value * 100.0 - baseline_oee
        results.append(SensitivityResult(
            parameter_key=key,
            baseline_value=getter(oee_input),
            varied_value=getter(varied_input),
            variation_percent=sign * abs(variation_percent),
            baseline_oee=baseline_oee,
            oee_delta=delta,
            metric_changes=MetricChanges(
                availability_delta=(varied.availability.value - baseline.availability.value) * 100.0,
                performance_delta=(varied.performance.value - baseline.performance.value) * 100.0,
                quality_delta=(varied.quality.value - baseline.quality.value) * 100.0,
            ),
            impact_level=SensitivityImpact.classify(delta),
        ))

    # max/min return the first of equal swings, so ties resolve in parameter order
    most = max(results, key=lambda r: abs(r.oee_delta))
    least = min(results, key=lambda r: abs(r.oee_delta))
    return SensitivityAnalysis(results, most.parameter_key, least.parameter_key,
                               abs(variation_percent))


def quick_sensitivity_analysis(oee_input: OeeInput, baseline: CoreMetrics) -> SensitivityAnalysis:
    return analyze_sensitivity(oee_input, baseline, DEFAULT_VARIATION_PERCENT)
