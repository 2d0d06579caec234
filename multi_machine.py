"""
Multi-machine / line-level OEE aggregation
==========================================
Each machine's OeeInput -> OeeResult is independent, so analyze_fleet() runs
them concurrently on a thread pool. Aggregation afterwards is a pure
reduction over the results, done on a pandas frame with one row per machine.

Aggregation methods:
  simple_average       equal weight per machine
  production_weighted  weighted by total units
  time_weighted        weighted by planned production time
  minimum              weakest machine (serial line, conservative)
  multiplicative       product of machine OEEs (perfectly coupled serial line)
"""

from __future__ import annotations

import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Any, Optional

import numpy as np
import pandas as pd

from economics import EconomicParameters
from engine import OeeResult, analyze, analyze_with_economics
from ledger import Clock
from provenance import Confidence, weakest

BOTTLENECK_OEE_THRESHOLD = 0.70
BOTTLENECK_SHARE = 0.20


class AggregationMethod(str, Enum):
    SIMPLE_AVERAGE = "simple_average"
    PRODUCTION_WEIGHTED = "production_weighted"
    TIME_WEIGHTED = "time_weighted"
    MINIMUM = "minimum"
    MULTIPLICATIVE = "multiplicative"


@dataclass
class MachineOeeData:
    machine_id: str
    result: OeeResult
    machine_name: Optional[str] = None
    sequence_position: Optional[int] = None


@dataclass(frozen=True)
class SystemMetrics:
    avg_availability: float = 0.0
    avg_performance: float = 0.0
    avg_quality: float = 0.0
    total_planned_time: timedelta = timedelta(0)
    total_downtime: timedelta = timedelta(0)
    total_production: int = 0
    total_good_units: int = 0
    best_machine_id: str = ""
    worst_machine_id: str = ""


@dataclass(frozen=True)
class BottleneckInfo:
    machine_id: str
    oee: float
    throughput_impact: float
    recommended_action_key: str


@dataclass(frozen=True)
class BottleneckAnalysis:
    primary_bottlenecks: list = field(default_factory=list)
    system_capacity_limit: Optional[float] = None
    potential_throughput_gain: float = 0.0


@dataclass
class SystemOeeAnalysis:
    system_oee: float
    aggregation_method: AggregationMethod
    machines: list
    system_metrics: SystemMetrics
    bottleneck_analysis: BottleneckAnalysis
    confidence: Confidence

    def to_record(self) -> dict[str, Any]:
        m = self.system_metrics
        return {
            "system_oee": self.system_oee,
            "aggregation_method": self.aggregation_method.value,
            "machine_count": len(self.machines),
            "avg_availability": m.avg_availability,
            "avg_performance": m.avg_performance,
            "avg_quality": m.avg_quality,
            "total_planned_hours": m.total_planned_time.total_seconds() / 3600,
            "total_downtime_hours": m.total_downtime.total_seconds() / 3600,
            "total_production": m.total_production,
            "total_good_units": m.total_good_units,
            "best_machine": m.best_machine_id,
            "worst_machine": m.worst_machine_id,
            "bottlenecks": [b.machine_id for b in self.bottleneck_analysis.primary_bottlenecks],
            "system_capacity_per_hour": self.bottleneck_analysis.system_capacity_limit,
            "confidence": self.confidence.label,
        }


# ---------------------------------------------------------------------------
# Fleet computation
# ---------------------------------------------------------------------------

def analyze_fleet(inputs: list, params: Optional[EconomicParameters] = None,
                  clock: Optional[Clock] = None,
                  max_workers: Optional[int] = None) -> list:
    """Analyze many machines concurrently; output order matches input order."""
    def _one(oee_input):
        if params is None:
            result = analyze(oee_input, clock)
        else:
            result = analyze_with_economics(oee_input, params, clock)
        return MachineOeeData(machine_id=oee_input.machine.machine_id, result=result)

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        return list(pool.map(_one, inputs))


def machine_frame(machines: list) -> pd.DataFrame:
    """One row per machine, pulled from each result's formula parameters."""
    rows = []
    for m in machines:
        core = m.result.core_metrics
        rows.append({
            "machine_id": m.machine_id,
            "availability": core.availability.value,
            "performance": core.performance.value,
            "quality": core.quality.value,
            "oee": core.oee.value,
            "planned_seconds": core.availability.formula_params.get("planned_time_seconds", 0.0),
            "downtime_seconds": core.availability.formula_params.get("downtime_seconds", 0.0),
            "total_count": core.performance.formula_params.get("total_count", 0.0),
            "good_count": core.quality.formula_params.get("good_count", 0.0),
            "ideal_cycle_seconds": core.performance.formula_params.get("ideal_cycle_time_seconds", 0.0),
        })
    return pd.DataFrame(rows, columns=[
        "machine_id", "availability", "performance", "quality", "oee",
        "planned_seconds", "downtime_seconds", "total_count", "good_count",
        "ideal_cycle_seconds",
    ])


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------

def _weighted(df: pd.DataFrame, weights: str) -> float:
    w = df[weights].to_numpy(dtype=float)
    if w.sum() <= 0:
        # nothing to weight by
        return float(df["oee"].mean())
    return float(np.average(df["oee"].to_numpy(dtype=float), weights=w))


def aggregate_oee(df: pd.DataFrame, method: AggregationMethod) -> float:
    if df.empty:
        return 0.0
    if method is AggregationMethod.SIMPLE_AVERAGE:
        return float(df["oee"].mean())
    if method is AggregationMethod.PRODUCTION_WEIGHTED:
        return _weighted(df, "total_count")
    if method is AggregationMethod.TIME_WEIGHTED:
        return _weighted(df, "planned_seconds")
    if method is AggregationMethod.MINIMUM:
        return float(df["oee"].min())
    if method is AggregationMethod.MULTIPLICATIVE:
        return float(df["oee"].prod())
    raise ValueError(f"Unknown aggregation method: {method}")


def calculate_system_metrics(df: pd.DataFrame) -> SystemMetrics:
    if df.empty:
        return SystemMetrics()
    return SystemMetrics(
        avg_availability=float(df["availability"].mean()),
        avg_performance=float(df["performance"].mean()),
        avg_quality=float(df["quality"].mean()),
        total_planned_time=timedelta(seconds=float(df["planned_seconds"].sum())),
        total_downtime=timedelta(seconds=float(df["downtime_seconds"].sum())),
        total_production=int(df["total_count"].sum()),
        total_good_units=int(df["good_count"].sum()),
        best_machine_id=str(df.loc[df["oee"].idxmax(), "machine_id"]),
        worst_machine_id=str(df.loc[df["oee"].idxmin(), "machine_id"]),
    )


def _recommended_action(row) -> str:
    if row["availability"] < min(row["performance"], row["quality"]):
        return "bottleneck.action.reduce_downtime"
    if row["performance"] < row["quality"]:
        return "bottleneck.action.improve_speed"
    return "bottleneck.action.improve_quality"


def analyze_bottlenecks(df: pd.DataFrame) -> BottleneckAnalysis:
    """Bottom 20% of machines by OEE that are also below 0.70 OEE."""
    if df.empty:
        return BottleneckAnalysis()

    ranked = df.sort_values("oee", kind="stable")
    candidates = ranked.head(math.ceil(len(ranked) * BOTTLENECK_SHARE))
    bottlenecks = [
        BottleneckInfo(
            machine_id=str(row["machine_id"]),
            oee=float(row["oee"]),
            throughput_impact=(1.0 - float(row["oee"])) * 100.0,
            recommended_action_key=_recommended_action(row),
        )
        for _, row in candidates.iterrows()
        if row["oee"] < BOTTLENECK_OEE_THRESHOLD
    ]

    worst, best = float(ranked["oee"].iloc[0]), float(ranked["oee"].iloc[-1])
    gain = (best - worst) / worst * 100.0 if worst > 0 else 0.0

    rates = df.loc[df["ideal_cycle_seconds"] > 0, "ideal_cycle_seconds"]
    capacity = float((3600.0 / rates).min()) if not rates.empty else None

    return BottleneckAnalysis(bottlenecks, capacity, gain)


def aggregate_system_oee(machines: list,
                         method: AggregationMethod = AggregationMethod.TIME_WEIGHTED) -> SystemOeeAnalysis:
    df = machine_frame(machines)
    confidence = weakest(*(m.result.core_metrics.oee.confidence for m in machines)) \
        if machines else Confidence.LOW
    return SystemOeeAnalysis(
        system_oee=aggregate_oee(df, method),
        aggregation_method=method,
        machines=list(machines),
        system_metrics=calculate_system_metrics(df),
        bottleneck_analysis=analyze_bottlenecks(df),
        confidence=confidence,
    )


def compare_aggregation_methods(machines: list) -> dict:
    df = machine_frame(machines)
    return {method: aggregate_oee(df, method) for method in AggregationMethod}


def quick_system_analysis(machines: list) -> SystemOeeAnalysis:
    return aggregate_system_oee(machines, AggregationMethod.TIME_WEIGHTED)
