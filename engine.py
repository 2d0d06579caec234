"""
OEE analysis orchestrator
=========================
analyze(OeeInput) -> OeeResult runs validation, records every input in the
assumption ledger, then computes core metrics, extended metrics, the loss
tree, optional economics and the leverage ranking.

Bad business data never raises: fatal issues are reported through
result.validation alongside best-effort (clamped) numbers, and the caller
decides whether to trust them.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Optional

from assumptions import OeeInput
from economics import EconomicAnalysis, EconomicParameters, economics_for_input
from ledger import AssumptionLedger, AssumptionTracker, Clock, ImpactLevel
from leverage import calculate_leverage
from loss_tree import LossTree, build_loss_tree
from metrics import CoreMetrics, ExtendedMetrics, calculate_core_metrics, calculate_extended_metrics
from validation import Severity, ValidationResult, validate_input

logger = logging.getLogger(__name__)

INDEXED_PATH = re.compile(r"^(time_allocations|downtimes)\[(\d+)\]$")
PRODUCTION_KEYS = ("total_units", "good_units", "scrap_units", "reworked_units")
COUNT_IMPACT = {
    "total_units": ImpactLevel.CRITICAL,
    "good_units": ImpactLevel.CRITICAL,
    "scrap_units": ImpactLevel.HIGH,
    "reworked_units": ImpactLevel.MEDIUM,
}


@dataclass
class OeeResult:
    core_metrics: CoreMetrics
    extended_metrics: ExtendedMetrics
    loss_tree: LossTree
    economic_analysis: Optional[EconomicAnalysis]
    leverage: list
    ledger: AssumptionLedger
    validation: ValidationResult

    def to_dict(self) -> dict[str, Any]:
        return {
            "core_metrics": self.core_metrics.to_record(),
            "extended_metrics": self.extended_metrics.to_record(),
            "loss_tree": self.loss_tree.to_record(),
            "economic_analysis": (self.economic_analysis.to_record()
                                  if self.economic_analysis is not None else None),
            "leverage": [i.to_record() for i in self.leverage],
            "ledger": self.ledger.to_record(),
            "validation": {
                "is_valid": self.validation.is_valid,
                "issues": [i.to_record() for i in self.validation.issues],
            },
        }


# ---------------------------------------------------------------------------
# Ledger population
# ---------------------------------------------------------------------------

def _allocation_key(index: int, allocation) -> str:
    return f"time_allocation.{index}.{allocation.state.value}"


def _downtime_key(index: int) -> str:
    return f"downtime.{index}"


def track_inputs(tracker: AssumptionTracker, oee_input: OeeInput) -> None:
    tm = oee_input.time_model
    cycle = oee_input.cycle_time

    tracker.track_duration("planned_production_time", "ledger.assumptions.planned_time",
                           tm.planned_production_time, ImpactLevel.CRITICAL)
    if tm.all_time is not None:
        tracker.track_duration("all_time", "ledger.assumptions.all_time",
                               tm.all_time, ImpactLevel.HIGH)
    for i, alloc in enumerate(tm.allocations):
        tracker.track_duration(_allocation_key(i, alloc), alloc.state.translation_key,
                               alloc.duration, ImpactLevel.HIGH)

    for name, value in oee_input.production.values().items():
        tracker.track_count(name, f"ledger.assumptions.{name}", value, COUNT_IMPACT[name])

    tracker.track_duration("ideal_cycle_time", "ledger.assumptions.ideal_cycle_time",
                           cycle.ideal_cycle_time, ImpactLevel.CRITICAL)
    related = ["ideal_cycle_time"]
    if cycle.average_cycle_time is not None:
        tracker.track_duration("average_cycle_time", "ledger.assumptions.average_cycle_time",
                               cycle.average_cycle_time, ImpactLevel.MEDIUM)
        related.append("average_cycle_time")
    tracker.track_duration("effective_cycle_time", "ledger.assumptions.effective_cycle_time",
                           cycle.effective_cycle_time, ImpactLevel.MEDIUM, related)

    for i, record in enumerate(oee_input.downtimes):
        tracker.track_duration(_downtime_key(i), "ledger.assumptions.downtime_record",
                               record.duration, ImpactLevel.MEDIUM)

    th = oee_input.thresholds
    tracker.track_threshold("micro_stoppage_threshold", th.micro_stoppage_threshold.total_seconds(),
                            "units.seconds", "ledger.thresholds.micro_stoppage_rationale")
    tracker.track_threshold("small_stop_threshold", th.small_stop_threshold.total_seconds(),
                            "units.seconds", "ledger.thresholds.small_stop_rationale")
    tracker.track_threshold("speed_loss_threshold", th.speed_loss_threshold,
                            "units.percentage", "ledger.thresholds.speed_loss_rationale")
    tracker.track_threshold("high_scrap_rate_threshold", th.high_scrap_rate_threshold,
                            "units.percentage", "ledger.thresholds.high_scrap_rate_rationale")
    tracker.track_threshold("low_utilization_threshold", th.low_utilization_threshold,
                            "units.percentage", "ledger.thresholds.low_utilization_rationale")


def track_economics(tracker: AssumptionTracker, params: EconomicParameters) -> None:
    for name, band in params.bands().items():
        tracker.track_band(f"economics.{name}", f"economics.assumptions.{name}", band,
                           params.bands_source, ImpactLevel.HIGH)
    tracker.track_count("economics.avg_rework_time_hours",
                        "economics.assumptions.rework_time_estimate",
                        params.rework_time_hours, ImpactLevel.LOW)


def related_assumptions(field_path: Optional[str], oee_input: OeeInput) -> list:
    """Assumption keys a validation issue refers to."""
    if not field_path:
        return []
    if field_path == "time_allocations":
        return ["planned_production_time"] + [
            _allocation_key(i, a) for i, a in enumerate(oee_input.time_model.allocations)
        ]
    if field_path == "production":
        return list(PRODUCTION_KEYS)
    if field_path == "production.scrap_units":
        return ["scrap_units", "total_units"]
    if field_path == "cycle_time.average_cycle_time":
        return ["average_cycle_time", "ideal_cycle_time"]
    if field_path == "downtimes":
        return [_downtime_key(i) for i in range(len(oee_input.downtimes))]
    match = INDEXED_PATH.match(field_path)
    if match:
        index = int(match.group(2))
        if match.group(1) == "downtimes":
            return [_downtime_key(index)]
        return [_allocation_key(index, oee_input.time_model.allocations[index])]
    return [field_path.split(".")[-1]]


def add_machine_metadata(ledger: AssumptionLedger, oee_input: OeeInput) -> None:
    machine = oee_input.machine
    ledger.add_metadata("machine_id", machine.machine_id)
    for key in ("line_id", "product_id", "shift_id"):
        value = getattr(machine, key)
        if value is not None:
            ledger.add_metadata(key, value)
    ledger.add_metadata("window_start", oee_input.window.start.isoformat())
    ledger.add_metadata("window_end", oee_input.window.end.isoformat())


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

def _run(oee_input: OeeInput, params: Optional[EconomicParameters],
         clock: Optional[Clock]) -> OeeResult:
    machine_id = oee_input.machine.machine_id

    validation = validate_input(oee_input)
    if not validation.is_valid:
        fatal = validation.by_severity(Severity.FATAL)
        logger.warning("Machine %s: %d fatal validation issue(s): %s", machine_id,
                       len(fatal), ", ".join(i.code for i in fatal))

    tracker = AssumptionTracker(clock)
    track_inputs(tracker, oee_input)

    core = calculate_core_metrics(oee_input)
    extended = calculate_extended_metrics(oee_input, core)
    tree = build_loss_tree(oee_input)
    logger.debug("Machine %s: OEE %.4f (A %.4f, P %.4f, Q %.4f)", machine_id, core.oee.value,
                 core.availability.value, core.performance.value, core.quality.value)

    economic_analysis = None
    if params is not None:
        track_economics(tracker, params)
        economic_analysis = economics_for_input(oee_input, params)
        logger.debug("Machine %s: economic impact central %.2f %s", machine_id,
                     economic_analysis.total_impact.central_estimate, params.currency)

    leverage = calculate_leverage(oee_input, core)

    for issue in validation.issues:
        tracker.add_warning(issue, related_assumptions(issue.field_path, oee_input))

    ledger = tracker.finish()
    add_machine_metadata(ledger, oee_input)
    ledger.seal()

    return OeeResult(
        core_metrics=core,
        extended_metrics=extended,
        loss_tree=tree,
        economic_analysis=economic_analysis,
        leverage=leverage,
        ledger=ledger,
        validation=validation,
    )


def analyze(oee_input: OeeInput, clock: Optional[Clock] = None) -> OeeResult:
    return _run(oee_input, None, clock)


def analyze_with_economics(oee_input: OeeInput, params: EconomicParameters,
                           clock: Optional[Clock] = None) -> OeeResult:
    return _run(oee_input, params, clock)
