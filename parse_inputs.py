"""
Input loaders for the OEE engine
================================
Builds OeeInput / EconomicParameters from JSON documents, and downtime
records from CSV / Excel / JSON event exports.

JSON conventions:
  - durations are seconds
  - any scalar may be bare (explicit) or {"value": v, "source": "explicit|inferred|default"}
  - reasons may be free text (classified by keyword) or {"path": [...], "is_failure": bool}
  - thresholds may be a preset name ("defaults", "strict", "lenient") or a mapping

Malformed documents raise ValueError naming the offending field.
"""

from __future__ import annotations

import dataclasses
import json
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Optional

import pandas as pd

from assumptions import (
    AnalysisWindow,
    CycleTimeModel,
    DowntimeCollection,
    DowntimeRecord,
    MachineContext,
    MachineState,
    OeeInput,
    ProductionSummary,
    ReasonCode,
    ThresholdConfiguration,
    TimeAllocation,
    TimeModel,
    ZERO,
)
from data_normalization import normalize_events
from economics import POINT_ESTIMATE_SPREAD, EconomicParameters
from provenance import InputValue, ValueSource
from shared import DATA_GAP, reason_from_text, state_for_category

logger = logging.getLogger(__name__)

EVENT_EXTENSIONS = {".csv", ".xlsx", ".xls", ".json"}


# ---------------------------------------------------------------------------
# Scalars
# ---------------------------------------------------------------------------

def _number(raw, field: str) -> float:
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        raise ValueError(f"Expected a number for {field}, got {raw!r}")
    return raw


def _tagged(raw, field: str, convert) -> InputValue:
    """Parse a bare or {"value", "source"} scalar into an InputValue."""
    if isinstance(raw, dict):
        if "value" not in raw:
            raise ValueError(f"Missing 'value' in {field}")
        try:
            source = ValueSource(str(raw.get("source", "explicit")).lower())
        except ValueError:
            raise ValueError(f"Unknown source {raw.get('source')!r} in {field} "
                             f"(expected explicit, inferred or default)") from None
        return InputValue(convert(_number(raw["value"], field)), source)
    return InputValue.explicit(convert(_number(raw, field)))


def _seconds(value: float) -> timedelta:
    return timedelta(seconds=value)


def _duration(raw, field: str) -> InputValue:
    def convert(value):
        if value < 0:
            raise ValueError(f"Duration for {field} cannot be negative, got {value!r}")
        return _seconds(value)
    return _tagged(raw, field, convert)


def _count(raw, field: str) -> Optional[InputValue]:
    if raw is None:
        return None

    def convert(value):
        if not float(value).is_integer():
            raise ValueError(f"Expected a whole number for {field}, got {value!r}")
        return int(value)
    return _tagged(raw, field, convert)


def _required(doc: dict, key: str, where: str = ""):
    if key not in doc or doc[key] is None:
        raise ValueError(f"Missing required field: {where}{key}")
    return doc[key]


def _timestamp(raw, field: str) -> datetime:
    try:
        return datetime.fromisoformat(str(raw))
    except ValueError:
        raise ValueError(f"Invalid ISO timestamp for {field}: {raw!r}") from None


# ---------------------------------------------------------------------------
# Structured sections
# ---------------------------------------------------------------------------

def parse_reason(raw) -> ReasonCode:
    if raw is None or isinstance(raw, str):
        return reason_from_text(raw)
    if isinstance(raw, dict):
        path = raw.get("path", [])
        if isinstance(path, str):
            path = [p.strip() for p in path.split(">") if p.strip()]
        return ReasonCode(tuple(path), bool(raw.get("is_failure", False)))
    raise ValueError(f"Unsupported reason value: {raw!r}")


def parse_thresholds(raw) -> ThresholdConfiguration:
    if raw is None:
        return ThresholdConfiguration.defaults()
    if isinstance(raw, str):
        return ThresholdConfiguration.preset(raw)
    if not isinstance(raw, dict):
        raise ValueError(f"Unsupported thresholds value: {raw!r}")

    base = ThresholdConfiguration.preset(raw.get("preset", "defaults"))
    overrides = {}
    for name in ("micro_stoppage_threshold", "small_stop_threshold"):
        if name in raw:
            overrides[name] = _seconds(_number(raw[name], f"thresholds.{name}"))
    for name in ("speed_loss_threshold", "high_scrap_rate_threshold", "low_utilization_threshold"):
        if name in raw:
            overrides[name] = float(_number(raw[name], f"thresholds.{name}"))
    return dataclasses.replace(base, **overrides)


def parse_downtimes(raw_list) -> DowntimeCollection:
    records = []
    for i, raw in enumerate(raw_list or []):
        where = f"downtimes[{i}]."
        timestamp = raw.get("timestamp")
        records.append(DowntimeRecord(
            duration=_duration(_required(raw, "duration", where), f"{where}duration"),
            reason=parse_reason(raw.get("reason")),
            timestamp=_timestamp(timestamp, f"{where}timestamp") if timestamp else None,
            notes=raw.get("notes"),
        ))
    return DowntimeCollection(records)


def parse_allocations(raw_list) -> list:
    allocations = []
    for i, raw in enumerate(raw_list):
        where = f"allocations[{i}]."
        try:
            state = MachineState(str(_required(raw, "state", where)).lower())
        except ValueError:
            raise ValueError(f"Unknown machine state in {where}state: {raw.get('state')!r}") from None
        reason = raw.get("reason")
        allocations.append(TimeAllocation(
            state=state,
            duration=_duration(_required(raw, "duration", where), f"{where}duration"),
            reason=parse_reason(reason) if reason is not None else None,
        ))
    return allocations


def allocations_from_downtimes(planned: timedelta, downtimes: DowntimeCollection) -> list:
    """Infer a time allocation from downtime records when none was supplied.

    Each record's time goes to the state implied by its category; whatever
    planned time remains is taken as running time.
    """
    by_state: dict = {}
    for record in downtimes:
        state = state_for_category(record.reason.root or DATA_GAP)
        by_state[state] = by_state.get(state, ZERO) + record.duration.value
    stopped = sum(by_state.values(), ZERO)

    allocations = [TimeAllocation(MachineState.RUNNING,
                                  InputValue.inferred(max(ZERO, planned - stopped)))]
    for state, duration in by_state.items():
        allocations.append(TimeAllocation(state, InputValue.inferred(duration)))
    return allocations


def parse_cycle_time(raw, production: ProductionSummary, time_model: TimeModel) -> CycleTimeModel:
    if not isinstance(raw, dict):
        return CycleTimeModel(_duration(raw, "cycle_time"))
    ideal = _duration(_required(raw, "ideal", "cycle_time."), "cycle_time.ideal")
    average = raw.get("average")
    if average is None:
        return CycleTimeModel(ideal)
    if average == "infer":
        inferred = CycleTimeModel.infer_average(ideal.value, production.total_units.value,
                                                time_model.running_time())
        return dataclasses.replace(inferred, ideal_cycle_time=ideal)
    return CycleTimeModel(ideal, _duration(average, "cycle_time.average"))


def oee_input_from_dict(doc: dict) -> OeeInput:
    if not isinstance(doc, dict):
        raise ValueError("OEE input document must be a JSON object")

    planned = _duration(_required(doc, "planned_production_time"), "planned_production_time")

    window_doc = _required(doc, "window")
    start = _timestamp(_required(window_doc, "start", "window."), "window.start")
    end_raw = window_doc.get("end")
    end = _timestamp(end_raw, "window.end") if end_raw else start + planned.value
    window = AnalysisWindow(start, end)

    machine_doc = _required(doc, "machine")
    machine = MachineContext(
        machine_id=str(_required(machine_doc, "machine_id", "machine.")),
        line_id=machine_doc.get("line_id"),
        product_id=machine_doc.get("product_id"),
        shift_id=machine_doc.get("shift_id"),
    )

    downtimes = parse_downtimes(doc.get("downtimes"))
    if doc.get("allocations") is not None:
        allocations = parse_allocations(doc["allocations"])
    else:
        allocations = allocations_from_downtimes(planned.value, downtimes)
    all_time = doc.get("all_time")
    time_model = TimeModel(
        planned_production_time=planned,
        allocations=allocations,
        all_time=_duration(all_time, "all_time") if all_time is not None else None,
    )

    prod_doc = _required(doc, "production")
    production = ProductionSummary.from_counts(
        total=_count(prod_doc.get("total_units"), "production.total_units"),
        good=_count(prod_doc.get("good_units"), "production.good_units"),
        scrap=_count(prod_doc.get("scrap_units"), "production.scrap_units"),
        rework=_count(prod_doc.get("reworked_units"), "production.reworked_units"),
    )

    cycle_time = parse_cycle_time(_required(doc, "cycle_time"), production, time_model)

    return OeeInput(
        window=window,
        machine=machine,
        time_model=time_model,
        production=production,
        cycle_time=cycle_time,
        downtimes=downtimes,
        thresholds=parse_thresholds(doc.get("thresholds")),
    )


def _read_json(path) -> Any:
    p = Path(path).expanduser()
    if not p.is_file():
        raise FileNotFoundError(f"File not found: {p}")
    with open(p, encoding="utf-8") as f:
        try:
            return json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in {p}: {e}") from None


def load_oee_input(path) -> OeeInput:
    oee_input = oee_input_from_dict(_read_json(path))
    logger.debug("Loaded OEE input for machine %s from %s", oee_input.machine.machine_id, path)
    return oee_input


# ---------------------------------------------------------------------------
# Economics
# ---------------------------------------------------------------------------

def _band(raw, field: str) -> tuple:
    if isinstance(raw, (list, tuple)):
        if len(raw) != 3:
            raise ValueError(f"{field} must be [low, central, high], got {raw!r}")
        low, central, high = (float(_number(v, field)) for v in raw)
        return (low, central, high)
    if isinstance(raw, dict):
        return tuple(float(_number(_required(raw, k, f"{field}."), field))
                     for k in ("low", "central", "high"))
    raise ValueError(f"{field} must be a band when bands are used, got {raw!r}")


def economic_parameters_from_dict(doc: dict) -> EconomicParameters:
    names = ("unit_price", "marginal_contribution", "material_cost", "labor_cost_per_hour")
    values = {n: _required(doc, n) for n in names}
    currency = str(doc.get("currency", "USD"))
    rework = doc.get("avg_rework_time_hours")
    rework = float(_number(rework, "avg_rework_time_hours")) if rework is not None else None

    if all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in values.values()):
        spread = float(doc.get("spread", POINT_ESTIMATE_SPREAD))
        return EconomicParameters.from_point_estimates(
            currency=currency, spread=spread, avg_rework_time_hours=rework, **values)
    return EconomicParameters(currency=currency, avg_rework_time_hours=rework,
                              **{n: _band(v, n) for n, v in values.items()})


def load_economic_parameters(path) -> EconomicParameters:
    return economic_parameters_from_dict(_read_json(path))


# ---------------------------------------------------------------------------
# Downtime event tables
# ---------------------------------------------------------------------------

def read_event_table(path) -> pd.DataFrame:
    p = Path(path).expanduser()
    if not p.is_file():
        raise FileNotFoundError(f"File not found: {p}")
    ext = p.suffix.lower()
    if ext == ".csv":
        return pd.read_csv(p)
    if ext in {".xlsx", ".xls"}:
        return pd.read_excel(p, sheet_name=0)
    if ext == ".json":
        data = _read_json(p)
        if isinstance(data, dict):
            data = data.get("events", data.get("downtimes", []))
        return pd.DataFrame(data)
    raise ValueError(f"Unsupported downtime event file: {ext} "
                     f"(expected one of {', '.join(sorted(EVENT_EXTENSIONS))})")


def events_to_downtimes(df: pd.DataFrame) -> DowntimeCollection:
    events = normalize_events(df)
    records = []
    for row in events.itertuples(index=False):
        if row.duration_seconds <= 0:
            continue
        flag = None if row.is_failure is None or pd.isna(row.is_failure) else bool(row.is_failure)
        records.append(DowntimeRecord(
            duration=InputValue.explicit(_seconds(float(row.duration_seconds))),
            reason=reason_from_text(row.reason, flag),
            timestamp=row.timestamp.to_pydatetime() if pd.notna(row.timestamp) else None,
            notes=str(row.notes) if row.notes is not None and pd.notna(row.notes) else None,
        ))
    return DowntimeCollection(records)


def load_downtime_events(path) -> DowntimeCollection:
    downtimes = events_to_downtimes(read_event_table(path))
    logger.debug("Loaded %d downtime events from %s", len(downtimes), path)
    return downtimes


def with_downtimes(oee_input: OeeInput, downtimes: DowntimeCollection) -> OeeInput:
    """Replace an input's downtime records.

    Supplied allocations are left as given. Allocations that were themselves
    inferred from the old records are re-inferred from the new ones.
    """
    tm = oee_input.time_model
    if tm.allocations and all(a.duration.is_inferred for a in tm.allocations):
        allocations = allocations_from_downtimes(tm.planned_production_time.value, downtimes)
        tm = dataclasses.replace(tm, allocations=allocations)
        logger.debug("Re-inferred %d allocations from %d replacement records",
                     len(allocations), len(downtimes))
    return dataclasses.replace(oee_input, time_model=tm, downtimes=downtimes)
