"""
Assumption models for one OEE analysis window
=============================================
Structured, provenance-tagged description of what happened on a machine
during a window: time allocation by state, production counts, cycle times,
downtime records and categorization thresholds.

Nothing here enforces cross-field coherence (allocations vs planned time,
count conservation). Incomplete or contradictory snapshots are legal inputs;
validation.py flags them.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Iterator, Optional, Union

from provenance import Confidence, InputValue, weakest

ZERO = timedelta(0)

Count = Union[int, InputValue, None]


def _sum_durations(durations) -> timedelta:
    return sum(durations, ZERO)


# ---------------------------------------------------------------------------
# Identity of the observation
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AnalysisWindow:
    start: datetime
    end: datetime

    @property
    def duration(self) -> timedelta:
        return self.end - self.start


@dataclass(frozen=True)
class MachineContext:
    machine_id: str
    line_id: Optional[str] = None
    product_id: Optional[str] = None
    shift_id: Optional[str] = None


# ---------------------------------------------------------------------------
# Time model
# ---------------------------------------------------------------------------

class MachineState(str, Enum):
    RUNNING = "running"
    STOPPED = "stopped"
    SETUP = "setup"
    STARVED = "starved"
    BLOCKED = "blocked"
    MAINTENANCE = "maintenance"
    UNKNOWN = "unknown"

    @property
    def translation_key(self) -> str:
        return f"state.{self.value}"


@dataclass(frozen=True)
class ReasonCode:
    """Hierarchical stoppage reason, e.g. ("Mechanical", "Bearing failure")."""

    path: tuple = ()
    is_failure: bool = False

    def __post_init__(self):
        object.__setattr__(self, "path", tuple(self.path))

    @classmethod
    def from_single(cls, reason: str, is_failure: bool = False) -> "ReasonCode":
        return cls((reason,), is_failure)

    @property
    def leaf(self) -> Optional[str]:
        return self.path[-1] if self.path else None

    @property
    def root(self) -> Optional[str]:
        return self.path[0] if self.path else None

    @property
    def full_path(self) -> str:
        return " > ".join(self.path)


@dataclass(frozen=True)
class TimeAllocation:
    state: MachineState
    duration: InputValue
    reason: Optional[ReasonCode] = None

    @classmethod
    def explicit(cls, state: MachineState, duration: timedelta,
                 reason: Optional[ReasonCode] = None) -> "TimeAllocation":
        return cls(state, InputValue.explicit(duration), reason)


@dataclass(frozen=True)
class TimeModel:
    planned_production_time: InputValue
    allocations: list = field(default_factory=list)
    all_time: Optional[InputValue] = None

    def total_allocated(self) -> timedelta:
        return _sum_durations(a.duration.value for a in self.allocations)

    def unallocated_time(self) -> timedelta:
        return max(ZERO, self.planned_production_time.value - self.total_allocated())

    def allocations_in_state(self, state: MachineState) -> list:
        return [a for a in self.allocations if a.state is state]

    def time_in_state(self, state: MachineState) -> timedelta:
        return _sum_durations(a.duration.value for a in self.allocations_in_state(state))

    def running_time(self) -> timedelta:
        return self.time_in_state(MachineState.RUNNING)

    def total_downtime(self) -> timedelta:
        """All time spent in any non-running state."""
        return _sum_durations(
            a.duration.value for a in self.allocations if a.state is not MachineState.RUNNING
        )

    def allocation_confidence(self) -> Confidence:
        return weakest(*(a.duration.confidence for a in self.allocations))


# ---------------------------------------------------------------------------
# Production counts
# ---------------------------------------------------------------------------

def _as_count(value: Count) -> Optional[InputValue]:
    if value is None or isinstance(value, InputValue):
        return value
    return InputValue.explicit(int(value))


@dataclass(frozen=True)
class ProductionSummary:
    total_units: InputValue
    good_units: InputValue
    scrap_units: InputValue
    reworked_units: InputValue

    @classmethod
    def from_counts(cls, total: Count = None, good: Count = None,
                    scrap: Count = None, rework: Count = None) -> "ProductionSummary":
        """Build counts, inferring whatever can be derived from the rest.

        A missing total becomes good + scrap + rework; a missing good count
        becomes total - scrap - rework (floored at zero). Anything else that
        is missing falls back to a default of zero.
        """
        total_v, good_v = _as_count(total), _as_count(good)
        scrap_v = _as_count(scrap) or InputValue.default(0)
        rework_v = _as_count(rework) or InputValue.default(0)

        if total_v is None and good_v is not None:
            total_v = InputValue.inferred(good_v.value + scrap_v.value + rework_v.value)
        elif good_v is None and total_v is not None:
            good_v = InputValue.inferred(max(0, total_v.value - scrap_v.value - rework_v.value))

        return cls(
            total_units=total_v or InputValue.default(0),
            good_units=good_v or InputValue.default(0),
            scrap_units=scrap_v,
            reworked_units=rework_v,
        )

    @property
    def parts_sum(self) -> int:
        return self.good_units.value + self.scrap_units.value + self.reworked_units.value

    @property
    def discrepancy(self) -> int:
        """parts_sum - total (positive when the parts over-count)."""
        return self.parts_sum - self.total_units.value

    @property
    def is_consistent(self) -> bool:
        return self.discrepancy == 0

    def values(self) -> dict[str, InputValue]:
        return {
            "total_units": self.total_units,
            "good_units": self.good_units,
            "scrap_units": self.scrap_units,
            "reworked_units": self.reworked_units,
        }


# ---------------------------------------------------------------------------
# Cycle time
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CycleTimeModel:
    ideal_cycle_time: InputValue
    average_cycle_time: Optional[InputValue] = None

    @classmethod
    def from_ideal(cls, ideal: timedelta) -> "CycleTimeModel":
        return cls(InputValue.explicit(ideal))

    @classmethod
    def with_average(cls, ideal: timedelta, average: timedelta) -> "CycleTimeModel":
        return cls(InputValue.explicit(ideal), InputValue.explicit(average))

    @classmethod
    def infer_average(cls, ideal: timedelta, total_units: int,
                      running_time: timedelta) -> "CycleTimeModel":
        """Derive the observed average from running time and output."""
        if total_units <= 0:
            return cls.from_ideal(ideal)
        return cls(InputValue.explicit(ideal), InputValue.inferred(running_time / total_units))

    @property
    def effective_cycle_time(self) -> InputValue:
        # Average wins over ideal whatever its own provenance.
        if self.average_cycle_time is not None:
            return self.average_cycle_time
        return self.ideal_cycle_time

    @property
    def has_explicit_override(self) -> bool:
        return self.average_cycle_time is not None and self.average_cycle_time.is_explicit


# ---------------------------------------------------------------------------
# Downtime records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DowntimeRecord:
    duration: InputValue
    reason: ReasonCode = field(default_factory=ReasonCode)
    timestamp: Optional[datetime] = None
    notes: Optional[str] = None

    @classmethod
    def explicit(cls, duration: timedelta, reason: ReasonCode, **kwargs) -> "DowntimeRecord":
        return cls(InputValue.explicit(duration), reason, **kwargs)


@dataclass(frozen=True)
class DowntimeCollection:
    records: list = field(default_factory=list)

    def __iter__(self) -> Iterator[DowntimeRecord]:
        return iter(self.records)

    def __len__(self) -> int:
        return len(self.records)

    def total_duration(self) -> timedelta:
        return _sum_durations(r.duration.value for r in self.records)

    def failures(self) -> list:
        return [r for r in self.records if r.reason.is_failure]

    def count_failures(self) -> int:
        return len(self.failures())

    def failure_duration(self) -> timedelta:
        return _sum_durations(r.duration.value for r in self.failures())

    def count_with_reasons(self) -> int:
        return sum(1 for r in self.records if r.reason.path)

    def group_by_root_reason(self) -> dict[str, timedelta]:
        totals: dict[str, timedelta] = defaultdict(lambda: ZERO)
        for r in self.records:
            if r.reason.root is not None:
                totals[r.reason.root] += r.duration.value
        return dict(totals)

    def group_by_failure(self) -> dict[bool, timedelta]:
        totals = {True: ZERO, False: ZERO}
        for r in self.records:
            totals[r.reason.is_failure] += r.duration.value
        return totals

    def longest_event(self) -> Optional[DowntimeRecord]:
        if not self.records:
            return None
        return max(self.records, key=lambda r: r.duration.value)


# ---------------------------------------------------------------------------
# Thresholds
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ThresholdConfiguration:
    micro_stoppage_threshold: timedelta = timedelta(seconds=30)
    small_stop_threshold: timedelta = timedelta(minutes=5)
    speed_loss_threshold: float = 0.05
    high_scrap_rate_threshold: float = 0.20
    low_utilization_threshold: float = 0.30

    @classmethod
    def defaults(cls) -> "ThresholdConfiguration":
        return cls()

    @classmethod
    def strict(cls) -> "ThresholdConfiguration":
        return cls(timedelta(seconds=15), timedelta(minutes=3), 0.02, 0.10, 0.50)

    @classmethod
    def lenient(cls) -> "ThresholdConfiguration":
        return cls(timedelta(seconds=60), timedelta(minutes=10), 0.10, 0.30, 0.20)

    @classmethod
    def preset(cls, name: str) -> "ThresholdConfiguration":
        presets = {"defaults": cls.defaults, "default": cls.defaults,
                   "strict": cls.strict, "lenient": cls.lenient}
        key = name.strip().lower()
        if key not in presets:
            raise ValueError(f"Unknown threshold preset: {name!r} "
                             f"(expected one of defaults, strict, lenient)")
        return presets[key]()


# ---------------------------------------------------------------------------
# Complete input
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class OeeInput:
    window: AnalysisWindow
    machine: MachineContext
    time_model: TimeModel
    production: ProductionSummary
    cycle_time: CycleTimeModel
    downtimes: DowntimeCollection = field(default_factory=DowntimeCollection)
    thresholds: ThresholdConfiguration = field(default_factory=ThresholdConfiguration)

    def tracked_values(self) -> list:
        """Every provenance-tagged value carried by this input."""
        values = [self.time_model.planned_production_time]
        if self.time_model.all_time is not None:
            values.append(self.time_model.all_time)
        values.extend(a.duration for a in self.time_model.allocations)
        values.extend(self.production.values().values())
        values.append(self.cycle_time.ideal_cycle_time)
        if self.cycle_time.average_cycle_time is not None:
            values.append(self.cycle_time.average_cycle_time)
        values.extend(r.duration for r in self.downtimes)
        return values
