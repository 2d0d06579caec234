from datetime import datetime, timedelta, timezone

import pytest

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
)
from provenance import InputValue, ValueSource

WINDOW_START = datetime(2025, 3, 3, 6, 0, tzinfo=timezone.utc)
FIXED_NOW = datetime(2025, 3, 3, 14, 30, tzinfo=timezone.utc)


class InputBuilder:
    """Fluent builder for OeeInput snapshots.

    basic(): 8h planned, 7h running, 1h stopped, 25s ideal cycle,
    1000 total / 950 good / 50 scrap / 0 rework.
    """

    def __init__(self):
        self.planned_hours = 8.0
        self.running_hours = 7.0
        self.downtime_hours = 1.0
        self.extra_allocations = []
        self.all_time_hours = None
        self.counts = (1000, 950, 50, 0)
        self.ideal_seconds = 25.0
        self.average_seconds = None
        self.records = []
        self.thresholds = ThresholdConfiguration.defaults()
        self.planned_source = "explicit"

    @classmethod
    def basic(cls):
        return cls()

    def with_planned_hours(self, hours, source="explicit"):
        self.planned_hours = hours
        self.planned_source = source
        return self

    def with_time_allocations(self, running_hours, downtime_hours):
        self.running_hours = running_hours
        self.downtime_hours = downtime_hours
        return self

    def with_allocation(self, state, hours):
        self.extra_allocations.append((state, hours))
        return self

    def with_all_time(self, hours):
        self.all_time_hours = hours
        return self

    def with_production(self, total, good, scrap, rework):
        self.counts = (total, good, scrap, rework)
        return self

    def with_cycle_time(self, ideal_seconds, average_seconds=None):
        self.ideal_seconds = ideal_seconds
        self.average_seconds = average_seconds
        return self

    def with_downtime(self, seconds, path=("Mechanical", "Jam"), is_failure=True):
        self.records.append(DowntimeRecord.explicit(
            timedelta(seconds=seconds), ReasonCode(path, is_failure)))
        return self

    def with_thresholds(self, thresholds):
        self.thresholds = thresholds
        return self

    def build(self):
        planned = InputValue(timedelta(hours=self.planned_hours), ValueSource(self.planned_source))
        allocations = [TimeAllocation.explicit(MachineState.RUNNING, timedelta(hours=self.running_hours))]
        if self.downtime_hours:
            allocations.append(TimeAllocation.explicit(MachineState.STOPPED,
                                                       timedelta(hours=self.downtime_hours)))
        for state, hours in self.extra_allocations:
            allocations.append(TimeAllocation.explicit(state, timedelta(hours=hours)))

        total, good, scrap, rework = self.counts
        cycle = (CycleTimeModel.from_ideal(timedelta(seconds=self.ideal_seconds))
                 if self.average_seconds is None else
                 CycleTimeModel.with_average(timedelta(seconds=self.ideal_seconds),
                                             timedelta(seconds=self.average_seconds)))
        all_time = (InputValue.explicit(timedelta(hours=self.all_time_hours))
                    if self.all_time_hours is not None else None)

        return OeeInput(
            window=AnalysisWindow(WINDOW_START, WINDOW_START + timedelta(hours=self.planned_hours)),
            machine=MachineContext("M-101", line_id="L1", product_id="P-8PK", shift_id="1st"),
            time_model=TimeModel(planned, allocations, all_time),
            production=ProductionSummary.from_counts(total, good, scrap, rework),
            cycle_time=cycle,
            downtimes=DowntimeCollection(list(self.records)),
            thresholds=self.thresholds,
        )


@pytest.fixture
def builder():
    return InputBuilder.basic()


@pytest.fixture
def basic_input():
    return InputBuilder.basic().build()


@pytest.fixture
def fixed_clock():
    return lambda: FIXED_NOW
