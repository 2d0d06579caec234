"""
Loss leverage ranking
=====================
Counterfactual "what if this loss were eliminated" for downtime, speed loss
and scrap, ranked by OEE points gained. The sensitivity score is a fixed
hand-assigned weight for how much each estimate leans on tracking accuracy.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

import pandas as pd

from assumptions import OeeInput
from metrics import CoreMetrics

DOWNTIME_SENSITIVITY = 0.9
SPEED_SENSITIVITY = 0.7
SCRAP_SENSITIVITY = 0.8


@dataclass(frozen=True)
class LeverageImpact:
    category_key: str
    oee_opportunity_points: float
    throughput_gain_units: int
    sensitivity_score: float

    def to_record(self) -> dict[str, Any]:
        return {
            "category": self.category_key,
            "oee_points": round(self.oee_opportunity_points, 2),
            "throughput_gain_units": self.throughput_gain_units,
            "sensitivity_score": self.sensitivity_score,
        }


def downtime_elimination(oee_input: OeeInput, baseline: CoreMetrics) -> LeverageImpact:
    a, p, q = baseline.availability.value, baseline.performance.value, baseline.quality.value
    ideal_s = oee_input.cycle_time.ideal_cycle_time.value.total_seconds()
    downtime_s = oee_input.time_model.total_downtime().total_seconds()
    gain = math.floor(downtime_s / ideal_s) if ideal_s > 0 else 0
    return LeverageImpact("leverage.eliminate_downtime", (1.0 - a) * p * q * 100.0,
                          max(0, gain), DOWNTIME_SENSITIVITY)


def speed_loss_elimination(oee_input: OeeInput, baseline: CoreMetrics) -> LeverageImpact:
    a, p, q = baseline.availability.value, baseline.performance.value, baseline.quality.value
    total = oee_input.production.total_units.value
    return LeverageImpact("leverage.eliminate_speed_loss", a * (1.0 - p) * q * 100.0,
                          max(0, math.floor(total * (1.0 - p))), SPEED_SENSITIVITY)


def scrap_elimination(oee_input: OeeInput, baseline: CoreMetrics) -> LeverageImpact:
    a, p, q = baseline.availability.value, baseline.performance.value, baseline.quality.value
    return LeverageImpact("leverage.eliminate_scrap", a * p * (1.0 - q) * 100.0,
                          max(0, oee_input.production.scrap_units.value), SCRAP_SENSITIVITY)


def calculate_leverage(oee_input: OeeInput, baseline: CoreMetrics) -> list:
    """Ranked by OEE opportunity, descending; ties keep downtime, speed, scrap order."""
    impacts = [
        downtime_elimination(oee_input, baseline),
        speed_loss_elimination(oee_input, baseline),
        scrap_elimination(oee_input, baseline),
    ]
    # sorted() is stable, so reverse=True keeps insertion order among equal keys
    return sorted(impacts, key=lambda i: i.oee_opportunity_points, reverse=True)


def leverage_frame(impacts: list) -> pd.DataFrame:
    return pd.DataFrame([i.to_record() for i in impacts])
