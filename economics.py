"""
Economic impact translator
==========================
Turns physical losses (lost units, scrap, rework, downtime hours) into
low / central / high cost bands. Never a single number: every band lists
the assumption keys it rests on.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Optional

import pandas as pd

from assumptions import OeeInput
from provenance import InputValue, ValueSource

POINT_ESTIMATE_SPREAD = 0.10
DEFAULT_REWORK_HOURS = 0.1
REWORK_MATERIAL_FACTOR = 0.5

Band = tuple  # (low, central, high)


def _spread(value: float, spread: float) -> Band:
    return (value * (1.0 - spread), value, value * (1.0 + spread))


@dataclass(frozen=True)
class EconomicParameters:
    unit_price: Band
    marginal_contribution: Band
    material_cost: Band
    labor_cost_per_hour: Band
    currency: str = "USD"
    avg_rework_time_hours: Optional[float] = None
    # point estimates widened by a spread are inferred, not supplied
    bands_source: ValueSource = ValueSource.EXPLICIT

    @classmethod
    def from_point_estimates(cls, unit_price: float, marginal_contribution: float,
                             material_cost: float, labor_cost_per_hour: float,
                             currency: str = "USD", spread: float = POINT_ESTIMATE_SPREAD,
                             avg_rework_time_hours: Optional[float] = None) -> "EconomicParameters":
        return cls(
            unit_price=_spread(unit_price, spread),
            marginal_contribution=_spread(marginal_contribution, spread),
            material_cost=_spread(material_cost, spread),
            labor_cost_per_hour=_spread(labor_cost_per_hour, spread),
            currency=currency,
            avg_rework_time_hours=avg_rework_time_hours,
            bands_source=ValueSource.INFERRED,
        )

    @property
    def rework_time_hours(self) -> InputValue:
        if self.avg_rework_time_hours is None:
            return InputValue.default(DEFAULT_REWORK_HOURS)
        return InputValue.explicit(self.avg_rework_time_hours)

    def bands(self) -> dict[str, Band]:
        return {
            "unit_price": self.unit_price,
            "marginal_contribution": self.marginal_contribution,
            "material_cost": self.material_cost,
            "labor_cost_per_hour": self.labor_cost_per_hour,
        }


@dataclass(frozen=True)
class EconomicImpact:
    description_key: str
    low_estimate: float
    central_estimate: float
    high_estimate: float
    currency: str
    assumptions: list = field(default_factory=list)

    @classmethod
    def scaled(cls, name: str, quantity: float, band: Band, currency: str,
               assumptions: list) -> "EconomicImpact":
        low, central, high = band
        return cls(f"economics.{name}", quantity * low, quantity * central, quantity * high,
                   currency, [f"economics.assumptions.{a}" for a in assumptions])

    def to_record(self) -> dict[str, Any]:
        return {
            "impact": self.description_key,
            "low": round(self.low_estimate, 2),
            "central": round(self.central_estimate, 2),
            "high": round(self.high_estimate, 2),
            "currency": self.currency,
            "assumptions": ", ".join(self.assumptions),
        }


# ---------------------------------------------------------------------------
# Impact categories
# ---------------------------------------------------------------------------

def calculate_throughput_loss(lost_units: int, params: EconomicParameters) -> EconomicImpact:
    return EconomicImpact.scaled("throughput_loss", lost_units, params.marginal_contribution,
                                 params.currency,
                                 ["marginal_contribution", "lost_units_calculated"])


def calculate_material_waste(scrap_units: int, params: EconomicParameters) -> EconomicImpact:
    return EconomicImpact.scaled("material_waste", scrap_units, params.material_cost,
                                 params.currency,
                                 ["material_cost_per_unit", "scrap_is_total_loss"])


def calculate_rework_cost(rework_units: int, avg_rework_time_hours: float,
                          params: EconomicParameters) -> EconomicImpact:
    rework_hours = rework_units * avg_rework_time_hours
    low, central, high = (
        rework_units * mat * REWORK_MATERIAL_FACTOR + rework_hours * labor
        for mat, labor in zip(params.material_cost, params.labor_cost_per_hour)
    )
    return EconomicImpact("economics.rework_cost", low, central, high, params.currency, [
        "economics.assumptions.rework_material_factor",
        "economics.assumptions.rework_time_estimate",
        "economics.assumptions.labor_cost_per_hour",
    ])


def calculate_opportunity_cost(downtime_hours: float, theoretical_units_per_hour: float,
                               params: EconomicParameters) -> EconomicImpact:
    return EconomicImpact.scaled("opportunity_cost", downtime_hours * theoretical_units_per_hour,
                                 params.marginal_contribution, params.currency,
                                 ["marginal_contribution", "theoretical_capacity", "demand_exists"])


def sum_economic_impacts(impacts: list) -> EconomicImpact:
    """Band-wise sum; assumption keys unioned, sorted and de-duplicated."""
    currency = impacts[0].currency if impacts else "USD"
    keys = sorted({key for i in impacts for key in i.assumptions})
    return EconomicImpact(
        "economics.total_impact",
        sum(i.low_estimate for i in impacts),
        sum(i.central_estimate for i in impacts),
        sum(i.high_estimate for i in impacts),
        currency,
        keys,
    )


@dataclass(frozen=True)
class EconomicAnalysis:
    throughput_loss: EconomicImpact
    material_waste: EconomicImpact
    rework_cost: EconomicImpact
    opportunity_cost: EconomicImpact
    total_impact: EconomicImpact

    def impacts(self) -> list:
        return [self.throughput_loss, self.material_waste, self.rework_cost,
                self.opportunity_cost]

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame([i.to_record() for i in self.impacts() + [self.total_impact]])

    def to_record(self) -> dict[str, Any]:
        return {i.description_key: i.to_record() for i in self.impacts() + [self.total_impact]}


def analyze_economics(lost_units: int, scrap_units: int, rework_units: int,
                      downtime_hours: float, theoretical_units_per_hour: float,
                      avg_rework_time_hours: float,
                      params: EconomicParameters) -> EconomicAnalysis:
    throughput = calculate_throughput_loss(lost_units, params)
    material = calculate_material_waste(scrap_units, params)
    rework = calculate_rework_cost(rework_units, avg_rework_time_hours, params)
    opportunity = calculate_opportunity_cost(downtime_hours, theoretical_units_per_hour, params)
    return EconomicAnalysis(throughput, material, rework, opportunity,
                            sum_economic_impacts([throughput, material, rework, opportunity]))


# ---------------------------------------------------------------------------
# Quantities from an input snapshot
# ---------------------------------------------------------------------------

def theoretical_units_per_hour(oee_input: OeeInput) -> float:
    ideal_s = oee_input.cycle_time.ideal_cycle_time.value.total_seconds()
    return 3600.0 / ideal_s if ideal_s > 0 else 0.0


def lost_units(oee_input: OeeInput) -> int:
    """Units the running time could have produced at ideal speed but did not."""
    ideal_s = oee_input.cycle_time.ideal_cycle_time.value.total_seconds()
    if ideal_s <= 0:
        return 0
    capacity = math.floor(oee_input.time_model.running_time().total_seconds() / ideal_s)
    return max(0, capacity - oee_input.production.total_units.value)


def economics_for_input(oee_input: OeeInput, params: EconomicParameters) -> EconomicAnalysis:
    prod = oee_input.production
    return analyze_economics(
        lost_units=lost_units(oee_input),
        scrap_units=prod.scrap_units.value,
        rework_units=prod.reworked_units.value,
        downtime_hours=oee_input.time_model.total_downtime().total_seconds() / 3600.0,
        theoretical_units_per_hour=theoretical_units_per_hour(oee_input),
        avg_rework_time_hours=params.rework_time_hours.value,
        params=params,
    )
