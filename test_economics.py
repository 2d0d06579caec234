"""
Unit tests for the economic impact bands.

Run: python -m pytest test_economics.py -v
"""

from economics import (
    EconomicImpact,
    EconomicParameters,
    analyze_economics,
    calculate_material_waste,
    calculate_opportunity_cost,
    calculate_rework_cost,
    calculate_throughput_loss,
    economics_for_input,
    lost_units,
    sum_economic_impacts,
    theoretical_units_per_hour,
)


def _params(**kwargs):
    return EconomicParameters.from_point_estimates(
        unit_price=10.0, marginal_contribution=4.0, material_cost=3.0,
        labor_cost_per_hour=30.0, **kwargs)


# =====================================================================
# Parameters
# =====================================================================

class TestEconomicParameters:

    def test_point_estimates_spread_ten_percent(self):
        p = _params()
        low, central, high = p.marginal_contribution
        assert abs(low - 3.6) < 0.001
        assert abs(central - 4.0) < 0.001
        assert abs(high - 4.4) < 0.001

    def test_custom_spread(self):
        p = _params(spread=0.5)
        assert abs(p.material_cost[0] - 1.5) < 0.001
        assert abs(p.material_cost[2] - 4.5) < 0.001

    def test_rework_time_default(self):
        assert _params().rework_time_hours.is_default
        assert abs(_params().rework_time_hours.value - 0.1) < 0.001
        explicit = _params(avg_rework_time_hours=0.25).rework_time_hours
        assert explicit.is_explicit
        assert explicit.value == 0.25

    def test_bands_listing(self):
        assert list(_params().bands()) == [
            "unit_price", "marginal_contribution", "material_cost", "labor_cost_per_hour",
        ]


# =====================================================================
# Impact categories
# =====================================================================

class TestImpactCategories:

    def test_throughput_loss(self):
        impact = calculate_throughput_loss(10, _params())
        assert abs(impact.central_estimate - 40.0) < 0.001
        assert impact.description_key == "economics.throughput_loss"
        assert "economics.assumptions.marginal_contribution" in impact.assumptions

    def test_material_waste(self):
        impact = calculate_material_waste(50, _params())
        assert abs(impact.low_estimate - 135.0) < 0.001
        assert abs(impact.central_estimate - 150.0) < 0.001
        assert abs(impact.high_estimate - 165.0) < 0.001

    def test_rework_cost(self):
        # 10 units * 3.0 * 0.5 material + 10 * 0.1h * 30/h labor
        impact = calculate_rework_cost(10, 0.1, _params())
        assert abs(impact.central_estimate - 45.0) < 0.001
        assert len(impact.assumptions) == 3

    def test_opportunity_cost(self):
        impact = calculate_opportunity_cost(1.0, 144.0, _params())
        assert abs(impact.central_estimate - 576.0) < 0.001

    def test_zero_quantities(self):
        p = _params()
        for impact in (calculate_throughput_loss(0, p), calculate_material_waste(0, p),
                       calculate_rework_cost(0, 0.1, p), calculate_opportunity_cost(0.0, 144.0, p)):
            assert impact.low_estimate == 0.0
            assert impact.high_estimate == 0.0


class TestBandOrdering:

    def test_low_central_high_ordered(self):
        analysis = analyze_economics(8, 50, 10, 1.0, 144.0, 0.1, _params())
        for impact in analysis.impacts() + [analysis.total_impact]:
            assert impact.low_estimate <= impact.central_estimate <= impact.high_estimate


class TestSumImpacts:

    def test_band_wise_sum(self):
        a = EconomicImpact("economics.a", 1.0, 2.0, 3.0, "EUR", ["economics.assumptions.x"])
        b = EconomicImpact("economics.b", 10.0, 20.0, 30.0, "EUR", ["economics.assumptions.x",
                                                                   "economics.assumptions.w"])
        total = sum_economic_impacts([a, b])
        assert (total.low_estimate, total.central_estimate, total.high_estimate) == (11.0, 22.0, 33.0)
        assert total.currency == "EUR"
        assert total.description_key == "economics.total_impact"
        assert total.assumptions == ["economics.assumptions.w", "economics.assumptions.x"]

    def test_empty(self):
        total = sum_economic_impacts([])
        assert total.central_estimate == 0
        assert total.assumptions == []


# =====================================================================
# From an input snapshot
# =====================================================================

class TestEconomicsForInput:

    def test_quantities(self, basic_input):
        assert abs(theoretical_units_per_hour(basic_input) - 144.0) < 0.001
        # floor(25200 / 25) = 1008 possible, 1000 made
        assert lost_units(basic_input) == 8

    def test_lost_units_never_negative(self, builder):
        assert lost_units(builder.with_production(1100, 1050, 50, 0).build()) == 0

    def test_zero_ideal_cycle(self, builder):
        oee_input = builder.with_cycle_time(0).build()
        assert theoretical_units_per_hour(oee_input) == 0.0
        assert lost_units(oee_input) == 0

    def test_basic_scenario_totals(self, basic_input):
        analysis = economics_for_input(basic_input, _params())
        # 8 * 4 + 50 * 3 + 0 + 144 * 4
        assert abs(analysis.total_impact.central_estimate - 758.0) < 0.001
        assert abs(analysis.total_impact.low_estimate - 682.2) < 0.001
        assert abs(analysis.total_impact.high_estimate - 833.8) < 0.001
        assert analysis.rework_cost.central_estimate == 0.0

    def test_frame_and_record(self, basic_input):
        analysis = economics_for_input(basic_input, _params(currency="EUR"))
        df = analysis.to_frame()
        assert len(df) == 5
        assert list(df["impact"])[-1] == "economics.total_impact"
        assert set(df["currency"]) == {"EUR"}
        assert "economics.material_waste" in analysis.to_record()
