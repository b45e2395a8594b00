"""
Tests — value realization engine (pure).
"""

from datetime import date, datetime, timezone

import pytest

from portfolio.services import derived_state
from portfolio.services import value_realization as vr


LIBRARY = {
    "handling_cost": {
        "id": "handling_cost",
        "name": "Handling Cost",
        "applicable_processes": ["Claims Management", "Billing"],
        "industry_benchmarks": {
            "Claims Management": {
                "baseline_value": 125,
                "baseline_unit": "GBP",
                "maturity_tiers": {
                    "foundational": {"min": 8, "max": 15},
                    "developing": {"min": 20, "max": 28},
                    "advanced": {"min": 30, "max": 35},
                },
            },
        },
        "maturity_rules": [
            {"level": "advanced", "conditions": {"data_readiness": {"min": 4}},
             "range": {"min": 30, "max": 35}, "confidence": "high"},
            {"level": "foundational", "conditions": {},
             "range": {"min": 8, "max": 15}, "confidence": "low"},
        ],
    },
    "hours_saved": {
        "id": "hours_saved",
        "name": "Hours Saved",
        "applicable_processes": ["Claims Management"],
        "industry_benchmarks": {},
        "maturity_rules": [
            {"level": "foundational", "conditions": {},
             "range": {"min": 20, "max": 30}, "confidence": "low"},
        ],
    },
}


# ═════════════════════════════════════════════════════════════════════════════
# Process matching
# ═════════════════════════════════════════════════════════════════════════════

class TestProcessMatching:

    def test_parenthetical_and_ampersand_are_normalised(self):
        applicable = ["Sales & Distribution (Including Broker Relationships)"]
        assert vr.find_matching_process("sales and distribution", applicable) == applicable[0]

    def test_containment_matches(self):
        assert vr.find_matching_process("claims", ["Claims Management"]) == "Claims Management"

    def test_no_match(self):
        assert vr.find_matching_process("Marketing", ["Claims Management"]) is None
        assert vr.find_matching_process("", ["Claims Management"]) is None

    def test_kpi_listed_once_across_processes(self):
        matches = vr.get_applicable_kpis(["Claims Management", "Billing"], LIBRARY)
        ids = [m["kpi_id"] for m in matches]
        assert ids == ["handling_cost", "hours_saved"]
        assert matches[0]["matched_processes"] == ["Claims Management", "Billing"]
        assert matches[0]["benchmark_process"] == "Claims Management"


# ═════════════════════════════════════════════════════════════════════════════
# Maturity & estimates
# ═════════════════════════════════════════════════════════════════════════════

class TestMaturity:

    def test_first_satisfied_rule_wins(self):
        rules = LIBRARY["handling_cost"]["maturity_rules"]
        result = vr.derive_maturity_level({"data_readiness": 5}, rules)
        assert result["level"] == "advanced"
        assert result["confidence"] == "high"

    def test_missing_score_fails_the_rule(self):
        rules = LIBRARY["handling_cost"]["maturity_rules"]
        assert vr.derive_maturity_level({}, rules)["level"] == "foundational"

    def test_no_rules_falls_back_to_low_confidence_range(self):
        result = vr.derive_maturity_level({"data_readiness": 5}, [])
        assert result["range"] == {"min": 0, "max": 10}
        assert result["confidence"] == "low"


class TestEstimates:

    def test_monetary_benchmark_uses_baseline_and_volume(self):
        estimates = vr.derive_value_estimates(["Claims Management"], {"data_readiness": 2}, LIBRARY)
        cost = estimates[0]
        assert cost["maturity_level"] == "foundational"
        assert cost["estimated_annual_value"] == {"min": 10000, "max": 18750, "midpoint": 14375}

    def test_benchmark_tier_replaces_rule_range(self):
        estimates = vr.derive_value_estimates(["Claims Management"], {"data_readiness": 4}, LIBRARY)
        assert estimates[0]["expected_range"] == {"min": 30, "max": 35}

    def test_hour_based_estimate(self):
        estimates = vr.derive_value_estimates(["Claims Management"], {}, LIBRARY)
        hours = estimates[1]
        assert hours["estimated_annual_value"] == {"min": 10800, "max": 16200, "midpoint": 13500}

    def test_hourly_rate_option(self):
        estimates = vr.derive_value_estimates(["Claims Management"], {}, LIBRARY, {"hourly_rate": 50})
        assert estimates[1]["estimated_annual_value"]["min"] == 12000

    def test_total_sums_estimates(self):
        estimates = vr.derive_value_estimates(["Claims Management"], {}, LIBRARY)
        total = vr.calculate_total_estimated_value(estimates, currency="USD")
        assert total == {"min": 20800, "max": 34950, "midpoint": 27875, "currency": "USD"}

    def test_unmatched_processes_give_no_estimates(self):
        assert vr.derive_value_estimates(["Marketing"], {}, LIBRARY) == []

    def test_default_library_covers_claims(self):
        cfg = vr.ensure_value_config(None)
        estimates = vr.derive_value_estimates(["Claims Management"], {}, cfg["kpi_library"])
        assert len(estimates) >= 5


class TestBuildValueRealization:

    def test_human_sub_objects_are_preserved(self):
        existing = {
            "investment": {"initial_investment": 1000},
            "tracking": {"entries": [{"value": 10}]},
            "selected_kpis": ["handling_cost"],
        }
        now = datetime(2026, 3, 1, tzinfo=timezone.utc)
        result = vr.build_value_realization(existing, [], {"min": 0, "max": 0, "midpoint": 0}, now)
        assert result["investment"] == {"initial_investment": 1000}
        assert result["tracking"]["entries"] == [{"value": 10}]
        assert result["selected_kpis"] == ["handling_cost"]
        assert derived_state.state_of(result).state == derived_state.DerivationState.AUTO_DERIVED
        assert existing.get("derived") is None


# ═════════════════════════════════════════════════════════════════════════════
# ROI / breakeven
# ═════════════════════════════════════════════════════════════════════════════

class TestInvestmentMetrics:

    def test_roi(self):
        assert vr.calculate_roi(150, 100) == 50.0
        assert vr.calculate_roi(10, 0) is None

    @pytest.mark.parametrize("investment,monthly,expected", [
        (1000, 300, 4),
        (900, 300, 3),
        (0, 300, 0),
        (1000, 0, None),
    ])
    def test_breakeven_month(self, investment, monthly, expected):
        assert vr.calculate_breakeven_month(investment, monthly) == expected

    def test_add_months_rolls_the_year(self):
        assert vr.add_months(date(2026, 11, 1), 3) == "2027-02"

    def test_total_investment_includes_a_year_of_running_cost(self):
        assert vr.total_investment({"initial_investment": 1000, "ongoing_monthly_cost": 100}) == 2200

    def test_metrics_fall_back_to_estimate_midpoint(self):
        value = {
            "investment": {"initial_investment": 12000},
            "total_estimated_value": {"midpoint": 24000},
        }
        metrics = vr.calculate_investment_metrics(value, start=date(2026, 1, 1))
        assert metrics["cumulative_value"] == 24000
        assert metrics["current_roi"] == 100.0
        assert metrics["breakeven_months"] == 6
        assert metrics["projected_breakeven_month"] == "2026-07"

    def test_metrics_prefer_tracked_actuals(self):
        value = {
            "investment": {"initial_investment": 12000},
            "total_estimated_value": {"midpoint": 24000},
            "tracking": {"entries": [{"value": 6000}]},
        }
        metrics = vr.calculate_investment_metrics(value, start=date(2026, 1, 1))
        assert metrics["cumulative_value"] == 6000
        assert metrics["current_roi"] == -50.0


class TestAggregate:

    def test_portfolio_totals(self):
        items = [
            {"quadrant": "Quick Win", "tom_phase": "strategic", "value_realization": {
                "investment": {"initial_investment": 1000},
                "calculated_metrics": {"cumulative_value": 1500, "breakeven_months": 4},
                "total_estimated_value": {"min": 100, "max": 200},
            }},
            {"quadrant": "Watchlist", "tom_phase": "foundation", "value_realization": {
                "kpi_estimates": [{"estimated_annual_value": {"midpoint": 50}}],
                "total_estimated_value": {"min": 300, "max": 500},
            }},
            {"quadrant": "Experimental", "tom_phase": None, "value_realization": None},
        ]
        summary = vr.aggregate_portfolio_value(items)
        assert summary["total_investment"] == 1000
        assert summary["cumulative_value"] == 2000
        assert summary["estimated_value"] == {"min": 400, "max": 700}
        assert summary["use_cases_with_value"] == 2
        assert summary["portfolio_roi"] == 100.0
        assert summary["avg_breakeven_months"] == 4
        assert summary["by_quadrant"]["Quick Win"]["count"] == 1
        assert "Watchlist" not in summary["by_quadrant"]
