"""
Tests — ScoringEngine (pure).

Covers:
    - weighted impact / effort formulas, clamping and rounding
    - quadrant boundaries (inclusive at the threshold)
    - weight readers with camelCase aliases
    - lever and manual-override validation
"""

import pytest

from portfolio.services import scoring


class TestScoreFormulas:
    """Σ(lever × weight) / 100, clamped to [0, 5]."""

    def test_default_weights_average_the_levers(self):
        assert scoring.calculate_impact_score(5, 4, 4, 4, 5) == 4.4
        assert scoring.calculate_effort_score(2, 2, 2, 2, 2) == 2.0

    def test_missing_levers_count_as_zero(self):
        assert scoring.calculate_impact_score(None, None, None, None, 5) == 1.0

    def test_result_is_clamped_to_five(self):
        weights = {name: 50 for name in scoring.IMPACT_LEVERS}
        assert scoring.calculate_impact_score(5, 5, 5, 5, 5, weights=weights) == 5.0

    def test_result_is_rounded_to_two_places(self):
        weights = {"revenue_impact": 33, "cost_savings": 0, "risk_reduction": 0,
                   "broker_partner_experience": 0, "strategic_fit": 0}
        assert scoring.calculate_impact_score(1, 0, 0, 0, 0, weights=weights) == 0.33

    def test_effort_is_not_inverted(self):
        low = scoring.calculate_effort_score(1, 1, 1, 1, 1)
        high = scoring.calculate_effort_score(5, 5, 5, 5, 5)
        assert low < high

    def test_scores_are_deterministic(self):
        levers = {"revenue_impact": 3, "strategic_fit": 4, "model_risk": 2}
        assert scoring.score_levers(levers) == scoring.score_levers(dict(levers))


class TestQuadrant:
    @pytest.mark.parametrize("impact,effort,expected", [
        (3.0, 3.0, scoring.QUICK_WIN),
        (4.5, 1.0, scoring.QUICK_WIN),
        (3.0, 3.01, scoring.STRATEGIC_BET),
        (2.99, 3.0, scoring.EXPERIMENTAL),
        (2.99, 3.01, scoring.WATCHLIST),
    ])
    def test_boundaries_are_inclusive(self, impact, effort, expected):
        assert scoring.calculate_quadrant(impact, effort) == expected

    def test_custom_threshold(self):
        assert scoring.calculate_quadrant(2.5, 2.5, threshold=2.5) == scoring.QUICK_WIN
        assert scoring.calculate_quadrant(2.5, 2.5, threshold=2.6) == scoring.EXPERIMENTAL


class TestWeightReaders:
    def test_camel_case_aliases_are_accepted(self):
        weights = scoring.get_impact_weights({"business_value": {"revenueImpact": 40}})
        assert weights["revenue_impact"] == 40
        assert weights["cost_savings"] == 20

    def test_threshold_defaults_to_three(self):
        assert scoring.get_threshold(None) == 3.0
        assert scoring.get_threshold({"quadrant_threshold": 2.5}) == 2.5

    def test_score_levers_uses_model(self):
        model = {"business_value": {name: 0 for name in scoring.IMPACT_LEVERS}}
        result = scoring.score_levers({"revenue_impact": 5}, model)
        assert result.impact_score == 0.0
        assert result.quadrant == scoring.EXPERIMENTAL


class TestValidation:
    def test_levers_outside_range_are_reported(self):
        issues = scoring.validate_levers({"revenue_impact": 6, "cost_savings": 0, "model_risk": 2.5})
        assert len(issues) == 3

    def test_none_levers_are_allowed(self):
        assert scoring.validate_levers({"revenue_impact": None}) == []

    def test_override_requires_reason(self):
        issues = scoring.validate_overrides({"manual_quadrant": scoring.QUICK_WIN})
        assert any("override_reason" in i for i in issues)
        assert scoring.validate_overrides({
            "manual_quadrant": scoring.QUICK_WIN, "override_reason": "Board decision",
        }) == []

    def test_effective_values_prefer_manual(self):
        assert scoring.effective_impact_score(2.0, 4.5) == 4.5
        assert scoring.effective_effort_score(2.0, None) == 2.0
        assert scoring.effective_quadrant(scoring.WATCHLIST, scoring.QUICK_WIN) == scoring.QUICK_WIN
