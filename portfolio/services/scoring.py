"""
Scoring engine — impact / effort composites and quadrant placement.

Pure functions only. Weights and the quadrant threshold come from the
tenant's ``scoring_model`` config; callers persist the results.

Usage:
    from portfolio.services import scoring
    result = scoring.score_levers(use_case.levers, metadata.scoring_model)
    # -> ScoreResult(impact_score=4.2, effort_score=2.0, quadrant="Quick Win")
"""

from __future__ import annotations

from dataclasses import dataclass

QUICK_WIN = "Quick Win"
STRATEGIC_BET = "Strategic Bet"
EXPERIMENTAL = "Experimental"
WATCHLIST = "Watchlist"

QUADRANTS = (QUICK_WIN, STRATEGIC_BET, EXPERIMENTAL, WATCHLIST)

IMPACT_LEVERS = (
    "revenue_impact",
    "cost_savings",
    "risk_reduction",
    "broker_partner_experience",
    "strategic_fit",
)
EFFORT_LEVERS = (
    "data_readiness",
    "technical_complexity",
    "change_impact",
    "model_risk",
    "adoption_readiness",
)
ALL_LEVERS = IMPACT_LEVERS + EFFORT_LEVERS

DEFAULT_THRESHOLD = 3.0
SCORE_MIN = 0.0
SCORE_MAX = 5.0

# Weight keys may be snake_case or the camelCase keys of imported configs.
_WEIGHT_ALIASES = {
    "revenue_impact": ("revenue_impact", "revenueImpact"),
    "cost_savings": ("cost_savings", "costSavings"),
    "risk_reduction": ("risk_reduction", "riskReduction"),
    "broker_partner_experience": ("broker_partner_experience", "brokerPartnerExperience"),
    "strategic_fit": ("strategic_fit", "strategicFit"),
    "data_readiness": ("data_readiness", "dataReadiness"),
    "technical_complexity": ("technical_complexity", "technicalComplexity"),
    "change_impact": ("change_impact", "changeImpact"),
    "model_risk": ("model_risk", "modelRisk"),
    "adoption_readiness": ("adoption_readiness", "adoptionReadiness"),
}

DEFAULT_SCORING_MODEL: dict = {
    "business_value": {name: 20 for name in IMPACT_LEVERS},
    "feasibility": {name: 20 for name in EFFORT_LEVERS},
    "quadrant_threshold": DEFAULT_THRESHOLD,
}


@dataclass(frozen=True)
class ScoreResult:
    impact_score: float
    effort_score: float
    quadrant: str

    def to_dict(self) -> dict:
        return {
            "impact_score": self.impact_score,
            "effort_score": self.effort_score,
            "quadrant": self.quadrant,
        }


# ═════════════════════════════════════════════════════════════════════════════
# Core formulas
# ═════════════════════════════════════════════════════════════════════════════

def _num(value) -> float:
    try:
        return float(value) if value is not None else 0.0
    except (TypeError, ValueError):
        return 0.0


def _clamp(value: float) -> float:
    return max(SCORE_MIN, min(SCORE_MAX, value))


def _weighted(values: tuple, names: tuple, weights: dict | None) -> float:
    weights = weights or {}
    total = 0.0
    for name, value in zip(names, values):
        total += _num(value) * _num(weights.get(name, 20))
    return round(_clamp(total / 100), 2)


def calculate_impact_score(
    revenue_impact,
    cost_savings,
    risk_reduction,
    broker_partner_experience,
    strategic_fit,
    weights: dict | None = None,
) -> float:
    """Σ(lever × weight) / 100 over the business-value levers."""
    return _weighted(
        (revenue_impact, cost_savings, risk_reduction, broker_partner_experience, strategic_fit),
        IMPACT_LEVERS,
        weights,
    )


def calculate_effort_score(
    data_readiness,
    technical_complexity,
    change_impact,
    model_risk,
    adoption_readiness,
    weights: dict | None = None,
) -> float:
    """Σ(lever × weight) / 100 over the feasibility levers.

    Levers are used as entered: no inversion is applied.
    """
    return _weighted(
        (data_readiness, technical_complexity, change_impact, model_risk, adoption_readiness),
        EFFORT_LEVERS,
        weights,
    )


def calculate_quadrant(impact: float, effort: float, threshold: float = DEFAULT_THRESHOLD) -> str:
    """Both comparisons are inclusive at the threshold."""
    high_impact = _num(impact) >= threshold
    low_effort = _num(effort) <= threshold
    if high_impact and low_effort:
        return QUICK_WIN
    if high_impact:
        return STRATEGIC_BET
    if low_effort:
        return EXPERIMENTAL
    return WATCHLIST


# ═════════════════════════════════════════════════════════════════════════════
# Config readers
# ═════════════════════════════════════════════════════════════════════════════

def _normalise_weights(raw: dict | None, names: tuple) -> dict:
    raw = raw or {}
    weights = {}
    for name in names:
        for alias in _WEIGHT_ALIASES[name]:
            if alias in raw:
                weights[name] = _num(raw[alias])
                break
        else:
            weights[name] = 20.0
    return weights


def get_impact_weights(scoring_model: dict | None) -> dict:
    return _normalise_weights((scoring_model or {}).get("business_value"), IMPACT_LEVERS)


def get_effort_weights(scoring_model: dict | None) -> dict:
    return _normalise_weights((scoring_model or {}).get("feasibility"), EFFORT_LEVERS)


def get_threshold(scoring_model: dict | None) -> float:
    value = (scoring_model or {}).get("quadrant_threshold")
    return _num(value) if value is not None else DEFAULT_THRESHOLD


def score_levers(levers: dict, scoring_model: dict | None = None) -> ScoreResult:
    """Score a lever mapping (missing levers count as 0)."""
    impact = calculate_impact_score(
        *(levers.get(name) for name in IMPACT_LEVERS),
        weights=get_impact_weights(scoring_model),
    )
    effort = calculate_effort_score(
        *(levers.get(name) for name in EFFORT_LEVERS),
        weights=get_effort_weights(scoring_model),
    )
    return ScoreResult(impact, effort, calculate_quadrant(impact, effort, get_threshold(scoring_model)))


def validate_levers(data: dict) -> list[str]:
    """Friendly messages for lever values outside 1-5; ``None`` is allowed."""
    issues = []
    for name in ALL_LEVERS:
        if name not in data or data[name] is None:
            continue
        value = data[name]
        if isinstance(value, bool) or not isinstance(value, (int, float)) or int(value) != value:
            issues.append(f"{name} must be a whole number between 1 and 5")
        elif not 1 <= value <= 5:
            issues.append(f"{name} must be between 1 and 5")
    return issues


# ═════════════════════════════════════════════════════════════════════════════
# Manual overrides (display only)
# ═════════════════════════════════════════════════════════════════════════════

def effective_impact_score(derived: float | None, manual: float | None) -> float | None:
    return manual if manual is not None else derived


def effective_effort_score(derived: float | None, manual: float | None) -> float | None:
    return manual if manual is not None else derived


def effective_quadrant(derived: str | None, manual: str | None) -> str | None:
    return manual if manual else derived


def override_status(use_case) -> dict:
    """Which scores are currently overridden and why."""
    fields = {
        "impact_score": use_case.manual_impact_score is not None,
        "effort_score": use_case.manual_effort_score is not None,
        "quadrant": bool(use_case.manual_quadrant),
    }
    return {
        "has_overrides": any(fields.values()),
        "overridden": [name for name, on in fields.items() if on],
        "reason": use_case.override_reason,
    }


def validate_overrides(data: dict) -> list[str]:
    issues = []
    for name in ("manual_impact_score", "manual_effort_score"):
        value = data.get(name)
        if value is None:
            continue
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            issues.append(f"{name} must be a number")
        elif not SCORE_MIN <= value <= SCORE_MAX:
            issues.append(f"{name} must be between {SCORE_MIN:g} and {SCORE_MAX:g}")
    quadrant = data.get("manual_quadrant")
    if quadrant and quadrant not in QUADRANTS:
        issues.append(f"manual_quadrant must be one of: {', '.join(QUADRANTS)}")
    has_override = any(data.get(n) not in (None, "") for n in
                       ("manual_impact_score", "manual_effort_score", "manual_quadrant"))
    if has_override and not (data.get("override_reason") or "").strip():
        issues.append("override_reason is required when a manual override is set")
    return issues
