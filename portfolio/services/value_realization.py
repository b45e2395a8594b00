"""
Value realization — KPI-based annual value estimates, ROI and breakeven.

Pure functions over plain dicts. The KPI library maps each KPI to the
processes it applies to, optional industry benchmarks per process and an
ordered list of maturity rules evaluated against the feasibility levers.

Usage:
    from portfolio.services import value_realization as vr
    estimates = vr.derive_value_estimates(uc.processes, uc.levers, cfg["kpi_library"])
    total = vr.calculate_total_estimated_value(estimates, currency="GBP")
    uc.value_realization = vr.build_value_realization(uc.value_realization, estimates, total)
"""

from __future__ import annotations

import copy
import math
import re
from datetime import date, datetime, timezone

from portfolio.services import derived_state

DEFAULT_HOURLY_RATE = 45
DEFAULT_VOLUME_MULTIPLIER = 1000
ANNUAL_MULTIPLIER = 12

MONETARY_UNITS = ("gbp", "usd", "eur", "£", "$", "€")
HOUR_BASED_UNITS = ("hours", "hour", "hrs", "hr", "fte")

# Sub-objects a human maintains; re-derivation never touches them
PRESERVED_KEYS = ("investment", "selected_kpis", "calculated_metrics", "tracking", "kpi_values")


# ═════════════════════════════════════════════════════════════════════════════
# Default KPI library
# ═════════════════════════════════════════════════════════════════════════════

def _rules(advanced, developing, foundational):
    """Three-tier maturity rules: (conditions, (min, max)) for the first two."""
    (adv_cond, adv_range), (dev_cond, dev_range) = advanced, developing
    return [
        {"level": "advanced", "conditions": adv_cond,
         "range": {"min": adv_range[0], "max": adv_range[1]}, "confidence": "high"},
        {"level": "developing", "conditions": dev_cond,
         "range": {"min": dev_range[0], "max": dev_range[1]}, "confidence": "medium"},
        {"level": "foundational", "conditions": {},
         "range": {"min": foundational[0], "max": foundational[1]}, "confidence": "low"},
    ]


def _benchmark(value, unit, source, foundational, developing, advanced):
    return {
        "baseline_value": value,
        "baseline_unit": unit,
        "baseline_source": source,
        "maturity_tiers": {
            "foundational": {"min": foundational[0], "max": foundational[1]},
            "developing": {"min": developing[0], "max": developing[1]},
            "advanced": {"min": advanced[0], "max": advanced[1]},
        },
    }


def _kpi(kpi_id, name, unit, direction, processes, rules, benchmarks=None):
    return {
        "id": kpi_id,
        "name": name,
        "unit": unit,
        "direction": direction,
        "applicable_processes": list(processes),
        "industry_benchmarks": benchmarks or {},
        "maturity_rules": rules,
    }


_DR = "data_readiness"
_TC = "technical_complexity"
_AR = "adoption_readiness"
_CI = "change_impact"

DEFAULT_KPI_LIBRARY: dict = {
    "cycle_time_reduction": _kpi(
        "cycle_time_reduction", "Cycle Time Reduction", "%", "decrease",
        ["Claims Management", "Underwriting & Triage", "Submission & Quote", "Policy Servicing",
         "Billing", "Financial Management", "Regulatory & Compliance", "Reinsurance",
         "Customer Servicing", "Product & Rating", "Human Resources"],
        _rules(({_DR: {"min": 4}, _TC: {"max": 2}, _AR: {"min": 4}}, (60, 70)),
               ({_DR: {"min": 3}, _TC: {"max": 3}}, (40, 50)), (20, 30)),
        {
            "Claims Management": _benchmark(45, "minutes", "McKinsey Insurance Operations 2024",
                                            (20, 30), (40, 50), (60, 70)),
            "Underwriting & Triage": _benchmark(120, "minutes", "BCG Insurance Benchmarks 2024",
                                                (15, 25), (30, 45), (50, 60)),
            "Submission & Quote": _benchmark(60, "minutes", "Deloitte Insurance Study 2023",
                                             (20, 30), (35, 50), (55, 65)),
        },
    ),
    "cost_per_transaction": _kpi(
        "cost_per_transaction", "Cost Per Transaction Reduction", "%", "decrease",
        ["Claims Management", "Underwriting & Triage", "Submission & Quote", "Policy Servicing",
         "Billing", "Financial Management", "Reinsurance"],
        _rules(({_DR: {"min": 4}, _CI: {"max": 2}}, (25, 35)), ({_DR: {"min": 3}}, (15, 25)), (8, 15)),
        {
            "Claims Management": _benchmark(125, "GBP", "McKinsey Insurance Operations 2024",
                                            (8, 15), (20, 28), (30, 35)),
            "Underwriting & Triage": _benchmark(450, "GBP", "BCG Insurance Benchmarks 2024",
                                                (8, 12), (15, 22), (25, 30)),
            "Billing": _benchmark(35, "GBP", "Deloitte Insurance Study 2023",
                                  (15, 22), (28, 36), (40, 45)),
        },
    ),
    "fte_efficiency": _kpi(
        "fte_efficiency", "FTE Efficiency Gain", "hours/month", "increase",
        ["Claims Management", "Underwriting & Triage", "Submission & Quote", "Policy Servicing",
         "Billing", "Financial Management", "Regulatory & Compliance", "Risk Consulting",
         "Sales & Distribution (Including Broker Relationships)", "Customer Servicing", "General",
         "Product & Rating", "Human Resources"],
        _rules(({_DR: {"min": 4}, _AR: {"min": 4}}, (500, 1000)), ({_DR: {"min": 3}}, (200, 500)),
               (50, 200)),
        {
            "Claims Management": _benchmark(160, "hours/FTE/month", "Industry Average",
                                            (50, 100), (200, 400), (500, 800)),
            "Underwriting & Triage": _benchmark(160, "hours/FTE/month", "Industry Average",
                                                (80, 150), (250, 450), (600, 1000)),
        },
    ),
    "accuracy_improvement": _kpi(
        "accuracy_improvement", "Accuracy Improvement", "%", "increase",
        ["Claims Management", "Underwriting & Triage", "Policy Servicing", "Billing",
         "Financial Management", "Regulatory & Compliance", "Reinsurance", "Product & Rating"],
        _rules(({_DR: {"min": 4}, _TC: {"max": 3}}, (10, 15)), ({_DR: {"min": 3}}, (5, 10)), (2, 5)),
        {
            "Claims Management": _benchmark(85, "% accuracy", "Industry Average",
                                            (2, 4), (5, 8), (10, 12)),
            "Underwriting & Triage": _benchmark(82, "% accuracy", "Industry Average",
                                                (3, 6), (8, 11), (13, 15)),
        },
    ),
    "loss_ratio_reduction": _kpi(
        "loss_ratio_reduction", "Loss Ratio Reduction", "percentage points", "decrease",
        ["Claims Management", "Risk Consulting", "Underwriting & Triage"],
        _rules(({_DR: {"min": 4}, _AR: {"min": 4}}, (4, 5)), ({_DR: {"min": 3}}, (2, 3.5)), (0.5, 1.5)),
        {
            "Claims Management": _benchmark(65, "% loss ratio", "Industry Average",
                                            (0.5, 1.5), (2, 3.5), (4, 5)),
        },
    ),
    "customer_satisfaction": _kpi(
        "customer_satisfaction", "Customer/Broker Satisfaction", "NPS points", "increase",
        ["Customer Servicing", "Sales & Distribution (Including Broker Relationships)",
         "Risk Consulting", "Claims Management"],
        _rules(({_AR: {"min": 4}, _CI: {"max": 2}}, (15, 20)), ({_AR: {"min": 3}}, (8, 14)), (3, 7)),
        {
            "Customer Servicing": _benchmark(35, "NPS", "Industry Average", (3, 7), (8, 14), (15, 20)),
        },
    ),
    "decision_consistency": _kpi(
        "decision_consistency", "Decision Consistency", "%", "increase",
        ["Underwriting & Triage", "Claims Management"],
        _rules(({_DR: {"min": 4}, _TC: {"max": 2}}, (20, 25)), ({_DR: {"min": 3}}, (12, 18)), (5, 10)),
        {
            "Underwriting & Triage": _benchmark(72, "% consistency", "Industry Average",
                                                (5, 10), (12, 18), (20, 25)),
        },
    ),
    "conversion_rate": _kpi(
        "conversion_rate", "Conversion Rate Improvement", "percentage points", "increase",
        ["Submission & Quote", "Sales & Distribution (Including Broker Relationships)"],
        _rules(({_DR: {"min": 4}, _AR: {"min": 4}}, (8, 10)), ({_DR: {"min": 3}}, (4, 7)), (1, 3)),
        {
            "Submission & Quote": _benchmark(25, "% conversion", "Industry Average",
                                             (1, 3), (4, 7), (8, 10)),
        },
    ),
    "compliance_rate": _kpi(
        "compliance_rate", "Compliance Rate Improvement", "%", "increase",
        ["Regulatory & Compliance"],
        _rules(({_DR: {"min": 4}}, (8, 10)), ({_DR: {"min": 3}}, (5, 7)), (2, 4)),
        {
            "Regulatory & Compliance": _benchmark(88, "% compliance", "Industry Average",
                                                  (2, 4), (5, 7), (8, 10)),
        },
    ),
}

DEFAULT_VALUE_REALIZATION_CONFIG: dict = {
    "enabled": True,
    "kpi_library": DEFAULT_KPI_LIBRARY,
    "calculation_config": {
        "default_currency": "GBP",
        "fiscal_year_start": 4,
        "hourly_rate": DEFAULT_HOURLY_RATE,
        "volume_multiplier": DEFAULT_VOLUME_MULTIPLIER,
    },
}


def ensure_value_config(config: dict | None) -> dict:
    base = copy.deepcopy(DEFAULT_VALUE_REALIZATION_CONFIG)
    if not config:
        return base
    merged = {**base, **copy.deepcopy(config)}
    if not merged.get("kpi_library"):
        merged["kpi_library"] = base["kpi_library"]
    merged["calculation_config"] = {**base["calculation_config"], **(config.get("calculation_config") or {})}
    enabled = merged.get("enabled", True)
    merged["enabled"] = enabled.lower() == "true" if isinstance(enabled, str) else bool(enabled)
    return merged


# ═════════════════════════════════════════════════════════════════════════════
# KPI matching
# ═════════════════════════════════════════════════════════════════════════════

def normalize_process_name(name: str) -> str:
    name = re.sub(r"\s*\([^)]*\)", "", (name or "").lower())
    name = name.replace("&", "and")
    name = re.sub(r"[-_]", " ", name)
    return re.sub(r"\s+", " ", name).strip()


def find_matching_process(process: str, applicable: list[str]) -> str | None:
    """Canonical KPI process name matching ``process``, or None.

    Exact match first, then normalised equality, then containment either way.
    """
    if process in applicable:
        return process
    wanted = normalize_process_name(process)
    if not wanted:
        return None
    for candidate in applicable:
        normal = normalize_process_name(candidate)
        if wanted == normal or wanted in normal or normal in wanted:
            return candidate
    return None


def get_applicable_kpis(processes: list[str], kpi_library: dict) -> list[dict]:
    """Each KPI at most once, in first-matching-process order."""
    results: dict[str, dict] = {}
    for process in processes or []:
        for kpi_id, kpi in (kpi_library or {}).items():
            matched = find_matching_process(process, kpi.get("applicable_processes") or [])
            if not matched:
                continue
            benchmark = (kpi.get("industry_benchmarks") or {}).get(matched)
            entry = results.get(kpi_id)
            if entry is None:
                results[kpi_id] = {
                    "kpi_id": kpi_id,
                    "kpi": kpi,
                    "matched_processes": [process],
                    "industry_benchmark": benchmark,
                    "benchmark_process": matched if benchmark else None,
                }
                continue
            entry["matched_processes"].append(process)
            if benchmark and not entry["industry_benchmark"]:
                entry["industry_benchmark"] = benchmark
                entry["benchmark_process"] = matched
    return list(results.values())


# ═════════════════════════════════════════════════════════════════════════════
# Maturity & estimates
# ═════════════════════════════════════════════════════════════════════════════

def derive_maturity_level(scores: dict, maturity_rules: list[dict]) -> dict:
    """First rule (in declaration order) whose conditions all hold.

    A missing score fails the rule. Falls back to the ``foundational``
    rule, then to a 0-10 low-confidence range.
    """
    for rule in maturity_rules or []:
        matched = {}
        for score_name, condition in (rule.get("conditions") or {}).items():
            value = scores.get(score_name)
            if value is None:
                break
            if "min" in condition and value < condition["min"]:
                break
            if "max" in condition and value > condition["max"]:
                break
            matched[score_name] = {"actual": value, "required": condition}
        else:
            return {
                "level": rule["level"],
                "range": dict(rule["range"]),
                "confidence": rule.get("confidence", "low"),
                "matched_conditions": matched,
            }

    foundational = next((r for r in maturity_rules or [] if r.get("level") == "foundational"), None)
    if foundational:
        return {"level": "foundational", "range": dict(foundational["range"]),
                "confidence": foundational.get("confidence", "low"), "matched_conditions": {}}
    return {"level": "foundational", "range": {"min": 0, "max": 10},
            "confidence": "low", "matched_conditions": {}}


def _unit_in(unit: str, candidates: tuple) -> bool:
    unit = (unit or "").lower()
    return any(c in unit for c in candidates)


def _annual_value(expected_range: dict, benchmark: dict | None, hourly_rate, volume) -> dict:
    if benchmark and _unit_in(benchmark.get("baseline_unit"), MONETARY_UNITS):
        baseline = benchmark.get("baseline_value") or 0
        low = round(baseline * expected_range["min"] / 100 * volume)
        high = round(baseline * expected_range["max"] / 100 * volume)
    else:
        # Range read as monthly hours saved
        low = round(expected_range["min"] * hourly_rate * ANNUAL_MULTIPLIER)
        high = round(expected_range["max"] * hourly_rate * ANNUAL_MULTIPLIER)
    return {"min": low, "max": high, "midpoint": round((low + high) / 2)}


def derive_value_estimates(
    processes: list[str],
    scores: dict,
    kpi_library: dict,
    options: dict | None = None,
) -> list[dict]:
    """One estimate per applicable KPI.

    ``options`` may carry ``hourly_rate`` and ``volume_multiplier``.
    """
    options = options or {}
    hourly_rate = options.get("hourly_rate") or DEFAULT_HOURLY_RATE
    volume = options.get("volume_multiplier") or DEFAULT_VOLUME_MULTIPLIER

    estimates = []
    for match in get_applicable_kpis(processes, kpi_library):
        kpi = match["kpi"]
        benchmark = match["industry_benchmark"]
        maturity = derive_maturity_level(scores, kpi.get("maturity_rules") or [])

        expected = maturity["range"]
        if benchmark:
            expected = dict((benchmark.get("maturity_tiers") or {}).get(maturity["level"]) or expected)

        estimates.append({
            "kpi_id": match["kpi_id"],
            "kpi_name": kpi.get("name", match["kpi_id"]),
            "matched_processes": match["matched_processes"],
            "maturity_level": maturity["level"],
            "expected_range": expected,
            "confidence": maturity["confidence"],
            "benchmark_process": match["benchmark_process"],
            "estimated_annual_value": _annual_value(expected, benchmark, hourly_rate, volume),
        })
    return estimates


def calculate_total_estimated_value(estimates: list[dict], currency: str = "GBP") -> dict:
    low = sum((e.get("estimated_annual_value") or {}).get("min", 0) for e in estimates)
    high = sum((e.get("estimated_annual_value") or {}).get("max", 0) for e in estimates)
    return {"min": low, "max": high, "midpoint": round((low + high) / 2), "currency": currency}


def build_value_realization(
    existing: dict | None,
    estimates: list[dict],
    total: dict,
    now: datetime | None = None,
) -> dict:
    """Replace the estimates, keep every human-maintained sub-object."""
    result = copy.deepcopy(existing) if existing else {}
    result["kpi_estimates"] = estimates
    result["total_estimated_value"] = total
    result.setdefault("selected_kpis", [e["kpi_id"] for e in estimates])
    result.setdefault("investment", None)
    result.setdefault("tracking", {"entries": []})
    result.setdefault("calculated_metrics", {})
    return derived_state.mark_auto_derived(result, now)


def has_estimates(value_realization: dict | None) -> bool:
    return bool((value_realization or {}).get("kpi_estimates"))


# ═════════════════════════════════════════════════════════════════════════════
# ROI / breakeven
# ═════════════════════════════════════════════════════════════════════════════

def calculate_roi(cumulative_value: float, total_investment: float) -> float | None:
    if not total_investment or total_investment <= 0:
        return None
    return round((cumulative_value - total_investment) / total_investment * 100, 2)


def calculate_breakeven_month(total_investment: float, monthly_value: float) -> int | None:
    """Smallest whole month m with m × monthly_value ≥ total_investment."""
    if not monthly_value or monthly_value <= 0:
        return None
    return max(0, math.ceil(total_investment / monthly_value))


def add_months(start: date, months: int) -> str:
    """``YYYY-MM`` label ``months`` after ``start``."""
    index = start.year * 12 + (start.month - 1) + months
    return f"{index // 12:04d}-{index % 12 + 1:02d}"


def total_investment(investment: dict | None) -> float:
    if not investment:
        return 0.0
    return float(investment.get("initial_investment") or 0) + \
        ANNUAL_MULTIPLIER * float(investment.get("ongoing_monthly_cost") or 0)


def calculate_investment_metrics(value_realization: dict, start: date | None = None) -> dict:
    """ROI and breakeven for a value object with an ``investment`` block.

    Cumulative value is the sum of tracked actuals; without tracking, the
    annual estimate midpoint stands in for it.
    """
    start = start or datetime.now(timezone.utc).date()
    investment = total_investment(value_realization.get("investment"))
    entries = ((value_realization.get("tracking") or {}).get("entries")) or []
    tracked = sum(float(e.get("value") or 0) for e in entries)
    annual = float((value_realization.get("total_estimated_value") or {}).get("midpoint") or 0)
    cumulative = tracked if entries else annual

    months = calculate_breakeven_month(investment, annual / ANNUAL_MULTIPLIER)
    return {
        "total_investment": investment,
        "cumulative_value": cumulative,
        "current_roi": calculate_roi(cumulative, investment),
        "breakeven_months": months,
        "projected_breakeven_month": add_months(start, months) if months is not None else None,
        "last_calculated": datetime.now(timezone.utc).isoformat(),
    }


# ═════════════════════════════════════════════════════════════════════════════
# Portfolio aggregate
# ═════════════════════════════════════════════════════════════════════════════

def _bucket(groups: dict, key: str, investment: float, value: float) -> None:
    slot = groups.setdefault(key, {"investment": 0.0, "value": 0.0, "count": 0})
    slot["investment"] += investment
    slot["value"] += value
    slot["count"] += 1


def aggregate_portfolio_value(items: list[dict]) -> dict:
    """
    Portfolio totals. Each item carries ``value_realization``, ``quadrant``
    and ``tom_phase``. Use cases with an investment block count towards
    ROI and the phase/quadrant breakdown; estimate-only use cases add to
    the value envelope.
    """
    summary = {
        "total_investment": 0.0,
        "cumulative_value": 0.0,
        "estimated_value": {"min": 0, "max": 0},
        "portfolio_roi": None,
        "avg_breakeven_months": None,
        "use_cases_with_value": 0,
        "by_phase": {},
        "by_quadrant": {},
    }
    breakevens = []

    for item in items:
        vr = item.get("value_realization")
        if not vr:
            continue
        total = vr.get("total_estimated_value") or {}
        summary["estimated_value"]["min"] += total.get("min", 0) or 0
        summary["estimated_value"]["max"] += total.get("max", 0) or 0

        if vr.get("investment"):
            investment = total_investment(vr["investment"])
            metrics = vr.get("calculated_metrics") or {}
            value = float(metrics.get("cumulative_value") or 0)
            summary["total_investment"] += investment
            summary["cumulative_value"] += value
            summary["use_cases_with_value"] += 1
            _bucket(summary["by_phase"], item.get("tom_phase") or "unknown", investment, value)
            _bucket(summary["by_quadrant"], item.get("quadrant") or "unknown", investment, value)
            if metrics.get("breakeven_months"):
                breakevens.append(metrics["breakeven_months"])
        elif vr.get("kpi_estimates"):
            value = total.get("max") or sum(
                (e.get("estimated_annual_value") or {}).get("midpoint", 0) for e in vr["kpi_estimates"]
            )
            if value > 0:
                summary["cumulative_value"] += value
                summary["use_cases_with_value"] += 1

    if summary["total_investment"] > 0:
        summary["portfolio_roi"] = calculate_roi(summary["cumulative_value"], summary["total_investment"])
    if breakevens:
        summary["avg_breakeven_months"] = round(sum(breakevens) / len(breakevens))
    return summary
