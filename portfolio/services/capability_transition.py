"""
Capability transition — staffing and client-independence projections.

Independence is the client's share of the delivery team:
client FTE / (vendor FTE + client FTE) × 100, rounded.

``derive_capability_defaults`` builds the starting capability object for a
use case from its phase, quadrant and size. Staffing ratios come from the
config's ``phase_defaults`` first, then from the active TOM preset.
"""

from __future__ import annotations

import copy
import math
from datetime import date, datetime, timezone

from portfolio.services import derived_state
from portfolio.services.value_realization import add_months

FALLBACK_RATIO = {"vendor": 0.7, "client": 0.3}
FALLBACK_TARGET_INDEPENDENCE = 90
FULL_INDEPENDENCE_THRESHOLD = 85
ASSUMED_MONTHLY_GROWTH = 5
PLANNING_MONTHS = (6, 12, 18)
# FTE precision (hundredths)
FTE_DECIMALS = 2

# Phase implied by lifecycle when the TOM phase is unknown
PHASE_HINTS = {
    "PoC": "foundation",
    "Pilot": "strategic",
    "Production": "transition",
    "Implemented": "transition",
}

DEFAULT_CAPABILITY_TRANSITION_CONFIG: dict = {
    "enabled": True,
    "base_team_fte": 4.0,
    "size_multipliers": {"XS": 0.5, "S": 0.75, "M": 1.0, "L": 1.5, "XL": 2.0},
    "quadrant_multipliers": {
        "Quick Win": 0.8,
        "Strategic Bet": 1.25,
        "Experimental": 0.6,
        "Watchlist": 0.5,
    },
    "phase_defaults": {},
    "independence_targets": {
        "foundation": {"min": 0, "max": 20, "description": "Vendor-led, client observing"},
        "strategic": {"min": 20, "max": 50, "description": "Joint execution, client learning"},
        "transition": {"min": 50, "max": 85, "description": "Client-led, vendor supporting"},
        "steady_state": {"min": 85, "max": 100, "description": "Client self-sufficient"},
    },
    "knowledge_transfer_milestones": [
        {"id": "kt_001", "name": "Solution Design Handover", "phase": "foundation", "order": 1,
         "required_artifacts": ["Architecture diagram", "Design decisions doc"]},
        {"id": "kt_002", "name": "Development Shadowing Complete", "phase": "strategic", "order": 2,
         "required_artifacts": ["Pairing log", "Code walkthrough recordings"]},
        {"id": "kt_003", "name": "Operations Handover", "phase": "strategic", "order": 3,
         "required_artifacts": ["Runbook", "Monitoring dashboard access"]},
        {"id": "kt_004", "name": "First Client-Led Release", "phase": "transition", "order": 4,
         "required_artifacts": ["Release notes", "Post-release review"]},
        {"id": "kt_005", "name": "Model Retraining Capability", "phase": "transition", "order": 5,
         "required_artifacts": ["Retraining procedure", "Model registry access"]},
        {"id": "kt_006", "name": "Full Independence Certification", "phase": "steady_state", "order": 6,
         "required_artifacts": ["Capability assessment", "Sign-off document"]},
    ],
    "role_transitions": [
        {"role": "Solution Architect", "vendor_start_fte": 1.0, "client_end_fte": 1.0, "transition_month": 12},
        {"role": "Data Engineer", "vendor_start_fte": 2.0, "client_end_fte": 2.0, "transition_month": 9},
        {"role": "ML Engineer", "vendor_start_fte": 2.0, "client_end_fte": 1.5, "transition_month": 12},
        {"role": "Business Analyst", "vendor_start_fte": 1.0, "client_end_fte": 1.0, "transition_month": 6},
        {"role": "QA Engineer", "vendor_start_fte": 1.0, "client_end_fte": 1.0, "transition_month": 9},
        {"role": "Project Manager", "vendor_start_fte": 0.5, "client_end_fte": 0.5, "transition_month": 6},
    ],
    "certifications": [
        {"id": "cert_001", "name": "AI/ML Foundations", "estimated_hours": 16,
         "target_audience": ["Business Analyst", "Project Manager"]},
        {"id": "cert_002", "name": "Platform Operations", "estimated_hours": 24,
         "target_audience": ["Data Engineer", "ML Engineer"]},
        {"id": "cert_003", "name": "Model Development", "estimated_hours": 40,
         "target_audience": ["ML Engineer", "Data Scientist"]},
        {"id": "cert_004", "name": "AI Governance & Ethics", "estimated_hours": 8,
         "target_audience": ["All roles"]},
    ],
}


def ensure_capability_config(config: dict | None) -> dict:
    base = copy.deepcopy(DEFAULT_CAPABILITY_TRANSITION_CONFIG)
    if not config:
        return base
    merged = {**base, **copy.deepcopy(config)}
    for key in ("size_multipliers", "quadrant_multipliers", "independence_targets"):
        merged[key] = {**base[key], **(config.get(key) or {})}
    # Older configs used camel-case phase keys
    targets = merged["independence_targets"]
    if "steadyState" in targets:
        targets.setdefault("steady_state", targets.pop("steadyState"))
    enabled = merged.get("enabled", True)
    merged["enabled"] = enabled.lower() == "true" if isinstance(enabled, str) else bool(enabled)
    return merged


# ═════════════════════════════════════════════════════════════════════════════
# Staffing arithmetic
# ═════════════════════════════════════════════════════════════════════════════

def _independence(vendor: float, client: float) -> int:
    total = (vendor or 0) + (client or 0)
    if total <= 0:
        return 0
    return round(client / total * 100)


def calculate_independence_from_staffing(current: dict) -> int:
    """Client share of the current team, as a rounded percentage."""
    vendor = ((current or {}).get("vendor") or {}).get("total") or 0
    client = ((current or {}).get("client") or {}).get("total") or 0
    return _independence(vendor, client)


def _resolve_phase(phase_id, deployment_status, use_case_status) -> str:
    if phase_id and phase_id not in ("unphased", "disabled"):
        return phase_id
    return PHASE_HINTS.get(deployment_status) or PHASE_HINTS.get(use_case_status) or "foundation"


def _target_for(phase: str, cfg: dict) -> int:
    target = cfg["independence_targets"].get(phase)
    return int(target["max"]) if target else FALLBACK_TARGET_INDEPENDENCE


def _planned(vendor: float, client: float, target: int) -> dict:
    total = vendor + client
    start_share = client / total if total else 0.0
    end_share = target / 100
    horizon = PLANNING_MONTHS[-1]
    planned = {}
    for month in PLANNING_MONTHS:
        share = start_share + (end_share - start_share) * month / horizon
        planned[f"month{month}"] = {
            "vendor": round(total * (1 - share), FTE_DECIMALS),
            "client": round(total * share, FTE_DECIMALS),
        }
    return planned


def derive_capability_defaults(
    phase_id: str | None,
    quadrant: str | None,
    t_shirt_size: str | None,
    deployment_status: str | None,
    use_case_status: str | None,
    config: dict | None,
    staffing_ratios: dict | None = None,
    overrides: dict | None = None,
    now: datetime | None = None,
) -> dict:
    """
    Default capability object for one use case.

    ``overrides`` carries user-entered flat values (``hexaware_fts``,
    ``client_fts``, ``target_independence``); they replace the computed
    defaults.
    """
    cfg = ensure_capability_config(config)
    overrides = overrides or {}
    phase = _resolve_phase(phase_id, deployment_status, use_case_status)

    preset = cfg.get("phase_defaults", {}).get(phase) or {}
    if "hexaware_fts" in preset or "client_fts" in preset:
        vendor = float(preset.get("hexaware_fts") or 0)
        client = float(preset.get("client_fts") or 0)
    else:
        ratio = (staffing_ratios or {}).get(phase) or FALLBACK_RATIO
        team = float(cfg["base_team_fte"])
        team *= cfg["size_multipliers"].get(t_shirt_size or "M", 1.0)
        team *= cfg["quadrant_multipliers"].get(quadrant or "", 1.0)
        vendor = round(team * ratio.get("vendor", 0), FTE_DECIMALS)
        client = round(team * ratio.get("client", 0), FTE_DECIMALS)

    if overrides.get("hexaware_fts") is not None:
        vendor = float(overrides["hexaware_fts"])
    if overrides.get("client_fts") is not None:
        client = float(overrides["client_fts"])
    target = preset.get("target_independence") or _target_for(phase, cfg)
    if overrides.get("target_independence") is not None:
        target = int(overrides["target_independence"])

    current = _independence(vendor, client)
    result = {
        "phase": phase,
        "hexaware_fts": vendor,
        "client_fts": client,
        "independence_fts": round((vendor + client) * target / 100, FTE_DECIMALS),
        "target_independence": target,
        "current_independence": current,
        "independence_percentage": current,
        "independence_history": [],
        "staffing": {
            "current": {
                "vendor": {"total": vendor, "by_role": {}},
                "client": {"total": client, "by_role": {}},
            },
            "planned": _planned(vendor, client, target),
        },
        "knowledge_transfer": {
            "completed_milestones": [],
            "in_progress_milestones": [],
            "milestone_notes": {},
        },
        "training": {
            "completed_certifications": [],
            "planned_certifications": [],
            "total_training_hours_completed": 0,
            "total_training_hours_planned": 0,
        },
        "self_sufficiency_target": {
            "target_date": "",
            "target_independence": target,
            "advisory_retainer": False,
        },
    }
    return derived_state.mark_auto_derived(result, now)


def build_capability_transition(existing: dict | None, defaults: dict, when: date | None = None) -> dict:
    """Regenerated object that keeps history, KT and training progress."""
    result = copy.deepcopy(defaults)
    if existing:
        for key in ("independence_history", "knowledge_transfer", "training", "auto_filled"):
            if existing.get(key):
                result[key] = copy.deepcopy(existing[key])
    record_independence(result, when)
    return result


def record_independence(capability: dict, when: date | None = None, note: str = "") -> bool:
    """Append a history entry when the staffing ratio moved. Returns True on append."""
    current = (capability.get("staffing") or {}).get("current") or {}
    pct = calculate_independence_from_staffing(current)
    capability["independence_percentage"] = pct
    capability["current_independence"] = pct
    history = capability.setdefault("independence_history", [])
    if history and history[-1].get("percentage") == pct:
        return False
    when = when or datetime.now(timezone.utc).date()
    history.append({"date": when.strftime("%Y-%m"), "percentage": pct, "note": note})
    return True


def apply_staffing(capability: dict, vendor: float | None, client: float | None) -> dict:
    """Write flat FTE values into the staffing block (user edits)."""
    current = capability.setdefault("staffing", {}).setdefault("current", {})
    if vendor is not None:
        current.setdefault("vendor", {"by_role": {}})["total"] = float(vendor)
        capability["hexaware_fts"] = float(vendor)
    if client is not None:
        current.setdefault("client", {"by_role": {}})["total"] = float(client)
        capability["client_fts"] = float(client)
    return capability


# ═════════════════════════════════════════════════════════════════════════════
# Progress helpers
# ═════════════════════════════════════════════════════════════════════════════

def calculate_kt_progress(completed: list, total: int) -> int:
    if total <= 0:
        return 0
    return round(len(completed) / total * 100)


def calculate_training_progress(completed_hours: float, planned_hours: float) -> int:
    if planned_hours <= 0:
        return 0
    return min(100, round(completed_hours / planned_hours * 100))


def get_phase_from_independence(percentage: int, config: dict | None = None) -> str:
    targets = ensure_capability_config(config)["independence_targets"]
    for phase in ("steady_state", "transition", "strategic"):
        if phase in targets and percentage >= targets[phase]["min"]:
            return phase
    return "foundation"


def project_independence_timeline(current: dict, planned: dict, start: date | None = None) -> list[dict]:
    start = start or datetime.now(timezone.utc).date()
    points = [{
        "month": add_months(start, 0),
        "vendor_fte": current["vendor"]["total"],
        "client_fte": current["client"]["total"],
        "independence_percentage": calculate_independence_from_staffing(current),
    }]
    for month in PLANNING_MONTHS:
        plan = planned.get(f"month{month}") or {"vendor": 0, "client": 0}
        points.append({
            "month": add_months(start, month),
            "vendor_fte": plan["vendor"],
            "client_fte": plan["client"],
            "independence_percentage": _independence(plan["vendor"], plan["client"]),
        })
    return points


# ═════════════════════════════════════════════════════════════════════════════
# Portfolio aggregates
# ═════════════════════════════════════════════════════════════════════════════

def aggregate_portfolio_capability(items: list[dict], config: dict | None = None,
                                   start: date | None = None) -> dict:
    """
    Investment-weighted independence across tracked use cases. Each item
    carries ``capability_transition`` and ``value_realization``.
    """
    cfg = ensure_capability_config(config)
    tracked = [i for i in items if i.get("capability_transition")]
    totals = {"vendor": 0.0, "client": 0.0, "kt": 0, "hours_done": 0.0, "hours_planned": 0.0}
    weighted = 0.0
    weight_sum = 0.0

    for item in tracked:
        ct = item["capability_transition"]
        current = (ct.get("staffing") or {}).get("current") or {}
        investment = ((item.get("value_realization") or {}).get("investment") or {})
        weight = float(investment.get("initial_investment") or 1)

        totals["vendor"] += (current.get("vendor") or {}).get("total") or 0
        totals["client"] += (current.get("client") or {}).get("total") or 0
        totals["kt"] += len((ct.get("knowledge_transfer") or {}).get("completed_milestones") or [])
        training = ct.get("training") or {}
        totals["hours_done"] += training.get("total_training_hours_completed") or 0
        totals["hours_planned"] += training.get("total_training_hours_planned") or 0
        weighted += (ct.get("independence_percentage") or 0) * weight
        weight_sum += weight

    overall = round(weighted / weight_sum) if weight_sum else 0
    projected = None
    if tracked and overall < FULL_INDEPENDENCE_THRESHOLD:
        months = math.ceil((FULL_INDEPENDENCE_THRESHOLD - overall) / ASSUMED_MONTHLY_GROWTH)
        projected = add_months(start or datetime.now(timezone.utc).date(), months)

    return {
        "overall_independence": overall,
        "use_cases_tracked": len(tracked),
        "total_vendor_fte": round(totals["vendor"], 1),
        "total_client_fte": round(totals["client"], 1),
        "kt_milestones_completed": totals["kt"],
        "kt_milestones_total": len(tracked) * len(cfg["knowledge_transfer_milestones"]),
        "training_hours_completed": totals["hours_done"],
        "training_hours_planned": totals["hours_planned"],
        "projected_full_independence": projected,
    }


def generate_aggregate_staffing_projection(items: list[dict], start: date | None = None) -> list[dict]:
    """Summed current and planned staffing at +0/+6/+12/+18 months."""
    tracked = [i["capability_transition"] for i in items if i.get("capability_transition")]
    if not tracked:
        return []
    current = {"vendor": {"total": 0.0}, "client": {"total": 0.0}}
    planned = {f"month{m}": {"vendor": 0.0, "client": 0.0} for m in PLANNING_MONTHS}
    for ct in tracked:
        staffing = ct.get("staffing") or {}
        now = staffing.get("current") or {}
        current["vendor"]["total"] += (now.get("vendor") or {}).get("total") or 0
        current["client"]["total"] += (now.get("client") or {}).get("total") or 0
        for key, slot in planned.items():
            plan = (staffing.get("planned") or {}).get(key) or {}
            slot["vendor"] += plan.get("vendor") or 0
            slot["client"] += plan.get("client") or 0
    return project_independence_timeline(current, planned, start)
