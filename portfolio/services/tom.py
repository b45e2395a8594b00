"""
Target Operating Model (TOM) — phase graph, presets and phase derivation.

A TOM config holds an ordered list of phases. Each phase maps use-case
statuses and deployment statuses onto itself and may declare the
governance gates that must be passed before a use case can sit in it
(``required_gates``) and the record fields that must be filled before a
use case may leave it (``exit_requirements``).

Presets (``centralized``, ``federated``, ``hybrid``, ``coe_led``, ``rsa_tom``)
adjust governance bodies, durations and staffing ratios, and may replace
the phase list altogether.

Usage:
    from portfolio.services import tom
    cfg = tom.merge_preset_profile(tom.ensure_tom_config(metadata.tom_config))
    phase = tom.derive_phase("In-flight", "Pilot", None, cfg, gates=gates)
    # -> DerivedPhase(id="strategic", matched_by="deployment", ...)
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DISABLED = "disabled"
UNPHASED = "unphased"

# Camel-case keys accepted from imported / engagement-level phase lists
_PHASE_KEY_ALIASES = {
    "mappedStatuses": "mapped_statuses",
    "mappedDeployments": "mapped_deployments",
    "manualOnly": "manual_only",
    "governanceGate": "governance_gate",
    "expectedDurationWeeks": "expected_duration_weeks",
    "requiredGates": "required_gates",
    "exitRequirements": "exit_requirements",
    "entryDefaults": "entry_defaults",
}


# ═════════════════════════════════════════════════════════════════════════════
# Default configuration
# ═════════════════════════════════════════════════════════════════════════════

def _phase(pid, name, description, order, color, statuses=(), deployments=(),
           gate="none", weeks=None, manual_only=False, required_gates=(), exit_requirements=()):
    return {
        "id": pid,
        "name": name,
        "description": description,
        "order": order,
        "priority": order,
        "color": color,
        "mapped_statuses": list(statuses),
        "mapped_deployments": list(deployments),
        "manual_only": manual_only,
        "governance_gate": gate,
        "expected_duration_weeks": weeks,
        "required_gates": list(required_gates),
        "exit_requirements": list(exit_requirements),
    }


def _overrides(**phases):
    return {pid: {"governance_gate": gate, "expected_duration_weeks": weeks}
            for pid, (gate, weeks) in phases.items()}


def _ratios(**phases):
    return {pid: {"vendor": vendor, "client": client} for pid, (vendor, client) in phases.items()}


ALL_GATES = ("operating_model", "intake", "rai")

DEFAULT_PHASES = [
    _phase("foundation", "Foundation", "Initial setup, governance alignment, and backlog grooming",
           1, "#3C2CDA", statuses=("Discovery", "Backlog", "On Hold"), gate="ai_steerco", weeks=8,
           exit_requirements=("primary_business_owner",)),
    _phase("strategic", "Strategic", "Active development, pilots, and value validation",
           2, "#1D86FF", statuses=("In-flight",), deployments=("PoC", "Pilot"),
           gate="working_group", weeks=16,
           required_gates=("operating_model",), exit_requirements=("value_estimates",)),
    _phase("transition", "Transition", "Production deployment and capability transfer in progress",
           3, "#14CBDE", statuses=("Implemented",), deployments=("Production",),
           gate="business_owner", weeks=12,
           required_gates=ALL_GATES, exit_requirements=("target_independence",)),
    _phase("steady_state", "Steady State", "Full client ownership, optimization mode",
           4, "#07125E", manual_only=True, required_gates=ALL_GATES),
]

RSA_TOM_PHASES = [
    _phase("ideation", "Ideation",
           "Early discovery, opportunity identification, and initial concept validation",
           1, "#9333EA", statuses=("Discovery",), gate="innovation_board", weeks=4),
    _phase("assessment", "Assessment",
           "Detailed feasibility analysis, business case development, and resource planning",
           2, "#3C2CDA", statuses=("Backlog", "On Hold"), gate="ai_steerco", weeks=6,
           exit_requirements=("primary_business_owner",)),
    _phase("foundation", "Foundation",
           "Technical infrastructure setup, team onboarding, and governance alignment",
           3, "#1D86FF", statuses=("In-flight",), gate="ai_steerco", weeks=8,
           required_gates=("operating_model",)),
    _phase("build", "Build",
           "Active development, integration, and pilot testing with controlled user groups",
           4, "#14CBDE", deployments=("PoC", "Pilot"), gate="working_group", weeks=12,
           required_gates=("operating_model", "intake"), exit_requirements=("value_estimates",)),
    _phase("scale", "Scale",
           "Production deployment, user adoption, and capability transfer to client teams",
           5, "#10B981", statuses=("Implemented",), deployments=("Production",),
           gate="business_owner", weeks=10,
           required_gates=ALL_GATES, exit_requirements=("target_independence",)),
    _phase("operate", "Operate",
           "Full client ownership, continuous optimization, and value realization tracking",
           6, "#07125E", manual_only=True, required_gates=ALL_GATES),
]

DEFAULT_TOM_CONFIG: dict = {
    "enabled": True,
    "active_preset": "coe_led",
    "presets": {
        "centralized": {"name": "Centralized CoE", "description": "Single AI team owns all delivery"},
        "federated": {"name": "Federated Model",
                      "description": "Business units own AI with central standards"},
        "hybrid": {"name": "Hybrid Model", "description": "Central platform, distributed execution"},
        "coe_led": {"name": "CoE-Led with Business Pods",
                    "description": "CoE leads with embedded business pods"},
        "rsa_tom": {"name": "RSA Enterprise TOM",
                    "description": "Six-phase enterprise model with extended governance"},
    },
    "preset_profiles": {
        "centralized": {
            "phase_overrides": _overrides(foundation=("ai_steerco", 12), strategic=("ai_steerco", 20),
                                          transition=("ai_steerco", 16), steady_state=("ai_steerco", None)),
            "staffing_ratios": _ratios(foundation=(0.9, 0.1), strategic=(0.8, 0.2),
                                       transition=(0.6, 0.4), steady_state=(0.2, 0.8)),
            "delivery_tracks": [
                {"id": "single_track", "name": "Unified Delivery",
                 "description": "All initiatives through central CoE pipeline"},
            ],
        },
        "federated": {
            "phase_overrides": _overrides(foundation=("working_group", 6), strategic=("business_owner", 12),
                                          transition=("business_owner", 8), steady_state=("none", None)),
            "staffing_ratios": _ratios(foundation=(0.4, 0.6), strategic=(0.3, 0.7),
                                       transition=(0.2, 0.8), steady_state=(0.1, 0.9)),
            "delivery_tracks": [
                {"id": "bu_owned", "name": "Business Unit Owned",
                 "description": "Each business unit manages own AI initiatives"},
            ],
        },
        "hybrid": {
            "phase_overrides": _overrides(foundation=("working_group", 6), strategic=("working_group", 14),
                                          transition=("business_owner", 10), steady_state=("none", None)),
            "staffing_ratios": _ratios(foundation=(0.6, 0.4), strategic=(0.5, 0.5),
                                       transition=(0.35, 0.65), steady_state=(0.15, 0.85)),
            "delivery_tracks": [
                {"id": "quick_wins", "name": "Quick Wins",
                 "description": "Fast-track high-impact, low-effort initiatives"},
                {"id": "strategic", "name": "Strategic Initiatives",
                 "description": "Long-term capability building and complex projects"},
            ],
        },
        "coe_led": {
            "phase_overrides": _overrides(foundation=("ai_steerco", 8), strategic=("working_group", 16),
                                          transition=("business_owner", 12), steady_state=("none", None)),
            "staffing_ratios": _ratios(foundation=(0.7, 0.3), strategic=(0.55, 0.45),
                                       transition=(0.4, 0.6), steady_state=(0.2, 0.8)),
            "delivery_tracks": [
                {"id": "coe_track", "name": "CoE Pipeline",
                 "description": "Primary delivery through CoE with business pod support"},
                {"id": "pod_track", "name": "Business Pods",
                 "description": "Embedded teams handling domain-specific initiatives"},
            ],
        },
        "rsa_tom": {
            "phase_overrides": _overrides(ideation=("innovation_board", 4), assessment=("ai_steerco", 6),
                                          foundation=("ai_steerco", 8), build=("working_group", 12),
                                          scale=("business_owner", 10), operate=("none", None)),
            "staffing_ratios": _ratios(ideation=(0.3, 0.7), assessment=(0.5, 0.5),
                                       foundation=(0.75, 0.25), build=(0.8, 0.2),
                                       scale=(0.5, 0.5), operate=(0.15, 0.85)),
            "delivery_tracks": [
                {"id": "innovation", "name": "Innovation Track",
                 "description": "Exploratory initiatives and proof of concepts"},
                {"id": "transformation", "name": "Transformation Track",
                 "description": "Large-scale enterprise transformation programs"},
                {"id": "enhancement", "name": "Enhancement Track",
                 "description": "Incremental improvements to existing capabilities"},
            ],
            "phases": RSA_TOM_PHASES,
        },
    },
    "phases": DEFAULT_PHASES,
    "governance_bodies": [
        {"id": "innovation_board", "name": "Innovation Board",
         "role": "Early-stage opportunity assessment and ideation approval", "cadence": "Weekly"},
        {"id": "ai_steerco", "name": "AI Steering Committee",
         "role": "Strategic oversight and investment decisions", "cadence": "Monthly"},
        {"id": "working_group", "name": "AI Working Group",
         "role": "Tactical execution and prioritization", "cadence": "Bi-weekly"},
        {"id": "business_owner", "name": "Business Owner Review",
         "role": "Value validation and adoption sign-off", "cadence": "Weekly"},
    ],
    "derivation_rules": {
        "match_order": ["deployment_status", "use_case_status"],
        "fallback_behavior": "lowest_priority",
        "null_deployment_handling": "ignore_in_matching",
    },
}


# ═════════════════════════════════════════════════════════════════════════════
# Result types
# ═════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class DerivedPhase:
    """Result of ``derive_phase``.

    ``matched_by`` is one of ``disabled``, ``manual``, ``deployment``,
    ``status``, ``priority``, ``governance_entry`` or ``unphased``.
    ``pinned_from`` names the candidate phase when governance held the
    use case back.
    """
    id: str
    name: str
    color: str
    is_override: bool
    matched_by: str
    pinned_from: str | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "color": self.color,
            "is_override": self.is_override,
            "matched_by": self.matched_by,
            "pinned_from": self.pinned_from,
        }


@dataclass(frozen=True)
class PhaseTransition:
    from_phase: str | None
    to_phase: str | None
    direction: str  # none | entry | exit | forward | backward

    @property
    def changed(self) -> bool:
        return self.direction != "none"

    @property
    def is_forward(self) -> bool:
        return self.direction == "forward"

    def to_dict(self) -> dict:
        return {"from_phase": self.from_phase, "to_phase": self.to_phase, "direction": self.direction}


_DISABLED_RESULT = DerivedPhase(DISABLED, "TOM Disabled", "#6B7280", False, DISABLED)


def _unphased(matched_by=UNPHASED, pinned_from=None) -> DerivedPhase:
    return DerivedPhase(UNPHASED, "Unphased", "#9CA3AF", False, matched_by, pinned_from)


def _result(phase: dict, matched_by: str, pinned_from=None) -> DerivedPhase:
    return DerivedPhase(
        phase["id"], phase.get("name", phase["id"]), phase.get("color", "#9CA3AF"),
        matched_by == "manual", matched_by, pinned_from,
    )


# ═════════════════════════════════════════════════════════════════════════════
# Config helpers
# ═════════════════════════════════════════════════════════════════════════════

def _as_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "on")
    return bool(value)


def normalize_phase(raw: dict) -> dict:
    """Fill defaults and accept camel-case keys for one phase dict."""
    phase = {_PHASE_KEY_ALIASES.get(k, k): v for k, v in (raw or {}).items()}
    order = phase.get("order") or 0
    phase.setdefault("name", phase.get("id", ""))
    phase.setdefault("description", "")
    phase["order"] = order
    phase["priority"] = phase.get("priority") or order
    phase.setdefault("color", "#9CA3AF")
    phase["mapped_statuses"] = list(phase.get("mapped_statuses") or [])
    phase["mapped_deployments"] = list(phase.get("mapped_deployments") or [])
    phase["manual_only"] = _as_bool(phase.get("manual_only", False))
    phase.setdefault("governance_gate", "none")
    phase.setdefault("expected_duration_weeks", None)
    phase["required_gates"] = [g for g in (phase.get("required_gates") or []) if g in ALL_GATES]
    phase["exit_requirements"] = list(phase.get("exit_requirements") or [])
    return phase


def normalize_phases(phases: list | None) -> list[dict]:
    return sorted((normalize_phase(p) for p in phases or [] if p and p.get("id")),
                  key=lambda p: p["order"])


def ensure_tom_config(config: dict | None) -> dict:
    """Deep copy of ``config`` with every missing section taken from the defaults.

    ``enabled`` is normalised to a bool (older rows stored ``"true"``/``"false"``).
    """
    base = copy.deepcopy(DEFAULT_TOM_CONFIG)
    if not config:
        return base
    merged = {**base, **copy.deepcopy(config)}
    for section in ("presets", "preset_profiles", "phases", "governance_bodies", "derivation_rules"):
        if not merged.get(section):
            merged[section] = base[section]
    merged["enabled"] = _as_bool(merged.get("enabled", True))
    merged["phases"] = normalize_phases(merged["phases"])
    return merged


def is_enabled(tom_config: dict | None) -> bool:
    return bool(tom_config) and _as_bool(tom_config.get("enabled", False))


def get_active_preset_profile(tom_config: dict) -> dict | None:
    return (tom_config.get("preset_profiles") or {}).get(tom_config.get("active_preset"))


def merge_preset_profile(tom_config: dict, preset_id: str | None = None) -> dict:
    """Apply the active (or given) preset to the phase list.

    Presets may carry their own phase list; phase overrides then replace the
    governance body and expected duration. Returns a new dict.
    """
    cfg = copy.deepcopy(tom_config)
    if preset_id:
        cfg["active_preset"] = preset_id
    profile = get_active_preset_profile(cfg)
    if not profile:
        if preset_id:
            logger.warning("Unknown TOM preset %s; keeping base phases", preset_id)
        return cfg

    phases = normalize_phases(profile.get("phases") or cfg.get("phases"))
    overrides = profile.get("phase_overrides") or {}
    for phase in phases:
        override = overrides.get(phase["id"])
        if not override:
            continue
        if override.get("governance_gate") is not None:
            phase["governance_gate"] = override["governance_gate"]
        if "expected_duration_weeks" in override:
            phase["expected_duration_weeks"] = override["expected_duration_weeks"]
    cfg["phases"] = phases
    return cfg


def find_phase(tom_config: dict, phase_id: str | None) -> dict | None:
    if not phase_id:
        return None
    return next((p for p in tom_config.get("phases") or [] if p.get("id") == phase_id), None)


def phase_order(tom_config: dict, phase_id: str | None) -> int | None:
    """Ordinal of a phase. ``unphased`` sorts before every phase; unknown ids give None."""
    if phase_id == UNPHASED:
        return 0
    phase = find_phase(tom_config, phase_id)
    return phase["order"] if phase else None


def required_gates_met(phase: dict, gates: dict | None) -> bool:
    if gates is None:
        return True
    return all(gates.get(g, False) for g in phase.get("required_gates") or [])


def unmet_required_gates(phase: dict, gates: dict | None) -> list[str]:
    if gates is None:
        return []
    return [g for g in phase.get("required_gates") or [] if not gates.get(g, False)]


# ═════════════════════════════════════════════════════════════════════════════
# Phase derivation
# ═════════════════════════════════════════════════════════════════════════════

def _match_candidate(use_case_status, deployment_status, phases) -> tuple[dict, str] | None:
    automatic = [p for p in phases if not p.get("manual_only")]

    if deployment_status:
        by_deployment = [p for p in automatic if deployment_status in p["mapped_deployments"]]
        if by_deployment:
            return min(by_deployment, key=lambda p: p["priority"]), "deployment"

    if use_case_status:
        by_status = [p for p in automatic if use_case_status in p["mapped_statuses"]]
        if len(by_status) == 1:
            return by_status[0], "status"
        if by_status:
            return min(by_status, key=lambda p: p["priority"]), "priority"
    return None


def derive_phase(
    use_case_status: str | None,
    deployment_status: str | None,
    tom_phase_override: str | None,
    tom_config: dict | None,
    gates: dict | None = None,
    waiver: str | None = None,
) -> DerivedPhase:
    """
    Resolve the lifecycle phase of one use case.

    ``gates`` maps gate name -> passed. When omitted, governance pinning is
    skipped. ``waiver`` is the phase a user entered with a justification;
    its required gates are not enforced.
    """
    if not is_enabled(tom_config):
        return _DISABLED_RESULT

    phases = tom_config.get("phases") or []

    if tom_phase_override:
        override = find_phase(tom_config, tom_phase_override)
        if override:
            return _result(override, "manual")

    match = _match_candidate(use_case_status, deployment_status, phases)
    if match is None:
        return _unphased()
    candidate, matched_by = match

    if candidate["id"] == waiver or required_gates_met(candidate, gates):
        return _result(candidate, matched_by)

    # Governance pin: latest earlier phase whose gates are satisfied
    earlier = [
        p for p in phases
        if p["order"] < candidate["order"] and not p.get("manual_only")
        and required_gates_met(p, gates)
    ]
    if earlier:
        pinned = max(earlier, key=lambda p: p["order"])
        return _result(pinned, "governance_entry", pinned_from=candidate["id"])
    return _unphased(pinned_from=candidate["id"])


def detect_phase_transition(
    previous_phase: str | None,
    new_phase: str | None,
    tom_config: dict,
) -> PhaseTransition:
    """Classify a phase move by phase order."""
    if previous_phase == new_phase:
        return PhaseTransition(previous_phase, new_phase, "none")
    if previous_phase in (None, UNPHASED, DISABLED):
        return PhaseTransition(previous_phase, new_phase, "entry")
    if new_phase in (None, UNPHASED, DISABLED):
        return PhaseTransition(previous_phase, new_phase, "exit")

    old_order = phase_order(tom_config, previous_phase)
    new_order = phase_order(tom_config, new_phase)
    if old_order is None or new_order is None:
        # Phase removed from the graph since it was cached
        return PhaseTransition(previous_phase, new_phase, "entry")
    direction = "forward" if new_order > old_order else "backward"
    return PhaseTransition(previous_phase, new_phase, direction)


def calculate_phase_summary(items: list[dict], tom_config: dict) -> dict:
    """
    Per-phase counts. Each item carries ``use_case_status``,
    ``deployment_status``, ``tom_phase_override`` and optionally ``gates``
    and ``phase_gate_waiver``.
    """
    if not is_enabled(tom_config):
        return {"enabled": False, "summary": {}, "phases": []}

    phases = tom_config.get("phases") or []
    summary = {p["id"]: 0 for p in phases}
    summary[UNPHASED] = 0
    for item in items:
        derived = derive_phase(
            item.get("use_case_status"),
            item.get("deployment_status"),
            item.get("tom_phase_override"),
            tom_config,
            gates=item.get("gates"),
            waiver=item.get("phase_gate_waiver"),
        )
        summary[derived.id] = summary.get(derived.id, 0) + 1
    return {
        "enabled": True,
        "active_preset": tom_config.get("active_preset"),
        "summary": summary,
        "phases": phases,
        "total": len(items),
    }
