"""
Governance gate engine — Operating Model → Intake → Responsible AI.

Pure rules over plain use-case records (``UseCase.snapshot()`` or a
proposed-state dict). Nothing here touches the database; callers persist
decisions and audit rows (see ``gate_service`` and ``use_case_service``).

Usage:
    from portfolio.services import governance
    check = governance.check_activation_allowed(proposed, "In-flight")
    if check.blocked:
        ...  # check.to_dict() explains which gates are missing
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime

from portfolio.core.exceptions import GateSequenceError, ValidationError
from portfolio.services import tom

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════════
# Gate definitions
# ═════════════════════════════════════════════════════════════════════════════

GATES = ("operating_model", "intake", "rai")

GATE_LABELS = {
    "operating_model": "Operating Model",
    "intake": "Intake & Prioritization",
    "rai": "Responsible AI",
}

GATE_PREDECESSOR = {"intake": "operating_model", "rai": "intake"}

PASSING_STATES = {
    "operating_model": {"approved", "not_required"},
    "intake": {"approved"},
    "rai": {"approved", "conditionally_approved"},
}

DECISIONS = {
    "operating_model": ("approved", "rejected", "not_required"),
    "intake": ("approved", "rejected", "deferred"),
    "rai": ("approved", "conditionally_approved", "rejected"),
}

RISK_LEVELS = ("low", "medium", "high", "critical")

DEFAULT_ACTIVATION_STATUSES = ("In-flight", "Implemented", "Production")
BYPASS_STATUSES = ("Discovery", "Backlog", "On Hold")
DEFAULT_BASELINE_STATUS = "Backlog"
DEFAULT_ENFORCEMENT_DATE = date(2026, 1, 24)


def status_field(gate: str) -> str:
    return f"{gate}_status"


# Record fields a phase may require before a use case leaves it
def _value(record):
    return record.get("value_realization") or {}


REQUIREMENTS = {
    "primary_business_owner": ("Primary business owner",
                               lambda r: bool((r.get("primary_business_owner") or "").strip())),
    "business_function": ("Business function",
                          lambda r: bool((r.get("business_function") or "").strip())),
    "processes": ("At least one process", lambda r: bool(r.get("processes"))),
    "value_estimates": ("Value estimates", lambda r: bool(_value(r).get("kpi_estimates"))),
    "selected_kpis": ("Selected KPIs", lambda r: bool(_value(r).get("selected_kpis"))),
    "investment": ("Investment figures",
                   lambda r: bool((_value(r).get("investment") or {}).get("initial_investment"))),
    "target_independence": ("Target independence",
                            lambda r: r.get("target_independence") is not None
                            or (r.get("capability_transition") or {}).get("target_independence") is not None),
}


# ═════════════════════════════════════════════════════════════════════════════
# Result types
# ═════════════════════════════════════════════════════════════════════════════

@dataclass
class GateCheck:
    gate: str
    passed: bool
    progress: int
    issues: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "gate": self.gate,
            "label": GATE_LABELS[self.gate],
            "passed": self.passed,
            "progress": self.progress,
            "issues": self.issues,
        }


@dataclass
class GovernanceStatus:
    """Full evaluation of the three gates for one record."""
    gates: dict[str, GateCheck]
    missing_fields: list[str]
    overall_progress: int

    @property
    def all_passed(self) -> bool:
        return all(g.passed for g in self.gates.values())

    @property
    def failing(self) -> list[str]:
        return [name for name, g in self.gates.items() if not g.passed]

    def to_dict(self) -> dict:
        return {
            "gates": {name: g.to_dict() for name, g in self.gates.items()},
            "missing_fields": self.missing_fields,
            "overall_progress": self.overall_progress,
            "all_passed": self.all_passed,
        }


@dataclass
class ActivationCheck:
    blocked: bool
    reasons: list[str]
    gates: dict
    missing: list[str]
    overall_progress: int
    legacy: bool = False

    def to_dict(self) -> dict:
        return {
            "blocked": self.blocked,
            "reasons": self.reasons,
            "gates": self.gates,
            "missing_fields": self.missing,
            "overall_progress": self.overall_progress,
            "legacy": self.legacy,
        }


@dataclass
class RegressionResult:
    should_deactivate: bool
    reason: str | None = None
    regressed_gate: str | None = None
    is_legacy: bool = False

    @property
    def warn_only(self) -> bool:
        return self.regressed_gate is not None and not self.should_deactivate

    def to_dict(self) -> dict:
        return {
            "should_deactivate": self.should_deactivate,
            "reason": self.reason,
            "regressed_gate": self.regressed_gate,
            "is_legacy": self.is_legacy,
        }


@dataclass
class PhaseTransitionCheck:
    allowed: bool
    requires_justification: bool
    current_phase: str | None
    target_phase: str | None
    direction: str
    pending: list[dict] = field(default_factory=list)

    @property
    def from_phase(self):
        return self.current_phase

    @property
    def to_phase(self):
        return self.target_phase

    def to_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "requires_justification": self.requires_justification,
            "current_phase": self.current_phase,
            "target_phase": self.target_phase,
            "direction": self.direction,
            "pending_exit_requirements": self.pending,
        }


# ═════════════════════════════════════════════════════════════════════════════
# Gate evaluation
# ═════════════════════════════════════════════════════════════════════════════

def _has_owner(record: dict) -> bool:
    return bool((record.get("primary_business_owner") or "").strip())


def gate_status_passing(record: dict, gate: str) -> bool:
    """The gate's own decision is a passing one (ignores predecessors)."""
    passed = (record.get(status_field(gate)) or "not_submitted") in PASSING_STATES[gate]
    if gate == "operating_model":
        return passed and _has_owner(record)
    return passed


def gate_results(record: dict) -> dict[str, bool]:
    """Sequential pass map: a gate only counts once its predecessor passed."""
    results = {}
    previous_ok = True
    for gate in GATES:
        results[gate] = previous_ok and gate_status_passing(record, gate)
        previous_ok = results[gate]
    return results


def evaluate_gates(record: dict) -> GovernanceStatus:
    passed = gate_results(record)
    checks: dict[str, GateCheck] = {}
    missing: list[str] = []

    # Operating model: named owner + decision
    issues, progress = [], 0
    if _has_owner(record):
        progress += 50
    else:
        issues.append("Primary business owner is required")
        missing.append("primary_business_owner")
    if (record.get("operating_model_status") or "not_submitted") in PASSING_STATES["operating_model"]:
        progress += 50
    else:
        issues.append("Operating model decision is outstanding")
        missing.append("operating_model_status")
    checks["operating_model"] = GateCheck("operating_model", passed["operating_model"], progress, issues)

    for gate in ("intake", "rai"):
        issues = []
        predecessor = GATE_PREDECESSOR[gate]
        if not passed[predecessor]:
            issues.append(f"Requires {GATE_LABELS[predecessor]} approval")
        status = record.get(status_field(gate)) or "not_submitted"
        if status in PASSING_STATES[gate]:
            progress = 100
        else:
            progress = 50 if status == "pending" else 0
            issues.append(f"{GATE_LABELS[gate]} decision is {status.replace('_', ' ')}")
            missing.append(status_field(gate))
        checks[gate] = GateCheck(gate, passed[gate], progress, issues)

    overall = round(sum(c.progress for c in checks.values()) / len(checks))
    return GovernanceStatus(checks, missing, overall)


def _as_date(value) -> date | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.fromisoformat(str(value)).date()
    except ValueError:
        return None


def is_legacy(record: dict, enforcement_date: date | str | None = None) -> bool:
    """Flagged legacy, or created before governance enforcement began."""
    if record.get("legacy_activation"):
        return True
    cutoff = _as_date(enforcement_date) or DEFAULT_ENFORCEMENT_DATE
    created = _as_date(record.get("created_at"))
    return created is not None and created < cutoff


# ═════════════════════════════════════════════════════════════════════════════
# Activation & regression
# ═════════════════════════════════════════════════════════════════════════════

def check_activation_allowed(
    proposed: dict,
    target_status: str | None,
    activation_statuses=DEFAULT_ACTIVATION_STATUSES,
    enforcement_date=None,
) -> ActivationCheck:
    """Blocks a move into an active status unless every gate passed.

    Legacy use cases are never blocked; ``reasons`` still lists the gaps
    so the caller can log a warning.
    """
    status = evaluate_gates(proposed)
    gates = {name: g.to_dict() for name, g in status.gates.items()}
    if target_status not in activation_statuses or status.all_passed:
        return ActivationCheck(False, [], gates, [], status.overall_progress)

    reasons = [
        f"{GATE_LABELS[name]}: {'; '.join(status.gates[name].issues) or 'not passed'}"
        for name in status.failing
    ]
    legacy = is_legacy(proposed, enforcement_date)
    return ActivationCheck(
        blocked=not legacy,
        reasons=reasons,
        gates=gates,
        missing=status.missing_fields,
        overall_progress=status.overall_progress,
        legacy=legacy,
    )


def check_governance_regression(
    previous: dict,
    incoming: dict,
    activation_statuses=DEFAULT_ACTIVATION_STATUSES,
    enforcement_date=None,
) -> RegressionResult:
    """
    ``previous`` is the stored record, ``incoming`` the merged proposed one.

    Only use cases that are active before and after the update can regress.
    The first gate (in sequence order) that passed before and fails now is
    reported.
    """
    if previous.get("use_case_status") not in activation_statuses:
        return RegressionResult(False)
    if incoming.get("use_case_status") not in activation_statuses:
        return RegressionResult(False)

    for gate in GATES:
        if gate_status_passing(previous, gate) and not gate_status_passing(incoming, gate):
            before = previous.get(status_field(gate))
            after = incoming.get(status_field(gate))
            if gate == "operating_model" and before == after:
                reason = f"{GATE_LABELS[gate]} gate regressed: primary business owner removed"
            else:
                reason = f"{GATE_LABELS[gate]} gate regressed from '{before}' to '{after}'"
            legacy = is_legacy(previous, enforcement_date)
            return RegressionResult(not legacy, reason, gate, legacy)
    return RegressionResult(False)


# ═════════════════════════════════════════════════════════════════════════════
# Phase transitions
# ═════════════════════════════════════════════════════════════════════════════

def pending_requirements(from_phase: dict | None, to_phase: dict | None, record: dict) -> list[dict]:
    """Unmet target-phase gates plus unmet exit requirements of the phase being left."""
    pending = []
    if to_phase:
        for gate in tom.unmet_required_gates(to_phase, gate_results(record)):
            pending.append({"type": "gate", "key": gate, "label": GATE_LABELS[gate]})
    if from_phase:
        for key in from_phase.get("exit_requirements") or []:
            label, check = REQUIREMENTS.get(key, (key, lambda r, k=key: r.get(k) not in (None, "", [])))
            if not check(record):
                pending.append({"type": "requirement", "key": key, "label": label})
    return pending


def check_phase_transition(
    previous_phase: str | None,
    target_phase: str | None,
    tom_config: dict,
    record: dict,
    justification: str | None = None,
) -> PhaseTransitionCheck:
    """
    Moves into a phase with unmet required gates need a justification,
    whatever the direction. Exit requirements of the phase being left only
    apply to forward moves.
    """
    transition = tom.detect_phase_transition(previous_phase, target_phase, tom_config)
    target = tom.find_phase(tom_config, target_phase)
    if transition.direction == "none" or target is None:
        return PhaseTransitionCheck(True, False, previous_phase, target_phase, transition.direction)

    leaving = tom.find_phase(tom_config, previous_phase) if transition.is_forward else None
    pending = pending_requirements(leaving, target, record)
    if not pending:
        return PhaseTransitionCheck(True, False, previous_phase, target_phase, transition.direction)
    justified = bool((justification or "").strip())
    return PhaseTransitionCheck(justified, True, previous_phase, target_phase, transition.direction, pending)


# ═════════════════════════════════════════════════════════════════════════════
# Gate decisions
# ═════════════════════════════════════════════════════════════════════════════

def validate_gate_decision(gate: str, payload: dict, record: dict) -> dict:
    """
    Normalise a gate decision payload.

    Raises ``ValidationError`` for malformed input and ``GateSequenceError``
    when the predecessor gate has not passed. Returns the column updates.
    """
    if gate not in GATES:
        raise ValidationError(f"Unknown governance gate: {gate}")

    decision = (payload.get("decision") or payload.get("status") or "").strip()
    if decision not in DECISIONS[gate]:
        raise ValidationError(
            f"decision must be one of: {', '.join(DECISIONS[gate])}",
            issues=[f"Invalid {GATE_LABELS[gate]} decision '{decision}'"],
        )

    updates = {
        status_field(gate): decision,
        f"{gate}_by": payload.get("actor") or payload.get("decided_by"),
        f"{gate}_notes": payload.get("notes"),
    }

    if gate == "operating_model":
        owner = (payload.get("primary_business_owner") or record.get("primary_business_owner") or "").strip()
        if decision == "approved" and not owner:
            raise ValidationError(
                "Operating model approval requires a named primary business owner",
                issues=["primary_business_owner is required"],
            )
        if payload.get("primary_business_owner"):
            updates["primary_business_owner"] = owner

    if gate == "intake" and payload.get("priority_rank") is not None:
        rank = payload["priority_rank"]
        if isinstance(rank, bool) or not isinstance(rank, int) or rank < 1:
            raise ValidationError("priority_rank must be a positive integer")
        updates["intake_priority_rank"] = rank

    if gate == "rai" and payload.get("risk_level") is not None:
        if payload["risk_level"] not in RISK_LEVELS:
            raise ValidationError(f"risk_level must be one of: {', '.join(RISK_LEVELS)}")
        updates["rai_risk_level"] = payload["risk_level"]

    predecessor = GATE_PREDECESSOR.get(gate)
    if predecessor and not gate_results(record)[predecessor]:
        raise GateSequenceError(gate, predecessor, GATE_LABELS[gate], GATE_LABELS[predecessor])

    return updates


# ═════════════════════════════════════════════════════════════════════════════
# Portfolio views
# ═════════════════════════════════════════════════════════════════════════════

def next_gate(record: dict) -> str | None:
    results = gate_results(record)
    return next((g for g in GATES if not results[g]), None)


def pending_queue(records: list[dict], gate: str | None = None) -> list[dict]:
    """Use cases waiting on a decision, keyed by their next gate."""
    queue = []
    for record in records:
        upcoming = next_gate(record)
        if upcoming is None or (gate and upcoming != gate):
            continue
        queue.append({
            "id": record.get("id"),
            "meaningful_id": record.get("meaningful_id"),
            "title": record.get("title"),
            "use_case_status": record.get("use_case_status"),
            "next_gate": upcoming,
            "next_gate_label": GATE_LABELS[upcoming],
            "gate_status": record.get(status_field(upcoming)) or "not_submitted",
        })
    return queue


def governance_summary(records: list[dict]) -> dict:
    by_gate = {gate: {} for gate in GATES}
    fully_governed = 0
    for record in records:
        for gate in GATES:
            state = record.get(status_field(gate)) or "not_submitted"
            by_gate[gate][state] = by_gate[gate].get(state, 0) + 1
        if all(gate_results(record).values()):
            fully_governed += 1
    return {
        "total": len(records),
        "fully_governed": fully_governed,
        "by_gate": by_gate,
        "awaiting": {gate: sum(1 for r in records if next_gate(r) == gate) for gate in GATES},
    }
