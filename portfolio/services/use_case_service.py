"""Use-case service layer — CRUD plus the governed write path.

Transaction policy: public functions flush only; blueprints commit via
``db_commit_or_error``. On ``ActivationBlocked`` the blueprint rolls back
and commits the audit row from ``record_activation_blocked`` alone.

Update order:
    1. validate payload (nothing derived yet)
    2. governance regression (auto-deactivation / legacy warning)
    3. activation check on a status change
    4. phase-transition justification check
    5. apply fields, rescore
    6. derive phase → value → capability (failures logged, never fatal)

Provides:
- create_use_case / update_use_case / delete_use_case / build_use_case_query
- update_capability / derive_capability / update_value / derive_value
"""
import copy
import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import or_

from portfolio.core.exceptions import (
    ActivationBlocked,
    NotFoundError,
    PhaseTransitionRequiresJustification,
    ValidationError,
)
from portfolio.models import db
from portfolio.models.audit import write_governance_audit
from portfolio.models.client import Engagement
from portfolio.models.use_case import (
    GATE_STATES,
    LIBRARY_SOURCES,
    LIBRARY_TIERS,
    LIST_FIELDS,
    T_SHIRT_SIZES,
    UseCase,
)
from portfolio.services import (
    capability_transition,
    derivation,
    derived_state,
    governance,
    scoring,
    tom,
    value_realization,
)
from portfolio.services.code_generator import generate_meaningful_id
from portfolio.services.events import BufferedEventSink, get_event_sink
from portfolio.services.gate_service import apply_regression, governance_settings
from portfolio.services.library_profiles import dump_library_details, parse_library_details
from portfolio.services.metadata_service import resolve_config_for

logger = logging.getLogger(__name__)

# ── Writable fields ──────────────────────────────────────────────────────

TEXT_FIELDS = (
    "title",
    "description",
    "use_case_status",
    "deployment_status",
    "tom_phase_override",
    "t_shirt_size",
    "primary_business_owner",
    "business_function",
    "library_source",
    "library_tier",
)
NUMBER_FIELDS = (
    "hexaware_fts",
    "client_fts",
    "independence_fts",
    "target_independence",
    "current_independence",
)
OVERRIDE_FIELDS = ("manual_impact_score", "manual_effort_score", "manual_quadrant", "override_reason")
GATE_STATUS_FIELDS = tuple(governance.status_field(g) for g in governance.GATES)
FLAG_FIELDS = ("is_dashboard_visible", "legacy_activation")

WRITABLE_FIELDS = (
    TEXT_FIELDS + NUMBER_FIELDS + OVERRIDE_FIELDS + GATE_STATUS_FIELDS + FLAG_FIELDS
    + scoring.ALL_LEVERS + LIST_FIELDS + ("library_details",)
)

USE_CASE_STATUSES = {"Discovery", "Backlog", "On Hold", "In-flight", "Implemented", "Production"}
DEPLOYMENT_STATUSES = {"PoC", "Pilot", "Production", "Decommissioned"}

_FIELD_LIMITS = {"title": 300, "primary_business_owner": 200, "business_function": 100}

# Keys accepted for the phase-transition justification
JUSTIFICATION_KEYS = ("phase_transition_reason", "phase_transition_justification", "justification")


def _validate_enum(value, allowed, field_name: str) -> str | None:
    """Return error message if value not in allowed set, else None."""
    if value and value not in allowed:
        return f"Invalid {field_name}: '{value}'. Allowed: {sorted(allowed)}"
    return None


def _validate_length(value, max_len: int, field_name: str) -> str | None:
    if value and isinstance(value, str) and len(value) > max_len:
        return f"{field_name} exceeds maximum length of {max_len} characters"
    return None


def validate_use_case_payload(data: dict[str, Any], *, partial: bool) -> list[str]:
    """Collect every problem with a create/update payload."""
    issues = []
    if not partial or "title" in data:
        if not (data.get("title") or "").strip():
            issues.append("title is required")

    for name, limit in _FIELD_LIMITS.items():
        err = _validate_length(data.get(name), limit, name)
        if err:
            issues.append(err)

    issues += scoring.validate_levers(data)
    issues += scoring.validate_overrides(data)

    for name, allowed in (
        ("use_case_status", USE_CASE_STATUSES),
        ("deployment_status", DEPLOYMENT_STATUSES),
        ("t_shirt_size", T_SHIRT_SIZES),
        ("library_source", LIBRARY_SOURCES),
        ("library_tier", LIBRARY_TIERS),
    ):
        err = _validate_enum(data.get(name), set(allowed), name)
        if err:
            issues.append(err)
    for name in GATE_STATUS_FIELDS:
        err = _validate_enum(data.get(name), set(GATE_STATES), name)
        if err:
            issues.append(err)

    for name in LIST_FIELDS:
        value = data.get(name)
        if value is not None and (not isinstance(value, list) or not all(isinstance(v, str) for v in value)):
            issues.append(f"{name} must be a list of strings")

    for name in NUMBER_FIELDS:
        value = data.get(name)
        if value is not None and (isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0):
            issues.append(f"{name} must be a non-negative number")
    for name in ("target_independence", "current_independence"):
        value = data.get(name)
        if isinstance(value, (int, float)) and not isinstance(value, bool) and value > 100:
            issues.append(f"{name} must be between 0 and 100")
    return issues


def _clean_library_details(source: str, raw) -> dict:
    return dump_library_details(parse_library_details(source, raw))


def _merge(use_case: UseCase | None, data: dict) -> dict:
    """Proposed record: stored columns overlaid with the writable payload keys."""
    proposed = use_case.snapshot() if use_case else {}
    proposed.update({k: v for k, v in data.items() if k in WRITABLE_FIELDS})
    return proposed


def _justification(data: dict) -> str | None:
    for key in JUSTIFICATION_KEYS:
        value = (data.get(key) or "").strip() if isinstance(data.get(key), str) else ""
        if value:
            return value
    return None


# ── Derivation wrapper ───────────────────────────────────────────────────

def _run_derivation(use_case: UseCase, configs, triggers, *, overwrite: bool = False, now=None) -> dict | None:
    """Derive and apply; any failure is logged and swallowed so the write stands."""
    try:
        derived = derivation.derive_all_fields(
            use_case.snapshot(), configs,
            overwrite_value=overwrite, overwrite_capability=overwrite,
            triggers=triggers, now=now,
        )
        return derivation.apply_derived_fields(use_case, derived, configs, now)
    except Exception as exc:  # derivation never fails the owning write
        logger.exception("Derivation failed for use case %s", use_case.id)
        get_event_sink().emit("derivation_failed", use_case_id=use_case.id, stage="write", error=str(exc))
        return None


def _rescore(use_case: UseCase, configs) -> bool:
    """Recompute scores. Returns True when the quadrant moved."""
    result = scoring.score_levers(use_case.levers, configs.scoring_model)
    moved = use_case.quadrant != result.quadrant
    use_case.impact_score = result.impact_score
    use_case.effort_score = result.effort_score
    use_case.quadrant = result.quadrant
    return moved


# ═════════════════════════════════════════════════════════════════════════════
# Create
# ═════════════════════════════════════════════════════════════════════════════

def _resolve_engagement(engagement_id) -> Engagement | None:
    if engagement_id is not None:
        engagement = db.session.get(Engagement, engagement_id)
        if engagement is None:
            raise NotFoundError(resource="Engagement", resource_id=engagement_id)
        return engagement
    return Engagement.query.filter_by(is_default=True).order_by(Engagement.id).first()


def create_use_case(data: dict[str, Any]) -> UseCase:
    """
    Create a use case, score it and derive its phase/value/capability.

    Creating straight into an active status is refused (ActivationBlocked)
    unless every gate has passed or the record is flagged legacy.
    """
    issues = validate_use_case_payload(data, partial=False)
    if issues:
        raise ValidationError("Invalid use case", issues=issues)

    source = data.get("library_source") or "rsa_internal"
    details = _clean_library_details(source, data.get("library_details"))
    engagement = _resolve_engagement(data.get("engagement_id"))

    proposed = _merge(None, data)
    status = proposed.get("use_case_status") or "Discovery"
    settings = governance_settings()
    check = governance.check_activation_allowed(
        {**proposed, "created_at": datetime.now(timezone.utc)},
        status, settings.activation_statuses, settings.enforcement_date,
    )
    if check.blocked:
        get_event_sink().emit("activation_blocked", use_case_id=None, target_status=status, reasons=check.reasons)
        raise ActivationBlocked(check, target_status=status)

    use_case = UseCase(
        title=data["title"].strip(),
        engagement_id=engagement.id if engagement else None,
    )
    for name in WRITABLE_FIELDS:
        if name in ("title", "library_details") or name not in data:
            continue
        setattr(use_case, name, data[name])
    for name in LIST_FIELDS:
        setattr(use_case, name, list(data.get(name) or []))
    use_case.use_case_status = status
    use_case.library_source = source
    use_case.library_details = details
    use_case.meaningful_id = generate_meaningful_id(use_case.processes)

    db.session.add(use_case)
    db.session.flush()

    configs = resolve_config_for(use_case, engagement)
    _rescore(use_case, configs)
    _run_derivation(use_case, configs, derivation.ALL_TRIGGERS, overwrite=True)
    db.session.flush()

    logger.info("Use case created: %s (%s) quadrant=%s", use_case.meaningful_id, use_case.id, use_case.quadrant)
    return use_case


# ═════════════════════════════════════════════════════════════════════════════
# Update
# ═════════════════════════════════════════════════════════════════════════════

def _check_activation(use_case: UseCase, previous: dict, proposed: dict, actor, sink) -> None:
    settings = governance_settings()
    target = proposed.get("use_case_status")
    check = governance.check_activation_allowed(
        proposed, target, settings.activation_statuses, settings.enforcement_date,
    )
    if check.blocked:
        raise ActivationBlocked(check, target_status=target, previous_status=previous.get("use_case_status"))
    if check.legacy and check.reasons:
        write_governance_audit(
            use_case,
            gate_type="governance",
            action="LEGACY_GOVERNANCE_WARNING",
            actor=actor,
            notes="Legacy activation with incomplete governance: " + "; ".join(check.reasons),
            previous_status=previous.get("use_case_status"),
            new_status=target,
            tom_phase_at_decision=previous.get("tom_phase"),
        )
        sink.emit("governance_legacy_warning", use_case_id=use_case.id, reasons=check.reasons)


def record_activation_blocked(use_case: UseCase, error: ActivationBlocked, actor: str | None = None) -> None:
    """Audit a refused activation. Called after the update itself was rolled back."""
    write_governance_audit(
        use_case,
        gate_type="activation",
        action="ACTIVATION_BLOCKED",
        actor=actor,
        notes=f'Attempted to move to status "{error.target_status}" but governance gates incomplete',
        previous_status=error.previous_status,
        new_status=error.target_status,
        tom_phase_at_decision=use_case.tom_phase,
        details=error.check.to_dict(),
    )
    get_event_sink().emit(
        "activation_blocked", use_case_id=use_case.id,
        target_status=error.target_status, reasons=error.check.reasons,
    )


def _check_phase_transition(use_case: UseCase, previous: dict, proposed: dict, configs,
                            justification: str | None, actor, sink) -> dict:
    """
    Moves into a phase with unmet gates (or, going forward, unmet exit
    requirements) need a justification.

    Returns extra column updates (reason + waiver) to apply on success.
    """
    record = dict(proposed, phase_gate_waiver=None)
    target = derivation.derive_phase_for(record, configs)
    if target.pinned_from and justification:
        record["phase_gate_waiver"] = target.pinned_from
        target = derivation.derive_phase_for(record, configs)

    check = governance.check_phase_transition(
        previous.get("tom_phase"), target.id, configs.tom_config, proposed, justification,
    )
    if not check.allowed:
        raise PhaseTransitionRequiresJustification(check)

    extra = {}
    if check.requires_justification or record["phase_gate_waiver"]:
        extra = {
            "last_phase_transition_reason": justification,
            "phase_gate_waiver": record["phase_gate_waiver"] or check.target_phase,
        }
        write_governance_audit(
            use_case,
            gate_type="phase_transition",
            action="PHASE_TRANSITION_OVERRIDE",
            actor=actor,
            notes=(f"Phase transition {check.current_phase} → {check.target_phase} "
                   f"with incomplete requirements. Justification: {justification}"),
            previous_status=previous.get("use_case_status"),
            new_status=proposed.get("use_case_status"),
            tom_phase_at_decision=check.current_phase,
            details=check.to_dict(),
        )
        sink.emit(
            "phase_transition_override", use_case_id=use_case.id,
            from_phase=check.current_phase, to_phase=check.target_phase,
        )
    return extra


def update_use_case(use_case: UseCase, data: dict[str, Any]) -> UseCase:
    issues = validate_use_case_payload(data, partial=True)
    if issues:
        raise ValidationError("Invalid use case", issues=issues)

    if "engagement_id" in data and data["engagement_id"] != use_case.engagement_id:
        engagement = _resolve_engagement(data["engagement_id"]) if data["engagement_id"] is not None else None
        use_case.engagement_id = engagement.id if engagement else None

    if "library_details" in data or "library_source" in data:
        source = data.get("library_source") or use_case.library_source
        raw = data["library_details"] if "library_details" in data else use_case.library_details
        data = {**data, "library_details": _clean_library_details(source, raw)}

    if any(name in data for name in OVERRIDE_FIELDS):
        merged = {name: data.get(name, getattr(use_case, name)) for name in OVERRIDE_FIELDS}
        override_issues = scoring.validate_overrides(merged)
        if override_issues:
            raise ValidationError("Invalid score override", issues=override_issues)

    actor = data.get("actor")
    previous = use_case.snapshot()
    proposed = _merge(use_case, data)
    changed = {k for k in WRITABLE_FIELDS if k in data and previous.get(k) != proposed.get(k)}
    configs = resolve_config_for(use_case)

    # events wait until every veto below has passed
    pending = BufferedEventSink()
    regression = apply_regression(use_case, previous, proposed, actor=actor, sink=pending)

    if "use_case_status" in changed and not regression.should_deactivate:
        _check_activation(use_case, previous, proposed, actor, pending)

    extra = {}
    if configs.tom_enabled and changed & derivation.TOM_TRIGGER_FIELDS:
        extra = _check_phase_transition(use_case, previous, proposed, configs, _justification(data), actor, pending)
    pending.flush()

    for name in changed:
        setattr(use_case, name, proposed[name])
    if regression.should_deactivate:
        use_case.use_case_status = proposed["use_case_status"]
        changed.add("use_case_status")
    for name, value in extra.items():
        setattr(use_case, name, value)
    derivation.release_auto_filled(use_case, [n for n in NUMBER_FIELDS if n in data])

    if _rescore(use_case, configs):
        changed.add("quadrant")

    triggers = derivation.should_trigger_derivation(changed)
    if triggers.any:
        _run_derivation(use_case, configs, triggers)

    db.session.flush()
    logger.info("Use case updated: %s fields=%s", use_case.id, sorted(changed))
    return use_case


def delete_use_case(use_case: UseCase) -> None:
    db.session.delete(use_case)
    db.session.flush()
    logger.info("Use case deleted: %s", use_case.id)


# ═════════════════════════════════════════════════════════════════════════════
# Listing
# ═════════════════════════════════════════════════════════════════════════════

def build_use_case_query(filters: dict):
    """Filtered query; ``scope=dashboard`` keeps the active tier plus opted-in rows."""
    query = UseCase.query
    if filters.get("scope") == "dashboard":
        query = query.filter(or_(UseCase.library_tier == "active", UseCase.is_dashboard_visible.is_(True)))
    if filters.get("engagement_id") is not None:
        query = query.filter(UseCase.engagement_id == filters["engagement_id"])
    for name in ("quadrant", "use_case_status", "library_source", "tom_phase", "library_tier"):
        if filters.get(name):
            query = query.filter(getattr(UseCase, name) == filters[name])
    if filters.get("q"):
        term = f"%{filters['q']}%"
        query = query.filter(or_(UseCase.title.ilike(term), UseCase.meaningful_id.ilike(term)))
    return query.order_by(UseCase.created_at.desc())


# ═════════════════════════════════════════════════════════════════════════════
# Derived sub-objects
# ═════════════════════════════════════════════════════════════════════════════

def get_capability(use_case: UseCase) -> dict:
    cap = use_case.capability_transition or {}
    return {
        "use_case_id": use_case.id,
        "tom_phase": use_case.tom_phase,
        "capability_transition": cap,
        "derivation": derived_state.state_of(cap).to_dict(),
    }


def _flat_fte(value):
    if isinstance(value, dict):
        return value.get("total")
    return value


def update_capability(use_case: UseCase, data: dict) -> dict:
    """User edit: merged over the stored object and marked user-edited.

    ``staffing.current`` accepts flat FTE numbers or ``{"total": n}`` blocks.
    """
    if not isinstance(data, dict) or not data:
        raise ValidationError("capability_transition payload must be a non-empty object")
    cap = copy.deepcopy(use_case.capability_transition or {})
    cap.update({k: v for k, v in data.items() if k not in ("derived", "derived_at", "edited_at", "staffing")})

    staffing = data.get("staffing")
    if isinstance(staffing, dict):
        cap["staffing"] = {**(cap.get("staffing") or {}),
                           **{k: v for k, v in staffing.items() if k != "current"}}
        current = staffing.get("current")
        if isinstance(current, dict):
            capability_transition.apply_staffing(cap, _flat_fte(current.get("vendor")),
                                                 _flat_fte(current.get("client")))
    if isinstance(staffing, dict):
        capability_transition.record_independence(cap, note="manual update")

    use_case.capability_transition = derived_state.mark_user_edited(cap)
    db.session.flush()
    return use_case.capability_transition


def derive_capability(use_case: UseCase, overwrite: bool = False) -> dict:
    cap = use_case.capability_transition
    if not derived_state.can_regenerate(cap, overwrite):
        raise ValidationError(
            "Capability data was edited manually",
            issues=["Pass overwrite=true to replace the edited capability data"],
        )
    configs = resolve_config_for(use_case)
    use_case.capability_transition = derivation.derive_capability_for(
        use_case.snapshot(), configs, use_case.tom_phase, datetime.now(timezone.utc),
    )
    db.session.flush()
    return use_case.capability_transition


def get_value(use_case: UseCase) -> dict:
    vr = use_case.value_realization or {}
    return {
        "use_case_id": use_case.id,
        "value_realization": vr,
        "investment_metrics": value_realization.calculate_investment_metrics(vr) if vr else None,
        "derivation": derived_state.state_of(vr).to_dict(),
    }


_ESTIMATE_KEYS = ("kpi_estimates", "total_estimated_value")


def update_value(use_case: UseCase, data: dict) -> dict:
    """
    Merge a value payload. Touching the estimates marks the object user-edited;
    investment/tracking edits leave its derivation state alone.
    """
    if not isinstance(data, dict) or not data:
        raise ValidationError("value_realization payload must be a non-empty object")
    vr = dict(use_case.value_realization or {})
    vr.update({k: v for k, v in data.items() if k not in ("derived", "derived_at", "edited_at")})
    if any(k in data for k in _ESTIMATE_KEYS):
        derived_state.mark_user_edited(vr)
    if vr.get("investment"):
        vr["calculated_metrics"] = value_realization.calculate_investment_metrics(vr)
    use_case.value_realization = vr
    db.session.flush()
    return vr


def derive_value(use_case: UseCase, overwrite: bool = False) -> dict:
    if not use_case.processes:
        raise ValidationError("Value estimates need at least one process")
    if not derived_state.can_regenerate(use_case.value_realization, overwrite):
        raise ValidationError(
            "Value estimates were edited manually",
            issues=["Pass overwrite=true to replace the edited value estimates"],
        )
    configs = resolve_config_for(use_case)
    use_case.value_realization = derivation.derive_value_for(
        use_case.snapshot(), configs, datetime.now(timezone.utc),
    )
    db.session.flush()
    return use_case.value_realization


def phase_info(use_case: UseCase) -> dict:
    """Current phase plus transition readiness, for the detail view."""
    configs = resolve_config_for(use_case)
    phase = tom.find_phase(configs.tom_config, use_case.tom_phase)
    return {
        "tom_phase": use_case.tom_phase,
        "phase": phase,
        "phase_entered_at": use_case.phase_entered_at.isoformat() if use_case.phase_entered_at else None,
        "governance": governance.evaluate_gates(use_case.snapshot()).to_dict(),
    }
