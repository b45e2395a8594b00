"""Governance gate service — persists gate decisions and their side effects.

Transaction policy: functions flush only; blueprints commit.

Provides:
- governance_settings: activation statuses / baseline / enforcement date from app config
- record_gate_decision: validate → apply → audit → regression check → re-derive
- apply_regression: shared auto-deactivation / legacy-warning handling
- governance_queue / portfolio_governance_summary: read views
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from flask import current_app

from portfolio.models import db
from portfolio.models.audit import write_governance_audit
from portfolio.models.use_case import UseCase
from portfolio.services import derivation, governance
from portfolio.services.events import EventSink, get_event_sink

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GovernanceSettings:
    activation_statuses: tuple
    baseline_status: str
    enforcement_date: str


def governance_settings() -> GovernanceSettings:
    cfg = current_app.config
    return GovernanceSettings(
        activation_statuses=tuple(cfg.get("ACTIVATION_STATUSES") or governance.DEFAULT_ACTIVATION_STATUSES),
        baseline_status=cfg.get("BASELINE_STATUS") or governance.DEFAULT_BASELINE_STATUS,
        enforcement_date=cfg.get("GOVERNANCE_ENFORCEMENT_DATE"),
    )


# ── Regression ───────────────────────────────────────────────────────────

def apply_regression(use_case: UseCase, previous: dict, incoming: dict,
                     actor: str | None = None, sink: EventSink | None = None) -> governance.RegressionResult:
    """
    Run the regression check for an active use case and record the outcome.

    A forced deactivation moves ``incoming`` (and the model) to the baseline
    status and writes one ``AUTO_DEACTIVATION`` row. Legacy use cases get a
    ``LEGACY_GOVERNANCE_WARNING`` row instead and keep their status.
    """
    sink = sink or get_event_sink()
    settings = governance_settings()
    result = governance.check_governance_regression(
        previous, incoming, settings.activation_statuses, settings.enforcement_date,
    )
    if result.should_deactivate:
        incoming["use_case_status"] = settings.baseline_status
        use_case.use_case_status = settings.baseline_status
        write_governance_audit(
            use_case,
            gate_type=result.regressed_gate or "governance",
            action="AUTO_DEACTIVATION",
            actor=actor,
            notes=result.reason,
            previous_status=previous.get("use_case_status"),
            new_status=settings.baseline_status,
            tom_phase_at_decision=previous.get("tom_phase"),
            details=result.to_dict(),
        )
        sink.emit(
            "governance_auto_deactivation",
            use_case_id=use_case.id,
            reason=result.reason,
            regressed_gate=result.regressed_gate,
        )
    elif result.warn_only:
        write_governance_audit(
            use_case,
            gate_type="governance",
            action="LEGACY_GOVERNANCE_WARNING",
            actor=actor,
            notes=result.reason,
            tom_phase_at_decision=previous.get("tom_phase"),
            details=result.to_dict(),
        )
        sink.emit(
            "governance_legacy_warning", use_case_id=use_case.id, reason=result.reason,
        )
    return result


# ── Gate decisions ───────────────────────────────────────────────────────

def record_gate_decision(use_case: UseCase, gate: str, payload: dict, configs) -> dict:
    """
    Apply one gate decision.

    Sequence violations raise ``GateSequenceError`` before anything is
    written. Returns ``{"use_case", "regression"}``.
    """
    previous = use_case.snapshot()
    updates = governance.validate_gate_decision(gate, payload, previous)
    now = datetime.now(timezone.utc)

    for name, value in updates.items():
        setattr(use_case, name, value)
    setattr(use_case, f"{gate}_at", now)

    field = governance.status_field(gate)
    write_governance_audit(
        use_case,
        gate_type=gate,
        action="GATE_DECISION",
        actor=updates.get(f"{gate}_by"),
        notes=updates.get(f"{gate}_notes"),
        previous_status=previous.get(field),
        new_status=updates[field],
        tom_phase_at_decision=use_case.tom_phase,
    )
    get_event_sink().emit(
        "gate_decision", use_case_id=use_case.id, gate=gate,
        previous=previous.get(field), decision=updates[field],
    )

    incoming = use_case.snapshot()
    regression = apply_regression(use_case, previous, incoming, actor=updates.get(f"{gate}_by"))

    changed = {name for name in updates if previous.get(name) != updates[name]}
    if regression.should_deactivate:
        changed.add("use_case_status")
    triggers = derivation.should_trigger_derivation(changed)
    if triggers.any:
        try:
            derived = derivation.derive_all_fields(use_case.snapshot(), configs, triggers=triggers, now=now)
            derivation.apply_derived_fields(use_case, derived, configs, now)
        except Exception as exc:  # decision stands even if re-derivation fails
            logger.exception("Re-derivation after %s decision failed for %s", gate, use_case.id)
            get_event_sink().emit("derivation_failed", use_case_id=use_case.id, stage=gate, error=str(exc))

    db.session.flush()
    logger.info("Gate %s → %s for use case %s", gate, updates[field], use_case.id)
    return {"use_case": use_case, "regression": regression}


# ── Views ────────────────────────────────────────────────────────────────

def _records(query=None) -> list[dict]:
    query = query if query is not None else UseCase.query
    return [uc.snapshot() for uc in query.order_by(UseCase.created_at).all()]


def governance_queue(gate: str | None = None, engagement_id: int | None = None) -> list[dict]:
    query = UseCase.query
    if engagement_id is not None:
        query = query.filter(UseCase.engagement_id == engagement_id)
    return governance.pending_queue(_records(query), gate)


def portfolio_governance_summary(engagement_id: int | None = None) -> dict:
    query = UseCase.query
    if engagement_id is not None:
        query = query.filter(UseCase.engagement_id == engagement_id)
    return governance.governance_summary(_records(query))
