"""
AI Use-Case Portfolio Service
Governance audit model.

Models:
    - GovernanceAuditLog: immutable, append-only trail of gate decisions
      and automatic governance events.
"""

import json
from datetime import datetime, timezone

from portfolio.models import db

# ── Constants ────────────────────────────────────────────────────────────────

GATE_TYPES = {
    "operating_model",
    "intake",
    "rai",
    "activation",
    "phase_transition",
    "governance",
}

AUDIT_ACTIONS = {
    "GATE_DECISION",
    "ACTIVATION_BLOCKED",
    "AUTO_DEACTIVATION",
    "PHASE_TRANSITION_OVERRIDE",
    "LEGACY_GOVERNANCE_WARNING",
}


class GovernanceAuditLog(db.Model):
    """
    One row per governance event. Rows are never updated or deleted;
    ``details_json`` carries the structured context (decision payload,
    blocked gates, pending requirements).
    """

    __tablename__ = "governance_audit_logs"
    __table_args__ = (
        db.Index("idx_gov_audit_use_case", "use_case_id"),
        db.Index("idx_gov_audit_action", "action"),
        db.Index("idx_gov_audit_ts", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    use_case_id = db.Column(db.String(36), nullable=False)
    use_case_meaningful_id = db.Column(db.String(30), nullable=True)

    gate_type = db.Column(
        db.String(30), nullable=False,
        comment="operating_model | intake | rai | activation | phase_transition | governance",
    )
    action = db.Column(
        db.String(40), nullable=False,
        comment="GATE_DECISION | ACTIVATION_BLOCKED | AUTO_DEACTIVATION | …",
    )
    actor = db.Column(db.String(150), nullable=False, default="system")
    previous_status = db.Column(db.String(30), nullable=True)
    new_status = db.Column(db.String(30), nullable=True)
    tom_phase_at_decision = db.Column(db.String(50), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    details_json = db.Column(db.Text, default="{}")

    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    # ── Helpers ──────────────────────────────────────────────────────────

    @property
    def details(self) -> dict:
        try:
            return json.loads(self.details_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "use_case_id": self.use_case_id,
            "use_case_meaningful_id": self.use_case_meaningful_id,
            "gate_type": self.gate_type,
            "action": self.action,
            "actor": self.actor,
            "previous_status": self.previous_status,
            "new_status": self.new_status,
            "tom_phase_at_decision": self.tom_phase_at_decision,
            "notes": self.notes,
            "details": self.details,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<GovernanceAuditLog {self.id}: {self.action} on {self.use_case_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_governance_audit(
    use_case,
    *,
    gate_type: str,
    action: str,
    actor: str | None = None,
    notes: str | None = None,
    previous_status: str | None = None,
    new_status: str | None = None,
    tom_phase_at_decision: str | None = None,
    details: dict | None = None,
) -> GovernanceAuditLog:
    """
    Append a single audit row for ``use_case``. Uses ``flush`` so callers
    keep transaction control.

    ``tom_phase_at_decision`` defaults to the use case's cached phase.
    """
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"Unknown governance audit action: {action}")
    if gate_type not in GATE_TYPES:
        raise ValueError(f"Unknown governance gate type: {gate_type}")

    log = GovernanceAuditLog(
        use_case_id=str(use_case.id),
        use_case_meaningful_id=use_case.meaningful_id,
        gate_type=gate_type,
        action=action,
        actor=actor or "system",
        notes=notes,
        previous_status=previous_status,
        new_status=new_status,
        tom_phase_at_decision=(
            tom_phase_at_decision if tom_phase_at_decision is not None else use_case.tom_phase
        ),
        details_json=json.dumps(details or {}, default=str),
    )
    db.session.add(log)
    db.session.flush()
    return log


def list_audit_entries(use_case_id: str) -> list[GovernanceAuditLog]:
    """Entries for one use case, oldest first."""
    return (
        GovernanceAuditLog.query
        .filter_by(use_case_id=str(use_case_id))
        .order_by(GovernanceAuditLog.created_at.asc(), GovernanceAuditLog.id.asc())
        .all()
    )
