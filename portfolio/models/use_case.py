"""
AI Use-Case Portfolio Service
Use-case model.

Models:
    - UseCase: one AI/automation initiative tracked from intake to production

Scores, quadrant, ``tom_phase`` and the two derived sub-objects
(``capability_transition``, ``value_realization``) are cached derivation
results. The services in ``portfolio.services`` own every write to them.
"""

import uuid
from datetime import datetime, timezone

from portfolio.models import db
from portfolio.services import scoring


def _uuid():
    return str(uuid.uuid4())


GATE_STATES = (
    "not_submitted",
    "pending",
    "approved",
    "conditionally_approved",
    "rejected",
    "deferred",
    "not_required",
)

LIBRARY_SOURCES = ("rsa_internal", "industry_standard", "ai_inventory")
LIBRARY_TIERS = ("active", "reference")
T_SHIRT_SIZES = ("XS", "S", "M", "L", "XL")

# Multi-valued classification fields stored as JSON lists
LIST_FIELDS = (
    "processes",
    "activities",
    "lines_of_business",
    "business_segments",
    "geographies",
    "use_case_types",
)


class UseCase(db.Model):
    """Central portfolio entity."""

    __tablename__ = "use_cases"
    __table_args__ = (
        db.Index("idx_use_cases_engagement", "engagement_id"),
        db.Index("idx_use_cases_status", "use_case_status"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    meaningful_id = db.Column(db.String(30), unique=True, nullable=True)
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")

    # ── Business value levers (1-5) ──────────────────────────────────────
    revenue_impact = db.Column(db.Integer, nullable=True)
    cost_savings = db.Column(db.Integer, nullable=True)
    risk_reduction = db.Column(db.Integer, nullable=True)
    broker_partner_experience = db.Column(db.Integer, nullable=True)
    strategic_fit = db.Column(db.Integer, nullable=True)

    # ── Feasibility levers (1-5) ─────────────────────────────────────────
    data_readiness = db.Column(db.Integer, nullable=True)
    technical_complexity = db.Column(db.Integer, nullable=True)
    change_impact = db.Column(db.Integer, nullable=True)
    model_risk = db.Column(db.Integer, nullable=True)
    adoption_readiness = db.Column(db.Integer, nullable=True)

    # ── Derived scores ───────────────────────────────────────────────────
    impact_score = db.Column(db.Float, nullable=False, default=0.0)
    effort_score = db.Column(db.Float, nullable=False, default=0.0)
    quadrant = db.Column(
        db.String(30), nullable=False, default=scoring.WATCHLIST,
        comment="Quick Win | Strategic Bet | Experimental | Watchlist",
    )

    # ── Manual overrides (display only) ──────────────────────────────────
    manual_impact_score = db.Column(db.Float, nullable=True)
    manual_effort_score = db.Column(db.Float, nullable=True)
    manual_quadrant = db.Column(db.String(30), nullable=True)
    override_reason = db.Column(db.Text, nullable=True)

    # ── Lifecycle ────────────────────────────────────────────────────────
    use_case_status = db.Column(
        db.String(30), default="Discovery",
        comment="Discovery | Backlog | On Hold | In-flight | Implemented | Production",
    )
    deployment_status = db.Column(
        db.String(30), nullable=True,
        comment="PoC | Pilot | Production | Decommissioned",
    )
    tom_phase = db.Column(db.String(50), nullable=True)
    tom_phase_override = db.Column(db.String(50), nullable=True)
    phase_entered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_phase_transition_reason = db.Column(db.Text, nullable=True)
    phase_gate_waiver = db.Column(
        db.String(50), nullable=True,
        comment="Phase id entered with a justification despite unmet gates",
    )
    t_shirt_size = db.Column(db.String(4), nullable=True, comment="XS | S | M | L | XL")

    # ── Governance ───────────────────────────────────────────────────────
    primary_business_owner = db.Column(db.String(200), nullable=True)
    business_function = db.Column(db.String(100), nullable=True)
    legacy_activation = db.Column(db.Boolean, nullable=False, default=False)

    operating_model_status = db.Column(db.String(30), nullable=False, default="not_submitted")
    operating_model_by = db.Column(db.String(150), nullable=True)
    operating_model_notes = db.Column(db.Text, nullable=True)
    operating_model_at = db.Column(db.DateTime(timezone=True), nullable=True)

    intake_status = db.Column(db.String(30), nullable=False, default="not_submitted")
    intake_by = db.Column(db.String(150), nullable=True)
    intake_notes = db.Column(db.Text, nullable=True)
    intake_at = db.Column(db.DateTime(timezone=True), nullable=True)
    intake_priority_rank = db.Column(db.Integer, nullable=True)

    rai_status = db.Column(db.String(30), nullable=False, default="not_submitted")
    rai_by = db.Column(db.String(150), nullable=True)
    rai_notes = db.Column(db.Text, nullable=True)
    rai_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rai_risk_level = db.Column(db.String(20), nullable=True, comment="low | medium | high | critical")

    # ── Classification ───────────────────────────────────────────────────
    processes = db.Column(db.JSON, default=list)
    activities = db.Column(db.JSON, default=list)
    lines_of_business = db.Column(db.JSON, default=list)
    business_segments = db.Column(db.JSON, default=list)
    geographies = db.Column(db.JSON, default=list)
    use_case_types = db.Column(db.JSON, default=list)
    library_source = db.Column(db.String(30), nullable=False, default="rsa_internal")
    library_tier = db.Column(db.String(20), nullable=False, default="reference")
    library_details = db.Column(db.JSON, nullable=True)
    is_dashboard_visible = db.Column(db.Boolean, nullable=False, default=False)

    # ── Staffing inputs (phase-entry defaults fill only unset values) ────
    hexaware_fts = db.Column(db.Float, nullable=True)
    client_fts = db.Column(db.Float, nullable=True)
    independence_fts = db.Column(db.Float, nullable=True)
    target_independence = db.Column(db.Integer, nullable=True)
    current_independence = db.Column(db.Integer, nullable=True)

    # ── Derived sub-objects ──────────────────────────────────────────────
    capability_transition = db.Column(db.JSON, nullable=True)
    value_realization = db.Column(db.JSON, nullable=True)

    engagement_id = db.Column(
        db.Integer, db.ForeignKey("engagements.id", ondelete="SET NULL"), nullable=True,
    )

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    engagement = db.relationship("Engagement", backref=db.backref("use_cases", lazy="dynamic"))

    # ── Helpers ──────────────────────────────────────────────────────────

    def snapshot(self) -> dict:
        """Plain-dict copy of every column, for the pure rule engines."""
        return {c.name: getattr(self, c.name) for c in self.__table__.columns}

    @property
    def levers(self) -> dict:
        return {name: getattr(self, name) for name in scoring.ALL_LEVERS}

    def to_dict(self, include_derived=True):
        """Serialize use case to dictionary."""
        result = {
            "id": self.id,
            "meaningful_id": self.meaningful_id,
            "title": self.title,
            "description": self.description,
            **self.levers,
            "impact_score": self.impact_score,
            "effort_score": self.effort_score,
            "quadrant": self.quadrant,
            "manual_impact_score": self.manual_impact_score,
            "manual_effort_score": self.manual_effort_score,
            "manual_quadrant": self.manual_quadrant,
            "override_reason": self.override_reason,
            "effective_impact_score": scoring.effective_impact_score(
                self.impact_score, self.manual_impact_score),
            "effective_effort_score": scoring.effective_effort_score(
                self.effort_score, self.manual_effort_score),
            "effective_quadrant": scoring.effective_quadrant(self.quadrant, self.manual_quadrant),
            "score_overrides": scoring.override_status(self),
            "use_case_status": self.use_case_status,
            "deployment_status": self.deployment_status,
            "tom_phase": self.tom_phase,
            "tom_phase_override": self.tom_phase_override,
            "phase_entered_at": self.phase_entered_at.isoformat() if self.phase_entered_at else None,
            "last_phase_transition_reason": self.last_phase_transition_reason,
            "phase_gate_waiver": self.phase_gate_waiver,
            "t_shirt_size": self.t_shirt_size,
            "primary_business_owner": self.primary_business_owner,
            "business_function": self.business_function,
            "legacy_activation": self.legacy_activation,
            "operating_model_status": self.operating_model_status,
            "operating_model_by": self.operating_model_by,
            "operating_model_notes": self.operating_model_notes,
            "operating_model_at": self.operating_model_at.isoformat() if self.operating_model_at else None,
            "intake_status": self.intake_status,
            "intake_by": self.intake_by,
            "intake_notes": self.intake_notes,
            "intake_at": self.intake_at.isoformat() if self.intake_at else None,
            "intake_priority_rank": self.intake_priority_rank,
            "rai_status": self.rai_status,
            "rai_by": self.rai_by,
            "rai_notes": self.rai_notes,
            "rai_at": self.rai_at.isoformat() if self.rai_at else None,
            "rai_risk_level": self.rai_risk_level,
            **{name: list(getattr(self, name) or []) for name in LIST_FIELDS},
            "library_source": self.library_source,
            "library_tier": self.library_tier,
            "library_details": self.library_details or {},
            "is_dashboard_visible": self.is_dashboard_visible,
            "hexaware_fts": self.hexaware_fts,
            "client_fts": self.client_fts,
            "independence_fts": self.independence_fts,
            "target_independence": self.target_independence,
            "current_independence": self.current_independence,
            "engagement_id": self.engagement_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_derived:
            result["capability_transition"] = self.capability_transition
            result["value_realization"] = self.value_realization
        return result

    def __repr__(self):
        return f"<UseCase {self.meaningful_id or self.id}: {self.title}>"
