"""initial_portfolio_schema

Create clients, engagements, use_cases, metadata_configs and
governance_audit_logs.

Revision ID: a1c4e7f20b91
Revises:
Create Date: 2026-02-02 09:30:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "a1c4e7f20b91"
down_revision = None
branch_labels = None
depends_on = None


def _json_list(name):
    return sa.Column(name, sa.JSON(), nullable=True)


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    if "clients" not in existing_tables:
        op.create_table(
            "clients",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("currency", sa.String(length=3), nullable=False, server_default="GBP"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("name"),
        )

    if "engagements" not in existing_tables:
        op.create_table(
            "engagements",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("client_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("tom_preset_id", sa.String(length=50), nullable=True),
            sa.Column("tom_phases_json", sa.JSON(), nullable=True),
            sa.Column("is_locked", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["client_id"], ["clients.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_engagements_client_id", "engagements", ["client_id"])

    if "metadata_configs" not in existing_tables:
        op.create_table(
            "metadata_configs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("config_key", sa.String(length=50), nullable=False),
            sa.Column("scoring_model", sa.JSON(), nullable=True),
            sa.Column("tom_config", sa.JSON(), nullable=True),
            sa.Column("value_realization_config", sa.JSON(), nullable=True),
            sa.Column("capability_transition_config", sa.JSON(), nullable=True),
            _json_list("processes"),
            _json_list("activities"),
            _json_list("lines_of_business"),
            _json_list("business_segments"),
            _json_list("geographies"),
            _json_list("use_case_types"),
            sa.Column("sort_orders", sa.JSON(), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("config_key"),
        )

    if "use_cases" not in existing_tables:
        op.create_table(
            "use_cases",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("meaningful_id", sa.String(length=30), nullable=True),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            # levers
            sa.Column("revenue_impact", sa.Integer(), nullable=True),
            sa.Column("cost_savings", sa.Integer(), nullable=True),
            sa.Column("risk_reduction", sa.Integer(), nullable=True),
            sa.Column("broker_partner_experience", sa.Integer(), nullable=True),
            sa.Column("strategic_fit", sa.Integer(), nullable=True),
            sa.Column("data_readiness", sa.Integer(), nullable=True),
            sa.Column("technical_complexity", sa.Integer(), nullable=True),
            sa.Column("change_impact", sa.Integer(), nullable=True),
            sa.Column("model_risk", sa.Integer(), nullable=True),
            sa.Column("adoption_readiness", sa.Integer(), nullable=True),
            # scores
            sa.Column("impact_score", sa.Float(), nullable=False, server_default="0"),
            sa.Column("effort_score", sa.Float(), nullable=False, server_default="0"),
            sa.Column("quadrant", sa.String(length=30), nullable=False, server_default="Watchlist"),
            sa.Column("manual_impact_score", sa.Float(), nullable=True),
            sa.Column("manual_effort_score", sa.Float(), nullable=True),
            sa.Column("manual_quadrant", sa.String(length=30), nullable=True),
            sa.Column("override_reason", sa.Text(), nullable=True),
            # lifecycle
            sa.Column("use_case_status", sa.String(length=30), nullable=True),
            sa.Column("deployment_status", sa.String(length=30), nullable=True),
            sa.Column("tom_phase", sa.String(length=50), nullable=True),
            sa.Column("tom_phase_override", sa.String(length=50), nullable=True),
            sa.Column("phase_entered_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("last_phase_transition_reason", sa.Text(), nullable=True),
            sa.Column("phase_gate_waiver", sa.String(length=50), nullable=True),
            sa.Column("t_shirt_size", sa.String(length=4), nullable=True),
            # governance
            sa.Column("primary_business_owner", sa.String(length=200), nullable=True),
            sa.Column("business_function", sa.String(length=100), nullable=True),
            sa.Column("legacy_activation", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("operating_model_status", sa.String(length=30), nullable=False,
                      server_default="not_submitted"),
            sa.Column("operating_model_by", sa.String(length=150), nullable=True),
            sa.Column("operating_model_notes", sa.Text(), nullable=True),
            sa.Column("operating_model_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("intake_status", sa.String(length=30), nullable=False, server_default="not_submitted"),
            sa.Column("intake_by", sa.String(length=150), nullable=True),
            sa.Column("intake_notes", sa.Text(), nullable=True),
            sa.Column("intake_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("intake_priority_rank", sa.Integer(), nullable=True),
            sa.Column("rai_status", sa.String(length=30), nullable=False, server_default="not_submitted"),
            sa.Column("rai_by", sa.String(length=150), nullable=True),
            sa.Column("rai_notes", sa.Text(), nullable=True),
            sa.Column("rai_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("rai_risk_level", sa.String(length=20), nullable=True),
            # classification
            _json_list("processes"),
            _json_list("activities"),
            _json_list("lines_of_business"),
            _json_list("business_segments"),
            _json_list("geographies"),
            _json_list("use_case_types"),
            sa.Column("library_source", sa.String(length=30), nullable=False, server_default="rsa_internal"),
            sa.Column("library_tier", sa.String(length=20), nullable=False, server_default="reference"),
            sa.Column("library_details", sa.JSON(), nullable=True),
            sa.Column("is_dashboard_visible", sa.Boolean(), nullable=False, server_default=sa.false()),
            # staffing
            sa.Column("hexaware_fts", sa.Float(), nullable=True),
            sa.Column("client_fts", sa.Float(), nullable=True),
            sa.Column("independence_fts", sa.Float(), nullable=True),
            sa.Column("target_independence", sa.Integer(), nullable=True),
            sa.Column("current_independence", sa.Integer(), nullable=True),
            # derived sub-objects
            sa.Column("capability_transition", sa.JSON(), nullable=True),
            sa.Column("value_realization", sa.JSON(), nullable=True),
            sa.Column("engagement_id", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["engagement_id"], ["engagements.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("meaningful_id"),
        )
        op.create_index("idx_use_cases_engagement", "use_cases", ["engagement_id"])
        op.create_index("idx_use_cases_status", "use_cases", ["use_case_status"])

    if "governance_audit_logs" not in existing_tables:
        op.create_table(
            "governance_audit_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("use_case_id", sa.String(length=36), nullable=False),
            sa.Column("use_case_meaningful_id", sa.String(length=30), nullable=True),
            sa.Column("gate_type", sa.String(length=30), nullable=False),
            sa.Column("action", sa.String(length=40), nullable=False),
            sa.Column("actor", sa.String(length=150), nullable=False, server_default="system"),
            sa.Column("previous_status", sa.String(length=30), nullable=True),
            sa.Column("new_status", sa.String(length=30), nullable=True),
            sa.Column("tom_phase_at_decision", sa.String(length=50), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("details_json", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_gov_audit_use_case", "governance_audit_logs", ["use_case_id"])
        op.create_index("idx_gov_audit_action", "governance_audit_logs", ["action"])
        op.create_index("idx_gov_audit_ts", "governance_audit_logs", ["created_at"])


def downgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    for table in ("governance_audit_logs", "use_cases", "metadata_configs", "engagements", "clients"):
        if table in existing_tables:
            op.drop_table(table)
