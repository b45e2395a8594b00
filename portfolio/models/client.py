"""
AI Use-Case Portfolio Service
Tenancy models.

Models:
    - Client: organisation whose portfolio is being managed
    - Engagement: one delivery engagement for a client; pins the TOM preset
      and may override the phase graph for every use case it owns
"""

from datetime import datetime, timezone

from portfolio.models import db


# ── Client ───────────────────────────────────────────────────────────────────


class Client(db.Model):
    """Top-level tenant record."""

    __tablename__ = "clients"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False, unique=True)
    currency = db.Column(db.String(3), nullable=False, default="GBP")

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    engagements = db.relationship(
        "Engagement", backref="client", lazy="dynamic",
        cascade="all, delete-orphan", order_by="Engagement.id",
    )

    def to_dict(self, include_children=False):
        result = {
            "id": self.id,
            "name": self.name,
            "currency": self.currency,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_children:
            result["engagements"] = [e.to_dict() for e in self.engagements]
        return result

    def __repr__(self):
        return f"<Client {self.id}: {self.name}>"


# ── Engagement ───────────────────────────────────────────────────────────────


class Engagement(db.Model):
    """
    Delivery engagement. ``tom_preset_id`` overrides the tenant's active
    preset and ``tom_phases_json`` (a list of phase dicts) replaces the
    phase graph. While ``is_locked`` is set the preset cannot change.
    """

    __tablename__ = "engagements"

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(
        db.Integer, db.ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    tom_preset_id = db.Column(
        db.String(50),
        nullable=True,
        comment="centralized | federated | hybrid | coe_led | rsa_tom | custom",
    )
    tom_phases_json = db.Column(db.JSON, nullable=True)
    is_locked = db.Column(db.Boolean, nullable=False, default=False)
    is_default = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "client_id": self.client_id,
            "name": self.name,
            "tom_preset_id": self.tom_preset_id,
            "tom_phases_json": self.tom_phases_json,
            "is_locked": self.is_locked,
            "is_default": self.is_default,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Engagement {self.id}: {self.name} preset={self.tom_preset_id}>"
