"""
AI Use-Case Portfolio Service
Tenant configuration model.

Models:
    - MetadataConfig: one row per ``config_key``; holds the scoring model,
      TOM / value / capability configuration and the taxonomies.

Sections left NULL fall back to the module defaults in the services
(``DEFAULT_TOM_CONFIG`` and friends), so a fresh database works without
seeding.
"""

from datetime import datetime, timezone

from portfolio.models import db

CONFIG_SECTIONS = (
    "scoring_model",
    "tom_config",
    "value_realization_config",
    "capability_transition_config",
)

TAXONOMY_FIELDS = (
    "processes",
    "activities",
    "lines_of_business",
    "business_segments",
    "geographies",
    "use_case_types",
)


class MetadataConfig(db.Model):
    """Read-mostly tenant configuration, fetched fresh per request."""

    __tablename__ = "metadata_configs"

    id = db.Column(db.Integer, primary_key=True)
    config_key = db.Column(db.String(50), nullable=False, unique=True, default="default")

    scoring_model = db.Column(db.JSON, nullable=True)
    tom_config = db.Column(db.JSON, nullable=True)
    value_realization_config = db.Column(db.JSON, nullable=True)
    capability_transition_config = db.Column(db.JSON, nullable=True)

    processes = db.Column(db.JSON, default=list)
    activities = db.Column(db.JSON, default=dict, comment="process name -> list of activities")
    lines_of_business = db.Column(db.JSON, default=list)
    business_segments = db.Column(db.JSON, default=list)
    geographies = db.Column(db.JSON, default=list)
    use_case_types = db.Column(db.JSON, default=list)
    sort_orders = db.Column(db.JSON, default=dict, comment="taxonomy name -> ordered values")

    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def ordered(self, taxonomy: str) -> list:
        """Taxonomy values in custom sort order; unknown values keep their place at the end."""
        values = getattr(self, taxonomy) or []
        order = (self.sort_orders or {}).get(taxonomy)
        if not order or not isinstance(values, list):
            return values
        rank = {v: i for i, v in enumerate(order)}
        return sorted(values, key=lambda v: rank.get(v, len(rank)))

    def to_dict(self):
        result = {
            "id": self.id,
            "config_key": self.config_key,
            "scoring_model": self.scoring_model,
            "tom_config": self.tom_config,
            "value_realization_config": self.value_realization_config,
            "capability_transition_config": self.capability_transition_config,
            "sort_orders": self.sort_orders or {},
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        for name in TAXONOMY_FIELDS:
            result[name] = self.ordered(name) if name != "activities" else (self.activities or {})
        return result

    def __repr__(self):
        return f"<MetadataConfig {self.config_key}>"
