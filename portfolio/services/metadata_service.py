"""Metadata config service — tenant configuration read/write and rescoring.

Transaction policy: functions flush only; blueprints commit.

Provides:
- get_metadata / ensure_metadata: fetch the tenant row fresh on every call
- update_metadata: validate and write sections, then rescore the portfolio
- recalculate_scores: recompute impact/effort/quadrant for every use case
- resolve_config_for / ConfigCache: effective config per use case
"""
import logging
from typing import Any

from flask import current_app

from portfolio.core.exceptions import ValidationError
from portfolio.models import db
from portfolio.models.client import Engagement
from portfolio.models.metadata_config import CONFIG_SECTIONS, TAXONOMY_FIELDS, MetadataConfig
from portfolio.models.use_case import UseCase
from portfolio.services import derivation, scoring, tom
from portfolio.services.config_resolver import ResolvedConfig, get_configs_from_engagement
from portfolio.services.events import get_event_sink

logger = logging.getLogger(__name__)


def _config_key() -> str:
    return current_app.config.get("METADATA_CONFIG_KEY", "default")


def get_metadata(config_key: str | None = None) -> MetadataConfig | None:
    return MetadataConfig.query.filter_by(config_key=config_key or _config_key()).first()


def ensure_metadata(config_key: str | None = None) -> MetadataConfig:
    """Existing row, or a new empty one (sections fall back to defaults)."""
    row = get_metadata(config_key)
    if row is None:
        row = MetadataConfig(config_key=config_key or _config_key())
        db.session.add(row)
        db.session.flush()
    return row


def effective_metadata(row: MetadataConfig | None) -> dict:
    """Row contents with every NULL config section replaced by its default."""
    resolved = get_configs_from_engagement(row)
    data = row.to_dict() if row else {"config_key": _config_key(), "sort_orders": {}}
    data.update({
        "scoring_model": resolved.scoring_model,
        "tom_config": resolved.tom_config,
        "value_realization_config": resolved.value_config,
        "capability_transition_config": resolved.capability_config,
    })
    for name in TAXONOMY_FIELDS:
        data.setdefault(name, {} if name == "activities" else [])
    return data


# ── Validation ───────────────────────────────────────────────────────────

def _validate_scoring_model(model: dict) -> list[str]:
    issues = []
    for section, names in (("business_value", scoring.IMPACT_LEVERS), ("feasibility", scoring.EFFORT_LEVERS)):
        weights = model.get(section)
        if weights is None:
            continue
        if not isinstance(weights, dict):
            issues.append(f"scoring_model.{section} must be an object")
            continue
        for name, value in weights.items():
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
                issues.append(f"scoring_model.{section}.{name} must be a non-negative number")
        unknown = sorted(set(weights) - set(names) - {a for n in names for a in scoring._WEIGHT_ALIASES[n]})
        if unknown:
            issues.append(f"scoring_model.{section} has unknown levers: {', '.join(unknown)}")
    threshold = model.get("quadrant_threshold")
    if threshold is not None and (isinstance(threshold, bool) or not isinstance(threshold, (int, float))
                                  or not 0 <= threshold <= 5):
        issues.append("scoring_model.quadrant_threshold must be between 0 and 5")
    return issues


def _validate_tom_config(cfg: dict) -> list[str]:
    issues = []
    phases = cfg.get("phases")
    if phases is not None:
        if not isinstance(phases, list):
            return ["tom_config.phases must be a list"]
        ids = [p.get("id") for p in phases if isinstance(p, dict)]
        if len(ids) != len(phases) or not all(ids):
            issues.append("every tom_config phase needs an id")
        elif len(set(ids)) != len(ids):
            issues.append("tom_config phase ids must be unique")
    preset = cfg.get("active_preset")
    profiles = cfg.get("preset_profiles") or tom.DEFAULT_TOM_CONFIG["preset_profiles"]
    if preset and preset not in profiles and preset != "custom":
        issues.append(f"tom_config.active_preset '{preset}' is not a known preset")
    return issues


def validate_metadata_payload(data: dict[str, Any]) -> list[str]:
    issues = []
    for section in CONFIG_SECTIONS:
        if section in data and data[section] is not None and not isinstance(data[section], dict):
            issues.append(f"{section} must be an object")
    if isinstance(data.get("scoring_model"), dict):
        issues += _validate_scoring_model(data["scoring_model"])
    if isinstance(data.get("tom_config"), dict):
        issues += _validate_tom_config(data["tom_config"])
    for name in TAXONOMY_FIELDS:
        if name not in data:
            continue
        expected = dict if name == "activities" else list
        if not isinstance(data[name], expected):
            issues.append(f"{name} must be a{'n object' if expected is dict else ' list'}")
    if "sort_orders" in data and not isinstance(data["sort_orders"], dict):
        issues.append("sort_orders must be an object")
    return issues


# ── Writes ───────────────────────────────────────────────────────────────

def update_metadata(data: dict[str, Any]) -> tuple[MetadataConfig, dict]:
    """Write the supplied sections; a scoring change rescores every use case."""
    issues = validate_metadata_payload(data)
    if issues:
        raise ValidationError("Invalid metadata configuration", issues=issues)

    row = ensure_metadata()
    for name in CONFIG_SECTIONS + TAXONOMY_FIELDS + ("sort_orders",):
        if name in data:
            setattr(row, name, data[name])
    db.session.flush()

    rescored = recalculate_scores(row)
    logger.info("Metadata %s updated; %d use cases rescored", row.config_key, rescored["rescored"])
    return row, rescored


def recalculate_scores(row: MetadataConfig | None = None) -> dict:
    """
    Recompute scores for the whole portfolio with the current weights.

    A quadrant change re-derives the capability object while it is still
    auto-derived.
    """
    row = row if row is not None else get_metadata()
    cache = ConfigCache(row)
    counts = {"rescored": 0, "quadrant_changed": 0, "total": 0, "errors": []}

    for use_case in UseCase.query.order_by(UseCase.created_at).all():
        counts["total"] += 1
        configs = cache(use_case)
        result = scoring.score_levers(use_case.levers, configs.scoring_model)
        if (use_case.impact_score, use_case.effort_score, use_case.quadrant) == (
                result.impact_score, result.effort_score, result.quadrant):
            continue
        quadrant_changed = use_case.quadrant != result.quadrant
        use_case.impact_score = result.impact_score
        use_case.effort_score = result.effort_score
        use_case.quadrant = result.quadrant
        counts["rescored"] += 1
        if not quadrant_changed:
            continue
        counts["quadrant_changed"] += 1
        try:
            derived = derivation.derive_all_fields(
                use_case.snapshot(), configs,
                triggers=derivation.should_trigger_derivation({"quadrant"}),
            )
            derivation.apply_derived_fields(use_case, derived, configs)
        except Exception as exc:  # rescoring must finish for the rest of the portfolio
            derivation._record_failure(counts["errors"], use_case, exc, "rescore")

    db.session.flush()
    get_event_sink().emit("portfolio_rescored", rescored=counts["rescored"], total=counts["total"])
    return counts


# ── Config resolution ────────────────────────────────────────────────────

def _engagement_for(use_case) -> Engagement | None:
    if use_case is not None and use_case.engagement_id:
        return db.session.get(Engagement, use_case.engagement_id)
    return None


def resolve_config_for(use_case=None, engagement: Engagement | None = None) -> ResolvedConfig:
    """Effective config for a use case (or engagement), read fresh."""
    if engagement is None:
        engagement = _engagement_for(use_case)
    return get_configs_from_engagement(get_metadata(), engagement)


class ConfigCache:
    """Per-call memo of resolved configs keyed by engagement, for bulk runs."""

    def __init__(self, row: MetadataConfig | None = None):
        self.row = row if row is not None else get_metadata()
        self._by_engagement: dict = {}

    def __call__(self, use_case) -> ResolvedConfig:
        key = use_case.engagement_id
        if key not in self._by_engagement:
            self._by_engagement[key] = get_configs_from_engagement(self.row, _engagement_for(use_case))
        return self._by_engagement[key]
