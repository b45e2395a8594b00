"""Portfolio service — read-side aggregates and the bulk derivation entry points.

Transaction policy: functions flush only; blueprints commit.

Provides:
- phase_summary: per-phase counts under the effective TOM config
- capability_summary / staffing_projection: capability aggregates
- value_summary: investment / ROI / estimate aggregates
- get_tom_config / update_tom_config
- derive_all / derive_value_all / derive_capability_all: bulk recompute
"""
import logging

from portfolio.models import db
from portfolio.models.client import Engagement
from portfolio.models.use_case import UseCase
from portfolio.services import capability_transition, derivation, governance, tom, value_realization
from portfolio.services.metadata_service import ConfigCache, get_metadata, resolve_config_for, update_metadata

logger = logging.getLogger(__name__)


def _use_cases(engagement_id: int | None = None) -> list[UseCase]:
    query = UseCase.query
    if engagement_id is not None:
        query = query.filter(UseCase.engagement_id == engagement_id)
    return query.order_by(UseCase.created_at).all()


def _engagement_config(engagement_id: int | None):
    engagement = db.session.get(Engagement, engagement_id) if engagement_id is not None else None
    return resolve_config_for(engagement=engagement)


# ── TOM ──────────────────────────────────────────────────────────────────

def phase_summary(engagement_id: int | None = None) -> dict:
    configs = _engagement_config(engagement_id)
    items = []
    for uc in _use_cases(engagement_id):
        record = uc.snapshot()
        items.append({
            "use_case_status": record["use_case_status"],
            "deployment_status": record["deployment_status"],
            "tom_phase_override": record["tom_phase_override"],
            "phase_gate_waiver": record["phase_gate_waiver"],
            "gates": governance.gate_results(record),
        })
    return tom.calculate_phase_summary(items, configs.tom_config)


def get_tom_config(engagement_id: int | None = None) -> dict:
    configs = _engagement_config(engagement_id)
    return {
        **configs.tom_config,
        "active_profile": tom.get_active_preset_profile(configs.tom_config),
        "engagement_id": configs.engagement_id,
    }


def update_tom_config(data: dict) -> dict:
    """Merge ``data`` over the stored tenant TOM config and save it."""
    row = get_metadata()
    stored = dict((row.tom_config if row is not None else None) or {})
    stored.update({k: v for k, v in data.items() if k not in ("active_profile", "engagement_id")})
    update_metadata({"tom_config": stored})
    logger.info("TOM config updated: preset=%s enabled=%s", stored.get("active_preset"), stored.get("enabled"))
    return get_tom_config()


# ── Aggregates ───────────────────────────────────────────────────────────

def _aggregate_items(engagement_id: int | None) -> list[dict]:
    return [
        {
            "capability_transition": uc.capability_transition,
            "value_realization": uc.value_realization,
            "quadrant": uc.quadrant,
            "tom_phase": uc.tom_phase,
        }
        for uc in _use_cases(engagement_id)
    ]


def capability_summary(engagement_id: int | None = None) -> dict:
    configs = _engagement_config(engagement_id)
    return capability_transition.aggregate_portfolio_capability(
        _aggregate_items(engagement_id), configs.capability_config,
    )


def staffing_projection(engagement_id: int | None = None) -> list[dict]:
    return capability_transition.generate_aggregate_staffing_projection(_aggregate_items(engagement_id))


def value_summary(engagement_id: int | None = None) -> dict:
    configs = _engagement_config(engagement_id)
    summary = value_realization.aggregate_portfolio_value(_aggregate_items(engagement_id))
    summary["currency"] = configs.currency
    return summary


# ── Bulk derivation ──────────────────────────────────────────────────────

def derive_all(overwrite_value: bool = False, overwrite_capability: bool = False,
               engagement_id: int | None = None) -> derivation.BulkDerivationResult:
    use_cases = _use_cases(engagement_id)
    result = derivation.derive_portfolio(use_cases, ConfigCache(), overwrite_value, overwrite_capability)
    logger.info(
        "Bulk derivation: %d use cases, %d failed", result.total, len(result.errors),
    )
    return result


def derive_value_all(overwrite_existing: bool = False, engagement_id: int | None = None) -> dict:
    return derivation.derive_value_all(_use_cases(engagement_id), ConfigCache(), overwrite_existing)


def derive_capability_all(overwrite_existing: bool = False, engagement_id: int | None = None) -> dict:
    return derivation.derive_capability_all(_use_cases(engagement_id), ConfigCache(), overwrite_existing)
