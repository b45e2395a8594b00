"""
Effective configuration for one request.

Layers, lowest first:
    1. module defaults (scoring, TOM, value, capability)
    2. tenant MetadataConfig row
    3. engagement TOM preset (``tom_preset_id``)
    4. engagement phase-graph override (``tom_phases_json``)

The result is a frozen ``ResolvedConfig`` built from deep copies; the
stored metadata row is never mutated.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass

from portfolio.services import capability_transition, scoring, tom, value_realization


@dataclass(frozen=True)
class ResolvedConfig:
    scoring_model: dict
    tom_config: dict
    value_config: dict
    capability_config: dict
    currency: str = "GBP"
    engagement_id: int | None = None

    @property
    def tom_enabled(self) -> bool:
        return tom.is_enabled(self.tom_config)

    @property
    def value_enabled(self) -> bool:
        return bool(self.value_config.get("enabled", True))

    @property
    def capability_enabled(self) -> bool:
        return bool(self.capability_config.get("enabled", True))

    @property
    def staffing_ratios(self) -> dict:
        profile = tom.get_active_preset_profile(self.tom_config) or {}
        return profile.get("staffing_ratios") or {}

    @property
    def value_options(self) -> dict:
        calc = self.value_config.get("calculation_config") or {}
        return {
            "hourly_rate": calc.get("hourly_rate"),
            "volume_multiplier": calc.get("volume_multiplier"),
        }

    def to_dict(self) -> dict:
        return {
            "scoring_model": self.scoring_model,
            "tom_config": self.tom_config,
            "value_realization_config": self.value_config,
            "capability_transition_config": self.capability_config,
            "currency": self.currency,
            "engagement_id": self.engagement_id,
        }


def _section(metadata, name: str):
    return copy.deepcopy(getattr(metadata, name, None)) if metadata is not None else None


def get_configs_from_engagement(metadata, engagement=None) -> ResolvedConfig:
    """Resolve the effective config for ``engagement`` (or the tenant default)."""
    scoring_model = {**copy.deepcopy(scoring.DEFAULT_SCORING_MODEL), **(_section(metadata, "scoring_model") or {})}

    tom_config = tom.ensure_tom_config(_section(metadata, "tom_config"))
    preset_id = getattr(engagement, "tom_preset_id", None) if engagement is not None else None
    tom_config = tom.merge_preset_profile(tom_config, preset_id)

    phases_override = getattr(engagement, "tom_phases_json", None) if engagement is not None else None
    if isinstance(phases_override, list) and phases_override:
        tom_config["phases"] = tom.normalize_phases(copy.deepcopy(phases_override))

    value_config = value_realization.ensure_value_config(_section(metadata, "value_realization_config"))
    capability_config = capability_transition.ensure_capability_config(
        _section(metadata, "capability_transition_config"))

    currency = "GBP"
    client = getattr(engagement, "client", None) if engagement is not None else None
    if client is not None and client.currency:
        currency = client.currency
    else:
        currency = (value_config.get("calculation_config") or {}).get("default_currency") or currency

    return ResolvedConfig(
        scoring_model=scoring_model,
        tom_config=tom_config,
        value_config=value_config,
        capability_config=capability_config,
        currency=currency,
        engagement_id=getattr(engagement, "id", None) if engagement is not None else None,
    )
