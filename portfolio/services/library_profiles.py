"""
Library-source profiles.

``library_details`` on a use case is a tagged union keyed by
``library_source``. Each source has its own optional field set; any key
outside it is rejected.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields

from portfolio.core.exceptions import ValidationError


@dataclass(frozen=True)
class RsaInternalDetails:
    key_dependencies: str | None = None
    implementation_timeline: str | None = None
    success_metrics: str | None = None
    estimated_value: str | None = None
    integration_requirements: str | None = None
    ai_ml_technologies: list | None = None
    data_sources: list | None = None
    stakeholder_groups: list | None = None


@dataclass(frozen=True)
class IndustryStandardDetails:
    benchmark_source: str | None = None
    industry_vertical: str | None = None
    vendor_examples: list | None = None
    ai_ml_technologies: list | None = None
    success_metrics: str | None = None


@dataclass(frozen=True)
class AiInventoryDetails:
    ai_or_model: str | None = None
    risk_to_customers: str | None = None
    risk_to_rsa: str | None = None
    data_used: str | None = None
    model_owner: str | None = None
    rsa_policy_governance: str | None = None
    validation_responsibility: str | None = None
    informed_by: str | None = None
    third_party_provided_model: str | None = None
    ai_inventory_status: str | None = None


PROFILES = {
    "rsa_internal": RsaInternalDetails,
    "industry_standard": IndustryStandardDetails,
    "ai_inventory": AiInventoryDetails,
}


def parse_library_details(source: str, raw: dict | None):
    """Build the profile for ``source`` from ``raw``; raises ``ValidationError``."""
    profile = PROFILES.get(source)
    if profile is None:
        raise ValidationError(
            f"library_source must be one of: {', '.join(PROFILES)}",
            issues=[f"Unknown library source '{source}'"],
        )
    raw = raw or {}
    if not isinstance(raw, dict):
        raise ValidationError("library_details must be an object")
    allowed = {f.name for f in fields(profile)}
    unknown = sorted(set(raw) - allowed)
    if unknown:
        raise ValidationError(
            f"Fields not allowed for {source} use cases",
            issues=[f"{name} is not a {source} field" for name in unknown],
        )
    return profile(**raw)


def dump_library_details(details) -> dict:
    """Non-empty fields only."""
    return {k: v for k, v in asdict(details).items() if v not in (None, "", [])}
