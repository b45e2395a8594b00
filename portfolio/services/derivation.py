"""
Derivation orchestrator.

Composes the scoring-independent derivers for one use case, in dependency
order: TOM phase → value realization → capability transition (capability
defaults key off the phase).

Two layers:
    - ``derive_all_fields`` is pure: record dict + ResolvedConfig in,
      ``DerivedFields`` out.
    - ``apply_derived_fields`` writes a result onto a ``UseCase`` instance,
      resets ``phase_entered_at`` on a phase change and fills phase-entry
      defaults into unset fields only. It never commits.

Bulk helpers run items sequentially; a failure on one use case is logged,
emitted as ``derivation_failed`` and collected, and the batch continues.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from portfolio.services import capability_transition, derived_state, governance, tom, value_realization
from portfolio.services.config_resolver import ResolvedConfig
from portfolio.services.events import get_event_sink

logger = logging.getLogger(__name__)

TOM_TRIGGER_FIELDS = frozenset({
    "use_case_status",
    "deployment_status",
    "tom_phase_override",
    # gate state moves the governance pin
    "operating_model_status",
    "intake_status",
    "rai_status",
    "primary_business_owner",
})
VALUE_TRIGGER_FIELDS = frozenset({
    "processes",
    "data_readiness",
    "technical_complexity",
    "adoption_readiness",
    "change_impact",
})
CAPABILITY_TRIGGER_FIELDS = frozenset({"t_shirt_size", "quadrant"})

# Flat staffing fields filled from phase-entry defaults when unset
PHASE_DEFAULT_FIELDS = (
    "hexaware_fts",
    "client_fts",
    "independence_fts",
    "target_independence",
    "current_independence",
)


# ═════════════════════════════════════════════════════════════════════════════
# Result types
# ═════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class DerivationTriggers:
    tom: bool = False
    value: bool = False
    capability: bool = False

    @property
    def any(self) -> bool:
        return self.tom or self.value or self.capability


ALL_TRIGGERS = DerivationTriggers(True, True, True)


@dataclass
class DerivedFields:
    """Fields to write back. ``None`` means leave the stored value alone."""
    phase: tom.DerivedPhase | None = None
    value_realization: dict | None = None
    capability_transition: dict | None = None

    @property
    def tom_phase(self) -> str | None:
        return self.phase.id if self.phase else None

    def to_dict(self) -> dict:
        return {
            "tom_phase": self.tom_phase,
            "phase": self.phase.to_dict() if self.phase else None,
            "value_realization": self.value_realization,
            "capability_transition": self.capability_transition,
        }


@dataclass
class BulkDerivationResult:
    total: int = 0
    tom_derived: int = 0
    value_derived: int = 0
    capability_derived: int = 0
    errors: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "tom_derived": self.tom_derived,
            "value_derived": self.value_derived,
            "capability_derived": self.capability_derived,
            "errors": self.errors,
        }


# ═════════════════════════════════════════════════════════════════════════════
# Trigger rules
# ═════════════════════════════════════════════════════════════════════════════

def should_trigger_derivation(changed_fields) -> DerivationTriggers:
    """Which derivers a change set touches. Phase changes cascade to capability."""
    changed = set(changed_fields or ())
    tom_hit = bool(changed & TOM_TRIGGER_FIELDS)
    value_hit = bool(changed & VALUE_TRIGGER_FIELDS)
    capability_hit = tom_hit or bool(changed & CAPABILITY_TRIGGER_FIELDS)
    return DerivationTriggers(tom_hit, value_hit, capability_hit)


# ═════════════════════════════════════════════════════════════════════════════
# Per-deriver steps (pure)
# ═════════════════════════════════════════════════════════════════════════════

def derive_phase_for(record: dict, configs: ResolvedConfig) -> tom.DerivedPhase:
    return tom.derive_phase(
        record.get("use_case_status"),
        record.get("deployment_status"),
        record.get("tom_phase_override"),
        configs.tom_config,
        gates=governance.gate_results(record),
        waiver=record.get("phase_gate_waiver"),
    )


def derive_value_for(record: dict, configs: ResolvedConfig, now=None) -> dict:
    estimates = value_realization.derive_value_estimates(
        record.get("processes") or [],
        record,
        configs.value_config.get("kpi_library") or {},
        configs.value_options,
    )
    total = value_realization.calculate_total_estimated_value(estimates, configs.currency)
    return value_realization.build_value_realization(record.get("value_realization"), estimates, total, now)


FLAT_OVERRIDE_FIELDS = ("hexaware_fts", "client_fts", "target_independence")


def auto_filled(capability: dict | None) -> dict:
    """Flat staffing values the last phase entry filled in, by field name."""
    return dict((capability or {}).get("auto_filled") or {})


def _flat_overrides(record: dict) -> dict:
    """User-set flat staffing values. A value still equal to its auto fill is not one."""
    filled = auto_filled(record.get("capability_transition"))
    overrides = {}
    for name in FLAT_OVERRIDE_FIELDS:
        value = record.get(name)
        if value is None or (name in filled and filled[name] == value):
            continue
        overrides[name] = value
    return overrides


def derive_capability_for(record: dict, configs: ResolvedConfig, phase_id: str | None, now=None) -> dict:
    defaults = capability_transition.derive_capability_defaults(
        phase_id,
        record.get("quadrant"),
        record.get("t_shirt_size"),
        record.get("deployment_status"),
        record.get("use_case_status"),
        configs.capability_config,
        staffing_ratios=configs.staffing_ratios,
        overrides=_flat_overrides(record),
        now=now,
    )
    when = now.date() if now else None
    return capability_transition.build_capability_transition(record.get("capability_transition"), defaults, when)


def derive_all_fields(
    record: dict,
    configs: ResolvedConfig,
    overwrite_value: bool = False,
    overwrite_capability: bool = False,
    triggers: DerivationTriggers | None = None,
    now: datetime | None = None,
) -> DerivedFields:
    """
    Derive phase, value and capability for one record.

    Without ``triggers`` (bulk mode) value is derived only when no
    estimates exist yet. Objects a user edited are kept unless the
    matching ``overwrite_*`` flag is set.
    """
    derived = DerivedFields()
    wanted = triggers or ALL_TRIGGERS

    if configs.tom_enabled and wanted.tom:
        derived.phase = derive_phase_for(record, configs)

    existing_value = record.get("value_realization")
    if configs.value_enabled and wanted.value and record.get("processes"):
        if triggers is None:
            needed = not value_realization.has_estimates(existing_value)
        else:
            needed = True
        if overwrite_value or (needed and derived_state.can_regenerate(existing_value)):
            derived.value_realization = derive_value_for(record, configs, now)

    if configs.capability_enabled and wanted.capability:
        if derived_state.can_regenerate(record.get("capability_transition"), overwrite_capability):
            phase_id = derived.tom_phase or record.get("tom_phase")
            derived.capability_transition = derive_capability_for(record, configs, phase_id, now)

    return derived


# ═════════════════════════════════════════════════════════════════════════════
# Write-back
# ═════════════════════════════════════════════════════════════════════════════

def phase_entry_defaults(new_phase: str, configs: ResolvedConfig, capability: dict | None) -> dict:
    """Flat defaults for entering ``new_phase``: phase ``entry_defaults`` over derived capability."""
    defaults = {}
    if capability:
        defaults.update({k: capability.get(k) for k in PHASE_DEFAULT_FIELDS if capability.get(k) is not None})
    phase = tom.find_phase(configs.tom_config, new_phase) or {}
    defaults.update({k: v for k, v in (phase.get("entry_defaults") or {}).items() if k in PHASE_DEFAULT_FIELDS})
    return defaults


def apply_phase_defaults(use_case, old_phase, new_phase, configs: ResolvedConfig, capability=None) -> list[str]:
    """
    Fill staffing fields on a phase change. Returns the names filled.

    A field is filled when it is unset or still holds the value an earlier
    phase entry put there. The filled values are recorded under
    ``auto_filled`` on the stored capability object so later derivations
    can tell them apart from user input.
    """
    if old_phase == new_phase or new_phase in (None, tom.DISABLED):
        return []
    stored = use_case.capability_transition
    previous = auto_filled(stored)
    recorded = dict(previous)
    filled = []
    for name, value in phase_entry_defaults(new_phase, configs, capability).items():
        if value is None:
            continue
        current = getattr(use_case, name)
        if current is not None and not (name in previous and previous[name] == current):
            continue
        recorded[name] = value
        if current != value:
            setattr(use_case, name, value)
            filled.append(name)
    if isinstance(stored, dict) and recorded != previous:
        use_case.capability_transition = {**stored, "auto_filled": recorded}
    return filled


def release_auto_filled(use_case, names) -> None:
    """Forget the auto-fill record for fields a user just wrote."""
    stored = use_case.capability_transition
    filled = auto_filled(stored)
    claimed = [n for n in names if n in filled]
    if not claimed or not isinstance(stored, dict):
        return
    for name in claimed:
        del filled[name]
    use_case.capability_transition = {**stored, "auto_filled": filled}


def apply_derived_fields(use_case, derived: DerivedFields, configs: ResolvedConfig,
                         now: datetime | None = None) -> dict:
    """Write ``derived`` onto the model. Returns a summary of what changed."""
    now = now or datetime.now(timezone.utc)
    summary = {"phase_changed": False, "defaults_filled": []}

    if derived.value_realization is not None:
        use_case.value_realization = derived.value_realization
    if derived.capability_transition is not None:
        use_case.capability_transition = derived.capability_transition

    if derived.phase is not None:
        old_phase = use_case.tom_phase
        new_phase = derived.phase.id
        if old_phase != new_phase:
            use_case.tom_phase = new_phase
            use_case.phase_entered_at = now
            summary["phase_changed"] = True
            summary["defaults_filled"] = apply_phase_defaults(
                use_case, old_phase, new_phase, configs,
                derived.capability_transition or use_case.capability_transition,
            )
            get_event_sink().emit(
                "phase_changed",
                use_case_id=use_case.id,
                from_phase=old_phase,
                to_phase=new_phase,
                matched_by=derived.phase.matched_by,
                defaults_filled=summary["defaults_filled"],
            )
    return summary


# ═════════════════════════════════════════════════════════════════════════════
# Bulk operations
# ═════════════════════════════════════════════════════════════════════════════

ConfigLookup = Callable[[object], ResolvedConfig]


def _record_failure(errors: list, use_case, exc: Exception, stage: str) -> None:
    logger.exception("Derivation failed for use case %s (%s)", use_case.id, stage)
    get_event_sink().emit(
        "derivation_failed", use_case_id=use_case.id, stage=stage, error=str(exc),
    )
    errors.append({"id": use_case.id, "meaningful_id": use_case.meaningful_id, "error": str(exc)})


def derive_portfolio(
    use_cases: list,
    configs_for: ConfigLookup,
    overwrite_value: bool = False,
    overwrite_capability: bool = False,
) -> BulkDerivationResult:
    result = BulkDerivationResult(total=len(use_cases))
    for use_case in use_cases:
        try:
            configs = configs_for(use_case)
            derived = derive_all_fields(use_case.snapshot(), configs, overwrite_value, overwrite_capability)
            apply_derived_fields(use_case, derived, configs)
        except Exception as exc:  # one bad record must not stop the batch
            _record_failure(result.errors, use_case, exc, "all")
            continue
        result.tom_derived += derived.phase is not None
        result.value_derived += derived.value_realization is not None
        result.capability_derived += derived.capability_transition is not None

    get_event_sink().emit("bulk_derivation_completed", **result.to_dict())
    return result


def derive_value_all(use_cases: list, configs_for: ConfigLookup, overwrite_existing: bool = False) -> dict:
    """Value estimates only. Existing estimates are skipped unless overwriting."""
    counts = {"derived": 0, "skipped": 0, "total": len(use_cases), "errors": []}
    for use_case in use_cases:
        record = use_case.snapshot()
        existing = record.get("value_realization")
        blocked = value_realization.has_estimates(existing) or not derived_state.can_regenerate(existing)
        if not record.get("processes") or (blocked and not overwrite_existing):
            counts["skipped"] += 1
            continue
        try:
            use_case.value_realization = derive_value_for(record, configs_for(use_case))
        except Exception as exc:
            _record_failure(counts["errors"], use_case, exc, "value")
            continue
        counts["derived"] += 1
    return counts


def derive_capability_all(use_cases: list, configs_for: ConfigLookup, overwrite_existing: bool = False) -> dict:
    """Capability objects only. User-edited objects are skipped unless overwriting."""
    counts = {"derived": 0, "skipped": 0, "total": len(use_cases), "errors": []}
    for use_case in use_cases:
        record = use_case.snapshot()
        if not derived_state.can_regenerate(record.get("capability_transition"), overwrite_existing):
            counts["skipped"] += 1
            continue
        try:
            configs = configs_for(use_case)
            use_case.capability_transition = derive_capability_for(record, configs, record.get("tom_phase"))
        except Exception as exc:
            _record_failure(counts["errors"], use_case, exc, "capability")
            continue
        counts["derived"] += 1
    return counts
