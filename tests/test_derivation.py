"""
Tests — derivation orchestrator.

Covers:
    - trigger rules (phase changes cascade to capability)
    - derive_all_fields with disabled sections, user-edited objects
      and the bulk "only when missing" value rule
    - apply_derived_fields: phase_entered_at reset, entry defaults, event
    - bulk helpers: per-item failures are collected, not raised
"""

from datetime import datetime, timezone

import pytest

from portfolio.services import derivation, derived_state
from portfolio.services.config_resolver import get_configs_from_engagement

NOW = datetime(2026, 4, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
def configs():
    return get_configs_from_engagement(None)


def _record(**fields):
    base = {
        "id": "uc-1",
        "use_case_status": "Backlog",
        "deployment_status": None,
        "tom_phase_override": None,
        "phase_gate_waiver": None,
        "tom_phase": None,
        "processes": ["Claims Management"],
        "data_readiness": 3,
        "technical_complexity": 3,
        "adoption_readiness": 3,
        "change_impact": 3,
        "quadrant": "Quick Win",
        "t_shirt_size": "M",
        "value_realization": None,
        "capability_transition": None,
        "hexaware_fts": None,
        "client_fts": None,
        "target_independence": None,
        "primary_business_owner": None,
        "operating_model_status": "not_submitted",
        "intake_status": "not_submitted",
        "rai_status": "not_submitted",
    }
    base.update(fields)
    return base


class _FakeUseCase:
    """Just enough of UseCase for the write-back and bulk helpers."""

    def __init__(self, **fields):
        record = _record(**fields)
        self.__dict__.update(record)
        self.meaningful_id = "UC-CLA-001"
        self.phase_entered_at = None
        self.current_independence = None
        self.independence_fts = None

    def snapshot(self):
        return {k: v for k, v in self.__dict__.items()}


# ═════════════════════════════════════════════════════════════════════════════
# Trigger rules
# ═════════════════════════════════════════════════════════════════════════════

class TestTriggers:

    def test_status_change_cascades_to_capability(self):
        triggers = derivation.should_trigger_derivation({"use_case_status"})
        assert (triggers.tom, triggers.value, triggers.capability) == (True, False, True)

    def test_gate_fields_trigger_tom(self):
        assert derivation.should_trigger_derivation(["rai_status"]).tom is True

    def test_lever_change_triggers_value_only(self):
        triggers = derivation.should_trigger_derivation({"data_readiness"})
        assert (triggers.tom, triggers.value, triggers.capability) == (False, True, False)

    def test_unrelated_change_triggers_nothing(self):
        assert derivation.should_trigger_derivation({"title", "description"}).any is False


# ═════════════════════════════════════════════════════════════════════════════
# derive_all_fields
# ═════════════════════════════════════════════════════════════════════════════

class TestDeriveAllFields:

    def test_full_derivation(self, configs):
        derived = derivation.derive_all_fields(_record(), configs, now=NOW)
        assert derived.tom_phase == "foundation"
        assert derived.value_realization["kpi_estimates"]
        assert derived.value_realization["total_estimated_value"]["currency"] == "GBP"
        assert derived.capability_transition["phase"] == "foundation"

    def test_phase_respects_governance_pin(self, configs):
        derived = derivation.derive_all_fields(_record(use_case_status="In-flight"), configs, now=NOW)
        assert derived.tom_phase == "foundation"
        assert derived.phase.pinned_from == "strategic"

    def test_no_processes_means_no_value(self, configs):
        derived = derivation.derive_all_fields(_record(processes=[]), configs, now=NOW)
        assert derived.value_realization is None

    def test_bulk_mode_skips_existing_estimates(self, configs):
        existing = derived_state.mark_auto_derived({"kpi_estimates": [{"kpi_id": "x"}]})
        derived = derivation.derive_all_fields(_record(value_realization=existing), configs, now=NOW)
        assert derived.value_realization is None

    def test_triggered_mode_refreshes_auto_derived_estimates(self, configs):
        existing = derived_state.mark_auto_derived({"kpi_estimates": [{"kpi_id": "x"}]})
        triggers = derivation.should_trigger_derivation({"processes"})
        derived = derivation.derive_all_fields(_record(value_realization=existing), configs,
                                               triggers=triggers, now=NOW)
        assert derived.value_realization["kpi_estimates"][0]["kpi_id"] != "x"
        assert derived.phase is None

    def test_user_edited_objects_are_kept(self, configs):
        edited = derived_state.mark_user_edited({"kpi_estimates": [], "independence_percentage": 10})
        derived = derivation.derive_all_fields(
            _record(value_realization=edited, capability_transition=edited), configs, now=NOW,
        )
        assert derived.value_realization is None
        assert derived.capability_transition is None

    def test_overwrite_flags_replace_user_edits(self, configs):
        edited = derived_state.mark_user_edited({"kpi_estimates": []})
        derived = derivation.derive_all_fields(
            _record(value_realization=edited, capability_transition=edited), configs,
            overwrite_value=True, overwrite_capability=True, now=NOW,
        )
        assert derived.value_realization["derived"] is True
        assert derived.capability_transition["derived"] is True

    def test_disabled_tom_skips_phase(self):
        configs = get_configs_from_engagement(type("M", (), {
            "scoring_model": None, "tom_config": {"enabled": False},
            "value_realization_config": None, "capability_transition_config": None,
        })())
        derived = derivation.derive_all_fields(_record(), configs, now=NOW)
        assert derived.phase is None
        assert derived.capability_transition is not None


# ═════════════════════════════════════════════════════════════════════════════
# Write-back
# ═════════════════════════════════════════════════════════════════════════════

class TestApplyDerivedFields:

    def test_phase_change_stamps_entry_and_fills_defaults(self, configs, events):
        uc = _FakeUseCase()
        derived = derivation.derive_all_fields(uc.snapshot(), configs, now=NOW)
        summary = derivation.apply_derived_fields(uc, derived, configs, now=NOW)

        assert summary["phase_changed"] is True
        assert uc.tom_phase == "foundation"
        assert uc.phase_entered_at == NOW
        assert "hexaware_fts" in summary["defaults_filled"]
        assert uc.target_independence == 20
        [event] = events.of_type("phase_changed")
        assert event["to_phase"] == "foundation"
        assert event["from_phase"] is None

    def test_user_values_are_not_replaced_by_defaults(self, configs):
        uc = _FakeUseCase(hexaware_fts=9.0)
        derived = derivation.derive_all_fields(uc.snapshot(), configs, now=NOW)
        derivation.apply_derived_fields(uc, derived, configs, now=NOW)
        assert uc.hexaware_fts == 9.0

    def test_auto_filled_values_follow_the_phase(self, configs):
        uc = _FakeUseCase()
        derivation.apply_derived_fields(uc, derivation.derive_all_fields(uc.snapshot(), configs, now=NOW),
                                        configs, now=NOW)
        assert (uc.hexaware_fts, uc.client_fts) == (2.24, 0.96)
        assert uc.capability_transition["auto_filled"]["client_fts"] == 0.96

        uc.tom_phase_override = "strategic"
        derived = derivation.derive_all_fields(uc.snapshot(), configs, now=NOW)
        summary = derivation.apply_derived_fields(uc, derived, configs, now=NOW)

        assert derived.capability_transition["phase"] == "strategic"
        assert (uc.hexaware_fts, uc.client_fts) == (1.76, 1.44)
        assert uc.target_independence == 50
        assert {"hexaware_fts", "client_fts"} <= set(summary["defaults_filled"])
        assert uc.capability_transition["auto_filled"]["hexaware_fts"] == 1.76

    def test_user_value_is_kept_across_phase_change(self, configs):
        uc = _FakeUseCase()
        derivation.apply_derived_fields(uc, derivation.derive_all_fields(uc.snapshot(), configs, now=NOW),
                                        configs, now=NOW)
        uc.hexaware_fts = 5.0
        uc.tom_phase_override = "strategic"
        derived = derivation.derive_all_fields(uc.snapshot(), configs, now=NOW)
        derivation.apply_derived_fields(uc, derived, configs, now=NOW)

        assert derived.capability_transition["hexaware_fts"] == 5.0
        assert uc.hexaware_fts == 5.0
        assert uc.client_fts == 1.44

    def test_released_field_counts_as_user_set(self, configs):
        uc = _FakeUseCase()
        derivation.apply_derived_fields(uc, derivation.derive_all_fields(uc.snapshot(), configs, now=NOW),
                                        configs, now=NOW)
        derivation.release_auto_filled(uc, ["hexaware_fts", "title"])
        assert "hexaware_fts" not in uc.capability_transition["auto_filled"]
        assert derivation._flat_overrides(uc.snapshot()) == {"hexaware_fts": 2.24}

    def test_same_phase_keeps_entry_time(self, configs, events):
        earlier = datetime(2026, 1, 1, tzinfo=timezone.utc)
        uc = _FakeUseCase(tom_phase="foundation")
        uc.phase_entered_at = earlier
        derived = derivation.derive_all_fields(uc.snapshot(), configs, now=NOW)
        summary = derivation.apply_derived_fields(uc, derived, configs, now=NOW)
        assert summary["phase_changed"] is False
        assert uc.phase_entered_at == earlier
        assert events.of_type("phase_changed") == []

    def test_entry_defaults_from_phase_config(self, configs):
        configs.tom_config["phases"][0]["entry_defaults"] = {"target_independence": 15, "bogus": 1}
        defaults = derivation.phase_entry_defaults("foundation", configs, None)
        assert defaults == {"target_independence": 15}


# ═════════════════════════════════════════════════════════════════════════════
# Bulk helpers
# ═════════════════════════════════════════════════════════════════════════════

class TestBulk:

    def test_failure_on_one_item_does_not_stop_the_batch(self, configs, events):
        good = _FakeUseCase(id="good")
        bad = _FakeUseCase(id="bad")

        def lookup(uc):
            if uc.id == "bad":
                raise RuntimeError("broken engagement config")
            return configs

        result = derivation.derive_portfolio([bad, good], lookup)
        assert result.total == 2
        assert result.tom_derived == 1
        assert result.errors == [{"id": "bad", "meaningful_id": "UC-CLA-001", "error": "broken engagement config"}]
        assert events.of_type("derivation_failed")[0]["use_case_id"] == "bad"
        assert events.of_type("bulk_derivation_completed")[0]["total"] == 2
        assert good.tom_phase == "foundation"

    def test_value_all_is_idempotent(self, configs):
        items = [_FakeUseCase(id="a"), _FakeUseCase(id="b", processes=[])]
        first = derivation.derive_value_all(items, lambda uc: configs)
        assert (first["derived"], first["skipped"]) == (1, 1)
        second = derivation.derive_value_all(items, lambda uc: configs)
        assert (second["derived"], second["skipped"]) == (0, 2)
        forced = derivation.derive_value_all(items, lambda uc: configs, overwrite_existing=True)
        assert forced["derived"] == 1

    def test_capability_all_skips_user_edits(self, configs):
        edited = _FakeUseCase(id="e", capability_transition=derived_state.mark_user_edited({"x": 1}))
        fresh = _FakeUseCase(id="f")
        counts = derivation.derive_capability_all([edited, fresh], lambda uc: configs)
        assert (counts["derived"], counts["skipped"]) == (1, 1)
        assert edited.capability_transition["x"] == 1
        assert fresh.capability_transition["derived"] is True
