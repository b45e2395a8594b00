"""
Tests — TOM phase derivation (pure).

Covers:
    - disabled config, manual overrides, deployment-first matching
    - priority tie-break between phases mapping the same status
    - governance pinning and the justification waiver
    - preset merging (coe_led default, rsa_tom six-phase list)
    - phase transition classification and the per-phase summary
"""

import pytest

from portfolio.services import tom


@pytest.fixture()
def cfg():
    return tom.merge_preset_profile(tom.ensure_tom_config(None))


NO_GATES = {"operating_model": False, "intake": False, "rai": False}
ALL_PASSED = {"operating_model": True, "intake": True, "rai": True}


# ═════════════════════════════════════════════════════════════════════════════
# derive_phase
# ═════════════════════════════════════════════════════════════════════════════

class TestDerivePhase:

    def test_disabled_config_returns_disabled(self):
        result = tom.derive_phase("In-flight", "Pilot", None, {"enabled": False})
        assert result.id == tom.DISABLED
        assert result.matched_by == tom.DISABLED

    def test_none_config_is_disabled(self):
        assert tom.derive_phase("Backlog", None, None, None).id == tom.DISABLED

    def test_deployment_status_is_matched_before_status(self, cfg):
        result = tom.derive_phase("Backlog", "Pilot", None, cfg)
        assert result.id == "strategic"
        assert result.matched_by == "deployment"

    def test_status_match(self, cfg):
        result = tom.derive_phase("Implemented", None, None, cfg)
        assert result.id == "transition"
        assert result.matched_by == "status"
        assert result.is_override is False

    def test_unmapped_status_is_unphased(self, cfg):
        assert tom.derive_phase("Retired", None, None, cfg).id == tom.UNPHASED
        assert tom.derive_phase(None, None, None, cfg).id == tom.UNPHASED

    def test_manual_override_wins(self, cfg):
        result = tom.derive_phase("Discovery", None, "steady_state", cfg, gates=NO_GATES)
        assert result.id == "steady_state"
        assert result.is_override is True
        assert result.matched_by == "manual"

    def test_unknown_override_falls_back_to_matching(self, cfg):
        assert tom.derive_phase("Discovery", None, "nowhere", cfg).id == "foundation"

    def test_manual_only_phase_is_never_auto_matched(self):
        config = tom.ensure_tom_config({"phases": [
            {"id": "a", "order": 1, "mapped_statuses": ["Live"], "manual_only": True},
        ]})
        assert tom.derive_phase("Live", None, None, config).id == tom.UNPHASED

    def test_lowest_priority_wins_when_several_phases_match(self):
        config = tom.ensure_tom_config({"phases": [
            {"id": "late", "order": 2, "priority": 5, "mapped_statuses": ["Backlog"]},
            {"id": "early", "order": 1, "priority": 1, "mapped_statuses": ["Backlog"]},
        ]})
        result = tom.derive_phase("Backlog", None, None, config)
        assert result.id == "early"
        assert result.matched_by == "priority"


class TestGovernancePinning:

    def test_unmet_gates_pin_to_earlier_phase(self, cfg):
        result = tom.derive_phase("In-flight", None, None, cfg, gates=NO_GATES)
        assert result.id == "foundation"
        assert result.matched_by == "governance_entry"
        assert result.pinned_from == "strategic"

    def test_met_gates_do_not_pin(self, cfg):
        gates = {**NO_GATES, "operating_model": True}
        assert tom.derive_phase("In-flight", None, None, cfg, gates=gates).id == "strategic"

    def test_waiver_skips_required_gates(self, cfg):
        result = tom.derive_phase("In-flight", None, None, cfg, gates=NO_GATES, waiver="strategic")
        assert result.id == "strategic"
        assert result.pinned_from is None

    def test_no_eligible_earlier_phase_is_unphased(self):
        config = tom.ensure_tom_config({"phases": [
            {"id": "only", "order": 1, "mapped_statuses": ["In-flight"], "required_gates": ["rai"]},
        ]})
        result = tom.derive_phase("In-flight", None, None, config, gates=NO_GATES)
        assert result.id == tom.UNPHASED
        assert result.pinned_from == "only"

    def test_gates_omitted_skips_pinning(self, cfg):
        assert tom.derive_phase("Implemented", None, None, cfg).id == "transition"
        assert tom.derive_phase("Implemented", None, None, cfg, gates=ALL_PASSED).id == "transition"


# ═════════════════════════════════════════════════════════════════════════════
# Config helpers
# ═════════════════════════════════════════════════════════════════════════════

class TestConfig:

    def test_defaults_use_coe_led_overrides(self, cfg):
        strategic = tom.find_phase(cfg, "strategic")
        assert cfg["active_preset"] == "coe_led"
        assert strategic["governance_gate"] == "working_group"
        assert strategic["expected_duration_weeks"] == 16

    def test_rsa_tom_replaces_phase_list(self):
        config = tom.merge_preset_profile(tom.ensure_tom_config(None), "rsa_tom")
        assert [p["id"] for p in config["phases"]] == [
            "ideation", "assessment", "foundation", "build", "scale", "operate",
        ]
        assert tom.derive_phase("Discovery", None, None, config).id == "ideation"

    def test_unknown_preset_keeps_phases(self):
        base = tom.ensure_tom_config(None)
        config = tom.merge_preset_profile(base, "nope")
        assert [p["id"] for p in config["phases"]] == [p["id"] for p in base["phases"]]

    def test_string_enabled_flag_is_normalised(self):
        assert tom.ensure_tom_config({"enabled": "false"})["enabled"] is False
        assert tom.is_enabled(tom.ensure_tom_config({"enabled": "true"})) is True

    def test_camel_case_phase_keys(self):
        phase = tom.normalize_phase({
            "id": "x", "mappedStatuses": ["Live"], "manualOnly": "true", "requiredGates": ["rai", "bogus"],
        })
        assert phase["mapped_statuses"] == ["Live"]
        assert phase["manual_only"] is True
        assert phase["required_gates"] == ["rai"]

    def test_phase_order_of_unphased_is_zero(self, cfg):
        assert tom.phase_order(cfg, tom.UNPHASED) == 0
        assert tom.phase_order(cfg, "missing") is None


# ═════════════════════════════════════════════════════════════════════════════
# Transitions & summary
# ═════════════════════════════════════════════════════════════════════════════

class TestTransitions:

    @pytest.mark.parametrize("old,new,direction", [
        ("foundation", "foundation", "none"),
        (None, "foundation", "entry"),
        (tom.UNPHASED, "strategic", "entry"),
        ("strategic", tom.UNPHASED, "exit"),
        ("foundation", "transition", "forward"),
        ("transition", "foundation", "backward"),
    ])
    def test_direction(self, cfg, old, new, direction):
        transition = tom.detect_phase_transition(old, new, cfg)
        assert transition.direction == direction
        assert transition.changed is (direction != "none")


class TestPhaseSummary:

    def test_counts_per_phase(self, cfg):
        items = [
            {"use_case_status": "Backlog"},
            {"use_case_status": "Discovery"},
            {"use_case_status": "In-flight", "gates": NO_GATES},
            {"use_case_status": "Implemented"},
            {"use_case_status": "Retired"},
        ]
        summary = tom.calculate_phase_summary(items, cfg)
        assert summary["enabled"] is True
        assert summary["total"] == 5
        assert summary["summary"]["foundation"] == 3
        assert summary["summary"]["transition"] == 1
        assert summary["summary"][tom.UNPHASED] == 1

    def test_disabled_summary(self):
        assert tom.calculate_phase_summary([{"use_case_status": "Backlog"}], {"enabled": False}) == {
            "enabled": False, "summary": {}, "phases": [],
        }
