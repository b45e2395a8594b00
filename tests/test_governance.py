"""
Tests — governance gate engine (pure).

Covers:
    - sequential gate evaluation and progress
    - legacy detection
    - activation blocking and regression detection
    - phase transitions that need a justification (target gates, forward exits)
    - gate decision validation and sequencing
    - queue / summary views
"""

import pytest

from portfolio.core.exceptions import GateSequenceError, ValidationError
from portfolio.services import governance, tom


def _record(**fields):
    base = {
        "use_case_status": "Backlog",
        "primary_business_owner": None,
        "operating_model_status": "not_submitted",
        "intake_status": "not_submitted",
        "rai_status": "not_submitted",
        "legacy_activation": False,
        "created_at": "2026-03-01T10:00:00+00:00",
    }
    base.update(fields)
    return base


def _governed(**fields):
    passed = {
        "primary_business_owner": "Jane Doe",
        "operating_model_status": "approved",
        "intake_status": "approved",
        "rai_status": "approved",
    }
    passed.update(fields)
    return _record(**passed)


@pytest.fixture()
def cfg():
    return tom.merge_preset_profile(tom.ensure_tom_config(None))


# ═════════════════════════════════════════════════════════════════════════════
# Gate evaluation
# ═════════════════════════════════════════════════════════════════════════════

class TestGateEvaluation:

    def test_operating_model_needs_an_owner(self):
        results = governance.gate_results(_record(operating_model_status="approved", intake_status="approved"))
        assert results == {"operating_model": False, "intake": False, "rai": False}

    def test_gates_pass_in_sequence(self):
        assert all(governance.gate_results(_governed()).values())

    def test_later_gate_does_not_count_before_predecessor(self):
        results = governance.gate_results(_record(primary_business_owner="Jane", rai_status="approved"))
        assert results["rai"] is False

    def test_not_required_and_conditional_pass(self):
        record = _governed(operating_model_status="not_required", rai_status="conditionally_approved")
        assert governance.evaluate_gates(record).all_passed

    def test_progress(self):
        assert governance.evaluate_gates(_record()).overall_progress == 0
        status = governance.evaluate_gates(_record(
            primary_business_owner="Jane", operating_model_status="approved", intake_status="pending",
        ))
        assert status.gates["operating_model"].progress == 100
        assert status.gates["intake"].progress == 50
        assert status.overall_progress == 50
        assert status.failing == ["intake", "rai"]

    def test_missing_fields(self):
        status = governance.evaluate_gates(_record())
        assert "primary_business_owner" in status.missing_fields
        assert "rai_status" in status.missing_fields


class TestLegacy:

    @pytest.mark.parametrize("record,expected", [
        ({"legacy_activation": True, "created_at": "2026-05-01"}, True),
        ({"created_at": "2025-12-01T09:00:00"}, True),
        ({"created_at": "2026-01-24"}, False),
        ({"created_at": None}, False),
        ({"created_at": "garbage"}, False),
    ])
    def test_is_legacy(self, record, expected):
        assert governance.is_legacy(record) is expected

    def test_custom_enforcement_date(self):
        assert governance.is_legacy({"created_at": "2026-03-01"}, "2026-06-01") is True


# ═════════════════════════════════════════════════════════════════════════════
# Activation & regression
# ═════════════════════════════════════════════════════════════════════════════

class TestActivation:

    def test_inactive_target_is_never_blocked(self):
        assert governance.check_activation_allowed(_record(), "Backlog").blocked is False

    def test_missing_gates_block_activation(self):
        check = governance.check_activation_allowed(_record(), "In-flight")
        assert check.blocked is True
        assert len(check.reasons) == 3
        assert check.reasons[0].startswith("Operating Model")

    def test_fully_governed_is_allowed(self):
        check = governance.check_activation_allowed(_governed(), "Production")
        assert check.blocked is False
        assert check.reasons == []

    def test_legacy_is_warned_not_blocked(self):
        check = governance.check_activation_allowed(_record(legacy_activation=True), "In-flight")
        assert check.blocked is False
        assert check.legacy is True
        assert check.reasons

    def test_custom_activation_statuses(self):
        check = governance.check_activation_allowed(_record(), "In-flight", activation_statuses=("Live",))
        assert check.blocked is False


class TestRegression:

    def test_rejected_gate_deactivates(self):
        previous = _governed(use_case_status="In-flight")
        incoming = {**previous, "rai_status": "rejected"}
        result = governance.check_governance_regression(previous, incoming)
        assert result.should_deactivate is True
        assert result.regressed_gate == "rai"
        assert "'approved' to 'rejected'" in result.reason

    def test_owner_removal_regresses_operating_model(self):
        previous = _governed(use_case_status="Implemented")
        incoming = {**previous, "primary_business_owner": ""}
        result = governance.check_governance_regression(previous, incoming)
        assert result.regressed_gate == "operating_model"
        assert "owner removed" in result.reason

    def test_inactive_use_case_cannot_regress(self):
        previous = _governed(use_case_status="Backlog")
        incoming = {**previous, "rai_status": "rejected"}
        assert governance.check_governance_regression(previous, incoming).should_deactivate is False

    def test_leaving_active_status_is_not_regression(self):
        previous = _governed(use_case_status="In-flight")
        incoming = {**previous, "use_case_status": "On Hold", "rai_status": "rejected"}
        assert governance.check_governance_regression(previous, incoming).regressed_gate is None

    def test_legacy_regression_only_warns(self):
        previous = _governed(use_case_status="In-flight", legacy_activation=True)
        incoming = {**previous, "intake_status": "deferred"}
        result = governance.check_governance_regression(previous, incoming)
        assert result.should_deactivate is False
        assert result.warn_only is True
        assert result.regressed_gate == "intake"


# ═════════════════════════════════════════════════════════════════════════════
# Phase transitions
# ═════════════════════════════════════════════════════════════════════════════

class TestPhaseTransition:

    def test_forward_move_with_pending_items_needs_justification(self, cfg):
        check = governance.check_phase_transition("foundation", "strategic", cfg, _record())
        assert check.allowed is False
        assert check.requires_justification is True
        keys = {(p["type"], p["key"]) for p in check.pending}
        assert keys == {("gate", "operating_model"), ("requirement", "primary_business_owner")}

    def test_justification_allows_the_move(self, cfg):
        check = governance.check_phase_transition("foundation", "strategic", cfg, _record(),
                                                  justification="Steerco waiver 12 Mar")
        assert check.allowed is True
        assert check.requires_justification is True

    def test_blank_justification_does_not_count(self, cfg):
        check = governance.check_phase_transition("foundation", "strategic", cfg, _record(), justification="  ")
        assert check.allowed is False

    def test_forward_move_with_everything_met(self, cfg):
        record = _record(primary_business_owner="Jane", operating_model_status="approved")
        check = governance.check_phase_transition("foundation", "strategic", cfg, record)
        assert check.allowed is True
        assert check.requires_justification is False

    def test_backward_move_to_ungated_phase_passes(self, cfg):
        check = governance.check_phase_transition("transition", "foundation", cfg, _record())
        assert check.allowed is True
        assert check.direction == "backward"

    def test_entry_into_ungated_phase_passes(self, cfg):
        check = governance.check_phase_transition(None, "foundation", cfg, _record())
        assert check.allowed is True
        assert check.direction == "entry"

    @pytest.mark.parametrize("previous", [None, "unphased", "retired_phase"])
    def test_entry_into_gated_phase_needs_justification(self, cfg, previous):
        check = governance.check_phase_transition(previous, "steady_state", cfg, _record())
        assert check.allowed is False
        assert check.requires_justification is True
        assert {p["key"] for p in check.pending} == {"operating_model", "intake", "rai"}

    def test_entry_with_gates_met_passes(self, cfg):
        check = governance.check_phase_transition(None, "transition", cfg, _governed())
        assert check.allowed is True
        assert check.requires_justification is False

    def test_exit_requirements_only_apply_forward(self, cfg):
        check = governance.check_phase_transition("transition", "strategic", cfg,
                                                  _record(operating_model_status="approved"))
        assert check.allowed is False
        assert {p["type"] for p in check.pending} == {"gate"}


# ═════════════════════════════════════════════════════════════════════════════
# Gate decisions
# ═════════════════════════════════════════════════════════════════════════════

class TestGateDecision:

    def test_unknown_gate(self):
        with pytest.raises(ValidationError):
            governance.validate_gate_decision("legal", {"decision": "approved"}, _record())

    def test_invalid_decision(self):
        with pytest.raises(ValidationError) as exc:
            governance.validate_gate_decision("intake", {"decision": "maybe"}, _record())
        assert exc.value.issues

    def test_operating_model_approval_requires_owner(self):
        with pytest.raises(ValidationError):
            governance.validate_gate_decision("operating_model", {"decision": "approved"}, _record())

    def test_owner_can_be_supplied_with_the_decision(self):
        updates = governance.validate_gate_decision(
            "operating_model", {"decision": "approved", "primary_business_owner": " Jane ", "actor": "cio"},
            _record(),
        )
        assert updates["operating_model_status"] == "approved"
        assert updates["primary_business_owner"] == "Jane"
        assert updates["operating_model_by"] == "cio"

    def test_intake_before_operating_model_is_out_of_sequence(self):
        with pytest.raises(GateSequenceError) as exc:
            governance.validate_gate_decision("intake", {"decision": "approved"}, _record())
        assert exc.value.code == "GATE_SEQUENCE_ERROR"
        assert (exc.value.gate, exc.value.required_gate) == ("intake", "operating_model")
        assert str(exc.value).startswith("Intake & Prioritization gate")

    def test_priority_rank_must_be_positive(self):
        record = _record(primary_business_owner="Jane", operating_model_status="approved")
        with pytest.raises(ValidationError):
            governance.validate_gate_decision("intake", {"decision": "approved", "priority_rank": 0}, record)
        updates = governance.validate_gate_decision("intake", {"decision": "approved", "priority_rank": 2}, record)
        assert updates["intake_priority_rank"] == 2

    def test_risk_level_is_checked(self):
        record = _record(primary_business_owner="Jane", operating_model_status="approved",
                         intake_status="approved")
        with pytest.raises(ValidationError):
            governance.validate_gate_decision("rai", {"decision": "approved", "risk_level": "extreme"}, record)
        updates = governance.validate_gate_decision("rai", {"status": "rejected", "risk_level": "high"}, record)
        assert updates == {"rai_status": "rejected", "rai_by": None, "rai_notes": None, "rai_risk_level": "high"}


class TestViews:

    def test_queue_and_summary(self):
        records = [
            {**_record(), "id": "a", "title": "A"},
            {**_record(primary_business_owner="Jane", operating_model_status="approved"), "id": "b", "title": "B"},
            {**_governed(), "id": "c", "title": "C"},
        ]
        queue = governance.pending_queue(records)
        assert [(q["id"], q["next_gate"]) for q in queue] == [("a", "operating_model"), ("b", "intake")]
        assert [q["id"] for q in governance.pending_queue(records, "intake")] == ["b"]

        summary = governance.governance_summary(records)
        assert summary["total"] == 3
        assert summary["fully_governed"] == 1
        assert summary["by_gate"]["operating_model"] == {"not_submitted": 1, "approved": 2}
        assert summary["awaiting"] == {"operating_model": 1, "intake": 1, "rai": 0}
