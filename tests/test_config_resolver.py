"""
Tests — config resolution, library profiles and derivation state.
"""

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from portfolio.core.exceptions import ValidationError
from portfolio.services import derived_state, library_profiles
from portfolio.services.config_resolver import get_configs_from_engagement


def _metadata(**sections):
    base = {"scoring_model": None, "tom_config": None,
            "value_realization_config": None, "capability_transition_config": None}
    base.update(sections)
    return SimpleNamespace(**base)


class TestConfigResolver:

    def test_defaults_without_metadata(self):
        configs = get_configs_from_engagement(None)
        assert configs.scoring_model["quadrant_threshold"] == 3.0
        assert configs.tom_enabled is True
        assert configs.currency == "GBP"
        assert configs.engagement_id is None
        assert configs.staffing_ratios["strategic"] == {"vendor": 0.55, "client": 0.45}

    def test_tenant_sections_override_defaults(self):
        metadata = _metadata(
            scoring_model={"quadrant_threshold": 2.5},
            tom_config={"enabled": False},
            value_realization_config={"calculation_config": {"hourly_rate": 60, "default_currency": "EUR"}},
        )
        configs = get_configs_from_engagement(metadata)
        assert configs.scoring_model["quadrant_threshold"] == 2.5
        assert "business_value" in configs.scoring_model
        assert configs.tom_enabled is False
        assert configs.value_options["hourly_rate"] == 60
        assert configs.value_options["volume_multiplier"] == 1000
        assert configs.currency == "EUR"

    def test_engagement_preset_applies(self):
        engagement = SimpleNamespace(id=7, tom_preset_id="rsa_tom", tom_phases_json=None, client=None)
        configs = get_configs_from_engagement(_metadata(), engagement)
        assert configs.engagement_id == 7
        assert configs.tom_config["phases"][0]["id"] == "ideation"
        assert configs.staffing_ratios["build"] == {"vendor": 0.8, "client": 0.2}

    def test_engagement_phases_win_over_preset(self):
        engagement = SimpleNamespace(
            id=8, tom_preset_id="rsa_tom",
            tom_phases_json=[{"id": "only", "order": 1, "mappedStatuses": ["Backlog"]}],
            client=SimpleNamespace(currency="USD"),
        )
        configs = get_configs_from_engagement(_metadata(), engagement)
        assert [p["id"] for p in configs.tom_config["phases"]] == ["only"]
        assert configs.currency == "USD"

    def test_stored_row_is_not_mutated(self):
        stored = {"enabled": True, "active_preset": "hybrid"}
        metadata = _metadata(tom_config=stored)
        get_configs_from_engagement(metadata, SimpleNamespace(id=1, tom_preset_id="federated",
                                                              tom_phases_json=None, client=None))
        assert stored == {"enabled": True, "active_preset": "hybrid"}


class TestLibraryProfiles:

    def test_known_fields_parse(self):
        details = library_profiles.parse_library_details("ai_inventory", {"model_owner": "Data Science"})
        assert library_profiles.dump_library_details(details) == {"model_owner": "Data Science"}

    def test_fields_of_another_source_are_rejected(self):
        with pytest.raises(ValidationError) as exc:
            library_profiles.parse_library_details("industry_standard", {"model_owner": "x"})
        assert exc.value.issues == ["model_owner is not a industry_standard field"]

    def test_unknown_source(self):
        with pytest.raises(ValidationError):
            library_profiles.parse_library_details("vendor_catalogue", {})

    def test_empty_details(self):
        details = library_profiles.parse_library_details("rsa_internal", None)
        assert library_profiles.dump_library_details(details) == {}


class TestDerivedState:

    def test_states(self):
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        assert derived_state.state_of(None).state == derived_state.DerivationState.NOT_SET
        auto = derived_state.mark_auto_derived({"x": 1}, now)
        assert derived_state.state_of(auto).at == now.isoformat()
        edited = derived_state.mark_user_edited(auto, now)
        assert derived_state.state_of(edited).state == derived_state.DerivationState.USER_EDITED

    def test_user_edited_needs_overwrite(self):
        edited = derived_state.mark_user_edited({"x": 1})
        assert derived_state.can_regenerate(edited) is False
        assert derived_state.can_regenerate(edited, overwrite=True) is True
        assert derived_state.can_regenerate({}) is True

    def test_re_deriving_clears_edit_stamp(self):
        obj = derived_state.mark_auto_derived(derived_state.mark_user_edited({}))
        assert "edited_at" not in obj
