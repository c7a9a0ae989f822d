"""Tests for presets and the configuration profile manager."""

import json

import pytest

from session_boundary.utils.config_validator import DetectionConfig
from session_boundary.utils.profiles import (
    DEFAULT_PROFILE_ID,
    PRESETS,
    AdaptiveConfigSettings,
    DetectionConfigManager,
    get_preset,
)


@pytest.fixture
def manager():
    return DetectionConfigManager()


class TestPresets:
    """Test the built-in presets."""

    def test_all_presets_validate(self):
        for name in PRESETS:
            assert isinstance(get_preset(name), DetectionConfig)

    def test_conservative(self):
        config = get_preset("conservative")
        assert config.idle_threshold == 1_800_000
        assert config.boundary_threshold == 0.8
        assert config.learning_enabled is False
        assert config.domain_change_session_boundary is False

    def test_aggressive_weights_in_range(self):
        config = get_preset("aggressive")
        assert config.session_gap_threshold == 120_000
        assert config.navigation_pattern_weight == 1.0

    def test_balanced_is_default(self):
        assert get_preset("balanced") == DetectionConfig()

    def test_unknown_preset(self):
        with pytest.raises(KeyError):
            get_preset("privacy")


class TestProfiles:
    """Test profile CRUD and switching."""

    def test_default_profile(self, manager):
        assert manager.active_profile_id == DEFAULT_PROFILE_ID
        assert manager.get_active_config() == DetectionConfig()
        assert len(manager.list_profiles()) == 1

    def test_create_and_switch(self, manager):
        profile_id = manager.create_profile("Focus", "Long sessions", {"idle_threshold": 1_200_000})

        assert profile_id.startswith("profile_")
        assert manager.switch_profile(profile_id) is True
        assert manager.get_active_config().idle_threshold == 1_200_000
        assert manager.get_profile(profile_id).usage_count == 1
        assert manager.total_configurations == 2

    def test_create_invalid(self, manager):
        with pytest.raises(ValueError, match="Invalid profile configuration"):
            manager.create_profile("Bad", "", {"boundary_threshold": 5})

    def test_switch_unknown(self, manager):
        assert manager.switch_profile("profile_missing") is False

    def test_update_profile(self, manager):
        profile_id = manager.create_profile("A", "a")

        assert manager.update_profile(
            profile_id,
            name="B",
            config={"boundary_threshold": 0.75},
            adaptive_settings={"adjustment_sensitivity": 1.0, "adjustment_limits": {"max_threshold_change": 0.2}},
        )
        profile = manager.get_profile(profile_id)
        assert profile.name == "B"
        assert profile.config.boundary_threshold == 0.75
        assert profile.adaptive_settings.adjustment_sensitivity == 1.0
        assert profile.adaptive_settings.adjustment_limits.max_threshold_change == 0.2
        assert profile.adaptive_settings.adjustment_limits.min_idle_threshold == 60_000

    def test_update_invalid_keeps_config(self, manager):
        profile_id = manager.create_profile("A", "a")
        before = manager.get_profile(profile_id).config

        assert manager.update_profile(profile_id, config={"idle_threshold": 1}) is False
        assert manager.get_profile(profile_id).config is before
        assert manager.update_profile("profile_missing", name="x") is False

    def test_delete_active_falls_back_to_default(self, manager):
        profile_id = manager.create_profile("A", "a")
        manager.switch_profile(profile_id)

        assert manager.delete_profile(profile_id) is True
        assert manager.active_profile_id == DEFAULT_PROFILE_ID
        assert manager.delete_profile(profile_id) is False

    def test_default_cannot_be_deleted(self, manager):
        with pytest.raises(ValueError):
            manager.delete_profile(DEFAULT_PROFILE_ID)

    def test_apply_preset(self, manager):
        assert manager.apply_preset("conservative") is True
        assert manager.get_active_config().idle_threshold == 1_800_000
        assert manager.apply_preset("nonexistent") is False


class TestAdaptiveAdjustments:
    """Test feedback-driven tuning of the active profile."""

    def test_disabled_by_default(self, manager):
        assert manager.apply_adaptive_adjustments({"false_positives": 5}) == {}

    def test_false_positives_raise_threshold(self, manager):
        manager.set_adaptive_mode(True)
        adjustments = manager.apply_adaptive_adjustments(
            {"false_positives": 5, "false_negatives": 1, "recent_boundaries": 12}
        )

        assert adjustments == {"pattern_confidence_threshold": pytest.approx(0.725), "idle_threshold": 615_000}
        assert manager.get_active_config().idle_threshold == 615_000
        assert manager.get_analytics()["adaptive_adjustments"]["idle_threshold"] == [615_000]

    def test_false_negatives_lower_threshold_within_limits(self, manager):
        profile_id = manager.create_profile(
            "Low", "", {"pattern_confidence_threshold": 0.31, "idle_threshold": 60_000}
        )
        manager.switch_profile(profile_id)
        manager.set_adaptive_mode(True)

        adjustments = manager.apply_adaptive_adjustments(
            {"false_positives": 0, "false_negatives": 3, "recent_boundaries": 0}
        )

        assert adjustments == {"pattern_confidence_threshold": 0.3}

    def test_low_satisfaction_raises_adaptation_rate(self, manager):
        manager.set_adaptive_mode(True)
        adjustments = manager.apply_adaptive_adjustments(
            {"user_satisfaction": 0.2, "accuracy": 0.3, "recent_boundaries": 5}
        )
        assert adjustments == {"adaptation_rate": pytest.approx(0.075)}

    def test_settings_from_dict(self):
        settings = AdaptiveConfigSettings.from_dict({"minimum_samples": 3})
        assert settings.minimum_samples == 3
        assert settings.adjustment_limits.max_boundary_threshold == 0.9


class TestRecommendations:
    """Test usage-based recommendations."""

    def test_long_sessions(self, manager):
        config = manager.get_recommended_config({"avg_session_duration": 5 * 3_600_000})
        assert config.idle_threshold == 1_800_000
        assert config.session_gap_threshold == 600_000

    def test_task_switcher(self, manager):
        config = manager.get_recommended_config(
            {
                "avg_session_duration": 10 * 60_000,
                "activity_level": "high",
                "device_type": "mobile",
                "domain_categories": ["work", "social"],
            }
        )
        assert config.boundary_threshold == 0.6
        assert config.batch_size == 100
        assert config.max_events_in_memory == 5000
        assert config.navigation_pattern_weight == 0.8


class TestFeedbackAndExport:
    """Test ratings, export and import."""

    def test_rating_range(self, manager):
        manager.record_user_feedback(4, "good")
        assert manager.get_analytics()["user_feedback"][0]["rating"] == 4
        with pytest.raises(ValueError):
            manager.record_user_feedback(6)

    def test_record_performance(self, manager):
        manager.record_performance({"accuracy": 0.9, "false_positives": 2})
        assert manager.get_profile(DEFAULT_PROFILE_ID).performance.accuracy == 0.9
        assert manager.performance_history[-1]["accuracy"] == 0.9

    def test_export_import(self, manager):
        profile_id = manager.create_profile("Night", "late browsing", {"idle_threshold": 900_000})
        exported = manager.export_config(profile_id)

        assert json.loads(exported)["version"] == "1.0"
        imported_id = manager.import_config(exported)
        imported = manager.get_profile(imported_id)
        assert imported.name == "Night"
        assert imported.config == manager.get_profile(profile_id).config

    def test_export_missing_profile(self, manager):
        with pytest.raises(KeyError):
            manager.export_config("profile_missing")

    @pytest.mark.parametrize(
        "document",
        ["{not json", json.dumps({"version": "1.0"}), json.dumps({"profile": {"config": {"idle_threshold": 1}}})],
    )
    def test_import_rejects_bad_documents(self, manager, document):
        with pytest.raises(ValueError):
            manager.import_config(document)

    def test_reset_to_defaults(self, manager):
        manager.create_profile("A", "a")
        manager.set_adaptive_mode(True)
        manager.reset_to_defaults()

        assert [p.id for p in manager.list_profiles()] == [DEFAULT_PROFILE_ID]
        assert manager.adaptive_mode is False
