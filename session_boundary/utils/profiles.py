"""Named detection profiles, presets and feedback-driven tuning."""

import json
import logging
import time
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any

from pydantic import ValidationError

from session_boundary.utils.config_validator import DetectionConfig, format_validation_errors

logger = logging.getLogger(__name__)

DEFAULT_PROFILE_ID = "default"
EXPORT_VERSION = "1.0"
HOUR_MS = 3_600_000
ADJUSTMENT_HISTORY_CAP = 50
ADJUSTMENT_HISTORY_KEEP = 25
PERFORMANCE_HISTORY_CAP = 100
PERFORMANCE_HISTORY_KEEP = 50


def _now_ms() -> float:
    return time.time() * 1000


@dataclass(frozen=True)
class DetectionConfigPreset:
    id: str
    name: str
    description: str
    target_scenario: str
    recommended_for: tuple[str, ...]
    overrides: dict[str, Any]

    def build(self) -> DetectionConfig:
        return DetectionConfig(**self.overrides)


PRESETS: dict[str, DetectionConfigPreset] = {
    "conservative": DetectionConfigPreset(
        id="conservative",
        name="Conservative",
        description="Fewer session boundaries, suitable for focused work sessions",
        target_scenario="Deep work and long sessions",
        recommended_for=("researchers", "developers", "writers"),
        overrides={
            "idle_threshold": 1_800_000,
            "session_gap_threshold": 900_000,
            "boundary_threshold": 0.8,
            "pattern_confidence_threshold": 0.8,
            "domain_change_session_boundary": False,
            "learning_enabled": False,
            "adaptive_thresholds": False,
        },
    ),
    "aggressive": DetectionConfigPreset(
        id="aggressive",
        name="Aggressive",
        description="More session boundaries, suitable for task switching",
        target_scenario="Multitasking and quick task switching",
        recommended_for=("project managers", "customer support", "researchers"),
        overrides={
            "idle_threshold": 180_000,
            "session_gap_threshold": 120_000,
            "boundary_threshold": 0.6,
            "pattern_confidence_threshold": 0.5,
            "domain_change_session_boundary": True,
            "contextual_analysis": True,
            "navigation_pattern_weight": 1.0,
            "user_behavior_weight": 1.0,
        },
    ),
    "balanced": DetectionConfigPreset(
        id="balanced",
        name="Balanced",
        description="Balanced approach suitable for most users",
        target_scenario="General browsing and mixed usage",
        recommended_for=("general users", "students", "casual browsing"),
        overrides={},
    ),
    "learning": DetectionConfigPreset(
        id="learning",
        name="Adaptive Learning",
        description="Adapts thresholds and patterns to the user's habits",
        target_scenario="Personalized detection based on usage patterns",
        recommended_for=("power users", "varied usage patterns"),
        overrides={
            "learning_enabled": True,
            "adaptive_thresholds": True,
            "contextual_analysis": True,
            "adaptation_rate": 0.1,
            "pattern_decay_rate": 0.05,
            "minimum_pattern_length": 5,
            "learning_window_size": 100,
        },
    ),
}


def get_preset(name: str) -> DetectionConfig:
    """
    Build the configuration for a named preset.

    Raises:
        KeyError: If no preset has that name
    """
    if name not in PRESETS:
        raise KeyError(f"Unknown preset: {name}")
    return PRESETS[name].build()


@dataclass
class AdjustmentLimits:
    max_threshold_change: float = 0.1
    min_boundary_threshold: float = 0.3
    max_boundary_threshold: float = 0.9
    min_idle_threshold: int = 60_000
    max_idle_threshold: int = 3_600_000


@dataclass
class AdaptiveConfigSettings:
    enable_auto_adjustment: bool = False
    adjustment_sensitivity: float = 0.5
    monitoring_window: int = HOUR_MS
    minimum_samples: int = 10
    adjustment_limits: AdjustmentLimits = field(default_factory=AdjustmentLimits)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "AdaptiveConfigSettings":
        data = dict(data or {})
        limits = AdjustmentLimits(**data.pop("adjustment_limits", {}))
        return cls(adjustment_limits=limits, **data)


@dataclass
class ProfilePerformance:
    accuracy: float = 0.5
    precision: float = 0.5
    recall: float = 0.5
    false_positives: int = 0
    false_negatives: int = 0


@dataclass
class ConfigurationProfile:
    id: str
    name: str
    description: str
    config: DetectionConfig
    adaptive_settings: AdaptiveConfigSettings = field(default_factory=AdaptiveConfigSettings)
    performance: ProfilePerformance = field(default_factory=ProfilePerformance)
    created_at: float = field(default_factory=_now_ms)
    last_modified: float = field(default_factory=_now_ms)
    usage_count: int = 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "config": self.config.model_dump(),
            "adaptive_settings": asdict(self.adaptive_settings),
            "performance": asdict(self.performance),
            "created_at": self.created_at,
            "last_modified": self.last_modified,
            "usage_count": self.usage_count,
        }


class DetectionConfigManager:
    """
    Holds configuration profiles and switches the active one.

    The ``default`` profile always exists and cannot be deleted. Adaptive
    adjustments only run when adaptive mode is on and the active profile
    allows auto adjustment.
    """

    def __init__(self, base_config: DetectionConfig | None = None):
        self._base_config = base_config or DetectionConfig()
        self.profiles: dict[str, ConfigurationProfile] = {}
        self.active_profile_id = DEFAULT_PROFILE_ID
        self.adaptive_mode = False
        self._init_state()

    def _init_state(self):
        self.profiles = {
            DEFAULT_PROFILE_ID: ConfigurationProfile(
                id=DEFAULT_PROFILE_ID,
                name="Default Configuration",
                description="Standard balanced configuration",
                config=self._base_config,
            )
        }
        self.active_profile_id = DEFAULT_PROFILE_ID
        self.performance_history: list[dict] = []
        self.adaptive_adjustments: dict[str, list[float]] = {}
        self.user_feedback: list[dict] = []
        self.total_configurations = 1

    def get_active_config(self) -> DetectionConfig:
        return self.profiles[self.active_profile_id].config

    def get_profile(self, profile_id: str) -> ConfigurationProfile | None:
        return self.profiles.get(profile_id)

    def list_profiles(self) -> list[ConfigurationProfile]:
        return list(self.profiles.values())

    def create_profile(
        self,
        name: str,
        description: str,
        config: DetectionConfig | dict[str, Any] | None = None,
        adaptive_settings: dict[str, Any] | None = None,
    ) -> str:
        """
        Create a profile from defaults plus overrides.

        Returns:
            New profile id

        Raises:
            ValueError: If the configuration does not validate
        """
        if isinstance(config, DetectionConfig):
            full_config = config
        else:
            try:
                full_config = self._base_config.merged(config or {})
            except ValidationError as e:
                raise ValueError(
                    f"Invalid profile configuration: {'; '.join(format_validation_errors(e))}"
                ) from e

        profile_id = f"profile_{uuid.uuid4().hex[:12]}"
        self.profiles[profile_id] = ConfigurationProfile(
            id=profile_id,
            name=name,
            description=description,
            config=full_config,
            adaptive_settings=AdaptiveConfigSettings.from_dict(adaptive_settings),
        )
        self.total_configurations += 1
        logger.debug(f"Created configuration profile {profile_id} ({name})")
        return profile_id

    def update_profile(
        self,
        profile_id: str,
        name: str | None = None,
        description: str | None = None,
        config: dict[str, Any] | None = None,
        adaptive_settings: dict[str, Any] | None = None,
    ) -> bool:
        """Apply changes to a profile. Returns False if it is missing or the config is invalid."""
        profile = self.profiles.get(profile_id)
        if profile is None:
            return False

        if config:
            try:
                new_config = profile.config.merged(config)
            except ValidationError as e:
                logger.warning(
                    f"Rejected update for profile {profile_id}: {format_validation_errors(e)}"
                )
                return False
            profile.config = new_config
        if name:
            profile.name = name
        if description:
            profile.description = description
        if adaptive_settings:
            merged = asdict(profile.adaptive_settings)
            limits = {**merged.pop("adjustment_limits"), **adaptive_settings.get("adjustment_limits", {})}
            merged.update({k: v for k, v in adaptive_settings.items() if k != "adjustment_limits"})
            merged["adjustment_limits"] = limits
            profile.adaptive_settings = AdaptiveConfigSettings.from_dict(merged)

        profile.last_modified = _now_ms()
        return True

    def switch_profile(self, profile_id: str) -> bool:
        profile = self.profiles.get(profile_id)
        if profile is None:
            return False
        self.active_profile_id = profile_id
        profile.usage_count += 1
        logger.info(f"Switched to configuration profile {profile_id}")
        return True

    def delete_profile(self, profile_id: str) -> bool:
        """
        Delete a profile, falling back to the default one if it was active.

        Returns:
            False if no such profile exists

        Raises:
            ValueError: If asked to delete the default profile
        """
        if profile_id == DEFAULT_PROFILE_ID:
            raise ValueError("The default profile cannot be deleted")
        if profile_id == self.active_profile_id:
            self.switch_profile(DEFAULT_PROFILE_ID)
        return self.profiles.pop(profile_id, None) is not None

    def get_presets(self) -> list[DetectionConfigPreset]:
        return list(PRESETS.values())

    def apply_preset(self, preset_id: str) -> bool:
        """Create a profile from a preset and make it active."""
        preset = PRESETS.get(preset_id)
        if preset is None:
            return False
        profile_id = self.create_profile(
            f"{preset.name} (Applied)",
            f"Applied from preset: {preset.description}",
            preset.build(),
        )
        return self.switch_profile(profile_id)

    def apply_adaptive_adjustments(self, performance: dict[str, float]) -> dict[str, float]:
        """
        Nudge the active profile based on observed detection quality.

        Args:
            performance: Dict with accuracy, false_positives, false_negatives,
                recent_boundaries and optionally user_satisfaction

        Returns:
            The adjustments that were applied (empty when adaptive mode is off)
        """
        if not self.adaptive_mode:
            return {}
        profile = self.profiles[self.active_profile_id]
        settings = profile.adaptive_settings
        if not settings.enable_auto_adjustment:
            return {}

        limits = settings.adjustment_limits
        sensitivity = settings.adjustment_sensitivity
        config = profile.config
        adjustments: dict[str, float] = {}

        false_positives = performance.get("false_positives", 0)
        false_negatives = performance.get("false_negatives", 0)
        step = min(0.05 * sensitivity, limits.max_threshold_change)
        if false_positives > false_negatives:
            adjustments["pattern_confidence_threshold"] = min(
                config.pattern_confidence_threshold + step, limits.max_boundary_threshold
            )
        elif false_negatives > false_positives:
            adjustments["pattern_confidence_threshold"] = max(
                config.pattern_confidence_threshold - step, limits.min_boundary_threshold
            )

        recent_boundaries = performance.get("recent_boundaries", 0)
        idle_step = int(min(30_000 * sensitivity, 300_000))
        if recent_boundaries > 10:
            adjustments["idle_threshold"] = min(
                config.idle_threshold + idle_step, limits.max_idle_threshold
            )
        elif recent_boundaries < 2:
            adjustments["idle_threshold"] = max(
                config.idle_threshold - idle_step, limits.min_idle_threshold
            )

        if performance.get("user_satisfaction", 1.0) < 0.4 and performance.get("accuracy", 1.0) < 0.5:
            adjustments["adaptation_rate"] = min(config.adaptation_rate * 1.5, 0.3)

        adjustments = {
            key: value for key, value in adjustments.items() if getattr(config, key) != value
        }
        if adjustments and self.update_profile(self.active_profile_id, config=adjustments):
            self._record_adjustments(adjustments)
            logger.info(f"Applied adaptive adjustments: {adjustments}")
            return adjustments
        return {}

    def _record_adjustments(self, adjustments: dict[str, float]):
        for parameter, value in adjustments.items():
            history = self.adaptive_adjustments.setdefault(parameter, [])
            history.append(value)
            if len(history) > ADJUSTMENT_HISTORY_CAP:
                self.adaptive_adjustments[parameter] = history[-ADJUSTMENT_HISTORY_KEEP:]

    def get_recommended_config(self, user_patterns: dict[str, Any]) -> DetectionConfig:
        """
        Suggest a configuration for a usage profile.

        Args:
            user_patterns: Dict with avg_session_duration (ms), primary_usage_hours,
                domain_categories, activity_level (low/medium/high) and
                device_type (mobile/tablet/desktop)

        Returns:
            Validated DetectionConfig
        """
        overrides: dict[str, Any] = {}

        duration = user_patterns.get("avg_session_duration", 0)
        if duration > 4 * HOUR_MS:
            overrides.update(idle_threshold=1_800_000, session_gap_threshold=600_000)
        elif 0 < duration < 30 * 60_000:
            overrides.update(idle_threshold=300_000, session_gap_threshold=60_000)

        activity = user_patterns.get("activity_level", "medium")
        if activity == "high":
            overrides.update(batch_size=200, navigation_pattern_weight=1.0, user_behavior_weight=1.0)
        elif activity == "low":
            overrides.update(batch_size=50, idle_grace_period=120_000)

        if user_patterns.get("device_type") == "mobile":
            overrides["batch_size"] = min(overrides.get("batch_size", self._base_config.batch_size), 100)
            overrides["max_events_in_memory"] = min(self._base_config.max_events_in_memory, 5000)
            overrides["adaptive_thresholds"] = True

        categories = set(user_patterns.get("domain_categories", ()))
        if "work" in categories:
            overrides.update(time_of_day_weight=1.0, domain_change_session_boundary=True)
        if "social" in categories:
            overrides.update(navigation_pattern_weight=0.8, contextual_analysis=True)

        # frequent task switching: many short sessions with high activity
        if activity == "high" and 0 < duration < 30 * 60_000:
            overrides.update(boundary_threshold=0.6, learning_enabled=True)

        return self._base_config.merged(overrides)

    def record_performance(self, metrics: dict[str, float]):
        profile = self.profiles[self.active_profile_id]
        profile.performance = ProfilePerformance(
            accuracy=metrics.get("accuracy", 0.5),
            precision=metrics.get("precision", 0.5),
            recall=metrics.get("recall", 0.5),
            false_positives=int(metrics.get("false_positives", 0)),
            false_negatives=int(metrics.get("false_negatives", 0)),
        )
        self.performance_history.append(
            {"timestamp": _now_ms(), "accuracy": profile.performance.accuracy}
        )
        if len(self.performance_history) > PERFORMANCE_HISTORY_CAP:
            self.performance_history = self.performance_history[-PERFORMANCE_HISTORY_KEEP:]

    def record_user_feedback(self, rating: int, comment: str | None = None):
        """Record a 1-5 rating of the active configuration."""
        if not 1 <= rating <= 5:
            raise ValueError(f"Rating must be between 1 and 5, got {rating}")
        config = self.get_active_config()
        self.user_feedback.append(
            {
                "timestamp": _now_ms(),
                "rating": rating,
                "comment": comment,
                "config_snapshot": {
                    "idle_threshold": config.idle_threshold,
                    "session_gap_threshold": config.session_gap_threshold,
                    "pattern_confidence_threshold": config.pattern_confidence_threshold,
                },
            }
        )

    def set_adaptive_mode(self, enabled: bool):
        self.adaptive_mode = enabled
        self.profiles[self.active_profile_id].adaptive_settings.enable_auto_adjustment = enabled

    def get_analytics(self) -> dict:
        return {
            "total_configurations": self.total_configurations,
            "active_profile": self.active_profile_id,
            "performance_history": list(self.performance_history),
            "adaptive_adjustments": {k: list(v) for k, v in self.adaptive_adjustments.items()},
            "user_feedback": list(self.user_feedback),
        }

    def export_config(self, profile_id: str | None = None) -> str:
        """
        Serialize a profile (the active one by default) to JSON.

        Raises:
            KeyError: If the profile does not exist
        """
        target = profile_id or self.active_profile_id
        profile = self.profiles.get(target)
        if profile is None:
            raise KeyError(f"Profile {target} not found")
        return json.dumps(
            {
                "profile": {
                    "id": profile.id,
                    "name": profile.name,
                    "description": profile.description,
                    "config": profile.config.model_dump(),
                    "adaptive_settings": asdict(profile.adaptive_settings),
                },
                "exported_at": _now_ms(),
                "version": EXPORT_VERSION,
            },
            indent=2,
        )

    def import_config(self, config_json: str) -> str:
        """
        Create a profile from an exported JSON document.

        Returns:
            New profile id

        Raises:
            ValueError: If the document is malformed or the config is invalid
        """
        try:
            data = json.loads(config_json)
        except json.JSONDecodeError as e:
            raise ValueError(f"Failed to import configuration: {e}") from e

        profile = data.get("profile") if isinstance(data, dict) else None
        if not isinstance(profile, dict) or not isinstance(profile.get("config"), dict):
            raise ValueError("Failed to import configuration: invalid configuration format")
        if data.get("version") != EXPORT_VERSION:
            logger.warning(f"Importing configuration with version {data.get('version')}")

        try:
            adaptive = profile.get("adaptive_settings")
            return self.create_profile(
                profile.get("name") or "Imported Configuration",
                profile.get("description") or "Imported from JSON",
                profile["config"],
                adaptive,
            )
        except TypeError as e:
            raise ValueError(f"Failed to import configuration: {e}") from e

    def reset_to_defaults(self):
        self.adaptive_mode = False
        self._init_state()
        logger.info("Configuration profiles reset to defaults")
