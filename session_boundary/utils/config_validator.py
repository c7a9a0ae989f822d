"""Type-safe configuration validation using Pydantic Settings."""

from dataclasses import dataclass, field
from typing import Any, Literal, Optional

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DetectionConfig(BaseSettings):
    """Detection thresholds, signal weights and learning switches."""

    model_config = SettingsConfigDict(env_prefix="SESSION_BOUNDARY_DETECTION_", extra="forbid")

    # Timing thresholds (ms)
    idle_threshold: int = Field(
        default=600_000,
        ge=30_000,
        le=86_400_000,
        description="Idle duration that counts as leaving the session",
    )
    session_gap_threshold: int = Field(
        default=300_000,
        ge=10_000,
        le=86_400_000,
        description="Gap between navigations that suggests a new session",
    )
    idle_grace_period: int = Field(
        default=60_000,
        ge=0,
        description="Idle time ignored before idle strength starts to accrue",
    )

    # Decision
    boundary_threshold: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Weighted signal strength needed to emit a boundary",
    )
    domain_similarity_threshold: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
        description="Similarity below which a domain counts as a change",
    )
    domain_change_session_boundary: bool = Field(
        default=True,
        description="Emit spatial signals for domain changes",
    )

    # Signal weights
    navigation_pattern_weight: float = Field(default=1.0, ge=0.0, le=1.0)
    time_of_day_weight: float = Field(default=1.0, ge=0.0, le=1.0)
    user_behavior_weight: float = Field(default=1.0, ge=0.0, le=1.0)

    # Patterns and prediction
    minimum_pattern_length: int = Field(default=3, ge=1, le=100)
    pattern_confidence_threshold: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Match strength for learned signals and predicted boundaries",
    )
    boundary_prediction_lookahead: int = Field(
        default=60_000,
        ge=0,
        description="How far ahead a predicted boundary is placed (ms)",
    )

    # Learning
    learning_enabled: bool = True
    adaptive_thresholds: bool = True
    contextual_analysis: bool = True
    learning_window_size: int = Field(default=50, ge=1, le=10_000)
    adaptation_rate: float = Field(default=0.05, ge=0.0, le=1.0)
    pattern_decay_rate: float = Field(default=0.02, ge=0.0, le=1.0)

    # Resource limits
    batch_size: int = Field(default=100, ge=1)
    max_events_in_memory: int = Field(default=10_000, ge=100)

    def merged(self, partial: dict[str, Any]) -> "DetectionConfig":
        """
        Build a new configuration with ``partial`` applied on top of this one.

        Raises:
            ValidationError: If the merged values are invalid or a key is unknown
        """
        return DetectionConfig(**{**self.model_dump(), **partial})


class LoggingConfig(BaseSettings):
    """Logging configuration with validation."""

    model_config = SettingsConfigDict(env_prefix="SESSION_BOUNDARY_LOGGING_")

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format string",
    )
    log_dir: Optional[str] = Field(
        default=None,
        description="Directory for the log file (None = stderr only)",
    )

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        """Validate format string is not empty."""
        if not v or not v.strip():
            raise ValueError("Logging format cannot be empty")
        return v


class SessionBoundaryConfig(BaseSettings):
    """Root configuration with auto-loading from .env."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    detection: DetectionConfig = Field(default_factory=DetectionConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def to_dict(self) -> dict:
        """Convert to plain nested dictionaries."""
        return {
            "detection": self.detection.model_dump(),
            "logging": self.logging.model_dump(),
        }


def load_validated_config() -> SessionBoundaryConfig:
    """
    Load and validate configuration from environment variables and .env file.

    Returns:
        SessionBoundaryConfig: Validated configuration object

    Raises:
        ValueError: If configuration validation fails with detailed error messages
    """
    try:
        return SessionBoundaryConfig(
            detection=DetectionConfig(),
            logging=LoggingConfig(),
        )
    except Exception as e:
        raise ValueError(f"Configuration validation failed: {e}") from e


@dataclass
class ConfigValidationResult:
    """Outcome of validating a detection configuration."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "recommendations": list(self.recommendations),
        }


def format_validation_errors(error: ValidationError) -> list[str]:
    """Flatten a pydantic ValidationError into readable messages."""
    messages = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "config"
        messages.append(f"{location}: {item['msg']}")
    return messages


def validate_config(
    config: DetectionConfig | dict[str, Any],
    base: DetectionConfig | None = None,
) -> ConfigValidationResult:
    """
    Validate a detection configuration and flag questionable settings.

    Args:
        config: Full configuration, or a partial dict of overrides
        base: Configuration that a partial dict is applied to (defaults if None)

    Returns:
        ConfigValidationResult with hard errors, warnings and recommendations
    """
    result = ConfigValidationResult()

    if isinstance(config, DetectionConfig):
        candidate = config
    else:
        try:
            candidate = (base or DetectionConfig()).merged(config)
        except ValidationError as e:
            result.errors.extend(format_validation_errors(e))
            return result

    if candidate.idle_threshold < 300_000:
        result.warnings.append("Idle threshold below 5 minutes may split sessions too eagerly")
    if candidate.idle_threshold > 3_600_000:
        result.warnings.append("Idle threshold above 1 hour may merge unrelated sessions")
    if candidate.session_gap_threshold > candidate.idle_threshold:
        result.warnings.append("Session gap threshold exceeds idle threshold")
    if candidate.adaptation_rate > 0.3:
        result.warnings.append("High adaptation rate may make detection unstable")
    if not 0.1 <= candidate.pattern_confidence_threshold <= 0.9:
        result.warnings.append("Pattern confidence threshold outside the useful range 0.1-0.9")
    if candidate.boundary_threshold < 0.3:
        result.warnings.append("Boundary threshold below 0.3 will fire on weak evidence")
    weights = (
        candidate.navigation_pattern_weight,
        candidate.time_of_day_weight,
        candidate.user_behavior_weight,
    )
    if sum(weights) == 0:
        result.warnings.append("All signal weights are zero; only spatial signals contribute")

    if candidate.batch_size > 1000:
        result.recommendations.append("Consider a smaller batch size for better responsiveness")
    if candidate.max_events_in_memory > 50_000:
        result.recommendations.append("High memory limit may impact browser performance")
    if not candidate.learning_enabled:
        result.recommendations.append("Enable learning to let thresholds adapt to this user")

    return result


def coerce_config(config: DetectionConfig | dict[str, Any] | None) -> DetectionConfig:
    """
    Accept a config object, a dict of overrides or None (defaults).

    Raises:
        ValidationError: If a dict fails validation
    """
    if config is None:
        return DetectionConfig()
    if isinstance(config, DetectionConfig):
        return config
    return DetectionConfig(**config)
