"""Configuration management for the ThiQaX application engine."""

from typing import Dict, List
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_TRACKED_PROFILE_FIELDS = [
    "full_name",
    "date_of_birth",
    "gender",
    "nationality",
    "phone_number",
    "address",
    "education",
    "skills",
    "languages",
    "preferred_locations",
]


class Settings(BaseSettings):
    """Engine settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_prefix="THIQAX_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Eligibility Configuration
    completeness_threshold: int = Field(
        100, ge=0, le=100, description="Minimum profile completion percentage required to apply"
    )
    tracked_profile_fields: List[str] = Field(
        default_factory=lambda: list(DEFAULT_TRACKED_PROFILE_FIELDS),
        description="Profile fields scored by the completeness calculator"
    )
    profile_field_weights: Dict[str, float] = Field(
        default_factory=dict,
        description="Per-field completeness weights (unlisted fields weigh 1.0)"
    )

    # Document Expiry Configuration
    expiry_horizon_days: int = Field(30, ge=0, description="Days ahead scanned by the expiration sweep")

    # Collaborator Configuration
    store_timeout_seconds: float = Field(5.0, gt=0, description="Timeout for each store/dispatcher call")
    max_retries: int = Field(3, ge=1, description="Maximum attempts for retryable operations")
    retry_base_delay: float = Field(0.5, ge=0, description="Initial backoff delay in seconds")
    retry_max_delay: float = Field(8.0, ge=0, description="Upper bound for a single backoff delay")

    # Application Configuration
    debug: bool = Field(False, description="Enable debug mode")
    log_level: str = Field("INFO", description="Logging level")


# Global settings instance
settings = Settings()
