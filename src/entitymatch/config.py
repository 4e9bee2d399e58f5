"""
Entity matching configuration using pydantic-settings.

Every tunable threshold of the resolver, confidence model and merge engine
is read from the environment (prefix ENTITYMATCH_) or a .env file.
"""

from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="ENTITYMATCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: str = Field(
        default="development",
        description="Environment: development, staging, production",
    )
    debug: bool = Field(default=False, description="Debug mode")
    log_level: str = Field(default="INFO", description="Logging level")

    # Identity store
    database_url: Optional[str] = Field(
        default=None,
        description="SQLAlchemy URL of the identity database (in-memory store if unset)",
    )

    # Fuzzy matching (Layer 3). Either condition qualifies a candidate.
    fuzzy_score_threshold: float = Field(
        default=85.0,
        ge=0.0,
        le=100.0,
        description="Combined similarity at or above which a candidate qualifies",
    )
    fuzzy_max_edit_distance: int = Field(
        default=2,
        ge=0,
        description="Raw edit distance at or below which a candidate qualifies",
    )
    fuzzy_high_tier_score: float = Field(
        default=90.0,
        ge=0.0,
        le=100.0,
        description="Single fuzzy matches scoring above this are tier 'high'",
    )
    fuzzy_review_below: float = Field(
        default=85.0,
        ge=0.0,
        le=100.0,
        description="Single fuzzy matches scoring below this need review",
    )

    # Context disambiguation (Layer 4)
    context_window_days: int = Field(
        default=30,
        ge=0,
        description="Max days between a candidate's last activity and the time hint",
    )

    # Similarity weights
    weight_edit: float = Field(default=0.30, ge=0.0, le=1.0)
    weight_phonetic: float = Field(default=0.25, ge=0.0, le=1.0)
    weight_alias: float = Field(default=0.25, ge=0.0, le=1.0)
    weight_token_set: float = Field(default=0.20, ge=0.0, le=1.0)

    # Confidence model
    auto_approve_threshold: float = Field(
        default=85.0,
        ge=0.0,
        le=100.0,
        description="Overall confidence at or above which no review task is created",
    )
    needs_correction_threshold: float = Field(
        default=60.0,
        ge=0.0,
        le=100.0,
        description="Overall confidence below which the mention is flagged for correction",
    )
    new_identity_match_confidence: float = Field(
        default=50.0,
        ge=0.0,
        le=100.0,
        description="Match confidence assigned to newly created identities",
    )
    historical_neutral: float = Field(
        default=50.0,
        ge=0.0,
        le=100.0,
        description="Historical confidence used when no history is available",
    )
    anomaly_max_penalty: float = Field(
        default=15.0,
        ge=0.0,
        le=100.0,
        description="Penalty applied at anomaly score 100",
    )

    # Merge
    merge_max_retries: int = Field(
        default=3,
        ge=1,
        description="Attempts per conditional write before giving up",
    )

    # Nickname repository
    nickname_table_path: Optional[Path] = Field(
        default=None,
        description="JSON file with nickname groups (bundled table if unset)",
    )

    # Review
    min_review_seconds: float = Field(
        default=2.0,
        description="Minimum review time before flagging as rubber-stamp",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Accept standard logging level names only."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @model_validator(mode="after")
    def validate_weights(self) -> "Settings":
        """Similarity weights must form a convex combination."""
        total = (
            self.weight_edit
            + self.weight_phonetic
            + self.weight_alias
            + self.weight_token_set
        )
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"Similarity weights must sum to 1.0 (got {total:.3f})")
        if self.needs_correction_threshold > self.auto_approve_threshold:
            raise ValueError(
                "needs_correction_threshold must not exceed auto_approve_threshold"
            )
        return self

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"


# Global settings instance
settings = Settings()
