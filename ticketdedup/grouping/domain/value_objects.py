"""
Grouping Value Objects
=======================

Immutable configuration for the grouping engine.

GroupingConfig is loaded from YAML and may be swapped at runtime by the
config manager; a grouping run reads it once and uses that snapshot.
"""

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ScoreWeights(BaseModel):
    """Weights of the recent-channel match score components."""
    model_config = ConfigDict(frozen=True)

    semantic: float = Field(default=0.60, ge=0.0)
    same_category: float = Field(default=0.10, ge=0.0)
    same_channel: float = Field(default=0.15, ge=0.0)
    recent_update: float = Field(default=0.15, ge=0.0)
    signal_overlap: float = Field(default=0.10, ge=0.0)


class GroupingConfig(BaseModel):
    """
    Thresholds for matching messages to tickets.

    Distances are cosine distances (0 identical, 2 opposite).
    """
    model_config = ConfigDict(frozen=True)

    # Step 3: semantic match
    semantic_distance_threshold: float = Field(default=0.17, ge=0.0, le=2.0)
    lookback_days: int = Field(default=14, ge=1)
    embedding_max_chars: int = Field(default=2000, ge=100)

    # Step 4: recent-channel fallback
    recent_channel_window_minutes: int = Field(default=5, ge=1)
    recent_messages_for_signals: int = Field(default=5, ge=1)
    recent_update_minutes: float = Field(default=10.0, ge=0.0)
    merge_score_threshold: float = Field(default=0.65, ge=0.0, le=1.0)
    weights: ScoreWeights = Field(default_factory=ScoreWeights)

    # Guardrail against cross-category merges
    guardrail_distance: float = Field(default=0.30, ge=0.0, le=2.0)
    guardrail_override_minutes: float = Field(default=5.0, ge=0.0)
    guardrail_override_min_overlap: int = Field(default=1, ge=1)

    # Gray zone and arbitration
    gray_zone_margin: float = Field(default=0.05, ge=0.0)
    gray_zone_wide_margin: float = Field(default=0.10, ge=0.0)
    arbitration_min_confidence: float = Field(default=0.7, ge=0.0, le=1.0)
    arbitration_recent_messages: int = Field(default=3, ge=1)

    # Embedding reuse across steps 3-5
    reuse_precomputed_embedding: bool = True

    @model_validator(mode="after")
    def validate_bands(self) -> "GroupingConfig":
        """The wide gray band must sit between the semantic and guardrail cut-offs."""
        if self.semantic_distance_threshold > self.guardrail_distance:
            raise ValueError("semantic_distance_threshold must not exceed guardrail_distance")
        if self.gray_zone_wide_margin < self.gray_zone_margin:
            raise ValueError("gray_zone_wide_margin must be at least gray_zone_margin")
        return self
