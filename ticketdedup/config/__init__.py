"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from functools import lru_cache
from pathlib import Path
from typing import List, Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="ticketdedup", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=4000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/tickets",
        description="PostgreSQL connection URL (async)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== Grouping ==========
    grouping_config_path: Path = Field(
        default=Path("grouping_config.yaml"),
        description="Path to grouping thresholds YAML file"
    )
    context_only_user_ids: List[str] = Field(
        default_factory=list,
        description="Chat user ids that may add context to tickets but never open one"
    )

    # ========== Classification cache ==========
    classification_cache_ttl_seconds: int = Field(
        default=3600,
        description="How long a classification stays cached",
        ge=1
    )
    cache_sweep_interval_seconds: int = Field(
        default=300,
        description="Seconds between sweeps of expired cache entries",
        ge=1
    )

    # ========== LLM ==========
    llm_provider: str = Field(
        default="openai",
        description="LLM provider: openai, zai or mock"
    )
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API key")
    zai_api_key: Optional[str] = Field(default=None, description="Z.AI API key")
    llm_model: str = Field(
        default="gpt-4o-mini",
        description="Model used for classification, summaries and arbitration"
    )
    embedding_model: str = Field(
        default="text-embedding-3-small",
        description="Embedding model"
    )
    llm_temperature: float = Field(
        default=0.3,
        description="Default temperature for LLM",
        ge=0.0,
        le=1.0
    )
    llm_max_tokens: int = Field(
        default=1000,
        description="Default max tokens for LLM generation",
        ge=1,
        le=8000
    )
    llm_concurrency: int = Field(
        default=3,
        description="Max concurrent in-flight LLM and embedding calls",
        ge=1
    )
    llm_timeout_seconds: float = Field(
        default=30.0,
        description="Timeout for a single LLM call",
        gt=0
    )

    # ========== Zilliz Cloud (Managed Milvus) ==========
    zilliz_uri: str = Field(
        default="",
        description="Zilliz Cloud / Milvus URI; empty keeps embeddings in memory"
    )
    zilliz_api_key: str = Field(default="", description="Zilliz Cloud API key")
    milvus_ticket_collection: str = Field(
        default="ticket_embeddings",
        description="Collection holding one vector per ticket"
    )
    milvus_message_collection: str = Field(
        default="message_embeddings",
        description="Collection holding one vector per message"
    )
    embedding_dimension: int = Field(
        default=1536,
        description="Embedding vector dimension",
        ge=128
    )
    vector_search_candidates: int = Field(
        default=5,
        description="Nearest neighbours fetched before open/lookback filtering",
        ge=1,
        le=50
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000"],
        description="Allowed CORS origins"
    )

    # ========== Grafana OTLP Metrics ==========
    grafana_host: Optional[str] = Field(
        default=None,
        description="Grafana OTLP gateway URL (e.g., https://otlp-gateway-prod-ap-south-1.grafana.net)"
    )
    grafana_api_key: Optional[str] = Field(
        default=None,
        description="Grafana API key for OTLP authentication"
    )
    grafana_instance_id: Optional[str] = Field(
        default=None,
        description="Grafana instance ID for OTLP authentication"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "test", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("llm_provider")
    @classmethod
    def validate_llm_provider(cls, v: str) -> str:
        """Ensure the LLM provider is supported."""
        allowed = {"openai", "zai", "mock"}
        v = v.lower()
        if v not in allowed:
            raise ValueError(f"llm_provider must be one of {allowed}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class TicketCategory(str):
    """Categories a message or ticket can be classified into."""
    BUG_REPORT = "bug_report"
    SUPPORT_QUESTION = "support_question"
    FEATURE_REQUEST = "feature_request"
    PRODUCT_QUESTION = "product_question"
    IRRELEVANT = "irrelevant"


class TicketStatus(str):
    """Ticket lifecycle statuses."""
    OPEN = "open"
    RESOLVED = "resolved"
    CLOSED = "closed"


class Priority(str):
    """Ticket priority levels."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class MatchStep(str):
    """Which grouping step placed a message on a ticket."""
    THREAD = "thread"
    CANONICAL_KEY = "canonical_key"
    SEMANTIC = "semantic"
    RECENT_CHANNEL = "recent_channel"
    CREATED = "created"
    DROPPED = "dropped"


# ========== Lists for validation ==========

VALID_CATEGORIES = [
    TicketCategory.BUG_REPORT, TicketCategory.SUPPORT_QUESTION,
    TicketCategory.FEATURE_REQUEST, TicketCategory.PRODUCT_QUESTION,
    TicketCategory.IRRELEVANT
]
VALID_STATUSES = [TicketStatus.OPEN, TicketStatus.RESOLVED, TicketStatus.CLOSED]
# Ordered from least to most urgent
PRIORITY_ORDER = [Priority.LOW, Priority.MEDIUM, Priority.HIGH, Priority.CRITICAL]
