"""Configuration management for Assistant Engine."""

from functools import lru_cache

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from .env file (only if accessible)
try:
    load_dotenv()
except (PermissionError, OSError):
    # In sandboxed environments, .env might not be accessible
    # Environment variables should be set directly
    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Supabase configuration (required)
    SUPABASE_URL: str = Field(..., description="Supabase project URL")
    SUPABASE_SERVICE_ROLE_KEY: str = Field(..., description="Supabase service role key")
    DB_TIMEOUT_SECONDS: int = Field(default=10, description="PostgREST request timeout")

    # OpenAI configuration (required, used for query embeddings)
    OPENAI_API_KEY: str = Field(..., description="OpenAI API key")

    # Environment
    ASSISTANT_ENV: str = Field(default="dev", description="Environment: dev, staging, prod")

    # Embedding configuration (must match the corpus ingestion model/dimension)
    EMBEDDING_MODEL: str = Field(
        default="text-embedding-3-small", description="OpenAI embedding model"
    )
    EMBEDDING_DIM: int = Field(default=384, description="Embedding vector dimension")
    EMBEDDING_TIMEOUT_SECONDS: float = Field(
        default=10.0, description="Per-call timeout for query embeddings"
    )
    EMBEDDING_MAX_RETRIES: int = Field(
        default=0, description="SDK retries for query embeddings (keep within the request deadline)"
    )

    # Generation backend
    GENERATION_PROVIDER: str = Field(
        default="anthropic", description="Generation backend: anthropic or http"
    )
    GENERATION_MODEL: str = Field(
        default="claude-haiku-4-5-20251001", description="Model id for answer generation"
    )
    ANTHROPIC_API_KEY: str | None = Field(default=None, description="Anthropic API key")
    GENERATION_ENDPOINT_URL: str | None = Field(
        default=None, description="Base URL of the HTTP inference endpoint (provider=http)"
    )
    GENERATION_ENDPOINT_KEY: str | None = Field(
        default=None, description="Bearer key for the HTTP inference endpoint"
    )
    DEFAULT_MAX_TOKENS: int = Field(default=1024, description="Default max output tokens")
    DEFAULT_TEMPERATURE: float = Field(default=0.7, description="Default sampling temperature")

    # Request pipeline
    REQUEST_DEADLINE_SECONDS: float = Field(
        default=45.0, description="Deadline for a request, measured from entry"
    )
    PROMPT_TOKEN_BUDGET: int = Field(
        default=6_000, description="Max estimated prompt tokens sent to the model"
    )
    HISTORY_MESSAGE_LIMIT: int = Field(
        default=10, description="Messages of thread history loaded for the prompt"
    )
    RETRIEVAL_TOP_K: int = Field(default=40, description="Max candidates from retrieval")
    RERANK_TOP_N: int = Field(default=12, description="Sources kept after reranking")

    # Quota
    QUOTA_KEY: str = Field(default="rag_messages", description="Quota key for assistant messages")

    # Training capture
    TRAINING_CAPTURE_ENABLED: bool = Field(
        default=True, description="Global switch for training sample capture"
    )

    # PostHog (events + exception tracking)
    POSTHOG_API_KEY: str | None = Field(default=None, description="PostHog project API key")
    POSTHOG_HOST: str = Field(default="https://us.i.posthog.com", description="PostHog host")


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings instance

    Raises:
        ValidationError: If required environment variables are missing
    """
    return Settings()
