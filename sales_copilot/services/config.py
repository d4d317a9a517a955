"""
Configuration settings for the Sales Co-Pilot API
"""
from functools import lru_cache
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
import json


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # API Configuration
    API_VERSION: str = "1.0.0"
    ENVIRONMENT: str = Field(default="development")
    LOG_LEVEL: str = Field(default="INFO")
    LOG_JSON: Optional[bool] = Field(default=None)  # None -> JSON outside development

    # CORS Settings
    CORS_ORIGINS: List[str] = Field(
        default=[
            "http://localhost:3000",
            "http://localhost:8080",
        ]
    )

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS_ORIGINS from JSON string if needed"""
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                # If not JSON, treat as comma-separated list
                return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    # Deployment scope (see services/scope.py for the available profiles)
    SCOPE_PROFILE: str = Field(default="u-anchors")

    # Document search collaborator
    DOCS_SEARCH_URL: str = Field(default="http://localhost:3000/api/docs")
    DOCS_LIMIT_PER_QUERY: int = Field(default=12)
    DOCS_SEARCH_TIMEOUT: float = Field(default=8.0)
    DOCS_SEARCH_RETRIES: int = Field(default=2)  # connection-level retries only
    SNIPPET_LIMIT: int = Field(default=8)

    # Grounding bounds
    MAX_GROUNDING_DOCS: int = Field(default=10)
    MAX_GROUNDING_SNIPPETS: int = Field(default=8)

    # Model provider (OpenAI-compatible)
    OPENAI_API_KEY: Optional[str] = Field(default=None)
    OPENAI_BASE_URL: str = Field(default="https://api.openai.com/v1")
    MODEL_NAME: str = Field(default="gpt-5-mini")
    # None omits the parameter; gpt-5 family models only accept the default
    TEMPERATURE: Optional[float] = Field(default=None)
    REWRITE_TEMPERATURE: Optional[float] = Field(default=None)
    MAX_TOKENS: int = Field(default=900)
    LLM_TIMEOUT: float = Field(default=45.0)
    HISTORY_LIMIT: int = Field(default=18)

    # Supabase (auth + persistence collaborators)
    SUPABASE_URL: Optional[str] = Field(default=None)
    SUPABASE_SERVICE_KEY: Optional[str] = Field(default=None)
    SUPABASE_ANON_KEY: Optional[str] = Field(default=None)
    PERSIST_TIMEOUT: float = Field(default=5.0)
    AUTH_TIMEOUT: float = Field(default=5.0)

    # OpenTelemetry Configuration
    OTEL_ENABLED: bool = Field(default=False)
    OTEL_ENDPOINT: str = Field(default="http://localhost:4317")
    OTEL_SERVICE_NAME: str = Field(default="sales-copilot-api")

    @field_validator("HISTORY_LIMIT")
    @classmethod
    def check_history_limit(cls, v):
        if v < 1:
            raise ValueError("HISTORY_LIMIT must be positive")
        return v

    @property
    def persistence_enabled(self) -> bool:
        return bool(self.SUPABASE_URL and self.SUPABASE_SERVICE_KEY)

    @property
    def use_json_logs(self) -> bool:
        if self.LOG_JSON is not None:
            return self.LOG_JSON
        return self.ENVIRONMENT != "development"

    def get_supabase_rest_url(self, table: str) -> str:
        """Get PostgREST URL for a table"""
        return f"{self.SUPABASE_URL.rstrip('/')}/rest/v1/{table}"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
