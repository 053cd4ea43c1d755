from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """
    Pipeline settings loaded from environment variables.

    Environment variables can come from:
    - the cron / container environment
    - .env file (for secrets like API keys)

    Variable names follow the deployment conventions:
    - POSTGRES_HOST, POSTGRES_PORT, ... or DATABASE_URL (database)
    - OPENROUTER_API_KEY (AI extraction and web search)
    - R2_ACCOUNT_ID, R2_ACCESS_KEY_ID, R2_SECRET_ACCESS_KEY, R2_BUCKET_NAME (blob storage)
    """

    # Environment
    environment: str = "development"

    # PostgreSQL
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "canary_user"
    postgres_password: str = "canary_pass"
    postgres_db: str = "canary_watcher"
    database_url: Optional[str] = Field(default=None, validate_default=True)

    # OpenRouter (from .env)
    openrouter_api_key: str = ""
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    extraction_model: str = "openai/gpt-4o-mini"
    search_model: str = "perplexity/sonar"
    ai_timeout_seconds: float = 120.0

    # Blob storage: "s3" (R2 / any S3-compatible endpoint) or "local"
    blob_backend: str = "s3"
    r2_account_id: str = ""
    r2_access_key_id: str = ""
    r2_secret_access_key: str = ""
    r2_bucket_name: str = ""
    r2_endpoint: Optional[str] = None
    blob_local_path: str = "./data/blobs"

    # Outbound HTTP
    http_timeout_seconds: float = 30.0
    http_max_redirects: int = 5
    user_agent: str = "AGI-Canary-Watcher/1.0 (research; +https://github.com/agi-canary-watcher)"

    # Job queue policy
    job_max_attempts: int = 5
    backoff_base_seconds: int = 60
    backoff_factor: int = 5
    backoff_max_seconds: int = 6 * 60 * 60
    stale_lock_minutes: int = 15
    stale_run_minutes: int = 120

    # Stage batching
    discovery_concurrency: int = 2
    source_fetch_timeout_seconds: float = 60.0
    acquisition_batch_size: int = 50
    acquisition_concurrency: int = 4
    extraction_batch_size: int = 10
    extraction_concurrency: int = 4
    time_budget_seconds: int = 55 * 60

    scoring_version: str = "v1"

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"  # Ignore extra env vars

    @field_validator('database_url', mode='before')
    @classmethod
    def construct_database_url(cls, v, info):
        """Construct database URL from components if not explicitly set"""
        if v:
            return v

        data = info.data
        host = data.get('postgres_host', 'localhost')
        port = data.get('postgres_port', 5432)
        user = data.get('postgres_user', 'canary_user')
        password = data.get('postgres_password', 'canary_pass')
        db = data.get('postgres_db', 'canary_watcher')

        return f"postgresql://{user}:{password}@{host}:{port}/{db}"

    @property
    def resolved_r2_endpoint(self) -> Optional[str]:
        if self.r2_endpoint:
            return self.r2_endpoint
        if self.r2_account_id:
            return f"https://{self.r2_account_id}.r2.cloudflarestorage.com"
        return None


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
