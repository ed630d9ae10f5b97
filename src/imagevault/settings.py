"""Application settings and environment configuration."""

from typing import List, Optional
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[2]
ENV_FILE = BASE_DIR / ".env"


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_name: str = "imagevault"
    debug: bool = False
    worker_mode: bool = False
    environment: str = "dev"  # 'dev' or 'prod'
    app_url: str = "http://localhost:8080"

    # Database
    database_url: str = "postgresql://localhost/imagevault"
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_pool_recycle: int = 1800
    db_pool_pre_ping: bool = True
    db_connect_timeout: int = 10
    db_pool_use_lifo: bool = True

    # Google Cloud
    gcp_project_id: Optional[str] = None

    # Cloud Storage
    storage_bucket_name: str = "imagevault-images"
    signing_service_account: Optional[str] = None
    # JSON object inside the bucket holding {"file_size_limit", "allowed_mime_types"}.
    bucket_policy_key: str = ".policy/uploads.json"
    upload_url_ttl_seconds: int = 7200
    read_url_ttl_seconds: int = 3600

    # Upload policy fallbacks when the bucket carries no policy object
    upload_max_size_bytes: int = 10 * 1024 * 1024
    upload_allowed_mime_types: List[str] = ["image/jpeg", "image/png", "image/webp"]

    # Thumbnail derivation function
    thumbnail_function_url: str = "http://localhost:54321/functions/v1/generate-thumbnail"
    thumbnail_function_key: Optional[str] = None
    thumbnail_trigger_timeout_seconds: float = 10.0
    thumbnail_poll_budget_seconds: float = 10.0
    thumbnail_poll_initial_delay_seconds: float = 0.25
    thumbnail_poll_max_delay_seconds: float = 1.5

    # Models
    embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2"
    caption_model: str = "nlpconnect/vit-gpt2-image-captioning"
    caption_max_dimension: int = 1024
    caption_jpeg_quality: int = 85

    # Vector index
    vector_collection_name: str = "thumbnail-images"
    vector_dimension: int = 384
    # Matches at or below this cosine similarity are dropped from search results.
    semantic_similarity_floor: float = 0.15

    # Tagging queue
    tagging_job_name: str = "tag-image"
    tagging_max_attempts: int = 3
    tagging_backoff_ms: int = 3000
    # If true, the tagging worker embeds and indexes fresh captions right away.
    tagging_index_embeddings: bool = True

    # Job worker
    job_worker_id: Optional[str] = None
    job_worker_poll_seconds: float = 2.0
    job_worker_lease_seconds: int = 300
    job_worker_log_level: str = "INFO"

    # Listing
    preview_default_limit: int = 25
    preview_max_limit: int = 50

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8080
    api_workers: int = 4
    presign_rate_limit: str = "60/minute"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "prod"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment.lower() == "dev"

    def model_config_audit(self) -> dict:
        """Return startup model-config audit metadata for logging."""
        return {
            "embedding_model": self.embedding_model,
            "caption_model": self.caption_model,
            "vector_collection_name": self.vector_collection_name,
            "vector_dimension": self.vector_dimension,
            "semantic_similarity_floor": self.semantic_similarity_floor,
            "tagging_index_embeddings": self.tagging_index_embeddings,
        }


settings = Settings()
