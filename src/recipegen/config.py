"""Application configuration using pydantic-settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database
    database_url: str = "postgresql+asyncpg://localhost/recipegen"

    # Redis
    redis_url: str = "redis://localhost:6379/0"

    # OpenAI (text + image generation)
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    openai_text_model: str = "gpt-4o"
    openai_image_model: str = "dall-e-3"
    openai_timeout: float = 90.0  # request timeout in seconds
    openai_max_retries: int = 3

    # Object storage (S3 compatible, e.g. DigitalOcean Spaces)
    s3_bucket: str = "recipe-images"
    s3_region: str = "nyc3"
    s3_endpoint_url: str = "https://nyc3.digitaloceanspaces.com"
    s3_access_key_id: str = ""
    s3_secret_access_key: str = ""
    s3_public_base_url: str = ""  # Defaults to <endpoint>/<bucket> when empty
    s3_key_prefix: str = "recipes"

    # Nutritional validation
    calorie_tolerance_ratio: float = 0.15  # 15% of target calories
    macro_tolerance_grams: float = 10.0

    # Image generation and dedup
    image_max_duplicate_retries: int = 3
    image_generation_timeout: float = 60.0
    image_generation_concurrency: int = 3
    hash_distance_threshold: int = 4  # Max Hamming distance (bits) for a near-duplicate
    placeholder_image_url: str = "https://placehold.co/1024x1024?text=Recipe+Image"

    # Image storage
    storage_chunk_size: int = 5  # Max concurrent uploads
    storage_upload_timeout: float = 30.0

    # Text generation
    text_generation_concurrency: int = 3
    text_generation_timeout: float = 120.0

    # Application
    environment: str = "development"
    log_level: str = "INFO"
    allowed_origins: str = "http://localhost:3000,http://localhost:8000"

    @property
    def object_base_url(self) -> str:
        """Get the public base URL under which stored objects are served."""
        if self.s3_public_base_url:
            return self.s3_public_base_url.rstrip("/")
        return f"{self.s3_endpoint_url.rstrip('/')}/{self.s3_bucket}"

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
