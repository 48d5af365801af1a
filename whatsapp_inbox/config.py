from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Runtime configuration, read from the environment with .env as a fallback.

    Everything has a default so the API boots without credentials. Media
    upload answers 503 until the R2 settings are present.
    """

    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Database Configuration
    DATABASE_URL: str = "sqlite:///./data/whatsapp.db"

    # Logging Configuration
    LOG_LEVEL: str = "INFO"

    # Wapisimo provider
    PROVIDER_API_KEY: str = ""
    PROVIDER_PHONE_ID: str = ""
    PROVIDER_API_BASE: str = "https://api.wapisimo.dev/v1"
    PROVIDER_TIMEOUT_SECONDS: float = 15.0

    # Cloudflare R2 media storage (all optional, uploads return 503 until set)
    R2_ACCOUNT_ID: str = ""
    R2_ACCESS_KEY_ID: str = ""
    R2_SECRET_ACCESS_KEY: str = ""
    R2_BUCKET_NAME: str = ""
    R2_PUBLIC_URL: str = ""


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()


# Global settings instance
settings = get_settings()
