from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # App Config
    APP_NAME: str = "Nodebench Backend"
    APP_VERSION: str = "0.1.0"
    PORT: int = 8000
    ENVIRONMENT: str = "development"
    APP_BASE_URL: str | None = None

    # Database
    DATABASE_URL: str = "sqlite:///./nodebench.db"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # AI Providers
    OPENAI_API_KEY: str | None = None
    OPENAI_MODEL: str = "gpt-5-mini"
    OPENROUTER_API_KEY: str | None = None
    OPENROUTER_MODEL: str = "z-ai/glm-4.6"
    OPENROUTER_BASE_URL: str = "https://openrouter.ai/api/v1"
    OPENROUTER_HTTP_REFERER: str = "http://localhost"
    OPENROUTER_X_TITLE: str = "Agent Dashboard"

    # Search
    LINKUP_API_KEY: str | None = None
    YOUTUBE_API_KEY: str | None = None
    SEC_USER_AGENT: str = "Nodebench Research support@nodebench.ai"

    # Named-entity recognition (optional "nlp" extra)
    SPACY_MODEL: str = "en_core_web_sm"

    # Billing
    STRIPE_SECRET_KEY: str | None = None
    STRIPE_PRICE_ID: str | None = None
    POLAR_ACCESS_TOKEN: str | None = None
    POLAR_PRODUCT_ID_SUPPORTER: str | None = None
    POLAR_SERVER: str = "production"

    # Google OAuth
    GOOGLE_CLIENT_ID: str | None = None
    GOOGLE_CLIENT_SECRET: str | None = None
    GOOGLE_REDIRECT_URI: str | None = None
    # Signs the OAuth state parameter; GOOGLE_CLIENT_SECRET is used when unset
    OAUTH_STATE_SECRET: str | None = None

    # Security
    ALLOWED_ORIGINS: list[str] = ["http://localhost:5173", "http://localhost:3000"]

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    """Cached settings; call ``get_settings.cache_clear()`` after changing the environment."""
    return Settings()


settings = get_settings()
