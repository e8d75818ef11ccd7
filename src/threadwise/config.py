"""Configuration settings for the application."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Pydantic settings class for the application."""

    # Define the settings with default values and types
    # These will be loaded from environment variables or a .env file if not provided
    API_PORT: int = 8000
    DEBUG: bool = False
    LOG_LEVEL: str = "info"  # Options: debug, info, warning, error, critical

    # Oracle Configuration
    ORACLE: str = "anthropic"  # Options: tgi, openai, anthropic
    ORACLE_LOG: str | None = None  # Options: OFF, INFO, DEBUG (overrides --debug)
    ORACLE_TIMEOUT: float = 60.0
    OPENAI_API_KEY: str | None = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    ANTHROPIC_API_KEY: str | None = None
    ANTHROPIC_MODEL: str = "claude-3-5-haiku-latest"
    TGI_ENDPOINT: str = "http://tgi:8080/generate"

    # Agent loop
    MAX_ITERATIONS: int | None = None  # None: no cap on oracle decisions per pass
    TOOL_TIMEOUT: float = 60.0

    # Tools
    SCRAPER_TIMEOUT: float = 30.0
    CACHE_TTL_SECONDS: float = 300.0
    CACHE_SWEEP_INTERVAL: float = 30.0

    class Config:
        """Configuration for Pydantic settings."""

        # Load environment variables from a .env file
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
