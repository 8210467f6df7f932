"""
Health Archetypes Configuration
===============================
All environment variables in one place. Pydantic Settings validates
types at startup; provider credentials are checked per call so the API
still boots (and reports a clean 500) when they are missing.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Loaded from environment variables or a .env file."""

    # --- Terra (wearable aggregator) ---
    terra_dev_id: str = ""
    terra_api_key: str = ""
    terra_base_url: str = "https://api.tryterra.co/v2"
    terra_timeout_seconds: float = 30.0

    # --- OpenAI (text + image generation) ---
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    openai_text_model: str = "gpt-4.1-mini"
    openai_text_temperature: float = 0.7
    openai_image_model: str = "dall-e-3"
    openai_image_size: str = "1024x1024"
    openai_image_quality: str = "hd"
    openai_image_style: str = "vivid"
    # Image generation regularly takes 20-60s
    openai_timeout_seconds: float = 120.0

    # One retry, fixed delay. Not a backoff policy.
    generation_max_retries: int = 1
    generation_retry_delay_seconds: float = 1.0

    # --- Session registry ---
    session_max_age_hours: int = 24
    session_sweep_interval_seconds: int = 3600

    # --- Data report ---
    data_window_days: int = 28

    # --- App settings ---
    frontend_url: str = "http://localhost:5173"
    environment: str = "development"  # development | staging | production
    log_level: str = "INFO"
    cors_origins: list[str] = ["http://localhost:5173"]
    port: int = 3000

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
