"""
Application Configuration

Centralized settings management using Pydantic Settings.
Supports environment variables and .env files.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # ==========================================================================
    # App Settings
    # ==========================================================================
    APP_NAME: str = "Tile Upscaler"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development, staging, PROD
    DEBUG: bool = False

    # ==========================================================================
    # Request Limits
    # ==========================================================================
    MAX_IMAGE_SIZE_BYTES: int = 10485760  # 10MB
    MAX_PROMPT_LENGTH: int = 2000

    # ==========================================================================
    # Tiling Pipeline Settings
    # ==========================================================================
    DEFAULT_TILE_SIZE: int = 256
    DEFAULT_OVERLAP: int = 64
    DEFAULT_UPSCALE_FACTOR: float = 2.0
    MAX_UPSCALE_FACTOR: float = 8.0

    # Guard against requests that would fan out into too many enhancement calls
    MAX_TILE_COUNT: int = 500

    # Worker pool size; reduced for remote API rate limits
    TILE_CONCURRENCY: int = 5
    MAX_ENHANCEMENT_PASSES: int = 3

    # ==========================================================================
    # Enhancement API (Nano Banana)
    # ==========================================================================
    NANO_BANANA_API_URL: Optional[str] = None
    NANO_BANANA_API_KEY: Optional[str] = None
    ENHANCEMENT_TIMEOUT_SECONDS: float = 60.0

    # ==========================================================================
    # Image Analysis API (Gemini)
    # ==========================================================================
    GEMINI_API_URL: Optional[str] = None
    GEMINI_API_KEY: Optional[str] = None
    ANALYSIS_TIMEOUT_SECONDS: float = 30.0

    # ==========================================================================
    # Logging Settings
    # ==========================================================================
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT_JSON: bool = True  # JSON for production, console for development

    # ==========================================================================
    # CORS Settings
    # ==========================================================================
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173,http://localhost:8000"

    @property
    def enhancement_api_configured(self) -> bool:
        return bool(self.NANO_BANANA_API_URL and self.NANO_BANANA_API_KEY)

    @property
    def analysis_api_configured(self) -> bool:
        return bool(self.GEMINI_API_URL and self.GEMINI_API_KEY)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


# Global settings instance
settings = Settings()
