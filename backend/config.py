"""
Tenant Onboarding - Configuration Management

Centralized configuration for the cheque intake service.
This module ensures:
- No hardcoded secrets
- Collaborator URLs (OCR gateway, bank accounts) come from the environment
- Environment-specific settings (dev/staging/prod)
- Secure defaults
"""

from typing import List
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
import logging

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Uses pydantic-settings for validation and type coercion.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ==================== ENVIRONMENT ====================
    ENVIRONMENT: str = Field(
        default="development",
        description="Runtime environment: development, staging, production"
    )
    DEBUG: bool = Field(
        default=False,
        description="Enable debug mode (auto-enabled in development)"
    )

    # ==================== CORS ====================
    CORS_ORIGINS: str = Field(
        default="",
        description="Comma-separated list of allowed origins"
    )

    # ==================== OCR GATEWAY ====================
    TEXTRACT_SERVICE_URL: str = Field(
        default="http://localhost:8080",
        description="Base URL of the cheque OCR gateway"
    )
    TEXTRACT_SERVICE_TOKEN: str = Field(
        default="",
        description="Bearer token forwarded to the OCR gateway"
    )
    TEXTRACT_TIMEOUT_SECONDS: float = Field(
        default=120.0,
        description="Timeout for one batched OCR call"
    )

    # ==================== BANK ACCOUNTS ====================
    BANK_ACCOUNTS_SERVICE_URL: str = Field(
        default="http://localhost:8080",
        description="Base URL of the bank account directory"
    )
    BANK_ACCOUNTS_SERVICE_TOKEN: str = Field(
        default="",
        description="Bearer token for the bank account directory"
    )
    BANK_ACCOUNTS_CACHE_MINUTES: int = Field(
        default=10,
        description="How long the bank account dropdown is cached"
    )

    # ==================== CHEQUE UPLOADS ====================
    MAX_CHEQUE_IMAGES: int = Field(
        default=12,
        description="Hard cap on queued cheque images per step"
    )
    MAX_CHEQUE_IMAGE_SIZE_MB: int = Field(
        default=5,
        description="Maximum size of one cheque image in MB"
    )
    CURRENCY_CODE: str = Field(
        default="AED",
        description="Currency used when rendering cheque amounts"
    )

    # ==================== OBSERVABILITY ====================
    SENTRY_DSN: str = Field(
        default="",
        description="Sentry DSN for error tracking"
    )
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level: DEBUG, INFO, WARNING, ERROR"
    )

    # ==================== API ====================
    API_TITLE: str = Field(
        default="Tenant Onboarding - Cheque Intake API",
        description="API title for OpenAPI docs"
    )
    API_VERSION: str = Field(
        default="1.0.0",
        description="API version"
    )

    # ==================== COMPUTED PROPERTIES ====================

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

    @property
    def cors_origins_list(self) -> List[str]:
        """
        Parse CORS_ORIGINS into a list.

        Outside production the local frontend dev servers are always allowed.
        """
        if self.CORS_ORIGINS and self.CORS_ORIGINS != "*":
            origins = [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]
        else:
            origins = []

        dev_origins = [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ]

        all_origins = set(origins)
        if not self.is_production:
            all_origins.update(dev_origins)

        return sorted(all_origins)

    @property
    def debug_enabled(self) -> bool:
        """Enable debug in development or when explicitly set"""
        return self.DEBUG or self.is_development

    @property
    def max_cheque_image_bytes(self) -> int:
        return self.MAX_CHEQUE_IMAGE_SIZE_MB * 1024 * 1024

    def validate_production_config(self) -> List[str]:
        """
        Validate configuration for production deployment.
        Returns list of validation errors.
        """
        errors = []

        if self.MAX_CHEQUE_IMAGES < 1:
            errors.append("MAX_CHEQUE_IMAGES must be at least 1")

        if self.is_production:
            if not self.TEXTRACT_SERVICE_TOKEN:
                errors.append("TEXTRACT_SERVICE_TOKEN is required")

            if "localhost" in self.TEXTRACT_SERVICE_URL.lower():
                errors.append("TEXTRACT_SERVICE_URL cannot point to localhost in production")

            if "localhost" in self.BANK_ACCOUNTS_SERVICE_URL.lower():
                errors.append("BANK_ACCOUNTS_SERVICE_URL cannot point to localhost in production")

            if self.CORS_ORIGINS == "*":
                errors.append("CORS_ORIGINS cannot be '*' in production")

            if self.DEBUG:
                errors.append("DEBUG should be False in production")

        return errors


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Settings are loaded once and cached for the application lifetime.
    """
    settings = Settings()

    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug: {settings.debug_enabled}")

    if settings.is_production:
        errors = settings.validate_production_config()
        if errors:
            for error in errors:
                logger.error(f"Configuration error: {error}")
            raise ValueError(f"Production configuration invalid: {', '.join(errors)}")

    return settings


# ==================== CORS CONFIGURATION ====================

def get_cors_config() -> dict:
    """
    Get CORS middleware configuration.

    Returns configuration dict for CORSMiddleware.
    """
    settings = get_settings()

    return {
        "allow_origins": settings.cors_origins_list,
        "allow_credentials": True,
        "allow_methods": ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        "allow_headers": [
            "Authorization",
            "Content-Type",
            "Accept",
            "Origin",
            "X-Requested-With",
            "X-Request-ID",
        ],
        "expose_headers": ["X-Request-ID"],
        "max_age": 600,  # Cache preflight for 10 minutes
    }


# ==================== ENVIRONMENT VALIDATION ====================

def validate_environment() -> dict:
    """
    Validate collaborator and observability settings.

    Returns a status dict with validation results.
    """
    settings = get_settings()

    status = {
        "valid": True,
        "environment": settings.ENVIRONMENT,
        "errors": [],
        "warnings": [],
        "variables": {}
    }

    optional_vars = [
        ("TEXTRACT_SERVICE_TOKEN", settings.TEXTRACT_SERVICE_TOKEN, "OCR gateway calls are unauthenticated"),
        ("SENTRY_DSN", settings.SENTRY_DSN, "Error tracking disabled"),
    ]

    for name, value, warning in optional_vars:
        if not value:
            status["warnings"].append(warning)
            status["variables"][name] = "Not set"
        else:
            status["variables"][name] = "Set"

    errors = settings.validate_production_config()
    if errors:
        status["errors"].extend(errors)
        status["valid"] = False

    return status
