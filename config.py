"""
Configuration validation and management for the News RAG Chat backend.

This module validates environment variables on startup and provides
centralized configuration access. Every credential has a degraded path
(local embeddings, cache misses, apology answers), so missing keys are
reported as warnings rather than errors.
"""

import os
from typing import Optional, List
from dataclasses import dataclass, field
from dotenv import load_dotenv

from logger import get_logger

# Load environment variables
load_dotenv()

logger = get_logger(__name__)

CACHE_BACKENDS = ("redis", "memory")


@dataclass
class ConfigValidationError:
    """Represents a configuration validation error."""
    key: str
    message: str
    is_critical: bool = True


@dataclass
class AppConfig:
    """Application configuration with validated values."""

    # API Keys
    gemini_api_key: str = ""
    cohere_api_key: str = ""

    # Cache
    cache_backend: str = "redis"
    redis_url: str = "redis://localhost:6379"
    redis_password: str = ""

    # Qdrant
    qdrant_url: str = "http://localhost:6333"
    qdrant_api_key: str = ""
    qdrant_collection_name: str = "news_articles"
    qdrant_timeout: int = 30

    # Model Configuration
    gemini_model_name: str = "gemini-2.5-flash"
    embedding_model: str = "embed-english-light-v3.0"
    embedding_dimensions: int = 384

    # Server Configuration
    host: str = "0.0.0.0"
    port: int = 5000
    debug: bool = False
    log_level: str = "INFO"

    # Pipeline Settings
    top_k_results: int = 5
    session_ttl: int = 3600
    cache_ttl: int = 1800
    session_cleanup_interval: int = 300

    # CORS
    frontend_url: str = "http://localhost:3000"
    cors_origins: List[str] = field(default_factory=lambda: ["http://localhost:3000"])


class ConfigValidator:
    """Validates and loads application configuration."""

    REQUIRED_VARS: List[tuple] = []

    OPTIONAL_VARS = [
        ("GEMINI_API_KEY", "Without it every answer degrades to an apology message"),
        ("COHERE_API_KEY", "Without it queries use the local fallback embedding"),
        ("QDRANT_API_KEY", "Required for Qdrant Cloud authentication"),
    ]

    NUMERIC_VARS = [
        ("PORT", 1, 65535),
        ("QDRANT_TIMEOUT", 1, 600),
        ("EMBEDDING_DIMENSIONS", 1, 8192),
        ("TOP_K_RESULTS", 1, 50),
        ("SESSION_TTL", 60, 7 * 86400),
        ("CACHE_TTL", 1, 7 * 86400),
        ("SESSION_CLEANUP_INTERVAL", 0, 86400),
    ]

    def __init__(self):
        self.errors: List[ConfigValidationError] = []
        self.warnings: List[str] = []
        self.config: Optional[AppConfig] = None

    def validate(self) -> bool:
        """
        Validate all configuration values.

        Returns:
            bool: True if all critical validations pass
        """
        self.errors = []
        self.warnings = []

        for var_name, description in self.REQUIRED_VARS:
            value = os.getenv(var_name)
            if not value or value.strip() == "":
                self.errors.append(ConfigValidationError(
                    key=var_name,
                    message=f"Missing required environment variable: {var_name}. {description}",
                    is_critical=True
                ))

        for var_name, description in self.OPTIONAL_VARS:
            value = os.getenv(var_name)
            if not value or value.strip() == "":
                self.warnings.append(f"Optional variable not set: {var_name}. {description}")

        self._validate_cache_backend()
        self._validate_redis_url()
        self._validate_qdrant_url()
        self._validate_numeric_values()

        return len([e for e in self.errors if e.is_critical]) == 0

    def _validate_cache_backend(self) -> None:
        """Validate the cache backend selector."""
        backend = os.getenv("CACHE_BACKEND", "redis").strip().lower()
        if backend not in CACHE_BACKENDS:
            self.errors.append(ConfigValidationError(
                key="CACHE_BACKEND",
                message=f"Invalid CACHE_BACKEND: {backend}. Must be one of {', '.join(CACHE_BACKENDS)}",
                is_critical=True
            ))

    def _validate_redis_url(self) -> None:
        """Validate Redis URL format."""
        url = os.getenv("REDIS_URL", "")
        if url and not url.startswith(("redis://", "rediss://", "unix://")):
            self.errors.append(ConfigValidationError(
                key="REDIS_URL",
                message=f"Invalid REDIS_URL format: {url}. Must start with redis://, rediss:// or unix://",
                is_critical=True
            ))

    def _validate_qdrant_url(self) -> None:
        """Validate Qdrant URL format."""
        url = os.getenv("QDRANT_URL", "")
        if url and not (url.startswith("http://") or url.startswith("https://")):
            self.errors.append(ConfigValidationError(
                key="QDRANT_URL",
                message=f"Invalid QDRANT_URL format: {url}. Must start with http:// or https://",
                is_critical=True
            ))

    def _validate_numeric_values(self) -> None:
        """Validate numeric configuration values."""
        for var_name, min_val, max_val in self.NUMERIC_VARS:
            value_str = os.getenv(var_name)
            if value_str:
                try:
                    value = int(value_str)
                    if value < min_val or value > max_val:
                        self.warnings.append(
                            f"{var_name}={value} is outside recommended range [{min_val}, {max_val}]"
                        )
                except ValueError:
                    self.errors.append(ConfigValidationError(
                        key=var_name,
                        message=f"Invalid {var_name}: {value_str}. Must be a number",
                        is_critical=False
                    ))

    def load_config(self) -> AppConfig:
        """
        Load and return validated configuration.

        Returns:
            AppConfig: Loaded configuration object
        """
        def safe_int(value: Optional[str], default: int) -> int:
            try:
                return int(value) if value else default
            except (ValueError, TypeError):
                return default

        def safe_bool(value: Optional[str], default: bool) -> bool:
            if not value:
                return default
            return value.lower() in ("true", "1", "yes")

        frontend_url = os.getenv("FRONTEND_URL", "http://localhost:3000")
        cors_origins_str = os.getenv("CORS_ORIGINS", frontend_url)
        cors_origins = [o.strip() for o in cors_origins_str.split(",") if o.strip()]

        self.config = AppConfig(
            gemini_api_key=os.getenv("GEMINI_API_KEY", "").strip(),
            cohere_api_key=os.getenv("COHERE_API_KEY", "").strip(),
            cache_backend=os.getenv("CACHE_BACKEND", "redis").strip().lower(),
            redis_url=os.getenv("REDIS_URL", "redis://localhost:6379"),
            redis_password=os.getenv("REDIS_PASSWORD", ""),
            qdrant_url=os.getenv("QDRANT_URL", "http://localhost:6333"),
            qdrant_api_key=os.getenv("QDRANT_API_KEY", "").strip(),
            qdrant_collection_name=os.getenv("QDRANT_COLLECTION_NAME", "news_articles"),
            qdrant_timeout=safe_int(os.getenv("QDRANT_TIMEOUT"), 30),
            gemini_model_name=os.getenv("GEMINI_MODEL_NAME", "gemini-2.5-flash"),
            embedding_model=os.getenv("EMBEDDING_MODEL", "embed-english-light-v3.0"),
            embedding_dimensions=safe_int(os.getenv("EMBEDDING_DIMENSIONS"), 384),
            host=os.getenv("HOST", "0.0.0.0"),
            port=safe_int(os.getenv("PORT"), 5000),
            debug=safe_bool(os.getenv("DEBUG"), False),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            top_k_results=safe_int(os.getenv("TOP_K_RESULTS"), 5),
            session_ttl=safe_int(os.getenv("SESSION_TTL"), 3600),
            cache_ttl=safe_int(os.getenv("CACHE_TTL"), 1800),
            session_cleanup_interval=safe_int(os.getenv("SESSION_CLEANUP_INTERVAL"), 300),
            frontend_url=frontend_url,
            cors_origins=cors_origins,
        )

        return self.config

    def log_status(self) -> None:
        """Log configuration status."""
        for error in self.errors:
            critical = "CRITICAL" if error.is_critical else "non-critical"
            logger.error(f"Config error ({critical}) {error.key}: {error.message}")

        for warning in self.warnings:
            logger.warning(warning)

        if not self.errors and not self.warnings:
            logger.info("All configuration values are valid")


def validate_config_on_startup() -> AppConfig:
    """
    Validate configuration on application startup.

    Raises:
        ValueError: If critical configuration is invalid

    Returns:
        AppConfig: Validated configuration
    """
    validator = ConfigValidator()
    is_valid = validator.validate()
    config = validator.load_config()

    validator.log_status()

    if not is_valid:
        error_msgs = [f"{error.key}: {error.message}" for error in validator.errors if error.is_critical]
        raise ValueError(
            f"Cannot start application due to configuration errors. "
            f"Missing or invalid: {', '.join(error_msgs)}"
        )

    return config


# Global config instance
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """
    Get the global configuration instance.

    Returns:
        AppConfig: Application configuration
    """
    global _config
    if _config is None:
        _config = validate_config_on_startup()
    return _config


def reset_config() -> None:
    """Drop the cached configuration so the next get_config() re-reads the environment."""
    global _config
    _config = None
