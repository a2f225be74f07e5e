"""
Centralized configuration management for the Apply Trace application.
All environment variables, API keys, and configuration settings are managed here.
"""
import secrets
from typing import Optional, List
from pydantic import field_validator
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings with validation and type hints."""

    # =============================================================================
    # APPLICATION SETTINGS
    # =============================================================================
    app_name: str = "Apply Trace"
    app_version: str = "1.0.0"
    environment: str = "development"
    debug: bool = False
    testing: bool = False

    # =============================================================================
    # SECURITY SETTINGS
    # =============================================================================
    secret_key: str = secrets.token_urlsafe(32)
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 7 * 24 * 60  # 7 days
    auth_cookie_name: str = "apply_trace_token"
    oauth_state_cookie_name: str = "apply_trace_oauth_state"
    oauth_state_expire_minutes: int = 10

    # =============================================================================
    # DATABASE SETTINGS
    # =============================================================================
    database_url: str = "sqlite:///./apply_trace.db"
    database_echo: bool = False

    # =============================================================================
    # LOGGING SETTINGS
    # =============================================================================
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v):
        return v.upper()

    # =============================================================================
    # GOOGLE OAUTH / GMAIL SETTINGS
    # =============================================================================
    google_client_id: Optional[str] = None
    google_client_secret: Optional[str] = None
    google_token_uri: str = "https://oauth2.googleapis.com/token"
    google_auth_uri: str = "https://accounts.google.com/o/oauth2/auth"
    google_oauth_scopes: List[str] = [
        "https://www.googleapis.com/auth/gmail.readonly",
        "https://www.googleapis.com/auth/gmail.metadata",
    ]
    site_url: str = "http://localhost:8000"

    # Pub/Sub topic that receives Gmail push notifications
    google_cloud_project_id: Optional[str] = None
    pubsub_topic_name: Optional[str] = None
    pubsub_verification_token: Optional[str] = None

    @property
    def oauth_redirect_uri(self) -> str:
        return f"{self.site_url.rstrip('/')}/auth/callback"

    @property
    def pubsub_topic_path(self) -> Optional[str]:
        if not self.google_cloud_project_id or not self.pubsub_topic_name:
            return None
        return f"projects/{self.google_cloud_project_id}/topics/{self.pubsub_topic_name}"

    # =============================================================================
    # LLM SETTINGS
    # =============================================================================
    gemini_api_key: Optional[str] = None
    gemini_model_name: str = "gemini-1.5-flash"
    llm_min_delay_seconds: float = 1.0
    llm_max_retries: int = 3
    llm_max_backoff_seconds: float = 10.0
    analysis_confidence_threshold: float = 0.7

    # =============================================================================
    # WEBHOOK SETTINGS
    # =============================================================================
    webhook_rate_limit_requests: int = 10
    webhook_rate_limit_window_seconds: int = 60
    recent_message_window_minutes: int = 60
    watch_renewal_threshold_hours: int = 24

    # =============================================================================
    # DEVELOPMENT SETTINGS
    # =============================================================================
    api_docs_enabled: bool = True
    debug_routes_enabled: bool = True
    cors_enabled: bool = True
    cors_origins: List[str] = ["http://localhost:3000", "http://localhost:8000"]

    # =============================================================================
    # CONFIGURATION LOADING
    # =============================================================================
    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
    }

    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment.lower() == "development"

    def is_testing(self) -> bool:
        """Check if running in testing environment."""
        return self.testing or self.environment.lower() == "testing"

    def get_database_url(self) -> str:
        """Get database URL with appropriate settings for environment."""
        if self.is_testing():
            return "sqlite:///:memory:"
        return self.database_url

    def google_configured(self) -> bool:
        return bool(self.google_client_id and self.google_client_secret)

    def validate_required_settings(self) -> List[str]:
        """Validate that all required settings are properly configured."""
        missing = []

        if self.is_production():
            if not self.secret_key or len(self.secret_key) < 32:
                missing.append("SECRET_KEY must be at least 32 characters in production")

            if not self.google_configured():
                missing.append("GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET are required in production")

            if not self.pubsub_topic_path:
                missing.append("GOOGLE_CLOUD_PROJECT_ID and PUBSUB_TOPIC_NAME are required in production")

            if not self.gemini_api_key:
                missing.append("GEMINI_API_KEY is required in production")

            if self.debug:
                missing.append("DEBUG must be False in production")

            if self.debug_routes_enabled:
                missing.append("DEBUG_ROUTES_ENABLED must be False in production")

        if self.log_level not in ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
            missing.append(f"Invalid LOG_LEVEL: {self.log_level}")

        if not 0 <= self.analysis_confidence_threshold <= 1:
            missing.append("ANALYSIS_CONFIDENCE_THRESHOLD must be between 0 and 1")

        return missing


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).
    This function is cached to avoid recreating the settings object multiple times.
    """
    return Settings()
