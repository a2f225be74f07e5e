"""
Test centralized configuration management.
"""
import logging
import os
from unittest.mock import patch

import pytest
from fastapi import status


class TestConfigurationManagement:
    """Test centralized configuration system."""

    def test_settings_loading_with_defaults(self):
        """Test that settings load with appropriate defaults."""
        from apply_trace_app.backend.config.settings import Settings

        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(_env_file=None)

        assert settings.app_name == "Apply Trace"
        assert settings.environment == "development"
        assert settings.algorithm == "HS256"
        assert settings.log_level == "INFO"
        assert settings.database_url == "sqlite:///./apply_trace.db"
        assert len(settings.secret_key) >= 32
        assert settings.analysis_confidence_threshold == 0.7
        assert settings.webhook_rate_limit_requests == 10
        assert settings.webhook_rate_limit_window_seconds == 60
        assert settings.llm_max_retries == 3
        assert settings.pubsub_topic_path is None
        assert not settings.google_configured()

    def test_settings_with_environment_variables(self):
        """Test settings loading from environment variables."""
        from apply_trace_app.backend.config.settings import Settings

        test_env = {
            "SECRET_KEY": "test-secret-key-12345678901234567890123456789012",
            "LOG_LEVEL": "debug",
            "ENVIRONMENT": "staging",
            "GOOGLE_CLIENT_ID": "client-id",
            "GOOGLE_CLIENT_SECRET": "client-secret",
            "GOOGLE_CLOUD_PROJECT_ID": "apply-trace",
            "PUBSUB_TOPIC_NAME": "gmail-notifications",
            "SITE_URL": "https://tracker.example.com/",
        }

        with patch.dict(os.environ, test_env):
            settings = Settings(_env_file=None)

        assert settings.secret_key == test_env["SECRET_KEY"]
        assert settings.log_level == "DEBUG"
        assert settings.environment == "staging"
        assert settings.google_configured()
        assert settings.pubsub_topic_path == "projects/apply-trace/topics/gmail-notifications"
        assert settings.oauth_redirect_uri == "https://tracker.example.com/auth/callback"

    def test_environment_detection_methods(self):
        """Test environment detection helper methods."""
        from apply_trace_app.backend.config.settings import Settings

        with patch.dict(os.environ, {"ENVIRONMENT": "production", "TESTING": "false"}):
            settings = Settings(_env_file=None)
            assert settings.is_production()
            assert not settings.is_development()
            assert not settings.is_testing()

        with patch.dict(os.environ, {"TESTING": "true"}):
            settings = Settings(_env_file=None)
            assert settings.is_testing()
            assert settings.get_database_url() == "sqlite:///:memory:"

    def test_configuration_validation_production(self):
        """Test configuration validation in production."""
        from apply_trace_app.backend.config.settings import Settings

        with patch.dict(os.environ, {
            "ENVIRONMENT": "production",
            "DEBUG": "true",
            "SECRET_KEY": "short",
        }):
            settings = Settings(_env_file=None)
            issues = settings.validate_required_settings()

        assert any("DEBUG must be False" in issue for issue in issues)
        assert any("SECRET_KEY must be at least 32 characters" in issue for issue in issues)
        assert any("GOOGLE_CLIENT_ID" in issue for issue in issues)
        assert any("PUBSUB_TOPIC_NAME" in issue for issue in issues)
        assert any("GEMINI_API_KEY" in issue for issue in issues)

    def test_invalid_confidence_threshold_is_reported(self):
        from apply_trace_app.backend.config.settings import Settings

        with patch.dict(os.environ, {"ANALYSIS_CONFIDENCE_THRESHOLD": "1.5"}):
            settings = Settings(_env_file=None)

        assert any("ANALYSIS_CONFIDENCE_THRESHOLD" in issue for issue in settings.validate_required_settings())

    def test_settings_caching(self):
        """Test that settings are cached properly."""
        from apply_trace_app.backend.config.settings import get_settings

        assert get_settings() is get_settings()


class TestLoggingConfiguration:

    def test_setup_logging_sets_level_and_quiets_libraries(self, tmp_path):
        from apply_trace_app.backend.utils.logging_config import setup_logging, get_logger

        log_file = tmp_path / "apply_trace.log"
        root_logger = logging.getLogger()
        previous_handlers, previous_level = root_logger.handlers[:], root_logger.level
        try:
            setup_logging(level="debug", log_file=str(log_file))
            get_logger("apply_trace_app.test").debug("hello from the test")

            assert root_logger.level == logging.DEBUG
            assert logging.getLogger("googleapiclient.discovery_cache").level == logging.ERROR
            for handler in root_logger.handlers:
                handler.flush()
            assert "hello from the test" in log_file.read_text()
        finally:
            for handler in root_logger.handlers[:]:
                root_logger.removeHandler(handler)
                handler.close()
            for handler in previous_handlers:
                root_logger.addHandler(handler)
            root_logger.setLevel(previous_level)


class TestHealthCheckEndpoints:
    """Test health check endpoints that show configuration status."""

    def test_basic_health_check(self, test_client):
        response = test_client.get("/api/health")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["status"] == "healthy"
        assert "Apply Trace" in data["message"]
        assert "environment" in data
        assert "timestamp" in data

    def test_detailed_health_check(self, test_client):
        response = test_client.get("/api/health/detailed")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()

        for section in ["app_info", "configuration", "external_apis", "security"]:
            assert section in data
        assert data["app_info"]["name"] == "Apply Trace"
        assert data["configuration"]["database_reachable"] is True
        assert isinstance(data["external_apis"]["gemini_configured"], bool)
        assert "secret_key" not in data["security"]

    def test_detailed_health_check_reports_database_outage(self, test_client):
        with patch("apply_trace_app.backend.api.health._database_reachable", return_value=False):
            response = test_client.get("/api/health/detailed")

        assert response.json()["status"] == "unhealthy"

    def test_configuration_validation_endpoint(self, test_client):
        response = test_client.get("/api/config/validate")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert "valid" in data
        assert "issues_count" in data
        assert isinstance(data["issues"], list)


class TestConfigurationIntegration:
    """Test integration of configuration with other components."""

    def test_security_uses_centralized_config(self):
        from apply_trace_app.backend.security import SECRET_KEY, ALGORITHM, ACCESS_TOKEN_EXPIRE_MINUTES
        from apply_trace_app.backend.config.settings import get_settings

        settings = get_settings()

        assert SECRET_KEY == settings.secret_key
        assert ALGORITHM == settings.algorithm
        assert ACCESS_TOKEN_EXPIRE_MINUTES == settings.access_token_expire_minutes

    def test_rate_limiters_use_centralized_config(self):
        from apply_trace_app.backend.services.webhook_processor import webhook_rate_limiter
        from apply_trace_app.backend.services.gemini_service import llm_rate_limiter
        from apply_trace_app.backend.config.settings import get_settings

        settings = get_settings()

        assert webhook_rate_limiter.max_requests == settings.webhook_rate_limit_requests
        assert webhook_rate_limiter.window_seconds == settings.webhook_rate_limit_window_seconds
        assert llm_rate_limiter.max_retries == settings.llm_max_retries
        assert llm_rate_limiter.max_backoff == settings.llm_max_backoff_seconds

    def test_board_page_is_served(self, test_client):
        response = test_client.get("/")

        assert response.status_code == status.HTTP_200_OK
        assert "text/html" in response.headers["content-type"]
        assert "board.js" in response.text

    @pytest.mark.parametrize("path", ["/static/board.js", "/static/board.css"])
    def test_static_assets_are_served(self, test_client, path):
        assert test_client.get(path).status_code == status.HTTP_200_OK
