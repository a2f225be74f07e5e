"""
Health check and system status API endpoints.
"""
import logging
from typing import Dict, Any
from fastapi import APIRouter
from sqlalchemy import text

from ..config.settings import get_settings
from ..models.db.database import engine
from ..utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)
router = APIRouter()
settings = get_settings()


def _database_reachable() -> bool:
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error("Database health check failed: %s", e)
        return False


@router.get("/health", summary="Health Check")
def health_check() -> Dict[str, Any]:
    """
    Basic health check endpoint.
    """
    return {
        "status": "healthy",
        "message": f"Welcome to {settings.app_name} v{settings.app_version}",
        "environment": settings.environment,
        "timestamp": utcnow().isoformat()
    }


@router.get("/health/detailed", summary="Detailed Health Check")
def detailed_health_check() -> Dict[str, Any]:
    """
    Detailed health check with configuration and service status.
    """
    database_ok = _database_reachable()
    health_status = {
        "status": "healthy" if database_ok else "unhealthy",
        "app_info": {
            "name": settings.app_name,
            "version": settings.app_version,
            "environment": settings.environment,
            "debug": settings.debug,
            "testing": settings.testing
        },
        "configuration": {
            "log_level": settings.log_level,
            "database_reachable": database_ok,
            "cors_enabled": settings.cors_enabled,
            "api_docs_enabled": settings.api_docs_enabled,
            "debug_routes_enabled": settings.debug_routes_enabled
        },
        "external_apis": {
            "google_oauth_configured": settings.google_configured(),
            "pubsub_topic_configured": bool(settings.pubsub_topic_path),
            "gemini_configured": bool(settings.gemini_api_key)
        },
        "security": {
            "secret_key_configured": bool(settings.secret_key),
            "webhook_token_configured": bool(settings.pubsub_verification_token),
            "token_expiry_minutes": settings.access_token_expire_minutes
        }
    }

    config_issues = settings.validate_required_settings()
    if config_issues and database_ok:
        health_status["status"] = "degraded"
    if config_issues:
        health_status["configuration_issues"] = config_issues
        logger.warning("Configuration issues found: %s", config_issues)

    return health_status


@router.get("/config/validate", summary="Validate Configuration")
def validate_configuration() -> Dict[str, Any]:
    """
    Validate the current configuration and return any issues.
    """
    config_issues = settings.validate_required_settings()

    validation_result = {
        "valid": len(config_issues) == 0,
        "environment": settings.environment,
        "issues_count": len(config_issues),
        "issues": config_issues
    }

    if not validation_result["valid"]:
        logger.error("Configuration validation failed: %s", config_issues)

    return validation_result
