"""
Common API utilities and helper functions shared across API modules.
"""
import logging
from typing import Optional
from fastapi import HTTPException, status

logger = logging.getLogger(__name__)


def handle_service_error(error: Exception, service_name: str) -> HTTPException:
    """
    Standardized error handling for service layer exceptions.

    Args:
        error: The exception that occurred
        service_name: Name of the service for logging/error messages

    Returns:
        HTTPException with appropriate status code and message
    """
    error_msg = str(error)
    logger.error("%s service error: %s", service_name, error_msg)

    if isinstance(error, ValueError):
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=error_msg
        )
    elif isinstance(error, RuntimeError):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{service_name} service is currently unavailable"
        )
    else:
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"An unexpected error occurred in {service_name}"
        )


def check_resource_exists(resource: Optional[object], resource_type: str) -> None:
    """
    Raise a 404 naming ``resource_type`` when ``resource`` is None.
    """
    if resource is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{resource_type} not found"
        )


def mask_token(token: Optional[str]) -> Optional[str]:
    if not token:
        return token
    if len(token) <= 12:
        return "****"
    return f"{token[:4]}...{token[-4:]}"
